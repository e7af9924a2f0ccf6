"""Format/version dispatch for parse and serialize bindings.

Every (content format, FHIR version) pair maps to a :class:`FormatBinding`
that knows how to read content of that format into a resource and how to
write a resource back out. Bindings are stateless and shared.

Example:
        from fhir_record_api.dispatcher import get_binding
        from fhir_record_api.models import ContentFormat, FhirVersion

        binding = get_binding(ContentFormat.XML, FhirVersion.R5)
        resource = binding.parse(xml_text, strict=True)
        print(binding.serialize(resource, ContentFormat.JSON))

Design notes:
* The table is built once per process; :func:`verify_bindings` is called by
    the transports at startup so a missing pair fails before any request.
* Serializing uses the writer of the requested target format, so one binding
    can emit either encoding.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import product
from typing import Dict, List, Optional, Protocol, Tuple, Union

from .exceptions import UnsupportedCombinationError
from .formats import (
    JsonResourceReader,
    JsonResourceWriter,
    XmlResourceReader,
    XmlResourceWriter,
)
from .models import ContentFormat, FhirVersion
from .resources import Resource

logger = logging.getLogger(__name__)


class ResourceReader(Protocol):
    def read(
        self, content: Union[str, bytes], version: FhirVersion, strict: bool = False
    ) -> Resource: ...


class ResourceWriter(Protocol):
    def write(self, resource: Resource, pretty: bool = True) -> str: ...


_WRITERS: Dict[ContentFormat, ResourceWriter] = {
    ContentFormat.JSON: JsonResourceWriter(),
    ContentFormat.XML: XmlResourceWriter(),
}


@dataclass(frozen=True)
class FormatBinding:
    """Parse/serialize pair for one content format and FHIR version."""

    content_format: ContentFormat
    version: FhirVersion
    reader: ResourceReader

    def parse(self, content: Union[str, bytes], strict: bool = False) -> Resource:
        """Decode ``content`` into a resource.

        Raises:
            FhirFormatError: If the content is malformed or, in strict mode,
                carries unknown elements, coercions or out-of-set codes.
        """
        return self.reader.read(content, self.version, strict)

    def serialize(
        self,
        resource: Resource,
        target: Optional[ContentFormat] = None,
        pretty: bool = True,
    ) -> str:
        """Encode ``resource`` as ``target`` (defaults to the binding's format)."""
        writer = _WRITERS[target or self.content_format]
        return writer.write(resource, pretty=pretty)


class BindingRegistry:
    """Lookup table of bindings keyed by format and version."""

    def __init__(self, bindings: Optional[List[FormatBinding]] = None):
        if bindings is None:
            bindings = _default_bindings()
        self._bindings: Dict[Tuple[ContentFormat, FhirVersion], FormatBinding] = {
            (b.content_format, b.version): b for b in bindings
        }

    def get(self, content_format: ContentFormat, version: FhirVersion) -> FormatBinding:
        """Return the binding for a pair.

        Raises:
            UnsupportedCombinationError: If the pair has no binding.
        """
        binding = self._bindings.get((content_format, version))
        if binding is None:
            raise UnsupportedCombinationError(
                f"No binding for format '{content_format.value}' "
                f"and FHIR version {version.value}"
            )
        return binding

    def missing(self) -> List[Tuple[ContentFormat, FhirVersion]]:
        """Return every (format, version) pair without a binding."""
        return [
            pair for pair in product(ContentFormat, FhirVersion) if pair not in self._bindings
        ]

    def verify(self) -> None:
        """Raise if any format/version pair lacks a binding."""
        missing = self.missing()
        if missing:
            pairs = ", ".join(f"{fmt.value}/{ver.value}" for fmt, ver in missing)
            raise UnsupportedCombinationError(f"Missing format bindings: {pairs}")
        logger.debug("All %d format bindings present", len(self._bindings))


def _default_bindings() -> List[FormatBinding]:
    readers: Dict[ContentFormat, ResourceReader] = {
        ContentFormat.JSON: JsonResourceReader(),
        ContentFormat.XML: XmlResourceReader(),
    }
    return [
        FormatBinding(content_format=fmt, version=ver, reader=readers[fmt])
        for fmt, ver in product(ContentFormat, FhirVersion)
    ]


# Global registry instance
_registry: Optional[BindingRegistry] = None


def get_binding_registry() -> BindingRegistry:
    """Return the process-wide binding registry."""
    global _registry
    if _registry is None:
        _registry = BindingRegistry()
    return _registry


def get_binding(content_format: ContentFormat, version: FhirVersion) -> FormatBinding:
    """Shortcut: look up a binding in the process-wide registry."""
    return get_binding_registry().get(content_format, version)


def verify_bindings() -> None:
    """Check the process-wide registry covers every format/version pair.

    Raises:
        UnsupportedCombinationError: If any pair is missing.
    """
    get_binding_registry().verify()
