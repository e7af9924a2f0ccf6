"""Parsing service: parse, extract metadata, convert between encodings.

``parse`` and ``parse_json`` never raise for bad input: any failure becomes a
``ParseResult`` with ``success=False``. ``convert_format`` has no result
object, so it lets format errors propagate to the caller.

Example:
        import asyncio
        from fhir_record_api.config import FhirOptions
        from fhir_record_api.parser_service import FhirParserService

        service = FhirParserService(FhirOptions.from_env())
        result = asyncio.run(service.parse_json(patient_json))
        print(result.success, result.metadata.get("name"))
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from .config import FhirOptions, resolve_config
from .dispatcher import get_binding
from .metadata import extract_metadata
from .models import ContentFormat, ParseRequest, ParseResult
from .monitoring import get_monitor

logger = logging.getLogger(__name__)


class FhirParserService:
    """Parse FHIR resources and convert them between JSON and XML."""

    def __init__(self, options: Optional[FhirOptions] = None):
        self._options = options or FhirOptions()

    @property
    def options(self) -> FhirOptions:
        return self._options

    @property
    def current_fhir_version(self) -> str:
        """Default FHIR version string, independent of any request."""
        return self._options.version.value

    @property
    def validate_on_parse(self) -> bool:
        return self._options.validate_on_parse

    async def parse(self, request: ParseRequest) -> ParseResult:
        """Parse a resource and extract its metadata.

        The resource is re-serialized as pretty-printed JSON whatever the
        input encoding. The reported version is the resolved one, never one
        read from the content.

        Args:
            request: Content, content type and optional version override.

        Returns:
            A successful result with metadata, or a failure with an error
            message.
        """
        await asyncio.sleep(0)
        started = time.perf_counter()
        version_label = self.current_fhir_version
        try:
            effective = resolve_config(
                self._options.defaults(), version=request.fhir_version_override
            )
            version_label = effective.version.value
            logger.info(
                "Parsing %s resource (FHIR %s)",
                request.content_format.value,
                version_label,
            )

            binding = get_binding(request.content_format, effective.version)
            resource = binding.parse(request.resource_content, strict=effective.strict)
            result = ParseResult(
                success=True,
                fhir_version=version_label,
                resource_type=resource.type_name,
                resource_id=resource.id,
                serialized_resource=binding.serialize(
                    resource, ContentFormat.JSON, pretty=True
                ),
                metadata=extract_metadata(resource),
            )
        except Exception as e:
            logger.error("Failed to parse FHIR resource: %s", e)
            result = ParseResult.failure(version_label, str(e))

        get_monitor().record_operation(
            "parse", time.perf_counter() - started, success=result.success
        )
        if result.success:
            logger.info(
                "Parsed %s resource with id %s", result.resource_type, result.resource_id
            )
        await asyncio.sleep(0)
        return result

    async def parse_json(self, json_content: str) -> ParseResult:
        """Parse JSON content with the default version."""
        return await self.parse(ParseRequest(resource_content=json_content))

    async def convert_format(self, content: str, from_format: str, to_format: str) -> str:
        """Convert a resource between JSON and XML.

        Equal format names (compared case-insensitively) return ``content``
        unchanged without parsing. Otherwise the content is parsed leniently
        with the default version and re-serialized pretty-printed.

        Raises:
            UnsupportedFormatError: If a format name is neither ``json`` nor ``xml``.
            FhirFormatError: If the content cannot be parsed.
        """
        await asyncio.sleep(0)
        if from_format.strip().lower() == to_format.strip().lower():
            return content

        source = ContentFormat.from_name(from_format)
        target = ContentFormat.from_name(to_format)
        logger.info(
            "Converting resource from %s to %s (FHIR %s)",
            source.value,
            target.value,
            self.current_fhir_version,
        )

        started = time.perf_counter()
        binding = get_binding(source, self._options.version)
        try:
            resource = binding.parse(content, strict=False)
        except Exception:
            get_monitor().record_operation(
                "convert", time.perf_counter() - started, success=False
            )
            raise
        converted = binding.serialize(resource, target, pretty=True)
        get_monitor().record_operation("convert", time.perf_counter() - started)
        await asyncio.sleep(0)
        return converted
