"""JSON and XML encodings for FHIR resources.

Readers turn raw content into a :class:`~fhir_record_api.resources.Resource`
(via :func:`~fhir_record_api.resources.build_resource`); writers turn a
resource back into text. Every reader and writer is stateless, so one instance
can serve concurrent requests.

XML handling follows the FHIR XML conventions:

* The root element is named after the resource type and lives in the
  ``http://hl7.org/fhir`` namespace.
* Primitive values travel in a ``value`` attribute (``<gender value="male"/>``).
* Repeating elements are repeated siblings; the reader uses the resource
  models to decide which elements repeat and how primitives are typed.
  Elements the models do not describe become a list only when they repeat.
* Nested resources (``contained``, ``Bundle.entry.resource``) are wrapped in
  an element holding the resource element.
* ``id`` of non-resource elements and ``url`` of extensions are attributes.
* ``Narrative.div`` is embedded XHTML; it is carried as a string in JSON,
  with the XHTML namespace declared on the ``div`` itself.

Example:
        from fhir_record_api.formats import JsonResourceReader, XmlResourceWriter
        from fhir_record_api.models import FhirVersion

        resource = JsonResourceReader().read('{"resourceType": "Patient"}', FhirVersion.R4)
        print(XmlResourceWriter().write(resource))
"""

from __future__ import annotations

import copy
import json
import typing
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from inspect import isclass
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel

from .exceptions import FhirFormatError
from .models import FhirVersion
from .resources import FhirModel, Resource, build_resource, model_for

FHIR_NS = "http://hl7.org/fhir"
XHTML_NS = "http://www.w3.org/1999/xhtml"
_ATTRIBUTE_KEYS = ("id", "url")
_EXTENSION_ELEMENTS = ("extension", "modifierExtension")

Content = Union[str, bytes]


@dataclass(frozen=True)
class FieldShape:
    """How a model element is encoded: cardinality and primitive kind.

    ``kind`` is one of ``boolean``, ``integer``, ``decimal``, ``string``,
    ``model`` or ``any``.
    """

    repeating: bool
    kind: str
    model: Optional[Type[FhirModel]] = None


def _strip_optional(tp: Any) -> Any:
    while True:
        origin = typing.get_origin(tp)
        if origin is typing.Annotated:
            tp = typing.get_args(tp)[0]
        elif origin is Union:
            args = tuple(a for a in typing.get_args(tp) if a is not type(None))
            if len(args) == len(typing.get_args(tp)):
                return tp
            tp = args[0] if len(args) == 1 else Union[args]
        else:
            return tp


def _shape_of(annotation: Any) -> FieldShape:
    tp = _strip_optional(annotation)
    repeating = False
    if typing.get_origin(tp) in (list, List):
        repeating = True
        tp = _strip_optional(typing.get_args(tp)[0])

    if tp is bool:
        return FieldShape(repeating, "boolean")
    if tp is int:
        return FieldShape(repeating, "integer")
    if typing.get_origin(tp) is Union and set(typing.get_args(tp)) == {int, float}:
        return FieldShape(repeating, "decimal")
    if tp is str:
        return FieldShape(repeating, "string")
    if isclass(tp) and issubclass(tp, BaseModel):
        return FieldShape(repeating, "model", tp)
    return FieldShape(repeating, "any")


def field_shape(model_cls: Optional[Type[FhirModel]], name: str) -> Optional[FieldShape]:
    """Return the encoding shape of ``model_cls.name`` or ``None`` if undeclared."""
    if model_cls is None:
        return None
    info = model_cls.model_fields.get(name)
    if info is None:
        return None
    return _shape_of(info.annotation)


class JsonResourceReader:
    """Parse FHIR JSON content."""

    content_format = "json"

    def read(self, content: Content, version: FhirVersion, strict: bool = False) -> Resource:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise FhirFormatError(
                f"Invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})"
            ) from exc
        except (TypeError, UnicodeDecodeError, RecursionError) as exc:
            raise FhirFormatError(f"Invalid JSON: {exc}") from exc
        return build_resource(data, version, strict)


class XmlResourceReader:
    """Parse FHIR XML content into a resource, guided by the resource models."""

    content_format = "xml"

    def read(self, content: Content, version: FhirVersion, strict: bool = False) -> Resource:
        try:
            root = ET.fromstring(content)
        except ET.ParseError as exc:
            line, column = exc.position
            raise FhirFormatError(
                f"Invalid XML: {_parse_error_reason(exc)} (line {line}, column {column})"
            ) from exc

        namespace, _ = _split_tag(root.tag)
        if namespace != FHIR_NS:
            raise FhirFormatError(
                f"Root element must be in the FHIR namespace '{FHIR_NS}'"
            )
        try:
            data = self._resource_to_dict(root)
        except RecursionError as exc:
            raise FhirFormatError(f"Invalid XML: {exc}") from exc
        return build_resource(data, version, strict)

    def _resource_to_dict(self, elem: ET.Element) -> Dict[str, Any]:
        _, resource_type = _split_tag(elem.tag)
        data: Dict[str, Any] = {"resourceType": resource_type}
        self._read_children(elem, model_for(resource_type), data, resource_type)
        return data

    def _element_to_dict(
        self, elem: ET.Element, model_cls: Optional[Type[FhirModel]], path: str
    ) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            key: value for key, value in elem.attrib.items() if key in _ATTRIBUTE_KEYS
        }
        self._read_children(elem, model_cls, data, path)
        return data

    def _read_children(
        self,
        elem: ET.Element,
        model_cls: Optional[Type[FhirModel]],
        data: Dict[str, Any],
        path: str,
    ) -> None:
        for child in elem:
            _, name = _split_tag(child.tag)
            child_path = f"{path}.{name}"
            shape = field_shape(model_cls, name)
            value = self._convert(child, shape, child_path)

            if shape is not None and shape.repeating:
                data.setdefault(name, []).append(value)
            elif name in data:
                if shape is not None:
                    raise FhirFormatError(
                        f"Element '{name}' occurs more than once", location=child_path
                    )
                existing = data[name]
                if isinstance(existing, list):
                    existing.append(value)
                else:
                    data[name] = [existing, value]
            else:
                data[name] = value

    def _convert(self, elem: ET.Element, shape: Optional[FieldShape], path: str) -> Any:
        namespace, name = _split_tag(elem.tag)
        if namespace == XHTML_NS:
            return _xhtml_to_string(elem)
        if shape is not None and shape.kind == "model":
            return self._element_to_dict(elem, shape.model, path)
        if "value" in elem.attrib and len(elem) == 0:
            return _typed_primitive(elem.attrib["value"], shape)
        if len(elem) == 1 and "value" not in elem.attrib:
            child_ns, child_name = _split_tag(elem[0].tag)
            if child_ns == FHIR_NS and child_name[:1].isupper():
                return self._resource_to_dict(elem[0])
        return self._element_to_dict(elem, None, path)


class JsonResourceWriter:
    """Serialize a resource as FHIR JSON."""

    content_format = "json"

    def write(self, resource: Resource, pretty: bool = True) -> str:
        data = resource.model_dump(mode="json", exclude_none=True)
        if pretty:
            return json.dumps(data, indent=2, ensure_ascii=False)
        return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


class XmlResourceWriter:
    """Serialize a resource as FHIR XML."""

    content_format = "xml"

    def write(self, resource: Resource, pretty: bool = True) -> str:
        data = resource.model_dump(mode="json", exclude_none=True)
        root = self._resource_element(data)
        # Tags are unqualified; the namespace is declared as a plain attribute.
        root.set("xmlns", FHIR_NS)
        if pretty:
            narratives = [
                (div, copy.deepcopy(div))
                for div in root.iter("div")
                if div.get("xmlns") == XHTML_NS
            ]
            ET.indent(root, space="  ")
            # Whitespace inside XHTML is content.
            for div, pristine in narratives:
                div.text = pristine.text
                div[:] = list(pristine)
        return ET.tostring(root, encoding="unicode")

    def _resource_element(self, data: Dict[str, Any]) -> ET.Element:
        elem = ET.Element(data["resourceType"])
        for key, value in data.items():
            if key != "resourceType":
                self._append(elem, key, value)
        return elem

    def _append(self, parent: ET.Element, name: str, value: Any) -> None:
        if isinstance(value, list):
            for item in value:
                self._append(parent, name, item)
            return

        if name == "div" and isinstance(value, str):
            parent.append(_string_to_xhtml(value))
            return

        child = ET.SubElement(parent, name)
        if isinstance(value, dict):
            if "resourceType" in value:
                child.append(self._resource_element(value))
                return
            for key, item in value.items():
                if _is_attribute(name, key, item):
                    child.set(key, item)
                else:
                    self._append(child, key, item)
        else:
            child.set("value", _primitive_text(value))


def _is_attribute(element: str, key: str, value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return key == "id" or (key == "url" and element in _EXTENSION_ELEMENTS)


def _split_tag(tag: str) -> "tuple[Optional[str], str]":
    if tag.startswith("{"):
        namespace, _, local = tag[1:].partition("}")
        return namespace, local
    return None, tag


def _parse_error_reason(exc: ET.ParseError) -> str:
    # Expat messages end with ": line X, column Y"; the position is reported separately.
    return str(exc).split(":")[0]


def _primitive_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _typed_primitive(raw: str, shape: Optional[FieldShape]) -> Any:
    kind = shape.kind if shape is not None else "string"
    if kind == "boolean":
        if raw == "true":
            return True
        if raw == "false":
            return False
    elif kind == "integer":
        try:
            return int(raw)
        except ValueError:
            return raw
    elif kind == "decimal":
        for cast in (int, float):
            try:
                return cast(raw)
            except ValueError:
                continue
    return raw


def _unqualify_xhtml(elem: ET.Element) -> ET.Element:
    """Drop the XHTML namespace from every tag and declare it on *elem*."""
    for node in elem.iter():
        namespace, local = _split_tag(node.tag)
        if namespace == XHTML_NS:
            node.tag = local
    attrib = {"xmlns": XHTML_NS}
    attrib.update(elem.attrib)
    elem.attrib = attrib
    return elem


def _xhtml_to_string(elem: ET.Element) -> str:
    div = _unqualify_xhtml(copy.deepcopy(elem))
    div.tail = None
    return ET.tostring(div, encoding="unicode")


def _string_to_xhtml(markup: str) -> ET.Element:
    try:
        elem = ET.fromstring(markup)
    except ET.ParseError:
        elem = ET.Element("div")
        elem.text = markup
    return _unqualify_xhtml(elem)
