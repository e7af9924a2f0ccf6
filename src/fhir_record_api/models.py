"""Core value objects shared by the services and transports.

These lightweight dataclasses carry requests into and results out of the
parsing and validation services. They intentionally avoid framework
dependencies so REST, MCP and CLI layers can serialize them with ``to_dict``
without custom encoders.

Overview:
        * ``FhirVersion`` / ``ContentFormat`` are the two selectors every request
            carries (explicitly or through process defaults).
        * ``ParseRequest`` / ``ParseResult`` describe a parse call.
        * ``ValidationRequest`` / ``ValidationResult`` describe a validation call;
            issues are grouped into errors, warnings and information buckets.

Typical construction::

        from fhir_record_api.models import ValidationIssue, IssueSeverity

        issue = ValidationIssue(
                severity=IssueSeverity.ERROR,
                message="Invalid date",
                location="Patient.birthDate",
                code="invalid",
        )
        payload = issue.to_dict()

Design notes:
        * All objects are created fresh per request and never shared across
            requests.
        * ``ValidationResult.is_valid`` is derived from ``errors`` only, so
            warnings and information never affect validity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from .exceptions import UnsupportedFormatError

JSON_CONTENT_TYPE = "application/fhir+json"
XML_CONTENT_TYPE = "application/fhir+xml"


class FhirVersion(str, Enum):
    """Supported FHIR release selectors."""

    R4 = "R4"
    R5 = "R5"

    @classmethod
    def parse(cls, value: "str | FhirVersion") -> "FhirVersion":
        """Resolve a version string case-insensitively.

        Raises:
            ValueError: If the value names no supported version.

        Example:
            >>> FhirVersion.parse("r5")
            <FhirVersion.R5: 'R5'>
        """
        if isinstance(value, FhirVersion):
            return value
        normalized = str(value).strip().upper()
        for member in cls:
            if member.value == normalized:
                return member
        supported = ", ".join(m.value for m in cls)
        raise ValueError(
            f"Unsupported FHIR version '{value}'. Supported versions: {supported}"
        )


class ContentFormat(str, Enum):
    """Encodings a resource can be exchanged in."""

    JSON = "json"
    XML = "xml"

    @property
    def content_type(self) -> str:
        return JSON_CONTENT_TYPE if self is ContentFormat.JSON else XML_CONTENT_TYPE

    @classmethod
    def from_content_type(cls, content_type: Optional[str]) -> "ContentFormat":
        """Map a media type to a format; anything mentioning ``xml`` is XML."""
        if content_type and "xml" in content_type.lower():
            return cls.XML
        return cls.JSON

    @classmethod
    def from_name(cls, name: str) -> "ContentFormat":
        """Resolve ``json``/``xml`` (or the FHIR media types) case-insensitively.

        Raises:
            UnsupportedFormatError: For any other name.
        """
        normalized = (name or "").strip().lower()
        if normalized in ("json", JSON_CONTENT_TYPE):
            return cls.JSON
        if normalized in ("xml", XML_CONTENT_TYPE):
            return cls.XML
        raise UnsupportedFormatError(
            f"Unsupported format '{name}'. Expected 'json' or 'xml'"
        )


class IssueSeverity(IntEnum):
    """Issue severity; ordinal order is increasing severity."""

    INFORMATION = 0
    WARNING = 1
    ERROR = 2
    FATAL = 3

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class ValidationIssue:
    """A single structural problem found while validating a resource.

    Attributes:
        severity: One of :class:`IssueSeverity`.
        message: Human-readable description.
        location: Structural path into the resource (e.g. ``Patient.birthDate``).
        code: Machine-friendly issue code (e.g. ``invalid``, ``not-supported``).
        details: Additional diagnostics such as a formatted traceback.
    """

    severity: IssueSeverity
    message: str
    location: Optional[str] = None
    code: Optional[str] = None
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.label,
            "message": self.message,
            "location": self.location,
            "code": self.code,
            "details": self.details,
        }


@dataclass
class ParseRequest:
    """Request to parse a resource and extract its metadata."""

    resource_content: str
    content_type: str = JSON_CONTENT_TYPE
    fhir_version_override: Optional[str] = None

    @property
    def content_format(self) -> ContentFormat:
        return ContentFormat.from_content_type(self.content_type)


@dataclass
class ParseResult:
    """Outcome of a parse call.

    ``success`` implies ``resource_type`` and ``serialized_resource`` are set;
    a failure always carries ``error_message``.
    """

    success: bool
    fhir_version: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    error_message: Optional[str] = None
    serialized_resource: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, fhir_version: str, error_message: str) -> "ParseResult":
        return cls(success=False, fhir_version=fhir_version, error_message=error_message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "fhir_version": self.fhir_version,
            "error_message": self.error_message,
            "serialized_resource": self.serialized_resource,
            "metadata": dict(self.metadata),
        }


@dataclass
class ValidationRequest:
    """Request to structurally validate a resource."""

    resource_content: str
    content_type: str = JSON_CONTENT_TYPE
    profile_url: Optional[str] = None
    fhir_version_override: Optional[str] = None
    strict_validation: Optional[bool] = None

    @property
    def is_json(self) -> bool:
        return "json" in (self.content_type or "").lower()

    @property
    def is_xml(self) -> bool:
        return "xml" in (self.content_type or "").lower()

    @property
    def content_format(self) -> ContentFormat:
        return ContentFormat.from_content_type(self.content_type)


@dataclass
class ValidationResult:
    """Outcome of a validation call.

    Attributes:
        fhir_version: Version the request was resolved to.
        errors: ERROR and FATAL issues in discovery order.
        warnings: WARNING issues in discovery order.
        information: INFORMATION issues in discovery order.
        resource_type: Type of the resource when parsing got that far.
        timestamp: UTC time the result was produced.
        duration_ms: Wall-clock duration of the whole request.

    Example:
        >>> result = ValidationResult(fhir_version="R4")
        >>> result.is_valid
        True
    """

    fhir_version: str
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    information: List[ValidationIssue] = field(default_factory=list)
    resource_type: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: int = 0

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "resource_type": self.resource_type,
            "fhir_version": self.fhir_version,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
            "information": [issue.to_dict() for issue in self.information],
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
        }
