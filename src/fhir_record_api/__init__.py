"""FHIR Record API
==================

Service layer for parsing, validating and converting **FHIR** resources
(releases R4 and R5, JSON and XML encodings), exposed through a FastAPI REST
API, an MCP tool server and a command line interface.

Key capabilities
----------------
- Per-request configuration: a process default FHIR version and strictness,
  overridable per request (:func:`~fhir_record_api.config.resolve_config`).
- Format/version dispatch to stateless JSON and XML bindings.
- Lenient or strict parsing into pydantic resource models.
- Stable metadata projection for ``Patient`` and ``Observation`` resources.
- Validation results with issues bucketed by severity and a measured duration.

Design principles
-----------------
1. **Results over exceptions** - ``parse`` and ``validate`` report failures in
   their result objects; only format conversion raises.
2. **Immutable defaults** - services hold a frozen
   :class:`~fhir_record_api.config.FhirOptions` and nothing else.
3. **Thin transports** - REST, MCP and CLI only marshal requests and results.

Minimal quick start
-------------------
>>> import asyncio
>>> from fhir_record_api import FhirParserService
>>> service = FhirParserService()
>>> result = asyncio.run(service.parse_json('{"resourceType": "Patient", "id": "p1"}'))
>>> result.success, result.resource_id
(True, 'p1')

FastAPI application instance (for ASGI servers like uvicorn):
>>> from fhir_record_api.app import app  # noqa: F401

Public surface
--------------
Only a curated subset is exported at the package level; transports can be
imported explicitly.
"""

__version__ = "0.1.0"

from .config import EffectiveConfig, FhirOptions, resolve_config
from .exceptions import FhirFormatError, FhirRecordError, UnsupportedCombinationError
from .models import (
    ContentFormat,
    FhirVersion,
    IssueSeverity,
    ParseRequest,
    ParseResult,
    ValidationIssue,
    ValidationRequest,
    ValidationResult,
)
from .parser_service import FhirParserService
from .validation_service import FhirValidationService

__all__ = [
    "ContentFormat",
    "EffectiveConfig",
    "FhirFormatError",
    "FhirOptions",
    "FhirParserService",
    "FhirRecordError",
    "FhirValidationService",
    "FhirVersion",
    "IssueSeverity",
    "ParseRequest",
    "ParseResult",
    "UnsupportedCombinationError",
    "ValidationIssue",
    "ValidationRequest",
    "ValidationResult",
    "resolve_config",
]
