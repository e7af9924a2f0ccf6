"""Exception hierarchy for the FHIR record core.

Three conditions are modelled explicitly:

* ``FhirFormatError`` - the submitted content is malformed or violates a
  primitive constraint of the target resource type. This is an expected,
  recoverable outcome and is reported in-band by the parse / validate
  services.
* ``UnsupportedFormatError`` - a caller named a content format other than
  JSON or XML. Transports report it as a client error.
* ``UnsupportedCombinationError`` - the dispatcher has no binding for a
  format/version pair. This is a deployment fault and is raised at startup
  by :func:`fhir_record_api.dispatcher.verify_bindings`.

Anything else escaping the orchestration layer is treated as an internal
fault by the services.
"""

from __future__ import annotations

from typing import Optional


class FhirRecordError(Exception):
    """Base class for all errors raised by this package."""


class FhirFormatError(FhirRecordError):
    """Raised when content cannot be parsed into a resource.

    Attributes:
        message: Human-readable description of the problem.
        location: Structural path of the offending element (e.g.
            ``Patient.birthDate``) when it is known.

    Example:
        >>> err = FhirFormatError("Invalid date", location="Patient.birthDate")
        >>> str(err)
        'Patient.birthDate: Invalid date'
    """

    def __init__(self, message: str, location: Optional[str] = None):
        self.message = message
        self.location = location
        super().__init__(f"{location}: {message}" if location else message)


class UnsupportedCombinationError(FhirRecordError):
    """Raised when no parse/serialize binding exists for a format/version pair."""


class UnsupportedFormatError(FhirRecordError, ValueError):
    """Raised when a content format name is neither JSON nor XML."""
