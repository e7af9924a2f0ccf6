"""Validation service: structural validation with severity-bucketed issues.

Validation parses the resource with the resolved version and strictness and
reports problems as issues instead of raising:

* A format error becomes one ERROR issue with code ``invalid``.
* Any other failure becomes one FATAL issue whose details hold the traceback.

Profile conformance is not checked. When a profile is requested, the
``unsupported_profile_policy`` option decides whether a ``not-supported``
WARNING is attached (``warn``) or nothing is reported (``ignore``).

Every result carries ``duration_ms``, measured from before configuration
resolution to just before the result is built.

Example:
        import asyncio
        from fhir_record_api.models import ValidationRequest
        from fhir_record_api.validation_service import FhirValidationService

        service = FhirValidationService()
        result = asyncio.run(service.validate(ValidationRequest(resource_content=text)))
        for issue in result.errors:
            print(issue.location, issue.message)
"""

from __future__ import annotations

import asyncio
import logging
import time
import traceback
from typing import List, Optional

from .config import FhirOptions, resolve_config
from .dispatcher import get_binding
from .exceptions import FhirFormatError
from .issues import partition_issues
from .models import (
    JSON_CONTENT_TYPE,
    XML_CONTENT_TYPE,
    IssueSeverity,
    ValidationIssue,
    ValidationRequest,
    ValidationResult,
)
from .monitoring import get_monitor

logger = logging.getLogger(__name__)


class FhirValidationService:
    """Validate FHIR resources against the structural resource models."""

    def __init__(self, options: Optional[FhirOptions] = None):
        self._options = options or FhirOptions()

    @property
    def options(self) -> FhirOptions:
        return self._options

    @property
    def current_fhir_version(self) -> str:
        """Default FHIR version string, independent of any request."""
        return self._options.version.value

    async def validate(self, request: ValidationRequest) -> ValidationResult:
        """Validate a resource.

        Strictness is the process default OR the request's own flag.

        Args:
            request: Content, content type, optional profile, version and
                strictness overrides.

        Returns:
            Result whose ``is_valid`` is True exactly when no ERROR or FATAL
            issue was found.
        """
        await asyncio.sleep(0)
        started = time.perf_counter()
        version_label = self.current_fhir_version
        resource_type: Optional[str] = None
        issues: List[ValidationIssue] = []

        try:
            effective = resolve_config(
                self._options.defaults(),
                version=request.fhir_version_override,
                strict=self._options.strict_validation
                or bool(request.strict_validation),
            )
            version_label = effective.version.value
            logger.info(
                "Validating %s resource (FHIR %s, strict=%s)",
                request.content_format.value,
                version_label,
                effective.strict,
            )

            binding = get_binding(request.content_format, effective.version)
            try:
                resource = binding.parse(request.resource_content, strict=effective.strict)
            except FhirFormatError as e:
                issues.append(
                    ValidationIssue(
                        severity=IssueSeverity.ERROR,
                        message=e.message,
                        location=e.location,
                        code="invalid",
                    )
                )
            else:
                resource_type = resource.type_name
                if request.profile_url:
                    issues.extend(self._profile_issues(request.profile_url))
        except Exception as e:
            logger.error("Validation failed with an internal error: %s", e)
            issues = [
                ValidationIssue(
                    severity=IssueSeverity.FATAL,
                    message=str(e),
                    details=traceback.format_exc(),
                )
            ]

        buckets = partition_issues(issues)
        elapsed = time.perf_counter() - started
        result = ValidationResult(
            fhir_version=version_label,
            errors=buckets.errors,
            warnings=buckets.warnings,
            information=buckets.information,
            resource_type=resource_type,
            duration_ms=int(elapsed * 1000),
        )
        get_monitor().record_operation("validate", elapsed, success=result.is_valid)
        logger.info(
            "Validation finished: valid=%s errors=%d warnings=%d (%d ms)",
            result.is_valid,
            len(result.errors),
            len(result.warnings),
            result.duration_ms,
        )
        await asyncio.sleep(0)
        return result

    async def validate_json(
        self, json_content: str, profile_url: Optional[str] = None
    ) -> ValidationResult:
        return await self.validate(
            ValidationRequest(
                resource_content=json_content,
                content_type=JSON_CONTENT_TYPE,
                profile_url=profile_url,
            )
        )

    async def validate_xml(
        self, xml_content: str, profile_url: Optional[str] = None
    ) -> ValidationResult:
        return await self.validate(
            ValidationRequest(
                resource_content=xml_content,
                content_type=XML_CONTENT_TYPE,
                profile_url=profile_url,
            )
        )

    def _profile_issues(self, profile_url: str) -> List[ValidationIssue]:
        if self._options.unsupported_profile_policy == "ignore":
            logger.debug("Profile %s requested; profile checks are skipped", profile_url)
            return []
        return [
            ValidationIssue(
                severity=IssueSeverity.WARNING,
                message=(
                    f"Profile validation is not supported; "
                    f"resource was not checked against {profile_url}"
                ),
                code="not-supported",
            )
        ]
