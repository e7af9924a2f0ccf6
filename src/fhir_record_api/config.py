"""Process-wide FHIR options and per-request effective configuration.

``FhirOptions`` holds the defaults read once at startup (usually from the
environment). Each request derives an immutable ``EffectiveConfig`` from those
defaults and its own optional overrides via :func:`resolve_config`.

Environment variables:
    FHIR_VERSION             ``R4`` (default) or ``R5``, case-insensitive.
    FHIR_VALIDATE_ON_PARSE   ``true`` (default) / ``false``.
    FHIR_STRICT_VALIDATION   ``true`` / ``false`` (default).
    FHIR_TIMEOUT_SECONDS     Integer, default 30. Read but not enforced.
    FHIR_SERVER_BASE_URL     Optional base URL of an external FHIR server.
    FHIR_PROFILE_POLICY      ``warn`` (default) or ``ignore``; how validation
                             reports a requested profile it cannot check.

Example:
        from fhir_record_api.config import FhirOptions, resolve_config

        options = FhirOptions.from_env()
        effective = resolve_config(options.defaults(), version="R5")
        print(effective.version, effective.strict)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from .models import FhirVersion

PROFILE_POLICIES = ("warn", "ignore")


@dataclass(frozen=True)
class EffectiveConfig:
    """Configuration in force for a single request."""

    version: FhirVersion
    strict: bool


@dataclass(frozen=True)
class FhirOptions:
    """Process defaults for FHIR processing.

    Attributes:
        version: Default FHIR version for requests without an override.
        validate_on_parse: Whether parsing is expected to validate. Exposed to
            clients; the parse path does not change behaviour on it.
        strict_validation: Default strictness for parsing and validation.
        timeout_seconds: Operation timeout. Not wired into the call path.
        server_base_url: External FHIR server base URL, if any.
        unsupported_profile_policy: ``warn`` or ``ignore``.
    """

    version: FhirVersion = FhirVersion.R4
    validate_on_parse: bool = True
    strict_validation: bool = False
    timeout_seconds: int = 30
    server_base_url: Optional[str] = None
    unsupported_profile_policy: str = "warn"

    def __post_init__(self) -> None:
        object.__setattr__(self, "version", FhirVersion.parse(self.version))
        if self.unsupported_profile_policy not in PROFILE_POLICIES:
            raise ValueError(
                f"Unsupported profile policy: {self.unsupported_profile_policy}"
            )

    @classmethod
    def from_env(cls) -> "FhirOptions":
        """Create options from environment variables."""
        return cls(
            version=os.getenv("FHIR_VERSION", "R4"),
            validate_on_parse=os.getenv("FHIR_VALIDATE_ON_PARSE", "true").lower()
            == "true",
            strict_validation=os.getenv("FHIR_STRICT_VALIDATION", "false").lower()
            == "true",
            timeout_seconds=int(os.getenv("FHIR_TIMEOUT_SECONDS", "30")),
            server_base_url=os.getenv("FHIR_SERVER_BASE_URL") or None,
            unsupported_profile_policy=os.getenv("FHIR_PROFILE_POLICY", "warn")
            .strip()
            .lower(),
        )

    @property
    def is_r4(self) -> bool:
        return self.version is FhirVersion.R4

    @property
    def is_r5(self) -> bool:
        return self.version is FhirVersion.R5

    def defaults(self) -> EffectiveConfig:
        """Return the default effective configuration."""
        return EffectiveConfig(version=self.version, strict=self.strict_validation)

    def with_overrides(self, **changes: Any) -> "FhirOptions":
        """Return a copy with some fields replaced (used by tests and the CLI)."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fhir_version": self.version.value,
            "validate_on_parse": self.validate_on_parse,
            "strict_validation": self.strict_validation,
            "timeout_seconds": self.timeout_seconds,
            "server_base_url": self.server_base_url,
            "unsupported_profile_policy": self.unsupported_profile_policy,
            "supported_versions": [v.value for v in FhirVersion],
        }


def resolve_config(
    defaults: EffectiveConfig,
    version: "Optional[str | FhirVersion]" = None,
    strict: Optional[bool] = None,
) -> EffectiveConfig:
    """Merge per-request overrides onto the defaults.

    A present override replaces the default field; an absent (``None``) one
    keeps it.

    Raises:
        ValueError: If ``version`` names an unsupported release.

    Example:
        >>> base = EffectiveConfig(FhirVersion.R4, strict=False)
        >>> resolve_config(base, version="R5").version
        <FhirVersion.R5: 'R5'>
        >>> resolve_config(base).version
        <FhirVersion.R4: 'R4'>
    """
    return EffectiveConfig(
        version=defaults.version if version is None else FhirVersion.parse(version),
        strict=defaults.strict if strict is None else strict,
    )
