"""Normalized metadata projection of a parsed resource.

The projection is a flat, ordered mapping. Base keys come first for every
resource type; some types add their own keys after them:

=============  =======================================================
Type           Keys (in order)
=============  =======================================================
any            ``id``, ``resourceType``, ``versionId``, ``lastUpdated``
Patient        ``name``, ``birthDate``, ``gender``
Observation    ``status``, ``code``
=============  =======================================================

Extraction never fails: any value that cannot be reached (absent element,
empty list, unexpected shape) is reported as ``None``.

Example:
        from fhir_record_api.metadata import extract_metadata

        meta = extract_metadata(resource)
        print(meta["resourceType"], meta.get("name"))
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from .resources import Observation, Patient, Resource

Extractor = Callable[[Any], Dict[str, Any]]


def _safe(getter: Callable[[], Any]) -> Any:
    try:
        value = getter()
    except (AttributeError, IndexError, KeyError, TypeError):
        return None
    return value


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


def _patient_name(patient: Patient) -> Optional[str]:
    name = patient.name[0]
    parts = list(name.given or [])
    if name.family:
        parts.append(name.family)
    if parts:
        return " ".join(parts)
    return name.text


def _patient_metadata(patient: Patient) -> Dict[str, Any]:
    return {
        "name": _safe(lambda: _patient_name(patient)),
        "birthDate": _safe(lambda: _as_text(patient.birthDate)),
        "gender": _safe(lambda: patient.gender),
    }


def _observation_metadata(observation: Observation) -> Dict[str, Any]:
    return {
        "status": _safe(lambda: observation.status),
        "code": _safe(lambda: observation.code.coding[0].display),
    }


EXTRACTORS: Dict[type, Extractor] = {
    Patient: _patient_metadata,
    Observation: _observation_metadata,
}


def extract_metadata(resource: Resource) -> Dict[str, Any]:
    """Project a resource onto its metadata keys.

    Args:
        resource: Parsed resource model.

    Returns:
        Ordered dict with the base keys followed by type-specific keys.
    """
    metadata: Dict[str, Any] = {
        "id": _safe(lambda: resource.id),
        "resourceType": _safe(lambda: resource.resourceType),
        "versionId": _safe(lambda: resource.meta.versionId),
        "lastUpdated": _safe(lambda: _as_text(resource.meta.lastUpdated)),
    }
    extractor = EXTRACTORS.get(type(resource))
    if extractor is not None:
        metadata.update(extractor(resource))
    return metadata
