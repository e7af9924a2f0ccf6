"""Resource document model backing the in-process FHIR engine.

Resources are pydantic models. ``Patient`` and ``Observation`` are typed
in detail and ``Bundle`` has a typed entry list. Every other registered
resource type is held by the generic :class:`DomainResource`, which keeps its
content as extra fields so it still round-trips between encodings.

Leniency is decided per call rather than per model:

* Lenient (default): unknown elements are kept as extras, coercible
  primitives are coerced by pydantic's lax mode (``"true"`` -> ``True``)
  and codes outside a required value set are accepted.
* Strict: pydantic strict mode rejects coercions, and
  :func:`build_resource` additionally walks the tree to reject unknown
  elements, elements the active version does not define and codes outside
  the required value sets for the active version.

Primitive format violations (a non-date string in a date element, a
non-numeric decimal, a malformed id) are rejected in both modes.

Example:
        from fhir_record_api.models import FhirVersion
        from fhir_record_api.resources import build_resource

        patient = build_resource(
                {"resourceType": "Patient", "id": "p1", "birthDate": "1990-05-15"},
                FhirVersion.R4,
        )
        print(patient.birthDate)
"""

from __future__ import annotations

import json
import re
from typing import Annotated, Any, Dict, FrozenSet, List, Optional, Tuple, Type, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, ValidationError

from .exceptions import FhirFormatError
from .models import FhirVersion

_ID_RE = re.compile(r"^[A-Za-z0-9\-.]{1,64}$")
_DATE_RE = re.compile(r"^\d{4}(-(0[1-9]|1[0-2])(-(0[1-9]|[12]\d|3[01]))?)?$")
_DATETIME_RE = re.compile(
    r"^\d{4}(-(0[1-9]|1[0-2])(-(0[1-9]|[12]\d|3[01])"
    r"(T([01]\d|2[0-3]):[0-5]\d:([0-5]\d|60)(\.\d{1,9})?"
    r"(Z|[+-]((0\d|1[0-3]):[0-5]\d|14:00)))?)?)?$"
)
_INSTANT_RE = re.compile(
    r"^\d{4}-(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])"
    r"T([01]\d|2[0-3]):[0-5]\d:([0-5]\d|60)(\.\d{1,9})?"
    r"(Z|[+-]((0\d|1[0-3]):[0-5]\d|14:00))$"
)
_CODE_RE = re.compile(r"^[^\s]+( [^\s]+)*$")
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d:([0-5]\d|60)(\.\d{1,9})?$")


def _pattern_check(pattern: "re.Pattern[str]", kind: str):
    def check(value: str) -> str:
        if not pattern.match(value):
            raise ValueError(f"'{value}' is not a valid {kind}")
        return value

    return check


FhirId = Annotated[str, AfterValidator(_pattern_check(_ID_RE, "id"))]
FhirDate = Annotated[str, AfterValidator(_pattern_check(_DATE_RE, "date"))]
FhirDateTime = Annotated[str, AfterValidator(_pattern_check(_DATETIME_RE, "dateTime"))]
FhirInstant = Annotated[str, AfterValidator(_pattern_check(_INSTANT_RE, "instant"))]
FhirCode = Annotated[str, AfterValidator(_pattern_check(_CODE_RE, "code"))]
FhirTime = Annotated[str, AfterValidator(_pattern_check(_TIME_RE, "time"))]
FhirDecimal = Union[int, float]


class FhirModel(BaseModel):
    """Base for all resource and datatype models; unknown elements are kept."""

    model_config = ConfigDict(extra="allow")


class Element(FhirModel):
    """Base of every datatype: an optional element id and extensions."""

    id: Optional[str] = None
    extension: Optional[List[Dict[str, Any]]] = None


class BackboneElement(Element):
    modifierExtension: Optional[List[Dict[str, Any]]] = None


class Coding(Element):
    system: Optional[str] = None
    version: Optional[str] = None
    code: Optional[FhirCode] = None
    display: Optional[str] = None
    userSelected: Optional[bool] = None


class CodeableConcept(Element):
    coding: Optional[List[Coding]] = None
    text: Optional[str] = None


class Period(Element):
    start: Optional[FhirDateTime] = None
    end: Optional[FhirDateTime] = None


class Identifier(Element):
    use: Optional[FhirCode] = None
    type: Optional[CodeableConcept] = None
    system: Optional[str] = None
    value: Optional[str] = None
    period: Optional[Period] = None


class HumanName(Element):
    use: Optional[FhirCode] = None
    text: Optional[str] = None
    family: Optional[str] = None
    given: Optional[List[str]] = None
    prefix: Optional[List[str]] = None
    suffix: Optional[List[str]] = None
    period: Optional[Period] = None


class ContactPoint(Element):
    system: Optional[FhirCode] = None
    value: Optional[str] = None
    use: Optional[FhirCode] = None
    rank: Optional[int] = None
    period: Optional[Period] = None


class Address(Element):
    use: Optional[FhirCode] = None
    type: Optional[FhirCode] = None
    text: Optional[str] = None
    line: Optional[List[str]] = None
    city: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None
    postalCode: Optional[str] = None
    country: Optional[str] = None
    period: Optional[Period] = None


class Reference(Element):
    reference: Optional[str] = None
    type: Optional[str] = None
    identifier: Optional[Identifier] = None
    display: Optional[str] = None


class Quantity(Element):
    value: Optional[FhirDecimal] = None
    comparator: Optional[FhirCode] = None
    unit: Optional[str] = None
    system: Optional[str] = None
    code: Optional[FhirCode] = None


class Range(Element):
    low: Optional[Quantity] = None
    high: Optional[Quantity] = None


class Ratio(Element):
    numerator: Optional[Quantity] = None
    denominator: Optional[Quantity] = None


class SampledData(Element):
    origin: Optional[Quantity] = None
    period: Optional[FhirDecimal] = None
    interval: Optional[FhirDecimal] = None
    intervalUnit: Optional[FhirCode] = None
    factor: Optional[FhirDecimal] = None
    lowerLimit: Optional[FhirDecimal] = None
    upperLimit: Optional[FhirDecimal] = None
    dimensions: Optional[int] = None
    codeMap: Optional[str] = None
    offsets: Optional[str] = None
    data: Optional[str] = None


class Attachment(Element):
    contentType: Optional[FhirCode] = None
    language: Optional[FhirCode] = None
    data: Optional[str] = None
    url: Optional[str] = None
    # unsignedInt in R4, integer64 (a JSON string) in R5
    size: Optional[Union[int, str]] = None
    hash: Optional[str] = None
    title: Optional[str] = None
    creation: Optional[FhirDateTime] = None
    height: Optional[int] = None
    width: Optional[int] = None
    frames: Optional[int] = None
    duration: Optional[FhirDecimal] = None
    pages: Optional[int] = None


class Annotation(Element):
    authorReference: Optional[Reference] = None
    authorString: Optional[str] = None
    time: Optional[FhirDateTime] = None
    text: Optional[str] = None


class Meta(Element):
    versionId: Optional[FhirId] = None
    lastUpdated: Optional[FhirInstant] = None
    source: Optional[str] = None
    profile: Optional[List[str]] = None
    security: Optional[List[Coding]] = None
    tag: Optional[List[Coding]] = None


class Narrative(Element):
    status: Optional[FhirCode] = None
    div: Optional[str] = None


class Resource(FhirModel):
    resourceType: str
    id: Optional[FhirId] = None
    meta: Optional[Meta] = None
    implicitRules: Optional[str] = None
    language: Optional[FhirCode] = None

    @property
    def type_name(self) -> str:
        return self.resourceType

    @property
    def version_id(self) -> Optional[str]:
        return self.meta.versionId if self.meta else None


class DomainResource(Resource):
    text: Optional[Narrative] = None
    contained: Optional[List[Dict[str, Any]]] = None
    extension: Optional[List[Dict[str, Any]]] = None
    modifierExtension: Optional[List[Dict[str, Any]]] = None


class PatientContact(BackboneElement):
    relationship: Optional[List[CodeableConcept]] = None
    name: Optional[HumanName] = None
    telecom: Optional[List[ContactPoint]] = None
    address: Optional[Address] = None
    gender: Optional[FhirCode] = None
    organization: Optional[Reference] = None
    period: Optional[Period] = None


class PatientCommunication(BackboneElement):
    language: Optional[CodeableConcept] = None
    preferred: Optional[bool] = None


class PatientLink(BackboneElement):
    other: Optional[Reference] = None
    type: Optional[FhirCode] = None


class Patient(DomainResource):
    identifier: Optional[List[Identifier]] = None
    active: Optional[bool] = None
    name: Optional[List[HumanName]] = None
    telecom: Optional[List[ContactPoint]] = None
    gender: Optional[FhirCode] = None
    birthDate: Optional[FhirDate] = None
    deceasedBoolean: Optional[bool] = None
    deceasedDateTime: Optional[FhirDateTime] = None
    address: Optional[List[Address]] = None
    maritalStatus: Optional[CodeableConcept] = None
    multipleBirthBoolean: Optional[bool] = None
    multipleBirthInteger: Optional[int] = None
    photo: Optional[List[Attachment]] = None
    contact: Optional[List[PatientContact]] = None
    communication: Optional[List[PatientCommunication]] = None
    generalPractitioner: Optional[List[Reference]] = None
    managingOrganization: Optional[Reference] = None
    link: Optional[List[PatientLink]] = None


class ObservationReferenceRange(BackboneElement):
    low: Optional[Quantity] = None
    high: Optional[Quantity] = None
    normalValue: Optional[CodeableConcept] = None
    type: Optional[CodeableConcept] = None
    appliesTo: Optional[List[CodeableConcept]] = None
    age: Optional[Range] = None
    text: Optional[str] = None


class ObservationTriggeredBy(BackboneElement):
    observation: Optional[Reference] = None
    type: Optional[FhirCode] = None
    reason: Optional[str] = None


class ObservationComponent(BackboneElement):
    code: Optional[CodeableConcept] = None
    valueQuantity: Optional[Quantity] = None
    valueCodeableConcept: Optional[CodeableConcept] = None
    valueString: Optional[str] = None
    valueBoolean: Optional[bool] = None
    valueInteger: Optional[int] = None
    valueRange: Optional[Range] = None
    valueRatio: Optional[Ratio] = None
    valueSampledData: Optional[SampledData] = None
    valueTime: Optional[FhirTime] = None
    valueDateTime: Optional[FhirDateTime] = None
    valuePeriod: Optional[Period] = None
    valueAttachment: Optional[Attachment] = None
    valueReference: Optional[Reference] = None
    dataAbsentReason: Optional[CodeableConcept] = None
    interpretation: Optional[List[CodeableConcept]] = None
    referenceRange: Optional[List[ObservationReferenceRange]] = None


class Observation(DomainResource):
    identifier: Optional[List[Identifier]] = None
    instantiatesCanonical: Optional[str] = None
    instantiatesReference: Optional[Reference] = None
    basedOn: Optional[List[Reference]] = None
    triggeredBy: Optional[List[ObservationTriggeredBy]] = None
    partOf: Optional[List[Reference]] = None
    status: Optional[FhirCode] = None
    category: Optional[List[CodeableConcept]] = None
    code: Optional[CodeableConcept] = None
    subject: Optional[Reference] = None
    focus: Optional[List[Reference]] = None
    encounter: Optional[Reference] = None
    effectiveDateTime: Optional[FhirDateTime] = None
    effectivePeriod: Optional[Period] = None
    effectiveTiming: Optional[Dict[str, Any]] = None
    effectiveInstant: Optional[FhirInstant] = None
    issued: Optional[FhirInstant] = None
    performer: Optional[List[Reference]] = None
    valueQuantity: Optional[Quantity] = None
    valueCodeableConcept: Optional[CodeableConcept] = None
    valueString: Optional[str] = None
    valueBoolean: Optional[bool] = None
    valueInteger: Optional[int] = None
    valueRange: Optional[Range] = None
    valueRatio: Optional[Ratio] = None
    valueSampledData: Optional[SampledData] = None
    valueTime: Optional[FhirTime] = None
    valueDateTime: Optional[FhirDateTime] = None
    valuePeriod: Optional[Period] = None
    valueAttachment: Optional[Attachment] = None
    valueReference: Optional[Reference] = None
    dataAbsentReason: Optional[CodeableConcept] = None
    interpretation: Optional[List[CodeableConcept]] = None
    note: Optional[List[Annotation]] = None
    bodySite: Optional[CodeableConcept] = None
    bodyStructure: Optional[Reference] = None
    method: Optional[CodeableConcept] = None
    specimen: Optional[Reference] = None
    device: Optional[Reference] = None
    referenceRange: Optional[List[ObservationReferenceRange]] = None
    hasMember: Optional[List[Reference]] = None
    derivedFrom: Optional[List[Reference]] = None
    component: Optional[List[ObservationComponent]] = None


class BundleEntry(BackboneElement):
    link: Optional[List[Dict[str, Any]]] = None
    fullUrl: Optional[str] = None
    resource: Optional[Dict[str, Any]] = None
    search: Optional[Dict[str, Any]] = None
    request: Optional[Dict[str, Any]] = None
    response: Optional[Dict[str, Any]] = None


class Bundle(Resource):
    """Container resource; entries keep their resources as plain objects."""

    identifier: Optional[Identifier] = None
    type: Optional[FhirCode] = None
    timestamp: Optional[FhirInstant] = None
    total: Optional[int] = None
    link: Optional[List[Dict[str, Any]]] = None
    entry: Optional[List[BundleEntry]] = None
    signature: Optional[Dict[str, Any]] = None
    issues: Optional[Dict[str, Any]] = None


# Models are shared by both releases; these declared elements exist in one only.
VERSION_EXCLUDED_ELEMENTS: Dict[FhirVersion, FrozenSet[Tuple[str, str]]] = {
    FhirVersion.R4: frozenset(
        {
            ("Observation", "instantiatesCanonical"),
            ("Observation", "instantiatesReference"),
            ("Observation", "triggeredBy"),
            ("Observation", "bodyStructure"),
            ("Observation", "valueAttachment"),
            ("Observation", "valueReference"),
            ("ObservationComponent", "valueAttachment"),
            ("ObservationComponent", "valueReference"),
            ("ObservationReferenceRange", "normalValue"),
            ("SampledData", "interval"),
            ("SampledData", "intervalUnit"),
            ("SampledData", "codeMap"),
            ("SampledData", "offsets"),
            ("Attachment", "height"),
            ("Attachment", "width"),
            ("Attachment", "frames"),
            ("Attachment", "duration"),
            ("Attachment", "pages"),
            ("Bundle", "issues"),
        }
    ),
    FhirVersion.R5: frozenset({("SampledData", "period")}),
}


RESOURCE_MODELS: Dict[str, Type[Resource]] = {
    "Patient": Patient,
    "Observation": Observation,
    "Bundle": Bundle,
}

_COMMON_RESOURCE_TYPES = frozenset(
    {
        "Account", "AllergyIntolerance", "Appointment", "AuditEvent", "Basic",
        "Binary", "Bundle", "CapabilityStatement", "CarePlan", "CareTeam",
        "Claim", "ClinicalImpression", "CodeSystem", "Communication",
        "Composition", "ConceptMap", "Condition", "Consent", "Coverage",
        "Device", "DiagnosticReport", "DocumentReference", "Encounter",
        "Endpoint", "EpisodeOfCare", "FamilyMemberHistory", "Flag", "Goal",
        "Group", "HealthcareService", "ImagingStudy", "Immunization",
        "Library", "List", "Location", "Measure", "Medication",
        "MedicationAdministration", "MedicationDispense", "MedicationRequest",
        "MedicationStatement", "NutritionOrder", "Observation",
        "OperationOutcome", "Organization", "Parameters", "Patient",
        "Practitioner", "PractitionerRole", "Procedure", "Provenance",
        "Questionnaire", "QuestionnaireResponse", "RelatedPerson",
        "RiskAssessment", "Schedule", "SearchParameter", "ServiceRequest",
        "Slot", "Specimen", "StructureDefinition", "Subscription", "Task",
        "ValueSet",
    }
)

RESOURCE_TYPES: Dict[FhirVersion, FrozenSet[str]] = {
    FhirVersion.R4: _COMMON_RESOURCE_TYPES
    | {
        "CatalogEntry", "DeviceUseStatement", "DocumentManifest",
        "EffectEvidenceSynthesis", "Media", "MedicinalProduct",
        "MedicinalProductAuthorization", "RequestGroup",
        "RiskEvidenceSynthesis", "SubstanceSpecification",
    },
    FhirVersion.R5: _COMMON_RESOURCE_TYPES
    | {
        "ActorDefinition", "ArtifactAssessment", "ClinicalUseDefinition",
        "DeviceDispense", "DeviceUsage", "EncounterHistory", "FormularyItem",
        "GenomicStudy", "ImagingSelection", "InventoryItem", "InventoryReport",
        "NutritionIntake", "NutritionProduct", "Permission",
        "RequestOrchestration", "Requirements", "SubscriptionStatus",
        "SubscriptionTopic", "TestPlan", "Transport",
    },
}

_OBSERVATION_STATUS_R4 = frozenset(
    {
        "registered", "preliminary", "final", "amended", "corrected",
        "cancelled", "entered-in-error", "unknown",
    }
)

_SHARED_VALUE_SETS: Dict[Tuple[str, str], FrozenSet[str]] = {
    ("Patient", "gender"): frozenset({"male", "female", "other", "unknown"}),
    ("PatientContact", "gender"): frozenset({"male", "female", "other", "unknown"}),
    ("HumanName", "use"): frozenset(
        {"usual", "official", "temp", "nickname", "anonymous", "old", "maiden"}
    ),
    ("ContactPoint", "system"): frozenset(
        {"phone", "fax", "email", "pager", "url", "sms", "other"}
    ),
    ("ContactPoint", "use"): frozenset({"home", "work", "temp", "old", "mobile"}),
    ("Address", "use"): frozenset({"home", "work", "temp", "old", "billing"}),
    ("Address", "type"): frozenset({"postal", "physical", "both"}),
    ("Identifier", "use"): frozenset(
        {"usual", "official", "temp", "secondary", "old"}
    ),
    ("Narrative", "status"): frozenset(
        {"generated", "extensions", "additional", "empty"}
    ),
    ("PatientLink", "type"): frozenset({"replaced-by", "replaces", "refer", "seealso"}),
    ("Quantity", "comparator"): frozenset({"<", "<=", ">=", ">"}),
}

_BUNDLE_TYPE_R4 = frozenset(
    {
        "document", "message", "transaction", "transaction-response", "batch",
        "batch-response", "history", "searchset", "collection",
    }
)

# Required code bindings checked in strict mode, keyed by (model, element).
REQUIRED_VALUE_SETS: Dict[FhirVersion, Dict[Tuple[str, str], FrozenSet[str]]] = {
    FhirVersion.R4: {
        **_SHARED_VALUE_SETS,
        ("Observation", "status"): _OBSERVATION_STATUS_R4,
        ("Bundle", "type"): _BUNDLE_TYPE_R4,
    },
    FhirVersion.R5: {
        **_SHARED_VALUE_SETS,
        ("Observation", "status"): _OBSERVATION_STATUS_R4
        | {"specimen-in-process", "appended", "cannot-be-obtained"},
        ("Quantity", "comparator"): frozenset({"<", "<=", ">=", ">", "ad"}),
        ("Bundle", "type"): _BUNDLE_TYPE_R4 | {"subscription-notification"},
        ("ObservationTriggeredBy", "type"): frozenset({"reflex", "repeat", "re-run"}),
    },
}


def is_known_resource_type(resource_type: str, version: FhirVersion) -> bool:
    return resource_type in RESOURCE_TYPES[version]


def model_for(resource_type: str) -> Type[Resource]:
    """Return the model class for a resource type (generic when not typed)."""
    return RESOURCE_MODELS.get(resource_type, DomainResource)


def build_resource(
    data: Dict[str, Any], version: FhirVersion, strict: bool = False
) -> Resource:
    """Validate a decoded document into a resource model.

    Args:
        data: Decoded document (JSON object or XML converted to a dict).
        version: FHIR version whose type registry and value sets apply.
        strict: Reject unknown elements, coercions and out-of-set codes.

    Returns:
        The validated resource model.

    Raises:
        FhirFormatError: If the document cannot be accepted.
    """
    if not isinstance(data, dict):
        raise FhirFormatError("Resource content must be an object")

    resource_type = data.get("resourceType")
    if not isinstance(resource_type, str) or not resource_type:
        raise FhirFormatError("Resource is missing the 'resourceType' property")
    if not is_known_resource_type(resource_type, version):
        raise FhirFormatError(
            f"Unknown resource type '{resource_type}' for FHIR {version.value}",
            location="resourceType",
        )

    model_cls = model_for(resource_type)
    try:
        if strict:
            # JSON-mode validation accepts nested objects while refusing coercions.
            resource = model_cls.model_validate_json(json.dumps(data), strict=True)
        else:
            resource = model_cls.model_validate(data)
    except ValidationError as exc:
        raise _format_validation_error(exc, resource_type) from exc

    if strict:
        _check_strict(
            resource,
            resource_type,
            REQUIRED_VALUE_SETS[version],
            VERSION_EXCLUDED_ELEMENTS[version],
        )
    return resource


def _format_validation_error(exc: ValidationError, resource_type: str) -> FhirFormatError:
    errors = exc.errors()
    first = errors[0]
    location = _join_path(resource_type, first.get("loc", ()))
    message = first.get("msg", "Invalid value")
    if len(errors) > 1:
        message = f"{message} (and {len(errors) - 1} more problem(s))"
    return FhirFormatError(message, location=location)


def _join_path(root: str, loc: Any) -> str:
    path = root
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}"
    return path


def _check_strict(
    model: FhirModel,
    path: str,
    value_sets: Dict[Tuple[str, str], FrozenSet[str]],
    excluded: FrozenSet[Tuple[str, str]] = frozenset(),
) -> None:
    """Reject unknown elements and out-of-set required codes, depth first.

    Elements declared on a model but absent from the requested FHIR version
    are listed in *excluded* and treated as unknown.

    Resources held by the generic :class:`DomainResource` keep all their
    content as extras, so only their declared elements are checked.
    """
    if model.model_extra and type(model) is not DomainResource:
        name = next(iter(model.model_extra))
        raise FhirFormatError(f"Unknown element '{name}'", location=f"{path}.{name}")

    owner = type(model).__name__
    for name in type(model).model_fields:
        value = getattr(model, name)
        if value is None:
            continue
        if (owner, name) in excluded:
            raise FhirFormatError(f"Unknown element '{name}'", location=f"{path}.{name}")
        allowed = value_sets.get((owner, name))
        if allowed is not None and value not in allowed:
            raise FhirFormatError(
                f"'{value}' is not a valid code for {owner}.{name}",
                location=f"{path}.{name}",
            )
        if isinstance(value, FhirModel):
            _check_strict(value, f"{path}.{name}", value_sets, excluded)
        elif isinstance(value, list):
            for index, item in enumerate(value):
                if isinstance(item, FhirModel):
                    _check_strict(item, f"{path}.{name}[{index}]", value_sets, excluded)
