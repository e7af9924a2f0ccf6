"""Tests for metadata extraction."""

import json

from fhir_record_api.formats import XmlResourceReader
from fhir_record_api.metadata import extract_metadata
from fhir_record_api.models import FhirVersion
from fhir_record_api.resources import build_resource


def _build(data, version=FhirVersion.R4):
    return build_resource(data, version)


class TestExtractMetadata:
    def test_patient_keys_in_order(self, load_fixture):
        patient = _build(json.loads(load_fixture("r4/patient.json")))
        metadata = extract_metadata(patient)

        assert list(metadata) == [
            "id",
            "resourceType",
            "versionId",
            "lastUpdated",
            "name",
            "birthDate",
            "gender",
        ]
        assert metadata["id"] == "example-patient-1"
        assert metadata["versionId"] == "1"
        assert metadata["lastUpdated"] == "2024-01-15T10:30:00Z"
        assert metadata["name"] == "John William Smith"
        assert metadata["birthDate"] == "1990-05-15"
        assert metadata["gender"] == "male"

    def test_observation_code_display(self, load_fixture):
        observation = _build(json.loads(load_fixture("r4/observation.json")))
        metadata = extract_metadata(observation)

        assert metadata["status"] == "final"
        assert metadata["code"] == "Blood pressure panel"
        assert list(metadata)[-2:] == ["status", "code"]

    def test_other_types_get_base_keys_only(self, load_fixture):
        condition = _build(json.loads(load_fixture("r4/condition.json")))
        assert extract_metadata(condition) == {
            "id": "condition-1",
            "resourceType": "Condition",
            "versionId": None,
            "lastUpdated": None,
        }

    def test_absent_values_are_none(self):
        metadata = extract_metadata(_build({"resourceType": "Patient"}))
        assert metadata["id"] is None
        assert metadata["versionId"] is None
        assert metadata["name"] is None
        assert metadata["birthDate"] is None

    def test_empty_name_list(self):
        metadata = extract_metadata(_build({"resourceType": "Patient", "name": []}))
        assert metadata["name"] is None

    def test_name_text_fallback(self, load_fixture):
        patient = XmlResourceReader().read(load_fixture("r5/patient.xml"), FhirVersion.R5)
        assert extract_metadata(patient)["name"] == "Dr. Ada Lovelace"

    def test_name_drops_prefix_and_suffix(self):
        patient = _build(
            {
                "resourceType": "Patient",
                "name": [
                    {
                        "prefix": ["Dr."],
                        "given": ["Ada"],
                        "family": "Lovelace",
                        "suffix": ["PhD"],
                    }
                ],
            }
        )
        assert extract_metadata(patient)["name"] == "Ada Lovelace"

    def test_observation_without_coding(self):
        observation = _build(
            {"resourceType": "Observation", "status": "final", "code": {"text": "BP"}}
        )
        assert extract_metadata(observation)["code"] is None
