"""Tests for the validation service."""

import pytest

from fhir_record_api import validation_service as validation_module
from fhir_record_api.config import FhirOptions
from fhir_record_api.models import (
    XML_CONTENT_TYPE,
    IssueSeverity,
    ValidationRequest,
)
from fhir_record_api.monitoring import get_monitor
from fhir_record_api.validation_service import FhirValidationService

PROFILE = "http://hl7.org/fhir/us/core/StructureDefinition/us-core-patient"


@pytest.fixture
def service():
    return FhirValidationService(FhirOptions())


class TestValidate:
    @pytest.mark.asyncio
    async def test_valid_patient(self, service, load_fixture):
        result = await service.validate_json(load_fixture("r4/patient.json"))

        assert result.is_valid is True
        assert result.errors == [] and result.warnings == [] and result.information == []
        assert result.resource_type == "Patient"
        assert result.fhir_version == "R4"
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_valid_xml(self, service, load_fixture):
        result = await service.validate_xml(load_fixture("r4/patient.xml"))
        assert result.is_valid is True

    @pytest.mark.asyncio
    async def test_malformed_content_is_one_error(self, service, load_fixture):
        result = await service.validate_json(load_fixture("r4/malformed.json"))

        assert result.is_valid is False
        assert len(result.errors) == 1
        issue = result.errors[0]
        assert issue.severity is IssueSeverity.ERROR
        assert issue.code == "invalid"
        assert issue.message.startswith("Invalid JSON")
        assert result.resource_type is None

    @pytest.mark.asyncio
    async def test_deeply_nested_content_is_one_error(self, service):
        result = await service.validate_json("[" * 100000 + "]" * 100000)

        assert result.is_valid is False
        assert [(i.severity, i.code) for i in result.errors] == [
            (IssueSeverity.ERROR, "invalid")
        ]
        assert result.errors[0].message.startswith("Invalid JSON")

    @pytest.mark.asyncio
    async def test_error_carries_location(self, service, load_fixture):
        result = await service.validate_json(load_fixture("r4/patient_bad_date.json"))
        assert result.errors[0].location == "Patient.birthDate"

    @pytest.mark.asyncio
    async def test_xml_content_type_selects_xml_reader(self, service, load_fixture):
        request = ValidationRequest(
            resource_content=load_fixture("r4/patient.json"),
            content_type=XML_CONTENT_TYPE,
        )
        result = await service.validate(request)
        assert result.is_valid is False
        assert "Invalid XML" in result.errors[0].message


class TestStrictness:
    @pytest.mark.asyncio
    async def test_lenient_by_default(self, service, load_fixture):
        result = await service.validate_json(load_fixture("r4/patient_lenient.json"))
        assert result.is_valid is True

    @pytest.mark.asyncio
    async def test_request_flag_enables_strict(self, service, load_fixture):
        request = ValidationRequest(
            resource_content=load_fixture("r4/patient_lenient.json"),
            strict_validation=True,
        )
        result = await service.validate(request)
        assert result.is_valid is False

    @pytest.mark.asyncio
    async def test_request_cannot_relax_strict_default(self, load_fixture):
        service = FhirValidationService(FhirOptions(strict_validation=True))
        request = ValidationRequest(
            resource_content=load_fixture("r4/patient_lenient.json"),
            strict_validation=False,
        )
        result = await service.validate(request)
        assert result.is_valid is False


class TestVersions:
    @pytest.mark.asyncio
    async def test_override_changes_version(self, service, load_fixture):
        request = ValidationRequest(
            resource_content=load_fixture("r5/transport.json"),
            fhir_version_override="R5",
        )
        result = await service.validate(request)

        assert result.is_valid is True
        assert result.fhir_version == "R5"
        assert service.current_fhir_version == "R4"

    @pytest.mark.asyncio
    async def test_r5_only_type_fails_under_r4(self, service, load_fixture):
        result = await service.validate_json(load_fixture("r5/transport.json"))
        assert result.is_valid is False
        assert result.errors[0].location == "resourceType"

    @pytest.mark.asyncio
    async def test_invalid_override_is_fatal(self, service, load_fixture):
        request = ValidationRequest(
            resource_content=load_fixture("r4/patient.json"),
            fhir_version_override="STU3",
        )
        result = await service.validate(request)

        assert result.is_valid is False
        assert result.errors[0].severity is IssueSeverity.FATAL
        assert result.fhir_version == "R4"


class TestProfiles:
    @pytest.mark.asyncio
    async def test_profile_warns_by_default(self, service, load_fixture):
        result = await service.validate_json(load_fixture("r4/patient.json"), PROFILE)

        assert result.is_valid is True
        assert len(result.warnings) == 1
        assert result.warnings[0].code == "not-supported"
        assert PROFILE in result.warnings[0].message

    @pytest.mark.asyncio
    async def test_profile_ignored_by_policy(self, load_fixture):
        service = FhirValidationService(FhirOptions(unsupported_profile_policy="ignore"))
        result = await service.validate_json(load_fixture("r4/patient.json"), PROFILE)
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_no_profile_warning_for_unparseable_content(self, service, load_fixture):
        result = await service.validate_json(load_fixture("r4/malformed.json"), PROFILE)
        assert result.warnings == []


class TestInternalFailures:
    @pytest.mark.asyncio
    async def test_unexpected_failure_is_fatal(self, service, load_fixture, monkeypatch):
        def broken_binding(*args, **kwargs):
            raise RuntimeError("binding table exploded")

        monkeypatch.setattr(validation_module, "get_binding", broken_binding)
        result = await service.validate_json(load_fixture("r4/patient.json"))

        assert result.is_valid is False
        assert len(result.errors) == 1
        issue = result.errors[0]
        assert issue.severity is IssueSeverity.FATAL
        assert issue.message == "binding table exploded"
        assert "RuntimeError" in issue.details

    @pytest.mark.asyncio
    async def test_records_operation_metrics(self, service, load_fixture):
        await service.validate_json(load_fixture("r4/patient.json"))
        await service.validate_json(load_fixture("r4/malformed.json"))

        operations = get_monitor().get_performance_summary()["operations"]
        assert operations["validate"]["calls"] == 2
        assert operations["validate"]["failures"] == 1
