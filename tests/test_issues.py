"""Tests for severity partitioning."""

from fhir_record_api.issues import partition_issues
from fhir_record_api.models import IssueSeverity, ValidationIssue, ValidationResult


def test_partition_keeps_discovery_order():
    issues = [
        ValidationIssue(IssueSeverity.WARNING, "w1"),
        ValidationIssue(IssueSeverity.FATAL, "f1"),
        ValidationIssue(IssueSeverity.INFORMATION, "i1"),
        ValidationIssue(IssueSeverity.ERROR, "e1"),
        ValidationIssue(IssueSeverity.WARNING, "w2"),
    ]
    buckets = partition_issues(issues)

    assert [i.message for i in buckets.errors] == ["f1", "e1"]
    assert [i.message for i in buckets.warnings] == ["w1", "w2"]
    assert [i.message for i in buckets.information] == ["i1"]


def test_partition_of_nothing():
    buckets = partition_issues([])
    assert buckets.errors == [] and buckets.warnings == [] and buckets.information == []


def test_warnings_do_not_affect_validity():
    buckets = partition_issues([ValidationIssue(IssueSeverity.WARNING, "careful")])
    result = ValidationResult(
        fhir_version="R4",
        errors=buckets.errors,
        warnings=buckets.warnings,
        information=buckets.information,
    )
    assert result.is_valid is True
    assert result.to_dict()["warnings"][0]["severity"] == "warning"


def test_issue_to_dict():
    issue = ValidationIssue(
        IssueSeverity.ERROR, "bad", location="Patient.birthDate", code="invalid"
    )
    assert issue.to_dict() == {
        "severity": "error",
        "message": "bad",
        "location": "Patient.birthDate",
        "code": "invalid",
        "details": None,
    }
