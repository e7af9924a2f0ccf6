"""Severity partitioning of validation issues."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List

from .models import IssueSeverity, ValidationIssue


@dataclass
class IssueBuckets:
    """Issues grouped by severity, each list in discovery order."""

    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    information: List[ValidationIssue] = field(default_factory=list)


def partition_issues(issues: Iterable[ValidationIssue]) -> IssueBuckets:
    """Split issues into errors (ERROR and FATAL), warnings and information.

    Example:
        >>> buckets = partition_issues(
        ...     [ValidationIssue(IssueSeverity.FATAL, "boom")]
        ... )
        >>> len(buckets.errors)
        1
    """
    buckets = IssueBuckets()
    for issue in issues:
        if issue.severity >= IssueSeverity.ERROR:
            buckets.errors.append(issue)
        elif issue.severity == IssueSeverity.WARNING:
            buckets.warnings.append(issue)
        else:
            buckets.information.append(issue)
    return buckets
