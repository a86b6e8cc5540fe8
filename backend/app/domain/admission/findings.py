"""
Findings and verdicts produced by trip admission checks.

Every check returns a list of Finding objects; the engine never raises on
warnings, it only aggregates them.
"""

import enum
from typing import Iterable, List

from pydantic import BaseModel


class FindingSeverity(str, enum.Enum):
    """ERROR blocks admission, WARNING is informational."""
    ERROR = "error"
    WARNING = "warning"


class AdmissionVerdict(str, enum.Enum):
    BLOCKED = "blocked"
    ADMISSIBLE_WITH_WARNINGS = "admissible_with_warnings"
    ADMISSIBLE = "admissible"


class Finding(BaseModel):
    """
    One validation result.

    field: the candidate field the finding is about (route, vehicle,
        driver, tracking, shipments, ...)
    code: stable machine-readable tag
    message: human-readable text, surfaced verbatim to the operator
    """
    severity: FindingSeverity
    field: str
    code: str
    message: str

    model_config = {"frozen": True}

    @property
    def is_blocking(self) -> bool:
        return self.severity == FindingSeverity.ERROR

    @classmethod
    def error(cls, field: str, code: str, message: str) -> "Finding":
        return cls(severity=FindingSeverity.ERROR, field=field, code=code, message=message)

    @classmethod
    def warning(cls, field: str, code: str, message: str) -> "Finding":
        return cls(severity=FindingSeverity.WARNING, field=field, code=code, message=message)


def classify(findings: Iterable[Finding]) -> AdmissionVerdict:
    """Collapse a set of findings into a single verdict."""
    findings = list(findings)
    if any(f.is_blocking for f in findings):
        return AdmissionVerdict.BLOCKED
    if findings:
        return AdmissionVerdict.ADMISSIBLE_WITH_WARNINGS
    return AdmissionVerdict.ADMISSIBLE


def errors_of(findings: Iterable[Finding]) -> List[Finding]:
    return [f for f in findings if f.severity == FindingSeverity.ERROR]


def warnings_of(findings: Iterable[Finding]) -> List[Finding]:
    return [f for f in findings if f.severity == FindingSeverity.WARNING]
