"""
Compliance checking service.

Classifies vehicle and driver document expiry dates against a reference
day. Pure functions of their input; no database access.
"""

import enum
from datetime import date, datetime
from typing import List, Optional, Union

from pydantic import BaseModel

from backend.app.core.config import TrackingConfig
from backend.app.domain.admission.findings import Finding


class DocumentState(str, enum.Enum):
    VALID = "valid"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    MISSING = "missing"


# (attribute, label, mandatory)
VEHICLE_DOCUMENTS = (
    ("rc_expiry_date", "RC", True),
    ("insurance_expiry_date", "insurance", True),
    ("permit_expiry_date", "permit", False),
    ("fitness_expiry_date", "fitness certificate", False),
    ("puc_expiry_date", "PUC", False),
)

DRIVER_DOCUMENTS = (
    ("license_expiry_date", "license", True),
)

DRIVER_VERIFICATIONS = (
    ("aadhaar_verified", "Aadhaar"),
    ("pan_verified", "PAN"),
)


class DocumentCheck(BaseModel):
    """Classification of a single document."""
    subject: str  # vehicle or driver
    document: str
    label: str
    mandatory: bool
    expiry_date: Optional[date] = None
    state: DocumentState
    days_left: Optional[int] = None


class ComplianceReport(BaseModel):
    documents: List[DocumentCheck] = []
    findings: List[Finding] = []


def normalize_reference_date(reference: Union[date, datetime, None] = None) -> date:
    """Reduce "now" (or any timestamp) to its calendar day."""
    if reference is None:
        return date.today()
    if isinstance(reference, datetime):
        return reference.date()
    return reference


def classify_expiry(expiry: Optional[date], reference: date, warning_days: int) -> tuple:
    """
    Classify an expiry date.

    Returns:
        (state, days_left) where days_left is None for a missing date
    """
    if expiry is None:
        return DocumentState.MISSING, None
    if isinstance(expiry, datetime):
        expiry = expiry.date()

    days_left = (expiry - reference).days
    if days_left < 0:
        return DocumentState.EXPIRED, days_left
    if days_left <= warning_days:
        return DocumentState.EXPIRING, days_left
    return DocumentState.VALID, days_left


def _finding_for(check: DocumentCheck, config: TrackingConfig) -> Optional[Finding]:
    subject = check.subject.capitalize()
    code = f"{check.subject}_{check.document}_{check.state.value}"

    if check.state == DocumentState.EXPIRED:
        message = f"{subject} {check.label} has expired"
        if check.mandatory:
            return Finding.error(check.subject, code, message)
        return Finding.warning(check.subject, code, message)

    if check.state == DocumentState.EXPIRING:
        if check.days_left == 0:
            message = f"{subject} {check.label} expires today"
        else:
            message = f"{subject} {check.label} expires in {check.days_left} days"
        return Finding.warning(check.subject, code, message)

    if check.state == DocumentState.MISSING:
        message = f"{subject} {check.label} details not uploaded"
        if check.mandatory and config.block_on_missing_mandatory_documents:
            return Finding.error(check.subject, code, message)
        return Finding.warning(check.subject, code, message)

    return None


def _check_documents(record, subject: str, documents, reference: date, config: TrackingConfig) -> ComplianceReport:
    report = ComplianceReport()
    for attribute, label, mandatory in documents:
        expiry = getattr(record, attribute, None)
        state, days_left = classify_expiry(expiry, reference, config.expiry_warning_days)
        check = DocumentCheck(
            subject=subject,
            document=attribute.replace("_expiry_date", ""),
            label=label,
            mandatory=mandatory,
            expiry_date=expiry,
            state=state,
            days_left=days_left,
        )
        report.documents.append(check)
        finding = _finding_for(check, config)
        if finding:
            report.findings.append(finding)
    return report


def check_vehicle_compliance(
    vehicle,
    reference_date: Union[date, datetime, None] = None,
    config: TrackingConfig = None,
) -> ComplianceReport:
    """Classify the five vehicle documents (RC, insurance, permit, fitness, PUC)."""
    config = config or TrackingConfig()
    reference = normalize_reference_date(reference_date)
    return _check_documents(vehicle, "vehicle", VEHICLE_DOCUMENTS, reference, config)


def check_driver_compliance(
    driver,
    reference_date: Union[date, datetime, None] = None,
    config: TrackingConfig = None,
) -> ComplianceReport:
    """Classify the driver license and flag unverified KYC documents."""
    config = config or TrackingConfig()
    reference = normalize_reference_date(reference_date)
    report = _check_documents(driver, "driver", DRIVER_DOCUMENTS, reference, config)

    for attribute, label in DRIVER_VERIFICATIONS:
        if not getattr(driver, attribute, False):
            report.findings.append(
                Finding.warning("driver", f"driver_{label.lower()}_unverified", f"Driver {label} not verified")
            )
    return report


def check_compliance(
    vehicle=None,
    driver=None,
    reference_date: Union[date, datetime, None] = None,
    config: TrackingConfig = None,
) -> ComplianceReport:
    """Run vehicle and/or driver checks and merge the results."""
    combined = ComplianceReport()
    if vehicle is not None:
        report = check_vehicle_compliance(vehicle, reference_date, config)
        combined.documents.extend(report.documents)
        combined.findings.extend(report.findings)
    if driver is not None:
        report = check_driver_compliance(driver, reference_date, config)
        combined.documents.extend(report.documents)
        combined.findings.extend(report.findings)
    return combined
