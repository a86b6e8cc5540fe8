"""
Driver Consent API Endpoints.

Request SIM-tracking consent from a driver, record the carrier channel's
answer, and revoke or inspect consents.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_consent_ledger, get_current_user
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.core.reliability import guard_io
from backend.app.db.session import get_db
from backend.app.models.driver import Driver
from backend.app.models.driver_consent import DriverConsent
from backend.app.schemas.consent import (
    ConsentRequestCreate,
    ConsentResolveRequest,
    ConsentResponse,
    DriverConsentSummary,
)
from backend.app.services.consent_ledger import ConsentLedger

router = APIRouter(prefix="/consents", tags=["Driver Consents"])


def _to_response(ledger: ConsentLedger, consent: DriverConsent) -> ConsentResponse:
    return ConsentResponse(
        id=consent.id,
        driver_id=consent.driver_id,
        msisdn=consent.msisdn,
        consent_status=consent.consent_status,
        effective_status=ledger.effective_status(consent),
        consent_requested_at=consent.consent_requested_at,
        consent_received_at=consent.consent_received_at,
        consent_expires_at=consent.consent_expires_at,
        trip_id=consent.trip_id,
    )


@router.post("/request", response_model=ConsentResponse)
async def request_consent(
    request: ConsentRequestCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ledger: ConsentLedger = Depends(get_consent_ledger),
):
    """
    Request (or resend a request for) a driver's SIM-tracking consent.

    Resending reuses the driver's pending record. The MSISDN defaults to
    the driver's mobile number.
    """
    driver = await guard_io(db.get(Driver, request.driver_id), "driver lookup")
    if not driver:
        raise ResourceNotFoundError("Driver", request.driver_id)

    consent = await ledger.request(db, driver.id, request.msisdn or driver.mobile, trip_id=request.trip_id)
    await guard_io(db.commit(), "consent request commit")
    await db.refresh(consent)
    return _to_response(ledger, consent)


@router.post("/{consent_id}/resolve", response_model=ConsentResponse)
async def resolve_consent(
    request: ConsentResolveRequest,
    consent_id: int = Path(..., description="Consent ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ledger: ConsentLedger = Depends(get_consent_ledger),
):
    """Record the carrier channel's decision on a pending consent request."""
    consent = await ledger.resolve(db, consent_id, request.decision, request.channel_response)
    await guard_io(db.commit(), "consent resolve commit")
    await db.refresh(consent)
    return _to_response(ledger, consent)


@router.post("/{consent_id}/revoke", response_model=ConsentResponse)
async def revoke_consent(
    consent_id: int = Path(..., description="Consent ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ledger: ConsentLedger = Depends(get_consent_ledger),
):
    """Revoke a granted or pending consent."""
    consent = await ledger.revoke(db, consent_id)
    await guard_io(db.commit(), "consent revoke commit")
    await db.refresh(consent)
    return _to_response(ledger, consent)


@router.get("/drivers/{driver_id}", response_model=DriverConsentSummary)
async def get_driver_consents(
    driver_id: int = Path(..., description="Driver ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ledger: ConsentLedger = Depends(get_consent_ledger),
):
    """Effective consent status of a driver, evaluated as of now."""
    consents = await ledger.list_for_driver(db, driver_id)
    return DriverConsentSummary(
        driver_id=driver_id,
        effective_status=ledger.effective_status(consents[0] if consents else None),
        consents=[_to_response(ledger, c) for c in consents],
    )


@router.post("/drivers/{driver_id}/resolve", response_model=ConsentResponse)
async def resolve_driver_consent(
    request: ConsentResolveRequest,
    driver_id: int = Path(..., description="Driver ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ledger: ConsentLedger = Depends(get_consent_ledger),
):
    """Record the carrier channel's decision for a driver's pending request."""
    consent = await ledger.resolve_for_driver(db, driver_id, request.decision, request.channel_response)
    await guard_io(db.commit(), "consent resolve commit")
    await db.refresh(consent)
    return _to_response(ledger, consent)
