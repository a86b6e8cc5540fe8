"""
Consent ledger for SIM-based tracking.

Records each driver's consent to carrier-network location lookups and
answers "is there a usable consent right now". Expiry is evaluated live
on every read; the stored consent_status may lag behind.

The ledger never commits. Callers own the transaction, so a consent can be
consumed in the same commit as the trip that consumes it.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import TrackingConfig
from backend.app.core.exceptions import InvalidStateTransitionError, ResourceNotFoundError
from backend.app.core.reliability import guard_io
from backend.app.db.types import as_utc, utcnow
from backend.app.models.consent_enums import ConsentDecision, ConsentStatus
from backend.app.models.driver_consent import DriverConsent
from backend.app.models.trip import Trip
from backend.app.models.trip_enums import ACTIVE_TRIP_STATUSES

logger = logging.getLogger(__name__)


class ConsentLedger:
    """
    Consent ledger.

    Args:
        config: Tracking configuration (consent validity window)
        clock: Returns the current aware UTC time; injectable for tests
    """

    def __init__(self, config: TrackingConfig, clock: Callable[[], datetime] = utcnow):
        self.config = config
        self.clock = clock

    # ------------------------------------------------------------------
    # Pure reads
    # ------------------------------------------------------------------

    def effective_status(self, consent: Optional[DriverConsent]) -> ConsentStatus:
        """
        Status of a consent as of now.

        A granted consent past its expiry is EXPIRED whatever the stored
        column says. Never mutates the record.
        """
        if consent is None:
            return ConsentStatus.NOT_REQUESTED
        if consent.consent_status == ConsentStatus.GRANTED:
            expires_at = as_utc(consent.consent_expires_at)
            if expires_at is not None and self.clock() >= expires_at:
                return ConsentStatus.EXPIRED
        return consent.consent_status

    def is_usable(self, consent: Optional[DriverConsent], trip_id: Optional[int] = None) -> bool:
        """
        Whether the consent can back SIM tracking for trip_id.

        Must be effectively granted and either unlinked or already linked
        to that same trip.
        """
        if self.effective_status(consent) != ConsentStatus.GRANTED:
            return False
        return consent.trip_id is None or consent.trip_id == trip_id

    # ------------------------------------------------------------------
    # Store reads
    # ------------------------------------------------------------------

    async def get(self, db: AsyncSession, consent_id: int) -> DriverConsent:
        consent = await guard_io(db.get(DriverConsent, consent_id), "consent lookup")
        if not consent:
            raise ResourceNotFoundError("Consent", consent_id)
        return consent

    async def get_latest(self, db: AsyncSession, driver_id: int) -> Optional[DriverConsent]:
        """The driver's most recent consent record."""
        result = await guard_io(
            db.execute(
                select(DriverConsent)
                .where(DriverConsent.driver_id == driver_id)
                .order_by(DriverConsent.id.desc())
                .limit(1)
            ),
            "consent lookup",
        )
        return result.scalar_one_or_none()

    async def list_for_driver(self, db: AsyncSession, driver_id: int) -> List[DriverConsent]:
        result = await guard_io(
            db.execute(
                select(DriverConsent)
                .where(DriverConsent.driver_id == driver_id)
                .order_by(DriverConsent.id.desc())
            ),
            "consent lookup",
        )
        return list(result.scalars().all())

    async def get_effective_status(self, db: AsyncSession, driver_id: int) -> ConsentStatus:
        """Effective status of the driver's latest consent (NOT_REQUESTED if none)."""
        return self.effective_status(await self.get_latest(db, driver_id))

    async def _is_free(self, db: AsyncSession, consent: DriverConsent, trip_id: Optional[int]) -> bool:
        # Free if unlinked, linked to trip_id, or linked to a trip that has ended
        if consent.trip_id is None or consent.trip_id == trip_id:
            return True
        holder = await guard_io(db.get(Trip, consent.trip_id), "consent holder lookup")
        return holder is None or holder.status not in ACTIVE_TRIP_STATUSES

    async def find_usable(
        self,
        db: AsyncSession,
        driver_id: int,
        trip_id: Optional[int] = None,
        linked_consent_id: Optional[int] = None
    ) -> Optional[DriverConsent]:
        """
        A consent that can back SIM tracking for trip_id.

        The consent already linked to the trip (linked_consent_id) wins
        while it is still granted, held by the trip and the driver's own;
        newer requests on the driver do not displace it. Otherwise the
        driver's latest consent is considered.

        Returns:
            A granted, unexpired consent not held by another active trip,
            or None
        """
        if linked_consent_id is not None:
            linked = await guard_io(db.get(DriverConsent, linked_consent_id), "consent lookup")
            if linked is not None and linked.driver_id == driver_id \
                    and trip_id is not None and linked.trip_id == trip_id \
                    and self.is_usable(linked, trip_id):
                return linked

        consent = await self.get_latest(db, driver_id)
        if self.effective_status(consent) != ConsentStatus.GRANTED:
            return None
        if not await self._is_free(db, consent, trip_id):
            return None
        return consent

    # ------------------------------------------------------------------
    # Writes (flush only)
    # ------------------------------------------------------------------

    async def request(
        self,
        db: AsyncSession,
        driver_id: int,
        msisdn: str,
        trip_id: Optional[int] = None
    ) -> DriverConsent:
        """
        Request (or re-send a request for) a driver's consent.

        Idempotent: a resend updates the driver's latest record instead of
        adding a row. A usable granted consent is returned untouched. A
        record consumed by some other trip is never reused.
        """
        consent = await self.get_latest(db, driver_id)

        if consent and self.effective_status(consent) == ConsentStatus.GRANTED:
            if await self._is_free(db, consent, trip_id):
                return consent

        now = self.clock()
        if consent is None or (consent.trip_id is not None and consent.trip_id != trip_id):
            consent = DriverConsent(driver_id=driver_id)
            db.add(consent)

        consent.msisdn = msisdn
        consent.consent_status = ConsentStatus.REQUESTED
        consent.consent_requested_at = now
        consent.consent_received_at = None
        consent.consent_expires_at = None

        await guard_io(db.flush(), "consent request")
        logger.info("Consent requested", extra={"driver_id": driver_id, "consent_id": consent.id})
        return consent

    async def resolve(
        self,
        db: AsyncSession,
        consent_id: int,
        decision: ConsentDecision,
        channel_response: Optional[Dict[str, Any]] = None
    ) -> DriverConsent:
        """
        Apply the carrier channel's answer to a pending request.

        Raises:
            ResourceNotFoundError: unknown consent
            InvalidStateTransitionError: consent is not awaiting a decision
        """
        consent = await self.get(db, consent_id)
        decision = ConsentDecision(decision)
        target = ConsentStatus.GRANTED if decision == ConsentDecision.GRANTED else ConsentStatus.REVOKED

        if consent.consent_status != ConsentStatus.REQUESTED:
            raise InvalidStateTransitionError(
                "consent", consent.consent_status.value, target.value, "consent is not awaiting a decision"
            )

        now = self.clock()
        consent.consent_status = target
        consent.consent_received_at = now
        if target == ConsentStatus.GRANTED:
            consent.consent_expires_at = now + timedelta(hours=self.config.consent_validity_hours)
        if channel_response is not None:
            consent.channel_response = channel_response

        await guard_io(db.flush(), "consent resolve")
        logger.info(
            "Consent resolved",
            extra={"consent_id": consent_id, "driver_id": consent.driver_id, "status": target.value},
        )
        return consent

    async def resolve_for_driver(
        self,
        db: AsyncSession,
        driver_id: int,
        decision: ConsentDecision,
        channel_response: Optional[Dict[str, Any]] = None
    ) -> DriverConsent:
        """Resolve the driver's latest consent request (carrier callbacks know only the driver)."""
        consent = await self.get_latest(db, driver_id)
        if consent is None:
            raise ResourceNotFoundError("Consent request for driver", driver_id)
        return await self.resolve(db, consent.id, decision, channel_response)

    async def revoke(self, db: AsyncSession, consent_id: int) -> DriverConsent:
        """Withdraw a granted or pending consent."""
        consent = await self.get(db, consent_id)
        current = self.effective_status(consent)
        if current not in (ConsentStatus.GRANTED, ConsentStatus.REQUESTED):
            raise InvalidStateTransitionError("consent", current.value, ConsentStatus.REVOKED.value)

        consent.consent_status = ConsentStatus.REVOKED
        await guard_io(db.flush(), "consent revoke")
        logger.info("Consent revoked", extra={"consent_id": consent_id, "driver_id": consent.driver_id})
        return consent

    async def consume(self, db: AsyncSession, consent_id: int, trip_id: int) -> DriverConsent:
        """
        Link a granted consent to the trip it now backs.

        Raises:
            InvalidStateTransitionError: consent is expired, not granted, or
                held by another active trip
        """
        consent = await self.get(db, consent_id)
        current = self.effective_status(consent)
        if current != ConsentStatus.GRANTED:
            raise InvalidStateTransitionError(
                "consent", current.value, "consumed", f"consent is {current.value}"
            )
        if not await self._is_free(db, consent, trip_id):
            raise InvalidStateTransitionError(
                "consent", current.value, "consumed", f"consent is held by trip {consent.trip_id}"
            )

        consent.trip_id = trip_id
        await guard_io(db.flush(), "consent consume")
        return consent

    async def release(self, db: AsyncSession, trip_id: int) -> int:
        """
        Unlink every consent held by a trip (driver switch).

        Returns:
            Number of consents released
        """
        result = await guard_io(
            db.execute(select(DriverConsent).where(DriverConsent.trip_id == trip_id)),
            "consent release",
        )
        consents = result.scalars().all()
        for consent in consents:
            consent.trip_id = None
        if consents:
            await guard_io(db.flush(), "consent release")
        return len(consents)

    async def expire_stale(self, db: AsyncSession) -> int:
        """
        Persist EXPIRED on granted consents past their expiry.

        Housekeeping only; effective_status never depends on this having run.
        """
        result = await guard_io(
            db.execute(select(DriverConsent).where(DriverConsent.consent_status == ConsentStatus.GRANTED)),
            "consent expiry sweep",
        )
        expired = 0
        for consent in result.scalars().all():
            if self.effective_status(consent) == ConsentStatus.EXPIRED:
                consent.consent_status = ConsentStatus.EXPIRED
                expired += 1
        if expired:
            await guard_io(db.flush(), "consent expiry sweep")
            logger.info("Expired stale consents", extra={"count": expired})
        return expired
