"""
Driver Consent database model.

Tracks a driver's authorization for SIM-based location tracking.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from backend.app.db.session import Base
from backend.app.db.types import enum_column_type, utcnow
from backend.app.models.consent_enums import ConsentStatus


class DriverConsent(Base):
    """
    Driver Consent model.

    The stored consent_status can lag behind reality: a granted consent
    whose consent_expires_at has passed is expired whatever the column
    says. Use ConsentLedger.effective_status to read it.
    """
    __tablename__ = "driver_consents"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    driver_id = Column(Integer, ForeignKey('drivers.id'), nullable=False, index=True)
    msisdn = Column(String(15), nullable=False)

    consent_status = Column(
        enum_column_type(ConsentStatus), default=ConsentStatus.REQUESTED, nullable=False, index=True
    )
    consent_requested_at = Column(DateTime(timezone=True), nullable=True)
    consent_received_at = Column(DateTime(timezone=True), nullable=True)
    consent_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Trip that consumed this consent (no FK: trips reference consents too)
    trip_id = Column(Integer, nullable=True, index=True)

    # Raw payload from the carrier consent channel
    channel_response = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<DriverConsent(id={self.id}, driver_id={self.driver_id}, status='{self.consent_status.value}')>"
