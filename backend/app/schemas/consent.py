"""
Driver consent schemas.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from backend.app.models.consent_enums import ConsentDecision, ConsentStatus


class ConsentRequestCreate(BaseModel):
    """Schema for requesting a driver's SIM-tracking consent."""
    driver_id: int
    msisdn: Optional[str] = Field(None, max_length=15)  # defaults to the driver's mobile
    trip_id: Optional[int] = None


class ConsentResolveRequest(BaseModel):
    """Decision reported back by the carrier consent channel."""
    decision: ConsentDecision
    channel_response: Optional[Dict[str, Any]] = None


class ConsentResponse(BaseModel):
    id: int
    driver_id: int
    msisdn: str
    consent_status: ConsentStatus
    effective_status: ConsentStatus
    consent_requested_at: Optional[datetime]
    consent_received_at: Optional[datetime]
    consent_expires_at: Optional[datetime]
    trip_id: Optional[int]

    class Config:
        from_attributes = True


class DriverConsentSummary(BaseModel):
    """Effective consent status for a driver plus their consent history."""
    driver_id: int
    effective_status: ConsentStatus
    consents: List[ConsentResponse] = []
