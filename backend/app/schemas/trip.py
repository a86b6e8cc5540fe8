"""
Trip schemas.

Candidate trips submitted for admission, edits, lifecycle transitions and
the admission responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from backend.app.domain.admission.findings import AdmissionVerdict, Finding
from backend.app.models.trip_enums import TripStatus, TrackingType


class TripCandidate(BaseModel):
    """A trip as proposed for admission."""
    trip_code: Optional[str] = Field(None, max_length=50)

    origin_location_id: Optional[int] = None
    destination_location_id: Optional[int] = None
    lane_id: Optional[int] = None

    vehicle_id: Optional[int] = None
    driver_id: Optional[int] = None

    customer_id: int
    transporter_id: int
    consignee_name: Optional[str] = Field(None, max_length=200)

    # Selection order becomes the mapping sequence
    shipment_ids: List[int] = []

    planned_start_time: Optional[datetime] = None
    planned_end_time: Optional[datetime] = None
    total_distance_km: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class TripUpdate(BaseModel):
    """
    Partial edit of an existing trip.

    Only fields present in the request are changed; send null to clear an
    optional field. shipment_ids lists shipments to add to the trip.
    """
    origin_location_id: Optional[int] = None
    destination_location_id: Optional[int] = None
    lane_id: Optional[int] = None
    vehicle_id: Optional[int] = None
    driver_id: Optional[int] = None
    customer_id: Optional[int] = None
    transporter_id: Optional[int] = None
    consignee_name: Optional[str] = Field(None, max_length=200)
    shipment_ids: List[int] = []
    planned_start_time: Optional[datetime] = None
    planned_end_time: Optional[datetime] = None
    total_distance_km: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    change_reason: Optional[str] = None


class TripStatusTransitionRequest(BaseModel):
    status: TripStatus
    closure_notes: Optional[str] = None


class TripResponse(BaseModel):
    """Schema for trip response."""
    id: int
    trip_code: str
    status: TripStatus
    origin_location_id: Optional[int]
    destination_location_id: Optional[int]
    lane_id: Optional[int]
    vehicle_id: Optional[int]
    driver_id: Optional[int]
    customer_id: int
    transporter_id: int
    consignee_name: Optional[str]
    tracking_type: TrackingType
    tracking_asset_id: Optional[int]
    sim_consent_id: Optional[int]
    is_trackable: bool
    planned_start_time: Optional[datetime]
    planned_end_time: Optional[datetime]
    actual_start_time: Optional[datetime]
    actual_end_time: Optional[datetime]
    total_distance_km: Optional[float]
    notes: Optional[str]
    closed_at: Optional[datetime]
    closed_by: Optional[int]
    closure_notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EvaluationResponse(BaseModel):
    """Result of evaluating a candidate without saving it."""
    verdict: AdmissionVerdict
    tracking_type: TrackingType
    consent_required: bool
    errors: List[Finding]
    warnings: List[Finding]


class AdmissionResponse(BaseModel):
    """Response after a trip is admitted or edited."""
    trip: TripResponse
    verdict: AdmissionVerdict
    warnings: List[Finding]
    mapped_shipment_ids: List[int] = []
    lane_code: Optional[str] = None


class TripAuditLogResponse(BaseModel):
    """One entry of a trip's audit trail."""
    id: int
    trip_id: int
    action: str
    previous_status: Optional[TripStatus]
    new_status: Optional[TripStatus]
    change_reason: Optional[str]
    changed_by: Optional[int]
    meta_data: Optional[Dict[str, Any]]
    created_at: datetime

    class Config:
        from_attributes = True
