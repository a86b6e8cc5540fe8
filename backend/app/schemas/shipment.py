"""
Shipment schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from backend.app.models.shipment_enums import ShipmentStatus


class ShipmentStatusUpdate(BaseModel):
    status: ShipmentStatus


class ShipmentResponse(BaseModel):
    """Schema for shipment response."""
    id: int
    shipment_code: str
    status: ShipmentStatus
    customer_id: Optional[int]
    pickup_location_id: Optional[int]
    drop_location_id: Optional[int]
    trip_id: Optional[int]
    confirmed_at: Optional[datetime]
    mapped_at: Optional[datetime]
    in_pickup_at: Optional[datetime]
    in_transit_at: Optional[datetime]
    out_for_delivery_at: Optional[datetime]
    delivered_at: Optional[datetime]
    ndr_at: Optional[datetime]
    returned_at: Optional[datetime]
    success_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True
