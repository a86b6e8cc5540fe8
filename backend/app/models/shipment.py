"""
Shipment database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from backend.app.db.session import Base
from backend.app.db.types import enum_column_type, utcnow
from backend.app.models.shipment_enums import ShipmentStatus


class Shipment(Base):
    """
    Shipment model.

    A shipment is booked for a customer between a pickup and a drop
    location. It becomes "mapped" only when an admitted trip picks it up,
    and can be deleted only while still "created".
    """
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    shipment_code = Column(String(50), unique=True, nullable=False, index=True)

    customer_id = Column(Integer, nullable=True, index=True)
    pickup_location_id = Column(Integer, ForeignKey('locations.id'), nullable=True)
    drop_location_id = Column(Integer, ForeignKey('locations.id'), nullable=True)

    # Trip linkage (set by admission)
    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=True, index=True)

    status = Column(enum_column_type(ShipmentStatus), default=ShipmentStatus.CREATED, nullable=False, index=True)

    # Status timestamps
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    mapped_at = Column(DateTime(timezone=True), nullable=True)
    in_pickup_at = Column(DateTime(timezone=True), nullable=True)
    in_transit_at = Column(DateTime(timezone=True), nullable=True)
    out_for_delivery_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    ndr_at = Column(DateTime(timezone=True), nullable=True)
    returned_at = Column(DateTime(timezone=True), nullable=True)
    success_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Shipment(id={self.id}, code='{self.shipment_code}', status='{self.status.value}')>"
