"""
Trip Shipment Map.

Ordered association between a trip and the shipments it carries.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, UniqueConstraint
from backend.app.db.session import Base
from backend.app.db.types import utcnow


class TripShipmentMap(Base):
    """
    Trip to Shipment mapping.

    sequence_order is 1-based and follows the order in which shipments
    were selected.
    """
    __tablename__ = "trip_shipment_map"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)
    shipment_id = Column(Integer, ForeignKey('shipments.id'), nullable=False, index=True)
    sequence_order = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('trip_id', 'shipment_id', name='uq_trip_shipment'),
    )

    def __repr__(self):
        return f"<TripShipmentMap(trip_id={self.trip_id}, shipment_id={self.shipment_id}, seq={self.sequence_order})>"
