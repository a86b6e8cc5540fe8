"""
Serviceability Lane database model.

A lane is a cached descriptor of one origin → destination route.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, UniqueConstraint
from backend.app.db.session import Base
from backend.app.db.types import utcnow


class ServiceabilityLane(Base):
    """
    Serviceability Lane model.

    At most one lane exists per (origin, destination) pair; admission
    creates one on demand when a trip is booked on an unknown route.
    """
    __tablename__ = "serviceability_lanes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    lane_code = Column(String(50), unique=True, nullable=False, index=True)

    origin_location_id = Column(Integer, ForeignKey('locations.id'), nullable=False)
    destination_location_id = Column(Integer, ForeignKey('locations.id'), nullable=False)

    # Route metrics supplied by the map integration (optional)
    distance_km = Column(Float, nullable=True)
    duration_hours = Column(Float, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('origin_location_id', 'destination_location_id', name='uq_lane_origin_destination'),
    )

    def __repr__(self):
        return f"<ServiceabilityLane(id={self.id}, code='{self.lane_code}')>"
