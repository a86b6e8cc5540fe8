"""
Trip database model.

Trips are created only through admission; status changes and
reassignments go through the admission engine as well.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, DateTime, Text
from backend.app.db.session import Base
from backend.app.db.types import enum_column_type, utcnow
from backend.app.models.trip_enums import TripStatus, TrackingType, ACTIVE_TRIP_STATUSES


class Trip(Base):
    """
    Trip model.

    A trip moves a vehicle (with a driver) from an origin to a destination
    for a customer, optionally carrying mapped shipments. While the trip is
    active its vehicle and driver are held exclusively (see AssignmentLock).
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    trip_code = Column(String(50), unique=True, nullable=False, index=True)

    # Route
    origin_location_id = Column(Integer, ForeignKey('locations.id'), nullable=True)
    destination_location_id = Column(Integer, ForeignKey('locations.id'), nullable=True)
    lane_id = Column(Integer, ForeignKey('serviceability_lanes.id'), nullable=True, index=True)

    # Assignment
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=True, index=True)
    driver_id = Column(Integer, ForeignKey('drivers.id'), nullable=True, index=True)

    # Commercial parties (master data owned elsewhere)
    customer_id = Column(Integer, nullable=False, index=True)
    transporter_id = Column(Integer, nullable=False, index=True)
    consignee_name = Column(String(200), nullable=True)

    # Status
    status = Column(enum_column_type(TripStatus), default=TripStatus.CREATED, nullable=False, index=True)

    # Tracking
    tracking_type = Column(enum_column_type(TrackingType), default=TrackingType.NONE, nullable=False)
    tracking_asset_id = Column(Integer, nullable=True)
    sim_consent_id = Column(Integer, ForeignKey('driver_consents.id'), nullable=True)
    is_trackable = Column(Boolean, default=False, nullable=False)

    # Schedule
    planned_start_time = Column(DateTime(timezone=True), nullable=True)
    planned_end_time = Column(DateTime(timezone=True), nullable=True)
    actual_start_time = Column(DateTime(timezone=True), nullable=True)
    actual_end_time = Column(DateTime(timezone=True), nullable=True)
    total_distance_km = Column(Float, nullable=True)

    notes = Column(Text, nullable=True)

    # Closure
    closed_at = Column(DateTime(timezone=True), nullable=True)
    closed_by = Column(Integer, nullable=True)
    closure_notes = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_TRIP_STATUSES

    def __repr__(self):
        return f"<Trip(id={self.id}, code='{self.trip_code}', status='{self.status.value}')>"
