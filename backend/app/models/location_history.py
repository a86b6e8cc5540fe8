"""
Location history model.

GPS/SIM position samples written by the tracking integrations. The
admission core only reads the latest sample per vehicle.
"""

from sqlalchemy import Column, Integer, Float, ForeignKey, DateTime, Index
from backend.app.db.session import Base
from backend.app.db.types import utcnow


class LocationSample(Base):
    """
    Location sample model.

    One position fix, optionally tied to a vehicle, driver and trip.
    """
    __tablename__ = "location_history"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=True)
    driver_id = Column(Integer, ForeignKey('drivers.id'), nullable=True)
    trip_id = Column(Integer, nullable=True, index=True)

    # Coordinates
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy_meters = Column(Float, nullable=True)

    # When the fix was taken
    event_time = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_location_history_vehicle_event', 'vehicle_id', 'event_time'),
    )

    def __repr__(self):
        return f"<LocationSample(vehicle_id={self.vehicle_id}, lat={self.latitude}, lng={self.longitude})>"
