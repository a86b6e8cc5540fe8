"""
Location master model.

Locations are maintained by the master-data screens; the admission core
only reads names and coordinates.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime
from backend.app.db.session import Base
from backend.app.db.types import utcnow


class Location(Base):
    """
    Location model.

    Origin, destination, pickup and drop points. Coordinates are optional;
    a location without them cannot be proximity-checked.
    """
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    location_name = Column(String(200), nullable=False)
    address = Column(String(500), nullable=True)

    # Coordinates (degrees)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def __repr__(self):
        return f"<Location(id={self.id}, name='{self.location_name}')>"
