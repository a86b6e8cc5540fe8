"""
Vehicle master model.

Read-only to the admission core: identification, GPS device linkage and
the five statutory document expiry dates.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date
from backend.app.db.session import Base
from backend.app.db.types import utcnow


class Vehicle(Base):
    """
    Vehicle model.

    A vehicle carrying a tracking asset is GPS-equipped; one without is
    tracked through its driver's SIM (with consent) or manually.
    """
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Vehicle identification
    vehicle_number = Column(String(20), unique=True, nullable=False, index=True)
    transporter_id = Column(Integer, nullable=True, index=True)

    # GPS device (tracking asset) mapped to the vehicle
    tracking_asset_id = Column(Integer, nullable=True)

    # Document expiry dates
    rc_expiry_date = Column(Date, nullable=True)
    insurance_expiry_date = Column(Date, nullable=True)
    permit_expiry_date = Column(Date, nullable=True)
    fitness_expiry_date = Column(Date, nullable=True)
    puc_expiry_date = Column(Date, nullable=True)

    # Status
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def has_tracking_channel(self) -> bool:
        return self.tracking_asset_id is not None

    def __repr__(self):
        return f"<Vehicle(id={self.id}, number='{self.vehicle_number}')>"
