"""
Driver master model.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date
from backend.app.db.session import Base
from backend.app.db.types import utcnow


class Driver(Base):
    """
    Driver model.

    Read-only to the admission core. The mobile number doubles as the
    MSISDN used for SIM-based tracking.
    """
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    name = Column(String(200), nullable=False)
    mobile = Column(String(15), nullable=False, index=True)
    transporter_id = Column(Integer, nullable=True, index=True)

    # KYC
    license_expiry_date = Column(Date, nullable=True)
    aadhaar_verified = Column(Boolean, default=False, nullable=False)
    pan_verified = Column(Boolean, default=False, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Driver(id={self.id}, name='{self.name}')>"
