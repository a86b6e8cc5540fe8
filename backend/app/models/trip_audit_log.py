"""
Trip Audit Log Database Model.

History of trip status changes and vehicle/driver reassignments.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey, Text
from backend.app.db.session import Base
from backend.app.db.types import enum_column_type, utcnow
from backend.app.models.trip_enums import TripStatus


class TripAuditLog(Base):
    """
    Trip audit log model.

    Events logged:
    - ASSIGNMENT_CHANGED (vehicle and/or driver replaced on an edit)
    - STATUS_CHANGED
    - TRIP_CLOSED
    """
    __tablename__ = "trip_audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)
    action = Column(String(50), nullable=False, index=True)

    previous_status = Column(enum_column_type(TripStatus), nullable=True)
    new_status = Column(enum_column_type(TripStatus), nullable=True)
    change_reason = Column(Text, nullable=True)

    # Who made the change (None for system actions)
    changed_by = Column(Integer, nullable=True)

    # Prior/new values and other context
    meta_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<TripAuditLog(id={self.id}, trip_id={self.trip_id}, action='{self.action}')>"
