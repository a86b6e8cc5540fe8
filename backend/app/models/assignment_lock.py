"""
Assignment Lock database model.

Enforces one active trip per vehicle and per driver through a DB-level
partial unique index.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Index
from backend.app.db.session import Base
from backend.app.db.types import enum_column_type, utcnow
from backend.app.models.trip_enums import AssignmentResource


class AssignmentLock(Base):
    """
    Assignment Lock model.

    A vehicle or driver is locked when a trip holding it is admitted and
    released when that trip reaches a terminal status or is reassigned.
    """
    __tablename__ = "assignment_locks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # What is locked
    resource_type = Column(enum_column_type(AssignmentResource), nullable=False)
    resource_id = Column(Integer, nullable=False, index=True)

    # Trip holding the lock
    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)

    # Lock lifecycle
    locked_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    released_at = Column(DateTime(timezone=True), nullable=True)

    # Unique constraint: only one active lock per resource
    __table_args__ = (
        Index(
            'ix_assignment_locks_active', 'resource_type', 'resource_id', unique=True,
            postgresql_where=Column('released_at').is_(None),
            sqlite_where=Column('released_at').is_(None),
        ),
    )

    def __repr__(self):
        return (
            f"<AssignmentLock({self.resource_type.value}={self.resource_id}, trip_id={self.trip_id}, "
            f"active={self.released_at is None})>"
        )
