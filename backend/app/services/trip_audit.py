"""
Trip audit trail.

Appends status changes and reassignments to trip_audit_logs. Entries are
added to the caller's transaction and never committed here, so an audit
record exists if and only if the change it describes was saved.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.reliability import guard_io
from backend.app.models.trip_audit_log import TripAuditLog
from backend.app.models.trip_enums import TripStatus


class TripAuditAction:
    """Standardized trip audit action constants."""
    TRIP_CREATED = "TRIP_CREATED"
    ASSIGNMENT_CHANGED = "ASSIGNMENT_CHANGED"
    STATUS_CHANGED = "STATUS_CHANGED"
    TRIP_CLOSED = "TRIP_CLOSED"


def assignment_change_reason(vehicle_changed: bool, driver_changed: bool) -> str:
    if vehicle_changed and driver_changed:
        return "Driver and vehicle assignment changed"
    if driver_changed:
        return "Driver assignment changed"
    return "Vehicle assignment changed"


async def log_trip_event(
    db: AsyncSession,
    trip_id: int,
    action: str,
    changed_by: Optional[int] = None,
    previous_status: Optional[TripStatus] = None,
    new_status: Optional[TripStatus] = None,
    change_reason: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> TripAuditLog:
    """
    Add a trip audit entry to the current transaction.

    Args:
        db: Database session
        trip_id: Trip the entry is about
        action: Action performed (use TripAuditAction constants)
        changed_by: Acting user ID (None for system actions)
        previous_status: Status before the change
        new_status: Status after the change
        change_reason: Human-readable reason
        metadata: Prior/new values and other context as JSON

    Returns:
        The pending TripAuditLog instance
    """
    entry = TripAuditLog(
        trip_id=trip_id,
        action=action,
        previous_status=previous_status,
        new_status=new_status,
        change_reason=change_reason,
        changed_by=changed_by,
        meta_data=metadata,
    )
    db.add(entry)
    return entry


async def log_assignment_change(
    db: AsyncSession,
    trip,
    changed_by: Optional[int],
    previous_vehicle: Optional[Dict[str, Any]],
    new_vehicle: Optional[Dict[str, Any]],
    previous_driver: Optional[Dict[str, Any]],
    new_driver: Optional[Dict[str, Any]],
    reason: Optional[str] = None
) -> Optional[TripAuditLog]:
    """
    Record a vehicle and/or driver replacement on a trip.

    Vehicle/driver dicts carry id plus number/name. Returns None (and
    records nothing) if neither actually changed.
    """
    vehicle_changed = _ident(previous_vehicle) != _ident(new_vehicle)
    driver_changed = _ident(previous_driver) != _ident(new_driver)
    if not vehicle_changed and not driver_changed:
        return None

    metadata: Dict[str, Any] = {}
    if vehicle_changed:
        metadata["vehicle_change"] = {"previous": previous_vehicle, "new": new_vehicle}
    if driver_changed:
        metadata["driver_change"] = {"previous": previous_driver, "new": new_driver}

    return await log_trip_event(
        db,
        trip_id=trip.id,
        action=TripAuditAction.ASSIGNMENT_CHANGED,
        changed_by=changed_by,
        previous_status=trip.status,
        new_status=trip.status,
        change_reason=reason or assignment_change_reason(vehicle_changed, driver_changed),
        metadata=metadata,
    )


def _ident(value: Optional[Dict[str, Any]]):
    return value.get("id") if value else None


async def get_trip_audit_logs(db: AsyncSession, trip_id: int) -> List[TripAuditLog]:
    """Audit entries for a trip, oldest first."""
    result = await guard_io(
        db.execute(
            select(TripAuditLog)
            .where(TripAuditLog.trip_id == trip_id)
            .order_by(TripAuditLog.created_at, TripAuditLog.id)
        ),
        "trip audit lookup",
    )
    return list(result.scalars().all())
