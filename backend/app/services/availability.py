"""
Availability resolver.

A vehicle or driver is unavailable while another trip holding it is in a
non-terminal status (created, ongoing, on_hold).
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.reliability import guard_io
from backend.app.domain.admission.findings import Finding
from backend.app.models.trip import Trip
from backend.app.models.trip_enums import ACTIVE_TRIP_STATUSES


async def _find_active_trip(db: AsyncSession, column, resource_id: int, exclude_trip_id: Optional[int]) -> Optional[Trip]:
    query = select(Trip).where(
        column == resource_id,
        Trip.status.in_(ACTIVE_TRIP_STATUSES),
    )
    if exclude_trip_id is not None:
        query = query.where(Trip.id != exclude_trip_id)
    query = query.order_by(Trip.id).limit(1)

    result = await guard_io(db.execute(query), "availability lookup")
    return result.scalar_one_or_none()


async def find_active_trip_for_vehicle(
    db: AsyncSession,
    vehicle_id: int,
    exclude_trip_id: Optional[int] = None
) -> Optional[Trip]:
    """
    Find an active trip (other than exclude_trip_id) holding the vehicle.

    Returns:
        The conflicting trip, or None if the vehicle is free
    """
    return await _find_active_trip(db, Trip.vehicle_id, vehicle_id, exclude_trip_id)


async def find_active_trip_for_driver(
    db: AsyncSession,
    driver_id: int,
    exclude_trip_id: Optional[int] = None
) -> Optional[Trip]:
    """Find an active trip (other than exclude_trip_id) holding the driver."""
    return await _find_active_trip(db, Trip.driver_id, driver_id, exclude_trip_id)


async def check_availability(
    db: AsyncSession,
    vehicle_id: Optional[int],
    driver_id: Optional[int],
    exclude_trip_id: Optional[int] = None
) -> List[Finding]:
    """
    Check that the selected vehicle and driver are free.

    Returns one blocking finding per busy resource, naming the trip that
    holds it.
    """
    findings: List[Finding] = []

    if vehicle_id is not None:
        trip = await find_active_trip_for_vehicle(db, vehicle_id, exclude_trip_id)
        if trip:
            findings.append(Finding.error(
                "vehicle",
                "vehicle_unavailable",
                f"Vehicle is already assigned to active trip: {trip.trip_code}",
            ))

    if driver_id is not None:
        trip = await find_active_trip_for_driver(db, driver_id, exclude_trip_id)
        if trip:
            findings.append(Finding.error(
                "driver",
                "driver_unavailable",
                f"Driver is already assigned to active trip: {trip.trip_code}",
            ))

    return findings
