"""
Assignment locking service.

Holds vehicles and drivers exclusively for the trip they are admitted to.
The partial unique index on assignment_locks makes a second concurrent
admission of the same resource fail at flush time.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.reliability import guard_io
from backend.app.db.types import utcnow
from backend.app.models.assignment_lock import AssignmentLock
from backend.app.models.trip_enums import AssignmentResource

logger = logging.getLogger(__name__)


async def acquire_assignment_lock(
    db: AsyncSession,
    resource_type: AssignmentResource,
    resource_id: int,
    trip_id: int
) -> AssignmentLock:
    """
    Lock a vehicle or driver for a trip.

    Args:
        db: Database session
        resource_type: vehicle or driver
        resource_id: Vehicle/driver to lock
        trip_id: Trip taking the lock

    Returns:
        Created lock

    Raises:
        IntegrityError: If the resource is already locked by another trip
    """
    lock = AssignmentLock(
        resource_type=resource_type,
        resource_id=resource_id,
        trip_id=trip_id,
        locked_at=utcnow(),
        released_at=None
    )

    db.add(lock)
    await guard_io(db.flush(), "assignment lock acquire")  # IntegrityError if already locked

    return lock


async def acquire_trip_locks(
    db: AsyncSession,
    trip_id: int,
    vehicle_id: Optional[int],
    driver_id: Optional[int]
) -> List[AssignmentLock]:
    """Lock whichever of vehicle and driver are set on the trip."""
    locks = []
    if vehicle_id is not None:
        locks.append(await acquire_assignment_lock(db, AssignmentResource.VEHICLE, vehicle_id, trip_id))
    if driver_id is not None:
        locks.append(await acquire_assignment_lock(db, AssignmentResource.DRIVER, driver_id, trip_id))
    return locks


async def get_active_lock(
    db: AsyncSession,
    resource_type: AssignmentResource,
    resource_id: int
) -> Optional[AssignmentLock]:
    """Return the unreleased lock on a resource, if any."""
    result = await guard_io(
        db.execute(
            select(AssignmentLock).where(
                AssignmentLock.resource_type == resource_type,
                AssignmentLock.resource_id == resource_id,
                AssignmentLock.released_at.is_(None)
            )
        ),
        "assignment lock lookup",
    )
    return result.scalar_one_or_none()


async def release_trip_locks(
    db: AsyncSession,
    trip_id: int,
    resource_type: Optional[AssignmentResource] = None
) -> int:
    """
    Release the locks a trip holds.

    Args:
        db: Database session
        trip_id: Trip releasing its locks
        resource_type: Only release this kind of lock (all kinds if None)

    Returns:
        Number of locks released
    """
    query = select(AssignmentLock).where(
        AssignmentLock.trip_id == trip_id,
        AssignmentLock.released_at.is_(None)
    )
    if resource_type is not None:
        query = query.where(AssignmentLock.resource_type == resource_type)

    result = await guard_io(db.execute(query), "assignment lock release")
    locks = result.scalars().all()

    released_at = utcnow()
    for lock in locks:
        lock.released_at = released_at

    if locks:
        await guard_io(db.flush(), "assignment lock release")
        logger.info("Released assignment locks", extra={"trip_id": trip_id, "count": len(locks)})

    return len(locks)


async def move_assignment_lock(
    db: AsyncSession,
    trip_id: int,
    resource_type: AssignmentResource,
    new_resource_id: Optional[int]
) -> Optional[AssignmentLock]:
    """
    Swap the resource a trip holds, e.g. on a vehicle change.

    The old lock is released before the new one is taken, so a trip can
    never hold two vehicles (or two drivers) at once.
    """
    await release_trip_locks(db, trip_id, resource_type)
    if new_resource_id is None:
        return None
    return await acquire_assignment_lock(db, resource_type, new_resource_id, trip_id)
