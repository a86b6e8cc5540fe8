"""
Serviceability lane provisioning.

Finds the lane for an origin/destination pair, creating it on first use.
Creation is an insert ... on conflict do nothing followed by a re-read, so
two admissions racing on a new route end up sharing one lane.
"""

import logging
import random
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import AppException
from backend.app.core.reliability import guard_io
from backend.app.models.location import Location
from backend.app.models.serviceability_lane import ServiceabilityLane

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5


def _location_prefix(location: Location) -> str:
    return (location.location_name or "").strip()[:3].upper() or "LOC"


def generate_lane_code(origin: Location, destination: Location, suffix: Optional[int] = None) -> str:
    """
    Build a lane code of the form ORI-DES-NNNN.

    Example: Mumbai -> Pune gives "MUM-PUN-4821".
    """
    if suffix is None:
        suffix = random.randint(0, 9999)
    return f"{_location_prefix(origin)}-{_location_prefix(destination)}-{suffix:04d}"


def _insert_for(db: AsyncSession):
    # ON CONFLICT support lives in the dialect-specific insert constructs
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


async def find_lane(db: AsyncSession, origin_id: int, destination_id: int) -> Optional[ServiceabilityLane]:
    result = await guard_io(
        db.execute(
            select(ServiceabilityLane).where(
                ServiceabilityLane.origin_location_id == origin_id,
                ServiceabilityLane.destination_location_id == destination_id,
            )
        ),
        "lane lookup",
    )
    return result.scalar_one_or_none()


async def get_or_create_lane(
    db: AsyncSession,
    origin: Location,
    destination: Location
) -> ServiceabilityLane:
    """
    Return the lane for origin -> destination, creating it if missing.

    Args:
        db: Database session (the caller's transaction)
        origin: Origin location
        destination: Destination location

    Returns:
        The single lane for the pair

    Raises:
        AppException: if no unused lane code could be generated
    """
    lane = await find_lane(db, origin.id, destination.id)
    if lane:
        return lane

    insert = _insert_for(db)
    for _ in range(MAX_CODE_ATTEMPTS):
        lane_code = generate_lane_code(origin, destination)
        statement = insert(ServiceabilityLane).values(
            lane_code=lane_code,
            origin_location_id=origin.id,
            destination_location_id=destination.id,
            is_active=True,
        ).on_conflict_do_nothing()
        await guard_io(db.execute(statement), "lane upsert")

        # Either our row, or the one a concurrent admission inserted first
        lane = await find_lane(db, origin.id, destination.id)
        if lane:
            logger.info("Lane provisioned", extra={"lane_id": lane.id, "lane_code": lane.lane_code})
            return lane
        # Nothing for the pair: the generated code was taken by another route

    raise AppException(
        message="Could not allocate a lane code for route",
        error_code="ERR_LANE_CODE",
        status_code=500,
        details={"origin_location_id": origin.id, "destination_location_id": destination.id},
    )
