"""
Proximity validation service.

A vehicle may only be assigned to a trip if its last known position is
within the configured radius of the trip's origin.
"""

import math
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import TrackingConfig
from backend.app.core.reliability import guard_io
from backend.app.domain.admission.findings import Finding
from backend.app.models.location import Location
from backend.app.models.location_history import LocationSample

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    # Float rounding can push a slightly past 1 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def format_distance(km: float) -> str:
    """'850 m', '50 km', '80.12 km'."""
    if km < 1:
        return f"{round(km * 1000)} m"
    return f"{km:.2f}".rstrip("0").rstrip(".") + " km"


async def get_latest_sample(db: AsyncSession, vehicle_id: int) -> Optional[LocationSample]:
    """Most recent location sample for a vehicle (by event time)."""
    result = await guard_io(
        db.execute(
            select(LocationSample)
            .where(LocationSample.vehicle_id == vehicle_id)
            .order_by(LocationSample.event_time.desc(), LocationSample.id.desc())
            .limit(1)
        ),
        "latest location lookup",
    )
    return result.scalar_one_or_none()


class ProximityValidator:
    """Checks a vehicle's last known position against a trip origin."""

    def __init__(self, config: TrackingConfig):
        self.config = config

    @property
    def radius_km(self) -> float:
        return self.config.proximity_radius_km

    async def validate(
        self,
        db: AsyncSession,
        vehicle_id: Optional[int],
        origin: Optional[Location]
    ) -> List[Finding]:
        """
        Validate vehicle proximity to origin.

        Skipped (no findings) unless both a vehicle and an origin with
        coordinates are given.
        """
        if vehicle_id is None or origin is None or not origin.has_coordinates:
            return []

        sample = await get_latest_sample(db, vehicle_id)
        if sample is None:
            return [Finding.warning(
                "vehicle",
                "vehicle_location_unknown",
                "Vehicle has no GPS location history. Proximity cannot be verified.",
            )]

        distance_km = haversine_km(sample.latitude, sample.longitude, origin.latitude, origin.longitude)
        if distance_km > self.radius_km:
            return [Finding.error(
                "vehicle",
                "vehicle_too_far_from_origin",
                f"Vehicle is {format_distance(distance_km)} away from origin. "
                f"Must be within {format_distance(self.radius_km)}.",
            )]

        return []
