"""
Trip-related enumerations.
"""

import enum


class TripStatus(str, enum.Enum):
    """
    Trip status enumeration.

    Status flow:
        created → ongoing → completed → closed
        created | ongoing → on_hold → ongoing | cancelled
        Any non-terminal status can transition to cancelled
    """
    CREATED = "created"  # Admitted, vehicle/driver committed
    ONGOING = "ongoing"  # Trip started
    ON_HOLD = "on_hold"  # Paused, assignment still held
    COMPLETED = "completed"  # Delivered, awaiting closure
    CANCELLED = "cancelled"  # Abandoned
    CLOSED = "closed"  # Closed after completion (requires closure metadata)


# Statuses that hold a vehicle/driver exclusively
ACTIVE_TRIP_STATUSES = (TripStatus.CREATED, TripStatus.ONGOING, TripStatus.ON_HOLD)

# Statuses in which origin, destination, vehicle and driver may not be cleared
IN_FLIGHT_TRIP_STATUSES = (TripStatus.ONGOING, TripStatus.ON_HOLD)


class TrackingType(str, enum.Enum):
    """Telemetry channel governing a trip."""
    NONE = "none"  # No vehicle selected
    GPS = "gps"  # Vehicle carries a tracking device
    SIM = "sim"  # Carrier-network lookup on the driver's SIM, needs consent
    MANUAL = "manual"  # Location updated by operators


class AssignmentResource(str, enum.Enum):
    """Kinds of resources an admitted trip holds exclusively."""
    VEHICLE = "vehicle"
    DRIVER = "driver"
