"""
Trip lifecycle state machine.

    created -> ongoing -> completed -> closed
    created | ongoing -> on_hold -> ongoing | cancelled
    created | ongoing | on_hold -> cancelled

Completed, cancelled and closed trips no longer hold their vehicle and
driver. Closing requires closure metadata (who closed it) and every
shipment on the trip in a terminal status.
"""

from typing import Dict, FrozenSet

from backend.app.models.trip_enums import TripStatus

TRIP_TRANSITIONS: Dict[TripStatus, FrozenSet[TripStatus]] = {
    TripStatus.CREATED: frozenset({TripStatus.ONGOING, TripStatus.ON_HOLD, TripStatus.CANCELLED}),
    TripStatus.ONGOING: frozenset({TripStatus.COMPLETED, TripStatus.ON_HOLD, TripStatus.CANCELLED}),
    TripStatus.ON_HOLD: frozenset({TripStatus.ONGOING, TripStatus.CANCELLED}),
    TripStatus.COMPLETED: frozenset({TripStatus.CLOSED}),
    TripStatus.CANCELLED: frozenset(),
    TripStatus.CLOSED: frozenset(),
}

# Statuses that release the vehicle/driver
TERMINAL_TRIP_STATUSES = frozenset({TripStatus.COMPLETED, TripStatus.CANCELLED, TripStatus.CLOSED})


def can_transition(current: TripStatus, new: TripStatus) -> bool:
    return new in TRIP_TRANSITIONS[current]


def is_terminal(status: TripStatus) -> bool:
    return status in TERMINAL_TRIP_STATUSES


def is_editable(status: TripStatus) -> bool:
    """Route and assignment may only be changed on trips still in play."""
    return not is_terminal(status)
