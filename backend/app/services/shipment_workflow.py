"""
Shipment status workflow.

Legal status moves for shipments, the mapping of shipments onto trips at
admission time, and the candidate query used to offer shipments for a
trip.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import InvalidStateTransitionError, ResourceNotFoundError
from backend.app.core.reliability import guard_io, retry_transient
from backend.app.db.types import utcnow
from backend.app.domain.admission.findings import Finding
from backend.app.models.shipment import Shipment
from backend.app.models.shipment_enums import MAPPABLE_SHIPMENT_STATUSES, TERMINAL_SHIPMENT_STATUSES, ShipmentStatus
from backend.app.models.trip import Trip
from backend.app.models.trip_shipment_map import TripShipmentMap

logger = logging.getLogger(__name__)

S = ShipmentStatus

# Forward moves plus one-step rollbacks
ALLOWED_TRANSITIONS: Dict[ShipmentStatus, Tuple[ShipmentStatus, ...]] = {
    S.CREATED: (S.CONFIRMED,),
    S.CONFIRMED: (S.MAPPED, S.CREATED),
    S.MAPPED: (S.IN_PICKUP, S.CONFIRMED),
    S.IN_PICKUP: (S.IN_TRANSIT, S.MAPPED),
    S.IN_TRANSIT: (S.OUT_FOR_DELIVERY, S.NDR, S.IN_PICKUP),
    S.OUT_FOR_DELIVERY: (S.DELIVERED, S.NDR, S.IN_TRANSIT),
    S.DELIVERED: (S.SUCCESS, S.NDR),
    S.NDR: (S.OUT_FOR_DELIVERY, S.RETURNED),
    S.RETURNED: (),
    S.SUCCESS: (),
}

# Required before a shipment can be confirmed
CONFIRMATION_FIELDS = ("shipment_code", "pickup_location_id", "drop_location_id")


def can_transition(current: ShipmentStatus, new: ShipmentStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


def timestamp_field_for(status: ShipmentStatus) -> Optional[str]:
    """Column stamped when a shipment enters status (None for created)."""
    if status == S.CREATED:
        return None
    return f"{status.value}_at"


def missing_confirmation_fields(shipment: Shipment) -> List[str]:
    return [field for field in CONFIRMATION_FIELDS if not getattr(shipment, field)]


async def get_shipment(db: AsyncSession, shipment_id: int) -> Shipment:
    shipment = await guard_io(db.get(Shipment, shipment_id), "shipment lookup")
    if not shipment:
        raise ResourceNotFoundError("Shipment", shipment_id)
    return shipment


async def _unmap(db: AsyncSession, shipment: Shipment) -> None:
    await guard_io(
        db.execute(delete(TripShipmentMap).where(TripShipmentMap.shipment_id == shipment.id)),
        "shipment unmap",
    )
    shipment.trip_id = None


async def transition_shipment(
    db: AsyncSession,
    shipment_id: int,
    new_status: ShipmentStatus,
    now: Optional[datetime] = None
) -> Shipment:
    """
    Move a shipment to a new status on an operator's request.

    Raises:
        ResourceNotFoundError: unknown shipment
        InvalidStateTransitionError: move not in ALLOWED_TRANSITIONS, the
            move is into mapped other than a rollback from in_pickup
            (admission maps shipments), or its preconditions fail
    """
    shipment = await get_shipment(db, shipment_id)
    current = shipment.status
    new_status = ShipmentStatus(new_status)

    if not can_transition(current, new_status):
        raise InvalidStateTransitionError("shipment", current.value, new_status.value)

    # Only a rollback from in_pickup may re-enter mapped; the shipment is still on its trip
    if new_status == S.MAPPED and not (current == S.IN_PICKUP and shipment.trip_id is not None):
        raise InvalidStateTransitionError(
            "shipment", current.value, new_status.value, "shipments are mapped by admitting a trip"
        )

    if current == S.CREATED and new_status == S.CONFIRMED:
        missing = missing_confirmation_fields(shipment)
        if missing:
            raise InvalidStateTransitionError(
                "shipment", current.value, new_status.value, f"Missing required fields: {', '.join(missing)}"
            )

    if current == S.MAPPED and new_status == S.IN_PICKUP:
        trip = await guard_io(db.get(Trip, shipment.trip_id), "trip lookup") if shipment.trip_id else None
        if not trip or trip.vehicle_id is None:
            raise InvalidStateTransitionError(
                "shipment", current.value, new_status.value, "Trip must have a vehicle assigned before pickup"
            )

    # Rolling back out of mapped frees the shipment for another trip
    if current == S.MAPPED and new_status == S.CONFIRMED:
        await _unmap(db, shipment)
        shipment.mapped_at = None

    shipment.status = new_status
    field = timestamp_field_for(new_status)
    if field:
        setattr(shipment, field, now or utcnow())

    await guard_io(db.commit(), "shipment status update")
    await db.refresh(shipment)

    logger.info(
        "Shipment status changed",
        extra={"shipment_id": shipment.id, "from": current.value, "to": new_status.value},
    )
    return shipment


async def delete_shipment(db: AsyncSession, shipment_id: int) -> None:
    """
    Delete a shipment. Only allowed while it is still created.

    Raises:
        InvalidStateTransitionError: shipment has progressed past created
    """
    shipment = await get_shipment(db, shipment_id)
    if shipment.status != S.CREATED:
        raise InvalidStateTransitionError(
            "shipment", shipment.status.value, "deleted", "only created shipments can be deleted"
        )
    await db.delete(shipment)
    await guard_io(db.commit(), "shipment delete")
    logger.info("Shipment deleted", extra={"shipment_id": shipment_id})


@retry_transient()
async def list_mappable_shipments(
    db: AsyncSession,
    origin_location_id: Optional[int] = None,
    destination_location_id: Optional[int] = None,
    customer_id: Optional[int] = None
) -> List[Shipment]:
    """
    Unmapped created/confirmed shipments a trip on this route may carry.

    A shipment with no pickup (drop, customer) set matches any origin
    (destination, customer).
    """
    query = select(Shipment).where(
        Shipment.status.in_(MAPPABLE_SHIPMENT_STATUSES),
        Shipment.trip_id.is_(None),
    )
    if origin_location_id is not None:
        query = query.where(or_(
            Shipment.pickup_location_id == origin_location_id,
            Shipment.pickup_location_id.is_(None),
        ))
    if destination_location_id is not None:
        query = query.where(or_(
            Shipment.drop_location_id == destination_location_id,
            Shipment.drop_location_id.is_(None),
        ))
    if customer_id is not None:
        query = query.where(or_(
            Shipment.customer_id == customer_id,
            Shipment.customer_id.is_(None),
        ))

    result = await guard_io(db.execute(query.order_by(Shipment.id)), "mappable shipment lookup")
    return list(result.scalars().all())


async def check_shipment_selection(
    db: AsyncSession,
    shipment_ids: Sequence[int],
    origin_location_id: Optional[int],
    destination_location_id: Optional[int],
    customer_id: Optional[int],
    trip_id: Optional[int] = None
) -> List[Finding]:
    """
    Check that every selected shipment can be mapped onto the trip.

    Shipments already mapped to trip_id are accepted as they are.
    """
    findings: List[Finding] = []
    for shipment_id in shipment_ids:
        shipment = await guard_io(db.get(Shipment, shipment_id), "shipment lookup")
        if not shipment:
            findings.append(Finding.error("shipments", "shipment_not_found", f"Shipment {shipment_id} not found"))
            continue

        code = shipment.shipment_code
        if trip_id is not None and shipment.trip_id == trip_id:
            continue
        if shipment.trip_id is not None:
            findings.append(Finding.error(
                "shipments", "shipment_already_mapped", f"Shipment {code} is already mapped to another trip"
            ))
            continue
        if shipment.status not in MAPPABLE_SHIPMENT_STATUSES:
            findings.append(Finding.error(
                "shipments", "shipment_not_mappable", f"Shipment {code} is {shipment.status.value} and cannot be mapped"
            ))
            continue

        if shipment.pickup_location_id is not None and origin_location_id is not None \
                and shipment.pickup_location_id != origin_location_id:
            findings.append(Finding.error(
                "shipments", "shipment_pickup_mismatch", f"Shipment {code} pickup does not match trip origin"
            ))
        if shipment.drop_location_id is not None and destination_location_id is not None \
                and shipment.drop_location_id != destination_location_id:
            findings.append(Finding.error(
                "shipments", "shipment_drop_mismatch", f"Shipment {code} drop does not match trip destination"
            ))
        if shipment.customer_id is not None and customer_id is not None and shipment.customer_id != customer_id:
            findings.append(Finding.error(
                "shipments", "shipment_customer_mismatch", f"Shipment {code} belongs to a different customer"
            ))
    return findings


async def map_shipments_to_trip(
    db: AsyncSession,
    trip_id: int,
    shipment_ids: Sequence[int],
    now: Optional[datetime] = None
) -> List[TripShipmentMap]:
    """
    Map shipments onto a trip (admission side effect, flush only).

    Each shipment moves to mapped, is stamped and linked, and gets a map
    row. sequence_order is 1-based in selection order and continues after
    the trip's existing mappings. Already-mapped shipments are skipped.
    """
    now = now or utcnow()

    result = await guard_io(
        db.execute(
            select(func.max(TripShipmentMap.sequence_order)).where(TripShipmentMap.trip_id == trip_id)
        ),
        "shipment map lookup",
    )
    sequence = result.scalar() or 0

    rows: List[TripShipmentMap] = []
    for shipment_id in shipment_ids:
        shipment = await get_shipment(db, shipment_id)
        if shipment.trip_id == trip_id:
            continue

        sequence += 1
        shipment.status = S.MAPPED
        shipment.mapped_at = now
        shipment.trip_id = trip_id

        row = TripShipmentMap(trip_id=trip_id, shipment_id=shipment.id, sequence_order=sequence)
        db.add(row)
        rows.append(row)

    if rows:
        await guard_io(db.flush(), "shipment mapping")
    return rows


async def release_trip_shipments(db: AsyncSession, trip_id: int) -> int:
    """
    Return a cancelled trip's not-yet-picked-up shipments to confirmed.

    Shipments past mapped stay on the trip. Flush only.
    """
    result = await guard_io(
        db.execute(select(Shipment).where(Shipment.trip_id == trip_id, Shipment.status == S.MAPPED)),
        "trip shipment lookup",
    )
    shipments = result.scalars().all()
    for shipment in shipments:
        await _unmap(db, shipment)
        shipment.status = S.CONFIRMED
        shipment.mapped_at = None
    if shipments:
        await guard_io(db.flush(), "trip shipment release")
    return len(shipments)


async def find_open_shipments(db: AsyncSession, trip_id: int) -> List[Shipment]:
    """Shipments on a trip that have not reached a terminal status."""
    result = await guard_io(
        db.execute(
            select(Shipment)
            .where(Shipment.trip_id == trip_id, Shipment.status.notin_(TERMINAL_SHIPMENT_STATUSES))
            .order_by(Shipment.id)
        ),
        "open shipment lookup",
    )
    return list(result.scalars().all())
