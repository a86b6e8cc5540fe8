"""
Trip admission engine tests.

Covers evaluation verdicts, the atomic commit (lane, trip, locks, consent,
shipments, audit) and edits.
"""

import re
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from backend.app.core.config import TrackingConfig
from backend.app.core.exceptions import (
    AssignmentConflictError,
    BlockingValidationError,
    InvalidStateTransitionError,
)
from backend.app.db.types import as_utc
from backend.app.domain.admission.findings import AdmissionVerdict, FindingSeverity
from backend.app.domain.admission.trip_admission import TripAdmissionEngine
from backend.app.models.assignment_lock import AssignmentLock
from backend.app.models.consent_enums import ConsentDecision
from backend.app.models.serviceability_lane import ServiceabilityLane
from backend.app.models.shipment_enums import ShipmentStatus
from backend.app.models.trip import Trip
from backend.app.models.trip_audit_log import TripAuditLog
from backend.app.models.trip_enums import AssignmentResource, TrackingType, TripStatus
from backend.app.models.trip_shipment_map import TripShipmentMap
from backend.app.schemas.trip import TripCandidate
from backend.app.services.assignment_locking import get_active_lock
from backend.app.services.trip_audit import TripAuditAction
from backend.tests.factories import MUMBAI, NOW, PUNE, TODAY, north_of


@pytest.fixture
async def route(factory):
    origin = await factory.location("Mumbai", MUMBAI)
    destination = await factory.location("Pune", PUNE)
    return origin, destination


@pytest.fixture
async def gps_vehicle(factory):
    vehicle = await factory.vehicle(tracking_asset_id=501)
    await factory.sample(vehicle, north_of(MUMBAI, 5))
    return vehicle


def candidate_for(route, vehicle=None, driver=None, **fields):
    origin, destination = route
    return TripCandidate(
        origin_location_id=origin.id,
        destination_location_id=destination.id,
        vehicle_id=vehicle.id if vehicle else None,
        driver_id=driver.id if driver else None,
        customer_id=11,
        transporter_id=21,
        **fields,
    )


async def _count(db, column, *criteria):
    result = await db.execute(select(func.count(column)).where(*criteria))
    return result.scalar()


async def _granted_consent(ledger, db, driver):
    consent = await ledger.request(db, driver.id, driver.mobile)
    consent = await ledger.resolve(db, consent.id, ConsentDecision.GRANTED)
    await db.commit()
    return consent


# ----------------------------------------------------------------------
# Evaluation
# ----------------------------------------------------------------------

async def test_clean_gps_candidate_is_admissible(admission_engine, db_session, route, gps_vehicle, factory):
    driver = await factory.driver()

    evaluation = await admission_engine.evaluate(db_session, candidate_for(route, gps_vehicle, driver))

    assert evaluation.verdict == AdmissionVerdict.ADMISSIBLE
    assert evaluation.findings == []
    assert evaluation.tracking.tracking_type == TrackingType.GPS


async def test_evaluate_writes_nothing(admission_engine, db_session, route, gps_vehicle, factory):
    driver = await factory.driver()

    await admission_engine.evaluate(db_session, candidate_for(route, gps_vehicle, driver))

    assert await _count(db_session, Trip.id) == 0
    assert await _count(db_session, ServiceabilityLane.id) == 0


async def test_same_origin_and_destination_is_blocked(admission_engine, db_session, route, gps_vehicle):
    origin, _ = route
    candidate = candidate_for((origin, origin), gps_vehicle)

    evaluation = await admission_engine.evaluate(db_session, candidate)

    assert evaluation.is_blocked
    assert "Origin and destination cannot be the same" in [f.message for f in evaluation.errors]


async def test_no_location_history_is_admissible_with_warning(admission_engine, db_session, route, factory):
    vehicle = await factory.vehicle(tracking_asset_id=77)
    driver = await factory.driver()

    evaluation = await admission_engine.evaluate(db_session, candidate_for(route, vehicle, driver))

    assert evaluation.verdict == AdmissionVerdict.ADMISSIBLE_WITH_WARNINGS
    assert [f.code for f in evaluation.warnings] == ["vehicle_location_unknown"]


async def test_unknown_vehicle_is_blocked(admission_engine, db_session, route):
    candidate = TripCandidate(
        origin_location_id=route[0].id, destination_location_id=route[1].id,
        vehicle_id=999, customer_id=1, transporter_id=1,
    )

    evaluation = await admission_engine.evaluate(db_session, candidate)

    assert [f.message for f in evaluation.errors] == ["Vehicle 999 not found"]


# ----------------------------------------------------------------------
# Admission
# ----------------------------------------------------------------------

async def test_admit_commits_trip_lane_locks_and_audit(admission_engine, db_session, route, gps_vehicle, factory):
    driver = await factory.driver()

    result = await admission_engine.admit(db_session, candidate_for(route, gps_vehicle, driver), actor=7)

    trip = result.trip
    assert trip.status == TripStatus.CREATED
    assert re.fullmatch(r"TRP-260310-\d{3}", trip.trip_code)
    assert trip.tracking_type == TrackingType.GPS
    assert trip.tracking_asset_id == 501
    assert trip.is_trackable is True
    assert re.fullmatch(r"MUM-PUN-\d{4}", result.lane.lane_code)
    assert trip.lane_id == result.lane.id

    vehicle_lock = await get_active_lock(db_session, AssignmentResource.VEHICLE, gps_vehicle.id)
    driver_lock = await get_active_lock(db_session, AssignmentResource.DRIVER, driver.id)
    assert vehicle_lock.trip_id == trip.id
    assert driver_lock.trip_id == trip.id

    entries = (await db_session.execute(
        select(TripAuditLog).where(TripAuditLog.trip_id == trip.id)
    )).scalars().all()
    assert [e.action for e in entries] == [TripAuditAction.TRIP_CREATED]
    assert entries[0].changed_by == 7


async def test_explicit_trip_code_is_kept_and_duplicates_blocked(admission_engine, db_session, route, factory):
    first_vehicle = await factory.vehicle(tracking_asset_id=1)
    second_vehicle = await factory.vehicle(tracking_asset_id=2)
    await admission_engine.admit(db_session, candidate_for(route, first_vehicle, trip_code="TRP-MANUAL-1"))

    with pytest.raises(BlockingValidationError) as exc_info:
        await admission_engine.admit(db_session, candidate_for(route, second_vehicle, trip_code="TRP-MANUAL-1"))

    assert exc_info.value.findings[0]["code"] == "trip_code_taken"


async def test_lane_is_reused_for_the_same_route(admission_engine, db_session, route, factory):
    first = await admission_engine.admit(db_session, candidate_for(route, await factory.vehicle(tracking_asset_id=1)))
    second = await admission_engine.admit(db_session, candidate_for(route, await factory.vehicle(tracking_asset_id=2)))

    assert first.lane.id == second.lane.id
    assert await _count(db_session, ServiceabilityLane.id) == 1


async def test_trip_distance_defaults_to_lane_distance(admission_engine, db_session, route, factory):
    origin, destination = route
    lane = await factory._save(ServiceabilityLane(
        lane_code="MUM-PUN-0001",
        origin_location_id=origin.id,
        destination_location_id=destination.id,
        distance_km=148.0,
    ))

    result = await admission_engine.admit(db_session, candidate_for(route, await factory.vehicle(tracking_asset_id=1)))

    assert result.trip.lane_id == lane.id
    assert result.trip.total_distance_km == 148.0


async def test_expired_insurance_blocks_admission(admission_engine, db_session, route, factory):
    vehicle = await factory.vehicle(tracking_asset_id=9, insurance_expiry_date=TODAY - timedelta(days=1))
    await factory.sample(vehicle, MUMBAI)

    with pytest.raises(BlockingValidationError) as exc_info:
        await admission_engine.admit(db_session, candidate_for(route, vehicle))

    errors = [f for f in exc_info.value.findings if f["severity"] == FindingSeverity.ERROR.value]
    assert [f["message"] for f in errors] == ["Vehicle insurance has expired"]
    assert exc_info.value.status_code == 422
    assert await _count(db_session, Trip.id) == 0


async def test_vehicle_80km_from_origin_is_blocked(admission_engine, db_session, route, factory):
    vehicle = await factory.vehicle(tracking_asset_id=9)
    await factory.sample(vehicle, north_of(MUMBAI, 80))

    with pytest.raises(BlockingValidationError) as exc_info:
        await admission_engine.admit(db_session, candidate_for(route, vehicle))

    messages = [f["message"] for f in exc_info.value.findings]
    assert len(messages) == 1
    assert "80" in messages[0] and "50 km" in messages[0]


async def test_vehicle_on_ongoing_trip_cannot_be_admitted_again(admission_engine, db_session, route, gps_vehicle, factory):
    first = await admission_engine.admit(db_session, candidate_for(route, gps_vehicle, await factory.driver()))
    await admission_engine.transition(db_session, first.trip.id, TripStatus.ONGOING, actor=7)

    with pytest.raises(BlockingValidationError) as exc_info:
        await admission_engine.admit(db_session, candidate_for(route, gps_vehicle, await factory.driver()))

    messages = [f["message"] for f in exc_info.value.findings]
    assert messages == [f"Vehicle is already assigned to active trip: {first.trip.trip_code}"]


async def test_lock_conflict_at_commit_rolls_back(admission_engine, db_session, route, gps_vehicle, factory):
    # A lock left behind by another writer that availability cannot see
    other = await factory._save(Trip(trip_code="TRP-OTHER", customer_id=1, transporter_id=1,
                                     status=TripStatus.CANCELLED, vehicle_id=gps_vehicle.id))
    await factory._save(AssignmentLock(resource_type=AssignmentResource.VEHICLE,
                                       resource_id=gps_vehicle.id, trip_id=other.id))

    with pytest.raises(AssignmentConflictError) as exc_info:
        await admission_engine.admit(db_session, candidate_for(route, gps_vehicle))

    assert exc_info.value.status_code == 409
    assert exc_info.value.findings[0]["code"] == "assignment_conflict"
    assert await _count(db_session, Trip.id) == 1
    assert await _count(db_session, ServiceabilityLane.id) == 0


async def test_sim_tracking_with_granted_consent(admission_engine, ledger, db_session, route, factory):
    vehicle = await factory.vehicle()
    await factory.sample(vehicle, MUMBAI)
    driver = await factory.driver()
    consent = await _granted_consent(ledger, db_session, driver)

    result = await admission_engine.admit(db_session, candidate_for(route, vehicle, driver))

    assert result.trip.tracking_type == TrackingType.SIM
    assert result.trip.sim_consent_id == consent.id
    assert result.trip.is_trackable is True
    assert consent.trip_id == result.trip.id


async def test_missing_consent_blocks_sim_trip(admission_engine, db_session, route, factory):
    vehicle = await factory.vehicle()
    await factory.sample(vehicle, MUMBAI)
    driver = await factory.driver()

    with pytest.raises(BlockingValidationError) as exc_info:
        await admission_engine.admit(db_session, candidate_for(route, vehicle, driver))

    assert [f["code"] for f in exc_info.value.findings] == ["sim_consent_required"]


async def test_missing_consent_only_warns_when_not_enforced(db_session, route, factory, ledger, clock):
    engine = TripAdmissionEngine(TrackingConfig(enforce_sim_consent=False), ledger=ledger, clock=clock)
    vehicle = await factory.vehicle()
    await factory.sample(vehicle, MUMBAI)
    driver = await factory.driver()

    result = await engine.admit(db_session, candidate_for(route, vehicle, driver))

    assert result.trip.tracking_type == TrackingType.MANUAL
    assert result.verdict == AdmissionVerdict.ADMISSIBLE_WITH_WARNINGS
    assert result.trip.is_trackable is False


async def test_expired_consent_does_not_give_sim(admission_engine, ledger, db_session, route, factory, clock):
    vehicle = await factory.vehicle()
    await factory.sample(vehicle, MUMBAI)
    driver = await factory.driver()
    await _granted_consent(ledger, db_session, driver)
    clock.advance(hours=30)

    evaluation = await admission_engine.evaluate(db_session, candidate_for(route, vehicle, driver))

    assert evaluation.tracking.tracking_type == TrackingType.MANUAL
    assert evaluation.tracking.consent_required


async def test_selected_shipment_becomes_mapped(admission_engine, db_session, route, gps_vehicle, factory):
    origin, destination = route
    shipment = await factory.shipment(pickup_location_id=origin.id, drop_location_id=destination.id)

    result = await admission_engine.admit(
        db_session, candidate_for(route, gps_vehicle, shipment_ids=[shipment.id])
    )

    mapping = (await db_session.execute(
        select(TripShipmentMap).where(TripShipmentMap.shipment_id == shipment.id)
    )).scalar_one()
    assert mapping.trip_id == result.trip.id
    assert mapping.sequence_order == 1
    assert result.mapped_shipment_ids == [shipment.id]

    await factory.session.refresh(shipment)
    assert shipment.status == ShipmentStatus.MAPPED
    assert shipment.trip_id == result.trip.id
    assert as_utc(shipment.mapped_at) == NOW


async def test_shipment_for_another_route_is_blocked(admission_engine, db_session, route, gps_vehicle, factory):
    elsewhere = await factory.location("Nashik", (19.99, 73.79))
    shipment = await factory.shipment(pickup_location_id=elsewhere.id)

    with pytest.raises(BlockingValidationError) as exc_info:
        await admission_engine.admit(db_session, candidate_for(route, gps_vehicle, shipment_ids=[shipment.id]))

    assert [f["code"] for f in exc_info.value.findings] == ["shipment_pickup_mismatch"]


async def test_progressed_shipment_cannot_be_mapped(admission_engine, db_session, route, gps_vehicle, factory):
    shipment = await factory.shipment(status=ShipmentStatus.DELIVERED)

    with pytest.raises(BlockingValidationError) as exc_info:
        await admission_engine.admit(db_session, candidate_for(route, gps_vehicle, shipment_ids=[shipment.id]))

    assert [f["code"] for f in exc_info.value.findings] == ["shipment_not_mappable"]


# ----------------------------------------------------------------------
# Edits
# ----------------------------------------------------------------------

async def _assignment_entries(db, trip_id):
    result = await db.execute(
        select(TripAuditLog).where(
            TripAuditLog.trip_id == trip_id,
            TripAuditLog.action == TripAuditAction.ASSIGNMENT_CHANGED,
        )
    )
    return result.scalars().all()


async def test_edit_without_reassignment_writes_no_audit(admission_engine, db_session, route, gps_vehicle, factory):
    admitted = await admission_engine.admit(db_session, candidate_for(route, gps_vehicle, await factory.driver()))
    trip = admitted.trip

    candidate = admission_engine.candidate_for_edit(trip, {"notes": "Dock 4", "consignee_name": "Acme"})
    result = await admission_engine.update(db_session, trip.id, candidate, actor=7)

    assert result.trip.notes == "Dock 4"
    assert await _assignment_entries(db_session, trip.id) == []


async def test_driver_change_writes_one_audit_entry(admission_engine, db_session, route, gps_vehicle, factory):
    old_driver = await factory.driver("Ramesh")
    new_driver = await factory.driver("Suresh")
    admitted = await admission_engine.admit(db_session, candidate_for(route, gps_vehicle, old_driver))
    trip = admitted.trip

    candidate = admission_engine.candidate_for_edit(trip, {"driver_id": new_driver.id})
    await admission_engine.update(db_session, trip.id, candidate, actor=7)

    entries = await _assignment_entries(db_session, trip.id)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.change_reason == "Driver assignment changed"
    assert entry.changed_by == 7
    assert entry.meta_data == {
        "driver_change": {
            "previous": {"id": old_driver.id, "name": "Ramesh"},
            "new": {"id": new_driver.id, "name": "Suresh"},
        }
    }
    assert (await get_active_lock(db_session, AssignmentResource.DRIVER, new_driver.id)).trip_id == trip.id
    assert await get_active_lock(db_session, AssignmentResource.DRIVER, old_driver.id) is None


async def test_vehicle_and_driver_change_share_one_entry(admission_engine, db_session, route, gps_vehicle, factory):
    admitted = await admission_engine.admit(db_session, candidate_for(route, gps_vehicle, await factory.driver()))
    trip = admitted.trip
    new_vehicle = await factory.vehicle(tracking_asset_id=502)
    await factory.sample(new_vehicle, MUMBAI)
    new_driver = await factory.driver()

    candidate = admission_engine.candidate_for_edit(trip, {"vehicle_id": new_vehicle.id, "driver_id": new_driver.id})
    await admission_engine.update(db_session, trip.id, candidate, actor=7, reason="Breakdown at yard")

    entries = await _assignment_entries(db_session, trip.id)
    assert len(entries) == 1
    assert entries[0].change_reason == "Breakdown at yard"
    assert set(entries[0].meta_data) == {"vehicle_change", "driver_change"}
    assert entries[0].meta_data["vehicle_change"]["previous"]["id"] == gps_vehicle.id


async def test_edit_to_busy_vehicle_is_blocked(admission_engine, db_session, route, factory):
    busy = await factory.vehicle(tracking_asset_id=1)
    free = await factory.vehicle(tracking_asset_id=2)
    holder = await admission_engine.admit(db_session, candidate_for(route, busy))
    admitted = await admission_engine.admit(db_session, candidate_for(route, free))

    candidate = admission_engine.candidate_for_edit(admitted.trip, {"vehicle_id": busy.id})
    with pytest.raises(BlockingValidationError) as exc_info:
        await admission_engine.update(db_session, admitted.trip.id, candidate)

    assert holder.trip.trip_code in exc_info.value.findings[0]["message"]


async def test_ongoing_trip_cannot_lose_its_vehicle(admission_engine, db_session, route, gps_vehicle, factory):
    admitted = await admission_engine.admit(db_session, candidate_for(route, gps_vehicle, await factory.driver()))
    await admission_engine.transition(db_session, admitted.trip.id, TripStatus.ONGOING, actor=7)

    candidate = admission_engine.candidate_for_edit(admitted.trip, {"vehicle_id": None})
    with pytest.raises(BlockingValidationError) as exc_info:
        await admission_engine.update(db_session, admitted.trip.id, candidate)

    assert "Vehicle is required for ongoing trips" in [f["message"] for f in exc_info.value.findings]


async def test_completed_trip_cannot_be_edited(admission_engine, db_session, route, gps_vehicle, factory):
    admitted = await admission_engine.admit(db_session, candidate_for(route, gps_vehicle, await factory.driver()))
    await admission_engine.transition(db_session, admitted.trip.id, TripStatus.ONGOING, actor=7)
    await admission_engine.transition(db_session, admitted.trip.id, TripStatus.COMPLETED, actor=7)

    candidate = admission_engine.candidate_for_edit(admitted.trip, {"notes": "late"})
    with pytest.raises(InvalidStateTransitionError):
        await admission_engine.update(db_session, admitted.trip.id, candidate)


async def test_driver_switch_moves_sim_consent(admission_engine, ledger, db_session, route, factory):
    vehicle = await factory.vehicle()
    await factory.sample(vehicle, MUMBAI)
    first_driver = await factory.driver()
    second_driver = await factory.driver()
    first_consent = await _granted_consent(ledger, db_session, first_driver)
    second_consent = await _granted_consent(ledger, db_session, second_driver)
    admitted = await admission_engine.admit(db_session, candidate_for(route, vehicle, first_driver))

    candidate = admission_engine.candidate_for_edit(admitted.trip, {"driver_id": second_driver.id})
    result = await admission_engine.update(db_session, admitted.trip.id, candidate)

    assert result.trip.tracking_type == TrackingType.SIM
    assert result.trip.sim_consent_id == second_consent.id
    assert second_consent.trip_id == admitted.trip.id
    assert first_consent.trip_id is None


async def test_driver_switch_without_consent_is_blocked(admission_engine, ledger, db_session, route, factory):
    vehicle = await factory.vehicle()
    await factory.sample(vehicle, MUMBAI)
    first_driver = await factory.driver()
    await _granted_consent(ledger, db_session, first_driver)
    admitted = await admission_engine.admit(db_session, candidate_for(route, vehicle, first_driver))
    second_driver = await factory.driver()

    candidate = admission_engine.candidate_for_edit(admitted.trip, {"driver_id": second_driver.id})
    with pytest.raises(BlockingValidationError) as exc_info:
        await admission_engine.update(db_session, admitted.trip.id, candidate)

    assert [f["code"] for f in exc_info.value.findings] == ["sim_consent_required"]


async def test_shipments_added_on_edit_continue_the_sequence(admission_engine, db_session, route, gps_vehicle, factory):
    first = await factory.shipment()
    second = await factory.shipment()
    admitted = await admission_engine.admit(
        db_session, candidate_for(route, gps_vehicle, shipment_ids=[first.id])
    )

    candidate = admission_engine.candidate_for_edit(admitted.trip, {"shipment_ids": [second.id]})
    result = await admission_engine.update(db_session, admitted.trip.id, candidate)

    rows = (await db_session.execute(
        select(TripShipmentMap).where(TripShipmentMap.trip_id == admitted.trip.id)
        .order_by(TripShipmentMap.sequence_order)
    )).scalars().all()
    assert [(r.shipment_id, r.sequence_order) for r in rows] == [(first.id, 1), (second.id, 2)]
    assert result.mapped_shipment_ids == [second.id]


async def test_resent_request_does_not_displace_trip_consent(admission_engine, ledger, db_session, route, factory):
    vehicle = await factory.vehicle()
    await factory.sample(vehicle, MUMBAI)
    driver = await factory.driver()
    consent = await _granted_consent(ledger, db_session, driver)
    admitted = await admission_engine.admit(db_session, candidate_for(route, vehicle, driver))
    resent = await ledger.request(db_session, driver.id, driver.mobile)
    await db_session.commit()

    candidate = admission_engine.candidate_for_edit(admitted.trip, {"notes": "Gate 2"})
    result = await admission_engine.update(db_session, admitted.trip.id, candidate)

    assert resent.id != consent.id
    assert result.trip.tracking_type == TrackingType.SIM
    assert result.trip.sim_consent_id == consent.id
    assert consent.trip_id == admitted.trip.id


async def test_route_change_takes_the_new_lane_distance(admission_engine, db_session, route, gps_vehicle, factory):
    origin, destination = route
    nashik = await factory.location("Nashik", (19.99, 73.79))
    await factory._save(ServiceabilityLane(
        lane_code="MUM-PUN-0001", origin_location_id=origin.id, destination_location_id=destination.id,
        distance_km=148.0,
    ))
    await factory._save(ServiceabilityLane(
        lane_code="MUM-NAS-0001", origin_location_id=origin.id, destination_location_id=nashik.id,
        distance_km=167.0,
    ))
    admitted = await admission_engine.admit(db_session, candidate_for(route, gps_vehicle))
    assert admitted.trip.total_distance_km == 148.0

    candidate = admission_engine.candidate_for_edit(admitted.trip, {"destination_location_id": nashik.id})
    result = await admission_engine.update(db_session, admitted.trip.id, candidate)

    assert result.lane.lane_code == "MUM-NAS-0001"
    assert result.trip.total_distance_km == 167.0


def test_explicit_distance_survives_route_change():
    trip = Trip(trip_code="TRP-1", customer_id=1, transporter_id=1, origin_location_id=1,
                destination_location_id=2, lane_id=5, total_distance_km=148.0)

    rerouted = TripAdmissionEngine.candidate_for_edit(trip, {"destination_location_id": 3})
    measured = TripAdmissionEngine.candidate_for_edit(trip, {"destination_location_id": 3, "total_distance_km": 171.5})

    assert rerouted.lane_id is None and rerouted.total_distance_km is None
    assert measured.total_distance_km == 171.5
