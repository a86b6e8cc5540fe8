"""
Trip Admission Engine (Domain Logic).

Decides whether a vehicle/driver pair may be put on a new or edited trip,
which tracking channel governs it, and commits the admission.

Flow:
1. Evaluate (read only): route, mandatory fields, availability, compliance,
   proximity, shipment eligibility, tracking resolution
2. Blocked -> BlockingValidationError, nothing written
3. Otherwise, in one transaction: lane, trip, assignment locks (with an
   availability re-check), consent linkage, shipment mapping, audit
4. Lock conflict at commit -> rollback, AssignmentConflictError
"""

import logging
import random
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import TrackingConfig
from backend.app.core.exceptions import (
    AppException,
    AssignmentConflictError,
    BlockingValidationError,
    InvalidStateTransitionError,
    ResourceNotFoundError,
)
from backend.app.core.reliability import guard_io
from backend.app.db.types import utcnow
from backend.app.domain.admission import trip_lifecycle
from backend.app.domain.admission.findings import (
    AdmissionVerdict,
    Finding,
    classify,
    errors_of,
    warnings_of,
)
from backend.app.models.consent_enums import ConsentStatus
from backend.app.models.driver import Driver
from backend.app.models.driver_consent import DriverConsent
from backend.app.models.location import Location
from backend.app.models.serviceability_lane import ServiceabilityLane
from backend.app.models.trip import Trip
from backend.app.models.trip_enums import (
    AssignmentResource,
    IN_FLIGHT_TRIP_STATUSES,
    TrackingType,
    TripStatus,
)
from backend.app.models.vehicle import Vehicle
from backend.app.schemas.trip import TripCandidate
from backend.app.services.assignment_locking import acquire_trip_locks, move_assignment_lock, release_trip_locks
from backend.app.services.availability import check_availability
from backend.app.services.compliance import check_compliance
from backend.app.services.consent_ledger import ConsentLedger
from backend.app.services.lane_provisioning import get_or_create_lane
from backend.app.services.proximity import ProximityValidator
from backend.app.services.shipment_workflow import (
    check_shipment_selection,
    find_open_shipments,
    map_shipments_to_trip,
    release_trip_shipments,
)
from backend.app.services.tracking_resolver import SIM_CONSENT_REQUIRED, TrackingDecision, resolve_tracking
from backend.app.services.trip_audit import TripAuditAction, log_assignment_change, log_trip_event

logger = logging.getLogger(__name__)

MAX_TRIP_CODE_ATTEMPTS = 10

MANDATORY_IN_FLIGHT_FIELDS = (
    ("origin_location_id", "origin", "Origin"),
    ("destination_location_id", "destination", "Destination"),
    ("vehicle_id", "vehicle", "Vehicle"),
    ("driver_id", "driver", "Driver"),
)


class AdmissionEvaluation:
    """
    Outcome of evaluating a candidate trip.

    Holds the entities loaded during evaluation so the commit step does not
    read them again.
    """

    def __init__(
        self,
        findings: List[Finding],
        tracking: TrackingDecision,
        consent: Optional[DriverConsent] = None,
        vehicle: Optional[Vehicle] = None,
        driver: Optional[Driver] = None,
        origin: Optional[Location] = None,
        destination: Optional[Location] = None,
    ):
        self.findings = findings
        self.tracking = tracking
        self.consent = consent
        self.vehicle = vehicle
        self.driver = driver
        self.origin = origin
        self.destination = destination

    @property
    def verdict(self) -> AdmissionVerdict:
        return classify(self.findings)

    @property
    def is_blocked(self) -> bool:
        return self.verdict == AdmissionVerdict.BLOCKED

    @property
    def errors(self) -> List[Finding]:
        return errors_of(self.findings)

    @property
    def warnings(self) -> List[Finding]:
        return warnings_of(self.findings)

    def findings_payload(self) -> List[Dict[str, Any]]:
        return [f.model_dump(mode="json") for f in self.findings]


class AdmissionResult:
    """A committed admission or edit."""

    def __init__(self, trip: Trip, evaluation: AdmissionEvaluation, lane: Optional[ServiceabilityLane] = None,
                 mapped_shipment_ids: Optional[List[int]] = None):
        self.trip = trip
        self.evaluation = evaluation
        self.lane = lane
        self.mapped_shipment_ids = mapped_shipment_ids or []

    @property
    def verdict(self) -> AdmissionVerdict:
        return self.evaluation.verdict

    @property
    def warnings(self) -> List[Finding]:
        return self.evaluation.warnings


def _conflict_findings(exc: IntegrityError) -> List[Dict[str, Any]]:
    text = str(exc.orig) if exc.orig is not None else str(exc)
    if "trip_code" in text:
        finding = Finding.error("trip_code", "trip_code_taken", "Trip code was taken by another trip")
    else:
        finding = Finding.error(
            "assignment",
            "assignment_conflict",
            "Vehicle or driver was assigned to another trip while this trip was being saved",
        )
    return [finding.model_dump(mode="json")]


def _vehicle_ref(vehicle: Optional[Vehicle]) -> Optional[Dict[str, Any]]:
    if vehicle is None:
        return None
    return {"id": vehicle.id, "vehicle_number": vehicle.vehicle_number}


def _driver_ref(driver: Optional[Driver]) -> Optional[Dict[str, Any]]:
    if driver is None:
        return None
    return {"id": driver.id, "name": driver.name}


class TripAdmissionEngine:
    """
    Trip Admission Engine.

    Args:
        config: Tracking configuration
        ledger: Consent ledger (built from config and clock if omitted)
        clock: Returns the current aware UTC time
    """

    def __init__(
        self,
        config: TrackingConfig,
        ledger: Optional[ConsentLedger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.clock = clock
        self.ledger = ledger or ConsentLedger(config, clock)
        self.proximity = ProximityValidator(config)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def _load(self, db: AsyncSession, model, entity_id: Optional[int], field: str, label: str,
                    findings: List[Finding]):
        if entity_id is None:
            return None
        entity = await guard_io(db.get(model, entity_id), f"{field} lookup")
        if entity is None:
            findings.append(Finding.error(field, f"{field}_not_found", f"{label} {entity_id} not found"))
            return None
        if not getattr(entity, "is_active", True):
            findings.append(Finding.error(field, f"{field}_inactive", f"{label} is inactive"))
        return entity

    async def evaluate(
        self,
        db: AsyncSession,
        candidate: TripCandidate,
        trip: Optional[Trip] = None
    ) -> AdmissionEvaluation:
        """
        Evaluate a candidate trip without writing anything.

        Args:
            db: Database session
            candidate: Proposed trip (full desired state on edits)
            trip: Existing trip being edited, None for a new trip

        Returns:
            AdmissionEvaluation with merged findings and the tracking decision
        """
        findings: List[Finding] = []
        editing = trip is not None
        trip_id = trip.id if editing else None

        vehicle_changed = not editing or candidate.vehicle_id != trip.vehicle_id
        driver_changed = not editing or candidate.driver_id != trip.driver_id
        origin_changed = not editing or candidate.origin_location_id != trip.origin_location_id

        # Route
        if candidate.origin_location_id is not None \
                and candidate.origin_location_id == candidate.destination_location_id:
            findings.append(Finding.error(
                "route", "route_same_origin_destination", "Origin and destination cannot be the same"
            ))

        # Trip code
        if not editing and candidate.trip_code:
            existing = await guard_io(
                db.execute(select(Trip.id).where(Trip.trip_code == candidate.trip_code)), "trip code lookup"
            )
            if existing.first() is not None:
                findings.append(Finding.error(
                    "trip_code", "trip_code_taken", f"Trip code {candidate.trip_code} already exists"
                ))

        # Mandatory fields once a trip is under way
        if editing and trip.status in IN_FLIGHT_TRIP_STATUSES:
            status_label = trip.status.value.replace("_", " ")
            for attribute, field, label in MANDATORY_IN_FLIGHT_FIELDS:
                if getattr(candidate, attribute) is None:
                    findings.append(Finding.error(
                        field, f"{field}_required", f"{label} is required for {status_label} trips"
                    ))

        origin = await self._load(db, Location, candidate.origin_location_id, "origin", "Origin location", findings)
        destination = await self._load(
            db, Location, candidate.destination_location_id, "destination", "Destination location", findings
        )
        vehicle = await self._load(db, Vehicle, candidate.vehicle_id, "vehicle", "Vehicle", findings)
        driver = await self._load(db, Driver, candidate.driver_id, "driver", "Driver", findings)

        # Availability (advisory; re-checked at commit)
        if vehicle_changed or driver_changed:
            findings.extend(await check_availability(
                db,
                candidate.vehicle_id if vehicle_changed else None,
                candidate.driver_id if driver_changed else None,
                exclude_trip_id=trip_id,
            ))

        # Compliance of newly assigned resources
        findings.extend(check_compliance(
            vehicle=vehicle if vehicle_changed else None,
            driver=driver if driver_changed else None,
            reference_date=self.clock(),
            config=self.config,
        ).findings)

        # Proximity: always on create, on edit only before the trip starts
        if vehicle and (not editing or (trip.status == TripStatus.CREATED and (vehicle_changed or origin_changed))):
            findings.extend(await self.proximity.validate(db, vehicle.id, origin))

        # Shipments
        if candidate.shipment_ids:
            findings.extend(await check_shipment_selection(
                db,
                candidate.shipment_ids,
                candidate.origin_location_id,
                candidate.destination_location_id,
                candidate.customer_id,
                trip_id=trip_id,
            ))

        # Tracking
        consent = None
        consent_status = None
        has_channel = bool(vehicle and vehicle.has_tracking_channel)
        if vehicle and not has_channel and driver:
            consent = await self.ledger.find_usable(
                db,
                driver.id,
                trip_id,
                linked_consent_id=trip.sim_consent_id if editing and not driver_changed else None,
            )
            if consent:
                consent_status = ConsentStatus.GRANTED
            else:
                consent_status = await self.ledger.get_effective_status(db, driver.id)
                if consent_status == ConsentStatus.GRANTED:
                    # Granted, but backing another active trip
                    consent_status = ConsentStatus.NOT_REQUESTED

        tracking = resolve_tracking(
            vehicle_selected=vehicle is not None,
            has_tracking_channel=has_channel,
            driver_selected=driver is not None,
            consent_status=consent_status,
        )
        enforce = self.config.enforce_sim_consent and (vehicle_changed or driver_changed)
        for finding in tracking.findings:
            if finding.code == SIM_CONSENT_REQUIRED and enforce:
                finding = Finding.error(finding.field, finding.code, finding.message)
            findings.append(finding)

        return AdmissionEvaluation(
            findings=findings,
            tracking=tracking,
            consent=consent if tracking.tracking_type == TrackingType.SIM else None,
            vehicle=vehicle,
            driver=driver,
            origin=origin,
            destination=destination,
        )

    # ------------------------------------------------------------------
    # Commit helpers
    # ------------------------------------------------------------------

    async def _generate_trip_code(self, db: AsyncSession) -> str:
        date_part = self.clock().strftime("%y%m%d")
        for _ in range(MAX_TRIP_CODE_ATTEMPTS):
            code = f"TRP-{date_part}-{random.randint(0, 999):03d}"
            existing = await guard_io(db.execute(select(Trip.id).where(Trip.trip_code == code)), "trip code lookup")
            if existing.first() is None:
                return code
        raise AppException(
            message="Could not allocate a trip code",
            error_code="ERR_TRIP_CODE",
            status_code=500,
        )

    async def _resolve_lane(
        self,
        db: AsyncSession,
        lane_id: Optional[int],
        origin: Optional[Location],
        destination: Optional[Location]
    ) -> Optional[ServiceabilityLane]:
        if lane_id is not None:
            lane = await guard_io(db.get(ServiceabilityLane, lane_id), "lane lookup")
            if lane is None:
                raise ResourceNotFoundError("Lane", lane_id)
            return lane
        if origin is None or destination is None:
            return None
        return await get_or_create_lane(db, origin, destination)

    async def _recheck_availability(
        self,
        db: AsyncSession,
        trip_id: int,
        vehicle_id: Optional[int],
        driver_id: Optional[int]
    ) -> None:
        conflicts = await check_availability(db, vehicle_id, driver_id, exclude_trip_id=trip_id)
        if conflicts:
            raise AssignmentConflictError([f.model_dump(mode="json") for f in conflicts])

    def _apply_tracking(self, trip: Trip, evaluation: AdmissionEvaluation) -> None:
        trip.tracking_type = evaluation.tracking.tracking_type
        trip.is_trackable = evaluation.tracking.is_trackable
        trip.tracking_asset_id = evaluation.vehicle.tracking_asset_id if evaluation.vehicle else None

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def admit(self, db: AsyncSession, candidate: TripCandidate, actor: Optional[int] = None) -> AdmissionResult:
        """
        Admit a new trip.

        Raises:
            BlockingValidationError: candidate has error findings
            AssignmentConflictError: vehicle/driver taken between evaluation
                and commit
            TransientIOError: store unavailable
        """
        evaluation = await self.evaluate(db, candidate)
        if evaluation.is_blocked:
            logger.info(
                "Trip admission blocked",
                extra={"vehicle_id": candidate.vehicle_id, "driver_id": candidate.driver_id,
                       "errors": [f.code for f in evaluation.errors]},
            )
            raise BlockingValidationError(evaluation.findings_payload())

        try:
            lane = await self._resolve_lane(db, candidate.lane_id, evaluation.origin, evaluation.destination)

            trip = Trip(
                trip_code=candidate.trip_code or await self._generate_trip_code(db),
                status=TripStatus.CREATED,
                origin_location_id=candidate.origin_location_id,
                destination_location_id=candidate.destination_location_id,
                lane_id=lane.id if lane else None,
                vehicle_id=candidate.vehicle_id,
                driver_id=candidate.driver_id,
                customer_id=candidate.customer_id,
                transporter_id=candidate.transporter_id,
                consignee_name=candidate.consignee_name,
                planned_start_time=candidate.planned_start_time,
                planned_end_time=candidate.planned_end_time,
                total_distance_km=(
                    candidate.total_distance_km if candidate.total_distance_km is not None
                    else (lane.distance_km if lane else None)
                ),
                notes=candidate.notes,
            )
            self._apply_tracking(trip, evaluation)
            db.add(trip)
            await guard_io(db.flush(), "trip insert")

            await self._recheck_availability(db, trip.id, trip.vehicle_id, trip.driver_id)
            await acquire_trip_locks(db, trip.id, trip.vehicle_id, trip.driver_id)

            if evaluation.consent is not None:
                await self.ledger.consume(db, evaluation.consent.id, trip.id)
                trip.sim_consent_id = evaluation.consent.id

            mapped = await map_shipments_to_trip(db, trip.id, candidate.shipment_ids, now=self.clock())

            await log_trip_event(
                db,
                trip_id=trip.id,
                action=TripAuditAction.TRIP_CREATED,
                changed_by=actor,
                new_status=TripStatus.CREATED,
                metadata={"tracking_type": trip.tracking_type.value, "shipment_ids": [m.shipment_id for m in mapped]},
            )

            await guard_io(db.commit(), "trip admission commit")
        except IntegrityError as exc:
            await db.rollback()
            logger.warning("Assignment conflict at commit", extra={"vehicle_id": candidate.vehicle_id,
                                                                   "driver_id": candidate.driver_id})
            raise AssignmentConflictError(_conflict_findings(exc)) from exc
        except Exception:
            await db.rollback()
            raise

        await db.refresh(trip)
        logger.info(
            "Trip admitted",
            extra={"trip_id": trip.id, "trip_code": trip.trip_code, "tracking_type": trip.tracking_type.value,
                   "warnings": len(evaluation.warnings)},
        )
        return AdmissionResult(trip, evaluation, lane, [m.shipment_id for m in mapped])

    # ------------------------------------------------------------------
    # Edit
    # ------------------------------------------------------------------

    async def get_trip(self, db: AsyncSession, trip_id: int) -> Trip:
        trip = await guard_io(db.get(Trip, trip_id), "trip lookup")
        if not trip:
            raise ResourceNotFoundError("Trip", trip_id)
        return trip

    @staticmethod
    def candidate_for_edit(trip: Trip, changes: Dict[str, Any]) -> TripCandidate:
        """Merge a partial edit onto a trip's current values."""
        fields = {
            "trip_code": trip.trip_code,
            "origin_location_id": trip.origin_location_id,
            "destination_location_id": trip.destination_location_id,
            "lane_id": trip.lane_id,
            "vehicle_id": trip.vehicle_id,
            "driver_id": trip.driver_id,
            "customer_id": trip.customer_id,
            "transporter_id": trip.transporter_id,
            "consignee_name": trip.consignee_name,
            "planned_start_time": trip.planned_start_time,
            "planned_end_time": trip.planned_end_time,
            "total_distance_km": trip.total_distance_km,
            "notes": trip.notes,
        }
        # A route change invalidates the old lane and distance unless new ones are given
        route_changed = any(
            key in changes and changes[key] != fields[key]
            for key in ("origin_location_id", "destination_location_id")
        )
        if route_changed and "lane_id" not in changes:
            fields["lane_id"] = None
        if route_changed and "total_distance_km" not in changes:
            fields["total_distance_km"] = None
        for key, value in changes.items():
            # Customer and transporter can be replaced, never cleared
            if key in ("customer_id", "transporter_id") and value is None:
                continue
            if key in fields or key == "shipment_ids":
                fields[key] = value
        return TripCandidate(**fields)

    async def update(
        self,
        db: AsyncSession,
        trip_id: int,
        candidate: TripCandidate,
        actor: Optional[int] = None,
        reason: Optional[str] = None
    ) -> AdmissionResult:
        """
        Apply a field-changing edit to a trip.

        candidate is the trip's full desired state (see candidate_for_edit);
        its shipment_ids are added after the trip's existing shipments. A
        vehicle or driver change writes exactly one audit entry.

        Raises:
            ResourceNotFoundError: unknown trip
            InvalidStateTransitionError: trip is completed, cancelled or closed
            BlockingValidationError, AssignmentConflictError, TransientIOError
        """
        trip = await self.get_trip(db, trip_id)
        if not trip_lifecycle.is_editable(trip.status):
            raise InvalidStateTransitionError(
                "trip", trip.status.value, "edited", f"{trip.status.value} trips cannot be edited"
            )

        evaluation = await self.evaluate(db, candidate, trip)
        if evaluation.is_blocked:
            logger.info("Trip edit blocked", extra={"trip_id": trip_id, "errors": [f.code for f in evaluation.errors]})
            raise BlockingValidationError(evaluation.findings_payload())

        vehicle_changed = candidate.vehicle_id != trip.vehicle_id
        driver_changed = candidate.driver_id != trip.driver_id
        route_changed = (
            candidate.origin_location_id != trip.origin_location_id
            or candidate.destination_location_id != trip.destination_location_id
            or candidate.lane_id != trip.lane_id
        )

        try:
            previous_vehicle = await guard_io(db.get(Vehicle, trip.vehicle_id), "vehicle lookup") \
                if vehicle_changed and trip.vehicle_id else None
            previous_driver = await guard_io(db.get(Driver, trip.driver_id), "driver lookup") \
                if driver_changed and trip.driver_id else None

            lane = None
            if route_changed:
                lane = await self._resolve_lane(db, candidate.lane_id, evaluation.origin, evaluation.destination)
                trip.lane_id = lane.id if lane else None
                if candidate.total_distance_km is None and lane is not None:
                    candidate.total_distance_km = lane.distance_km

            trip.origin_location_id = candidate.origin_location_id
            trip.destination_location_id = candidate.destination_location_id
            trip.vehicle_id = candidate.vehicle_id
            trip.driver_id = candidate.driver_id
            trip.customer_id = candidate.customer_id
            trip.transporter_id = candidate.transporter_id
            trip.consignee_name = candidate.consignee_name
            trip.planned_start_time = candidate.planned_start_time
            trip.planned_end_time = candidate.planned_end_time
            trip.total_distance_km = candidate.total_distance_km
            trip.notes = candidate.notes

            if vehicle_changed or driver_changed:
                await self._recheck_availability(
                    db,
                    trip.id,
                    trip.vehicle_id if vehicle_changed else None,
                    trip.driver_id if driver_changed else None,
                )
            if vehicle_changed:
                await move_assignment_lock(db, trip.id, AssignmentResource.VEHICLE, trip.vehicle_id)
            if driver_changed:
                await move_assignment_lock(db, trip.id, AssignmentResource.DRIVER, trip.driver_id)

            # Consent follows the driver; drop it when SIM no longer governs the trip
            self._apply_tracking(trip, evaluation)
            if trip.sim_consent_id is not None and (
                driver_changed or evaluation.tracking.tracking_type != TrackingType.SIM
            ):
                await self.ledger.release(db, trip.id)
                trip.sim_consent_id = None
            if evaluation.consent is not None and trip.sim_consent_id != evaluation.consent.id:
                await self.ledger.consume(db, evaluation.consent.id, trip.id)
                trip.sim_consent_id = evaluation.consent.id

            mapped = await map_shipments_to_trip(db, trip.id, candidate.shipment_ids, now=self.clock())

            if vehicle_changed or driver_changed:
                await log_assignment_change(
                    db,
                    trip,
                    changed_by=actor,
                    previous_vehicle=_vehicle_ref(previous_vehicle) if vehicle_changed else None,
                    new_vehicle=_vehicle_ref(evaluation.vehicle) if vehicle_changed else None,
                    previous_driver=_driver_ref(previous_driver) if driver_changed else None,
                    new_driver=_driver_ref(evaluation.driver) if driver_changed else None,
                    reason=reason,
                )

            await guard_io(db.commit(), "trip update commit")
        except IntegrityError as exc:
            await db.rollback()
            logger.warning("Assignment conflict at commit", extra={"trip_id": trip_id})
            raise AssignmentConflictError(_conflict_findings(exc)) from exc
        except Exception:
            await db.rollback()
            raise

        await db.refresh(trip)
        logger.info(
            "Trip updated",
            extra={"trip_id": trip.id, "vehicle_changed": vehicle_changed, "driver_changed": driver_changed},
        )
        return AdmissionResult(trip, evaluation, lane, [m.shipment_id for m in mapped])

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def transition(
        self,
        db: AsyncSession,
        trip_id: int,
        new_status: TripStatus,
        actor: Optional[int] = None,
        closure_notes: Optional[str] = None
    ) -> Trip:
        """
        Move a trip through its lifecycle.

        Raises:
            ResourceNotFoundError: unknown trip
            InvalidStateTransitionError: move not allowed, or closing
                without an actor
            BlockingValidationError: starting/holding a trip that lacks
                origin, destination, vehicle or driver, or closing one whose
                shipments are not all delivered, returned or NDR
        """
        trip = await self.get_trip(db, trip_id)
        current = trip.status
        new_status = TripStatus(new_status)

        if not trip_lifecycle.can_transition(current, new_status):
            raise InvalidStateTransitionError("trip", current.value, new_status.value)

        if new_status == TripStatus.CLOSED and actor is None:
            raise InvalidStateTransitionError(
                "trip", current.value, new_status.value, "closing a trip requires the closing user"
            )

        if new_status == TripStatus.CLOSED:
            open_shipments = await find_open_shipments(db, trip.id)
            if open_shipments:
                codes = ", ".join(s.shipment_code for s in open_shipments)
                finding = Finding.error(
                    "shipments",
                    "shipments_not_terminal",
                    f"All shipments must be delivered, returned or NDR before closing. Pending: {codes}",
                )
                raise BlockingValidationError([finding.model_dump(mode="json")])

        if new_status in IN_FLIGHT_TRIP_STATUSES:
            status_label = new_status.value.replace("_", " ")
            missing = [
                Finding.error(field, f"{field}_required", f"{label} is required for {status_label} trips")
                for attribute, field, label in MANDATORY_IN_FLIGHT_FIELDS
                if getattr(trip, attribute) is None
            ]
            if missing:
                raise BlockingValidationError([f.model_dump(mode="json") for f in missing])

        now = self.clock()
        try:
            trip.status = new_status
            if new_status == TripStatus.ONGOING and trip.actual_start_time is None:
                trip.actual_start_time = now
            elif new_status == TripStatus.COMPLETED:
                trip.actual_end_time = now
            elif new_status == TripStatus.CLOSED:
                trip.closed_at = now
                trip.closed_by = actor
                trip.closure_notes = closure_notes

            if trip_lifecycle.is_terminal(new_status):
                await release_trip_locks(db, trip.id)
            if new_status == TripStatus.CANCELLED:
                await release_trip_shipments(db, trip.id)

            await log_trip_event(
                db,
                trip_id=trip.id,
                action=TripAuditAction.TRIP_CLOSED if new_status == TripStatus.CLOSED else TripAuditAction.STATUS_CHANGED,
                changed_by=actor,
                previous_status=current,
                new_status=new_status,
                change_reason=closure_notes,
            )

            await guard_io(db.commit(), "trip status commit")
        except Exception:
            await db.rollback()
            raise

        await db.refresh(trip)
        logger.info("Trip status changed", extra={"trip_id": trip.id, "from": current.value, "to": new_status.value})
        return trip
