"""
Trip Admission API Endpoints.

Evaluate candidate trips, admit them, edit them and move them through
their lifecycle.
"""

from typing import List

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_admission_engine, get_current_user
from backend.app.db.session import get_db
from backend.app.domain.admission.trip_admission import AdmissionEvaluation, AdmissionResult, TripAdmissionEngine
from backend.app.schemas.trip import (
    AdmissionResponse,
    EvaluationResponse,
    TripCandidate,
    TripResponse,
    TripAuditLogResponse,
    TripStatusTransitionRequest,
    TripUpdate,
)
from backend.app.services.trip_audit import get_trip_audit_logs

router = APIRouter(prefix="/trips", tags=["Trips"])


def _evaluation_response(evaluation: AdmissionEvaluation) -> EvaluationResponse:
    return EvaluationResponse(
        verdict=evaluation.verdict,
        tracking_type=evaluation.tracking.tracking_type,
        consent_required=evaluation.tracking.consent_required,
        errors=evaluation.errors,
        warnings=evaluation.warnings,
    )


def _admission_response(result: AdmissionResult) -> AdmissionResponse:
    return AdmissionResponse(
        trip=TripResponse.model_validate(result.trip),
        verdict=result.verdict,
        warnings=result.warnings,
        mapped_shipment_ids=result.mapped_shipment_ids,
        lane_code=result.lane.lane_code if result.lane else None,
    )


@router.post("/evaluate", response_model=EvaluationResponse)
async def evaluate_trip(
    candidate: TripCandidate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: TripAdmissionEngine = Depends(get_admission_engine),
):
    """
    Evaluate a candidate trip without saving anything.

    Returns the verdict (blocked / admissible_with_warnings / admissible),
    the findings and the tracking channel the trip would get.
    """
    evaluation = await engine.evaluate(db, candidate)
    return _evaluation_response(evaluation)


@router.post("", response_model=AdmissionResponse, status_code=status.HTTP_201_CREATED)
async def admit_trip(
    candidate: TripCandidate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: TripAdmissionEngine = Depends(get_admission_engine),
):
    """
    Admit a new trip.

    422 with findings if the candidate is blocked; 409 if the vehicle or
    driver was committed to another trip while this one was being saved.
    """
    result = await engine.admit(db, candidate, actor=current_user.get("user_id"))
    return _admission_response(result)


@router.post("/{trip_id}/evaluate", response_model=EvaluationResponse)
async def evaluate_trip_edit(
    update: TripUpdate,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: TripAdmissionEngine = Depends(get_admission_engine),
):
    """Evaluate an edit to an existing trip without saving it."""
    trip = await engine.get_trip(db, trip_id)
    changes = update.model_dump(exclude_unset=True)
    changes.pop("change_reason", None)
    evaluation = await engine.evaluate(db, engine.candidate_for_edit(trip, changes), trip)
    return _evaluation_response(evaluation)


@router.patch("/{trip_id}", response_model=AdmissionResponse)
async def edit_trip(
    update: TripUpdate,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: TripAdmissionEngine = Depends(get_admission_engine),
):
    """
    Edit a trip.

    Vehicle/driver changes are re-validated and recorded in the trip's
    audit trail.
    """
    trip = await engine.get_trip(db, trip_id)
    changes = update.model_dump(exclude_unset=True)
    reason = changes.pop("change_reason", None)

    result = await engine.update(
        db,
        trip_id,
        engine.candidate_for_edit(trip, changes),
        actor=current_user.get("user_id"),
        reason=reason,
    )
    return _admission_response(result)


@router.post("/{trip_id}/status", response_model=TripResponse)
async def change_trip_status(
    request: TripStatusTransitionRequest,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: TripAdmissionEngine = Depends(get_admission_engine),
):
    """
    Move a trip through its lifecycle.

    Completed, cancelled and closed trips release their vehicle and driver.
    """
    trip = await engine.transition(
        db,
        trip_id,
        request.status,
        actor=current_user.get("user_id"),
        closure_notes=request.closure_notes,
    )
    return TripResponse.model_validate(trip)


@router.get("/{trip_id}", response_model=TripResponse)
async def get_trip(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: TripAdmissionEngine = Depends(get_admission_engine),
):
    """Get a trip with its resolved tracking channel."""
    return TripResponse.model_validate(await engine.get_trip(db, trip_id))


@router.get("/{trip_id}/audit", response_model=List[TripAuditLogResponse])
async def get_trip_audit_trail(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: TripAdmissionEngine = Depends(get_admission_engine),
):
    """Creation, reassignment and status history of a trip, oldest first."""
    await engine.get_trip(db, trip_id)
    return await get_trip_audit_logs(db, trip_id)
