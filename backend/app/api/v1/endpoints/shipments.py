"""
Shipment API Endpoints.

Operator-driven shipment status moves, deletion of unconfirmed shipments
and the candidate list offered when building a trip.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_current_user
from backend.app.db.session import get_db
from backend.app.schemas.shipment import ShipmentResponse, ShipmentStatusUpdate
from backend.app.services import shipment_workflow

router = APIRouter(prefix="/shipments", tags=["Shipments"])


@router.get("/mappable", response_model=List[ShipmentResponse])
async def list_mappable_shipments(
    origin_location_id: Optional[int] = Query(None),
    destination_location_id: Optional[int] = Query(None),
    customer_id: Optional[int] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Unmapped created/confirmed shipments compatible with a route and customer."""
    return await shipment_workflow.list_mappable_shipments(
        db, origin_location_id, destination_location_id, customer_id
    )


@router.post("/{shipment_id}/status", response_model=ShipmentResponse)
async def change_shipment_status(
    request: ShipmentStatusUpdate,
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Move a shipment to a new status.

    Moves into mapped are rejected here; they happen by admitting a trip.
    """
    return await shipment_workflow.transition_shipment(db, shipment_id, request.status)


@router.delete("/{shipment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_shipment(
    shipment_id: int = Path(..., description="Shipment ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete a shipment that is still in created status."""
    await shipment_workflow.delete_shipment(db, shipment_id)
