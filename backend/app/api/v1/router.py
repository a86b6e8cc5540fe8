"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import consents, shipments, trips

router = APIRouter()

# Trip admission, edits and lifecycle
router.include_router(trips.router)

# SIM-tracking consent ledger
router.include_router(consents.router)

# Shipment status workflow
router.include_router(shipments.router)
