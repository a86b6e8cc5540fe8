"""
FastAPI Application Entry Point.

Trip admission and tracking-resolution backend for the TMS.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router
from backend.app.db.session import engine, Base
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from backend.app.core.observability import ObservabilityMiddleware

# Import models to ensure they are registered with Base
from backend.app.models.location import Location
from backend.app.models.vehicle import Vehicle
from backend.app.models.driver import Driver
from backend.app.models.location_history import LocationSample
from backend.app.models.serviceability_lane import ServiceabilityLane
from backend.app.models.driver_consent import DriverConsent
from backend.app.models.trip import Trip
from backend.app.models.shipment import Shipment
from backend.app.models.trip_shipment_map import TripShipmentMap
from backend.app.models.assignment_lock import AssignmentLock
from backend.app.models.trip_audit_log import TripAuditLog

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Trip admission, tracking resolution and shipment workflow for the TMS",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
