"""
Tracking resolution.

Decides which telemetry channel governs a trip from the selected vehicle,
the selected driver and the driver's effective consent status. A pure
function of its inputs; it is re-run on every evaluation and the result is
persisted only as part of the trip record.

    vehicle has device          -> gps
    no device, no driver        -> manual (select a driver for SIM)
    no device, driver, granted  -> sim
    no device, driver, other    -> manual (consent required)
    no vehicle selected         -> none
"""

from typing import List, Optional

from pydantic import BaseModel

from backend.app.domain.admission.findings import Finding
from backend.app.models.consent_enums import ConsentStatus
from backend.app.models.trip_enums import TrackingType

SIM_CONSENT_REQUIRED = "sim_consent_required"


class TrackingDecision(BaseModel):
    tracking_type: TrackingType
    consent_required: bool = False
    findings: List[Finding] = []

    @property
    def is_trackable(self) -> bool:
        return self.tracking_type in (TrackingType.GPS, TrackingType.SIM)


def resolve_tracking(
    vehicle_selected: bool,
    has_tracking_channel: bool,
    driver_selected: bool,
    consent_status: Optional[ConsentStatus] = None
) -> TrackingDecision:
    """
    Resolve the tracking channel for a trip.

    Args:
        vehicle_selected: A vehicle is chosen on the trip
        has_tracking_channel: That vehicle carries a GPS device
        driver_selected: A driver is chosen on the trip
        consent_status: Effective status of the driver's usable consent
            (GRANTED only if it can back this trip)
    """
    if not vehicle_selected:
        return TrackingDecision(tracking_type=TrackingType.NONE)

    if has_tracking_channel:
        return TrackingDecision(tracking_type=TrackingType.GPS)

    if not driver_selected:
        return TrackingDecision(
            tracking_type=TrackingType.MANUAL,
            findings=[Finding.warning(
                "tracking",
                "sim_driver_required",
                "No GPS tracker on vehicle. Select a driver for SIM tracking.",
            )],
        )

    if consent_status == ConsentStatus.GRANTED:
        return TrackingDecision(tracking_type=TrackingType.SIM)

    status = (consent_status or ConsentStatus.NOT_REQUESTED).value.replace("_", " ")
    return TrackingDecision(
        tracking_type=TrackingType.MANUAL,
        consent_required=True,
        findings=[Finding.warning(
            "tracking",
            SIM_CONSENT_REQUIRED,
            f"No GPS on vehicle - SIM tracking will be used. Driver consent required (consent {status}).",
        )],
    )
