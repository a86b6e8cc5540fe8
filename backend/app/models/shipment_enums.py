"""
Shipment Status Enumeration.
"""

import enum


class ShipmentStatus(str, enum.Enum):
    """
    Shipment status enumeration.

    Status flow:
        created → confirmed → mapped → in_pickup → in_transit
            → out_for_delivery → delivered → success
        in_transit | out_for_delivery → ndr (delivery failure)
        ndr → returned
    """
    CREATED = "created"
    CONFIRMED = "confirmed"
    MAPPED = "mapped"
    IN_PICKUP = "in_pickup"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    SUCCESS = "success"
    NDR = "ndr"
    RETURNED = "returned"


# Shipments a trip may pick up at admission time
MAPPABLE_SHIPMENT_STATUSES = (ShipmentStatus.CREATED, ShipmentStatus.CONFIRMED)

# A trip may only be closed once every shipment on it is in one of these
TERMINAL_SHIPMENT_STATUSES = (
    ShipmentStatus.DELIVERED,
    ShipmentStatus.RETURNED,
    ShipmentStatus.SUCCESS,
    ShipmentStatus.NDR,
)
