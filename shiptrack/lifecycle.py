"""
Shipment status changes.

Any recognised status may follow any other: drivers and admins need to
override for damaged parcels, re-attempts and manual corrections. Only the
value set is closed. Every change made here appends one tracking event.
"""
from typing import Optional

import structlog

from .models import Shipment, ShipmentStatus, TrackingEvent
from .store import ShipmentStore

logger = structlog.get_logger(__name__)

STATUS_DESCRIPTIONS = {
    ShipmentStatus.MANIFESTED: "Shipment details received",
    ShipmentStatus.IN_TRANSIT: "Shipment on the way",
    ShipmentStatus.OUT_FOR_DELIVERY: "Out for delivery",
    ShipmentStatus.DELIVERED: "Delivered successfully",
    ShipmentStatus.RTO_INITIATED: "Returning to origin",
    ShipmentStatus.CANCELLED: "Shipment cancelled",
}


def normalize_token(value) -> str:
    return str(value).strip().lower().replace(" ", "_").replace("-", "_")


def parse_status(value) -> Optional[ShipmentStatus]:
    """Map free text like ``"Out for delivery"`` onto a status; None if unknown."""
    if value is None:
        return None
    try:
        return ShipmentStatus(normalize_token(value))
    except ValueError:
        return None


def describe(status: ShipmentStatus) -> str:
    return STATUS_DESCRIPTIONS.get(status, f"Status updated to {status.value}")


def set_status(
    store: ShipmentStore,
    shipment: Shipment,
    status: ShipmentStatus,
    location: Optional[str],
    description: Optional[str] = None,
) -> TrackingEvent:
    event = TrackingEvent(
        status=status.value,
        location=location,
        description=description or describe(status),
    )
    previous = shipment.current_status
    store.update_field(shipment, "current_status", status, event=event)
    logger.info(
        "shipment_status_changed",
        awb=shipment.awb_code,
        previous=getattr(previous, "value", previous),
        status=status.value,
    )
    return event
