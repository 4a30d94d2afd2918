from typing import Any, Dict, List

from .deps import label_url
from .models import PaymentMode, Shipment, ShipmentStatus, TrackingEvent


def event_dict(ev: TrackingEvent) -> Dict[str, Any]:
    return {
        "status": ev.status,
        "location": ev.location,
        "description": ev.description,
        "timestamp": ev.timestamp.isoformat() if ev.timestamp else None,
    }


def shipment_dict(s: Shipment) -> Dict[str, Any]:
    return s.model_dump(mode="json")


def _place(city, state) -> str:
    return ", ".join(p for p in (city, state) if p)


def tracking_record(s: Shipment, history: List[TrackingEvent]) -> Dict[str, Any]:
    """Shape returned to API clients; ``created`` reads as Pending."""
    current = s.current_status.value if isinstance(s.current_status, ShipmentStatus) else s.current_status
    return {
        "awb": s.awb_code,
        "reference_id": s.reference_id,
        "status": {
            "current": "Pending" if current == ShipmentStatus.CREATED.value else current,
            "booked_on": s.created_at.isoformat() if s.created_at else None,
        },
        "route": {
            "origin": _place(s.sender_city, s.sender_state),
            "destination": _place(s.receiver_city, s.receiver_state),
        },
        "parties": {
            "sender": s.sender_name,
            "receiver": s.receiver_name,
        },
        "details": {
            "weight": s.weight,
            "type": s.package_type,
        },
        "financials": {
            "payment_mode": s.payment_mode.value,
            "cod_to_collect": s.cod_amount if s.payment_mode == PaymentMode.COD else 0,
            "insured_value": s.declared_value,
        },
        "documents": {
            "label_url": label_url(s.awb_code),
        },
        "history": [event_dict(ev) for ev in history],
    }
