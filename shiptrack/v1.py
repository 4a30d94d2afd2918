"""Programmatic API: every route needs ``x-api-key`` and is written to ``api_logs``."""
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, ValidationError

from .awb import generate_awb_batch
from .booking import create_shipments, payment_terms, to_number, to_text
from .deps import get_store, label_url, settings
from .gateway import ApiClient, audited, decode_body, raw_body, require_api_key
from .models import PaymentMode, PaymentStatus, Shipment, ShipmentStatus
from .serializers import tracking_record
from .store import ShipmentStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1/shipment", tags=["v1"])

REQUIRED_FIELDS = ("sender_name", "receiver_name", "receiver_address", "package_type")


class ShipmentIn(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    reference_id: Optional[str] = None

    sender_name: Optional[str] = None
    sender_phone: Optional[str] = None
    sender_address: Optional[str] = None
    sender_city: Optional[str] = None
    sender_state: Optional[str] = None
    sender_pincode: Optional[str] = None

    receiver_name: Optional[str] = None
    receiver_phone: Optional[str] = None
    receiver_address: Optional[str] = None
    receiver_city: Optional[str] = None
    receiver_state: Optional[str] = None
    receiver_pincode: Optional[str] = None

    package_type: Optional[str] = None
    weight: Any = None
    payment_mode: Optional[str] = None
    cod_amount: Any = None
    declared_value: Any = None


def _parse_items(payload: Any) -> list:
    items = payload if isinstance(payload, list) else [payload]
    if not items or any(not isinstance(i, dict) for i in items):
        raise HTTPException(status_code=400, detail="No shipment data provided")
    parsed = []
    for raw in items:
        try:
            item = ShipmentIn.model_validate(raw)
        except ValidationError as exc:
            field = ".".join(str(p) for p in exc.errors()[0]["loc"])
            raise HTTPException(status_code=400, detail=f"Invalid value for {field}") from exc
        if any(not to_text(getattr(item, f)) for f in REQUIRED_FIELDS):
            raise HTTPException(
                status_code=400,
                detail=f"Missing required fields for receiver: {to_text(item.receiver_name) or 'Unknown'}",
            )
        parsed.append(item)
    return parsed


def _to_shipment(item: ShipmentIn, user_id: str, awb: str) -> Shipment:
    mode, cod_amount = payment_terms(item.payment_mode, item.cod_amount)
    weight = to_number(item.weight, settings.DEFAULT_WEIGHT)
    text = {
        name: to_text(getattr(item, name))
        for name in (
            "reference_id",
            "sender_name", "sender_phone", "sender_address", "sender_city", "sender_state", "sender_pincode",
            "receiver_name", "receiver_phone", "receiver_address", "receiver_city", "receiver_state",
            "receiver_pincode", "package_type",
        )
    }
    return Shipment(
        user_id=user_id,
        awb_code=awb,
        weight=weight if weight > 0 else settings.DEFAULT_WEIGHT,
        declared_value=max(to_number(item.declared_value, 0.0), 0.0),
        payment_mode=mode,
        cod_amount=cod_amount,
        current_status=ShipmentStatus.CREATED,
        payment_status=PaymentStatus.UNPAID if mode == PaymentMode.COD else PaymentStatus.PAID,
        **text,
    )


@router.post("/create")
def create(
    client: ApiClient = Depends(require_api_key),
    body: bytes = Depends(raw_body),
    store: ShipmentStore = Depends(get_store),
):
    """Book one shipment (JSON object) or many (JSON array) in a single insert."""
    payload, problem = decode_body(body)
    with audited(store, client, "/v1/shipment/create", "POST", payload) as call:
        if problem:
            raise HTTPException(status_code=400, detail=problem)
        items = _parse_items(payload)
        shipments = [
            _to_shipment(item, client.user_id, awb)
            for item, awb in zip(items, generate_awb_batch(len(items)))
        ]
        create_shipments(store, shipments, settings.AWB_INSERT_ATTEMPTS)
        data = [
            {
                "awb_code": s.awb_code,
                "receiver_name": s.receiver_name,
                "payment_mode": s.payment_mode.value,
                "cod_amount": s.cod_amount,
                "status": s.current_status.value,
                "label_url": label_url(s.awb_code),
            }
            for s in shipments
        ]
        call.response = {"success": True, "count": len(data)}
    logger.info("api_shipments_booked", user_id=client.user_id, count=len(data))
    return {
        "success": True,
        "message": f"{len(data)} Shipment(s) booked successfully",
        "data": data,
    }


@router.post("/track/bulk")
def track_bulk(
    client: ApiClient = Depends(require_api_key),
    body: bytes = Depends(raw_body),
    store: ShipmentStore = Depends(get_store),
):
    payload, problem = decode_body(body)
    with audited(store, client, "/v1/shipment/track/bulk", "POST", payload) as call:
        if problem:
            raise HTTPException(status_code=400, detail=problem)
        awbs = payload.get("awbs") if isinstance(payload, dict) else None
        if not isinstance(awbs, list) or not awbs or not all(isinstance(a, str) and a.strip() for a in awbs):
            raise HTTPException(status_code=400, detail='Please provide an array of "awbs"')
        if len(awbs) > settings.BULK_TRACK_LIMIT:
            raise HTTPException(
                status_code=400,
                detail=f"Maximum {settings.BULK_TRACK_LIMIT} AWBs allowed per request",
            )

        codes = list(dict.fromkeys(a.strip().upper() for a in awbs))
        shipments = store.get_many_by_awb(codes, owner=client.user_id)
        history = store.history_for([s.id for s in shipments])
        data = [tracking_record(s, history[s.id]) for s in shipments]
        call.response = {"success": True, "found": len(data)}
    return {
        "success": True,
        "total_requested": len(awbs),
        "total_found": len(data),
        "data": data,
    }


@router.get("/track")
def track_one(
    awb: Optional[str] = Query(default=None),
    client: ApiClient = Depends(require_api_key),
    store: ShipmentStore = Depends(get_store),
):
    with audited(store, client, "/v1/shipment/track", "GET", {"awb": awb}) as call:
        if not awb or not awb.strip():
            raise HTTPException(status_code=400, detail='Missing "awb" query parameter')
        # other owners' shipments look exactly like missing ones
        shipment = store.get_by_awb(awb, owner=client.user_id)
        if shipment is None:
            raise HTTPException(status_code=404, detail="Shipment not found or access denied")
        record = tracking_record(shipment, store.history(shipment.id))
        call.response = {"success": True, "awb": shipment.awb_code}
    return {"success": True, "data": record}
