from pathlib import Path
from typing import Optional
import uuid, shutil

import structlog
from fastapi import FastAPI, Depends, Form, HTTPException, Request, UploadFile, File
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from .access import AccessBoundaryMiddleware, Actor, require_actor
from .awb import generate_checked_awb
from .booking import create_shipments, payment_terms, to_number, to_text
from .deps import engine, get_store, init_db, settings
from .gateway import issue_api_key
from .ingest import (
    ColumnMapping,
    StatusUpdateCommand,
    UploadError,
    apply_status_updates,
    build_shipments,
    read_table,
)
from .lifecycle import parse_status, set_status
from .logs import configure_logging
from .models import Role, Shipment, ShipmentStatus
from .serializers import event_dict, shipment_dict
from .store import ShipmentStore
from .v1 import router as v1_router

logger = structlog.get_logger(__name__)

app = FastAPI(title="Shipment Tracker")
app.state.engine = engine

# outermost last: the boundary reads the session SessionMiddleware decodes
app.add_middleware(AccessBoundaryMiddleware)
app.add_middleware(SessionMiddleware, secret_key=settings.SESSION_SECRET, max_age=None)
app.include_router(v1_router)


# ---------- Errors ----------
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse({"error": problems or "Invalid request"}, status_code=400)


@app.exception_handler(SQLAlchemyError)
async def store_error(request: Request, exc: SQLAlchemyError):
    logger.error("store_error", path=request.url.path, error=str(exc))
    return JSONResponse({"error": "Database error"}, status_code=500)


# ---------- Helpers ----------
def save_upload(upload: UploadFile) -> str:
    ext = Path(upload.filename or "").suffix.lower() or ".bin"
    fname = f"{uuid.uuid4().hex}{ext}"
    dest = Path(settings.UPLOAD_DIR) / fname
    dest.parent.mkdir(parents=True, exist_ok=True)
    with dest.open("wb") as f:
        shutil.copyfileobj(upload.file, f)
    return str(dest)


def get_shipment_or_404(store: ShipmentStore, awb: str) -> Shipment:
    s = store.get_by_awb(awb)
    if not s:
        raise HTTPException(404, "Shipment not found")
    return s


def read_upload(file: UploadFile):
    try:
        return read_table(file.filename, file.file.read())
    except UploadError as e:
        raise HTTPException(400, str(e))


# ---------- Lifecycle ----------
@app.on_event("startup")
def on_startup():
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    init_db(app.state.engine)


@app.get("/health")
def health():
    return {"status": "ok"}


# ---------- Session (stand-in for the auth provider) ----------
@app.post("/login")
def login(request: Request, user_id: str = Form(...), store: ShipmentStore = Depends(get_store)):
    request.session["user_id"] = user_id.strip()
    role = store.role_for(user_id.strip()) or Role.USER
    return {"ok": True, "user_id": user_id.strip(), "role": role.value}


@app.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"ok": True}


# ---------- Public tracking ----------
@app.get("/track/{awb}")
def track(awb: str, store: ShipmentStore = Depends(get_store)):
    s = get_shipment_or_404(store, awb)
    return {**shipment_dict(s), "history": [event_dict(ev) for ev in store.history(s.id)]}


# ---------- Shipment creation ----------
@app.post("/shipment/create")
def create_shipment(
    request: Request,
    pod_file: UploadFile = File(...),
    awb: Optional[str] = Form(None),
    reference_id: Optional[str] = Form(None),
    sender_name: Optional[str] = Form(None),
    sender_address: Optional[str] = Form(None),
    receiver_name: Optional[str] = Form(None),
    receiver_address: Optional[str] = Form(None),
    receiver_phone: Optional[str] = Form(None),
    weight: Optional[str] = Form(None),
    payment_mode: Optional[str] = Form(None),
    declared_value: Optional[str] = Form(None),
    store: ShipmentStore = Depends(get_store),
):
    code = to_text(awb)
    code = code.upper() if code else None
    if code and store.existing_awbs([code]):
        raise HTTPException(409, "AWB already exists")

    value = max(to_number(declared_value, 0.0), 0.0)
    mode, cod_amount = payment_terms(payment_mode, value)
    parcel_weight = to_number(weight, settings.DEFAULT_WEIGHT)
    pod_path = save_upload(pod_file)
    s = Shipment(
        awb_code=code or generate_checked_awb(),
        user_id=request.session.get("user_id"),
        reference_id=to_text(reference_id),
        sender_name=to_text(sender_name),
        sender_address=to_text(sender_address),
        receiver_name=to_text(receiver_name),
        receiver_address=to_text(receiver_address),
        receiver_phone=to_text(receiver_phone),
        weight=parcel_weight if parcel_weight > 0 else settings.DEFAULT_WEIGHT,
        declared_value=value,
        payment_mode=mode,
        cod_amount=cod_amount,
        current_status=ShipmentStatus.CREATED,
        pod_file=pod_path,
    )
    try:
        # a caller-chosen AWB is never swapped for another one
        if code:
            store.add_shipments([s])
        else:
            create_shipments(store, [s], settings.AWB_INSERT_ATTEMPTS, mint=generate_checked_awb)
    except IntegrityError:
        Path(pod_path).unlink(missing_ok=True)
        raise HTTPException(409, "AWB already exists")
    except SQLAlchemyError:
        Path(pod_path).unlink(missing_ok=True)
        raise
    return {"success": True, "message": "Shipment created successfully", "data": shipment_dict(s)}


@app.post("/shipment/bulk")
def bulk_create(
    file: UploadFile = File(...),
    userId: str = Form(...),
    mapping: Optional[str] = Form(None),
    strict: bool = Form(False),
    store: ShipmentStore = Depends(get_store),
):
    user_id = userId.strip()
    if not user_id:
        raise HTTPException(400, "Missing file or user ID")
    rows = read_upload(file)
    try:
        columns = ColumnMapping.from_json(mapping)
    except UploadError as e:
        raise HTTPException(400, str(e))

    result = build_shipments(rows, user_id, columns, strict=strict, default_weight=settings.DEFAULT_WEIGHT)
    if not result.shipments:
        return JSONResponse(
            {"error": "No valid rows found.", "errors": result.errors, "failed": result.failed},
            status_code=400,
        )

    try:
        created = create_shipments(store, result.shipments, settings.AWB_INSERT_ATTEMPTS)
    except SQLAlchemyError as e:
        logger.error("bulk_create_failed", user_id=user_id, rows=len(rows), error=str(e))
        raise HTTPException(500, f"Bulk insert failed: {e.__class__.__name__}")

    logger.info("bulk_create_finished", user_id=user_id, valid=len(created), invalid=result.failed)
    return {
        "success": True,
        "count": len(created),
        "failed": result.failed,
        "errors": result.errors,
        "message": f"Successfully created {len(created)} shipments.",
        "shipments": [shipment_dict(s) for s in created],
    }


# ---------- Status updates (admin) ----------
@app.post("/admin/shipments/bulk-status")
def bulk_status(
    file: UploadFile = File(...),
    targetDbColumn: str = Form(...),
    excelRefCol: str = Form(...),
    excelValCol: str = Form(...),
    store: ShipmentStore = Depends(get_store),
):
    try:
        command = StatusUpdateCommand(
            target_field=targetDbColumn.strip(),
            ref_header=excelRefCol.strip(),
            value_header=excelValCol.strip(),
        )
    except ValidationError:
        raise HTTPException(400, "Unsupported targetDbColumn or empty column names")
    rows = read_upload(file)
    return {"results": apply_status_updates(store, rows, command).as_dict()}


class StatusPayload(BaseModel):
    status: str
    location: str = Field(min_length=1)
    description: Optional[str] = None


@app.post("/admin/shipments/{awb}/status")
def admin_set_status(awb: str, payload: StatusPayload, store: ShipmentStore = Depends(get_store)):
    new_status = parse_status(payload.status)
    if new_status is None:
        raise HTTPException(400, "Invalid status")
    s = get_shipment_or_404(store, awb)
    ev = set_status(store, s, new_status, payload.location.strip(), to_text(payload.description))
    return {"ok": True, "awb": s.awb_code, "status": new_status.value, "event": event_dict(ev)}


class AssignPayload(BaseModel):
    driver_id: Optional[str] = None


@app.post("/admin/shipments/{awb}/assign")
def assign_driver(awb: str, payload: AssignPayload, store: ShipmentStore = Depends(get_store)):
    s = get_shipment_or_404(store, awb)
    store.update_field(s, "delivery_boy_id", to_text(payload.driver_id))
    return {"ok": True, "awb": s.awb_code, "driver_id": s.delivery_boy_id}


# ---------- Driver ----------
class DriverStatusPayload(BaseModel):
    status: str
    location: str = Field(min_length=1)
    reason: Optional[str] = None


@app.post("/driver/shipments/{awb}/status")
def driver_set_status(
    awb: str,
    payload: DriverStatusPayload,
    actor: Actor = Depends(require_actor),
    store: ShipmentStore = Depends(get_store),
):
    if actor.role not in (Role.STAFF, Role.DRIVER):
        raise HTTPException(403, "Drivers only")
    new_status = parse_status(payload.status)
    if new_status is None:
        raise HTTPException(400, "Invalid status")
    reason = to_text(payload.reason)
    if new_status is ShipmentStatus.UNDELIVERED and not reason:
        raise HTTPException(400, "Please enter a reason.")

    s = store.get_by_awb(awb)
    # parcels assigned to someone else look missing
    if not s or (s.delivery_boy_id and s.delivery_boy_id != actor.user_id):
        raise HTTPException(404, "Shipment not found")

    location = payload.location.strip() + (f" [Reason: {reason}]" if reason else "")
    ev = set_status(store, s, new_status, location)
    return {"ok": True, "awb": s.awb_code, "status": new_status.value, "event": event_dict(ev)}


# ---------- Seller developer settings ----------
@app.get("/seller/developer/api-key")
def show_api_key(actor: Actor = Depends(require_actor), store: ShipmentStore = Depends(get_store)):
    key = store.get_key_for_user(actor.user_id)
    if not key:
        return {"secret_key": None, "is_active": False, "usage_count": 0}
    return {"secret_key": key.secret_key, "is_active": key.is_active, "usage_count": key.usage_count}


@app.post("/seller/developer/api-key")
def regenerate_api_key(actor: Actor = Depends(require_actor), store: ShipmentStore = Depends(get_store)):
    key = issue_api_key(store, actor.user_id)
    return {"secret_key": key.secret_key, "is_active": key.is_active}
