"""
Spreadsheet ingestion: bulk shipment creation and bulk column updates.

Files that cannot be read, or hold no data rows, are rejected as a whole
with ``UploadError``. Everything after that is per row: a bad row is
counted and reported, never raised, and its neighbours carry on.
"""
import io
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
import structlog
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from .awb import generate_awb_batch
from .booking import payment_terms, to_number, to_text
from .lifecycle import normalize_token, parse_status, set_status
from .models import PaymentStatus, Shipment, ShipmentStatus
from .store import ShipmentStore

logger = structlog.get_logger(__name__)

BULK_UPDATE_LOCATION = "System Bulk Update"

Row = Dict[str, Any]


class UploadError(ValueError):
    """The upload (or its column configuration) is unusable; nothing was processed."""


# ---------- Reading ----------
def read_table(filename: Optional[str], content: bytes) -> List[Row]:
    """First sheet of an xlsx/xls file, or a CSV, as a list of header->value dicts."""
    if not content:
        raise UploadError("File is empty")
    buf = io.BytesIO(content)
    try:
        if (filename or "").lower().endswith(".csv"):
            df = pd.read_csv(buf, dtype=object, skipinitialspace=True)
        else:
            df = pd.read_excel(buf, sheet_name=0, dtype=object)
    except Exception as exc:
        raise UploadError(f"Could not read file: {exc}") from exc

    df = df.dropna(how="all")
    if df.empty:
        raise UploadError("File is empty")
    df.columns = [str(c).strip() for c in df.columns]
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


# ---------- Create mode ----------
DEFAULT_HEADERS: Dict[str, Sequence[str]] = {
    "reference_id": ("Client Order ID", "Reference ID"),
    "sender_name": ("Sender Name",),
    "sender_phone": ("Sender Mobile", "Sender Phone"),
    "sender_address": ("Pickup Address", "Sender Address"),
    "sender_city": ("Sender City",),
    "sender_state": ("Sender State",),
    "sender_pincode": ("Pickup Pincode", "Sender Pincode"),
    "receiver_name": ("Receiver Name",),
    "receiver_phone": ("Receiver Mobile", "Mobile"),
    "receiver_address": ("Receiver Address", "Address"),
    "receiver_city": ("Receiver City",),
    "receiver_state": ("Receiver State",),
    "receiver_pincode": ("Receiver Pincode", "Pincode"),
    "weight": ("Weight (kg)", "Weight"),
    "package_type": ("Package Type",),
    "payment_mode": ("Payment Mode",),
    "declared_value": ("Product Value", "Declared Value"),
}

REQUIRED = ("receiver_name", "receiver_address")
REQUIRED_STRICT = REQUIRED + ("receiver_phone", "sender_name")

TEXT_FIELDS = (
    "reference_id",
    "sender_name", "sender_phone", "sender_address", "sender_city", "sender_state", "sender_pincode",
    "receiver_name", "receiver_phone", "receiver_address", "receiver_city", "receiver_state", "receiver_pincode",
    "package_type",
)


class ColumnMapping:
    """
    Which spreadsheet header feeds which shipment field.

    Each field tries its override (if any), then the usual headers, then the
    field name itself, and takes the first non-blank cell.
    """

    def __init__(self, overrides: Optional[Dict[str, str]] = None):
        overrides = overrides or {}
        unknown = sorted(set(overrides) - set(DEFAULT_HEADERS))
        if unknown:
            raise UploadError(f"Unknown mapping fields: {', '.join(unknown)}")
        self.headers: Dict[str, List[str]] = {}
        for name, defaults in DEFAULT_HEADERS.items():
            candidates = [overrides[name]] if name in overrides else []
            candidates += [h for h in defaults if h not in candidates]
            candidates.append(name)
            self.headers[name] = candidates

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "ColumnMapping":
        if not raw or not raw.strip():
            return cls()
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise UploadError("mapping must be a JSON object") from exc
        if not isinstance(data, dict) or not all(isinstance(v, str) for v in data.values()):
            raise UploadError("mapping must be a JSON object of field -> header")
        return cls({k: v.strip() for k, v in data.items()})

    def value(self, row: Row, name: str):
        for header in self.headers[name]:
            cell = row.get(header)
            if to_text(cell) is not None:
                return cell
        return None


@dataclass
class BuildResult:
    shipments: List[Shipment] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)


def build_shipments(
    rows: List[Row],
    user_id: str,
    mapping: Optional[ColumnMapping] = None,
    strict: bool = False,
    default_weight: float = 0.5,
) -> BuildResult:
    """
    Validate rows into unsaved ``Shipment`` objects.

    Row numbers in errors are spreadsheet lines (the header is line 1).
    AWBs come from one batch draw, the i-th code going to the i-th valid row.
    """
    mapping = mapping or ColumnMapping()
    required = REQUIRED_STRICT if strict else REQUIRED
    result = BuildResult()

    for line, row in enumerate(rows, start=2):
        fields = {name: to_text(mapping.value(row, name)) for name in TEXT_FIELDS}
        missing = [name for name in required if not fields[name]]
        if missing:
            result.errors.append(f"Row {line}: Missing required fields: {', '.join(missing)}")
            continue

        weight = to_number(mapping.value(row, "weight"), default_weight)
        if weight <= 0:
            weight = default_weight
        declared_value = max(to_number(mapping.value(row, "declared_value"), 0.0), 0.0)
        mode, cod_amount = payment_terms(mapping.value(row, "payment_mode"), declared_value)

        result.shipments.append(
            Shipment(
                user_id=user_id,
                weight=weight,
                declared_value=declared_value,
                payment_mode=mode,
                cod_amount=cod_amount,
                current_status=ShipmentStatus.CREATED,
                payment_status=PaymentStatus.UNPAID,
                **fields,
            )
        )

    for shipment, code in zip(result.shipments, generate_awb_batch(len(result.shipments))):
        shipment.awb_code = code
    return result


# ---------- Status-update mode ----------
class UpdatableField(str, Enum):
    CURRENT_STATUS = "current_status"
    PAYMENT_STATUS = "payment_status"


class StatusUpdateCommand(BaseModel):
    target_field: UpdatableField
    ref_header: str = Field(min_length=1)
    value_header: str = Field(min_length=1)


@dataclass
class BulkUpdateResult:
    success: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {"success": self.success, "failed": self.failed}


def coerce_value(target: UpdatableField, raw):
    if to_text(raw) is None:
        return None
    if target is UpdatableField.CURRENT_STATUS:
        return parse_status(raw)
    try:
        return PaymentStatus(normalize_token(raw))
    except ValueError:
        return None


def apply_status_updates(store: ShipmentStore, rows: List[Row], command: StatusUpdateCommand) -> BulkUpdateResult:
    """Each row is its own transaction; rows run in file order."""
    result = BulkUpdateResult()
    target = command.target_field

    for line, row in enumerate(rows, start=2):
        ref = to_text(row.get(command.ref_header.strip()))
        value = coerce_value(target, row.get(command.value_header.strip()))
        if not ref or value is None:
            logger.warning("bulk_update_row_invalid", row=line, reference_id=ref)
            result.failed += 1
            continue

        matches = store.find_by_reference(ref)
        if len(matches) != 1:
            logger.warning("bulk_update_row_unmatched", row=line, reference_id=ref, matches=len(matches))
            result.failed += 1
            continue
        shipment = matches[0]

        try:
            if target is UpdatableField.CURRENT_STATUS:
                set_status(store, shipment, value, BULK_UPDATE_LOCATION)
            else:
                store.update_field(shipment, target.value, value)
        except SQLAlchemyError:
            store.rollback()
            logger.exception("bulk_update_row_store_error", row=line, reference_id=ref)
            result.failed += 1
            continue
        result.success += 1

    logger.info("bulk_update_finished", target=target.value, **result.as_dict())
    return result
