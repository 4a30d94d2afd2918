import math
from typing import Callable, List, Optional, Tuple

import structlog
from sqlalchemy.exc import IntegrityError

from .awb import generate_awb
from .models import PaymentMode, Shipment
from .store import ShipmentStore

logger = structlog.get_logger(__name__)


def to_text(value) -> Optional[str]:
    """Cell/JSON value as trimmed text; None for blanks. 9876543210.0 -> '9876543210'."""
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            value = int(value)
    text = str(value).strip()
    return text or None


def to_number(value, default: float) -> float:
    if value is None:
        return default
    try:
        number = float(str(value).replace(",", "").strip())
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def payment_terms(mode, amount) -> Tuple[PaymentMode, float]:
    """Case-insensitive mode; anything but COD is Prepaid and carries no COD amount."""
    text = to_text(mode)
    if text and text.upper() == "COD":
        return PaymentMode.COD, max(to_number(amount, 0.0), 0.0)
    return PaymentMode.PREPAID, 0.0


def _reissue(shipments: List[Shipment], taken: set, mint: Callable[[], str]):
    in_use = {s.awb_code for s in shipments} | taken
    for s in shipments:
        if s.awb_code not in taken:
            continue
        code = mint()
        while code in in_use:
            code = mint()
        in_use.add(code)
        s.awb_code = code


def create_shipments(
    store: ShipmentStore,
    shipments: List[Shipment],
    attempts: int = 3,
    mint: Callable[[], str] = generate_awb,
) -> List[Shipment]:
    """
    Insert the whole list as one batch.

    Codes already in the store are re-issued before inserting; a unique
    violation raised by the insert itself (a concurrent writer took the
    code) is retried with fresh codes up to ``attempts`` times.
    """
    for attempt in range(1, attempts + 1):
        taken = store.existing_awbs(s.awb_code for s in shipments)
        if taken:
            logger.info("awb_collision_reissued", count=len(taken))
            _reissue(shipments, taken, mint)
        try:
            return store.add_shipments(shipments)
        except IntegrityError:
            logger.warning("shipment_insert_conflict", attempt=attempt, size=len(shipments))
            if attempt == attempts:
                raise
    return []
