"""
``x-api-key`` authentication and request logging for the v1 API.

Every authenticated call bumps the key's usage counter and writes one
``api_logs`` row, whatever the outcome. Those writes are best-effort: if
they fail the error is logged and the caller still gets its response.
"""
import json
import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Tuple

import structlog
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from .deps import get_store
from .models import ApiKey, ApiLog
from .store import ShipmentStore

logger = structlog.get_logger(__name__)

# same message whether the key is missing, unknown or disabled
INVALID_KEY = "Invalid or inactive API key"
KEY_PREFIX = "univ_live_"

SECRET_FIELDS = {"x-api-key", "api_key", "secret_key", "password", "token", "authorization"}
MAX_LOGGED_ITEMS = 5

STORE_FAILURE = "Database error"
INTERNAL_FAILURE = "Internal server error"
MALFORMED_BODY = "Request body is not valid JSON"


@dataclass(frozen=True)
class ApiClient:
    key_id: int
    user_id: str


def require_api_key(
    x_api_key: Optional[str] = Header(default=None),
    store: ShipmentStore = Depends(get_store),
) -> ApiClient:
    key = store.get_api_key(x_api_key.strip()) if x_api_key and x_api_key.strip() else None
    if key is None or not key.is_active:
        raise HTTPException(status_code=401, detail=INVALID_KEY)
    return ApiClient(key_id=key.id, user_id=key.user_id)


async def raw_body(request: Request) -> bytes:
    return await request.body()


def decode_body(raw: bytes) -> Tuple[Any, Optional[str]]:
    """(payload, problem). Undecodable bodies come back as text so they can still be logged."""
    if not raw or not raw.strip():
        return None, None
    try:
        return json.loads(raw), None
    except ValueError:
        return raw.decode("utf-8", errors="replace"), MALFORMED_BODY


def issue_api_key(store: ShipmentStore, user_id: str) -> ApiKey:
    """New secret for ``user_id``; any previous key stops working immediately."""
    key = store.upsert_api_key(user_id, KEY_PREFIX + secrets.token_hex(9))
    logger.info("api_key_issued", user_id=user_id, key_id=key.id)
    return key


def sanitize(payload: Any, truncate: bool = True) -> Any:
    """Mask secret-looking fields; with ``truncate`` long lists become a count and a sample."""
    if isinstance(payload, dict):
        return {
            k: "***" if str(k).lower() in SECRET_FIELDS else sanitize(v, truncate)
            for k, v in payload.items()
        }
    if isinstance(payload, (list, tuple)):
        if truncate and len(payload) > MAX_LOGGED_ITEMS:
            return {"count": len(payload), "sample": sanitize(payload[0], truncate)}
        return [sanitize(v, truncate) for v in payload]
    return payload


def _as_object(payload: Any) -> Optional[dict]:
    if payload is None or isinstance(payload, dict):
        return payload
    return {"payload": payload}


class ApiCall:
    """Handle given to an audited handler; set ``response`` to what should be logged."""

    def __init__(self, endpoint: str, method: str):
        self.endpoint = endpoint
        self.method = method
        self.response: Any = None


def _record(store: ShipmentStore, client: ApiClient, call: ApiCall, status_code: int, request_body, response_body):
    try:
        store.increment_key_usage(client.key_id)
    except Exception:
        store.rollback()
        logger.warning("api_usage_increment_failed", key_id=client.key_id, exc_info=True)
    try:
        store.write_api_log(
            ApiLog(
                user_id=client.user_id,
                api_key_id=client.key_id,
                endpoint=call.endpoint,
                method=call.method,
                status_code=status_code,
                request_body=_as_object(request_body),
                response_body=_as_object(response_body),
            )
        )
    except Exception:
        store.rollback()
        logger.warning("api_log_write_failed", endpoint=call.endpoint, user_id=client.user_id, exc_info=True)


@contextmanager
def audited(
    store: ShipmentStore,
    client: ApiClient,
    endpoint: str,
    method: str,
    request_body: Any,
) -> Iterator[ApiCall]:
    """
    Wrap a v1 handler body.

    ``HTTPException`` passes through after being logged with its status.
    Anything else is a store/handler failure: the transaction is rolled
    back, the full original payload is logged with the error, and the
    caller gets a 500 with a fixed message; the details stay in the log.
    """
    call = ApiCall(endpoint, method)
    try:
        yield call
    except HTTPException as exc:
        _record(store, client, call, exc.status_code, sanitize(request_body), {"error": exc.detail})
        raise
    except Exception as exc:
        store.rollback()
        logger.exception("api_call_failed", endpoint=endpoint, user_id=client.user_id)
        _record(store, client, call, 500, sanitize(request_body, truncate=False), {"error": str(exc)})
        message = STORE_FAILURE if isinstance(exc, SQLAlchemyError) else INTERNAL_FAILURE
        raise HTTPException(status_code=500, detail=message) from exc
    else:
        _record(store, client, call, 200, sanitize(request_body), sanitize(call.response))
