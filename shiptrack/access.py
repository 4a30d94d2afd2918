"""
Role-based zone boundary for browser routes.

``decide`` is the whole policy: a pure function of (role, path). The
middleware only resolves who is asking and turns the decision into a
redirect. Four zones, one per role family, mutually exclusive; paths
outside every zone pass through untouched.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import structlog
from fastapi import Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import RedirectResponse
from sqlmodel import Session

from .deps import get_store
from .models import Role
from .store import ShipmentStore

logger = structlog.get_logger(__name__)


class Zone(str, Enum):
    ADMIN = "admin"
    SELLER = "seller"
    DRIVER = "driver"
    CUSTOMER = "customer"


ZONE_PREFIXES = {
    Zone.ADMIN: ("/admin",),
    Zone.SELLER: ("/seller",),
    Zone.DRIVER: ("/driver",),
    Zone.CUSTOMER: ("/dashboard",),
}

ZONE_HOMES = {
    Zone.ADMIN: "/admin/shipments",
    Zone.SELLER: "/seller",
    Zone.DRIVER: "/driver",
    Zone.CUSTOMER: "/dashboard",
}

# the driver zone stays reachable without a session
LOGIN_REQUIRED = (Zone.ADMIN, Zone.SELLER, Zone.CUSTOMER)

LOGIN_PATH = "/login"
AUTH_ROUTES = ("/login", "/signup")

EXCLUDED_PREFIXES = ("/static", "/favicon.ico", "/api/auth", "/auth/callback")
EXCLUDED_SUFFIXES = (".svg", ".png", ".jpg", ".jpeg", ".gif", ".webp")


class Action(str, Enum):
    ALLOW = "allow"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_HOME = "redirect_home"


@dataclass(frozen=True)
class Decision:
    action: Action
    location: Optional[str] = None


ALLOW = Decision(Action.ALLOW)


def _matches(path: str, prefix: str) -> bool:
    # plain prefix: /adminpanel is still the admin zone
    return path.startswith(prefix)


def is_excluded(path: str) -> bool:
    return any(path.startswith(p) for p in EXCLUDED_PREFIXES) or path.lower().endswith(EXCLUDED_SUFFIXES)


def zone_of(path: str) -> Optional[Zone]:
    for zone, prefixes in ZONE_PREFIXES.items():
        if any(_matches(path, p) for p in prefixes):
            return zone
    return None


def home_zone(role: Union[Role, str, None]) -> Zone:
    value = getattr(role, "value", role)
    if value == Role.ADMIN.value:
        return Zone.ADMIN
    if value == Role.SELLER.value:
        return Zone.SELLER
    if value in (Role.STAFF.value, Role.DRIVER.value):
        return Zone.DRIVER
    return Zone.CUSTOMER


def decide(role: Union[Role, str, None], path: str) -> Decision:
    """
    ``role`` is None for an anonymous request. An authenticated user without
    a role row should be passed as ``Role.USER``; unknown role names are
    treated the same way.
    """
    if is_excluded(path):
        return ALLOW
    zone = zone_of(path)

    if role is None:
        if zone in LOGIN_REQUIRED:
            return Decision(Action.REDIRECT_LOGIN, LOGIN_PATH)
        return ALLOW

    own = home_zone(role)
    if any(_matches(path, p) for p in AUTH_ROUTES):
        return Decision(Action.REDIRECT_HOME, ZONE_HOMES[own])
    if zone is not None and zone is not own:
        return Decision(Action.REDIRECT_HOME, ZONE_HOMES[own])
    return ALLOW


def _lookup_role(engine, user_id: str) -> Role:
    with Session(engine) as session:
        return ShipmentStore(session).role_for(user_id) or Role.USER


class AccessBoundaryMiddleware(BaseHTTPMiddleware):
    """Needs ``SessionMiddleware`` outside it; reads ``session["user_id"]``."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if is_excluded(path):
            return await call_next(request)

        user_id = request.session.get("user_id") if "session" in request.scope else None
        role = None
        if user_id:
            role = await run_in_threadpool(_lookup_role, request.app.state.engine, user_id)

        decision = decide(role, path)
        if decision.action is Action.ALLOW:
            return await call_next(request)
        logger.info("access_redirect", path=path, user_id=user_id, action=decision.action.value, to=decision.location)
        return RedirectResponse(decision.location, status_code=303)


# ---------- Handler-side identity ----------
@dataclass(frozen=True)
class Actor:
    user_id: str
    role: Role


def current_actor(request: Request, store: ShipmentStore = Depends(get_store)) -> Optional[Actor]:
    user_id = request.session.get("user_id") if "session" in request.scope else None
    if not user_id:
        return None
    return Actor(user_id=user_id, role=store.role_for(user_id) or Role.USER)


def require_actor(actor: Optional[Actor] = Depends(current_actor)) -> Actor:
    if actor is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return actor
