from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import func, update
from sqlmodel import Session, select

from .models import ApiKey, ApiLog, Role, Shipment, TrackingEvent, UserRole, utcnow


class ShipmentStore:
    """
    Query/insert/update access to shipments, their tracking events, API keys
    and the request log. Handlers receive one per request through
    ``deps.get_store``; every write commits immediately.
    """

    def __init__(self, session: Session):
        self.session = session

    def rollback(self):
        self.session.rollback()

    # ---------- Shipments ----------
    def add_shipments(self, shipments: List[Shipment]) -> List[Shipment]:
        """One batch insert: either every row lands or none do."""
        try:
            self.session.add_all(shipments)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        for s in shipments:
            self.session.refresh(s)
        return shipments

    def existing_awbs(self, codes: Iterable[str]) -> Set[str]:
        codes = list(codes)
        if not codes:
            return set()
        rows = self.session.exec(select(Shipment.awb_code).where(Shipment.awb_code.in_(codes))).all()
        return set(rows)

    def get_by_awb(self, awb: str, owner: Optional[str] = None) -> Optional[Shipment]:
        q = select(Shipment).where(func.lower(Shipment.awb_code) == awb.strip().lower())
        if owner is not None:
            q = q.where(Shipment.user_id == owner)
        return self.session.exec(q).first()

    def get_many_by_awb(self, awbs: List[str], owner: str) -> List[Shipment]:
        q = (
            select(Shipment)
            .where(Shipment.user_id == owner, Shipment.awb_code.in_(awbs))
            .order_by(Shipment.id)
        )
        return list(self.session.exec(q).all())

    def find_by_reference(self, reference_id: str) -> List[Shipment]:
        q = select(Shipment).where(Shipment.reference_id == reference_id)
        return list(self.session.exec(q).all())

    def update_field(self, shipment: Shipment, field: str, value, event: Optional[TrackingEvent] = None) -> Shipment:
        """Set one column; when ``event`` is given it is appended in the same commit."""
        setattr(shipment, field, value)
        shipment.updated_at = utcnow()
        self.session.add(shipment)
        if event is not None:
            event.shipment_id = shipment.id
            self.session.add(event)
        self.session.commit()
        self.session.refresh(shipment)
        return shipment

    # ---------- Tracking events ----------
    def append_event(self, event: TrackingEvent) -> TrackingEvent:
        self.session.add(event)
        self.session.commit()
        self.session.refresh(event)
        return event

    def history(self, shipment_id: int) -> List[TrackingEvent]:
        q = (
            select(TrackingEvent)
            .where(TrackingEvent.shipment_id == shipment_id)
            .order_by(TrackingEvent.timestamp.desc(), TrackingEvent.id.desc())
        )
        return list(self.session.exec(q).all())

    def history_for(self, shipment_ids: List[int]) -> Dict[int, List[TrackingEvent]]:
        out: Dict[int, List[TrackingEvent]] = {sid: [] for sid in shipment_ids}
        if not shipment_ids:
            return out
        q = (
            select(TrackingEvent)
            .where(TrackingEvent.shipment_id.in_(shipment_ids))
            .order_by(TrackingEvent.timestamp.desc(), TrackingEvent.id.desc())
        )
        for ev in self.session.exec(q).all():
            out[ev.shipment_id].append(ev)
        return out

    # ---------- API keys & request log ----------
    def get_api_key(self, secret_key: str) -> Optional[ApiKey]:
        return self.session.exec(select(ApiKey).where(ApiKey.secret_key == secret_key)).first()

    def get_key_for_user(self, user_id: str) -> Optional[ApiKey]:
        return self.session.exec(select(ApiKey).where(ApiKey.user_id == user_id)).first()

    def upsert_api_key(self, user_id: str, secret_key: str) -> ApiKey:
        key = self.get_key_for_user(user_id)
        if key is None:
            key = ApiKey(user_id=user_id, secret_key=secret_key)
        else:
            key.secret_key = secret_key
            key.is_active = True
        self.session.add(key)
        self.session.commit()
        self.session.refresh(key)
        return key

    def increment_key_usage(self, key_id: int):
        self.session.execute(
            update(ApiKey).where(ApiKey.id == key_id).values(usage_count=ApiKey.usage_count + 1)
        )
        self.session.commit()

    def write_api_log(self, log: ApiLog) -> ApiLog:
        self.session.add(log)
        self.session.commit()
        return log

    # ---------- Roles ----------
    def role_for(self, user_id: str) -> Optional[Role]:
        row = self.session.get(UserRole, user_id)
        return row.role if row else None
