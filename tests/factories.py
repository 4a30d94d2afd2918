import io

import pandas as pd
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from shiptrack.models import ApiKey, Role, Shipment, UserRole
from shiptrack.store import ShipmentStore


def add_shipment(store: ShipmentStore, awb: str, **fields) -> Shipment:
    data = {"receiver_name": "Asha", "receiver_address": "12 MG Road", "user_id": "seller-1"}
    data.update(fields)
    return store.add_shipments([Shipment(awb_code=awb, **data)])[0]


def add_role(session: Session, user_id: str, role: Role):
    session.add(UserRole(user_id=user_id, role=role))
    session.commit()


def add_key(session: Session, user_id: str, secret: str, active: bool = True) -> ApiKey:
    key = ApiKey(user_id=user_id, secret_key=secret, is_active=active)
    session.add(key)
    session.commit()
    session.refresh(key)
    return key


def login(client: TestClient, user_id: str):
    resp = client.post("/login", data={"user_id": user_id})
    assert resp.status_code == 200
    return resp


def xlsx_bytes(rows) -> bytes:
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        pd.DataFrame(rows).to_excel(writer, index=False, sheet_name="shipments")
    return buf.getvalue()


def key_usage(fetch, key_id: int) -> int:
    return fetch(select(ApiKey).where(ApiKey.id == key_id))[0].usage_count
