from enum import Enum
from typing import Optional
from datetime import datetime, timezone

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ShipmentStatus(str, Enum):
    CREATED = "created"
    MANIFESTED = "manifested"              # picked up, details received
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    UNDELIVERED = "undelivered"            # failed attempt, driver gives a reason
    RTO_INITIATED = "rto_initiated"        # return to origin
    CANCELLED = "cancelled"


class PaymentMode(str, Enum):
    PREPAID = "Prepaid"
    COD = "COD"


class PaymentStatus(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"


class Role(str, Enum):
    ADMIN = "admin"
    SELLER = "seller"
    STAFF = "staff"
    DRIVER = "driver"
    USER = "user"


class Shipment(SQLModel, table=True):
    __tablename__ = "shipments"

    id: Optional[int] = Field(default=None, primary_key=True)
    awb_code: str = Field(index=True, unique=True)           # assigned once, never changed
    reference_id: Optional[str] = Field(default=None, index=True)
    user_id: Optional[str] = Field(default=None, index=True)  # owner (seller/customer)

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

    weight: float = 0.5
    package_type: Optional[str] = None
    declared_value: float = 0
    payment_mode: PaymentMode = Field(default=PaymentMode.PREPAID)
    cod_amount: float = 0                                    # only non-zero for COD

    current_status: ShipmentStatus = Field(default=ShipmentStatus.CREATED, index=True)
    payment_status: PaymentStatus = Field(default=PaymentStatus.UNPAID)
    pod_file: Optional[str] = None
    delivery_boy_id: Optional[str] = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TrackingEvent(SQLModel, table=True):
    __tablename__ = "tracking_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    shipment_id: int = Field(foreign_key="shipments.id", index=True)
    status: str
    location: Optional[str] = None
    description: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow, index=True)


class ApiKey(SQLModel, table=True):
    __tablename__ = "api_keys"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, unique=True)            # one key per account
    secret_key: str = Field(index=True, unique=True)
    is_active: bool = True
    usage_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class ApiLog(SQLModel, table=True):
    __tablename__ = "api_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    api_key_id: Optional[int] = None
    endpoint: str
    method: str
    status_code: int
    request_body: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    response_body: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"

    user_id: str = Field(primary_key=True)
    role: Role = Field(default=Role.USER)
