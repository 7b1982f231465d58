from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field

from .lifecycle import OrderStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Product(SQLModel, table=True):
    """Catalog row, read-only from this service."""
    __tablename__ = "products"

    id: str = Field(primary_key=True)
    title: str
    price: Optional[float] = None


class PaymentOrder(SQLModel, table=True):
    __tablename__ = "payment_orders"

    id: Optional[int] = Field(default=None, primary_key=True)  # internal only
    public_token: str = Field(index=True, unique=True)
    receipt: str

    # snapshot of the product at creation time
    product_id: str = Field(index=True)
    product_title: str

    amount: float
    amount_minor_units: int
    currency: str = "INR"

    gateway_order_id: str = Field(index=True, unique=True)
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None

    status: str = Field(default=OrderStatus.CREATED.value, index=True)  # see lifecycle.OrderStatus
    failure_reason: Optional[str] = None
    audit_payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
