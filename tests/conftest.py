import itertools
import json
import os
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock

_TMP_DIR = Path(tempfile.mkdtemp(prefix="shop-payments-tests-"))
DB_PATH = _TMP_DIR / "payment_orders.db"

# settings are read at import time, so the environment is prepared first
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{DB_PATH}"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test_key_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test_webhook_secret"
os.environ["RAZORPAY_API_BASE"] = "https://gateway.test/v1"

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, create_engine, select

from shop_payments.crypto import compute_signature
from shop_payments.main import app
from shop_payments.models import PaymentOrder, Product
from shop_payments.routers import payments as payments_router

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


@pytest.fixture
def client():
    if DB_PATH.exists():
        DB_PATH.unlink()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db(client):
    """Synchronous engine on the same SQLite file, for seeding and inspecting rows."""
    engine = create_engine(f"sqlite:///{DB_PATH}")
    yield engine
    engine.dispose()


@pytest.fixture
def gateway(monkeypatch):
    """Replace the Razorpay calls the checkout router makes."""
    ids = itertools.count(1)

    async def fake_create(amount_minor_units, currency, receipt, notes=None):
        return {"id": f"order_TEST{next(ids):04d}", "amount": amount_minor_units,
                "currency": currency, "receipt": receipt, "status": "created"}

    mock = AsyncMock()
    mock.create_order = AsyncMock(side_effect=fake_create)
    mock.list_payments = AsyncMock(return_value=[])
    monkeypatch.setattr(payments_router, "create_razorpay_order", mock.create_order)
    monkeypatch.setattr(payments_router, "list_order_payments", mock.list_payments)
    return mock


def add_product(engine, product_id="prod_abcdef123", title="Floral Border Pack", price=50.0):
    with Session(engine) as session:
        session.add(Product(id=product_id, title=title, price=price))
        session.commit()
    return product_id


def load_order(engine, payment_token) -> PaymentOrder:
    with Session(engine) as session:
        return session.exec(select(PaymentOrder).where(PaymentOrder.public_token == payment_token)).one()


def set_status(engine, payment_token, status, failure_reason=None):
    with Session(engine) as session:
        order = session.exec(select(PaymentOrder).where(PaymentOrder.public_token == payment_token)).one()
        order.status = status
        order.failure_reason = failure_reason
        session.add(order)
        session.commit()


def checkout_signature(gateway_order_id, payment_id, secret=KEY_SECRET):
    return compute_signature(secret, f"{gateway_order_id}|{payment_id}")


def post_webhook(client, payload, secret=WEBHOOK_SECRET, signature=None):
    raw = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if signature is None:
        signature = compute_signature(secret, raw)
    if signature:
        headers["X-Razorpay-Signature"] = signature
    return client.post("/gateway-webhook", content=raw, headers=headers)


def payment_event(event, gateway_order_id, payment_id="pay_123", status=None, error_description=None):
    entity = {"id": payment_id, "order_id": gateway_order_id, "status": status or event.split(".")[-1]}
    if error_description:
        entity["error_description"] = error_description
    return {"entity": "event", "event": event, "payload": {"payment": {"entity": entity}}}


@pytest.fixture
def created_order(client, db, gateway):
    """An order in ``created`` state for a product priced 50.00."""
    add_product(db)
    resp = client.post("/create-order", json={"productId": "prod_abcdef123"})
    assert resp.status_code == 200, resp.text
    return resp.json()
