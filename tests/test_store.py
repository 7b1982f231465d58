import tempfile
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from shop_payments.errors import PersistenceError
from shop_payments.lifecycle import AuditSource, OrderStatus
from shop_payments.models import PaymentOrder
from shop_payments.store import OrderStore, audit_record


@asynccontextmanager
async def order_store():
    path = Path(tempfile.mkdtemp()) / "store.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    try:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield OrderStore(session)
    finally:
        await engine.dispose()


def new_order(**overrides):
    values = dict(
        public_token="tok_1",
        receipt="shb_1_prod_a",
        product_id="prod_a",
        product_title="Pack",
        amount=50.0,
        amount_minor_units=5000,
        gateway_order_id="order_1",
    )
    values.update(overrides)
    return PaymentOrder(**values)


AUDIT = audit_record(AuditSource.WEBHOOK, event="test")


@pytest.mark.asyncio
async def test_create_and_fetch():
    async with order_store() as store:
        created = await store.create(new_order())
        assert created.id is not None
        assert created.status == "created"

        assert (await store.get_by_token("tok_1")).id == created.id
        assert (await store.get_by_gateway_order_id("order_1")).id == created.id
        assert await store.get_by_token("missing") is None


@pytest.mark.asyncio
async def test_duplicate_gateway_order_id_is_persistence_error():
    async with order_store() as store:
        await store.create(new_order())
        with pytest.raises(PersistenceError):
            await store.create(new_order(public_token="tok_2"))


@pytest.mark.asyncio
async def test_transition_applies_and_returns_fresh_row():
    async with order_store() as store:
        order = await store.create(new_order())
        result = await store.transition(order_id=order.id, status=OrderStatus.FAILED, audit=AUDIT,
                                        failure_reason="declined", gateway_payment_id="pay_1")
        assert result.applied
        assert result.order.status == "failed"
        assert result.order.failure_reason == "declined"
        assert result.order.gateway_payment_id == "pay_1"
        assert result.order.audit_payload["source"] == "gateway-webhook"
        assert result.order.updated_at >= order.created_at


@pytest.mark.asyncio
async def test_success_blocks_non_success_writes():
    async with order_store() as store:
        order = await store.create(new_order())
        await store.transition(gateway_order_id="order_1", status=OrderStatus.SUCCESS, audit=AUDIT)

        for target in (OrderStatus.FAILED, OrderStatus.CLIENT_AUTHORIZED, OrderStatus.CANCELLED):
            result = await store.transition(order_id=order.id, status=target, audit=AUDIT,
                                            failure_reason="late", gateway_payment_id="pay_late")
            assert not result.applied
            assert result.order.status == "success"
            assert result.order.failure_reason is None
            assert result.order.gateway_payment_id is None


@pytest.mark.asyncio
async def test_success_to_success_refreshes_metadata():
    async with order_store() as store:
        await store.create(new_order())
        await store.transition(gateway_order_id="order_1", status=OrderStatus.SUCCESS, audit=AUDIT)
        result = await store.transition(gateway_order_id="order_1", status=OrderStatus.SUCCESS,
                                        audit=AUDIT, gateway_payment_id="pay_9")
        assert result.applied
        assert result.order.gateway_payment_id == "pay_9"


@pytest.mark.asyncio
async def test_unknown_key_matches_nothing():
    async with order_store() as store:
        result = await store.transition(gateway_order_id="order_nope", status=OrderStatus.SUCCESS, audit=AUDIT)
        assert result.order is None
        assert not result.applied


@pytest.mark.asyncio
async def test_transition_rejects_bad_arguments():
    async with order_store() as store:
        with pytest.raises(ValueError):
            await store.transition(status=OrderStatus.SUCCESS, audit=AUDIT)
        with pytest.raises(ValueError):
            await store.transition(order_id=1, gateway_order_id="order_1", status=OrderStatus.SUCCESS, audit=AUDIT)
        with pytest.raises(ValueError):
            await store.transition(order_id=1, status=OrderStatus.SUCCESS, audit=AUDIT, gateway_order_id_x="x")


def test_audit_record_drops_empty_details():
    record = audit_record(AuditSource.CLIENT_SUBMISSION, gateway_event="checkout_dismissed", payment_id=None)
    assert record["source"] == "submit-payment"
    assert record["gateway_event"] == "checkout_dismissed"
    assert "payment_id" not in record
    assert "recorded_at" in record


def test_timestamps_are_timezone_aware():
    order = new_order()
    assert order.created_at.tzinfo is not None
    assert order.created_at.utcoffset().total_seconds() == 0
    assert order.updated_at.tzinfo is not None
    assert audit_record(AuditSource.RECONCILE)["recorded_at"].endswith("+00:00")


@pytest.mark.asyncio
async def test_aware_timestamps_survive_a_transition():
    async with order_store() as store:
        order = await store.create(new_order())
        result = await store.transition(order_id=order.id, status=OrderStatus.CLIENT_AUTHORIZED, audit=AUDIT)
        assert result.applied
        assert result.order.updated_at is not None
