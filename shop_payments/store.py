"""
Order Store: the only code that reads or writes ``payment_orders``.

Status writes are single conditional UPDATE statements filtered on the
statuses the target may be reached from (``lifecycle.ALLOWED_SOURCES``). Two
handlers racing on the same order therefore resolve in the database: the
last writer wins field by field, except that nothing moves an order out of
``success``. A write the guard blocks is returned as ``applied=False``.
"""
import logging
from typing import Any, NamedTuple, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from .errors import PersistenceError
from .lifecycle import AuditSource, OrderStatus, allowed_sources
from .models import PaymentOrder, Product, utcnow

logger = logging.getLogger(__name__)

# columns a status write may touch besides status/updated_at/audit_payload
WRITABLE_FIELDS = frozenset({"gateway_payment_id", "gateway_signature", "failure_reason"})


class Transition(NamedTuple):
    order: Optional[PaymentOrder]  # None when no row matched the key
    applied: bool


def audit_record(source: AuditSource, **details: Any) -> dict:
    record = {"source": AuditSource(source).value, "recorded_at": utcnow().isoformat()}
    record.update({k: v for k, v in details.items() if v is not None})
    return record


class OrderStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_product(self, product_id: str) -> Optional[Product]:
        try:
            return await self.session.get(Product, product_id)
        except SQLAlchemyError as exc:
            logger.error("Product lookup failed for %s: %s", product_id, exc)
            raise PersistenceError("Unable to load product") from exc

    async def create(self, order: PaymentOrder) -> PaymentOrder:
        try:
            self.session.add(order)
            await self.session.commit()
            await self.session.refresh(order)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Insert payment order failed for gateway order %s: %s", order.gateway_order_id, exc)
            raise PersistenceError("Unable to store payment order") from exc
        return order

    async def _fetch_one(self, column, value) -> Optional[PaymentOrder]:
        # populate_existing so a row loaded earlier in this session is refreshed
        q = select(PaymentOrder).where(column == value).execution_options(populate_existing=True)
        try:
            res = await self.session.exec(q)
            return res.one_or_none()
        except SQLAlchemyError as exc:
            logger.error("Payment order lookup failed: %s", exc)
            raise PersistenceError("Unable to load payment order") from exc

    async def get_by_token(self, public_token: str) -> Optional[PaymentOrder]:
        return await self._fetch_one(PaymentOrder.public_token, public_token)

    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[PaymentOrder]:
        return await self._fetch_one(PaymentOrder.gateway_order_id, gateway_order_id)

    async def transition(self,
                         *,
                         status: OrderStatus,
                         audit: dict,
                         order_id: Optional[int] = None,
                         gateway_order_id: Optional[str] = None,
                         **fields: Any,
                         ) -> Transition:
        """Move one order to ``status`` if its current status allows it.

        The order is addressed by internal ``order_id`` or by
        ``gateway_order_id``. Extra keyword fields must be in
        ``WRITABLE_FIELDS``; they are written only together with the status.
        """
        if (order_id is None) == (gateway_order_id is None):
            raise ValueError("pass exactly one of order_id or gateway_order_id")
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"fields not writable through transition: {sorted(unknown)}")

        if order_id is not None:
            column, value = PaymentOrder.id, order_id
        else:
            column, value = PaymentOrder.gateway_order_id, gateway_order_id

        target = OrderStatus(status)
        sources = [s.value for s in allowed_sources(target)]
        stmt = (
            update(PaymentOrder)
            .where(column == value)
            .where(PaymentOrder.status.in_(sources))
            .values(status=target.value, updated_at=utcnow(), audit_payload=audit, **fields)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Status update to %s failed for %s=%s: %s", target.value, column.key, value, exc)
            raise PersistenceError("Unable to update payment status") from exc

        applied = result.rowcount > 0
        order = await self._fetch_one(column, value)
        if order is not None and not applied:
            logger.info(
                "Kept status %s for order %s; %s write from %s not allowed",
                order.status, order.gateway_order_id, target.value, audit.get("source"),
            )
        return Transition(order, applied)
