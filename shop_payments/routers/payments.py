import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from fastapi import APIRouter, Depends, Response

from ..config import settings
from ..crypto import compute_signature, signatures_equal
from ..db import get_order_store
from ..errors import ConfigurationError, GatewayError, NotFoundError, SignatureError, ValidationError
from ..lifecycle import (
    AuditSource,
    ClientEvent,
    OrderStatus,
    PENDING_STATUSES,
    DEFAULT_DISMISS_REASON,
    DEFAULT_PAYMENT_FAILURE_REASON,
    SIGNATURE_FAILURE_REASON,
    reconcile_payments,
    signature_message,
)
from ..models import PaymentOrder
from ..schemas import (
    CreateOrderIn,
    CreateOrderOut,
    PaymentStatusIn,
    PaymentStatusOut,
    SubmitPaymentIn,
    SubmitPaymentOut,
)
from ..services.razorpay import create_razorpay_order, list_order_payments
from ..store import OrderStore, Transition, audit_record
from ..utils import build_receipt, new_public_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _payable_amount(price) -> tuple:
    """Return (amount, amount_minor_units) for a catalog price, or raise ValidationError."""
    try:
        amount = Decimal(str(price))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Invalid product amount")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Invalid product amount")
    minor_units = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return float(amount), minor_units


def _stored_status(result: Transition) -> OrderStatus:
    if result.order is None:
        raise NotFoundError("Payment order not found")
    return OrderStatus(result.order.status)


@router.post("/create-order", response_model=CreateOrderOut)
async def create_order(payload: CreateOrderIn, store: OrderStore = Depends(get_order_store)):
    """Create a gateway order for one product and persist it as ``created``.

    The response carries only what the browser needs to open checkout; the
    key secret never leaves the server.
    """
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise ConfigurationError("Razorpay keys are not configured")

    product_id = _clean(payload.product_id)
    if not product_id:
        raise ValidationError("productId is required")

    product = await store.get_product(product_id)
    if product is None:
        raise NotFoundError("Product not found")

    amount, amount_minor_units = _payable_amount(product.price)
    if amount_minor_units < settings.min_amount_minor_units:
        minimum = Decimal(settings.min_amount_minor_units) / 100
        raise ValidationError(
            f"Minimum payable amount is {minimum:.2f} {settings.currency} for gateway checkout."
        )

    receipt = build_receipt(product.id)
    gateway_order = await create_razorpay_order(
        amount_minor_units=amount_minor_units,
        currency=settings.currency,
        receipt=receipt,
        notes={"product_id": product.id, "product_title": product.title},
    )
    gateway_order_id = gateway_order.get("id")
    if not gateway_order_id:
        logger.error("Razorpay order response without id for receipt %s", receipt)
        raise GatewayError("Unable to create payment order")

    order = await store.create(PaymentOrder(
        public_token=new_public_token(),
        receipt=receipt,
        product_id=product.id,
        product_title=product.title,
        amount=amount,
        amount_minor_units=amount_minor_units,
        currency=settings.currency,
        gateway_order_id=gateway_order_id,
        status=OrderStatus.CREATED.value,
        audit_payload=audit_record(AuditSource.CREATE_ORDER, gateway_order=gateway_order),
    ))
    logger.info("Created payment order %s for product %s (%s minor units)",
                gateway_order_id, product.id, amount_minor_units)

    return CreateOrderOut(
        payment_order_id=order.receipt,
        payment_token=order.public_token,
        gateway_order_id=order.gateway_order_id,
        amount=order.amount,
        amount_minor_units=order.amount_minor_units,
        currency=order.currency,
        checkout_key_id=settings.razorpay_key_id,
        product_title=order.product_title,
        merchant_name=settings.merchant_name,
    )


@router.post("/submit-payment", response_model=SubmitPaymentOut)
async def submit_payment(payload: SubmitPaymentIn, store: OrderStore = Depends(get_order_store)):
    """Record what the checkout widget reported for an order.

    Failures and dismissals are taken at face value. A success claim needs the
    gateway signature over ``"{gatewayOrderId}|{paymentId}"``; without a
    matching one the order is marked failed.
    """
    if not settings.razorpay_key_secret:
        raise ConfigurationError("Razorpay key secret is not configured")

    payment_token = _clean(payload.payment_token)
    gateway_order_id = _clean(payload.gateway_order_id)
    if not payment_token or not gateway_order_id:
        raise ValidationError("paymentToken and gatewayOrderId are required")

    order = await store.get_by_token(payment_token)
    if order is None:
        raise NotFoundError("Payment order not found")
    if order.gateway_order_id != gateway_order_id:
        logger.warning("Gateway order mismatch for token of order %s", order.gateway_order_id)
        raise ValidationError("Gateway order mismatch")

    event = payload.gateway_event
    payment_id = _clean(payload.gateway_payment_id)
    audit = audit_record(AuditSource.CLIENT_SUBMISSION, gateway_event=event.value, payment_id=payment_id)

    if event is ClientEvent.CHECKOUT_DISMISSED:
        result = await store.transition(
            order_id=order.id,
            status=OrderStatus.CANCELLED,
            audit=audit,
            failure_reason=_clean(payload.failure_reason) or DEFAULT_DISMISS_REASON,
        )
        return SubmitPaymentOut(status=_stored_status(result))

    if event is ClientEvent.PAYMENT_FAILED:
        fields = {"failure_reason": _clean(payload.failure_reason) or DEFAULT_PAYMENT_FAILURE_REASON}
        if payment_id:
            fields["gateway_payment_id"] = payment_id
        result = await store.transition(order_id=order.id, status=OrderStatus.FAILED, audit=audit, **fields)
        return SubmitPaymentOut(status=_stored_status(result))

    signature = _clean(payload.gateway_signature)
    if not payment_id or not signature:
        raise ValidationError("gatewayPaymentId and gatewaySignature are required for checkout_success")

    expected = compute_signature(settings.razorpay_key_secret, signature_message(order.gateway_order_id, payment_id))
    if not signatures_equal(expected, signature):
        logger.warning("Checkout signature mismatch for gateway order %s", order.gateway_order_id)
        await store.transition(
            order_id=order.id,
            status=OrderStatus.FAILED,
            audit=audit,
            failure_reason=SIGNATURE_FAILURE_REASON,
            gateway_payment_id=payment_id,
        )
        raise SignatureError()

    target = OrderStatus.SUCCESS if order.status == OrderStatus.SUCCESS else OrderStatus.CLIENT_AUTHORIZED
    result = await store.transition(
        order_id=order.id,
        status=target,
        audit=audit,
        gateway_payment_id=payment_id,
        gateway_signature=signature,
        failure_reason=None,
    )
    return SubmitPaymentOut(status=_stored_status(result))


async def reconcile_order(store: OrderStore, order: PaymentOrder) -> PaymentOrder:
    """Ask the gateway about a pending order and persist what it says."""
    items = await list_order_payments(order.gateway_order_id)
    outcome = reconcile_payments(items)
    if outcome is None or (outcome.status == order.status and outcome.payment_id == order.gateway_payment_id):
        return order

    fields = {"failure_reason": outcome.failure_reason}
    if outcome.payment_id:
        fields["gateway_payment_id"] = outcome.payment_id
    result = await store.transition(
        order_id=order.id,
        status=outcome.status,
        audit=audit_record(AuditSource.RECONCILE, payment_status=outcome.status.value, payment_id=outcome.payment_id),
        **fields,
    )
    logger.info("Reconciled gateway order %s: %s -> %s",
                order.gateway_order_id, order.status, result.order.status if result.order else None)
    return result.order or order


@router.post("/payment-status", response_model=PaymentStatusOut)
async def payment_status(payload: PaymentStatusIn, store: OrderStore = Depends(get_order_store)):
    """Current status of an order; pending orders are checked against the gateway first."""
    payment_token = _clean(payload.payment_token)
    if not payment_token:
        raise ValidationError("paymentToken is required")

    order = await store.get_by_token(payment_token)
    if order is None:
        raise NotFoundError("Payment order not found")

    if OrderStatus(order.status) in PENDING_STATUSES:
        order = await reconcile_order(store, order)

    return PaymentStatusOut(
        status=order.status,
        failure_reason=order.failure_reason,
        amount=order.amount,
        product_title=order.product_title,
        updated_at=order.updated_at,
    )


@router.options("/create-order", include_in_schema=False)
@router.options("/submit-payment", include_in_schema=False)
@router.options("/payment-status", include_in_schema=False)
async def checkout_options():
    # real preflights are answered by the CORS middleware before reaching here
    return Response(content="ok", media_type="text/plain")
