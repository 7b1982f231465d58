import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError as PayloadValidationError

from ..config import settings
from ..crypto import compute_signature, signatures_equal
from ..db import get_order_store
from ..errors import ConfigurationError, ValidationError, WebhookSignatureError
from ..lifecycle import AuditSource, OrderStatus, DEFAULT_PAYMENT_FAILURE_REASON, status_for_webhook_event
from ..schemas import WebhookEvent
from ..store import OrderStore, audit_record

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


# Webhook (Razorpay -> POST)
@router.post("/gateway-webhook")
async def gateway_webhook(request: Request,
                          x_razorpay_signature: Optional[str] = Header(default=None),
                          store: OrderStore = Depends(get_order_store)):
    """
    Razorpay pushes payment/order events here. The signature covers the raw
    body bytes, so it is checked before anything is parsed. Gateway events
    are authoritative and may move any order that is not yet ``success``.
    """
    secret = settings.razorpay_webhook_secret
    if not secret:
        raise ConfigurationError("Webhook configuration missing")

    signature = (x_razorpay_signature or "").strip()
    if not signature:
        raise WebhookSignatureError("Missing webhook signature")

    raw_body = await request.body()
    if not signatures_equal(compute_signature(secret, raw_body), signature):
        logger.warning("Rejected webhook with invalid signature (%s bytes)", len(raw_body))
        raise WebhookSignatureError()

    try:
        body = json.loads(raw_body)
        event = WebhookEvent.model_validate(body)
    except (ValueError, PayloadValidationError):
        raise ValidationError("Invalid webhook payload")

    status = status_for_webhook_event(event.event)
    if status is None:
        logger.info("Ignoring webhook event %r", event.event)
        return {"ok": True, "ignored": True}

    payment = event.payment_entity
    order_entity = event.order_entity
    gateway_order_id = (payment.order_id if payment else None) or (order_entity.id if order_entity else None)
    if not gateway_order_id:
        raise ValidationError("No order id in webhook payload")

    fields = {"failure_reason": None}
    if status == OrderStatus.FAILED:
        fields["failure_reason"] = (payment.error_description if payment else None) or DEFAULT_PAYMENT_FAILURE_REASON
    if payment and payment.id:
        fields["gateway_payment_id"] = payment.id

    result = await store.transition(
        gateway_order_id=gateway_order_id,
        status=status,
        audit=audit_record(
            AuditSource.WEBHOOK,
            event=event.event,
            payment_id=payment.id if payment else None,
            payload=body,
        ),
        **fields,
    )
    if result.order is None:
        logger.warning("Webhook %s for unknown gateway order %s", event.event, gateway_order_id)
    elif result.applied:
        logger.info("Webhook %s moved gateway order %s to %s", event.event, gateway_order_id, result.order.status)

    return {"ok": True}
