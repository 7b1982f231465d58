"""
Order status vocabulary and the rules every handler shares.

Statuses move ``created -> client_authorized -> success``; ``created`` and
``client_authorized`` may fall to ``failed``; ``created`` may become
``cancelled``. ``failed`` and ``cancelled`` can still be overwritten by later
evidence of payment. ``success`` is never left once reached.
"""
from enum import Enum
from typing import Iterable, NamedTuple, Optional


class OrderStatus(str, Enum):
    CREATED = "created"
    CLIENT_AUTHORIZED = "client_authorized"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AuditSource(str, Enum):
    CREATE_ORDER = "create-order"
    CLIENT_SUBMISSION = "submit-payment"
    WEBHOOK = "gateway-webhook"
    RECONCILE = "reconcile"


class ClientEvent(str, Enum):
    CHECKOUT_SUCCESS = "checkout_success"
    PAYMENT_FAILED = "payment_failed"
    CHECKOUT_DISMISSED = "checkout_dismissed"


# statuses the browser stops polling on
TERMINAL_STATUSES = frozenset({OrderStatus.SUCCESS, OrderStatus.FAILED, OrderStatus.CANCELLED})

# statuses that need the gateway's opinion before answering a poll
PENDING_STATUSES = frozenset({OrderStatus.CREATED, OrderStatus.CLIENT_AUTHORIZED})

_REOPENABLE = {
    OrderStatus.CREATED,
    OrderStatus.CLIENT_AUTHORIZED,
    OrderStatus.FAILED,
    OrderStatus.CANCELLED,
}

# target status -> statuses a write may start from
ALLOWED_SOURCES = {
    OrderStatus.SUCCESS: frozenset(_REOPENABLE | {OrderStatus.SUCCESS}),
    OrderStatus.CLIENT_AUTHORIZED: frozenset(_REOPENABLE),
    OrderStatus.FAILED: frozenset(_REOPENABLE),
    OrderStatus.CANCELLED: frozenset({OrderStatus.CREATED, OrderStatus.CANCELLED}),
}

WEBHOOK_EVENT_STATUS = {
    "payment.captured": OrderStatus.SUCCESS,
    "order.paid": OrderStatus.SUCCESS,
    "payment.failed": OrderStatus.FAILED,
    "payment.authorized": OrderStatus.CLIENT_AUTHORIZED,
}

SIGNATURE_FAILURE_REASON = "signature_verification_failed"
DEFAULT_PAYMENT_FAILURE_REASON = "payment_failed"
DEFAULT_DISMISS_REASON = "checkout_dismissed"


def allowed_sources(target: OrderStatus) -> frozenset:
    return ALLOWED_SOURCES[OrderStatus(target)]


def status_for_webhook_event(event_name: str) -> Optional[OrderStatus]:
    """Status implied by a gateway webhook event, or None for events we ignore."""
    return WEBHOOK_EVENT_STATUS.get(event_name or "")


def signature_message(gateway_order_id: str, gateway_payment_id: str) -> str:
    """The message the gateway signs for a completed checkout."""
    return f"{gateway_order_id}|{gateway_payment_id}"


class ReconciledPayment(NamedTuple):
    status: OrderStatus
    payment_id: Optional[str]
    failure_reason: Optional[str]


def _is_captured(item: dict) -> bool:
    return item.get("status") == "captured" or item.get("captured") is True


def reconcile_payments(items: Iterable[dict]) -> Optional[ReconciledPayment]:
    """Fold a gateway payment list for one order into a single outcome.

    Any captured payment wins, then any authorized one, then any failed one.
    Returns None when the list says nothing conclusive.
    """
    items = [item for item in items or [] if isinstance(item, dict)]

    for item in items:
        if _is_captured(item):
            return ReconciledPayment(OrderStatus.SUCCESS, item.get("id"), None)

    for item in items:
        if item.get("status") == "authorized":
            return ReconciledPayment(OrderStatus.CLIENT_AUTHORIZED, item.get("id"), None)

    for item in items:
        if item.get("status") == "failed":
            reason = item.get("error_description") or DEFAULT_PAYMENT_FAILURE_REASON
            return ReconciledPayment(OrderStatus.FAILED, item.get("id"), reason)

    return None
