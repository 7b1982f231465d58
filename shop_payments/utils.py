import secrets
import time

from .config import settings


def new_public_token() -> str:
    """Opaque browser-facing handle for an order, unrelated to its row id."""
    return secrets.token_urlsafe(24)


def build_receipt(product_id: str) -> str:
    # not an idempotency key: repeated calls produce new receipts
    return f"{settings.receipt_prefix}_{int(time.time() * 1000)}_{product_id[:6]}"
