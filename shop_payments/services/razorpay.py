import logging
import httpx
from typing import Optional
from ..config import settings
from ..errors import ConfigurationError, GatewayError

logger = logging.getLogger(__name__)


def _client() -> httpx.AsyncClient:
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise ConfigurationError("Razorpay keys are not configured")
    return httpx.AsyncClient(
        base_url=settings.razorpay_api_base,
        auth=(settings.razorpay_key_id, settings.razorpay_key_secret),
        headers={"Content-Type": "application/json"},
        timeout=settings.gateway_timeout_seconds,
    )


def _error_description(resp: httpx.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    error = body.get("error") or {}
    description = error.get("description") if isinstance(error, dict) else None
    return description.strip() if isinstance(description, str) and description.strip() else None


async def _send(method: str, path: str, fallback: str, **kwargs) -> dict:
    async with _client() as client:
        try:
            resp = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Razorpay %s %s timed out: %s", method, path, exc)
            raise GatewayError("Payment gateway timed out, please retry", retryable=True) from exc
        except httpx.HTTPError as exc:
            logger.warning("Razorpay %s %s unreachable: %s", method, path, exc)
            raise GatewayError("Payment gateway unreachable, please retry", retryable=True) from exc

    if resp.is_error:
        logger.error("Razorpay %s %s returned %s: %s", method, path, resp.status_code, resp.text)
        raise GatewayError(_error_description(resp) or fallback)
    try:
        return resp.json()
    except ValueError as exc:
        logger.error("Razorpay %s %s returned a non-JSON body", method, path)
        raise GatewayError(fallback) from exc


async def create_razorpay_order(amount_minor_units: int,
                                currency: str,
                                receipt: str,
                                notes: Optional[dict] = None,
                                ) -> dict:
    """
    Create a Razorpay order and return its JSON (``id``, ``amount``, ``currency``, ...).
    """
    payload = {
        "amount": amount_minor_units,
        "currency": currency,
        "receipt": receipt,
    }
    if notes:
        payload["notes"] = notes
    return await _send("POST", "/orders", "Unable to create payment order", json=payload)


async def list_order_payments(gateway_order_id: str) -> list:
    """All payment attempts the gateway knows for one order."""
    data = await _send("GET", f"/orders/{gateway_order_id}/payments", "Unable to fetch payment status")
    items = data.get("items") if isinstance(data, dict) else None
    return items if isinstance(items, list) else []
