"""
Async client for the browser-facing endpoints, including the bounded polling
loop a checkout page runs after the widget closes.

    async with PaymentsClient("https://payments.example.com") as api:
        order = await api.create_order(product_id)
        ...  # open checkout, then report the outcome
        await api.submit_payment(order["paymentToken"], order["gatewayOrderId"], ...)
        final = await api.wait_for_final_status(order["paymentToken"])
"""
import asyncio
import logging
from typing import Optional

import httpx

from .lifecycle import ClientEvent, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

VERIFICATION_POLL_ATTEMPTS = 30
VERIFICATION_POLL_SECONDS = 2.0


class PaymentsClientError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class VerificationTimeout(PaymentsClientError):
    """Polling ran out of attempts before the order reached a final status."""

    def __init__(self, order_reference: Optional[str] = None):
        reference = order_reference or "N/A"
        super().__init__(
            f"Payment verification is taking longer than expected. "
            f"Contact support with your order reference: {reference}"
        )
        self.order_reference = order_reference


class PaymentsClient:
    def __init__(self, base_url: str, timeout: float = 20.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._http.aclose()

    async def _post(self, path: str, body: dict, fallback: str) -> dict:
        try:
            resp = await self._http.post(path, json=body)
        except httpx.HTTPError as exc:
            raise PaymentsClientError(fallback) from exc
        try:
            data = resp.json()
        except ValueError:
            data = None
        if resp.is_error or not isinstance(data, dict):
            message = data.get("error") if isinstance(data, dict) else None
            raise PaymentsClientError(message or fallback, status_code=resp.status_code)
        return data

    async def create_order(self, product_id: str) -> dict:
        return await self._post("/create-order", {"productId": product_id}, "Unable to create payment order.")

    async def submit_payment(self,
                             payment_token: str,
                             gateway_order_id: str,
                             gateway_event: ClientEvent = ClientEvent.CHECKOUT_SUCCESS,
                             gateway_payment_id: Optional[str] = None,
                             gateway_signature: Optional[str] = None,
                             failure_reason: Optional[str] = None,
                             ) -> dict:
        body = {
            "paymentToken": payment_token,
            "gatewayOrderId": gateway_order_id,
            "gatewayEvent": ClientEvent(gateway_event).value,
        }
        if gateway_payment_id:
            body["gatewayPaymentId"] = gateway_payment_id
        if gateway_signature:
            body["gatewaySignature"] = gateway_signature
        if failure_reason:
            body["failureReason"] = failure_reason
        return await self._post("/submit-payment", body, "Unable to submit payment details.")

    async def get_status(self, payment_token: str) -> dict:
        return await self._post("/payment-status", {"paymentToken": payment_token}, "Unable to fetch payment status.")

    async def wait_for_final_status(self,
                                    payment_token: str,
                                    attempts: int = VERIFICATION_POLL_ATTEMPTS,
                                    interval: float = VERIFICATION_POLL_SECONDS,
                                    order_reference: Optional[str] = None,
                                    ) -> dict:
        """Poll until the order is success, failed or cancelled.

        A failed poll is retried unless it was the last attempt, in which case
        its error propagates. Raises VerificationTimeout when every attempt
        came back pending. Cancel the awaiting task to stop early.
        """
        for attempt in range(attempts):
            try:
                status = await self.get_status(payment_token)
            except PaymentsClientError as exc:
                if attempt == attempts - 1:
                    raise
                logger.debug("Status poll %s failed: %s", attempt + 1, exc)
            else:
                if status.get("status") in {s.value for s in TERMINAL_STATUSES}:
                    return status
            if attempt < attempts - 1:
                await asyncio.sleep(interval)

        raise VerificationTimeout(order_reference)
