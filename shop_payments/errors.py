"""
Error taxonomy for the payment handlers.

Every handler raises one of these; the exception handlers registered in
``register_exception_handlers`` turn them into ``{"error": "..."}`` bodies.
Messages are written for the browser, so they never carry secrets,
signatures or stack traces.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 2


class PaymentError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(PaymentError):
    status_code = 500
    default_message = "Payment service is not configured"


class ValidationError(PaymentError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(PaymentError):
    status_code = 404
    default_message = "Not found"


class GatewayError(PaymentError):
    status_code = 502
    default_message = "Payment gateway request failed"

    def __init__(self, message: str = None, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class SignatureError(PaymentError):
    status_code = 400
    default_message = "Signature verification failed"


class WebhookSignatureError(SignatureError):
    status_code = 401
    default_message = "Invalid webhook signature"


class PersistenceError(PaymentError):
    status_code = 500
    default_message = "Unable to store payment order"


def error_response(status_code: int, message: str, headers: dict = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


async def payment_error_handler(request: Request, exc: PaymentError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.status_code, exc.message)
    # the browser polls again on a transient gateway failure
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if getattr(exc, "retryable", False) else None
    return error_response(exc.status_code, exc.message, headers)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if any(err.get("type") == "json_invalid" for err in errors):
        return error_response(400, "Invalid JSON body")
    fields = sorted({str(err["loc"][-1]) for err in errors if err.get("loc")})
    if fields:
        return error_response(400, f"Invalid fields: {', '.join(fields)}")
    return error_response(400, "Invalid request body")


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 405:
        return error_response(405, "Method not allowed")
    return error_response(exc.status_code, str(exc.detail))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PaymentError, payment_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
