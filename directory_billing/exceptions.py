"""
Error responses for the payment functions.

The browser checkout reads a flat ``{error, code?, details?}`` body, so every
handler here produces that shape (not RFC 7807) and stamps the CORS headers
the edge contract promises on every response.
"""

from typing import Any, Dict, Optional
from enum import Enum
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import traceback

from directory_billing.middleware.cors import CORS_HEADERS

logger = logging.getLogger(__name__)

INVALID_PAYMENT_MESSAGE = "Missing or invalid payment information"
UNEXPECTED_ERROR_MESSAGE = (
    "An unexpected error occurred while processing your payment. "
    "Please try again or contact support."
)


class ErrorCode(str, Enum):
    """Machine-readable codes returned alongside business-rule rejections."""

    INVALID_PAYMENT = "invalid_payment"
    AMOUNT_BELOW_MINIMUM = "amount_below_minimum"
    UNKNOWN_GATEWAY_ERROR = "unknown_error"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    BUSINESS_NOT_FOUND = "business_not_found"
    NO_ACTIVE_SUBSCRIPTION = "no_active_subscription"
    PAYMENT_METHOD_REQUIRED = "payment_method_required"
    SAME_PLAN = "same_plan"


class PaymentAPIException(HTTPException):
    """
    Base exception for the payment functions.

    Usage:
        raise PaymentAPIException(
            status_code=400,
            error="Expired card",
            code="223",
            details="DECLINE",
        )
    """

    def __init__(
        self,
        status_code: int,
        error: str,
        code: Optional[str] = None,
        details: Any = None,
    ):
        self.error = error
        self.code = code
        self.details = details
        super().__init__(status_code=status_code, detail=error)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        if self.code is not None:
            body["code"] = self.code
        if self.details is not None:
            body["details"] = self.details
        return body


class PaymentValidationError(PaymentAPIException):
    """Missing or invalid amount / payment method (400)."""

    def __init__(
        self,
        error: str = INVALID_PAYMENT_MESSAGE,
        code: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(status_code=400, error=error, code=code, details=details)


class PaymentDeclinedError(PaymentAPIException):
    """Gateway answered but did not approve (400)."""

    def __init__(self, error: str, code: Optional[str], details: Optional[str]):
        super().__init__(
            status_code=400,
            error=error,
            code=code or ErrorCode.UNKNOWN_GATEWAY_ERROR.value,
            details=details or "No additional details available",
        )


class GatewayUnavailableHTTPError(PaymentAPIException):
    """Gateway unreachable and simulation fallback disabled (502)."""

    def __init__(self, details: str):
        super().__init__(
            status_code=502,
            error="Payment gateway is temporarily unavailable. Please try again later.",
            code=ErrorCode.GATEWAY_UNAVAILABLE.value,
            details=details,
        )


class BusinessNotFoundError(PaymentAPIException):
    """Business id does not exist (404)."""

    def __init__(self, error: str = "Business not found"):
        super().__init__(status_code=404, error=error)


class BusinessReconciliationError(PaymentAPIException):
    """Charge succeeded but no business matched the payer email (409)."""

    def __init__(self, transaction_id: Optional[str], customer_email: Optional[str]):
        super().__init__(
            status_code=409,
            error="Payment was captured but no business matches this email. Please contact support.",
            code=ErrorCode.BUSINESS_NOT_FOUND.value,
            details={"transaction_id": transaction_id, "customer_email": customer_email},
        )


class PaymentMethodRequiredError(PaymentAPIException):
    """Plan change needs a card stored in the customer vault (400)."""

    def __init__(self, error: str, message: str):
        self.message = message
        super().__init__(
            status_code=400,
            error=error,
            code=ErrorCode.PAYMENT_METHOD_REQUIRED.value,
        )

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        body.update({"success": False, "requires_payment_method": True, "message": self.message})
        return body


class GatewayUnavailableError(Exception):
    """Network-level failure talking to the gateway (timeout, DNS, reset)."""


class DiscountCodeError(Exception):
    """Discount code could not be redeemed."""


# Exception handlers for FastAPI

def json_response(status_code: int, content: Optional[Dict[str, Any]]) -> JSONResponse:
    """JSON response carrying the edge-function CORS headers."""
    return JSONResponse(status_code=status_code, content=content, headers=dict(CORS_HEADERS))


def create_exception_handlers():
    """
    Build the exception handlers registered in main.create_app.

    Usage:
        handlers = create_exception_handlers()
        app.add_exception_handler(PaymentAPIException, handlers["payment"])
        app.add_exception_handler(RequestValidationError, handlers["validation"])
        app.add_exception_handler(Exception, handlers["generic"])
    """

    async def handle_payment_exception(request: Request, exc: PaymentAPIException) -> JSONResponse:
        logger.warning(
            f"Payment request rejected ({exc.status_code}): {exc.error}",
            extra={"code": exc.code, "path": request.url.path},
        )
        return json_response(exc.status_code, exc.to_body())

    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 405:
            logger.info(f"Method not allowed: {request.method} {request.url.path}")
            return json_response(405, {"error": "Method not allowed"})
        return json_response(exc.status_code, {"error": str(exc.detail)})

    async def handle_validation_exception(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Schema errors are business-rule rejections (400), not 422."""
        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            })
        logger.error(f"Validation failed: {errors}")
        return json_response(400, {"error": INVALID_PAYMENT_MESSAGE, "details": errors})

    async def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled exception on {request.url.path}: {exc}")
        logger.error(traceback.format_exc())

        from directory_billing.core.sentry import capture_exception
        capture_exception(exc, context={"path": request.url.path, "method": request.method})

        return json_response(
            500,
            {"error": UNEXPECTED_ERROR_MESSAGE, "details": str(exc) or "Internal server error"},
        )

    return {
        "payment": handle_payment_exception,
        "http": handle_http_exception,
        "validation": handle_validation_exception,
        "generic": handle_generic_exception,
    }
