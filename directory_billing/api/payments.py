"""
Payment function endpoints.

Handles:
- Card charges for listing plans (free, one-time, recurring)
- Gateway subscription cancellation
- Card replacement and plan changes for existing subscriptions
- Webhook events posted by the gateway

Only POST is routed; OPTIONS is answered by EdgeCorsMiddleware and every
other method falls through to the 405 handler.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from directory_billing.api.deps import DbSession, Processor, Subscriptions, Webhooks
from directory_billing.core.sentry import capture_exception
from directory_billing.exceptions import (
    PaymentAPIException,
    UNEXPECTED_ERROR_MESSAGE,
    json_response,
)
from directory_billing.schemas.payment import (
    CancelSubscriptionRequest,
    PaymentRequest,
    PlanChangeRequest,
    UpdatePaymentMethodRequest,
)
from directory_billing.services.webhooks import SIGNATURE_HEADER

logger = logging.getLogger(__name__)

router = APIRouter()


def unexpected_error(exc: Exception, function_name: str) -> JSONResponse:
    logger.exception(f"Error in {function_name}: {exc}")
    capture_exception(exc, context={"function": function_name})
    return json_response(
        500,
        {"error": UNEXPECTED_ERROR_MESSAGE, "details": str(exc) or "Internal server error"},
    )


@router.post("/process-payment")
async def process_payment(
    request: PaymentRequest,
    db: DbSession,
    processor: Processor,
) -> JSONResponse:
    """Charge a listing plan and record the subscription."""
    try:
        body = await processor.process_payment(db, request)
    except PaymentAPIException:
        raise
    except Exception as e:
        return unexpected_error(e, "process-payment")
    return json_response(200, body)


@router.post("/cancel-subscription")
async def cancel_subscription(
    request: CancelSubscriptionRequest,
    db: DbSession,
    subscriptions: Subscriptions,
) -> JSONResponse:
    """Cancel gateway-side recurring billing for a business."""
    try:
        body = await subscriptions.cancel_subscription(db, request.business_id)
    except PaymentAPIException:
        raise
    except Exception as e:
        return unexpected_error(e, "cancel-subscription")
    return json_response(200, body)


@router.post("/update-payment-method")
async def update_payment_method(
    request: UpdatePaymentMethodRequest,
    db: DbSession,
    subscriptions: Subscriptions,
) -> JSONResponse:
    """Replace the card used for future renewals."""
    try:
        body = await subscriptions.update_payment_method(db, request.business_id, request.payment_method)
    except PaymentAPIException:
        raise
    except Exception as e:
        return unexpected_error(e, "update-payment-method")
    return json_response(200, body)


@router.post("/upgrade-plan")
async def upgrade_plan(
    request: PlanChangeRequest,
    db: DbSession,
    subscriptions: Subscriptions,
) -> JSONResponse:
    """Move a business to a more or less expensive plan."""
    try:
        body = await subscriptions.change_plan(db, request)
    except PaymentAPIException:
        raise
    except Exception as e:
        return unexpected_error(e, "upgrade-plan")
    return json_response(200, body)


@router.post("/nmi-webhook-handler")
async def nmi_webhook_handler(
    request: Request,
    db: DbSession,
    webhooks: Webhooks,
) -> JSONResponse:
    """Apply a form-encoded gateway event."""
    payload = await request.body()
    if not webhooks.verify_signature(payload, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Rejected webhook with invalid signature")
        return json_response(401, {"error": "Invalid webhook signature"})

    try:
        await webhooks.handle(db, payload.decode("utf-8", errors="replace"))
    except Exception as e:
        logger.exception(f"Error processing webhook: {e}")
        capture_exception(e, context={"function": "nmi-webhook-handler"})
        return json_response(500, {"error": "Internal server error", "details": str(e)})
    return json_response(200, {"success": True})
