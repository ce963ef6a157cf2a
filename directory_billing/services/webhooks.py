"""
Gateway webhook handling.

The gateway posts form-encoded events for activity it initiates on its own:
annual renewals (approved or declined) and cancellations made outside this
service. Each event is matched to a business through the stored gateway
subscription id and recorded; unknown events and unmatched subscriptions are
logged and acknowledged so the gateway does not retry them.
"""

import hashlib
import hmac
import logging
import math
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl

from sqlalchemy.ext.asyncio import AsyncSession

from directory_billing.config import PaymentConfig
from directory_billing.services.payment_persistence import PaymentRecorder

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-NMI-Signature"

RECURRING_PAYMENT_SUCCESS = "recurring_payment_success"
RECURRING_PAYMENT_FAILED = "recurring_payment_failed"
SUBSCRIPTION_CANCELLED = "subscription_cancelled"
SUBSCRIPTION_UPDATED = "subscription_updated"


@dataclass(frozen=True)
class WebhookEvent:
    event_type: str
    subscription_id: Optional[str]
    transaction_id: Optional[str]
    amount: float
    status: Optional[str]
    response_text: Optional[str]


def _parse_amount(value: Optional[str]) -> float:
    """Dollar amount from the event; anything unparseable or non-finite is 0."""
    try:
        amount = float(value or 0)
    except ValueError:
        return 0.0
    return amount if math.isfinite(amount) else 0.0


def parse_webhook_event(body: str) -> WebhookEvent:
    fields = {key: value for key, value in parse_qsl(body, keep_blank_values=True)}
    return WebhookEvent(
        event_type=fields.get("event_type", ""),
        subscription_id=fields.get("subscription_id") or None,
        transaction_id=fields.get("transaction_id") or None,
        amount=_parse_amount(fields.get("amount")),
        status=fields.get("status") or None,
        response_text=fields.get("response_text") or None,
    )


def sign_payload(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class WebhookHandler:
    """Verifies and applies gateway webhook events."""

    def __init__(self, config: PaymentConfig, recorder: Optional[PaymentRecorder] = None):
        self.config = config
        self.recorder = recorder or PaymentRecorder()

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """HMAC-SHA256 of the raw body, hex encoded. Accepts everything when no secret is set."""
        if not self.config.webhook_secret:
            logger.warning("NMI_WEBHOOK_SECRET not configured, skipping webhook signature verification")
            return True
        if not signature:
            return False
        return hmac.compare_digest(sign_payload(self.config.webhook_secret, payload), signature)

    async def handle(self, db: AsyncSession, body: str) -> WebhookEvent:
        event = parse_webhook_event(body)
        logger.info(
            f"Webhook event {event.event_type!r}: subscription={event.subscription_id} "
            f"transaction={event.transaction_id} amount={event.amount}"
        )

        if event.event_type not in (
            RECURRING_PAYMENT_SUCCESS,
            RECURRING_PAYMENT_FAILED,
            SUBSCRIPTION_CANCELLED,
            SUBSCRIPTION_UPDATED,
        ):
            logger.info(f"Unhandled webhook event type: {event.event_type!r}")
            return event

        try:
            subscription = await self.recorder.find_subscription_by_gateway_id(db, event.subscription_id)
        except Exception as e:
            await db.rollback()
            logger.error(f"Error finding business for subscription {event.subscription_id}: {e}")
            return event

        if subscription is None:
            logger.error(f"No business found with subscription ID: {event.subscription_id}")
            return event

        business_id = subscription.business_id
        if event.event_type == RECURRING_PAYMENT_SUCCESS:
            await self.recorder.record_recurring_payment(
                db, business_id, event.transaction_id, event.amount, approved=True,
                response_text=event.response_text or "Recurring payment successful",
            )
        elif event.event_type == RECURRING_PAYMENT_FAILED:
            await self.recorder.record_recurring_payment(
                db, business_id, event.transaction_id, event.amount, approved=False,
                response_text=event.response_text,
            )
        elif event.event_type == SUBSCRIPTION_CANCELLED:
            await self.recorder.record_cancellation(db, business_id, body)
        else:
            logger.info(f"Acknowledged subscription update for business {business_id}")
            return event

        logger.info(f"Processed {event.event_type} for business {business_id}")
        return event
