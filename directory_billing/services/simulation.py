"""
Simulation mode for the payment flow.

Produces success bodies with the same shape as a real gateway approval so the
checkout can be demoed (test cards), run without credentials, or kept
unblocked when the gateway is unreachable.
"""

import logging
import random
import string
import time
from datetime import datetime, timezone
from typing import Optional

from directory_billing.config import PaymentConfig
from directory_billing.schemas.payment import (
    CardSummary,
    PaymentMethod,
    PaymentMethodDetails,
    PaymentRequest,
    PaymentResponse,
)

logger = logging.getLogger(__name__)

# Always simulated, even with live credentials configured.
TEST_CARD_NUMBERS = frozenset({
    "4000000000000002",  # Visa
    "5555555555554444",  # Mastercard
    "378282246310005",  # Amex
    "4000000000000127",  # Visa, simulated as an approval like the others
})

REASON_NO_SECURITY_KEY = "No security key configured"
REASON_TEST_CARD = "Test card"

_BASE36 = string.digits + string.ascii_lowercase


def generate_reference(prefix: str) -> str:
    """Correlation id such as ``sim_1718000000000_k3j9x0ab``. Not a security token."""
    suffix = "".join(random.choices(_BASE36, k=8))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def is_test_card(card_number: str) -> bool:
    return "".join(card_number.split()) in TEST_CARD_NUMBERS


def simulation_reason(payment_method: PaymentMethod, config: PaymentConfig) -> Optional[str]:
    """Why this charge should be simulated, or None to hit the real gateway."""
    if not config.has_credentials:
        logger.info("No security key configured, using simulation mode")
        return REASON_NO_SECURITY_KEY
    if is_test_card(payment_method.card_number):
        logger.info(f"Test card {payment_method.masked_card_number}, using simulation mode")
        return REASON_TEST_CARD
    return None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_simulated_payment(
    request: PaymentRequest,
    amount_cents: float,
    reason: str,
    environment: str,
) -> dict:
    """Approved-looking body for a charge that never reached the gateway."""
    logger.warning(f"Creating simulated payment response. Reason: {reason}")
    payment_method = request.payment_method

    response = PaymentResponse(
        success=True,
        transaction_id=generate_reference("sim"),
        amount=amount_cents / 100,
        currency=request.currency_code,
        description=request.description,
        customer_email=request.customer_email,
        payment_date=_now_iso(),
        status="approved",
        payment_method_details=PaymentMethodDetails(
            type="card",
            card=CardSummary(
                brand="visa",
                last4=payment_method.last4 or "1111",
                exp_month=payment_method.exp_month or "12",
                exp_year=payment_method.exp_year or "2030",
            ),
        ),
        simulated=True,
        simulation_reason=reason,
        environment=environment,
    )
    return response.model_dump(exclude_unset=True)


def build_free_payment(request: PaymentRequest) -> dict:
    """Body for a zero-amount checkout. Nothing is charged or stored."""
    response = PaymentResponse(
        success=True,
        transaction_id=generate_reference("free"),
        amount=0,
        currency=request.currency_code,
        description=request.description,
        customer_email=request.customer_email,
        payment_date=_now_iso(),
        status="approved",
        payment_method_details=PaymentMethodDetails(type="free", card=None),
        isFreeTransaction=True,
    )
    return response.model_dump(exclude_unset=True)
