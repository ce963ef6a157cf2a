"""
Payment orchestration for listing checkouts.

Decides between the free, simulated and real gateway paths, drives the
gateway client, turns declines into user-facing errors and hands approved
recurring enrollments to the PaymentRecorder.

Path selection:
- effective amount 0          -> free approval, nothing charged or stored
- no gateway credential       -> simulated approval
- known test card             -> simulated approval (even with credentials)
- otherwise                   -> real gateway call; a network failure falls
                                 back to simulation unless disabled
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from directory_billing.config import BusinessMissPolicy, PaymentConfig
from directory_billing.core.sentry import capture_message
from directory_billing.exceptions import (
    BusinessReconciliationError,
    ErrorCode,
    GatewayUnavailableError,
    GatewayUnavailableHTTPError,
    PaymentDeclinedError,
    PaymentValidationError,
)
from directory_billing.schemas.payment import (
    CardSummary,
    PaymentMethodDetails,
    PaymentRequest,
    PaymentResponse,
)
from directory_billing.services.discounts import apply_discount_code
from directory_billing.services.gateway_errors import translate_gateway_error
from directory_billing.services.nmi_gateway import NMIGatewayClient
from directory_billing.services.payment_persistence import PaymentRecorder
from directory_billing.services.simulation import (
    build_free_payment,
    build_simulated_payment,
    simulation_reason,
)

logger = logging.getLogger(__name__)


class PaymentProcessor:
    """Entry point for the process-payment function.

    Built once at startup from a PaymentConfig; holds no per-request state.
    """

    def __init__(
        self,
        config: PaymentConfig,
        gateway: Optional[NMIGatewayClient] = None,
        recorder: Optional[PaymentRecorder] = None,
    ):
        self.config = config
        self.gateway = gateway or NMIGatewayClient(config)
        self.recorder = recorder or PaymentRecorder()

    @classmethod
    def with_transport(cls, config: PaymentConfig, transport: httpx.AsyncBaseTransport) -> "PaymentProcessor":
        return cls(config, gateway=NMIGatewayClient(config, transport=transport))

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, request: PaymentRequest) -> float:
        """Return the effective amount in cents or raise PaymentValidationError."""
        amount = request.process_amount
        amount_invalid = amount is None or not math.isfinite(amount) or amount < 0
        payment_method_missing = not amount_invalid and amount > 0 and request.payment_method is None

        if amount_invalid or payment_method_missing:
            logger.error(
                f"Validation failed: amount_invalid={amount_invalid} "
                f"payment_method_missing={payment_method_missing}"
            )
            raise PaymentValidationError()

        minimum = self.config.recurring_minimum_cents
        if amount > 0 and request.is_recurring and amount < minimum:
            logger.error(f"Recurring amount {amount} below minimum {minimum}")
            raise PaymentValidationError(
                error=f"Recurring payments must be at least ${minimum / 100:.2f}",
                code=ErrorCode.AMOUNT_BELOW_MINIMUM.value,
            )
        return amount

    def log_request(self, request: PaymentRequest) -> None:
        payment_method = request.payment_method
        if payment_method is None:
            details = "No payment method provided"
        else:
            details = {
                "card_number": payment_method.masked_card_number,
                "expiry_date": payment_method.expiry_date or "Missing",
                "cvv": "***" if payment_method.cvv else "Missing",
                "cardholder_name": "Present (masked)" if payment_method.cardholder_name else "Missing",
            }
        logger.info(
            f"Payment request: amount={request.amount} final_amount={request.final_amount} "
            f"recurring={request.is_recurring} plan={request.plan_name!r} "
            f"email={request.customer_email} payment_method={details}"
        )

    # =========================================================================
    # Payment flow
    # =========================================================================

    async def apply_discount(self, db: AsyncSession, discount_code_id: str) -> None:
        """Redeem the discount code; failures are logged and never block payment."""
        try:
            await apply_discount_code(db, discount_code_id)
        except Exception as e:
            await db.rollback()
            logger.error(f"Error applying discount code {discount_code_id}: {e}")

    async def simulate(self, request: PaymentRequest, amount_cents: float, reason: str) -> dict:
        if self.config.simulation_delay_seconds > 0:
            await asyncio.sleep(self.config.simulation_delay_seconds)
        return build_simulated_payment(request, amount_cents, reason, self.config.environment)

    async def process_payment(self, db: AsyncSession, request: PaymentRequest) -> dict:
        """Run one checkout and return the success body.

        Raises PaymentAPIException subclasses for every non-200 outcome.
        """
        self.log_request(request)
        amount_cents = self.validate(request)

        if request.discount_code_id:
            await self.apply_discount(db, request.discount_code_id)

        if amount_cents == 0:
            logger.info("Zero amount transaction - skipping payment processing")
            return build_free_payment(request)

        reason = simulation_reason(request.payment_method, self.config)
        if reason:
            return await self.simulate(request, amount_cents, reason)

        try:
            result, raw_response = await self.gateway.charge(request, amount_cents)
        except GatewayUnavailableError as e:
            return await self.handle_gateway_outage(request, amount_cents, e)

        logger.info(f"Parsed payment gateway response: {result}")

        if not result.success:
            logger.error(
                f"Payment failed with response code {result.response_code}: {result.response_text}"
            )
            raise PaymentDeclinedError(
                error=translate_gateway_error(result.response_code, result.response_text),
                code=result.response_code,
                details=result.response_text,
            )

        payment_method = request.payment_method
        last4 = payment_method.last4

        if request.is_recurring and result.subscription_id:
            report = await self.recorder.record_subscription_payment(
                db,
                customer_email=request.customer_email,
                plan_name=request.plan_name,
                result=result,
                amount_cents=amount_cents,
                last4=last4,
                raw_response=raw_response,
            )
            if (
                not report.business_found
                and not report.lookup_failed
                and self.config.business_miss_policy == BusinessMissPolicy.FAIL
            ):
                capture_message(
                    "Charged payment has no matching business",
                    level="error",
                    context={"transaction_id": result.transaction_id},
                )
                raise BusinessReconciliationError(result.transaction_id, request.customer_email)

        response = PaymentResponse(
            success=True,
            transaction_id=result.transaction_id or "",
            subscription_id=result.subscription_id,
            customer_vault_id=result.customer_vault_id,
            amount=amount_cents / 100,
            currency=request.currency_code,
            description=request.description,
            customer_email=request.customer_email,
            payment_date=datetime.now(timezone.utc).isoformat(),
            status="approved",
            payment_method_details=PaymentMethodDetails(
                type="card",
                card=CardSummary(
                    last4=last4,
                    exp_month=payment_method.exp_month,
                    exp_year=payment_method.exp_year,
                ),
            ),
            gateway_response=result.to_dict(),
            environment=self.config.environment,
        )
        return response.model_dump(exclude_unset=True)

    async def handle_gateway_outage(
        self,
        request: PaymentRequest,
        amount_cents: float,
        error: GatewayUnavailableError,
    ) -> dict:
        """Network failure reaching the gateway: degrade to simulation or fail with 502."""
        capture_message(
            "Payment gateway unreachable",
            level="error",
            context={
                "customer_email": request.customer_email,
                "amount_cents": amount_cents,
                "fallback_to_simulation": self.config.simulate_on_network_error,
            },
        )
        if not self.config.simulate_on_network_error:
            raise GatewayUnavailableHTTPError(str(error))

        logger.error(
            f"Falling back to simulation mode due to network error for {request.customer_email}; "
            "charge must be reconciled manually"
        )
        return await self.simulate(request, amount_cents, f"Network error: {error}")
