"""
Account-side subscription operations.

Handles:
- Cancelling gateway-side recurring billing
- Replacing the card stored in the customer vault
- Moving a business to another plan (upgrade charges the difference against
  the vault, downgrade only records the change)

Without a gateway credential, or for a test card, the gateway call is skipped
and a simulated approval is recorded instead.
"""

import logging
import math
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from directory_billing.config import PaymentConfig
from directory_billing.exceptions import (
    BusinessNotFoundError,
    ErrorCode,
    GatewayUnavailableError,
    GatewayUnavailableHTTPError,
    PaymentAPIException,
    PaymentDeclinedError,
    PaymentMethodRequiredError,
    PaymentValidationError,
)
from directory_billing.models.business import Business
from directory_billing.models.subscription_plan import SubscriptionPlan
from directory_billing.schemas.payment import PaymentMethod, PlanChangeRequest
from directory_billing.services.gateway_errors import translate_gateway_error
from directory_billing.services.nmi_gateway import NMIGatewayClient
from directory_billing.services.nmi_response import GatewayResult, parse_gateway_response
from directory_billing.services.payment_persistence import PaymentRecorder
from directory_billing.services.simulation import generate_reference, simulation_reason

logger = logging.getLogger(__name__)

MISSING_PAYMENT_INFORMATION = "Missing required payment information"


def simulated_gateway_reply(text: str, **fields: str) -> str:
    """Raw approval text in the gateway's own format, for the history row."""
    parts = ["response=1", f"responsetext={text}", "response_code=100"]
    parts.extend(f"{key}={value}" for key, value in fields.items())
    return "&".join(parts)


class SubscriptionService:
    """Cancellation, card replacement and plan changes for existing businesses."""

    def __init__(
        self,
        config: PaymentConfig,
        gateway: Optional[NMIGatewayClient] = None,
        recorder: Optional[PaymentRecorder] = None,
    ):
        self.config = config
        self.gateway = gateway or NMIGatewayClient(config)
        self.recorder = recorder or PaymentRecorder()

    async def get_business(self, db: AsyncSession, business_id: str) -> Business:
        business = await db.get(Business, business_id)
        if business is None:
            raise BusinessNotFoundError()
        return business

    def check_result(self, result: GatewayResult, fallback: str) -> None:
        """Raise the translated 400 for anything but an approval."""
        if result.success:
            return
        logger.error(f"Gateway refused request with code {result.response_code}: {result.response_text}")
        raise PaymentDeclinedError(
            error=translate_gateway_error(result.response_code, result.response_text or fallback),
            code=result.response_code,
            details=result.response_text,
        )

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def cancel_subscription(self, db: AsyncSession, business_id: Optional[str]) -> dict:
        """Stop gateway-side billing and mark the business as pending."""
        if not business_id:
            raise PaymentValidationError(error="Missing business ID")

        await self.get_business(db, business_id)
        subscription = await self.recorder.find_subscription(db, business_id)
        nmi_subscription_id = subscription.nmi_subscription_id if subscription else None
        if not nmi_subscription_id:
            logger.warning(f"No gateway subscription id found for business {business_id}")
            raise PaymentAPIException(
                status_code=400,
                error="No active subscription found for this business",
                code=ErrorCode.NO_ACTIVE_SUBSCRIPTION.value,
            )

        if not self.config.has_credentials:
            logger.warning(f"No security key configured, simulating cancellation of {nmi_subscription_id}")
            raw_response = simulated_gateway_reply("Simulated cancellation")
        else:
            try:
                result, raw_response = await self.gateway.cancel_subscription(nmi_subscription_id)
            except GatewayUnavailableError as e:
                raise GatewayUnavailableHTTPError(str(e)) from e

            if not result.success:
                raise PaymentAPIException(
                    status_code=400,
                    error=result.response_text or "Failed to cancel subscription",
                    code=result.response_code or ErrorCode.UNKNOWN_GATEWAY_ERROR.value,
                )

        await self.recorder.record_cancellation(db, business_id, raw_response)
        logger.info(f"Cancelled subscription {nmi_subscription_id} for business {business_id}")
        return {"success": True, "message": "Subscription cancelled successfully"}

    # =========================================================================
    # Payment method
    # =========================================================================

    async def update_payment_method(
        self,
        db: AsyncSession,
        business_id: Optional[str],
        payment_method: Optional[PaymentMethod],
    ) -> dict:
        """Store a new card for future renewals.

        A business without a vault entry gets one created with the new card;
        otherwise the card on the existing entry is replaced.
        """
        if (
            not business_id
            or payment_method is None
            or not payment_method.card_number
            or not payment_method.expiry_date
            or not payment_method.cvv
        ):
            raise PaymentValidationError(error=MISSING_PAYMENT_INFORMATION)

        logger.info(
            f"Updating payment method for business {business_id}: "
            f"card={payment_method.masked_card_number} expiry={payment_method.expiry_date}"
        )
        business = await self.get_business(db, business_id)
        subscription = await self.recorder.find_subscription(db, business_id)
        if subscription is None:
            raise PaymentAPIException(
                status_code=400,
                error="No active subscription found for this business",
                code=ErrorCode.NO_ACTIVE_SUBSCRIPTION.value,
            )

        vault_id = subscription.nmi_customer_vault_id
        reason = simulation_reason(payment_method, self.config)
        if reason:
            logger.warning(f"Simulating payment method update for business {business_id}: {reason}")
            vault_id = vault_id or generate_reference("vault")
            raw_response = simulated_gateway_reply(
                "Simulated payment method update", customer_vault_id=vault_id,
            )
            result = parse_gateway_response(raw_response)
        else:
            try:
                result, raw_response = await self.gateway.store_card(
                    payment_method, customer_vault_id=vault_id, email=business.email,
                )
            except GatewayUnavailableError as e:
                raise GatewayUnavailableHTTPError(str(e)) from e
            self.check_result(result, "Failed to update payment method")

        new_vault_id = result.customer_vault_id or vault_id
        if new_vault_id and new_vault_id != subscription.nmi_customer_vault_id:
            saved = await self.recorder.save_customer_vault_id(db, subscription, new_vault_id)
            if not saved:
                raise PaymentAPIException(status_code=500, error="Failed to update subscription record")
            logger.info(f"Subscription {subscription.id} now uses customer vault {new_vault_id}")

        last4 = payment_method.last4
        await self.recorder.record_payment_method_update(
            db, business_id, last4, result.transaction_id, raw_response,
        )
        return {"success": True, "message": "Payment method updated successfully", "last4": last4}

    # =========================================================================
    # Plan changes
    # =========================================================================

    async def current_plan_price_cents(self, db: AsyncSession, plan_name: Optional[str]) -> float:
        """Catalogue price of the plan a business is on; 0 when unknown."""
        if not plan_name:
            return 0
        result = await db.execute(
            select(SubscriptionPlan.price).where(SubscriptionPlan.name == plan_name).limit(1)
        )
        price = result.scalar_one_or_none()
        return round(float(price) * 100) if price is not None else 0

    async def change_plan(self, db: AsyncSession, request: PlanChangeRequest) -> dict:
        """Upgrade (charge the difference) or downgrade (record only) a business plan."""
        plan_price = request.plan_price
        if (
            not request.business_id
            or not request.new_plan
            or plan_price is None
            or not math.isfinite(plan_price)
            or plan_price <= 0
        ):
            raise PaymentValidationError(error="Missing required fields: businessId, newPlan, planPrice")

        business = await self.get_business(db, request.business_id)
        current_plan = request.current_plan or business.plan_name
        change_amount = plan_price - await self.current_plan_price_cents(db, business.plan_name)
        if change_amount == 0:
            raise PaymentValidationError(
                error="New plan must be different from current plan",
                code=ErrorCode.SAME_PLAN.value,
            )

        try:
            subscription = await self.recorder.ensure_subscription(db, business.id)
        except Exception as e:
            logger.error(f"Error creating subscription for business {business.id}: {e}")
            raise PaymentAPIException(status_code=500, error="Failed to create subscription record") from e

        vault_id = subscription.nmi_customer_vault_id
        if change_amount < 0:
            if not vault_id:
                raise PaymentMethodRequiredError(
                    error="Payment method required for plan changes",
                    message=(
                        "Please update your payment method before changing your plan to ensure "
                        "future billing continues without interruption."
                    ),
                )
            await self.recorder.record_plan_change(
                db, business.id, request.new_plan, 0, None, "plan_downgrade",
                f"Plan downgraded from {current_plan} to {request.new_plan}",
            )
            logger.info(f"Business {business.id} downgraded from {current_plan} to {request.new_plan}")
            return {"success": True, "message": "Plan downgraded successfully", "is_downgrade": True}

        if not vault_id:
            raise PaymentMethodRequiredError(
                error="No payment method on file. Please update your payment method first.",
                message="Please update your payment method before upgrading your plan.",
            )

        charge_cents = change_amount
        if request.discounted_amount is not None and 0 <= request.discounted_amount < change_amount:
            charge_cents = request.discounted_amount

        description = f"Plan upgrade from {current_plan} to {request.new_plan}"
        simulated = not self.config.has_credentials
        if simulated:
            logger.warning(f"No security key configured, simulating upgrade charge for business {business.id}")
            transaction_id = generate_reference("sim")
        else:
            try:
                result, _ = await self.gateway.charge_vault(vault_id, charge_cents, description)
            except GatewayUnavailableError as e:
                raise GatewayUnavailableHTTPError(str(e)) from e
            self.check_result(result, "Plan upgrade payment failed")
            transaction_id = result.transaction_id

        await self.recorder.record_plan_change(
            db, business.id, request.new_plan, charge_cents / 100, transaction_id, "plan_upgrade",
            f"Plan upgraded from {current_plan} to {request.new_plan}",
        )
        logger.info(f"Business {business.id} upgraded to {request.new_plan}, charged {charge_cents / 100:.2f}")

        body = {
            "success": True,
            "message": "Plan upgraded successfully",
            "is_downgrade": False,
            "transaction_id": transaction_id,
            "amount": charge_cents / 100,
            "status": "approved",
        }
        if simulated:
            body["simulated"] = True
        return body
