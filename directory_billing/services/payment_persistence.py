"""
Bookkeeping writes that follow gateway activity: checkout charges, renewals
reported by webhook, cancellations, card updates and plan changes.

The gateway has already acted when these run, so nothing here may turn
the API response into a failure. Each write is committed (or rolled back) on
its own: a failed subscription upsert does not stop the business update or
the history insert. There is no transaction spanning the three writes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from directory_billing.models.business import Business
from directory_billing.models.payment_history import PaymentHistory
from directory_billing.models.subscription import Subscription
from directory_billing.models.subscription_plan import SubscriptionPlan
from directory_billing.services.nmi_response import GatewayResult

logger = logging.getLogger(__name__)

BILLING_PERIOD = timedelta(days=365)
PAYMENT_PROVIDER = "nmi"
NO_TRANSACTION_ID = "no_transaction_id"


@dataclass
class PersistenceReport:
    """Which of the bookkeeping writes went through."""

    business_id: Optional[str] = None
    lookup_failed: bool = False
    subscription_saved: bool = False
    business_updated: bool = False
    history_saved: bool = False

    @property
    def business_found(self) -> bool:
        return self.business_id is not None

    @property
    def complete(self) -> bool:
        return self.subscription_saved and self.business_updated and self.history_saved


async def _attempt(db: AsyncSession, label: str, write: Callable[[], Awaitable[None]]) -> bool:
    """Run one write and commit it; roll back and log on any failure."""
    try:
        await write()
        await db.commit()
        return True
    except Exception as e:
        await db.rollback()
        logger.error(f"Error {label}: {e}")
        return False


class PaymentRecorder:
    """Persists subscription, business billing state and payment history."""

    async def find_business_id(self, db: AsyncSession, customer_email: Optional[str]) -> Optional[str]:
        if not customer_email:
            return None
        result = await db.execute(
            select(Business.id).where(Business.email == customer_email).limit(1)
        )
        return result.scalar_one_or_none()

    async def find_plan_id(self, db: AsyncSession, plan_name: Optional[str]) -> Optional[str]:
        if not plan_name:
            return None
        result = await db.execute(
            select(SubscriptionPlan.id).where(SubscriptionPlan.name == plan_name).limit(1)
        )
        plan_id = result.scalar_one_or_none()
        if plan_id is None:
            logger.warning(f"No subscription plan named {plan_name!r}; storing subscription without plan_id")
        return plan_id

    async def upsert_subscription(
        self,
        db: AsyncSession,
        business_id: str,
        plan_id: Optional[str],
        result: GatewayResult,
        now: datetime,
    ) -> None:
        """Create or overwrite the single subscription row of a business."""
        existing = await db.execute(
            select(Subscription).where(Subscription.business_id == business_id)
        )
        subscription = existing.scalar_one_or_none()
        if subscription is None:
            subscription = Subscription(business_id=business_id)
            db.add(subscription)

        subscription.plan_id = plan_id
        subscription.status = "active"
        subscription.payment_status = "paid"
        subscription.current_period_start = now
        subscription.current_period_end = now + BILLING_PERIOD
        subscription.payment_provider = PAYMENT_PROVIDER
        subscription.nmi_subscription_id = result.subscription_id
        subscription.nmi_customer_vault_id = result.customer_vault_id
        await db.flush()

    async def update_business_billing(
        self,
        db: AsyncSession,
        business_id: str,
        plan_name: Optional[str],
        last4: str,
        now: datetime,
    ) -> None:
        """Billing columns only; the vault id never goes on the business row."""
        business = await db.get(Business, business_id)
        if business is None:
            raise LookupError(f"business {business_id} disappeared before update")
        business.subscription_status = "active"
        if plan_name:
            business.plan_name = plan_name
        business.next_billing_date = now + BILLING_PERIOD
        business.last_payment_date = now
        business.payment_method_last_four = last4
        await db.flush()

    async def add_history(
        self,
        db: AsyncSession,
        business_id: str,
        transaction_id: Optional[str],
        amount: float,
        entry_type: str,
        response_text: Optional[str],
        status: str = "approved",
    ) -> None:
        db.add(PaymentHistory(
            business_id=business_id,
            nmi_transaction_id=transaction_id,
            amount=amount,
            status=status,
            type=entry_type,
            response_text=response_text,
        ))
        await db.flush()

    async def record_subscription_payment(
        self,
        db: AsyncSession,
        customer_email: Optional[str],
        plan_name: Optional[str],
        result: GatewayResult,
        amount_cents: float,
        last4: str,
        raw_response: str,
    ) -> PersistenceReport:
        """Record a successful recurring enrollment. Never raises."""
        report = PersistenceReport()
        try:
            business_id = await self.find_business_id(db, customer_email)
        except Exception as e:
            await db.rollback()
            logger.error(f"Error finding business for {customer_email}: {e}")
            report.lookup_failed = True
            return report

        if business_id is None:
            logger.error(
                f"No business found for {customer_email}; transaction "
                f"{result.transaction_id} charged but not recorded"
            )
            return report

        try:
            plan_id = await self.find_plan_id(db, plan_name)
        except Exception as e:
            await db.rollback()
            logger.error(f"Error finding plan {plan_name!r}, storing subscription without plan_id: {e}")
            plan_id = None

        report.business_id = business_id
        now = datetime.now(timezone.utc)

        report.subscription_saved = await _attempt(
            db, f"upserting subscription for business {business_id}",
            lambda: self.upsert_subscription(db, business_id, plan_id, result, now),
        )
        report.business_updated = await _attempt(
            db, f"updating business {business_id} with subscription details",
            lambda: self.update_business_billing(db, business_id, plan_name, last4, now),
        )
        report.history_saved = await _attempt(
            db, f"logging payment history for business {business_id}",
            lambda: self.add_history(
                db, business_id, result.transaction_id, amount_cents / 100,
                "initial_subscription", raw_response,
            ),
        )

        if report.complete:
            logger.info(f"Recorded subscription payment {result.transaction_id} for business {business_id}")
        else:
            logger.warning(f"Partially recorded payment {result.transaction_id}: {report}")
        return report

    async def record_cancellation(
        self,
        db: AsyncSession,
        business_id: str,
        raw_response: Optional[str],
    ) -> PersistenceReport:
        """Mark a business and its subscription as cancelled. Never raises."""
        report = PersistenceReport(business_id=business_id)

        async def cancel_subscription_row() -> None:
            existing = await db.execute(
                select(Subscription).where(Subscription.business_id == business_id)
            )
            subscription = existing.scalar_one_or_none()
            if subscription is not None:
                subscription.status = "canceled"
                await db.flush()

        async def mark_business_pending() -> None:
            business = await db.get(Business, business_id)
            if business is None:
                raise LookupError(f"business {business_id} disappeared before update")
            business.subscription_status = "pending"
            await db.flush()

        report.subscription_saved = await _attempt(
            db, f"cancelling subscription row for business {business_id}", cancel_subscription_row,
        )
        report.business_updated = await _attempt(
            db, f"updating business {business_id} subscription status", mark_business_pending,
        )
        report.history_saved = await _attempt(
            db, f"logging subscription cancellation history for business {business_id}",
            lambda: self.add_history(
                db, business_id, NO_TRANSACTION_ID, 0, "subscription_cancellation", raw_response,
            ),
        )
        return report

    # =========================================================================
    # Account maintenance
    # =========================================================================

    async def find_subscription(self, db: AsyncSession, business_id: str) -> Optional[Subscription]:
        result = await db.execute(
            select(Subscription).where(Subscription.business_id == business_id)
        )
        return result.scalar_one_or_none()

    async def find_subscription_by_gateway_id(
        self, db: AsyncSession, nmi_subscription_id: Optional[str]
    ) -> Optional[Subscription]:
        if not nmi_subscription_id:
            return None
        result = await db.execute(
            select(Subscription).where(Subscription.nmi_subscription_id == nmi_subscription_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def ensure_subscription(self, db: AsyncSession, business_id: str) -> Subscription:
        """Existing subscription row, or a new unpaid one. Raises on write failure."""
        subscription = await self.find_subscription(db, business_id)
        if subscription is not None:
            return subscription

        now = datetime.now(timezone.utc)
        subscription = Subscription(
            business_id=business_id,
            status="active",
            payment_status="pending",
            current_period_start=now,
            current_period_end=now + BILLING_PERIOD,
            payment_provider=PAYMENT_PROVIDER,
        )
        db.add(subscription)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(f"Created subscription record for business {business_id}")
        return subscription

    async def save_customer_vault_id(self, db: AsyncSession, subscription: Subscription, vault_id: str) -> bool:
        async def write() -> None:
            subscription.nmi_customer_vault_id = vault_id
            await db.flush()

        return await _attempt(db, f"storing customer vault id on subscription {subscription.id}", write)

    async def record_recurring_payment(
        self,
        db: AsyncSession,
        business_id: str,
        transaction_id: Optional[str],
        amount: float,
        approved: bool,
        response_text: Optional[str],
    ) -> PersistenceReport:
        """Gateway-initiated renewal charge. Never raises."""
        report = PersistenceReport(business_id=business_id)
        now = datetime.now(timezone.utc)

        async def update_subscription_row() -> None:
            subscription = await self.find_subscription(db, business_id)
            if subscription is None:
                return
            if approved:
                subscription.payment_status = "paid"
                subscription.current_period_start = now
                subscription.current_period_end = now + BILLING_PERIOD
            else:
                subscription.payment_status = "failed"
            await db.flush()

        async def update_business() -> None:
            business = await db.get(Business, business_id)
            if business is None:
                raise LookupError(f"business {business_id} disappeared before update")
            if approved:
                business.subscription_status = "active"
                business.last_payment_date = now
                business.next_billing_date = now + BILLING_PERIOD
            else:
                business.subscription_status = "pending"
            await db.flush()

        report.subscription_saved = await _attempt(
            db, f"updating subscription after renewal for business {business_id}", update_subscription_row,
        )
        report.business_updated = await _attempt(
            db, f"updating business {business_id} after renewal", update_business,
        )
        report.history_saved = await _attempt(
            db, f"logging renewal history for business {business_id}",
            lambda: self.add_history(
                db, business_id, transaction_id or NO_TRANSACTION_ID, amount,
                "recurring_payment", response_text,
                status="approved" if approved else "failed",
            ),
        )
        return report

    async def record_payment_method_update(
        self,
        db: AsyncSession,
        business_id: str,
        last4: str,
        transaction_id: Optional[str],
        raw_response: Optional[str],
    ) -> PersistenceReport:
        """New card stored in the vault. Never raises."""
        report = PersistenceReport(business_id=business_id)

        async def update_business() -> None:
            business = await db.get(Business, business_id)
            if business is None:
                raise LookupError(f"business {business_id} disappeared before update")
            business.payment_method_last_four = last4
            await db.flush()

        report.business_updated = await _attempt(
            db, f"updating business {business_id} payment method details", update_business,
        )
        report.history_saved = await _attempt(
            db, f"logging payment method update history for business {business_id}",
            lambda: self.add_history(
                db, business_id, transaction_id or NO_TRANSACTION_ID, 0,
                "payment_method_update", raw_response,
            ),
        )
        return report

    async def record_plan_change(
        self,
        db: AsyncSession,
        business_id: str,
        new_plan: str,
        amount: float,
        transaction_id: Optional[str],
        entry_type: str,
        response_text: str,
    ) -> PersistenceReport:
        """Move a business to another plan. Never raises."""
        report = PersistenceReport(business_id=business_id)
        now = datetime.now(timezone.utc)

        async def update_business() -> None:
            business = await db.get(Business, business_id)
            if business is None:
                raise LookupError(f"business {business_id} disappeared before update")
            business.plan_name = new_plan
            business.subscription_status = "active"
            business.last_payment_date = now
            business.next_billing_date = now + BILLING_PERIOD
            await db.flush()

        report.business_updated = await _attempt(
            db, f"updating business {business_id} plan", update_business,
        )
        report.history_saved = await _attempt(
            db, f"logging {entry_type} for business {business_id}",
            lambda: self.add_history(
                db, business_id, transaction_id or NO_TRANSACTION_ID, amount, entry_type, response_text,
            ),
        )
        return report
