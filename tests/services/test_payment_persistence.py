"""
Tests for the bookkeeping writes after a successful charge.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from directory_billing.models import Business, PaymentHistory, Subscription, SubscriptionPlan
from directory_billing.services.nmi_response import parse_gateway_response
from directory_billing.services.payment_persistence import PaymentRecorder
from tests.factories import SubscriptionPlanFactory

RAW = "response=1&transactionid=T1&subscription_id=S1&customer_vault_id=V1"


async def count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def record(db, raw=RAW, email="owner@example.com", plan_name="Starter Plan", amount_cents=1200):
    return await PaymentRecorder().record_subscription_payment(
        db,
        customer_email=email,
        plan_name=plan_name,
        result=parse_gateway_response(raw),
        amount_cents=amount_cents,
        last4="1111",
        raw_response=raw,
    )


class TestRecordSubscriptionPayment:

    @pytest.mark.asyncio
    async def test_writes_all_three_records(self, test_db, business):
        report = await record(test_db)

        assert report.business_id == business.id
        assert report.complete is True

        subscription = (await test_db.execute(select(Subscription))).scalar_one()
        assert subscription.business_id == business.id
        assert subscription.status == "active"
        assert subscription.payment_status == "paid"
        assert subscription.payment_provider == "nmi"
        assert subscription.nmi_subscription_id == "S1"
        assert subscription.nmi_customer_vault_id == "V1"
        assert subscription.plan_id is None
        assert subscription.current_period_end - subscription.current_period_start == timedelta(days=365)

        history = (await test_db.execute(select(PaymentHistory))).scalar_one()
        assert history.business_id == business.id
        assert history.nmi_transaction_id == "T1"
        assert float(history.amount) == 12.0
        assert history.status == "approved"
        assert history.type == "initial_subscription"
        assert history.response_text == RAW

    @pytest.mark.asyncio
    async def test_business_billing_fields(self, test_db, business):
        await record(test_db)
        await test_db.refresh(business)

        assert business.subscription_status == "active"
        assert business.plan_name == "Starter Plan"
        assert business.payment_method_last_four == "1111"
        assert business.last_payment_date is not None
        assert business.next_billing_date - business.last_payment_date == timedelta(days=365)

    @pytest.mark.asyncio
    async def test_vault_id_never_on_business(self, test_db, business):
        await record(test_db)

        assert not hasattr(Business, "nmi_customer_vault_id")
        assert "nmi_customer_vault_id" not in Business.__table__.columns

    @pytest.mark.asyncio
    async def test_plan_resolved_by_name(self, test_db, business):
        plan = SubscriptionPlan(**SubscriptionPlanFactory(name="Enhanced Plan"))
        test_db.add(plan)
        await test_db.commit()

        await record(test_db, plan_name="Enhanced Plan")

        subscription = (await test_db.execute(select(Subscription))).scalar_one()
        assert subscription.plan_id == plan.id

    @pytest.mark.asyncio
    async def test_upsert_keeps_one_row_per_business(self, test_db, business):
        """Repeated charges overwrite the subscription and append history."""
        await record(test_db)
        await record(test_db, raw="response=1&transactionid=T2&subscription_id=S2&customer_vault_id=V2")
        await record(test_db, raw="response=1&transactionid=T3&subscription_id=S3&customer_vault_id=V3")

        assert await count(test_db, Subscription) == 1
        assert await count(test_db, PaymentHistory) == 3

        subscription = (await test_db.execute(select(Subscription))).scalar_one()
        assert subscription.nmi_subscription_id == "S3"

    @pytest.mark.asyncio
    async def test_no_business_skips_all_writes(self, test_db, business):
        """A charge for an unknown email is currently left unrecorded."""
        report = await record(test_db, email="nobody@example.com")

        assert report.business_found is False
        assert report.lookup_failed is False
        assert await count(test_db, Subscription) == 0
        assert await count(test_db, PaymentHistory) == 0

    @pytest.mark.asyncio
    async def test_email_match_is_exact(self, test_db, business):
        report = await record(test_db, email="OWNER@example.com")

        assert report.business_found is False

    @pytest.mark.asyncio
    async def test_subscription_failure_does_not_block_other_writes(self, test_db, business):
        with patch.object(PaymentRecorder, "upsert_subscription", side_effect=RuntimeError("constraint")):
            report = await record(test_db)

        assert report.subscription_saved is False
        assert report.business_updated is True
        assert report.history_saved is True
        assert await count(test_db, Subscription) == 0
        assert await count(test_db, PaymentHistory) == 1

    @pytest.mark.asyncio
    async def test_history_failure_is_reported(self, test_db, business):
        with patch.object(PaymentRecorder, "add_history", side_effect=RuntimeError("disk full")):
            report = await record(test_db)

        assert report.subscription_saved is True
        assert report.business_updated is True
        assert report.history_saved is False
        assert report.complete is False

    @pytest.mark.asyncio
    async def test_lookup_failure_is_swallowed(self, test_db, business):
        with patch.object(PaymentRecorder, "find_business_id", side_effect=RuntimeError("connection reset")):
            report = await record(test_db)

        assert report.lookup_failed is True
        assert report.business_found is False

    @pytest.mark.asyncio
    async def test_plan_lookup_failure_still_records(self, test_db, business):
        with patch.object(PaymentRecorder, "find_plan_id", side_effect=RuntimeError("relation does not exist")):
            report = await record(test_db)

        assert report.lookup_failed is False
        assert report.complete is True
        subscription = (await test_db.execute(select(Subscription))).scalar_one()
        assert subscription.plan_id is None
        assert subscription.nmi_subscription_id == "S1"
        assert await count(test_db, PaymentHistory) == 1


class TestRecordCancellation:

    @pytest.mark.asyncio
    async def test_cancellation_records(self, test_db, business):
        await record(test_db)

        report = await PaymentRecorder().record_cancellation(test_db, business.id, "response=1")

        assert report.complete is True
        await test_db.refresh(business)
        assert business.subscription_status == "pending"

        subscription = (await test_db.execute(select(Subscription))).scalar_one()
        assert subscription.status == "canceled"

        entries = (await test_db.execute(
            select(PaymentHistory).where(PaymentHistory.type == "subscription_cancellation")
        )).scalars().all()
        assert len(entries) == 1
        assert entries[0].nmi_transaction_id == "no_transaction_id"
        assert float(entries[0].amount) == 0
