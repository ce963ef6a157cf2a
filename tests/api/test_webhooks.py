"""
Tests for the gateway webhook endpoint (/functions/v1/nmi-webhook-handler).
"""

from unittest.mock import patch

import pytest
from sqlalchemy import select

from directory_billing.models import PaymentHistory
from directory_billing.services.webhooks import WebhookHandler, sign_payload

URL = "/functions/v1/nmi-webhook-handler"
FORM = {"Content-Type": "application/x-www-form-urlencoded"}
RENEWAL = "event_type=recurring_payment_success&subscription_id=5566778899&transaction_id=R1&amount=12.00"


@pytest.mark.asyncio
async def test_preflight(client):
    response = await client.options(URL)

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


@pytest.mark.asyncio
async def test_renewal_is_recorded(client, test_db, subscribed_business):
    response = await client.post(URL, content=RENEWAL, headers=FORM)

    assert response.status_code == 200
    assert response.json() == {"success": True}
    history = (await test_db.execute(select(PaymentHistory))).scalar_one()
    assert history.type == "recurring_payment"


@pytest.mark.asyncio
async def test_unknown_event_is_acknowledged(client):
    response = await client.post(URL, content="event_type=something_new", headers=FORM)

    assert response.status_code == 200
    assert response.json() == {"success": True}


@pytest.mark.asyncio
async def test_signed_webhook_accepted(client_factory, subscribed_business):
    client = await client_factory(webhook_secret="whsec_test")
    signature = sign_payload("whsec_test", RENEWAL.encode())

    response = await client.post(URL, content=RENEWAL, headers={**FORM, "X-NMI-Signature": signature})

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_bad_signature_rejected(client_factory, test_db, subscribed_business):
    client = await client_factory(webhook_secret="whsec_test")

    response = await client.post(URL, content=RENEWAL, headers={**FORM, "X-NMI-Signature": "deadbeef"})

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid webhook signature"}
    assert (await test_db.execute(select(PaymentHistory))).first() is None


@pytest.mark.asyncio
async def test_handler_error_is_500(client):
    with patch.object(WebhookHandler, "handle", side_effect=RuntimeError("boom")):
        response = await client.post(URL, content=RENEWAL, headers=FORM)

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error", "details": "boom"}
