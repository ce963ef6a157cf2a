"""
Tests for simulation mode helpers.
"""

import re
from dataclasses import replace

from directory_billing.config import PaymentConfig
from directory_billing.schemas.payment import PaymentMethod, PaymentRequest
from directory_billing.services.simulation import (
    REASON_NO_SECURITY_KEY,
    REASON_TEST_CARD,
    build_free_payment,
    build_simulated_payment,
    generate_reference,
    is_test_card,
    simulation_reason,
)

CONFIG = PaymentConfig(environment="development", security_key="k" * 32)


def card(number: str = "4111111111111111", expiry: str = "08/27") -> PaymentMethod:
    return PaymentMethod(card_number=number, expiry_date=expiry, cvv="123", cardholder_name="Sam Smith")


class TestGenerateReference:

    def test_pattern(self):
        assert re.fullmatch(r"sim_\d{13}_[0-9a-z]{8}", generate_reference("sim"))
        assert generate_reference("free").startswith("free_")

    def test_references_differ(self):
        assert generate_reference("sim") != generate_reference("sim")


class TestSimulationReason:

    def test_no_credentials(self):
        config = replace(CONFIG, security_key="")
        assert simulation_reason(card(), config) == REASON_NO_SECURITY_KEY

    def test_test_card_with_credentials(self):
        assert simulation_reason(card("4000000000000002"), CONFIG) == REASON_TEST_CARD

    def test_test_card_with_spaces(self):
        assert is_test_card("5555 5555 5555 4444")
        assert is_test_card("3782 822463 10005")

    def test_real_card_goes_to_gateway(self):
        assert simulation_reason(card(), CONFIG) is None


class TestBuildSimulatedPayment:

    def test_body_shape(self):
        request = PaymentRequest(
            amount=1200,
            customer_email="owner@example.com",
            description="Starter",
            payment_method=card("4000 0000 0000 0002"),
        )
        body = build_simulated_payment(request, 1200, REASON_TEST_CARD, "development")

        assert body["success"] is True
        assert body["simulated"] is True
        assert body["simulation_reason"] == REASON_TEST_CARD
        assert body["transaction_id"].startswith("sim_")
        assert body["amount"] == 12
        assert body["currency"] == "USD"
        assert body["status"] == "approved"
        assert body["environment"] == "development"
        assert body["payment_method_details"]["card"] == {
            "brand": "visa",
            "last4": "0002",
            "exp_month": "08",
            "exp_year": "2027",
        }

    def test_malformed_expiry_falls_back(self):
        request = PaymentRequest(amount=500, payment_method=card(expiry="garbage"))
        body = build_simulated_payment(request, 500, "x", "development")

        assert body["payment_method_details"]["card"]["exp_year"] == "2030"

    def test_expiry_without_slash_falls_back(self):
        request = PaymentRequest(amount=500, payment_method=card(expiry="1229"))
        body = build_simulated_payment(request, 500, "x", "development")

        assert body["payment_method_details"]["card"]["exp_month"] == "12"
        assert body["payment_method_details"]["card"]["exp_year"] == "2030"


class TestExpiryParsing:

    def test_mm_yy(self):
        method = card(expiry="08/27")
        assert (method.exp_month, method.exp_year) == ("08", "2027")

    def test_spaces_around_slash(self):
        method = card(expiry=" 08 / 27 ")
        assert (method.exp_month, method.exp_year) == ("08", "2027")

    def test_no_slash(self):
        method = card(expiry="1229")
        assert method.exp_month is None
        assert method.exp_year is None

    def test_four_digit_year_is_rejected(self):
        method = card(expiry="12/2029")
        assert method.exp_month is None
        assert method.exp_year is None


class TestBuildFreePayment:

    def test_free_body(self):
        request = PaymentRequest(amount=0, currency="CAD", customer_email="a@b.co")
        body = build_free_payment(request)

        assert body["transaction_id"].startswith("free_")
        assert body["amount"] == 0
        assert body["currency"] == "CAD"
        assert body["isFreeTransaction"] is True
        assert body["payment_method_details"] == {"type": "free", "card": None}
        assert "simulated" not in body
