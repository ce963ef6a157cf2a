"""
Client for the card-processing gateway's transact API.

Handles:
- Building the form-encoded body for sales and recurring subscriptions
- Subscription cancellation (delete_subscription)
- Customer vault card storage (add_customer / update_customer) and sales
  charged against a stored vault entry
- A single POST per call with a hard timeout; network failures are raised as
  GatewayUnavailableError so the caller can decide between simulation and 502
"""

import logging
from typing import Dict, Optional

import httpx

from directory_billing.config import PaymentConfig
from directory_billing.exceptions import GatewayUnavailableError
from directory_billing.schemas.payment import PaymentMethod, PaymentRequest
from directory_billing.services.nmi_response import GatewayResult, parse_gateway_response

logger = logging.getLogger(__name__)

ANNUAL_DAY_FREQUENCY = "365"
UNLIMITED_PAYMENTS = "0"


def format_major_amount(amount_cents: float) -> str:
    """Cents -> gateway dollars string with exactly two decimals (1200 -> "12.00")."""
    return f"{amount_cents / 100:.2f}"


def split_cardholder_name(cardholder_name: Optional[str]) -> tuple[str, str]:
    """First token is the first name, the remainder is the last name."""
    parts = (cardholder_name or "").split(" ")
    return parts[0], " ".join(parts[1:])


def build_billing_fields(request: PaymentRequest) -> Dict[str, str]:
    payment_method = request.payment_method
    address = payment_method.billing_address
    first_name, last_name = split_cardholder_name(payment_method.cardholder_name)

    return {
        "first_name": first_name,
        "last_name": last_name,
        "address1": (address.street if address else None) or "",
        "city": (address.city if address else None) or "",
        "state": (address.state if address else None) or "",
        "zip": (address.zip_code if address else None) or payment_method.billing_zip or "",
        "country": (address.country if address else None) or "US",
        "email": request.customer_email or "",
    }


def build_transaction_payload(
    request: PaymentRequest,
    amount_cents: float,
    security_key: str,
) -> Dict[str, str]:
    """Form fields for an add_subscription (recurring) or sale (one-time) call."""
    payment_method = request.payment_method
    billing = build_billing_fields(request)

    payload = {
        "security_key": security_key,
        "ccnumber": payment_method.clean_card_number,
        "ccexp": payment_method.expiry_date,
        "cvv": payment_method.cvv,
    }
    payload.update({key: value for key, value in billing.items() if value})

    if request.is_recurring:
        payload.update({
            "type": "add_subscription",
            "plan_payments": UNLIMITED_PAYMENTS,
            "plan_amount": format_major_amount(amount_cents),
            "day_frequency": ANNUAL_DAY_FREQUENCY,
            "customer_vault": "add_customer",
            # The vault requires these even when blank
            "first_name": billing["first_name"],
            "last_name": billing["last_name"],
            "email": billing["email"],
        })
    else:
        payload.update({
            "type": "sale",
            "amount": format_major_amount(amount_cents),
        })

    if request.description:
        payload["order_description"] = request.description
    payload["currency"] = request.currency_code
    return payload


def build_vault_payload(
    payment_method: PaymentMethod,
    security_key: str,
    customer_vault_id: Optional[str] = None,
    email: Optional[str] = None,
) -> Dict[str, str]:
    """Store a card in the customer vault.

    With ``customer_vault_id`` the existing entry is updated, otherwise a new
    entry is created.
    """
    payload = {
        "security_key": security_key,
        "ccnumber": payment_method.clean_card_number,
        "ccexp": payment_method.expiry_date,
    }
    if customer_vault_id:
        payload["customer_vault"] = "update_customer"
        payload["customer_vault_id"] = customer_vault_id
    else:
        payload["customer_vault"] = "add_customer"
        first_name, last_name = split_cardholder_name(payment_method.cardholder_name)
        payload["first_name"] = first_name
        payload["last_name"] = last_name
        if email:
            payload["email"] = email

    if payment_method.cvv:
        payload["cvv"] = payment_method.cvv
    address = payment_method.billing_address
    zip_code = (address.zip_code if address else None) or payment_method.billing_zip
    if zip_code:
        payload["zip"] = zip_code
    return payload


def masked_payload(payload: Dict[str, str]) -> Dict[str, str]:
    """Copy of a payload that is safe to log."""
    safe = dict(payload)
    if "ccnumber" in safe:
        safe["ccnumber"] = f"****{safe['ccnumber'][-4:]}"
    if "cvv" in safe:
        safe["cvv"] = "***"
    if "security_key" in safe:
        safe["security_key"] = "****" if safe["security_key"] else "MISSING"
    return safe


class NMIGatewayClient:
    """Service for talking to the gateway's transact endpoint.

    ``transport`` lets tests substitute an ``httpx.MockTransport``.
    """

    def __init__(self, config: PaymentConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.transport = transport

    async def post(self, payload: Dict[str, str]) -> str:
        """POST the form and return the raw response text.

        Raises GatewayUnavailableError on timeout or any transport failure.
        """
        logger.info(f"Sending gateway request: {masked_payload(payload)}")
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    self.config.gateway_url,
                    data=payload,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.config.timeout_seconds,
                )
        except httpx.TimeoutException as e:
            logger.error(f"Gateway request timed out after {self.config.timeout_seconds}s: {e!r}")
            raise GatewayUnavailableError(f"Timed out after {self.config.timeout_seconds}s") from e
        except httpx.TransportError as e:
            logger.error(f"Network error when contacting payment gateway: {e!r}")
            raise GatewayUnavailableError(str(e) or type(e).__name__) from e

        logger.info(f"Payment gateway response status: {response.status_code}")
        logger.debug(f"Raw payment gateway response: {response.text}")
        return response.text

    async def charge(self, request: PaymentRequest, amount_cents: float) -> tuple[GatewayResult, str]:
        """Run a sale or add_subscription. Returns the parsed result and raw text."""
        payload = build_transaction_payload(request, amount_cents, self.config.security_key)
        raw = await self.post(payload)
        return parse_gateway_response(raw), raw

    async def cancel_subscription(self, subscription_id: str) -> tuple[GatewayResult, str]:
        """Stop gateway-side recurring billing for a subscription."""
        payload = {
            "security_key": self.config.security_key,
            "subscription_id": subscription_id,
            "type": "delete_subscription",
        }
        raw = await self.post(payload)
        return parse_gateway_response(raw), raw

    async def store_card(
        self,
        payment_method: PaymentMethod,
        customer_vault_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> tuple[GatewayResult, str]:
        """Create a vault entry for the card, or replace the card on an existing one."""
        payload = build_vault_payload(payment_method, self.config.security_key, customer_vault_id, email)
        raw = await self.post(payload)
        return parse_gateway_response(raw), raw

    async def charge_vault(
        self,
        customer_vault_id: str,
        amount_cents: float,
        description: Optional[str] = None,
        currency: str = "USD",
    ) -> tuple[GatewayResult, str]:
        """One-time sale against the card stored in the vault."""
        payload = {
            "security_key": self.config.security_key,
            "type": "sale",
            "amount": format_major_amount(amount_cents),
            "customer_vault_id": customer_vault_id,
            "currency": currency,
        }
        if description:
            payload["order_description"] = description
        raw = await self.post(payload)
        return parse_gateway_response(raw), raw
