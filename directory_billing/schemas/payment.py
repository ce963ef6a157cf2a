import re
from pydantic import BaseModel, ConfigDict, Field, StrictInt, confloat
from typing import Optional, Union

EXPIRY_PATTERN = re.compile(r"^(\d{2})\s*/\s*(\d{2})$")


class BillingAddress(BaseModel):
    """Billing address captured by the listing checkout form."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = Field(None, alias="zipCode")
    country: Optional[str] = None


class PaymentMethod(BaseModel):
    """Raw card details. Never logged unmasked."""
    model_config = ConfigDict(extra="ignore")

    card_number: str
    expiry_date: str  # MM/YY
    cvv: str
    cardholder_name: Optional[str] = None
    billing_address: Optional[BillingAddress] = None
    billing_zip: Optional[str] = None

    @property
    def clean_card_number(self) -> str:
        return "".join(self.card_number.split())

    @property
    def last4(self) -> str:
        return self.clean_card_number[-4:]

    @property
    def masked_card_number(self) -> str:
        return f"****{self.last4}"

    def _expiry_parts(self) -> Optional[tuple[str, str]]:
        match = EXPIRY_PATTERN.match(self.expiry_date.strip())
        return match.groups() if match else None

    @property
    def exp_month(self) -> Optional[str]:
        """Two-digit month, or None when expiry_date is not MM/YY."""
        parts = self._expiry_parts()
        return parts[0] if parts else None

    @property
    def exp_year(self) -> Optional[str]:
        """Four-digit year, or None when expiry_date is not MM/YY."""
        parts = self._expiry_parts()
        return f"20{parts[1]}" if parts else None


# Amounts must be finite JSON numbers; numeric strings, booleans, NaN and
# Infinity are rejected.
Amount = Union[StrictInt, confloat(strict=True, allow_inf_nan=False)]


class PaymentRequest(BaseModel):
    """Body of POST /process-payment. Amounts are in minor units (cents)."""
    model_config = ConfigDict(extra="ignore")

    amount: Optional[Amount] = None
    final_amount: Optional[Amount] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    customer_email: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    discount_code_id: Optional[str] = None
    plan_name: Optional[str] = None
    is_recurring: bool = True

    @property
    def process_amount(self) -> Optional[Amount]:
        """final_amount wins over amount when the client sent one."""
        return self.final_amount if self.final_amount is not None else self.amount

    @property
    def currency_code(self) -> str:
        return self.currency or "USD"


class CancelSubscriptionRequest(BaseModel):
    """Body of POST /cancel-subscription."""
    model_config = ConfigDict(extra="ignore")

    business_id: Optional[str] = None


class CardSummary(BaseModel):
    brand: Optional[str] = None
    last4: str
    exp_month: Optional[str] = None
    exp_year: Optional[str] = None


class PaymentMethodDetails(BaseModel):
    type: str  # card, free
    card: Optional[CardSummary] = None


class PaymentResponse(BaseModel):
    """Success body shared by the real, simulated and free paths."""

    success: bool = True
    transaction_id: str
    subscription_id: Optional[str] = None
    customer_vault_id: Optional[str] = None
    amount: float  # major units (dollars)
    currency: str
    description: Optional[str] = None
    customer_email: Optional[str] = None
    payment_date: str
    status: str = "approved"
    payment_method_details: PaymentMethodDetails
    gateway_response: Optional[dict] = None
    environment: Optional[str] = None
    simulated: Optional[bool] = None
    simulation_reason: Optional[str] = None
    isFreeTransaction: Optional[bool] = None


class UpdatePaymentMethodRequest(BaseModel):
    """Body of POST /update-payment-method."""
    model_config = ConfigDict(extra="ignore")

    business_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None


class PlanChangeRequest(BaseModel):
    """Body of POST /upgrade-plan. Prices are in cents; camelCase keys accepted."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    business_id: Optional[str] = Field(None, alias="businessId")
    current_plan: Optional[str] = Field(None, alias="currentPlan")
    new_plan: Optional[str] = Field(None, alias="newPlan")
    plan_price: Optional[Amount] = Field(None, alias="planPrice")
    customer_email: Optional[str] = Field(None, alias="customerEmail")
    discount_code: Optional[str] = Field(None, alias="discountCode")
    discounted_amount: Optional[Amount] = Field(None, alias="discountedAmount")
