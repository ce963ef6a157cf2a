"""
Parser for the gateway's ``key=value&key=value`` response body.

The transact API answers in URL-encoded text, not JSON. Everything the rest
of the service needs is lifted into a GatewayResult here so call sites never
touch raw keys.
"""

from dataclasses import dataclass, asdict
from typing import Optional
from urllib.parse import parse_qsl

APPROVED = "1"
DECLINED = "2"
ERROR = "3"


@dataclass(frozen=True)
class GatewayResult:
    """Structured gateway response.

    ``customer_vault_id`` and ``subscription_id`` are only returned for
    vault/subscription transactions; None means "not applicable", not failure.
    """

    success: bool
    response: Optional[str] = None  # 1 approved, 2 declined, 3 error
    response_code: Optional[str] = None
    response_text: Optional[str] = None
    transaction_id: Optional[str] = None
    customer_vault_id: Optional[str] = None
    subscription_id: Optional[str] = None
    auth_code: Optional[str] = None
    avs_response: Optional[str] = None
    cvv_response: Optional[str] = None

    @property
    def is_declined(self) -> bool:
        return self.response == DECLINED

    def to_dict(self) -> dict:
        return asdict(self)


def parse_gateway_response(body: Optional[str]) -> GatewayResult:
    """Decode a gateway response body into a GatewayResult."""
    fields = dict(parse_qsl(body or "", keep_blank_values=True))

    def field(name: str) -> Optional[str]:
        value = fields.get(name)
        return value if value != "" else None

    return GatewayResult(
        success=fields.get("response") == APPROVED,
        response=field("response"),
        response_code=field("response_code"),
        response_text=field("responsetext"),
        transaction_id=field("transactionid"),
        customer_vault_id=field("customer_vault_id"),
        subscription_id=field("subscription_id"),
        auth_code=field("authcode"),
        avs_response=field("avsresponse"),
        cvv_response=field("cvvresponse"),
    )
