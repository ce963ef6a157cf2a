from typing import Optional

GENERIC_FAILURE_MESSAGE = "Payment processing failed. Please try again."

# Gateway response_code -> message shown to the cardholder
GATEWAY_ERROR_MESSAGES = {
    "200": "Transaction was declined by processor",
    "201": "Do not honor",
    "202": "Insufficient funds",
    "203": "Over limit",
    "204": "Transaction not allowed",
    "220": "Incorrect payment information",
    "221": "No such card issuer",
    "222": "No card number on file with issuer",
    "223": "Expired card",
    "224": "Invalid expiration date",
    "225": "Invalid card security code",
    "300": "Transaction was rejected by gateway",
    "400": "Transaction error returned by processor",
    "410": "Invalid merchant configuration",
    "411": "Merchant account is inactive",
    "420": "Communication error",
    "421": "Communication error with issuer",
    "430": "Duplicate transaction at processor",
    "440": "Processor format error",
    "441": "Invalid transaction information",
    "460": "Processor feature not available",
    "461": "Unsupported card type",
}


def translate_gateway_error(response_code: Optional[str], response_text: Optional[str]) -> str:
    """Known code -> table entry, else the gateway's own text, else a generic retry hint."""
    return (
        GATEWAY_ERROR_MESSAGES.get(response_code or "")
        or response_text
        or GENERIC_FAILURE_MESSAGE
    )
