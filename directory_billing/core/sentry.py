"""
Sentry error tracking for the payment functions.

Provides:
- Exception capture for unhandled errors
- Loud reporting of charges that need manual reconciliation
- Scrubbing of card data and gateway credentials before events leave the process
"""

import logging
from typing import Optional, Dict, Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from directory_billing.config import Settings

logger = logging.getLogger(__name__)

FILTERED = "[Filtered]"
SENSITIVE_HEADERS = ("authorization", "cookie", "apikey")
SENSITIVE_FIELDS = ("card_number", "ccnumber", "cvv", "security_key", "expiry_date", "ccexp")


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry SDK with FastAPI integration.

    Called once from create_app. Returns True when error tracking is active.
    """
    if not settings.SENTRY_DSN:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=logging.WARNING,
                event_level=logging.ERROR,
            ),
        ],
        before_send=filter_sensitive_data,
        send_default_pii=False,
        attach_stacktrace=True,
    )
    logger.info(f"Sentry initialized for {settings.ENVIRONMENT} environment")
    return True


def _scrub(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            key: FILTERED if key in SENSITIVE_FIELDS else _scrub(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_scrub(item) for item in data]
    return data


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Filter sensitive data before sending to Sentry.

    Removes auth headers, card numbers, expiry, CVV and the gateway security
    key wherever they appear in the request body or extras.
    """
    request = event.get("request")
    if request:
        headers = request.get("headers")
        if isinstance(headers, dict):
            for header in list(headers):
                if header.lower() in SENSITIVE_HEADERS:
                    headers[header] = FILTERED
        if "data" in request:
            request["data"] = _scrub(request["data"])

    if "extra" in event:
        event["extra"] = _scrub(event["extra"])

    return event


def capture_exception(exception: Exception, context: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """Capture an exception with extra context. No-op when Sentry is off."""
    with sentry_sdk.new_scope() as scope:
        for key, value in (context or {}).items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(exception)


def capture_message(
    message: str,
    level: str = "warning",
    context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """Capture a message with extra context. No-op when Sentry is off."""
    with sentry_sdk.new_scope() as scope:
        for key, value in (context or {}).items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_message(message, level=level)
