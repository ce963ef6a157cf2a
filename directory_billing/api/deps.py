"""
FastAPI Dependencies

Provides dependency injection for database sessions and the payment
services built at startup.
"""

from typing import Annotated
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from directory_billing.database import get_db
from directory_billing.services.payment_processor import PaymentProcessor
from directory_billing.services.subscription_service import SubscriptionService
from directory_billing.services.webhooks import WebhookHandler


def get_payment_processor(request: Request) -> PaymentProcessor:
    """The processor stored on app.state by create_app."""
    return request.app.state.payment_processor


def get_subscription_service(request: Request) -> SubscriptionService:
    return request.app.state.subscription_service


def get_webhook_handler(request: Request) -> WebhookHandler:
    return request.app.state.webhook_handler


DbSession = Annotated[AsyncSession, Depends(get_db)]
Processor = Annotated[PaymentProcessor, Depends(get_payment_processor)]
Subscriptions = Annotated[SubscriptionService, Depends(get_subscription_service)]
Webhooks = Annotated[WebhookHandler, Depends(get_webhook_handler)]
