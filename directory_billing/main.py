"""
Directory Billing API - Main Application

SECURITY FEATURES:
- Card numbers, CVV and the gateway key are masked in every log line
- Sentry events scrubbed before they leave the process
- Conditional API docs (disabled in production by default)
"""

from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from directory_billing.api.router import api_router
from directory_billing.config import PaymentConfig, Settings, get_settings
from directory_billing.core.sentry import init_sentry
from directory_billing.database import init_db
from directory_billing.exceptions import PaymentAPIException, create_exception_handlers
from directory_billing.middleware.cors import EdgeCorsMiddleware
from directory_billing.middleware.request_context import RequestIdLogFilter, RequestIdMiddleware
from directory_billing.services.payment_processor import PaymentProcessor
from directory_billing.services.subscription_service import SubscriptionService
from directory_billing.services.webhooks import WebhookHandler
# Import all models to register them with SQLAlchemy metadata before init_db()
from directory_billing.models import (  # noqa: F401
    Business, SubscriptionPlan, Subscription, PaymentHistory, DiscountCode
)

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RequestIdLogFilter) for f in handler.filters):
            handler.addFilter(RequestIdLogFilter())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings: Settings = app.state.settings
    logger.info("Starting Directory Billing API...")
    logger.info(f"Using {settings.ENVIRONMENT} environment for payment processing")
    logger.info(f"Security key available: {'Yes' if app.state.payment_processor.config.has_credentials else 'No'}")
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        # SECURITY: Don't log full exception details which may contain credentials
        logger.error(f"Database initialization failed: {type(e).__name__}")
        logger.warning("App starting without database - payments will not be recorded")
    yield
    logger.info("Shutting down Directory Billing API...")


def create_app(
    settings: Optional[Settings] = None,
    processor: Optional[PaymentProcessor] = None,
) -> FastAPI:
    """Build the application.

    Payment configuration is resolved exactly once here and injected into the
    payment services; request handlers never read the environment.
    """
    settings = settings or get_settings()
    configure_logging(settings)
    init_sentry(settings)

    app = FastAPI(
        title="Directory Billing API",
        description="Payment processing for business directory listings",
        version="1.0.0",
        docs_url="/docs" if settings.DOCS_ENABLED else None,
        redoc_url="/redoc" if settings.DOCS_ENABLED else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    processor = processor or PaymentProcessor(PaymentConfig.from_settings(settings))
    # One gateway client and recorder shared by every function
    app.state.payment_processor = processor
    app.state.subscription_service = SubscriptionService(processor.config, processor.gateway, processor.recorder)
    app.state.webhook_handler = WebhookHandler(processor.config, processor.recorder)

    handlers = create_exception_handlers()
    app.add_exception_handler(PaymentAPIException, handlers["payment"])
    app.add_exception_handler(StarletteHTTPException, handlers["http"])
    app.add_exception_handler(RequestValidationError, handlers["validation"])
    app.add_exception_handler(Exception, handlers["generic"])

    # Last added runs first: request id is set before CORS short-circuits OPTIONS
    app.add_middleware(EdgeCorsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router, prefix="/functions/v1")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
            "gateway_configured": app.state.payment_processor.config.has_credentials,
        }

    return app


app = create_app()


# For running with uvicorn directly (development only)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "directory_billing.main:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().DEBUG,
    )
