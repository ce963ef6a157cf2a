from dataclasses import replace
from urllib.parse import parse_qsl

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from directory_billing.config import PaymentConfig, Settings
from directory_billing.database import Base, get_db
from directory_billing.main import create_app
from directory_billing.models import Business, Subscription
from directory_billing.services.payment_processor import PaymentProcessor
from tests.factories import ActiveBusinessFactory, BusinessFactory

# Test database URL (SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test_billing.db"

APPROVED_SUBSCRIPTION = (
    "response=1&responsetext=SUCCESS&authcode=123456&transactionid=9876543210"
    "&avsresponse=N&cvvresponse=M&orderid=&type=&response_code=100"
    "&subscription_id=5566778899&customer_vault_id=1122334455"
)
APPROVED_SALE = (
    "response=1&responsetext=SUCCESS&authcode=654321&transactionid=1234567890"
    "&avsresponse=N&cvvresponse=M&response_code=100"
)

BASE_CONFIG = PaymentConfig(
    environment="development",
    security_key="test-security-key-0123456789",
    gateway_url="https://gateway.test/api/transact.php",
    timeout_seconds=30.0,
    simulation_delay_seconds=0,
)

REAL_CARD = {
    "card_number": "4111 1111 1111 1111",
    "expiry_date": "12/29",
    "cvv": "999",
    "cardholder_name": "Jane Q Public",
    "billing_address": {
        "street": "1 Main St",
        "city": "Austin",
        "state": "TX",
        "zipCode": "78701",
        "country": "US",
    },
}


class FakeGateway:
    """Stands in for the transact endpoint via httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.response_text = APPROVED_SUBSCRIPTION
        self.error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(200, text=self.response_text)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def last_form(self) -> dict:
        return dict(parse_qsl(self.requests[-1].content.decode()))


def payment_body(**overrides) -> dict:
    body = {
        "amount": 1200,
        "currency": "USD",
        "description": "Starter Plan - annual listing",
        "customer_email": "owner@example.com",
        "payment_method": dict(REAL_CARD),
        "plan_name": "Starter Plan",
        "is_recurring": True,
    }
    body.update(overrides)
    return body


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def payment_config():
    return BASE_CONFIG


@pytest_asyncio.fixture
async def test_db():
    """Create test database and tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def business(test_db: AsyncSession):
    """Placeholder business created by the listing wizard before checkout."""
    record = Business(**BusinessFactory(email="owner@example.com"))
    test_db.add(record)
    await test_db.commit()
    await test_db.refresh(record)
    return record


@pytest_asyncio.fixture
async def subscribed_business(test_db: AsyncSession):
    """Business that already enrolled: gateway subscription and vault entry on file."""
    record = Business(**ActiveBusinessFactory())
    test_db.add(record)
    await test_db.flush()
    test_db.add(Subscription(
        business_id=record.id,
        status="active",
        payment_status="paid",
        nmi_subscription_id="5566778899",
        nmi_customer_vault_id="1122334455",
    ))
    await test_db.commit()
    return record


@pytest_asyncio.fixture
async def client_factory(test_db: AsyncSession, fake_gateway: FakeGateway):
    """Build test clients with PaymentConfig overrides."""
    clients = []

    async def factory(**config_overrides) -> AsyncClient:
        config = replace(BASE_CONFIG, **config_overrides)
        processor = PaymentProcessor.with_transport(config, fake_gateway.transport)
        app = create_app(
            settings=Settings(ENVIRONMENT=config.environment, DEBUG=False),
            processor=processor,
        )

        async def override_get_db():
            yield test_db

        app.dependency_overrides[get_db] = override_get_db

        transport = ASGITransport(app=app, raise_app_exceptions=False)
        ac = AsyncClient(transport=transport, base_url="http://test")
        clients.append(ac)
        return ac

    yield factory

    for ac in clients:
        await ac.aclose()


@pytest_asyncio.fixture
async def client(client_factory):
    """Test client with credentials configured and no simulation delay."""
    return await client_factory()
