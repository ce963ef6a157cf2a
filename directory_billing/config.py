from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings


DEFAULT_GATEWAY_URL = "https://ecompaymentprocessing.transactiongateway.com/api/transact.php"


class BusinessMissPolicy(str, Enum):
    """What to do when a charged customer_email matches no business row."""

    IGNORE = "ignore"  # log and answer 200
    FAIL = "fail"  # log and answer 409 so the caller can reconcile


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/directory"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    # Environment (NODE_ENV kept for deployments that still export it)
    ENVIRONMENT: str = Field(
        default="development",
        validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"),
    )
    DEBUG: bool = True
    DOCS_ENABLED: bool = True

    # Payment gateway credentials
    ECOM_LIVE_SECURITY_KEY: str | None = None
    ECOM_TEST_SECURITY_KEY: str | None = None
    GATEWAY_URL: str = DEFAULT_GATEWAY_URL
    GATEWAY_TIMEOUT_SECONDS: float = 30.0

    # Payment behaviour
    SIMULATION_DELAY_SECONDS: float = 1.0
    SIMULATE_ON_NETWORK_ERROR: bool = True
    BUSINESS_MISS_POLICY: BusinessMissPolicy = BusinessMissPolicy.IGNORE
    RECURRING_MINIMUM_CENTS: int = 100

    # Webhooks from the gateway (HMAC-SHA256 of the raw body in X-NMI-Signature)
    NMI_WEBHOOK_SECRET: str | None = None

    # Error tracking
    SENTRY_DSN: str | None = None

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def gateway_security_key(self) -> str:
        """Live key in production, test key everywhere else."""
        key = self.ECOM_LIVE_SECURITY_KEY if self.is_production else self.ECOM_TEST_SECURITY_KEY
        return (key or "").strip()

    class Config:
        env_file = ".env"
        case_sensitive = True
        populate_by_name = True
        extra = "ignore"


@dataclass(frozen=True)
class PaymentConfig:
    """Payment settings resolved once at startup and handed to the processor."""

    environment: str
    security_key: str
    gateway_url: str = DEFAULT_GATEWAY_URL
    timeout_seconds: float = 30.0
    simulation_delay_seconds: float = 1.0
    simulate_on_network_error: bool = True
    business_miss_policy: BusinessMissPolicy = BusinessMissPolicy.IGNORE
    recurring_minimum_cents: int = 100
    webhook_secret: str = ""

    @property
    def has_credentials(self) -> bool:
        return bool(self.security_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PaymentConfig":
        return cls(
            environment=settings.ENVIRONMENT,
            security_key=settings.gateway_security_key,
            gateway_url=settings.GATEWAY_URL,
            timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS,
            simulation_delay_seconds=settings.SIMULATION_DELAY_SECONDS,
            simulate_on_network_error=settings.SIMULATE_ON_NETWORK_ERROR,
            business_miss_policy=settings.BUSINESS_MISS_POLICY,
            recurring_minimum_cents=settings.RECURRING_MINIMUM_CENTS,
            webhook_secret=(settings.NMI_WEBHOOK_SECRET or "").strip(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
