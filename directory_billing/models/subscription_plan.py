import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Numeric
from sqlalchemy.sql import func
from directory_billing.database import Base


class SubscriptionPlan(Base):
    """Listing plan catalogue (read-only for the payment flow)."""

    __tablename__ = "subscription_plans"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), unique=True, nullable=False, index=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<SubscriptionPlan {self.name} ${self.price}>"
