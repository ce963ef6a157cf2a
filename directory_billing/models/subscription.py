import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from directory_billing.database import Base


class Subscription(Base):
    """Application-side subscription record, one row per business."""

    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String(36), ForeignKey("businesses.id"), unique=True, nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("subscription_plans.id"), nullable=True)

    status = Column(String(30), default="active")  # active, canceled
    payment_status = Column(String(30), default="paid")
    current_period_start = Column(DateTime(timezone=True))
    current_period_end = Column(DateTime(timezone=True))

    # Gateway references
    payment_provider = Column(String(30), default="nmi")
    nmi_subscription_id = Column(String(100))
    nmi_customer_vault_id = Column(String(100))

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    business = relationship("Business", back_populates="subscription")
    plan = relationship("SubscriptionPlan")

    def __repr__(self):
        return f"<Subscription {self.business_id} {self.status}>"
