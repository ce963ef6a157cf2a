import uuid

from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from directory_billing.database import Base


class Business(Base):
    """Directory listing owned by the listing service.

    Only the billing columns are written by the payment flow. The gateway
    customer vault id is deliberately not a column here; it lives on
    Subscription, which has narrower read access.
    """

    __tablename__ = "businesses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    email = Column(String(255), index=True)

    # Billing state
    subscription_status = Column(String(50), default="pending")
    plan_name = Column(String(100))  # display name, not a plan key
    next_billing_date = Column(DateTime(timezone=True))
    last_payment_date = Column(DateTime(timezone=True))
    payment_method_last_four = Column(String(4))

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    subscription = relationship("Subscription", back_populates="business", uselist=False)

    def __repr__(self):
        return f"<Business {self.id} {self.email}>"
