from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Numeric
from sqlalchemy.sql import func
from directory_billing.database import Base


class PaymentHistory(Base):
    """Append-only ledger of gateway activity per business."""

    __tablename__ = "payment_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)

    nmi_transaction_id = Column(String(100))
    amount = Column(Numeric(10, 2), nullable=False)  # major units (dollars)
    status = Column(String(30), nullable=False)  # approved, declined
    type = Column(String(50), nullable=False)  # initial_subscription, subscription_cancellation
    response_text = Column(Text)  # raw gateway response for audit

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<PaymentHistory {self.type} {self.nmi_transaction_id} ${self.amount}>"
