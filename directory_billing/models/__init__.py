from directory_billing.models.business import Business
from directory_billing.models.subscription_plan import SubscriptionPlan
from directory_billing.models.subscription import Subscription
from directory_billing.models.payment_history import PaymentHistory
from directory_billing.models.discount_code import DiscountCode

__all__ = [
    "Business",
    "SubscriptionPlan",
    "Subscription",
    "PaymentHistory",
    "DiscountCode",
]
