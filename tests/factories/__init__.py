"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation.
"""

from .business import BusinessFactory, ActiveBusinessFactory
from .billing import (
    SubscriptionPlanFactory,
    DiscountCodeFactory,
    ExpiredDiscountCodeFactory,
    ExhaustedDiscountCodeFactory,
)

__all__ = [
    "BusinessFactory",
    "ActiveBusinessFactory",
    "SubscriptionPlanFactory",
    "DiscountCodeFactory",
    "ExpiredDiscountCodeFactory",
    "ExhaustedDiscountCodeFactory",
]
