"""
Dynamic pricing engine.

Provides rule-based pricing with time, quantity, customer tier and inventory
conditions, plus quantity bulk tiers.
"""

from dynamic_pricing.pricing.exceptions import (
    PriceCalculationError,
    PricingError,
    PricingRuleNotFoundError,
    PricingStoreError,
    UsageRecordingError,
)
from dynamic_pricing.pricing.models import (
    BulkDiscount,
    BulkPricingTier,
    DiscountType,
    PriceCalculation,
    PriceCalculationContext,
    PricingRule,
    RuleType,
    TargetType,
)
from dynamic_pricing.pricing.rules import PricingRuleService
from dynamic_pricing.pricing.service import PricingEngine

__all__ = [
    "PricingEngine",
    "PricingRuleService",
    "PricingRule",
    "BulkPricingTier",
    "PriceCalculation",
    "PriceCalculationContext",
    "BulkDiscount",
    "RuleType",
    "TargetType",
    "DiscountType",
    "PricingError",
    "PricingRuleNotFoundError",
    "PriceCalculationError",
    "PricingStoreError",
    "UsageRecordingError",
]
