"""
Shared fixtures for pricing tests.
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from dynamic_pricing.pricing.exceptions import PricingStoreError
from dynamic_pricing.pricing.models import (
    ApplyTo,
    BulkPricingTier,
    DiscountType,
    PricingRule,
    RuleType,
    TargetType,
)
from dynamic_pricing.pricing.service import PricingEngine

# Wednesday 2025-01-15 12:00 UTC
FIXED_NOW = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


class InMemoryRuleRepository:
    """Rule store kept in a dict, with optional failure injection."""

    def __init__(self, rules=()):
        self.rules = {rule.id: rule for rule in rules}
        self.usage_records = []
        self.fail_increment_for = set()

    async def list_active_rules(self, target_type, target_id, rule_type=None):
        matches = [
            rule
            for rule in self.rules.values()
            if rule.is_active
            and rule.target_type == target_type
            and rule.target_id == target_id
            and (rule_type is None or rule.rule_type == rule_type)
        ]
        return sorted(matches, key=lambda rule: -rule.priority)

    async def increment_usage(
        self, rule_id, *, product_id=None, user_id=None, discount_amount=None
    ):
        if rule_id in self.fail_increment_for:
            raise PricingStoreError("store unavailable", operation="increment_usage")
        rule = self.rules[rule_id]
        if rule.usage_limit is not None and rule.usage_count >= rule.usage_limit:
            return False
        self.rules[rule_id] = rule.model_copy(update={"usage_count": rule.usage_count + 1})
        self.usage_records.append((rule_id, product_id, user_id, discount_amount))
        return True


class InMemoryBulkTierRepository:
    """Tier store kept in a list, filtered like the SQL store."""

    def __init__(self, tiers=()):
        self.tiers = list(tiers)

    async def list_active_tiers(self, product_id, quantity):
        matches = [
            tier
            for tier in self.tiers
            if tier.is_active
            and tier.product_id == product_id
            and tier.minimum_quantity <= quantity
            and (tier.maximum_quantity is None or tier.maximum_quantity >= quantity)
        ]
        return sorted(matches, key=lambda tier: -tier.minimum_quantity)


@pytest.fixture
def make_rule():
    """Factory for pricing rules with sensible defaults."""

    def _make(
        rule_id="rule_a",
        *,
        rule_type=RuleType.QUANTITY_BASED,
        conditions=None,
        discount_type=DiscountType.PERCENTAGE,
        discount_value="10",
        max_discount=None,
        apply_to=ApplyTo.ITEM,
        priority=0,
        target_type=TargetType.PRODUCT,
        target_id="prod-1",
        **kwargs,
    ) -> PricingRule:
        return PricingRule(
            id=rule_id,
            name=f"Rule {rule_id}",
            target_type=target_type,
            target_id=target_id,
            rule_type=rule_type,
            conditions=conditions or {},
            actions={
                "discount_type": discount_type,
                "discount_value": Decimal(discount_value),
                "max_discount": Decimal(max_discount) if max_discount is not None else None,
                "apply_to": apply_to,
            },
            priority=priority,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_tier():
    """Factory for bulk pricing tiers."""

    def _make(
        tier_id="tier_a",
        *,
        product_id="prod-1",
        minimum_quantity=10,
        maximum_quantity=None,
        discount_type=DiscountType.PERCENTAGE,
        discount_value="20",
        customer_tier=None,
        is_active=True,
    ) -> BulkPricingTier:
        return BulkPricingTier(
            id=tier_id,
            product_id=product_id,
            minimum_quantity=minimum_quantity,
            maximum_quantity=maximum_quantity,
            discount_type=discount_type,
            discount_value=Decimal(discount_value),
            customer_tier=customer_tier,
            is_active=is_active,
        )

    return _make


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def rule_repository():
    return InMemoryRuleRepository()


@pytest.fixture
def tier_repository():
    return InMemoryBulkTierRepository()


@pytest.fixture
def pricing_engine(rule_repository, tier_repository):
    """Engine over in-memory stores with a frozen clock."""
    return PricingEngine(rule_repository, tier_repository, clock=lambda: FIXED_NOW)
