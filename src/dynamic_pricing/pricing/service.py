"""
Pricing engine.

Resolves the rules that apply to a product, stacks their discounts in
priority order and records usage for every rule that contributed. Bulk tier
pricing is an independent path that never mixes with rule discounts.
"""

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from dynamic_pricing.pricing.conditions import (
    evaluate_conditions,
    has_usage_remaining,
    is_within_validity_window,
)
from dynamic_pricing.pricing.discounts import (
    ZERO,
    calculate_discount,
    calculate_tier_price,
    quantize_money,
)
from dynamic_pricing.pricing.exceptions import (
    PriceCalculationError,
    PricingError,
    PricingStoreError,
    UsageRecordingError,
)
from dynamic_pricing.pricing.models import (
    BulkDiscount,
    PriceCalculation,
    PriceCalculationContext,
    PricingRule,
    TargetType,
)
from dynamic_pricing.pricing.repository import (
    BulkTierRepository,
    RuleRepository,
    SQLAlchemyBulkTierRepository,
    SQLAlchemyRuleRepository,
)
from dynamic_pricing.settings import settings

logger = structlog.get_logger(__name__)

RETAIL_TIER = "retail"


def _to_decimal(value: Any, field: str, product_id: str | None = None) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise PriceCalculationError(f"Invalid {field}: {value!r}", product_id=product_id) from e


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PricingEngine:
    """Dynamic pricing rule engine."""

    def __init__(
        self,
        rule_repository: RuleRepository,
        tier_repository: BulkTierRepository,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.rules = rule_repository
        self.tiers = tier_repository
        self._clock = clock or _utcnow

    @classmethod
    def from_session(
        cls, session: AsyncSession, clock: Callable[[], datetime] | None = None
    ) -> "PricingEngine":
        """Build an engine backed by the SQLAlchemy stores."""
        return cls(
            SQLAlchemyRuleRepository(session),
            SQLAlchemyBulkTierRepository(session),
            clock=clock,
        )

    # ==================== Rule-based pricing ====================

    async def calculate_price(
        self,
        product_id: str,
        base_price: Decimal | int | float | str,
        context: PriceCalculationContext | Mapping[str, Any] | None = None,
    ) -> PriceCalculation:
        """
        Calculate the discounted price of one product.

        Each applicable rule discounts the price left over by the rules before
        it. Every rule that contributes a positive discount has its usage
        counted exactly once.

        Raises:
            PriceCalculationError: Invalid product ID, base price or context.
            PricingStoreError: The rule store failed while loading rules.
            UsageRecordingError: A usage write failed; carries the partial result.
        """
        if not product_id:
            raise PriceCalculationError("Product ID is required")
        base = _to_decimal(base_price, "base price", product_id)
        if base < 0:
            raise PriceCalculationError("Base price cannot be negative", product_id=product_id)
        ctx = self._coerce_context(context, product_id)

        if not settings.pricing.rules_enabled:
            return self._build_result(product_id, base, ZERO, [])

        now = self._clock()
        rules = await self._get_applicable_rules(product_id, ctx)

        current_price = base
        total_discount = ZERO
        applied_rules: list[PricingRule] = []

        for rule in rules:
            discount = self._rule_discount(rule, current_price, ctx, now)
            if discount <= 0:
                continue

            try:
                recorded = await self.rules.increment_usage(
                    rule.id,
                    product_id=product_id,
                    user_id=ctx.user_id,
                    discount_amount=discount,
                )
            except PricingStoreError as e:
                partial = self._build_result(product_id, base, total_discount, applied_rules)
                logger.error(
                    "pricing.rule.usage_recording_failed",
                    product_id=product_id,
                    rule_id=rule.id,
                    applied_rule_ids=[r.id for r in applied_rules],
                    error=str(e),
                )
                raise UsageRecordingError(
                    f"Failed to record usage for pricing rule {rule.id}",
                    rule_id=rule.id,
                    partial_result=partial,
                ) from e

            if not recorded:
                # Another caller used the last application concurrently
                continue

            applied_rules.append(rule.model_copy(update={"usage_count": rule.usage_count + 1}))
            total_discount += discount
            current_price -= discount

        result = self._build_result(product_id, base, total_discount, applied_rules)
        logger.info(
            "pricing.price_calculated",
            product_id=product_id,
            quantity=ctx.quantity,
            base_price=str(result.base_price),
            discounted_price=str(result.discounted_price),
            applied_rule_ids=[r.id for r in applied_rules],
        )
        return result

    async def _get_applicable_rules(
        self, product_id: str, context: PriceCalculationContext
    ) -> list[PricingRule]:
        """Active product and category rules, priority descending then ID ascending."""
        rules = list(await self.rules.list_active_rules(TargetType.PRODUCT, product_id))
        if context.category_id:
            rules.extend(
                await self.rules.list_active_rules(TargetType.CATEGORY, context.category_id)
            )

        candidates = [rule for rule in rules if rule.is_active]
        candidates.sort(key=lambda rule: (-rule.priority, rule.id))
        return candidates

    def _rule_discount(
        self,
        rule: PricingRule,
        current_price: Decimal,
        context: PriceCalculationContext,
        now: datetime,
    ) -> Decimal:
        """Discount a rule grants on the running price, zero when it does not apply."""
        if not is_within_validity_window(rule, now):
            return ZERO
        if not has_usage_remaining(rule):
            return ZERO

        try:
            if not evaluate_conditions(rule, context, now):
                return ZERO
            discount = calculate_discount(rule.actions, current_price, context.quantity)
        except (PricingError, ArithmeticError, TypeError, ValueError) as e:
            logger.warning(
                "pricing.rule.evaluation_failed",
                rule_id=rule.id,
                rule_type=str(rule.rule_type),
                error=str(e),
            )
            return ZERO

        # The running price never drops below zero
        return min(discount, max(ZERO, current_price))

    def _coerce_context(
        self,
        context: PriceCalculationContext | Mapping[str, Any] | None,
        product_id: str,
    ) -> PriceCalculationContext:
        if context is None:
            return PriceCalculationContext()
        if isinstance(context, PriceCalculationContext):
            return context
        try:
            return PriceCalculationContext.model_validate(dict(context))
        except ValidationError as e:
            raise PriceCalculationError(
                f"Invalid calculation context: {e.error_count()} error(s)",
                product_id=product_id,
            ) from e

    @staticmethod
    def _build_result(
        product_id: str,
        base_price: Decimal,
        total_discount: Decimal,
        applied_rules: list[PricingRule],
    ) -> PriceCalculation:
        # Rounded once here; every reported amount derives from the same values
        base = quantize_money(base_price)
        discount = min(quantize_money(total_discount), base)
        if base > 0:
            percentage = quantize_money(discount / base * 100, places=2)
        else:
            percentage = ZERO
        return PriceCalculation(
            product_id=product_id,
            base_price=base,
            discounted_price=base - discount,
            discount_amount=discount,
            discount_percentage=percentage,
            applied_rules=list(applied_rules),
        )

    # ==================== Bulk tier pricing ====================

    async def calculate_bulk_price(
        self,
        product_id: str,
        base_price: Decimal | int | float | str,
        quantity: int,
        customer_tier: str | None = None,
    ) -> BulkDiscount | None:
        """
        Price a quantity under the most specific matching bulk tier.

        Returns None when no tier matches or the matching tier is reserved for
        a different customer tier.
        """
        if not product_id:
            raise PriceCalculationError("Product ID is required")
        base = _to_decimal(base_price, "base price", product_id)
        if base < 0:
            raise PriceCalculationError("Base price cannot be negative", product_id=product_id)
        if quantity < 1:
            raise PriceCalculationError(
                "Quantity must be at least 1", product_id=product_id, quantity=quantity
            )

        if not settings.pricing.bulk_pricing_enabled:
            return None

        tiers = [
            tier
            for tier in await self.tiers.list_active_tiers(product_id, quantity)
            if tier.is_active
            and tier.minimum_quantity <= quantity
            and (tier.maximum_quantity is None or tier.maximum_quantity >= quantity)
        ]
        if not tiers:
            return None

        # Highest minimum quantity wins
        tier = min(tiers, key=lambda t: (-t.minimum_quantity, t.id))
        if tier.customer_tier and tier.customer_tier != customer_tier:
            logger.debug(
                "pricing.bulk_tier.customer_tier_mismatch",
                product_id=product_id,
                tier_id=tier.id,
                required_tier=tier.customer_tier,
                customer_tier=customer_tier,
            )
            return None

        original_price = quantize_money(base * quantity)
        bulk_price = calculate_tier_price(tier, base, quantity)

        logger.info(
            "pricing.bulk_price_calculated",
            product_id=product_id,
            quantity=quantity,
            tier_id=tier.id,
            bulk_price=str(bulk_price),
        )
        return BulkDiscount(
            original_price=original_price,
            bulk_price=bulk_price,
            savings=original_price - bulk_price,
            tier=tier.customer_tier or RETAIL_TIER,
            tier_id=tier.id,
            minimum_quantity=tier.minimum_quantity,
        )


__all__ = ["PricingEngine", "RETAIL_TIER"]
