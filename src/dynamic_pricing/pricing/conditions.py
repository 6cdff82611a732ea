"""
Condition evaluation for pricing rules.

Pure functions deciding whether a rule is eligible for a calculation context
at a given moment. Absent condition fields never constrain.
"""

from datetime import UTC, datetime, time
from zoneinfo import ZoneInfo

from dynamic_pricing.pricing.exceptions import ConditionEvaluationError
from dynamic_pricing.pricing.models import (
    CustomerTierConditions,
    InventoryBasedConditions,
    PriceCalculationContext,
    PricingRule,
    QuantityBasedConditions,
    RuleType,
    TimeBasedConditions,
)
from dynamic_pricing.settings import settings


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def is_within_validity_window(rule: PricingRule, now: datetime) -> bool:
    """Check the inclusive ``[start_date, end_date]`` window."""
    now = _aware(now)
    if rule.start_date is not None and _aware(rule.start_date) > now:
        return False
    if rule.end_date is not None and _aware(rule.end_date) < now:
        return False
    return True


def has_usage_remaining(rule: PricingRule) -> bool:
    """Check whether the rule may be applied again."""
    return rule.usage_limit is None or rule.usage_count < rule.usage_limit


def sunday_based_weekday(moment: datetime) -> int:
    """Weekday number where 0 is Sunday and 6 is Saturday."""
    return moment.isoweekday() % 7


def _truncate_to(current: time, bound: time) -> time:
    """Drop the parts of ``current`` finer than the precision ``bound`` is given in."""
    if bound.microsecond:
        return current
    if bound.second:
        return current.replace(microsecond=0)
    return current.replace(second=0, microsecond=0)


def _time_based(conditions: TimeBasedConditions, now: datetime) -> bool:
    local = _aware(now).astimezone(ZoneInfo(settings.pricing.timezone))
    current = local.time().replace(tzinfo=None)

    # Windows wrapping midnight (start after end) are never satisfied
    if conditions.time_start is not None and current < conditions.time_start:
        return False
    # An end of 17:00 covers the whole 17:00 minute
    end = conditions.time_end
    if end is not None and _truncate_to(current, end) > end:
        return False
    if conditions.day_of_week and sunday_based_weekday(local) not in conditions.day_of_week:
        return False
    return True


def _quantity_based(conditions: QuantityBasedConditions, quantity: int) -> bool:
    if conditions.quantity_min is not None and quantity < conditions.quantity_min:
        return False
    if conditions.quantity_max is not None and quantity > conditions.quantity_max:
        return False
    return True


def _customer_tier(conditions: CustomerTierConditions, customer_tier: str | None) -> bool:
    if not conditions.customer_tiers:
        return True
    return customer_tier is not None and customer_tier in conditions.customer_tiers


def _inventory_based(conditions: InventoryBasedConditions, current_stock: int | None) -> bool:
    # No stock information means no inventory gating
    if conditions.inventory_threshold is None or current_stock is None:
        return True
    return current_stock <= conditions.inventory_threshold


def evaluate_conditions(
    rule: PricingRule,
    context: PriceCalculationContext,
    now: datetime | None = None,
) -> bool:
    """
    Decide whether a rule's conditions hold for the context.

    Only the predicate selected by ``rule.rule_type`` is evaluated. Validity
    window and usage limit are checked separately by the engine.

    Raises:
        ConditionEvaluationError: The condition payload does not match the rule type.
    """
    now = now or datetime.now(UTC)
    conditions = rule.conditions

    if rule.rule_type == RuleType.TIME_BASED and isinstance(conditions, TimeBasedConditions):
        return _time_based(conditions, now)
    if rule.rule_type == RuleType.QUANTITY_BASED and isinstance(
        conditions, QuantityBasedConditions
    ):
        return _quantity_based(conditions, context.quantity)
    if rule.rule_type == RuleType.CUSTOMER_TIER and isinstance(conditions, CustomerTierConditions):
        return _customer_tier(conditions, context.customer_tier)
    if rule.rule_type == RuleType.INVENTORY_BASED and isinstance(
        conditions, InventoryBasedConditions
    ):
        return _inventory_based(conditions, context.current_stock)

    raise ConditionEvaluationError(
        f"Conditions of kind '{getattr(conditions, 'kind', None)}' cannot be evaluated "
        f"for rule type '{rule.rule_type}'",
        rule_id=rule.id,
    )


__all__ = [
    "evaluate_conditions",
    "is_within_validity_window",
    "has_usage_remaining",
    "sunday_based_weekday",
]
