"""
Discount application.

Turns a discount definition and a running price into a discount amount,
and prices a quantity under a bulk tier.
"""

from decimal import ROUND_HALF_UP, Decimal

from dynamic_pricing.pricing.exceptions import DiscountApplicationError
from dynamic_pricing.pricing.models import ApplyTo, BulkPricingTier, DiscountAction, DiscountType
from dynamic_pricing.settings import settings

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def quantize_money(value: Decimal, places: int | None = None) -> Decimal:
    """Round a money value to the configured number of decimal places."""
    places = settings.pricing.price_decimal_places if places is None else places
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def calculate_discount(
    action: DiscountAction, current_price: Decimal, quantity: int = 1
) -> Decimal:
    """
    Compute the discount one rule grants on the running price.

    The raw amount is capped by ``max_discount``, divided by ``quantity`` for
    order-scoped actions, and never negative. The amount is not rounded;
    callers round once when they report a price. A zero result means the
    rule does not apply.

    Raises:
        DiscountApplicationError: Unknown discount type or a quantity below one.
    """
    if quantity < 1:
        raise DiscountApplicationError(f"Quantity must be at least 1, got {quantity}")

    value = Decimal(action.discount_value)
    if action.discount_type == DiscountType.PERCENTAGE:
        discount = current_price * value / HUNDRED
    elif action.discount_type == DiscountType.FIXED_AMOUNT:
        discount = value
    elif action.discount_type == DiscountType.FIXED_PRICE:
        # Negative when the target price is above the running price
        discount = current_price - value
    else:
        raise DiscountApplicationError(
            f"Unsupported discount type: {action.discount_type}",
            discount_type=str(action.discount_type),
        )

    if action.max_discount is not None and discount > action.max_discount:
        discount = Decimal(action.max_discount)

    if action.apply_to == ApplyTo.ORDER:
        discount = discount / Decimal(quantity)

    return max(ZERO, discount)


def calculate_tier_price(tier: BulkPricingTier, base_price: Decimal, quantity: int) -> Decimal:
    """
    Price ``quantity`` units under a bulk tier.

    ``fixed_price`` is a per-unit price, so the total is value times quantity.
    The result is never negative.
    """
    original_price = base_price * quantity
    value = Decimal(tier.discount_value)

    if tier.discount_type == DiscountType.PERCENTAGE:
        bulk_price = original_price * (HUNDRED - value) / HUNDRED
    elif tier.discount_type == DiscountType.FIXED_AMOUNT:
        bulk_price = original_price - value
    elif tier.discount_type == DiscountType.FIXED_PRICE:
        bulk_price = value * quantity
    else:
        raise DiscountApplicationError(
            f"Unsupported discount type: {tier.discount_type}",
            discount_type=str(tier.discount_type),
        )

    return quantize_money(max(ZERO, bulk_price))


__all__ = ["quantize_money", "calculate_discount", "calculate_tier_price"]
