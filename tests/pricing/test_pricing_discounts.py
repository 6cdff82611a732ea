"""
Tests for discount and bulk tier price arithmetic.
"""

from decimal import Decimal

import pytest

from dynamic_pricing.pricing.discounts import (
    calculate_discount,
    calculate_tier_price,
    quantize_money,
)
from dynamic_pricing.pricing.exceptions import DiscountApplicationError
from dynamic_pricing.pricing.models import ApplyTo, DiscountAction, DiscountType


def _action(discount_type, value, max_discount=None, apply_to=ApplyTo.ITEM):
    return DiscountAction(
        discount_type=discount_type,
        discount_value=Decimal(value),
        max_discount=Decimal(max_discount) if max_discount is not None else None,
        apply_to=apply_to,
    )


class TestQuantizeMoney:
    def test_rounds_half_up(self):
        assert quantize_money(Decimal("1.005")) == Decimal("1.01")
        assert quantize_money(Decimal("1.004")) == Decimal("1.00")

    def test_explicit_places(self):
        assert quantize_money(Decimal("33.3333"), places=3) == Decimal("33.333")


class TestCalculateDiscount:
    def test_percentage(self):
        action = _action(DiscountType.PERCENTAGE, "15")
        assert calculate_discount(action, Decimal("80")) == Decimal("12.00")

    def test_fixed_amount(self):
        action = _action(DiscountType.FIXED_AMOUNT, "7.5")
        assert calculate_discount(action, Decimal("80")) == Decimal("7.50")

    def test_fixed_price(self):
        action = _action(DiscountType.FIXED_PRICE, "60")
        assert calculate_discount(action, Decimal("80")) == Decimal("20.00")

    def test_fixed_price_above_current_clamps_to_zero(self):
        action = _action(DiscountType.FIXED_PRICE, "120")
        assert calculate_discount(action, Decimal("100")) == Decimal("0")

    def test_max_discount_cap(self):
        action = _action(DiscountType.PERCENTAGE, "50", max_discount="20")
        assert calculate_discount(action, Decimal("100")) == Decimal("20.00")

    def test_max_discount_not_reached(self):
        action = _action(DiscountType.PERCENTAGE, "10", max_discount="20")
        assert calculate_discount(action, Decimal("100")) == Decimal("10.00")

    def test_order_scope_divides_by_quantity(self):
        action = _action(DiscountType.FIXED_AMOUNT, "10", apply_to=ApplyTo.ORDER)
        assert calculate_discount(action, Decimal("50"), quantity=4) == Decimal("2.50")

    def test_order_scope_caps_before_dividing(self):
        action = _action(
            DiscountType.FIXED_AMOUNT, "100", max_discount="40", apply_to=ApplyTo.ORDER
        )
        assert calculate_discount(action, Decimal("500"), quantity=4) == Decimal("10.00")

    def test_item_scope_ignores_quantity(self):
        action = _action(DiscountType.FIXED_AMOUNT, "10")
        assert calculate_discount(action, Decimal("50"), quantity=4) == Decimal("10.00")

    def test_invalid_quantity(self):
        action = _action(DiscountType.PERCENTAGE, "10")
        with pytest.raises(DiscountApplicationError):
            calculate_discount(action, Decimal("50"), quantity=0)

    def test_unknown_discount_type(self):
        action = DiscountAction.model_construct(
            discount_type="buy_one_get_one",
            discount_value=Decimal("1"),
            max_discount=None,
            apply_to=ApplyTo.ITEM,
        )
        with pytest.raises(DiscountApplicationError, match="Unsupported discount type"):
            calculate_discount(action, Decimal("50"))


class TestCalculateTierPrice:
    def test_percentage(self, make_tier):
        tier = make_tier(discount_type=DiscountType.PERCENTAGE, discount_value="20")
        assert calculate_tier_price(tier, Decimal("20"), 15) == Decimal("240.00")

    def test_fixed_amount(self, make_tier):
        tier = make_tier(discount_type=DiscountType.FIXED_AMOUNT, discount_value="50")
        assert calculate_tier_price(tier, Decimal("20"), 15) == Decimal("250.00")

    def test_fixed_price_is_per_unit(self, make_tier):
        tier = make_tier(discount_type=DiscountType.FIXED_PRICE, discount_value="15")
        assert calculate_tier_price(tier, Decimal("20"), 10) == Decimal("150.00")

    def test_never_negative(self, make_tier):
        tier = make_tier(discount_type=DiscountType.FIXED_AMOUNT, discount_value="1000")
        assert calculate_tier_price(tier, Decimal("20"), 10) == Decimal("0")
