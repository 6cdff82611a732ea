"""
Pricing engine models.

Pydantic models for pricing rules, bulk tiers, calculation context and results.
Rule conditions are a discriminated union keyed by ``kind``, which always
matches the owning rule's ``rule_type``.
"""

from datetime import UTC, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TargetType(str, Enum):
    """Scope a pricing rule applies to."""

    PRODUCT = "product"
    CATEGORY = "category"


class RuleType(str, Enum):
    """Selects which condition predicate a rule uses."""

    TIME_BASED = "time_based"
    QUANTITY_BASED = "quantity_based"
    CUSTOMER_TIER = "customer_tier"
    INVENTORY_BASED = "inventory_based"


class DiscountType(str, Enum):
    """How a discount value is interpreted."""

    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FIXED_PRICE = "fixed_price"


class ApplyTo(str, Enum):
    """Whether a discount is per unit or amortized across the order."""

    ITEM = "item"
    ORDER = "order"


# ============================================================
# Conditions (tagged by rule type)
# ============================================================


class TimeBasedConditions(BaseModel):
    """Time-of-day window and weekday restriction."""

    kind: Literal["time_based"] = "time_based"
    time_start: time | None = Field(None, description="Inclusive start of the daily window")
    time_end: time | None = Field(
        None, description="Inclusive end of the daily window, to the precision it is given in"
    )
    day_of_week: list[Annotated[int, Field(ge=0, le=6)]] = Field(
        default_factory=list, description="Allowed weekdays, 0 = Sunday"
    )


class QuantityBasedConditions(BaseModel):
    """Quantity bounds."""

    kind: Literal["quantity_based"] = "quantity_based"
    quantity_min: int | None = Field(None, ge=1, description="Minimum quantity (inclusive)")
    quantity_max: int | None = Field(None, ge=1, description="Maximum quantity (inclusive)")

    @model_validator(mode="after")
    def validate_bounds(self) -> "QuantityBasedConditions":
        if (
            self.quantity_min is not None
            and self.quantity_max is not None
            and self.quantity_min > self.quantity_max
        ):
            raise ValueError("quantity_min cannot be greater than quantity_max")
        return self


class CustomerTierConditions(BaseModel):
    """Customer tier membership."""

    kind: Literal["customer_tier"] = "customer_tier"
    customer_tiers: list[str] = Field(default_factory=list, description="Eligible customer tiers")


class InventoryBasedConditions(BaseModel):
    """Stock level gating."""

    kind: Literal["inventory_based"] = "inventory_based"
    inventory_threshold: int | None = Field(
        None, description="Rule applies when current stock is at or below this level"
    )


RuleConditions = Annotated[
    TimeBasedConditions
    | QuantityBasedConditions
    | CustomerTierConditions
    | InventoryBasedConditions,
    Field(discriminator="kind"),
]


class DiscountAction(BaseModel):
    """Discount definition of a pricing rule."""

    discount_type: DiscountType = Field(description="Type of discount")
    discount_value: Decimal = Field(ge=0, description="Discount value")
    max_discount: Decimal | None = Field(None, ge=0, description="Per-application discount cap")
    apply_to: ApplyTo = Field(ApplyTo.ITEM, description="Per item or amortized per order")


def _utc(value: datetime) -> datetime:
    # Naive datetimes are taken as UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _tag_conditions(data: Any) -> Any:
    """Fill in the condition ``kind`` from the rule type when it is omitted."""
    if not isinstance(data, dict):
        return data
    rule_type = data.get("rule_type")
    if rule_type is None:
        return data
    kind = rule_type.value if isinstance(rule_type, RuleType) else str(rule_type)
    conditions = data.get("conditions")
    if conditions is None:
        return {**data, "conditions": {"kind": kind}}
    if isinstance(conditions, dict) and "kind" not in conditions:
        return {**data, "conditions": {**conditions, "kind": kind}}
    return data


# ============================================================
# Pricing rules
# ============================================================


class PricingRuleBase(BaseModel):
    """Fields shared by stored rules and creation requests."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255, description="Rule name")
    description: str | None = Field(None, description="Rule description")

    target_type: TargetType = Field(description="Product or category scope")
    target_id: str = Field(min_length=1, description="Product or category identifier")

    rule_type: RuleType = Field(description="Condition predicate type")
    conditions: RuleConditions
    actions: DiscountAction

    priority: int = Field(0, description="Higher values are evaluated first")

    start_date: datetime | None = Field(None, description="Inclusive start of validity")
    end_date: datetime | None = Field(None, description="Inclusive end of validity")

    usage_limit: int | None = Field(None, ge=0, description="Maximum successful applications")
    is_active: bool = Field(True, description="Whether the rule is a candidate")

    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def tag_conditions(cls, data: Any) -> Any:
        return _tag_conditions(data)

    @model_validator(mode="after")
    def validate_rule(self) -> "PricingRuleBase":
        if self.conditions.kind != self.rule_type.value:
            raise ValueError(
                f"conditions of kind '{self.conditions.kind}' do not match rule_type "
                f"'{self.rule_type.value}'"
            )
        if self.start_date and self.end_date and _utc(self.start_date) > _utc(self.end_date):
            raise ValueError("start_date cannot be after end_date")
        return self


class PricingRule(PricingRuleBase):
    """Stored pricing rule."""

    id: str = Field(description="Rule identifier")
    usage_count: int = Field(0, ge=0, description="Successful applications so far")
    created_by: str | None = Field(None, description="User who created the rule")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None


class PricingRuleCreateRequest(PricingRuleBase):
    """Request model for creating pricing rules."""


class PricingRuleUpdateRequest(BaseModel):
    """
    Partial update of a pricing rule.

    ``conditions`` and ``actions`` are merged key by key into the stored
    payloads; the merged rule is validated as a whole.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    target_type: TargetType | None = None
    target_id: str | None = Field(None, min_length=1)
    rule_type: RuleType | None = None
    conditions: dict[str, Any] | None = None
    actions: dict[str, Any] | None = None
    priority: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    usage_limit: int | None = None
    is_active: bool | None = None
    metadata: dict[str, Any] | None = None


class PricingRuleFilters(BaseModel):
    """Filters for listing pricing rules."""

    target_type: TargetType | None = None
    target_id: str | None = None
    rule_type: RuleType | None = None
    is_active: bool | None = None
    limit: int | None = Field(None, ge=1, le=1000)
    offset: int = Field(0, ge=0)


# ============================================================
# Bulk tiers
# ============================================================


class BulkPricingTierBase(BaseModel):
    """Quantity bracket with its own discount."""

    model_config = ConfigDict(str_strip_whitespace=True)

    product_id: str = Field(min_length=1)
    minimum_quantity: int = Field(ge=1, description="Lowest quantity in the bracket")
    maximum_quantity: int | None = Field(None, ge=1, description="Highest quantity, open if None")
    discount_type: DiscountType
    discount_value: Decimal = Field(ge=0)
    customer_tier: str | None = Field(None, description="Restrict the tier to one customer tier")
    is_active: bool = True

    @model_validator(mode="after")
    def validate_bounds(self) -> "BulkPricingTierBase":
        if self.maximum_quantity is not None and self.maximum_quantity < self.minimum_quantity:
            raise ValueError("maximum_quantity cannot be lower than minimum_quantity")
        return self


class BulkPricingTier(BulkPricingTierBase):
    """Stored bulk pricing tier."""

    id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None


class BulkPricingTierCreateRequest(BulkPricingTierBase):
    """Request model for creating bulk tiers."""


# ============================================================
# Calculation context and results
# ============================================================


class PriceCalculationContext(BaseModel):
    """Runtime context a price is calculated for."""

    model_config = ConfigDict(extra="forbid")

    quantity: int = Field(1, ge=1, description="Units being priced")
    customer_tier: str | None = None
    category_id: str | None = None
    current_stock: int | None = None
    user_id: str | None = None


class BulkDiscount(BaseModel):
    """Result of bulk tier pricing."""

    original_price: Decimal
    bulk_price: Decimal
    savings: Decimal
    tier: str = Field(description="Customer tier of the matched bracket, or 'retail'")
    tier_id: str
    minimum_quantity: int


class PriceCalculation(BaseModel):
    """Result of rule-based price calculation."""

    product_id: str
    base_price: Decimal
    discounted_price: Decimal
    discount_amount: Decimal
    discount_percentage: Decimal
    applied_rules: list[PricingRule] = Field(default_factory=list)
    bulk_discount: BulkDiscount | None = None
    calculated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class PriceCalculationRequest(BaseModel):
    """Request body for a rule-based price calculation."""

    product_id: str = Field(min_length=1)
    base_price: Decimal = Field(ge=0)
    context: PriceCalculationContext = Field(default_factory=PriceCalculationContext)


class BulkPriceCalculationRequest(BaseModel):
    """Request body for a bulk tier calculation."""

    product_id: str = Field(min_length=1)
    base_price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)
    customer_tier: str | None = None


__all__ = [
    "TargetType",
    "RuleType",
    "DiscountType",
    "ApplyTo",
    "TimeBasedConditions",
    "QuantityBasedConditions",
    "CustomerTierConditions",
    "InventoryBasedConditions",
    "RuleConditions",
    "DiscountAction",
    "PricingRuleBase",
    "PricingRule",
    "PricingRuleCreateRequest",
    "PricingRuleUpdateRequest",
    "PricingRuleFilters",
    "BulkPricingTierBase",
    "BulkPricingTier",
    "BulkPricingTierCreateRequest",
    "PriceCalculationContext",
    "BulkDiscount",
    "PriceCalculation",
    "PriceCalculationRequest",
    "BulkPriceCalculationRequest",
]
