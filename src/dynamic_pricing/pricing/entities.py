"""
Pricing database tables.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dynamic_pricing.db import Base, TimestampMixin


class PricingRuleTable(TimestampMixin, Base):
    """SQLAlchemy table for pricing rules."""

    __tablename__ = "pricing_rules"

    # Primary key
    id: Mapped[str] = mapped_column(String(50), primary_key=True)

    # Rule details
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Scope
    target_type: Mapped[str] = mapped_column(String(20), nullable=False)  # product, category
    target_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Condition and action payloads (JSON)
    rule_type: Mapped[str] = mapped_column(String(30), nullable=False)
    conditions: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    actions: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Time constraints
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Usage limits
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    __table_args__ = (
        Index("ix_pricing_rules_scope_active", "target_type", "target_id", "is_active"),
        Index("ix_pricing_rules_priority", "priority"),
        Index("ix_pricing_rules_dates", "start_date", "end_date"),
    )


class BulkPricingTierTable(TimestampMixin, Base):
    """SQLAlchemy table for quantity bulk tiers."""

    __tablename__ = "bulk_pricing_tiers"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Quantity bracket
    minimum_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    maximum_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Discount configuration
    discount_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # percentage, fixed_amount, fixed_price
    discount_value: Mapped[Decimal] = mapped_column(Numeric(15, 4), nullable=False)

    customer_tier: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_bulk_tiers_product_active", "product_id", "is_active"),
        Index("ix_bulk_tiers_product_min_qty", "product_id", "minimum_quantity"),
    )


class RuleUsageTable(Base):
    """SQLAlchemy table for tracking pricing rule usage."""

    __tablename__ = "pricing_rule_usage"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)

    # References
    rule_id: Mapped[str] = mapped_column(String(50), nullable=False)
    product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 4), nullable=True)

    used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("ix_pricing_rule_usage_rule", "rule_id"),
        Index("ix_pricing_rule_usage_user", "user_id"),
        Index("ix_pricing_rule_usage_used_at", "used_at"),
    )


__all__ = ["PricingRuleTable", "BulkPricingTierTable", "RuleUsageTable"]
