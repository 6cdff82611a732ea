"""
Rule and bulk tier stores.

The pricing engine depends only on the ``RuleRepository`` and
``BulkTierRepository`` protocols. The SQLAlchemy implementations below are the
default stores; rows are validated into pydantic models at this boundary so
the engine never sees an ill-typed payload.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Protocol
from uuid import uuid4

import structlog
from pydantic import ValidationError
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dynamic_pricing.pricing.entities import BulkPricingTierTable, PricingRuleTable, RuleUsageTable
from dynamic_pricing.pricing.exceptions import PricingStoreError
from dynamic_pricing.pricing.models import BulkPricingTier, PricingRule, RuleType, TargetType
from dynamic_pricing.settings import settings

logger = structlog.get_logger(__name__)


def generate_usage_id() -> str:
    """Generate unique usage record ID."""
    return f"usage_{uuid4().hex[:12]}"


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps returned by drivers without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def rule_from_row(row: PricingRuleTable) -> PricingRule:
    """Convert a database row to a validated ``PricingRule``."""
    return PricingRule(
        id=row.id,
        name=row.name,
        description=row.description,
        target_type=row.target_type,
        target_id=row.target_id,
        rule_type=row.rule_type,
        conditions=dict(row.conditions or {}),
        actions=dict(row.actions or {}),
        priority=row.priority or 0,
        start_date=_as_utc(row.start_date),
        end_date=_as_utc(row.end_date),
        usage_limit=row.usage_limit,
        usage_count=row.usage_count or 0,
        is_active=row.is_active,
        created_by=row.created_by,
        metadata=dict(row.metadata_json or {}),
        created_at=_as_utc(row.created_at) or datetime.now(UTC),
        updated_at=_as_utc(row.updated_at),
    )


def tier_from_row(row: BulkPricingTierTable) -> BulkPricingTier:
    """Convert a database row to a validated ``BulkPricingTier``."""
    return BulkPricingTier(
        id=row.id,
        product_id=row.product_id,
        minimum_quantity=row.minimum_quantity,
        maximum_quantity=row.maximum_quantity,
        discount_type=row.discount_type,
        discount_value=Decimal(row.discount_value),
        customer_tier=row.customer_tier,
        is_active=row.is_active,
        created_at=_as_utc(row.created_at) or datetime.now(UTC),
        updated_at=_as_utc(row.updated_at),
    )


class RuleRepository(Protocol):
    """Query shape the pricing engine needs from a rule store."""

    async def list_active_rules(
        self,
        target_type: TargetType,
        target_id: str,
        rule_type: RuleType | None = None,
    ) -> list[PricingRule]:
        """Active rules for one scope key, ordered by priority descending."""
        ...

    async def increment_usage(
        self,
        rule_id: str,
        *,
        product_id: str | None = None,
        user_id: str | None = None,
        discount_amount: Decimal | None = None,
    ) -> bool:
        """Count one application; False when the usage limit was already reached."""
        ...


class BulkTierRepository(Protocol):
    """Query shape the pricing engine needs from a bulk tier store."""

    async def list_active_tiers(self, product_id: str, quantity: int) -> list[BulkPricingTier]:
        """Active tiers whose quantity bracket contains ``quantity``."""
        ...


class SQLAlchemyRuleRepository:
    """Rule store backed by the ``pricing_rules`` table."""

    def __init__(self, session: AsyncSession, record_usage: bool | None = None) -> None:
        self.session = session
        self.record_usage = (
            settings.pricing.record_rule_usage if record_usage is None else record_usage
        )

    async def list_active_rules(
        self,
        target_type: TargetType,
        target_id: str,
        rule_type: RuleType | None = None,
    ) -> list[PricingRule]:
        stmt = select(PricingRuleTable).where(
            PricingRuleTable.target_type == TargetType(target_type).value,
            PricingRuleTable.target_id == target_id,
            PricingRuleTable.is_active.is_(True),
        )
        if rule_type is not None:
            stmt = stmt.where(PricingRuleTable.rule_type == RuleType(rule_type).value)
        stmt = stmt.order_by(PricingRuleTable.priority.desc(), PricingRuleTable.id.asc())
        # usage_count is changed by bulk UPDATEs that bypass the identity map
        stmt = stmt.execution_options(populate_existing=True)

        try:
            result = await self.session.execute(stmt)
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(
                "pricing.rules.query_failed",
                target_type=str(target_type),
                target_id=target_id,
                error=str(e),
            )
            raise PricingStoreError(
                "Failed to load pricing rules",
                operation="list_active_rules",
                context={"target_id": target_id},
            ) from e

        rules: list[PricingRule] = []
        for row in rows:
            try:
                rules.append(rule_from_row(row))
            except ValidationError as e:
                # Malformed stored payloads are treated as not applicable
                logger.warning(
                    "pricing.rule.invalid_payload",
                    rule_id=row.id,
                    error_count=e.error_count(),
                    error=str(e),
                )
        return rules

    async def increment_usage(
        self,
        rule_id: str,
        *,
        product_id: str | None = None,
        user_id: str | None = None,
        discount_amount: Decimal | None = None,
    ) -> bool:
        # Conditional update so concurrent callers cannot exceed usage_limit
        stmt = (
            update(PricingRuleTable)
            .where(
                PricingRuleTable.id == rule_id,
                or_(
                    PricingRuleTable.usage_limit.is_(None),
                    PricingRuleTable.usage_count < PricingRuleTable.usage_limit,
                ),
            )
            .values(usage_count=PricingRuleTable.usage_count + 1)
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.session.execute(stmt)
            incremented = result.rowcount == 1
            if incremented and self.record_usage:
                self.session.add(
                    RuleUsageTable(
                        id=generate_usage_id(),
                        rule_id=rule_id,
                        product_id=product_id,
                        user_id=user_id,
                        discount_amount=discount_amount,
                        used_at=datetime.now(UTC),
                    )
                )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("pricing.rule.usage_increment_failed", rule_id=rule_id, error=str(e))
            raise PricingStoreError(
                "Failed to record pricing rule usage",
                operation="increment_usage",
                context={"rule_id": rule_id},
            ) from e

        if not incremented:
            logger.info("pricing.rule.usage_limit_reached", rule_id=rule_id)
        return incremented


class SQLAlchemyBulkTierRepository:
    """Bulk tier store backed by the ``bulk_pricing_tiers`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_active_tiers(self, product_id: str, quantity: int) -> list[BulkPricingTier]:
        stmt = (
            select(BulkPricingTierTable)
            .where(
                BulkPricingTierTable.product_id == product_id,
                BulkPricingTierTable.is_active.is_(True),
                BulkPricingTierTable.minimum_quantity <= quantity,
                or_(
                    BulkPricingTierTable.maximum_quantity.is_(None),
                    BulkPricingTierTable.maximum_quantity >= quantity,
                ),
            )
            .order_by(BulkPricingTierTable.minimum_quantity.desc(), BulkPricingTierTable.id.asc())
        )

        try:
            result = await self.session.execute(stmt)
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(
                "pricing.bulk_tiers.query_failed",
                product_id=product_id,
                quantity=quantity,
                error=str(e),
            )
            raise PricingStoreError(
                "Failed to load bulk pricing tiers",
                operation="list_active_tiers",
                context={"product_id": product_id},
            ) from e

        tiers: list[BulkPricingTier] = []
        for row in rows:
            try:
                tiers.append(tier_from_row(row))
            except ValidationError as e:
                logger.warning(
                    "pricing.bulk_tier.invalid_payload",
                    tier_id=row.id,
                    error_count=e.error_count(),
                    error=str(e),
                )
        return tiers


__all__ = [
    "RuleRepository",
    "BulkTierRepository",
    "SQLAlchemyRuleRepository",
    "SQLAlchemyBulkTierRepository",
    "rule_from_row",
    "tier_from_row",
    "generate_usage_id",
]
