"""
Pricing rule administration.

Create, update, delete and list pricing rules and bulk tiers. Every rule is
validated as a whole before it is stored, so the engine only ever loads
well-formed rules.
"""

from collections import defaultdict
from itertools import combinations
from typing import Any
from uuid import uuid4

import structlog
from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dynamic_pricing.logging import log_audit_event
from dynamic_pricing.pricing.entities import BulkPricingTierTable, PricingRuleTable
from dynamic_pricing.pricing.exceptions import (
    BulkTierNotFoundError,
    InvalidBulkTierError,
    InvalidPricingRuleError,
    PricingRuleNotFoundError,
    PricingStoreError,
)
from dynamic_pricing.pricing.models import (
    BulkPricingTier,
    BulkPricingTierCreateRequest,
    DiscountAction,
    DiscountType,
    PricingRule,
    PricingRuleCreateRequest,
    PricingRuleFilters,
    PricingRuleUpdateRequest,
)
from dynamic_pricing.pricing.repository import rule_from_row, tier_from_row
from dynamic_pricing.settings import settings

logger = structlog.get_logger(__name__)


def generate_rule_id() -> str:
    """Generate unique rule ID."""
    return f"rule_{uuid4().hex[:12]}"


def generate_tier_id() -> str:
    """Generate unique bulk tier ID."""
    return f"tier_{uuid4().hex[:12]}"


def _error_details(error: ValidationError) -> list[dict[str, Any]]:
    """JSON-safe summary of pydantic validation errors."""
    return [
        {
            "loc": ".".join(str(part) for part in err["loc"]),
            "msg": err["msg"],
            "type": err["type"],
        }
        for err in error.errors()
    ]


def _check_percentage(discount_type: DiscountType, value: Any) -> str | None:
    limit = settings.pricing.max_discount_percentage
    if discount_type == DiscountType.PERCENTAGE and value > limit:
        return f"Percentage discount cannot exceed {limit}%"
    return None


class PricingRuleService:
    """Administrative operations on pricing rules and bulk tiers."""

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session

    # ============================================================
    # Rules
    # ============================================================

    async def create_rule(
        self,
        rule_data: PricingRuleCreateRequest | dict[str, Any],
        created_by: str | None = None,
    ) -> PricingRule:
        """
        Validate and store a new pricing rule.

        Raises:
            InvalidPricingRuleError: The rule definition is not valid.
            PricingStoreError: The rule could not be persisted.
        """
        if isinstance(rule_data, dict):
            try:
                rule_data = PricingRuleCreateRequest.model_validate(rule_data)
            except ValidationError as e:
                raise InvalidPricingRuleError(
                    "Invalid pricing rule definition", validation_errors=_error_details(e)
                ) from e

        self._validate_discount_limits(rule_data.actions)

        payload = rule_data.model_dump(mode="json")
        row = PricingRuleTable(
            id=generate_rule_id(),
            name=rule_data.name,
            description=rule_data.description,
            target_type=rule_data.target_type.value,
            target_id=rule_data.target_id,
            rule_type=rule_data.rule_type.value,
            conditions=payload["conditions"],
            actions=payload["actions"],
            priority=rule_data.priority,
            start_date=rule_data.start_date,
            end_date=rule_data.end_date,
            usage_limit=rule_data.usage_limit,
            usage_count=0,
            is_active=rule_data.is_active,
            created_by=created_by,
            metadata_json=rule_data.metadata,
        )
        self.db.add(row)
        await self._commit("create_rule", rule_id=row.id)
        await self.db.refresh(row)

        rule = rule_from_row(row)
        log_audit_event(
            "pricing_rule.created",
            resource_type="pricing_rule",
            resource_id=rule.id,
            user_id=created_by,
            rule_type=rule.rule_type.value,
            target_id=rule.target_id,
        )
        logger.info("pricing.rule.created", rule_id=rule.id, name=rule.name, priority=rule.priority)
        return rule

    async def get_rule(self, rule_id: str) -> PricingRule:
        """Get a pricing rule by ID."""
        row = await self._get_rule_row(rule_id)
        return rule_from_row(row)

    async def list_rules(self, filters: PricingRuleFilters | None = None) -> list[PricingRule]:
        """List rules ordered by priority descending, then ID."""
        filters = filters or PricingRuleFilters()

        stmt = select(PricingRuleTable)
        if filters.target_type is not None:
            stmt = stmt.where(PricingRuleTable.target_type == filters.target_type.value)
        if filters.target_id is not None:
            stmt = stmt.where(PricingRuleTable.target_id == filters.target_id)
        if filters.rule_type is not None:
            stmt = stmt.where(PricingRuleTable.rule_type == filters.rule_type.value)
        if filters.is_active is not None:
            stmt = stmt.where(PricingRuleTable.is_active.is_(filters.is_active))

        stmt = stmt.order_by(PricingRuleTable.priority.desc(), PricingRuleTable.id.asc())
        stmt = stmt.execution_options(populate_existing=True)
        limit = filters.limit or settings.pricing.default_page_size
        stmt = stmt.offset(filters.offset).limit(limit)

        rows = await self._fetch_all(stmt, "list_rules")
        rules: list[PricingRule] = []
        for row in rows:
            try:
                rules.append(rule_from_row(row))
            except ValidationError as e:
                logger.warning("pricing.rule.invalid_payload", rule_id=row.id, error=str(e))
        return rules

    async def update_rule(
        self,
        rule_id: str,
        updates: PricingRuleUpdateRequest | dict[str, Any],
        updated_by: str | None = None,
    ) -> PricingRule:
        """
        Apply a partial update and re-validate the merged rule.

        ``conditions`` and ``actions`` are merged key by key. When ``rule_type``
        changes, the stored conditions are discarded and only the supplied ones
        are kept.
        """
        if isinstance(updates, dict):
            try:
                updates = PricingRuleUpdateRequest.model_validate(updates)
            except ValidationError as e:
                raise InvalidPricingRuleError(
                    "Invalid pricing rule update",
                    rule_id=rule_id,
                    validation_errors=_error_details(e),
                ) from e

        row = await self._get_rule_row(rule_id)
        current = rule_from_row(row)
        changes = updates.model_dump(exclude_unset=True)

        merged = current.model_dump(mode="json")
        for field, value in changes.items():
            if field in ("conditions", "actions"):
                continue
            merged[field] = value

        type_changed = (
            "rule_type" in changes
            and changes["rule_type"] is not None
            and changes["rule_type"] != current.rule_type
        )
        base_conditions = {} if type_changed else current.conditions.model_dump(mode="json")
        base_conditions.pop("kind", None)
        merged["conditions"] = {**base_conditions, **(changes.get("conditions") or {})}
        merged["actions"] = {
            **current.actions.model_dump(mode="json"),
            **(changes.get("actions") or {}),
        }

        try:
            rule = PricingRule.model_validate(merged)
        except ValidationError as e:
            raise InvalidPricingRuleError(
                "Updated pricing rule is not valid",
                rule_id=rule_id,
                validation_errors=_error_details(e),
            ) from e
        self._validate_discount_limits(rule.actions, rule_id)

        payload = rule.model_dump(mode="json")
        row.name = rule.name
        row.description = rule.description
        row.target_type = rule.target_type.value
        row.target_id = rule.target_id
        row.rule_type = rule.rule_type.value
        row.conditions = payload["conditions"]
        row.actions = payload["actions"]
        row.priority = rule.priority
        row.start_date = rule.start_date
        row.end_date = rule.end_date
        row.usage_limit = rule.usage_limit
        row.is_active = rule.is_active
        row.metadata_json = rule.metadata

        await self._commit("update_rule", rule_id=rule_id)
        await self.db.refresh(row)

        log_audit_event(
            "pricing_rule.updated",
            resource_type="pricing_rule",
            resource_id=rule_id,
            user_id=updated_by,
            changed_fields=sorted(changes),
        )
        logger.info("pricing.rule.updated", rule_id=rule_id, changed_fields=sorted(changes))
        return rule_from_row(row)

    async def delete_rule(self, rule_id: str, deleted_by: str | None = None) -> None:
        """Hard delete a pricing rule."""
        row = await self._get_rule_row(rule_id)
        await self.db.delete(row)
        await self._commit("delete_rule", rule_id=rule_id)

        log_audit_event(
            "pricing_rule.deleted",
            resource_type="pricing_rule",
            resource_id=rule_id,
            user_id=deleted_by,
        )
        logger.info("pricing.rule.deleted", rule_id=rule_id)

    async def activate_rule(self, rule_id: str, user_id: str | None = None) -> PricingRule:
        """Mark a rule as a pricing candidate."""
        return await self._set_active(rule_id, True, user_id)

    async def deactivate_rule(self, rule_id: str, user_id: str | None = None) -> PricingRule:
        """Exclude a rule from pricing without deleting it."""
        return await self._set_active(rule_id, False, user_id)

    async def detect_rule_conflicts(self) -> list[dict[str, Any]]:
        """
        Find active rules whose relative order depends only on their IDs.

        Two rules conflict when they target the same product or category with
        the same priority.
        """
        stmt = select(PricingRuleTable).where(PricingRuleTable.is_active.is_(True))
        rows = await self._fetch_all(stmt, "detect_rule_conflicts")

        groups: dict[tuple[str, str, int], list[PricingRuleTable]] = defaultdict(list)
        for row in rows:
            groups[(row.target_type, row.target_id, row.priority)].append(row)

        conflicts: list[dict[str, Any]] = []
        for (target_type, target_id, priority), group in groups.items():
            for first, second in combinations(sorted(group, key=lambda r: r.id), 2):
                conflicts.append(
                    {
                        "type": "priority_overlap",
                        "rule1_id": first.id,
                        "rule1_name": first.name,
                        "rule2_id": second.id,
                        "rule2_name": second.name,
                        "target_type": target_type,
                        "target_id": target_id,
                        "priority": priority,
                        "description": (
                            f"Rules '{first.name}' and '{second.name}' share priority {priority} "
                            f"on {target_type} {target_id}; '{first.id}' is applied first"
                        ),
                    }
                )

        if conflicts:
            logger.info("pricing.rules.conflicts_detected", count=len(conflicts))
        return conflicts

    # ============================================================
    # Bulk tiers
    # ============================================================

    async def create_bulk_tier(
        self,
        tier_data: BulkPricingTierCreateRequest | dict[str, Any],
        created_by: str | None = None,
    ) -> BulkPricingTier:
        """Validate and store a new bulk pricing tier."""
        if isinstance(tier_data, dict):
            try:
                tier_data = BulkPricingTierCreateRequest.model_validate(tier_data)
            except ValidationError as e:
                raise InvalidBulkTierError(
                    "Invalid bulk tier definition", validation_errors=_error_details(e)
                ) from e

        problem = _check_percentage(tier_data.discount_type, tier_data.discount_value)
        if problem:
            raise InvalidBulkTierError(problem)

        row = BulkPricingTierTable(
            id=generate_tier_id(),
            product_id=tier_data.product_id,
            minimum_quantity=tier_data.minimum_quantity,
            maximum_quantity=tier_data.maximum_quantity,
            discount_type=tier_data.discount_type.value,
            discount_value=tier_data.discount_value,
            customer_tier=tier_data.customer_tier,
            is_active=tier_data.is_active,
        )
        self.db.add(row)
        await self._commit("create_bulk_tier", tier_id=row.id)
        await self.db.refresh(row)

        log_audit_event(
            "bulk_tier.created",
            resource_type="bulk_pricing_tier",
            resource_id=row.id,
            user_id=created_by,
            product_id=row.product_id,
        )
        logger.info(
            "pricing.bulk_tier.created",
            tier_id=row.id,
            product_id=row.product_id,
            minimum_quantity=row.minimum_quantity,
        )
        return tier_from_row(row)

    async def list_bulk_tiers(
        self, product_id: str, include_inactive: bool = False
    ) -> list[BulkPricingTier]:
        """List a product's tiers ordered by minimum quantity."""
        stmt = select(BulkPricingTierTable).where(BulkPricingTierTable.product_id == product_id)
        if not include_inactive:
            stmt = stmt.where(BulkPricingTierTable.is_active.is_(True))
        stmt = stmt.order_by(
            BulkPricingTierTable.minimum_quantity.asc(), BulkPricingTierTable.id.asc()
        )

        rows = await self._fetch_all(stmt, "list_bulk_tiers")
        return [tier_from_row(row) for row in rows]

    async def delete_bulk_tier(self, tier_id: str, deleted_by: str | None = None) -> None:
        """Hard delete a bulk pricing tier."""
        stmt = delete(BulkPricingTierTable).where(BulkPricingTierTable.id == tier_id)
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PricingStoreError(
                "Failed to delete bulk tier",
                operation="delete_bulk_tier",
                context={"tier_id": tier_id},
            ) from e

        if result.rowcount == 0:
            await self.db.rollback()
            raise BulkTierNotFoundError(f"Bulk tier {tier_id} not found", tier_id=tier_id)

        await self._commit("delete_bulk_tier", tier_id=tier_id)
        log_audit_event(
            "bulk_tier.deleted",
            resource_type="bulk_pricing_tier",
            resource_id=tier_id,
            user_id=deleted_by,
        )
        logger.info("pricing.bulk_tier.deleted", tier_id=tier_id)

    # ============================================================
    # Helpers
    # ============================================================

    def _validate_discount_limits(
        self, actions: DiscountAction, rule_id: str | None = None
    ) -> None:
        problem = _check_percentage(actions.discount_type, actions.discount_value)
        if problem:
            raise InvalidPricingRuleError(problem, rule_id=rule_id)

    async def _set_active(self, rule_id: str, is_active: bool, user_id: str | None) -> PricingRule:
        row = await self._get_rule_row(rule_id)
        row.is_active = is_active
        await self._commit("set_active", rule_id=rule_id)
        await self.db.refresh(row)

        log_audit_event(
            "pricing_rule.activated" if is_active else "pricing_rule.deactivated",
            resource_type="pricing_rule",
            resource_id=rule_id,
            user_id=user_id,
        )
        return rule_from_row(row)

    async def _get_rule_row(self, rule_id: str) -> PricingRuleTable:
        stmt = (
            select(PricingRuleTable)
            .where(PricingRuleTable.id == rule_id)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.db.execute(stmt)
            row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PricingStoreError(
                "Failed to load pricing rule",
                operation="get_rule",
                context={"rule_id": rule_id},
            ) from e

        if row is None:
            raise PricingRuleNotFoundError(f"Pricing rule {rule_id} not found", rule_id=rule_id)
        return row

    async def _fetch_all(self, stmt: Any, operation: str) -> list[Any]:
        try:
            result = await self.db.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("pricing.store.query_failed", operation=operation, error=str(e))
            raise PricingStoreError("Pricing store query failed", operation=operation) from e

    async def _commit(self, operation: str, **context: Any) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("pricing.store.write_failed", operation=operation, error=str(e), **context)
            raise PricingStoreError(
                "Failed to persist pricing change", operation=operation, context=context
            ) from e


__all__ = ["PricingRuleService", "generate_rule_id", "generate_tier_id"]
