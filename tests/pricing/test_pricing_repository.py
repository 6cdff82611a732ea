"""
Tests for the SQLAlchemy rule and bulk tier stores.

Runs against an in-memory SQLite database.
"""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from dynamic_pricing.pricing.entities import (
    BulkPricingTierTable,
    PricingRuleTable,
    RuleUsageTable,
)
from dynamic_pricing.pricing.exceptions import PricingStoreError
from dynamic_pricing.pricing.models import RuleType, TargetType
from dynamic_pricing.pricing.repository import (
    SQLAlchemyBulkTierRepository,
    SQLAlchemyRuleRepository,
    generate_usage_id,
)
from dynamic_pricing.pricing.service import PricingEngine

pytestmark = pytest.mark.asyncio


def _rule_row(rule_id, **overrides):
    values = {
        "id": rule_id,
        "name": f"Rule {rule_id}",
        "target_type": "product",
        "target_id": "prod-1",
        "rule_type": "quantity_based",
        "conditions": {"kind": "quantity_based"},
        "actions": {"discount_type": "percentage", "discount_value": "10"},
        "priority": 0,
        "usage_count": 0,
        "is_active": True,
        "metadata_json": {},
    }
    values.update(overrides)
    return PricingRuleTable(**values)


def _tier_row(tier_id, **overrides):
    values = {
        "id": tier_id,
        "product_id": "prod-1",
        "minimum_quantity": 10,
        "maximum_quantity": None,
        "discount_type": "percentage",
        "discount_value": Decimal("20"),
        "is_active": True,
    }
    values.update(overrides)
    return BulkPricingTierTable(**values)


async def _seed(session, *rows):
    session.add_all(rows)
    await session.commit()


def test_generate_usage_id():
    usage_id = generate_usage_id()
    assert usage_id.startswith("usage_")
    assert len(usage_id) == 18  # "usage_" + 12 hex chars


class TestListActiveRules:
    """Rule loading and ordering."""

    async def test_orders_by_priority_then_id(self, async_db_session):
        await _seed(
            async_db_session,
            _rule_row("rule_c", priority=1),
            _rule_row("rule_b", priority=5),
            _rule_row("rule_a", priority=5),
        )
        repository = SQLAlchemyRuleRepository(async_db_session)

        rules = await repository.list_active_rules(TargetType.PRODUCT, "prod-1")

        assert [rule.id for rule in rules] == ["rule_a", "rule_b", "rule_c"]

    async def test_filters_scope_activity_and_type(self, async_db_session):
        await _seed(
            async_db_session,
            _rule_row("rule_match"),
            _rule_row("rule_inactive", is_active=False),
            _rule_row("rule_other_product", target_id="prod-2"),
            _rule_row("rule_category", target_type="category", target_id="prod-1"),
            _rule_row(
                "rule_time",
                rule_type="time_based",
                conditions={"kind": "time_based"},
            ),
        )
        repository = SQLAlchemyRuleRepository(async_db_session)

        all_types = await repository.list_active_rules(TargetType.PRODUCT, "prod-1")
        quantity_only = await repository.list_active_rules(
            TargetType.PRODUCT, "prod-1", RuleType.QUANTITY_BASED
        )

        assert {rule.id for rule in all_types} == {"rule_match", "rule_time"}
        assert [rule.id for rule in quantity_only] == ["rule_match"]

    async def test_stored_payload_is_validated(self, async_db_session):
        await _seed(
            async_db_session,
            _rule_row(
                "rule_time",
                rule_type="time_based",
                conditions={"kind": "time_based", "time_start": "09:00:00", "day_of_week": [1]},
                actions={"discount_type": "fixed_amount", "discount_value": "2.50"},
            ),
        )
        repository = SQLAlchemyRuleRepository(async_db_session)

        [rule] = await repository.list_active_rules(TargetType.PRODUCT, "prod-1")

        assert rule.conditions.time_start.hour == 9
        assert rule.actions.discount_value == Decimal("2.50")
        assert rule.created_at.tzinfo is not None

    async def test_malformed_rows_are_skipped(self, async_db_session):
        await _seed(
            async_db_session,
            _rule_row("rule_good"),
            _rule_row("rule_bad_kind", conditions={"kind": "time_based"}),
            _rule_row("rule_bad_action", actions={"discount_type": "bogo"}),
        )
        repository = SQLAlchemyRuleRepository(async_db_session)

        rules = await repository.list_active_rules(TargetType.PRODUCT, "prod-1")

        assert [rule.id for rule in rules] == ["rule_good"]

    async def test_query_failure_raises_store_error(self, async_db_session):
        repository = SQLAlchemyRuleRepository(async_db_session)

        with patch.object(
            async_db_session,
            "execute",
            AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down"))),
        ):
            with pytest.raises(PricingStoreError) as exc_info:
                await repository.list_active_rules(TargetType.PRODUCT, "prod-1")

        assert exc_info.value.context["operation"] == "list_active_rules"


class TestIncrementUsage:
    """Conditional usage increments."""

    async def test_increment_without_limit(self, async_db_session):
        await _seed(async_db_session, _rule_row("rule_a"))
        repository = SQLAlchemyRuleRepository(async_db_session)

        assert await repository.increment_usage("rule_a") is True
        assert await repository.increment_usage("rule_a") is True

        [rule] = await repository.list_active_rules(TargetType.PRODUCT, "prod-1")
        assert rule.usage_count == 2

    async def test_increment_stops_at_limit(self, async_db_session):
        await _seed(async_db_session, _rule_row("rule_a", usage_limit=1))
        repository = SQLAlchemyRuleRepository(async_db_session)

        assert await repository.increment_usage("rule_a") is True
        assert await repository.increment_usage("rule_a") is False

        [rule] = await repository.list_active_rules(TargetType.PRODUCT, "prod-1")
        assert rule.usage_count == 1

    async def test_separate_sessions_cannot_exceed_limit(self, session_maker):
        """Two callers holding the same stale snapshot only get one application."""
        async with session_maker() as session:
            await _seed(session, _rule_row("rule_a", usage_limit=1))

        async with session_maker() as first, session_maker() as second:
            first_repo = SQLAlchemyRuleRepository(first)
            second_repo = SQLAlchemyRuleRepository(second)
            [snapshot_one] = await first_repo.list_active_rules(TargetType.PRODUCT, "prod-1")
            [snapshot_two] = await second_repo.list_active_rules(TargetType.PRODUCT, "prod-1")
            assert snapshot_one.usage_count == snapshot_two.usage_count == 0

            results = [
                await first_repo.increment_usage("rule_a"),
                await second_repo.increment_usage("rule_a"),
            ]

        assert results == [True, False]

    async def test_usage_row_written(self, async_db_session):
        await _seed(async_db_session, _rule_row("rule_a"))
        repository = SQLAlchemyRuleRepository(async_db_session, record_usage=True)

        await repository.increment_usage(
            "rule_a", product_id="prod-1", user_id="user-1", discount_amount=Decimal("4.25")
        )

        result = await async_db_session.execute(select(RuleUsageTable))
        [usage] = result.scalars().all()
        assert usage.rule_id == "rule_a"
        assert usage.product_id == "prod-1"
        assert usage.user_id == "user-1"
        assert usage.discount_amount == Decimal("4.25")
        assert usage.id.startswith("usage_")

    async def test_usage_row_skipped_when_disabled(self, async_db_session):
        await _seed(async_db_session, _rule_row("rule_a"))
        repository = SQLAlchemyRuleRepository(async_db_session, record_usage=False)

        assert await repository.increment_usage("rule_a") is True

        result = await async_db_session.execute(select(RuleUsageTable))
        assert result.scalars().all() == []

    async def test_no_usage_row_when_limit_reached(self, async_db_session):
        await _seed(async_db_session, _rule_row("rule_a", usage_limit=0))
        repository = SQLAlchemyRuleRepository(async_db_session, record_usage=True)

        assert await repository.increment_usage("rule_a") is False

        result = await async_db_session.execute(select(RuleUsageTable))
        assert result.scalars().all() == []

    async def test_write_failure_raises_store_error(self, async_db_session):
        repository = SQLAlchemyRuleRepository(async_db_session)

        with patch.object(
            async_db_session,
            "execute",
            AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("disk full"))),
        ):
            with pytest.raises(PricingStoreError):
                await repository.increment_usage("rule_a")


class TestListActiveTiers:
    async def test_filters_by_quantity_bracket(self, async_db_session):
        await _seed(
            async_db_session,
            _tier_row("tier_10", minimum_quantity=10, maximum_quantity=49),
            _tier_row("tier_50", minimum_quantity=50),
            _tier_row("tier_inactive", minimum_quantity=5, is_active=False),
            _tier_row("tier_other", product_id="prod-2", minimum_quantity=1),
        )
        repository = SQLAlchemyBulkTierRepository(async_db_session)

        assert [t.id for t in await repository.list_active_tiers("prod-1", 20)] == ["tier_10"]
        assert [t.id for t in await repository.list_active_tiers("prod-1", 60)] == ["tier_50"]
        assert await repository.list_active_tiers("prod-1", 3) == []

    async def test_orders_by_minimum_descending(self, async_db_session):
        await _seed(
            async_db_session,
            _tier_row("tier_1", minimum_quantity=1),
            _tier_row("tier_20", minimum_quantity=20),
            _tier_row("tier_5", minimum_quantity=5),
        )
        repository = SQLAlchemyBulkTierRepository(async_db_session)

        tiers = await repository.list_active_tiers("prod-1", 25)

        assert [tier.id for tier in tiers] == ["tier_20", "tier_5", "tier_1"]
        assert tiers[0].discount_value == Decimal("20")


class TestEngineWithDatabase:
    """End-to-end calculation over the SQL stores."""

    async def test_usage_counted_in_database(self, async_db_session):
        await _seed(async_db_session, _rule_row("rule_a", usage_limit=2))
        engine = PricingEngine.from_session(
            async_db_session, clock=lambda: datetime(2025, 1, 15, tzinfo=UTC)
        )

        first = await engine.calculate_price("prod-1", Decimal("100"))
        second = await engine.calculate_price("prod-1", Decimal("100"))
        third = await engine.calculate_price("prod-1", Decimal("100"))

        assert first.discounted_price == Decimal("90.00")
        assert second.discounted_price == Decimal("90.00")
        assert third.discounted_price == Decimal("100.00")
        assert second.applied_rules[0].usage_count == 2

        result = await async_db_session.execute(select(RuleUsageTable))
        assert len(result.scalars().all()) == 2

    async def test_bulk_price_from_database(self, async_db_session):
        await _seed(async_db_session, _tier_row("tier_a"))
        engine = PricingEngine.from_session(async_db_session)

        result = await engine.calculate_bulk_price("prod-1", Decimal("20"), 15)

        assert result.bulk_price == Decimal("240.00")
        assert result.tier_id == "tier_a"
