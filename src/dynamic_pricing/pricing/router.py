"""
Pricing API router.

Rule and bulk tier administration plus price calculation endpoints.
``PricingError`` subclasses are rendered by the application-level handler.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dynamic_pricing.db import get_async_session
from dynamic_pricing.pricing.models import (
    BulkDiscount,
    BulkPriceCalculationRequest,
    BulkPricingTier,
    BulkPricingTierCreateRequest,
    PriceCalculation,
    PriceCalculationRequest,
    PricingRule,
    PricingRuleCreateRequest,
    PricingRuleFilters,
    PricingRuleUpdateRequest,
    RuleType,
    TargetType,
)
from dynamic_pricing.pricing.rules import PricingRuleService
from dynamic_pricing.pricing.service import PricingEngine

router = APIRouter(prefix="/api/v1/pricing", tags=["Pricing"])


def get_rule_service(
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> PricingRuleService:
    """Dependency to get PricingRuleService instance."""
    return PricingRuleService(db)


def get_pricing_engine(
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> PricingEngine:
    """Dependency to get PricingEngine instance."""
    return PricingEngine.from_session(db)


UserHeader = Annotated[str | None, Header(alias="X-User-ID")]


# ==================== Rule Endpoints ====================


@router.post("/rules", response_model=PricingRule, status_code=status.HTTP_201_CREATED)
async def create_rule(
    rule_data: PricingRuleCreateRequest,
    service: Annotated[PricingRuleService, Depends(get_rule_service)],
    user_id: UserHeader = None,
) -> PricingRule:
    """Create a pricing rule."""
    return await service.create_rule(rule_data, created_by=user_id)


@router.get("/rules", response_model=list[PricingRule])
async def list_rules(
    service: Annotated[PricingRuleService, Depends(get_rule_service)],
    target_type: TargetType | None = Query(None, description="Filter by target type"),
    target_id: str | None = Query(None, description="Filter by product or category ID"),
    rule_type: RuleType | None = Query(None, description="Filter by rule type"),
    is_active: bool | None = Query(None, description="Filter by active status"),
    limit: int | None = Query(None, ge=1, le=1000, description="Maximum rules to return"),
    offset: int = Query(0, ge=0, description="Rules to skip"),
) -> list[PricingRule]:
    """List pricing rules by priority."""
    filters = PricingRuleFilters(
        target_type=target_type,
        target_id=target_id,
        rule_type=rule_type,
        is_active=is_active,
        limit=limit,
        offset=offset,
    )
    return await service.list_rules(filters)


@router.get("/rules/conflicts")
async def detect_rule_conflicts(
    service: Annotated[PricingRuleService, Depends(get_rule_service)],
) -> dict[str, Any]:
    """Report active rules that share a target and priority."""
    conflicts = await service.detect_rule_conflicts()
    return {"conflicts": conflicts, "total": len(conflicts)}


@router.get("/rules/{rule_id}", response_model=PricingRule)
async def get_rule(
    rule_id: str,
    service: Annotated[PricingRuleService, Depends(get_rule_service)],
) -> PricingRule:
    """Get a pricing rule."""
    return await service.get_rule(rule_id)


@router.patch("/rules/{rule_id}", response_model=PricingRule)
async def update_rule(
    rule_id: str,
    updates: PricingRuleUpdateRequest,
    service: Annotated[PricingRuleService, Depends(get_rule_service)],
    user_id: UserHeader = None,
) -> PricingRule:
    """Partially update a pricing rule."""
    return await service.update_rule(rule_id, updates, updated_by=user_id)


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: str,
    service: Annotated[PricingRuleService, Depends(get_rule_service)],
    user_id: UserHeader = None,
) -> None:
    """Delete a pricing rule."""
    await service.delete_rule(rule_id, deleted_by=user_id)


@router.post("/rules/{rule_id}/activate", response_model=PricingRule)
async def activate_rule(
    rule_id: str,
    service: Annotated[PricingRuleService, Depends(get_rule_service)],
    user_id: UserHeader = None,
) -> PricingRule:
    """Activate a pricing rule."""
    return await service.activate_rule(rule_id, user_id=user_id)


@router.post("/rules/{rule_id}/deactivate", response_model=PricingRule)
async def deactivate_rule(
    rule_id: str,
    service: Annotated[PricingRuleService, Depends(get_rule_service)],
    user_id: UserHeader = None,
) -> PricingRule:
    """Deactivate a pricing rule."""
    return await service.deactivate_rule(rule_id, user_id=user_id)


# ==================== Bulk Tier Endpoints ====================


@router.post("/bulk-tiers", response_model=BulkPricingTier, status_code=status.HTTP_201_CREATED)
async def create_bulk_tier(
    tier_data: BulkPricingTierCreateRequest,
    service: Annotated[PricingRuleService, Depends(get_rule_service)],
    user_id: UserHeader = None,
) -> BulkPricingTier:
    """Create a bulk pricing tier."""
    return await service.create_bulk_tier(tier_data, created_by=user_id)


@router.get("/products/{product_id}/bulk-tiers", response_model=list[BulkPricingTier])
async def list_bulk_tiers(
    product_id: str,
    service: Annotated[PricingRuleService, Depends(get_rule_service)],
    include_inactive: bool = Query(False, description="Include inactive tiers"),
) -> list[BulkPricingTier]:
    """List a product's bulk tiers."""
    return await service.list_bulk_tiers(product_id, include_inactive=include_inactive)


@router.delete("/bulk-tiers/{tier_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_bulk_tier(
    tier_id: str,
    service: Annotated[PricingRuleService, Depends(get_rule_service)],
    user_id: UserHeader = None,
) -> None:
    """Delete a bulk pricing tier."""
    await service.delete_bulk_tier(tier_id, deleted_by=user_id)


# ==================== Calculation Endpoints ====================


@router.post("/calculate", response_model=PriceCalculation)
async def calculate_price(
    request: PriceCalculationRequest,
    engine: Annotated[PricingEngine, Depends(get_pricing_engine)],
) -> PriceCalculation:
    """Calculate the rule-discounted price of a product."""
    return await engine.calculate_price(request.product_id, request.base_price, request.context)


@router.post("/calculate/bulk", response_model=BulkDiscount | None)
async def calculate_bulk_price(
    request: BulkPriceCalculationRequest,
    engine: Annotated[PricingEngine, Depends(get_pricing_engine)],
) -> BulkDiscount | None:
    """Calculate a bulk tier price; null when no tier matches."""
    return await engine.calculate_bulk_price(
        request.product_id,
        request.base_price,
        request.quantity,
        customer_tier=request.customer_tier,
    )


__all__ = ["router", "get_rule_service", "get_pricing_engine"]
