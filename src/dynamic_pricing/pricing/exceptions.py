"""
Pricing engine exceptions.

Custom exceptions for pricing operations with clear error messages.
Each error carries a status code, context, and recovery hint so the HTTP
layer can render it without extra mapping.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - typings only
    from dynamic_pricing.pricing.models import PriceCalculation


class PricingError(Exception):
    """
    Base pricing error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "PRICING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class PricingRuleNotFoundError(PricingError):
    """Pricing rule not found error."""

    def __init__(self, message: str, rule_id: str | None = None) -> None:
        context = {}
        if rule_id:
            context["rule_id"] = rule_id

        super().__init__(
            message,
            "PRICING_RULE_NOT_FOUND",
            status_code=404,
            context=context,
            recovery_hint="Verify the rule ID and ensure the rule exists",
        )


class BulkTierNotFoundError(PricingError):
    """Bulk pricing tier not found error."""

    def __init__(self, message: str, tier_id: str | None = None) -> None:
        context = {}
        if tier_id:
            context["tier_id"] = tier_id

        super().__init__(
            message,
            "BULK_TIER_NOT_FOUND",
            status_code=404,
            context=context,
            recovery_hint="Verify the tier ID and ensure the tier exists",
        )


class InvalidPricingRuleError(PricingError):
    """Invalid pricing rule configuration."""

    def __init__(
        self,
        message: str,
        rule_id: str | None = None,
        validation_errors: dict[str, Any] | list[Any] | None = None,
    ):
        context: dict[str, Any] = {}
        if rule_id:
            context["rule_id"] = rule_id
        if validation_errors:
            context["validation_errors"] = validation_errors

        super().__init__(
            message,
            "INVALID_PRICING_RULE",
            context=context,
            recovery_hint="Review the rule conditions and discount configuration",
        )


class InvalidBulkTierError(PricingError):
    """Invalid bulk pricing tier configuration."""

    def __init__(
        self,
        message: str,
        tier_id: str | None = None,
        validation_errors: dict[str, Any] | list[Any] | None = None,
    ):
        context: dict[str, Any] = {}
        if tier_id:
            context["tier_id"] = tier_id
        if validation_errors:
            context["validation_errors"] = validation_errors

        super().__init__(
            message,
            "INVALID_BULK_TIER",
            context=context,
            recovery_hint="Check quantity bounds and discount configuration of the tier",
        )


class PriceCalculationError(PricingError):
    """Error during price calculation."""

    def __init__(
        self, message: str, product_id: str | None = None, quantity: int | None = None
    ) -> None:
        context: dict[str, Any] = {}
        if product_id:
            context["product_id"] = product_id
        if quantity is not None:
            context["quantity"] = quantity

        super().__init__(
            message,
            "PRICE_CALCULATION_ERROR",
            context=context,
            recovery_hint="Check the base price, quantity and product identifier",
        )


class ConditionEvaluationError(PricingError):
    """A rule's conditions could not be evaluated against the context."""

    def __init__(self, message: str, rule_id: str | None = None) -> None:
        super().__init__(
            message,
            "CONDITION_EVALUATION_ERROR",
            context={"rule_id": rule_id} if rule_id else None,
        )


class DiscountApplicationError(PricingError):
    """A rule's discount action could not be applied."""

    def __init__(self, message: str, discount_type: str | None = None) -> None:
        super().__init__(
            message,
            "DISCOUNT_APPLICATION_ERROR",
            context={"discount_type": discount_type} if discount_type else None,
        )


class PricingStoreError(PricingError):
    """Underlying rule or tier store failed."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = dict(context or {})
        if operation:
            context["operation"] = operation

        super().__init__(
            message,
            "PRICING_STORE_ERROR",
            status_code=503,
            context=context,
            recovery_hint="Check database connectivity and retry the request",
        )


class UsageRecordingError(PricingStoreError):
    """
    Usage increment failed after discounts were already accumulated.

    ``partial_result`` holds the in-memory calculation for the rules that were
    applied before the failing one. Their usage rows are already persisted and
    are not rolled back.
    """

    def __init__(
        self,
        message: str,
        rule_id: str,
        partial_result: PriceCalculation | None = None,
    ) -> None:
        super().__init__(message, operation="increment_usage", context={"rule_id": rule_id})
        self.error_code = "USAGE_RECORDING_FAILED"
        self.status_code = 500
        self.recovery_hint = "Reconcile the rule usage counter manually; the write is not retried"
        self.rule_id = rule_id
        self.partial_result = partial_result


__all__ = [
    "PricingError",
    "PricingRuleNotFoundError",
    "BulkTierNotFoundError",
    "InvalidPricingRuleError",
    "InvalidBulkTierError",
    "PriceCalculationError",
    "ConditionEvaluationError",
    "DiscountApplicationError",
    "PricingStoreError",
    "UsageRecordingError",
]
