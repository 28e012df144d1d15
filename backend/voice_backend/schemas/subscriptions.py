"""Plan catalog, subscription and entitlement schemas.

Prices are serialized as strings with 2 decimal places to preserve
decimal precision.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from voice_backend.models.subscription import SubscriptionPlan, UserSubscription
from voice_backend.services.entitlement_service import (
    PlanDetail,
    PromptLimits,
    SubscriptionPeriod,
)

_PRICE_FMT = "{:.2f}"

# =============================================================================
# Plan catalog
# =============================================================================


class PlanResponse(BaseModel):
    """Response item for GET /plans.

    Attributes:
        id: Plan ID.
        name: Display name.
        description: Marketing text, or None.
        price: Price with 2 decimal places.
        currency: ISO 4217 code.
        token_amount: Tokens granted per subscription period.
        level: Entitlement tier.
        features: Feature labels.
    """

    model_config = ConfigDict(extra="forbid")

    id: int
    name: str
    description: str | None
    price: str
    currency: str
    token_amount: int
    level: int
    features: list[str]

    @classmethod
    def from_model(cls, plan: SubscriptionPlan) -> "PlanResponse":
        return cls(
            id=plan.id,
            name=plan.name,
            description=plan.description,
            price=_PRICE_FMT.format(plan.price),
            currency=plan.currency,
            token_amount=plan.token_amount,
            level=plan.level,
            features=list(plan.features or []),
        )


# =============================================================================
# Subscriptions
# =============================================================================


class OpenSubscriptionRequest(BaseModel):
    """Request body for POST /subscriptions.

    Attributes:
        plan_id: Catalog plan to subscribe to.
        payment_id: External payment reference, if any.
    """

    model_config = ConfigDict(extra="forbid")

    plan_id: int = Field(ge=1)
    payment_id: str | None = Field(default=None, max_length=255)


class OpenSubscriptionResponse(BaseModel):
    """Response for POST /subscriptions."""

    model_config = ConfigDict(extra="forbid")

    subscription_id: str
    new_balance: int


class SubscriptionResponse(BaseModel):
    """A single subscription row (returned after cancellation)."""

    model_config = ConfigDict(extra="forbid")

    id: str
    plan_id: int
    status: str
    start_date: datetime
    end_date: datetime | None

    @classmethod
    def from_model(cls, subscription: UserSubscription) -> "SubscriptionResponse":
        return cls(
            id=str(subscription.id),
            plan_id=subscription.plan_id,
            status=subscription.status,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
        )


class CurrentPlanResponse(BaseModel):
    """Response for GET /subscriptions/current.

    On the free tier subscription_id and plan_id are None and the
    period counters are 0. exhausted is True when the active period's
    allotment has just been used up.
    """

    model_config = ConfigDict(extra="forbid")

    has_active_subscription: bool
    plan_name: str
    plan_level: int
    token_balance: int
    exhausted: bool
    subscription_id: str | None
    plan_id: int | None
    token_amount: int
    tokens_used: int
    tokens_remaining: int
    start_date: datetime | None
    end_date: datetime | None
    features: list[str]

    @classmethod
    def from_detail(cls, detail: PlanDetail) -> "CurrentPlanResponse":
        return cls(
            has_active_subscription=detail.has_active_subscription,
            plan_name=detail.plan_name,
            plan_level=detail.level,
            token_balance=detail.token_balance,
            exhausted=detail.exhausted,
            subscription_id=(
                str(detail.subscription_id) if detail.subscription_id else None
            ),
            plan_id=detail.plan_id,
            token_amount=detail.token_amount,
            tokens_used=detail.tokens_used,
            tokens_remaining=detail.tokens_remaining,
            start_date=detail.start_date,
            end_date=detail.end_date,
            features=detail.features,
        )


class SubscriptionPeriodResponse(BaseModel):
    """One subscription period with its window usage."""

    model_config = ConfigDict(extra="forbid")

    id: str
    plan_id: int
    plan_name: str
    status: str
    token_amount: int
    tokens_used: int
    tokens_remaining: int
    start_date: datetime
    end_date: datetime | None
    features: list[str]

    @classmethod
    def from_period(cls, period: SubscriptionPeriod) -> "SubscriptionPeriodResponse":
        return cls(
            id=str(period.subscription_id),
            plan_id=period.plan_id,
            plan_name=period.plan_name,
            status=period.status,
            token_amount=period.token_amount,
            tokens_used=period.tokens_used,
            tokens_remaining=period.tokens_remaining,
            start_date=period.start_date,
            end_date=period.end_date,
            features=period.features,
        )


class UserPlansResponse(BaseModel):
    """Response for GET /subscriptions: active and closed periods."""

    model_config = ConfigDict(extra="forbid")

    active_plans: list[SubscriptionPeriodResponse]
    closed_plans: list[SubscriptionPeriodResponse]


# =============================================================================
# Entitlements
# =============================================================================


class PromptLimitsResponse(BaseModel):
    """Custom prompt quota. max is None when unlimited."""

    model_config = ConfigDict(extra="forbid")

    current: int
    max: int | None
    can_create_more: bool

    @classmethod
    def from_limits(cls, limits: PromptLimits) -> "PromptLimitsResponse":
        return cls(
            current=limits.current,
            max=limits.max,
            can_create_more=limits.can_create_more,
        )


class EntitlementsResponse(BaseModel):
    """Response for GET /entitlements."""

    model_config = ConfigDict(extra="forbid")

    plan_name: str
    plan_level: int
    prompt_limits: PromptLimitsResponse
