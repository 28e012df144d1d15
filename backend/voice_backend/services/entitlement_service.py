"""Entitlement resolver: plan tier, prompt quota and plan-period status.

The entitlement level is the integer `level` stored on the subscribed
plan; users without an active subscription are on the free tier (level 1).
Plan names are display-only and never drive entitlement decisions.

get_current_plan_detail() may WRITE: when the active subscription's
allotment is used up it asks the lifecycle service to expire it (lazy
expiry). Pass enforce_exhaustion=False for a strictly read-only view, or
call enforce_exhaustion() explicitly.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from voice_backend.core.config import settings
from voice_backend.core.database import Database
from voice_backend.core.errors import NotFoundError
from voice_backend.models.subscription import (
    SUBSCRIPTION_ACTIVE,
    TERMINAL_STATUSES,
    UserSubscription,
)
from voice_backend.repositories.subscription_repository import SubscriptionRepository
from voice_backend.repositories.usage_repository import UsageRepository
from voice_backend.repositories.user_repository import UserRepository
from voice_backend.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

FREE_LEVEL = 1

# Custom prompt quota per entitlement level. None = unlimited.
# Levels above the highest key inherit the highest key's quota.
_PROMPT_QUOTAS: dict[int, int | None] = {
    1: 0,
    2: 3,
    3: None,
}


def prompt_quota_for_level(level: int) -> int | None:
    """Return the custom prompt quota for an entitlement level.

    Args:
        level: Entitlement level (1 = free tier).

    Returns:
        Maximum number of custom prompts, or None for unlimited.
    """
    if level in _PROMPT_QUOTAS:
        return _PROMPT_QUOTAS[level]
    if level < FREE_LEVEL:
        return _PROMPT_QUOTAS[FREE_LEVEL]
    return _PROMPT_QUOTAS[max(_PROMPT_QUOTAS)]


@dataclass(frozen=True)
class PlanLevel:
    """The user's current plan tier."""

    plan_name: str
    level: int


@dataclass(frozen=True)
class PromptLimits:
    """Custom prompt quota status.

    Attributes:
        current: Number of custom prompts the user has.
        max: Quota, or None for unlimited.
        can_create_more: Whether another prompt may be created.
    """

    current: int
    max: int | None
    can_create_more: bool


def prompt_limits_for(level: int, current_count: int) -> PromptLimits:
    """Build the prompt quota status for a level and an existing prompt count."""
    quota = prompt_quota_for_level(level)
    return PromptLimits(
        current=current_count,
        max=quota,
        can_create_more=quota is None or current_count < quota,
    )


@dataclass(frozen=True)
class PlanDetail:
    """Current plan-period status for a user.

    On the free tier only plan_name, level, token_balance and exhausted
    are meaningful; the period fields are None/zero.
    """

    has_active_subscription: bool
    plan_name: str
    level: int
    token_balance: int
    exhausted: bool = False
    subscription_id: uuid.UUID | None = None
    plan_id: int | None = None
    token_amount: int = 0
    tokens_used: int = 0
    tokens_remaining: int = 0
    start_date: datetime | None = None
    end_date: datetime | None = None
    features: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SubscriptionPeriod:
    """One subscription in a user's plan history."""

    subscription_id: uuid.UUID
    plan_id: int
    plan_name: str
    status: str
    token_amount: int
    tokens_used: int
    tokens_remaining: int
    start_date: datetime
    end_date: datetime | None
    features: list[str]


@dataclass(frozen=True)
class UserPlans:
    """A user's active and closed subscription periods, newest first."""

    active: list[SubscriptionPeriod]
    closed: list[SubscriptionPeriod]


def _remaining(allotment: int, used: int) -> int:
    return max(0, allotment - used)


def _to_period(subscription: UserSubscription, tokens_used: int) -> SubscriptionPeriod:
    plan = subscription.plan
    return SubscriptionPeriod(
        subscription_id=subscription.id,
        plan_id=plan.id,
        plan_name=plan.name,
        status=subscription.status,
        token_amount=plan.token_amount,
        tokens_used=tokens_used,
        tokens_remaining=_remaining(plan.token_amount, tokens_used),
        start_date=subscription.start_date,
        end_date=subscription.end_date,
        features=list(plan.features or []),
    )


class EntitlementService:
    """Resolves plan tiers and plan-period status.

    Args:
        database: Store handle.
        subscriptions: Lifecycle service used to expire exhausted periods.
    """

    def __init__(self, database: Database, subscriptions: SubscriptionService) -> None:
        self._database = database
        self._subscriptions = subscriptions

    def _free_tier(self, token_balance: int, *, exhausted: bool = False) -> PlanDetail:
        return PlanDetail(
            has_active_subscription=False,
            plan_name=settings.free_plan_name,
            level=FREE_LEVEL,
            token_balance=token_balance,
            exhausted=exhausted,
        )

    async def resolve_plan_level(self, user_id: uuid.UUID) -> PlanLevel:
        """Return the user's plan name and entitlement level.

        Raises:
            NotFoundError: If the user does not exist.
        """
        async with self._database.transaction("resolve_plan_level") as db:
            if await UserRepository.get_balance(db, user_id) is None:
                raise NotFoundError("User", str(user_id))
            subscription = await SubscriptionRepository.get_active(db, user_id)

        if subscription is None:
            return PlanLevel(plan_name=settings.free_plan_name, level=FREE_LEVEL)
        return PlanLevel(
            plan_name=subscription.plan.name,
            level=max(FREE_LEVEL, subscription.plan.level),
        )

    async def get_prompt_limits(
        self, user_id: uuid.UUID, current_count: int
    ) -> PromptLimits:
        """Return the custom prompt quota for the user's current tier.

        Args:
            user_id: User to resolve.
            current_count: Number of custom prompts the user already has.

        Raises:
            NotFoundError: If the user does not exist.
        """
        plan_level = await self.resolve_plan_level(user_id)
        return prompt_limits_for(plan_level.level, current_count)

    async def get_current_plan_detail(
        self,
        user_id: uuid.UUID,
        *,
        enforce_exhaustion: bool = True,
    ) -> PlanDetail:
        """Report the user's current plan period, expiring it if exhausted.

        remaining = max(0, allotment - used), where used sums the usage log
        over the subscription window. When remaining is 0 the period is
        reported as exhausted (free tier) and, with enforce_exhaustion=True,
        the subscription is expired through the lifecycle service. Repeated
        calls after expiry find no active subscription and write nothing.

        Args:
            user_id: User to report on.
            enforce_exhaustion: Expire an exhausted subscription (default).

        Returns:
            PlanDetail for the active subscription or the free tier.

        Raises:
            NotFoundError: If the user does not exist.
        """
        async with self._database.transaction("get_current_plan_detail") as db:
            balance = await UserRepository.get_balance(db, user_id)
            if balance is None:
                raise NotFoundError("User", str(user_id))

            subscription = await SubscriptionRepository.get_active(db, user_id)
            if subscription is None:
                return self._free_tier(balance)

            used = await UsageRepository.sum_cost_in_window(
                db, user_id, subscription.start_date, subscription.end_date
            )

        plan = subscription.plan
        remaining = _remaining(plan.token_amount, used)

        if remaining <= 0:
            if enforce_exhaustion:
                logger.warning(
                    "Subscription %s exhausted (%d/%d tokens); expiring",
                    subscription.id,
                    used,
                    plan.token_amount,
                )
                await self._subscriptions.expire_subscription(subscription.id)
            return self._free_tier(balance, exhausted=True)

        return PlanDetail(
            has_active_subscription=True,
            plan_name=plan.name,
            level=max(FREE_LEVEL, plan.level),
            token_balance=balance,
            subscription_id=subscription.id,
            plan_id=plan.id,
            token_amount=plan.token_amount,
            tokens_used=used,
            tokens_remaining=remaining,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
            features=list(plan.features or []),
        )

    async def enforce_exhaustion(self, user_id: uuid.UUID) -> bool:
        """Expire the user's active subscription if its allotment is used up.

        Returns:
            True if a subscription was found exhausted.

        Raises:
            NotFoundError: If the user does not exist.
        """
        detail = await self.get_current_plan_detail(user_id, enforce_exhaustion=True)
        return detail.exhausted

    async def get_user_plans(self, user_id: uuid.UUID) -> UserPlans:
        """Return the user's subscription history with per-period usage.

        Raises:
            NotFoundError: If the user does not exist.
        """
        async with self._database.transaction("get_user_plans") as db:
            if await UserRepository.get_balance(db, user_id) is None:
                raise NotFoundError("User", str(user_id))
            active = await SubscriptionRepository.list_with_usage(
                db, user_id, [SUBSCRIPTION_ACTIVE]
            )
            closed = await SubscriptionRepository.list_with_usage(
                db, user_id, list(TERMINAL_STATUSES)
            )

        return UserPlans(
            active=[_to_period(row.subscription, row.tokens_used) for row in active],
            closed=[_to_period(row.subscription, row.tokens_used) for row in closed],
        )
