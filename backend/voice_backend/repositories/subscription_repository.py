"""Repository for user subscription periods.

Provides the active-subscription lookup (joined to its plan), the
status transitions used by the lifecycle service, and the history
query that aggregates per-period token usage.
"""

import uuid
from collections.abc import Sequence
from typing import Any, NamedTuple, cast

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from voice_backend.models.subscription import (
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_EXPIRED,
    UserSubscription,
)
from voice_backend.models.usage import TokenUsageRecord


class SubscriptionUsage(NamedTuple):
    """A subscription row with the tokens consumed in its window."""

    subscription: UserSubscription
    tokens_used: int


class SubscriptionRepository:
    """Stateless repository for UserSubscription table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(
        db: AsyncSession, subscription_id: uuid.UUID
    ) -> UserSubscription | None:
        """Fetch a subscription by primary key, with its plan loaded.

        populate_existing refreshes a row already in the session after a
        bulk status UPDATE.
        """
        stmt = (
            select(UserSubscription)
            .options(joinedload(UserSubscription.plan))
            .where(UserSubscription.id == subscription_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_active(
        db: AsyncSession, user_id: uuid.UUID
    ) -> UserSubscription | None:
        """Fetch the user's most recent active subscription, with its plan.

        Args:
            db: Async database session.
            user_id: Subscription owner.

        Returns:
            Active UserSubscription, or None if the user has none.
        """
        stmt = (
            select(UserSubscription)
            .options(joinedload(UserSubscription.plan))
            .where(
                UserSubscription.user_id == user_id,
                UserSubscription.status == SUBSCRIPTION_ACTIVE,
            )
            .order_by(UserSubscription.created_at.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        plan_id: int,
        payment_id: str | None = None,
    ) -> UserSubscription:
        """Insert a new active subscription starting now.

        Returns:
            Created UserSubscription with database-generated fields.
        """
        subscription = UserSubscription(
            user_id=user_id,
            plan_id=plan_id,
            payment_id=payment_id,
            status=SUBSCRIPTION_ACTIVE,
        )
        db.add(subscription)
        await db.flush()
        await db.refresh(subscription)
        return subscription

    @staticmethod
    async def expire_active_for_user(db: AsyncSession, user_id: uuid.UUID) -> int:
        """Mark every active subscription of a user as expired (superseded).

        Returns:
            Number of rows transitioned.
        """
        result = cast(
            CursorResult[Any],
            await db.execute(
                update(UserSubscription)
                .where(
                    UserSubscription.user_id == user_id,
                    UserSubscription.status == SUBSCRIPTION_ACTIVE,
                )
                .values(status=SUBSCRIPTION_EXPIRED, end_date=func.now())
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount

    @staticmethod
    async def transition_if_active(
        db: AsyncSession,
        subscription_id: uuid.UUID,
        new_status: str,
    ) -> bool:
        """Move one subscription out of 'active' and close its window.

        The status guard makes the update a no-op on rows that are already
        terminal, so repeated calls never move end_date.

        Args:
            db: Async database session.
            subscription_id: Subscription to transition.
            new_status: 'expired' or 'cancelled'.

        Returns:
            True if the row was active and is now transitioned.

        Raises:
            ValueError: If new_status is not a terminal status.
        """
        if new_status not in (SUBSCRIPTION_EXPIRED, SUBSCRIPTION_CANCELLED):
            raise ValueError(f"not a terminal subscription status: {new_status}")
        result = cast(
            CursorResult[Any],
            await db.execute(
                update(UserSubscription)
                .where(
                    UserSubscription.id == subscription_id,
                    UserSubscription.status == SUBSCRIPTION_ACTIVE,
                )
                .values(status=new_status, end_date=func.now())
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount > 0

    @staticmethod
    async def list_with_usage(
        db: AsyncSession,
        user_id: uuid.UUID,
        statuses: Sequence[str],
    ) -> list[SubscriptionUsage]:
        """List a user's subscriptions in the given statuses with window usage.

        Usage per row is SUM(cost_tokens) over [start_date, end_date), with an
        open end for subscriptions that are still active.

        Args:
            db: Async database session.
            user_id: Subscription owner.
            statuses: Statuses to include.

        Returns:
            SubscriptionUsage rows, newest subscription first.
        """
        tokens_used = func.coalesce(func.sum(TokenUsageRecord.cost_tokens), 0).label(
            "tokens_used"
        )
        stmt = (
            select(UserSubscription, tokens_used)
            .outerjoin(
                TokenUsageRecord,
                and_(
                    TokenUsageRecord.user_id == UserSubscription.user_id,
                    TokenUsageRecord.created_at >= UserSubscription.start_date,
                    or_(
                        UserSubscription.end_date.is_(None),
                        TokenUsageRecord.created_at < UserSubscription.end_date,
                    ),
                ),
            )
            .options(selectinload(UserSubscription.plan))
            .where(
                UserSubscription.user_id == user_id,
                UserSubscription.status.in_(list(statuses)),
            )
            .group_by(UserSubscription.id)
            .order_by(UserSubscription.created_at.desc())
        )
        result = await db.execute(stmt)
        return [
            SubscriptionUsage(subscription=row[0], tokens_used=int(row[1]))
            for row in result.all()
        ]
