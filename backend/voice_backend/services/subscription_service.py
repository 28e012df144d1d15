"""Subscription lifecycle service.

Opens subscription periods (superseding any active one and resetting the
token balance to the new plan's allotment), expires and cancels periods,
and manages the plan catalog.

Balance reset on open is unconditional: unused tokens from a prior plan
are discarded because plans are not cumulative.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from voice_backend.core.database import Database
from voice_backend.core.errors import InvalidStateError, NotFoundError
from voice_backend.models.subscription import (
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_EXPIRED,
    SubscriptionPlan,
    UserSubscription,
)
from voice_backend.repositories.plan_repository import PlanRepository
from voice_backend.repositories.subscription_repository import SubscriptionRepository
from voice_backend.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

_PLAN_IN_USE = "Plan {plan_id} is referenced by subscriptions; deactivate it instead"


@dataclass(frozen=True)
class OpenedSubscription:
    """Result of SubscriptionService.open_subscription().

    Attributes:
        subscription_id: The new active subscription.
        new_balance: Token balance after the reset (the plan allotment).
        superseded: Number of previously active subscriptions expired.
    """

    subscription_id: uuid.UUID
    new_balance: int
    superseded: int


class SubscriptionService:
    """Subscription lifecycle manager.

    Args:
        database: Store handle; each operation runs in its own transaction.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    async def open_subscription(
        self,
        user_id: uuid.UUID,
        plan_id: int,
        payment_ref: str | None = None,
    ) -> OpenedSubscription:
        """Start a new plan period for a user.

        In one transaction: lock the user row, expire any active
        subscription, insert the new active subscription and set the balance
        to the plan's token allotment. Concurrent opens for the same user
        serialize on the user row lock.

        Args:
            user_id: Subscriber.
            plan_id: Catalog plan to subscribe to.
            payment_ref: External payment reference stored on the row.

        Returns:
            OpenedSubscription with the new subscription ID and balance.

        Raises:
            NotFoundError: If the user or an active plan does not exist.
        """
        async with self._database.transaction("open_subscription") as db:
            if await UserRepository.get_balance(db, user_id, for_update=True) is None:
                raise NotFoundError("User", str(user_id))

            plan = await PlanRepository.get_by_id(db, plan_id)
            if plan is None or not plan.is_active:
                raise NotFoundError("Subscription plan", str(plan_id))

            superseded = await SubscriptionRepository.expire_active_for_user(
                db, user_id
            )
            subscription = await SubscriptionRepository.create(
                db,
                user_id=user_id,
                plan_id=plan.id,
                payment_id=payment_ref,
            )
            await UserRepository.set_balance(db, user_id, plan.token_amount)

        logger.info(
            "User %s subscribed to plan %s (%s); superseded %d; balance reset to %d",
            user_id,
            plan.id,
            plan.name,
            superseded,
            plan.token_amount,
        )
        return OpenedSubscription(
            subscription_id=subscription.id,
            new_balance=plan.token_amount,
            superseded=superseded,
        )

    async def expire_subscription(self, subscription_id: uuid.UUID) -> UserSubscription:
        """Close an active subscription as expired.

        Idempotent: a subscription that is already expired or cancelled is
        returned unchanged, keeping its original end_date.

        Raises:
            NotFoundError: If the subscription does not exist.
        """
        async with self._database.transaction("expire_subscription") as db:
            changed = await SubscriptionRepository.transition_if_active(
                db, subscription_id, SUBSCRIPTION_EXPIRED
            )
            subscription = await SubscriptionRepository.get_by_id(db, subscription_id)
        if subscription is None:
            raise NotFoundError("Subscription", str(subscription_id))
        if changed:
            logger.info("Subscription %s expired", subscription_id)
        return subscription

    async def cancel_subscription(
        self,
        user_id: uuid.UUID,
        subscription_id: uuid.UUID,
    ) -> UserSubscription:
        """Cancel one of the user's active subscriptions.

        The token balance is left untouched.

        Raises:
            NotFoundError: If the subscription does not exist or is not the
                user's.
            InvalidStateError: If the subscription is already terminal.
        """
        async with self._database.transaction("cancel_subscription") as db:
            subscription = await SubscriptionRepository.get_by_id(db, subscription_id)
            # Wrong owner is reported as not found to avoid leaking existence
            if subscription is None or subscription.user_id != user_id:
                raise NotFoundError("Subscription", str(subscription_id))
            if subscription.status != SUBSCRIPTION_ACTIVE:
                raise InvalidStateError(
                    f"Subscription is already {subscription.status}"
                )
            await SubscriptionRepository.transition_if_active(
                db, subscription_id, SUBSCRIPTION_CANCELLED
            )
            await db.refresh(subscription)

        logger.info("Subscription %s cancelled by user %s", subscription_id, user_id)
        return subscription

    async def list_plans(self) -> list[SubscriptionPlan]:
        """Return the purchasable plan catalog, cheapest first."""
        async with self._database.transaction("list_plans") as db:
            return await PlanRepository.list_active(db)

    async def create_plan(
        self,
        *,
        name: str,
        price: Decimal,
        token_amount: int,
        level: int,
        currency: str = "RUB",
        description: str | None = None,
        features: list[str] | None = None,
    ) -> SubscriptionPlan:
        """Add a plan to the catalog."""
        async with self._database.transaction("create_plan") as db:
            plan = await PlanRepository.create(
                db,
                name=name,
                price=price,
                token_amount=token_amount,
                level=level,
                currency=currency,
                description=description,
                features=features,
            )
        logger.info("Created plan %s (%s, level %d)", plan.id, plan.name, plan.level)
        return plan

    async def list_all_plans(self) -> list[SubscriptionPlan]:
        """Return every catalog plan, retired ones included (admin view)."""
        async with self._database.transaction("list_all_plans") as db:
            return await PlanRepository.list_all(db)

    async def update_plan(
        self,
        plan_id: int,
        *,
        name: str | None = None,
        description: str | None = None,
        price: Decimal | None = None,
        currency: str | None = None,
        token_amount: int | None = None,
        level: int | None = None,
        features: list[str] | None = None,
        is_active: bool | None = None,
    ) -> SubscriptionPlan:
        """Update catalog plan properties. None leaves a field unchanged.

        Changing token_amount affects future subscriptions only; balances
        already granted are not touched.

        Raises:
            NotFoundError: If the plan does not exist.
        """
        changes = {
            "name": name,
            "description": description,
            "price": price,
            "currency": currency,
            "token_amount": token_amount,
            "level": level,
            "features": features,
            "is_active": is_active,
        }
        async with self._database.transaction("update_plan") as db:
            plan = await PlanRepository.get_by_id(db, plan_id)
            if plan is None:
                raise NotFoundError("Subscription plan", str(plan_id))
            for field_name, value in changes.items():
                if value is not None:
                    setattr(plan, field_name, value)
            await db.flush()
            await db.refresh(plan)

        logger.info("Updated plan %s (%s, level %d)", plan.id, plan.name, plan.level)
        return plan

    async def delete_plan(self, plan_id: int) -> None:
        """Delete a catalog plan that no subscription has ever used.

        Referenced plans are kept for the subscription history; retire them
        with update_plan(is_active=False) instead.

        Raises:
            NotFoundError: If the plan does not exist.
            InvalidStateError: If any subscription references the plan.
        """
        async with self._database.transaction("delete_plan") as db:
            plan = await PlanRepository.get_by_id(db, plan_id)
            if plan is None:
                raise NotFoundError("Subscription plan", str(plan_id))
            if await PlanRepository.is_referenced(db, plan_id):
                raise InvalidStateError(_PLAN_IN_USE.format(plan_id=plan_id))
            try:
                await PlanRepository.delete(db, plan)
            except IntegrityError as exc:
                # A subscription was opened on the plan after the check
                raise InvalidStateError(_PLAN_IN_USE.format(plan_id=plan_id)) from exc

        logger.info("Deleted plan %s", plan_id)
