"""Repository for the subscription plan catalog."""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voice_backend.models.subscription import SubscriptionPlan, UserSubscription


class PlanRepository:
    """Stateless repository for SubscriptionPlan table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, plan_id: int) -> SubscriptionPlan | None:
        """Fetch a plan by primary key.

        Args:
            db: Async database session.
            plan_id: Plan primary key.

        Returns:
            SubscriptionPlan if found, None otherwise.
        """
        return await db.get(SubscriptionPlan, plan_id)

    @staticmethod
    async def list_active(db: AsyncSession) -> list[SubscriptionPlan]:
        """List purchasable plans, cheapest first."""
        stmt = (
            select(SubscriptionPlan)
            .where(SubscriptionPlan.is_active.is_(True))
            .order_by(SubscriptionPlan.price.asc(), SubscriptionPlan.id.asc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_all(db: AsyncSession) -> list[SubscriptionPlan]:
        """List every plan, retired ones included, oldest first."""
        stmt = select(SubscriptionPlan).order_by(SubscriptionPlan.id.asc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def is_referenced(db: AsyncSession, plan_id: int) -> bool:
        """Whether any subscription, in any status, points at the plan."""
        stmt = (
            select(UserSubscription.id)
            .where(UserSubscription.plan_id == plan_id)
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        name: str,
        price: Decimal,
        token_amount: int,
        level: int,
        currency: str = "RUB",
        description: str | None = None,
        features: list[str] | None = None,
        is_active: bool = True,
    ) -> SubscriptionPlan:
        """Insert a catalog entry.

        Returns:
            Created SubscriptionPlan with database-generated fields.
        """
        plan = SubscriptionPlan(
            name=name,
            description=description,
            price=price,
            currency=currency,
            token_amount=token_amount,
            level=level,
            features=list(features or []),
            is_active=is_active,
        )
        db.add(plan)
        await db.flush()
        await db.refresh(plan)
        return plan

    @staticmethod
    async def delete(db: AsyncSession, plan: SubscriptionPlan) -> None:
        """Delete a catalog entry.

        Raises:
            IntegrityError: If a subscription still references the plan
                (foreign key is ON DELETE RESTRICT).
        """
        await db.delete(plan)
        await db.flush()
