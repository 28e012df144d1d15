"""Subscription ORM models - plan catalog and per-user plan periods.

SubscriptionPlan is the catalog entry (allotment, price, entitlement level).
UserSubscription is one period of plan membership. A partial unique index
allows at most one 'active' row per user.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from voice_backend.core.database import ACTIVE_SUBSCRIPTION_INDEX
from voice_backend.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from voice_backend.models.user import User

_DEFAULT_UUID = text("gen_random_uuid()")

SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_EXPIRED = "expired"
SUBSCRIPTION_CANCELLED = "cancelled"
TERMINAL_STATUSES = (SUBSCRIPTION_EXPIRED, SUBSCRIPTION_CANCELLED)


class SubscriptionPlan(Base):
    """Catalog entry for a purchasable plan.

    Attributes:
        id: Integer primary key.
        name: Display name. Not used for entitlement decisions.
        description: Optional marketing text.
        price: Price in the plan currency.
        currency: ISO 4217 code.
        token_amount: Token allotment granted for one subscription period.
        level: Entitlement tier (1 = free tier) gating prompt quotas.
        features: List of feature labels shown to the user.
        is_active: Whether the plan can be purchased.
        created_at: When the plan was added.
    """

    __tablename__ = "subscription_plans"
    __table_args__ = (
        CheckConstraint("token_amount >= 0", name="ck_plans_token_amount_nonneg"),
        CheckConstraint("price >= 0", name="ck_plans_price_nonneg"),
        CheckConstraint("level >= 1", name="ck_plans_level_positive"),
    )

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(
        Text(),
        nullable=True,
    )
    price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        server_default=text("'RUB'"),
        default="RUB",
    )
    token_amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    level: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default=text("1"),
        default=1,
    )
    features: Mapped[list[str]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'[]'::jsonb"),
        default=list,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("true"),
        default=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class UserSubscription(Base, TimestampMixin):
    """One period of plan membership.

    State machine: active -> expired (allotment exhausted or superseded),
    active -> cancelled. Both terminal.

    Attributes:
        id: UUID primary key.
        user_id: FK to users table.
        plan_id: FK to subscription_plans (RESTRICT: plans are never deleted
            while referenced).
        start_date: Start of the usage window (inclusive).
        end_date: End of the usage window (exclusive). NULL while open.
        status: One of active, expired, cancelled.
        payment_id: External payment reference.
    """

    __tablename__ = "user_subscriptions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'expired', 'cancelled')",
            name="ck_user_subscriptions_status_valid",
        ),
        Index(
            ACTIVE_SUBSCRIPTION_INDEX,
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
        ),
        Index("ix_user_subscriptions_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    plan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("subscription_plans.id", ondelete="RESTRICT"),
        nullable=False,
    )
    start_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default=text("'active'"),
        default=SUBSCRIPTION_ACTIVE,
    )
    payment_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    user: Mapped["User"] = relationship("User", back_populates="subscriptions")
    plan: Mapped[SubscriptionPlan] = relationship("SubscriptionPlan")
