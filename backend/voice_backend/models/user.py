"""User model - identity, preferences and token balance.

token_balance is the spendable token count. It is written only by the
ledger (deduct/credit), by subscription opening (reset to the plan
allotment) and by initial provisioning.
"""

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from voice_backend.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from voice_backend.models.subscription import UserSubscription

_DEFAULT_UUID = text("gen_random_uuid()")


class User(Base, TimestampMixin):
    """Chat client user.

    Attributes:
        id: UUID primary key.
        telegram_id: Unique external identity from the chat client.
        username: Optional client-side handle.
        first_name: Display first name.
        last_name: Optional last name.
        language_code: Client locale (e.g. "en", "ru").
        token_balance: Spendable tokens. Never negative (CHECK constraint).
        selected_model: Preferred realtime model identifier.
        selected_voice: Preferred synthesis voice.
        selected_prompt_id: Currently selected system prompt.
        is_admin: Whether the user has admin privileges. Defaults to False.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("token_balance >= 0", name="ck_users_token_balance_nonneg"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    telegram_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )
    username: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    first_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        server_default=text("''"),
        default="",
    )
    last_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    language_code: Mapped[str | None] = mapped_column(
        String(10),
        nullable=True,
    )
    token_balance: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        server_default=text("0"),
        default=0,
    )
    selected_model: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    selected_voice: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    selected_prompt_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    is_admin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )

    subscriptions: Mapped[list["UserSubscription"]] = relationship(
        "UserSubscription",
        back_populates="user",
        cascade="all, delete-orphan",
    )
