"""Token usage ORM model: append-only, no TimestampMixin.

TokenUsageRecord is written exactly once per successful deduction, in the
same transaction as the balance decrement. Records are never updated or
deleted; plan-period consumption is reconstructed by summing cost_tokens
over a created_at window.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from voice_backend.models.base import Base

_DEFAULT_UUID = text("gen_random_uuid()")

_NONNEG_COLUMNS = (
    "input_tokens",
    "output_tokens",
    "total_tokens",
    "cost_tokens",
    "input_text_tokens",
    "input_audio_tokens",
    "input_image_tokens",
    "cached_tokens",
    "output_text_tokens",
    "output_audio_tokens",
)


class TokenUsageRecord(Base):
    """One deduction's token category breakdown.

    Attributes:
        id: UUID primary key.
        user_id: FK to users table.
        session_id: Realtime session reference supplied by the client.
        input_tokens: Total input tokens reported by the realtime API.
        output_tokens: Total output tokens reported by the realtime API.
        total_tokens: Total tokens reported by the realtime API.
        cost_tokens: Tokens debited from the balance (governs arithmetic).
        input_text_tokens: Input text tokens.
        input_audio_tokens: Input audio tokens.
        input_image_tokens: Input image tokens.
        cached_tokens: Cached input tokens.
        output_text_tokens: Output text tokens.
        output_audio_tokens: Output audio tokens.
        created_at: When the deduction committed.
    """

    __tablename__ = "token_usage"
    __table_args__ = (
        *(
            CheckConstraint(f"{column} >= 0", name=f"ck_token_usage_{column}_nonneg")
            for column in _NONNEG_COLUMNS
        ),
        Index("ix_token_usage_user_created", "user_id", "created_at"),
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
    session_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    input_tokens: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
    output_tokens: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
    total_tokens: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    cost_tokens: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    input_text_tokens: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
    input_audio_tokens: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
    input_image_tokens: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
    cached_tokens: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
    output_text_tokens: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
    output_audio_tokens: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
