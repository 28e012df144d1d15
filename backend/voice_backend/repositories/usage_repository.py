"""Repository for token usage record operations.

Provides database access for the append-only token_usage table:
insert, paginated listing, and the cost aggregation used to compute
consumption inside a subscription window.
"""

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from voice_backend.models.usage import TokenUsageRecord


class UsageRepository:
    """Stateless repository for TokenUsageRecord table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        session_id: str | None,
        cost_tokens: int,
        input_tokens: int = 0,
        output_tokens: int = 0,
        input_text_tokens: int = 0,
        input_audio_tokens: int = 0,
        input_image_tokens: int = 0,
        cached_tokens: int = 0,
        output_text_tokens: int = 0,
        output_audio_tokens: int = 0,
    ) -> TokenUsageRecord:
        """Append a usage record.

        total_tokens and cost_tokens are both set to cost_tokens: the
        reported total is what the ledger debits.

        Returns:
            Created TokenUsageRecord with database-generated fields.
        """
        record = TokenUsageRecord(
            user_id=user_id,
            session_id=session_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=cost_tokens,
            cost_tokens=cost_tokens,
            input_text_tokens=input_text_tokens,
            input_audio_tokens=input_audio_tokens,
            input_image_tokens=input_image_tokens,
            cached_tokens=cached_tokens,
            output_text_tokens=output_text_tokens,
            output_audio_tokens=output_audio_tokens,
        )
        db.add(record)
        await db.flush()
        await db.refresh(record)
        return record

    @staticmethod
    async def list_by_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[TokenUsageRecord], int]:
        """List usage records for a user, newest first.

        Args:
            db: Async database session.
            user_id: User to query records for.
            offset: Number of records to skip.
            limit: Maximum records to return.

        Returns:
            Tuple of (records list, total count).
        """
        condition = TokenUsageRecord.user_id == user_id

        count_stmt = select(func.count()).select_from(TokenUsageRecord).where(condition)
        total_result = await db.execute(count_stmt)
        total = total_result.scalar_one()

        data_stmt = (
            select(TokenUsageRecord)
            .where(condition)
            .order_by(TokenUsageRecord.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        records = list(result.scalars().all())

        return records, total

    @staticmethod
    async def sum_cost_in_window(
        db: AsyncSession,
        user_id: uuid.UUID,
        window_start: datetime,
        window_end: datetime | None = None,
    ) -> int:
        """Sum cost_tokens for a user's records in [window_start, window_end).

        An open window (window_end=None) has no upper bound, i.e. it runs
        up to the present.

        Args:
            db: Async database session.
            user_id: User to aggregate for.
            window_start: Start of window (inclusive).
            window_end: End of window (exclusive), or None while open.

        Returns:
            Total cost in tokens (0 when no records match).
        """
        conditions = [
            TokenUsageRecord.user_id == user_id,
            TokenUsageRecord.created_at >= window_start,
        ]
        if window_end is not None:
            conditions.append(TokenUsageRecord.created_at < window_end)

        stmt = select(
            func.coalesce(func.sum(TokenUsageRecord.cost_tokens), 0)
        ).where(*conditions)
        result = await db.execute(stmt)
        return int(result.scalar_one())
