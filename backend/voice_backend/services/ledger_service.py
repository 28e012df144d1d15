"""Ledger service: token balance reads, deductions and credits.

A deduction reads the balance under a row lock, rejects overdrafts, then
writes the new balance and appends one TokenUsageRecord in the same
transaction. Either both writes commit or neither does. Concurrent
deductions for one user serialize on the users row, so two requests can
never both spend the same tokens.
"""

import logging
import uuid
from dataclasses import dataclass, field

from voice_backend.core.database import Database
from voice_backend.core.errors import (
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from voice_backend.models.usage import TokenUsageRecord
from voice_backend.repositories.usage_repository import UsageRepository
from voice_backend.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

_USER = "User"


@dataclass(frozen=True)
class InputTokens:
    """Input token counts reported by the realtime API."""

    total: int = 0
    text: int = 0
    audio: int = 0
    image: int = 0
    cached: int = 0


@dataclass(frozen=True)
class OutputTokens:
    """Output token counts reported by the realtime API."""

    total: int = 0
    text: int = 0
    audio: int = 0


@dataclass(frozen=True)
class UsageBreakdown:
    """Token usage for one deduction.

    Attributes:
        total: Tokens to debit. Governs balance arithmetic.
        input: Informational input category counts (stored, not reconciled).
        output: Informational output category counts (stored, not reconciled).
    """

    total: int
    input: InputTokens = field(default_factory=InputTokens)
    output: OutputTokens = field(default_factory=OutputTokens)

    def validate(self) -> None:
        """Reject negative counts.

        Raises:
            ValidationError: If total or any category count is negative.
        """
        counts = {
            "total": self.total,
            "input.total": self.input.total,
            "input.text": self.input.text,
            "input.audio": self.input.audio,
            "input.image": self.input.image,
            "input.cached": self.input.cached,
            "output.total": self.output.total,
            "output.text": self.output.text,
            "output.audio": self.output.audio,
        }
        negative = [name for name, value in counts.items() if value < 0]
        if negative:
            raise ValidationError(
                "Token counts must be non-negative integers",
                details=[{"field": name} for name in negative],
            )


@dataclass(frozen=True)
class DeductionResult:
    """Outcome of LedgerService.deduct().

    Attributes:
        tokens_used: Tokens debited (0 for check-only calls).
        new_balance: Balance after the call (unchanged for check-only calls).
        breakdown: The recorded usage, or None for check-only calls.
    """

    tokens_used: int
    new_balance: int
    breakdown: UsageBreakdown | None


class LedgerService:
    """Token balance engine.

    Args:
        database: Store handle; each operation runs in its own transaction.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    async def get_balance(self, user_id: uuid.UUID) -> int:
        """Return the user's current token balance.

        Raises:
            NotFoundError: If the user does not exist.
        """
        async with self._database.transaction("get_balance") as db:
            balance = await UserRepository.get_balance(db, user_id)
        if balance is None:
            raise NotFoundError(_USER, str(user_id))
        return balance

    async def deduct(
        self,
        user_id: uuid.UUID,
        usage: UsageBreakdown,
        session_ref: str | None = None,
        *,
        check_only: bool = False,
    ) -> DeductionResult:
        """Debit usage.total tokens and log the usage atomically.

        With check_only=True the call is a pre-flight sufficiency check: it
        raises exactly as a real deduction would but never writes.

        Args:
            user_id: User to debit.
            usage: Token usage; total is debited, categories are stored.
            session_ref: Realtime session reference stored on the record.
            check_only: Only verify that the balance covers usage.total.

        Returns:
            DeductionResult with tokens used and the new balance.

        Raises:
            ValidationError: If any token count is negative.
            NotFoundError: If the user does not exist.
            InsufficientBalanceError: If the balance is below usage.total.
        """
        usage.validate()

        async with self._database.transaction("deduct") as db:
            current = await UserRepository.get_balance(
                db, user_id, for_update=not check_only
            )
            if current is None:
                raise NotFoundError(_USER, str(user_id))

            if current < usage.total:
                logger.warning(
                    "Insufficient tokens for user %s: have %d, need %d",
                    user_id,
                    current,
                    usage.total,
                )
                raise InsufficientBalanceError(balance=current, required=usage.total)

            if check_only:
                return DeductionResult(tokens_used=0, new_balance=current, breakdown=None)

            new_balance = current - usage.total
            await UserRepository.set_balance(db, user_id, new_balance)
            await UsageRepository.create(
                db,
                user_id=user_id,
                session_id=session_ref,
                cost_tokens=usage.total,
                input_tokens=usage.input.total,
                output_tokens=usage.output.total,
                input_text_tokens=usage.input.text,
                input_audio_tokens=usage.input.audio,
                input_image_tokens=usage.input.image,
                cached_tokens=usage.input.cached,
                output_text_tokens=usage.output.text,
                output_audio_tokens=usage.output.audio,
            )

        logger.info(
            "Deducted %d tokens from user %s (session %s). New balance: %d",
            usage.total,
            user_id,
            session_ref,
            new_balance,
        )
        return DeductionResult(
            tokens_used=usage.total,
            new_balance=new_balance,
            breakdown=usage,
        )

    async def add_tokens(self, user_id: uuid.UUID, amount: int) -> int:
        """Credit tokens to a user's balance.

        Args:
            user_id: User to credit.
            amount: Tokens to add.

        Returns:
            New balance.

        Raises:
            ValidationError: If amount is not positive, or the new
                balance would exceed the BIGINT column.
            NotFoundError: If the user does not exist.
        """
        if amount <= 0:
            raise ValidationError("Token amount must be a positive integer")

        async with self._database.transaction("add_tokens") as db:
            new_balance = await UserRepository.atomic_credit(
                db, user_id=user_id, amount=amount
            )
        if new_balance is None:
            raise NotFoundError(_USER, str(user_id))

        logger.info(
            "Added %d tokens to user %s. New balance: %d", amount, user_id, new_balance
        )
        return new_balance

    async def list_usage(
        self,
        user_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[TokenUsageRecord], int]:
        """Return a page of the user's usage log, newest first.

        Raises:
            NotFoundError: If the user does not exist.
        """
        async with self._database.transaction("list_usage") as db:
            if await UserRepository.get_balance(db, user_id) is None:
                raise NotFoundError(_USER, str(user_id))
            return await UsageRepository.list_by_user(
                db, user_id, offset=offset, limit=limit
            )
