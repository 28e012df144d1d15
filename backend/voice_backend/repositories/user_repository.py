"""Repository for users and their token balance.

Provides point reads/writes of users.token_balance. Balance writes are
only issued by the ledger, subscription lifecycle and provisioning
services, always inside a Database.transaction() block.
"""

import uuid

from sqlalchemy import select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from voice_backend.models.user import User


class UserRepository:
    """Stateless repository for User table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
        """Fetch a user by primary key.

        Args:
            db: Async database session.
            user_id: UUID primary key.

        Returns:
            User if found, None otherwise.
        """
        return await db.get(User, user_id)

    @staticmethod
    async def get_by_telegram_id(db: AsyncSession, telegram_id: str) -> User | None:
        """Fetch a user by external chat-client identity.

        Args:
            db: Async database session.
            telegram_id: External identity string.

        Returns:
            User if found, None otherwise.
        """
        stmt = select(User).where(User.telegram_id == telegram_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        telegram_id: str,
        first_name: str,
        token_balance: int,
        username: str | None = None,
        last_name: str | None = None,
        language_code: str | None = None,
    ) -> User:
        """Create a new user with an initial token balance.

        Args:
            db: Async database session.
            telegram_id: Unique external identity.
            first_name: Display first name.
            token_balance: Initial spendable tokens (provisioning grant).
            username: Optional handle.
            last_name: Optional last name.
            language_code: Optional client locale.

        Returns:
            Created User with database-generated fields.
        """
        user = User(
            telegram_id=telegram_id,
            first_name=first_name,
            token_balance=token_balance,
            username=username,
            last_name=last_name,
            language_code=language_code,
        )
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> int | None:
        """Read the user's token balance.

        With for_update=True the user row is locked (SELECT ... FOR UPDATE)
        until the enclosing transaction ends, so concurrent balance writers
        for the same user serialize and each sees the previous commit.

        Args:
            db: Async database session.
            user_id: User to read.
            for_update: Lock the row for the rest of the transaction.

        Returns:
            Current balance, or None if the user does not exist.
        """
        stmt = select(User.token_balance).where(User.id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def set_balance(db: AsyncSession, user_id: uuid.UUID, balance: int) -> None:
        """Overwrite the user's token balance.

        Callers must hold the row lock from get_balance(for_update=True).

        Raises:
            ValueError: If balance is negative.
        """
        if balance < 0:
            raise ValueError("token balance cannot be negative")
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(token_balance=balance)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def atomic_credit(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        amount: int,
    ) -> int | None:
        """Atomically add tokens to a user's balance.

        Args:
            db: Async database session.
            user_id: User to credit.
            amount: Tokens to add (positive value).

        Returns:
            New balance after crediting, or None if the user does not exist.

        Raises:
            ValueError: If amount is not positive.
        """
        if amount <= 0:
            raise ValueError("atomic_credit amount must be positive")
        result = await db.execute(
            text(
                "UPDATE users SET token_balance = token_balance + :amount, "
                "updated_at = now() "
                "WHERE id = :user_id RETURNING token_balance"
            ),
            {"amount": amount, "user_id": user_id},
        )
        return result.scalar_one_or_none()
