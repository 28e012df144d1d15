"""User provisioning: get-or-create by external chat-client identity.

New users receive the configured default token balance once, at creation.
Returning users are handed back unchanged: provisioning never tops up an
existing balance.
"""

import logging

from sqlalchemy.exc import IntegrityError

from voice_backend.core.config import settings
from voice_backend.core.database import Database
from voice_backend.models.user import User
from voice_backend.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


class UserProvisioningService:
    """Creates users on first contact.

    Args:
        database: Store handle.
        default_token_balance: Initial grant for new users. Defaults to
            settings.default_token_balance.
    """

    def __init__(
        self,
        database: Database,
        default_token_balance: int | None = None,
    ) -> None:
        self._database = database
        self._default_token_balance = (
            settings.default_token_balance
            if default_token_balance is None
            else default_token_balance
        )

    async def provision_user(
        self,
        telegram_id: str,
        *,
        first_name: str = "",
        username: str | None = None,
        last_name: str | None = None,
        language_code: str | None = None,
    ) -> tuple[User, bool]:
        """Return the user for an external identity, creating it if needed.

        Two first contacts racing on the same identity are resolved by the
        unique telegram_id constraint: the loser's insert fails and it
        re-reads the winner's row.

        Args:
            telegram_id: External identity from the chat client.
            first_name: Display first name for a new user.
            username: Optional handle for a new user.
            last_name: Optional last name for a new user.
            language_code: Optional client locale for a new user.

        Returns:
            Tuple of (user, created).
        """
        async with self._database.transaction("provision_user") as db:
            existing = await UserRepository.get_by_telegram_id(db, telegram_id)
            if existing is not None:
                return existing, False

            try:
                async with db.begin_nested():
                    user = await UserRepository.create(
                        db,
                        telegram_id=telegram_id,
                        first_name=first_name,
                        token_balance=self._default_token_balance,
                        username=username,
                        last_name=last_name,
                        language_code=language_code,
                    )
            except IntegrityError:
                winner = await UserRepository.get_by_telegram_id(db, telegram_id)
                if winner is None:
                    raise
                return winner, False

        logger.info(
            "Provisioned user %s (telegram_id=%s) with %d tokens",
            user.id,
            telegram_id,
            self._default_token_balance,
        )
        return user, True
