"""Async database engine and transaction management.

The Database handle owns the SQLAlchemy async engine and its bounded
connection pool. It is built once at startup, passed to every service
that needs the store, and disposed at shutdown.

Every unit of work runs through Database.transaction(): one AsyncSession,
one BEGIN/COMMIT, full rollback on any exception, and a deadline for the
whole block. Driver faults are translated into the API error taxonomy
here so services never inspect raw DBAPI exceptions.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from voice_backend.core.config import Settings
from voice_backend.core.errors import (
    APIError,
    StoreUnavailableError,
    TransactionConflictError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE codes
_SERIALIZATION_FAILURE = "40001"
_DEADLOCK_DETECTED = "40P01"
_UNIQUE_VIOLATION = "23505"
_QUERY_CANCELED = "57014"  # statement_timeout
_NUMERIC_OUT_OF_RANGE = "22003"

# Partial unique index guaranteeing one active subscription per user
ACTIVE_SUBSCRIPTION_INDEX = "uq_user_subscriptions_one_active"


def _sqlstate(exc: DBAPIError) -> str | None:
    """Extract the SQLSTATE code from a wrapped driver exception."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is None and orig is not None:
        code = getattr(orig.__cause__, "sqlstate", None)
    return code


def translate_store_error(exc: DBAPIError, operation: str) -> APIError | None:
    """Map a DBAPI error onto the error taxonomy.

    Args:
        exc: Exception raised by SQLAlchemy.
        operation: Name of the store operation, attached for context.

    Returns:
        TransactionConflictError for serialization failures, deadlocks and
        races on the single-active-subscription index; StoreUnavailableError
        for connectivity faults and statement timeouts; ValidationError for
        values outside a column range; None when the error
        is not a known store condition and should propagate unchanged.
    """
    code = _sqlstate(exc)
    if code in (_SERIALIZATION_FAILURE, _DEADLOCK_DETECTED):
        return TransactionConflictError(operation)
    if code == _UNIQUE_VIOLATION and ACTIVE_SUBSCRIPTION_INDEX in str(exc.orig):
        return TransactionConflictError(operation)
    if code == _QUERY_CANCELED:
        return StoreUnavailableError(operation, "timed out")
    if code == _NUMERIC_OUT_OF_RANGE:
        return ValidationError(
            "Value out of range for storage", details=[{"operation": operation}]
        )
    if isinstance(exc, (OperationalError, InterfaceError)) or exc.connection_invalidated:
        return StoreUnavailableError(operation)
    return None


class Database:
    """Store handle: engine, session factory and transaction scope.

    Args:
        engine: Configured async engine (owns the connection pool).
        operation_timeout: Deadline in seconds for one transaction block.
    """

    def __init__(self, engine: AsyncEngine, *, operation_timeout: float = 15.0) -> None:
        self._engine = engine
        self._operation_timeout = operation_timeout
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, config: Settings) -> "Database":
        """Create the pooled engine described by the settings.

        Pool size + overflow bound concurrent connections; callers block for
        at most pool_timeout seconds waiting for one. Each statement carries
        a server-side statement_timeout and a client-side command_timeout.
        """
        engine = create_async_engine(
            config.database_url,
            echo=False,
            pool_pre_ping=True,
            pool_size=config.database_pool_size,
            max_overflow=config.database_max_overflow,
            pool_timeout=config.database_pool_timeout,
            connect_args={
                "command_timeout": config.database_statement_timeout_ms / 1000,
                "server_settings": {
                    "statement_timeout": str(config.database_statement_timeout_ms)
                },
            },
        )
        return cls(engine, operation_timeout=config.store_operation_timeout)

    @property
    def engine(self) -> AsyncEngine:
        """Underlying async engine."""
        return self._engine

    @asynccontextmanager
    async def transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Run a block inside one database transaction.

        Commits when the block exits cleanly. Any exception (including
        business errors such as InsufficientBalanceError, and task
        cancellation) rolls back everything written in the block.

        Args:
            operation: Operation name used in logs and translated errors.

        Yields:
            AsyncSession bound to the open transaction.

        Raises:
            TransactionConflictError: Concurrent write conflict (retryable).
            StoreUnavailableError: Connectivity fault, pool exhaustion or
                deadline expiry.
        """
        try:
            async with asyncio.timeout(self._operation_timeout):
                async with self._session_factory() as session, session.begin():
                    yield session
        except TimeoutError as exc:
            logger.warning("Store operation '%s' exceeded deadline", operation)
            raise StoreUnavailableError(operation, "timed out") from exc
        except PoolTimeoutError as exc:
            logger.warning("Connection pool exhausted during '%s'", operation)
            raise StoreUnavailableError(operation, "connection pool exhausted") from exc
        except OSError as exc:
            # asyncpg raises socket errors unwrapped when connecting
            logger.warning("Store unreachable during '%s': %s", operation, exc)
            raise StoreUnavailableError(operation) from exc
        except DBAPIError as exc:
            translated = translate_store_error(exc, operation)
            if translated is None:
                logger.exception("Unexpected store error during '%s'", operation)
                raise
            logger.warning("Store error during '%s': %s", operation, translated.code)
            raise translated from exc

    async def ping(self) -> bool:
        """Return True if the store answers a trivial query."""
        try:
            async with self.transaction("ping") as db:
                await db.execute(text("SELECT 1"))
        except StoreUnavailableError:
            return False
        return True

    async def close(self) -> None:
        """Dispose the engine and close every pooled connection."""
        await self._engine.dispose()
        logger.info("Database connection pool closed")
