import socket
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Iterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from voice_backend.core.config import settings
from voice_backend.core.database import Database
from voice_backend.models import Base, SubscriptionPlan, User

# Use separate test database (only the path segment is renamed; the
# database user shares the database name prefix)
TEST_DATABASE_URL = (
    settings.database_url.rsplit("/", 1)[0] + f"/{settings.database_name}_test"
)

# Test user ID (consistent across tests for predictable auth)
TEST_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
TEST_ADMIN_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")

# Security: This is a test-only secret. Production uses a real secret from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow


def create_test_jwt(
    user_id: uuid.UUID = TEST_USER_ID,
    *,
    secret: str = TEST_AUTH_SECRET,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT for test authentication.

    Args:
        user_id: User UUID to encode in the sub claim.
        secret: Signing secret (must match settings.auth_secret in tests).
        expires_delta: Time until expiration. Defaults to 1 hour.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or timedelta(hours=1)),
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections on port 5432."""
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex((settings.database_host, settings.database_port))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available.

    Called by fixtures that require database connection.
    """
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


# =============================================================================
# Fake store (unit tests without PostgreSQL)
# =============================================================================


class FakeDatabase:
    """Stand-in for Database that yields one mocked session per transaction.

    Records the operation name of every transaction so tests can assert
    how many units of work a service call opened.
    """

    def __init__(self) -> None:
        self.session = AsyncMock()
        self.session.add = MagicMock()  # add() is synchronous in SQLAlchemy
        self.session.begin_nested = MagicMock()  # used as an async context manager
        self.operations: list[str] = []

    @asynccontextmanager
    async def transaction(self, operation: str) -> AsyncIterator[AsyncMock]:
        self.operations.append(operation)
        yield self.session

    async def ping(self) -> bool:
        return True


@pytest.fixture
def fake_db() -> FakeDatabase:
    """Fake store handle for service unit tests."""
    return FakeDatabase()


# =============================================================================
# Real store (PostgreSQL)
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine with a fresh schema.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(
        TEST_DATABASE_URL, echo=False, pool_size=10, max_overflow=10
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Session for test setup and assertions; commits are visible to services."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def store(db_engine) -> Database:
    """Store handle over the test engine, as services receive it in production."""
    return Database(db_engine, operation_timeout=10.0)


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Committed user with a 1000-token balance."""
    user = User(
        id=TEST_USER_ID,
        telegram_id="100000001",
        first_name="Test",
        token_balance=1000,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    """Committed admin user."""
    user = User(
        id=TEST_ADMIN_ID,
        telegram_id="100000002",
        first_name="Admin",
        token_balance=0,
        is_admin=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


async def create_plan(
    db: AsyncSession,
    *,
    name: str = "Premium",
    token_amount: int = 5000,
    level: int = 2,
    price: Decimal = Decimal("299.00"),
    is_active: bool = True,
) -> SubscriptionPlan:
    """Insert and commit a catalog plan for test setup."""
    plan = SubscriptionPlan(
        name=name,
        price=price,
        currency="RUB",
        token_amount=token_amount,
        level=level,
        features=["voice"],
        is_active=is_active,
    )
    db.add(plan)
    await db.commit()
    await db.refresh(plan)
    return plan


@pytest_asyncio.fixture
async def premium_plan(db_session: AsyncSession) -> SubscriptionPlan:
    """Level-2 plan with a 5000-token allotment."""
    return await create_plan(db_session)


@pytest_asyncio.fixture
async def pro_plan(db_session: AsyncSession) -> SubscriptionPlan:
    """Level-3 plan with a 20000-token allotment."""
    return await create_plan(
        db_session,
        name="Pro",
        token_amount=20000,
        level=3,
        price=Decimal("999.00"),
    )


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def client(
    store: Database,
    test_user,  # noqa: ARG001 - ensures user exists
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client authenticated as TEST_USER_ID via JWT cookie.

    The app is created around the test store handle so no lifespan is
    needed (ASGITransport does not run it).
    """
    from voice_backend.main import create_app

    app = create_app(database=store)

    original_auth_enabled = settings.auth_enabled
    original_auth_secret = settings.auth_secret
    settings.auth_enabled = True
    settings.auth_secret = SecretStr(TEST_AUTH_SECRET)

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        cookies={settings.auth_cookie_name: create_test_jwt(TEST_USER_ID)},
    ) as ac:
        yield ac

    settings.auth_enabled = original_auth_enabled
    settings.auth_secret = original_auth_secret


@pytest_asyncio.fixture
async def admin_client(
    store: Database,
    admin_user,  # noqa: ARG001 - ensures admin exists
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client authenticated as the admin user."""
    from voice_backend.main import create_app

    app = create_app(database=store)

    original_auth_enabled = settings.auth_enabled
    original_auth_secret = settings.auth_secret
    settings.auth_enabled = True
    settings.auth_secret = SecretStr(TEST_AUTH_SECRET)

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        cookies={settings.auth_cookie_name: create_test_jwt(TEST_ADMIN_ID)},
    ) as ac:
        yield ac

    settings.auth_enabled = original_auth_enabled
    settings.auth_secret = original_auth_secret


# =============================================================================
# Autouse Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable rate limiting during tests.

    Rate limiting is tested separately; disable for other tests to avoid
    flaky failures from rate limit triggers.
    """
    from voice_backend.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False

    yield

    limiter.enabled = original_enabled
