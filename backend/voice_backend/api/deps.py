"""Shared dependencies for API endpoints.

Authentication: local-first mode uses DEFAULT_USER_ID; hosted mode
validates the JWT session cookie.

Store and services: the Database handle is created by the app lifespan
and kept on app.state. Services are cheap wrappers around it and are
built per request, so tests can swap the handle by overriding
get_database.
"""

import uuid
from typing import Annotated

import jwt
from fastapi import Depends, Request

from voice_backend.core.auth import decode_jwt
from voice_backend.core.config import settings
from voice_backend.core.database import Database
from voice_backend.core.errors import AdminRequiredError, UnauthorizedError
from voice_backend.models import User
from voice_backend.repositories.user_repository import UserRepository
from voice_backend.services.entitlement_service import EntitlementService
from voice_backend.services.ledger_service import LedgerService
from voice_backend.services.subscription_service import SubscriptionService
from voice_backend.services.user_provisioning import UserProvisioningService


def get_database(request: Request) -> Database:
    """Return the store handle opened by the application lifespan."""
    return request.app.state.database


DatabaseDep = Annotated[Database, Depends(get_database)]


async def get_current_user_id(request: Request) -> uuid.UUID:
    """Get current user ID from auth context.

    Validates the JWT from the httpOnly cookie when auth is enabled and
    falls back to DEFAULT_USER_ID when it is disabled.

    Args:
        request: HTTP request (injected by FastAPI).

    Returns:
        UUID of the current authenticated user.

    Raises:
        UnauthorizedError: For any auth failure. The message never says why.
    """
    if not settings.auth_enabled:
        if settings.default_user_id is None:
            raise UnauthorizedError()
        return settings.default_user_id

    token = request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise UnauthorizedError()

    try:
        payload = decode_jwt(token)
        return uuid.UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as exc:
        raise UnauthorizedError() from exc


CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]


async def get_current_user(user_id: CurrentUserId, database: DatabaseDep) -> User:
    """Get full User object for current user.

    Raises:
        UnauthorizedError: If the user no longer exists.
    """
    async with database.transaction("get_current_user") as db:
        user = await UserRepository.get_by_id(db, user_id)
    if user is None:
        raise UnauthorizedError()
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


async def require_admin(user: CurrentUser) -> User:
    """Allow only users with the admin flag.

    Raises:
        AdminRequiredError: If the user is not an admin.
    """
    if not user.is_admin:
        raise AdminRequiredError()
    return user


AdminUser = Annotated[User, Depends(require_admin)]


# =============================================================================
# Services
# =============================================================================


def get_ledger_service(database: DatabaseDep) -> LedgerService:
    return LedgerService(database)


def get_subscription_service(database: DatabaseDep) -> SubscriptionService:
    return SubscriptionService(database)


def get_entitlement_service(
    database: DatabaseDep,
    subscriptions: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> EntitlementService:
    return EntitlementService(database, subscriptions)


def get_provisioning_service(database: DatabaseDep) -> UserProvisioningService:
    return UserProvisioningService(database)


Ledger = Annotated[LedgerService, Depends(get_ledger_service)]
Subscriptions = Annotated[SubscriptionService, Depends(get_subscription_service)]
Entitlements = Annotated[EntitlementService, Depends(get_entitlement_service)]
Provisioning = Annotated[UserProvisioningService, Depends(get_provisioning_service)]
