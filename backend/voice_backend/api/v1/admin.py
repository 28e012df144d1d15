"""Admin API router.

User provisioning, manual token credits and plan catalog management.
All endpoints require the AdminUser dependency.
"""

import uuid
from decimal import Decimal

from fastapi import APIRouter, Response, status

from voice_backend.api.deps import AdminUser, Ledger, Provisioning, Subscriptions
from voice_backend.core.responses import DataResponse
from voice_backend.schemas.admin import (
    AddTokensRequest,
    AddTokensResponse,
    AdminPlanResponse,
    PlanCreate,
    PlanUpdate,
    ProvisionUserRequest,
    ProvisionUserResponse,
    UserResponse,
)

router = APIRouter()

# =============================================================================
# Users
# =============================================================================


@router.post("/users")
async def provision_user(
    body: ProvisionUserRequest,
    response: Response,
    _admin: AdminUser,
    provisioning: Provisioning,
) -> DataResponse[ProvisionUserResponse]:
    """Get or create a user by external identity.

    Returns 201 when the user was created, 200 when it already existed.
    """
    user, created = await provisioning.provision_user(
        body.telegram_id,
        first_name=body.first_name,
        username=body.username,
        last_name=body.last_name,
        language_code=body.language_code,
    )
    if created:
        response.status_code = status.HTTP_201_CREATED
    return DataResponse(
        data=ProvisionUserResponse(user=UserResponse.from_model(user), created=created)
    )


@router.post("/users/{user_id}/tokens")
async def add_tokens(
    user_id: uuid.UUID,
    body: AddTokensRequest,
    _admin: AdminUser,
    ledger: Ledger,
) -> DataResponse[AddTokensResponse]:
    """Credit tokens to a user's balance."""
    new_balance = await ledger.add_tokens(user_id, body.tokens_to_add)
    return DataResponse(
        data=AddTokensResponse(user_id=str(user_id), new_balance=new_balance)
    )


# =============================================================================
# Plan catalog
# =============================================================================


@router.post("/plans", status_code=status.HTTP_201_CREATED)
async def create_plan(
    body: PlanCreate,
    _admin: AdminUser,
    subscriptions: Subscriptions,
) -> DataResponse[AdminPlanResponse]:
    """Add a plan to the catalog."""
    plan = await subscriptions.create_plan(
        name=body.name,
        price=Decimal(body.price),
        token_amount=body.token_amount,
        level=body.level,
        currency=body.currency,
        description=body.description,
        features=body.features,
    )
    return DataResponse(data=AdminPlanResponse.from_model(plan))


@router.get("/plans")
async def list_plans(
    _admin: AdminUser,
    subscriptions: Subscriptions,
) -> DataResponse[list[AdminPlanResponse]]:
    """List every plan, including retired ones."""
    plans = await subscriptions.list_all_plans()
    return DataResponse(data=[AdminPlanResponse.from_model(p) for p in plans])


@router.put("/plans/{plan_id}")
async def update_plan(
    plan_id: int,
    body: PlanUpdate,
    _admin: AdminUser,
    subscriptions: Subscriptions,
) -> DataResponse[AdminPlanResponse]:
    """Update plan properties; omitted fields are left unchanged."""
    plan = await subscriptions.update_plan(
        plan_id,
        name=body.name,
        description=body.description,
        price=Decimal(body.price) if body.price is not None else None,
        currency=body.currency,
        token_amount=body.token_amount,
        level=body.level,
        features=body.features,
        is_active=body.is_active,
    )
    return DataResponse(data=AdminPlanResponse.from_model(plan))


@router.delete("/plans/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_plan(
    plan_id: int,
    _admin: AdminUser,
    subscriptions: Subscriptions,
) -> Response:
    """Delete a plan no subscription has used.

    Returns 422 INVALID_STATE_TRANSITION when the plan is referenced.
    """
    await subscriptions.delete_plan(plan_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
