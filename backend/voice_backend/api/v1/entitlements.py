"""Entitlements API router."""

from typing import Annotated

from fastapi import APIRouter, Query

from voice_backend.api.deps import CurrentUserId, Entitlements
from voice_backend.core.responses import DataResponse
from voice_backend.schemas.subscriptions import (
    EntitlementsResponse,
    PromptLimitsResponse,
)
from voice_backend.services.entitlement_service import prompt_limits_for

router = APIRouter()

CurrentPrompts = Annotated[
    int,
    Query(ge=0, description="Number of custom prompts the user already has"),
]


@router.get("")
async def get_entitlements(
    user_id: CurrentUserId,
    entitlements: Entitlements,
    current_prompts: CurrentPrompts = 0,
) -> DataResponse[EntitlementsResponse]:
    """Return the plan tier and the custom prompt quota."""
    plan_level = await entitlements.resolve_plan_level(user_id)
    limits = prompt_limits_for(plan_level.level, current_prompts)
    return DataResponse(
        data=EntitlementsResponse(
            plan_name=plan_level.plan_name,
            plan_level=plan_level.level,
            prompt_limits=PromptLimitsResponse.from_limits(limits),
        )
    )
