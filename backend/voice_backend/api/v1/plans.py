"""Plan catalog API router."""

from fastapi import APIRouter

from voice_backend.api.deps import CurrentUserId, Subscriptions
from voice_backend.core.responses import DataResponse
from voice_backend.schemas.subscriptions import PlanResponse

router = APIRouter()


@router.get("")
async def list_plans(
    _user_id: CurrentUserId,
    subscriptions: Subscriptions,
) -> DataResponse[list[PlanResponse]]:
    """Return the purchasable plans, cheapest first."""
    plans = await subscriptions.list_plans()
    return DataResponse(data=[PlanResponse.from_model(plan) for plan in plans])
