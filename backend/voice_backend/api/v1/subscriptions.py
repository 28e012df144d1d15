"""Subscription API router.

Opening a subscription resets the token balance to the plan allotment.
GET /current may expire an exhausted subscription (lazy expiry) before
reporting the free tier.
"""

import uuid

from fastapi import APIRouter, status

from voice_backend.api.deps import CurrentUserId, Entitlements, Subscriptions
from voice_backend.core.responses import DataResponse
from voice_backend.schemas.subscriptions import (
    CurrentPlanResponse,
    OpenSubscriptionRequest,
    OpenSubscriptionResponse,
    SubscriptionPeriodResponse,
    SubscriptionResponse,
    UserPlansResponse,
)

router = APIRouter()


@router.get("")
async def get_user_plans(
    user_id: CurrentUserId,
    entitlements: Entitlements,
) -> DataResponse[UserPlansResponse]:
    """Return active and closed subscription periods with their usage."""
    plans = await entitlements.get_user_plans(user_id)
    return DataResponse(
        data=UserPlansResponse(
            active_plans=[
                SubscriptionPeriodResponse.from_period(p) for p in plans.active
            ],
            closed_plans=[
                SubscriptionPeriodResponse.from_period(p) for p in plans.closed
            ],
        )
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def open_subscription(
    body: OpenSubscriptionRequest,
    user_id: CurrentUserId,
    subscriptions: Subscriptions,
) -> DataResponse[OpenSubscriptionResponse]:
    """Subscribe to a plan, superseding any active subscription."""
    opened = await subscriptions.open_subscription(
        user_id, body.plan_id, body.payment_id
    )
    return DataResponse(
        data=OpenSubscriptionResponse(
            subscription_id=str(opened.subscription_id),
            new_balance=opened.new_balance,
        )
    )


@router.get("/current")
async def get_current_plan(
    user_id: CurrentUserId,
    entitlements: Entitlements,
) -> DataResponse[CurrentPlanResponse]:
    """Return the current plan period, expiring it if its allotment is used up."""
    detail = await entitlements.get_current_plan_detail(user_id)
    return DataResponse(data=CurrentPlanResponse.from_detail(detail))


@router.post("/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: uuid.UUID,
    user_id: CurrentUserId,
    subscriptions: Subscriptions,
) -> DataResponse[SubscriptionResponse]:
    """Cancel one of the user's active subscriptions. The balance is kept."""
    subscription = await subscriptions.cancel_subscription(user_id, subscription_id)
    return DataResponse(data=SubscriptionResponse.from_model(subscription))
