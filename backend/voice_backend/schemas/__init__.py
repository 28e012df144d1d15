"""Pydantic request/response schemas for API endpoints."""

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
from voice_backend.schemas.subscriptions import (
    CurrentPlanResponse,
    EntitlementsResponse,
    OpenSubscriptionRequest,
    OpenSubscriptionResponse,
    PlanResponse,
    PromptLimitsResponse,
    SubscriptionPeriodResponse,
    SubscriptionResponse,
    UserPlansResponse,
)
from voice_backend.schemas.tokens import (
    BalanceResponse,
    DeductRequest,
    DeductResponse,
    TokenDetails,
    UsageBreakdownResponse,
    UsageRecordResponse,
    UsageReport,
)

__all__ = [
    # Admin
    "AddTokensRequest",
    "AddTokensResponse",
    "AdminPlanResponse",
    "PlanCreate",
    "PlanUpdate",
    "ProvisionUserRequest",
    "ProvisionUserResponse",
    "UserResponse",
    # Plans, subscriptions, entitlements
    "CurrentPlanResponse",
    "EntitlementsResponse",
    "OpenSubscriptionRequest",
    "OpenSubscriptionResponse",
    "PlanResponse",
    "PromptLimitsResponse",
    "SubscriptionPeriodResponse",
    "SubscriptionResponse",
    "UserPlansResponse",
    # Tokens
    "BalanceResponse",
    "DeductRequest",
    "DeductResponse",
    "TokenDetails",
    "UsageBreakdownResponse",
    "UsageRecordResponse",
    "UsageReport",
]
