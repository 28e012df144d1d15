"""Admin API request/response schemas.

User provisioning, manual token credits and plan catalog management.

Prices are accepted and returned as strings to preserve decimal precision.
All schemas use ConfigDict(extra="forbid") to reject unexpected fields.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, Field, field_validator

from voice_backend.models.subscription import SubscriptionPlan
from voice_backend.models.user import User
from voice_backend.schemas.subscriptions import PlanResponse
from voice_backend.schemas.tokens import MAX_TOKEN_COUNT

# Prevents pathological-precision Decimal parsing from consuming CPU/memory
_MAX_DECIMAL_STR_LEN = 20

# subscription_plans.price is Numeric(10, 2)
_MAX_PRICE = Decimal("100000000")
_CENT = Decimal("0.01")

# subscription_plans.level is INTEGER
_MAX_LEVEL = 2**31 - 1


def _validate_price(value: str) -> str:
    """Validate a string parses as a finite, non-negative Decimal."""
    if len(value) > _MAX_DECIMAL_STR_LEN:
        msg = "price string representation too long"
        raise ValueError(msg)
    try:
        d = Decimal(value)
    except InvalidOperation:
        msg = "price must be a valid decimal number"
        raise ValueError(msg) from None
    if not d.is_finite():
        msg = "price must be a finite number"
        raise ValueError(msg)
    if d < 0:
        msg = "price must be >= 0"
        raise ValueError(msg)
    if d >= _MAX_PRICE:
        msg = "price must be less than 100000000"
        raise ValueError(msg)
    if d != d.quantize(_CENT):
        msg = "price must have at most 2 decimal places"
        raise ValueError(msg)
    return value


# =============================================================================
# Users
# =============================================================================


class ProvisionUserRequest(BaseModel):
    """Request body for POST /admin/users.

    Attributes:
        telegram_id: External identity from the chat client.
        first_name: Display first name.
        username: Optional handle.
        last_name: Optional last name.
        language_code: Optional client locale.
    """

    model_config = ConfigDict(extra="forbid")

    telegram_id: str = Field(min_length=1, max_length=64)
    first_name: str = Field(default="", max_length=255)
    username: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)
    language_code: str | None = Field(default=None, max_length=10)


class UserResponse(BaseModel):
    """A user with its current balance."""

    model_config = ConfigDict(extra="forbid")

    id: str
    telegram_id: str
    username: str | None
    first_name: str
    token_balance: int
    is_admin: bool
    created_at: datetime

    @classmethod
    def from_model(cls, user: User) -> "UserResponse":
        return cls(
            id=str(user.id),
            telegram_id=user.telegram_id,
            username=user.username,
            first_name=user.first_name,
            token_balance=user.token_balance,
            is_admin=user.is_admin,
            created_at=user.created_at,
        )


class ProvisionUserResponse(BaseModel):
    """Response for POST /admin/users."""

    model_config = ConfigDict(extra="forbid")

    user: UserResponse
    created: bool


# =============================================================================
# Token credits
# =============================================================================


class AddTokensRequest(BaseModel):
    """Request body for POST /admin/users/{user_id}/tokens.

    Attributes:
        tokens_to_add: Tokens to credit. Positivity is enforced by the
            ledger so the rejection carries the ledger's error message.
    """

    model_config = ConfigDict(extra="forbid")

    tokens_to_add: int = Field(le=MAX_TOKEN_COUNT)


class AddTokensResponse(BaseModel):
    """Response for POST /admin/users/{user_id}/tokens."""

    model_config = ConfigDict(extra="forbid")

    user_id: str
    new_balance: int


# =============================================================================
# Plan catalog
# =============================================================================


class PlanCreate(BaseModel):
    """Request body for POST /admin/plans.

    Attributes:
        name: Display name, max 100 chars.
        description: Optional marketing text.
        price: Price as a decimal string (e.g. "299.00").
        currency: ISO 4217 code.
        token_amount: Tokens granted per subscription period.
        level: Entitlement tier (1 = free tier features).
        features: Feature labels.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    price: str
    currency: str = Field(default="RUB", min_length=3, max_length=3)
    token_amount: int = Field(ge=0, le=MAX_TOKEN_COUNT)
    level: int = Field(default=1, ge=1, le=_MAX_LEVEL)
    features: list[str] = Field(default_factory=list)

    @field_validator("price")
    @classmethod
    def check_price(cls, v: str) -> str:
        return _validate_price(v)


class PlanUpdate(BaseModel):
    """Request body for PUT /admin/plans/{plan_id}.

    All fields optional; only provided fields are updated. Setting
    is_active to false retires the plan from the public catalog without
    touching existing subscriptions.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    price: str | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    token_amount: int | None = Field(default=None, ge=0, le=MAX_TOKEN_COUNT)
    level: int | None = Field(default=None, ge=1, le=_MAX_LEVEL)
    features: list[str] | None = None
    is_active: bool | None = None

    @field_validator("price")
    @classmethod
    def check_price(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _validate_price(v)


class AdminPlanResponse(PlanResponse):
    """Plan as admins see it, including retired plans."""

    is_active: bool

    @classmethod
    def from_model(cls, plan: SubscriptionPlan) -> "AdminPlanResponse":
        return cls(
            **PlanResponse.from_model(plan).model_dump(),
            is_active=plan.is_active,
        )
