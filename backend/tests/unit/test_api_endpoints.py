"""Tests for the API boundary with mocked services.

Verifies the response envelopes, the status mapping of every error
class, request validation and the auth/admin guards. Services are
replaced through dependency overrides so no database is needed.
"""

import uuid
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

from tests.conftest import TEST_AUTH_SECRET, FakeDatabase, create_test_jwt
from voice_backend.api.deps import (
    get_current_user,
    get_entitlement_service,
    get_ledger_service,
    get_provisioning_service,
    get_subscription_service,
)
from voice_backend.core.config import settings
from voice_backend.core.errors import (
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    StoreUnavailableError,
    TransactionConflictError,
)
from voice_backend.main import create_app
from voice_backend.models.subscription import SubscriptionPlan, UserSubscription
from voice_backend.models.user import User
from voice_backend.services.entitlement_service import PlanDetail, PlanLevel
from voice_backend.services.ledger_service import DeductionResult, UsageBreakdown
from voice_backend.services.subscription_service import OpenedSubscription

# =============================================================================
# Constants
# =============================================================================

_USER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000aa")
_URL_BALANCE = "/api/v1/tokens/balance"
_URL_DEDUCT = "/api/v1/tokens/deduct"
_URL_PLANS = "/api/v1/plans"
_URL_SUBSCRIPTIONS = "/api/v1/subscriptions"
_URL_CURRENT = "/api/v1/subscriptions/current"
_URL_ENTITLEMENTS = "/api/v1/entitlements"

_USAGE_BODY = {
    "session_id": "sess_1",
    "usage": {
        "total_tokens": 250,
        "input_tokens": 100,
        "output_tokens": 150,
        "input_token_details": {"text_tokens": 20, "audio_tokens": 80},
        "output_token_details": {"text_tokens": 50, "audio_tokens": 100},
    },
}

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def services() -> dict[str, AsyncMock]:
    return {
        "ledger": AsyncMock(),
        "subscriptions": AsyncMock(),
        "entitlements": AsyncMock(),
        "provisioning": AsyncMock(),
    }


@pytest.fixture
def local_mode() -> Iterator[None]:
    """Auth disabled, DEFAULT_USER_ID set."""
    original_enabled = settings.auth_enabled
    original_default = settings.default_user_id
    settings.auth_enabled = False
    settings.default_user_id = _USER_ID
    yield
    settings.auth_enabled = original_enabled
    settings.default_user_id = original_default


@pytest.fixture
def app(services: dict[str, AsyncMock], local_mode: None):
    app = create_app(database=FakeDatabase())
    app.dependency_overrides[get_ledger_service] = lambda: services["ledger"]
    app.dependency_overrides[get_subscription_service] = (
        lambda: services["subscriptions"]
    )
    app.dependency_overrides[get_entitlement_service] = (
        lambda: services["entitlements"]
    )
    app.dependency_overrides[get_provisioning_service] = (
        lambda: services["provisioning"]
    )
    return app


@pytest_asyncio.fixture
async def api(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


def _plan(**overrides) -> SubscriptionPlan:
    fields = {
        "id": 1,
        "name": "Premium",
        "description": None,
        "price": Decimal("299"),
        "currency": "RUB",
        "token_amount": 5000,
        "level": 2,
        "features": [],
        "is_active": True,
    }
    return SubscriptionPlan(**{**fields, **overrides})


def _as_user(app, *, is_admin: bool) -> None:
    user = User(
        id=_USER_ID,
        telegram_id="1",
        first_name="A",
        token_balance=0,
        is_admin=is_admin,
        created_at=datetime.now(UTC),
    )
    app.dependency_overrides[get_current_user] = lambda: user


# =============================================================================
# TestTokenEndpoints
# =============================================================================


class TestTokenEndpoints:
    """GET /tokens/balance and POST /tokens/deduct."""

    async def test_balance_envelope(self, api: AsyncClient, services: dict) -> None:
        services["ledger"].get_balance.return_value = 750
        response = await api.get(_URL_BALANCE)
        assert response.status_code == 200
        assert response.json()["data"]["token_balance"] == 750
        services["ledger"].get_balance.assert_awaited_once_with(_USER_ID)

    async def test_deduct_maps_usage_report(
        self, api: AsyncClient, services: dict
    ) -> None:
        usage = UsageBreakdown(total=250)
        services["ledger"].deduct.return_value = DeductionResult(
            tokens_used=250, new_balance=750, breakdown=usage
        )

        response = await api.post(_URL_DEDUCT, json=_USAGE_BODY)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["tokens_used"] == 250
        assert data["new_balance"] == 750
        assert data["usage_breakdown"]["total"] == 250
        args = services["ledger"].deduct.await_args
        breakdown = args.args[1]
        assert breakdown.total == 250
        assert breakdown.input.audio == 80
        assert breakdown.output.text == 50
        assert args.args[2] == "sess_1"
        assert args.kwargs == {"check_only": False}

    async def test_check_only_omits_breakdown(
        self, api: AsyncClient, services: dict
    ) -> None:
        services["ledger"].deduct.return_value = DeductionResult(
            tokens_used=0, new_balance=1000, breakdown=None
        )
        response = await api.post(_URL_DEDUCT, json={**_USAGE_BODY, "check_only": True})
        assert response.status_code == 200
        assert response.json()["data"]["usage_breakdown"] is None
        assert services["ledger"].deduct.await_args.kwargs == {"check_only": True}

    async def test_insufficient_balance_is_402_with_amounts(
        self, api: AsyncClient, services: dict
    ) -> None:
        services["ledger"].deduct.side_effect = InsufficientBalanceError(
            balance=100, required=250
        )

        response = await api.post(_URL_DEDUCT, json=_USAGE_BODY)

        assert response.status_code == 402
        error = response.json()["error"]
        assert error["code"] == "INSUFFICIENT_BALANCE"
        assert error["details"] == [{"balance": 100, "required": 250}]

    async def test_negative_total_is_400(self, api: AsyncClient, services: dict) -> None:
        body = {"usage": {"total_tokens": -1}}
        response = await api.post(_URL_DEDUCT, json=body)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        services["ledger"].deduct.assert_not_awaited()

    async def test_total_beyond_bigint_is_400(
        self, api: AsyncClient, services: dict
    ) -> None:
        body = {"usage": {"total_tokens": 2**63}}
        response = await api.post(_URL_DEDUCT, json=body)
        assert response.status_code == 400
        services["ledger"].deduct.assert_not_awaited()

    async def test_total_above_int32_is_accepted(
        self, api: AsyncClient, services: dict
    ) -> None:
        services["ledger"].deduct.return_value = DeductionResult(
            tokens_used=3_000_000_000,
            new_balance=0,
            breakdown=UsageBreakdown(total=3_000_000_000),
        )
        body = {"usage": {"total_tokens": 3_000_000_000}}
        response = await api.post(_URL_DEDUCT, json=body)
        assert response.status_code == 200
        assert response.json()["data"]["tokens_used"] == 3_000_000_000

    async def test_unknown_top_level_field_is_400(
        self, api: AsyncClient, services: dict
    ) -> None:
        body = {**_USAGE_BODY, "user_id": 5}
        response = await api.post(_URL_DEDUCT, json=body)
        assert response.status_code == 400


# =============================================================================
# TestErrorMapping
# =============================================================================


class TestErrorMapping:
    """Each error class maps to its own status and code."""

    @pytest.mark.parametrize(
        ("error", "status", "code"),
        [
            (NotFoundError("User", "x"), 404, "NOT_FOUND"),
            (TransactionConflictError("get_balance"), 409, "TRANSACTION_CONFLICT"),
            (StoreUnavailableError("get_balance"), 503, "STORE_UNAVAILABLE"),
        ],
    )
    async def test_status_and_code(
        self,
        api: AsyncClient,
        services: dict,
        error: Exception,
        status: int,
        code: str,
    ) -> None:
        services["ledger"].get_balance.side_effect = error
        response = await api.get(_URL_BALANCE)
        assert response.status_code == status
        assert response.json()["error"]["code"] == code

    async def test_conflict_is_marked_retryable(
        self, api: AsyncClient, services: dict
    ) -> None:
        services["ledger"].get_balance.side_effect = TransactionConflictError("deduct")
        response = await api.get(_URL_BALANCE)
        assert response.json()["error"]["details"][0]["retryable"] is True

    async def test_invalid_state_is_422(self, api: AsyncClient, services: dict) -> None:
        services["subscriptions"].cancel_subscription.side_effect = InvalidStateError(
            "Subscription is already expired"
        )
        response = await api.post(f"{_URL_SUBSCRIPTIONS}/{uuid.uuid4()}/cancel")
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_STATE_TRANSITION"

    async def test_unexpected_error_is_generic_500(self, app, services: dict) -> None:
        services["ledger"].get_balance.side_effect = RuntimeError("secret detail")
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.get(_URL_BALANCE)
        assert response.status_code == 500
        assert "secret detail" not in response.text


# =============================================================================
# TestPlanAndSubscriptionEndpoints
# =============================================================================


class TestPlanAndSubscriptionEndpoints:
    """Plans, subscriptions and entitlements."""

    async def test_plans_price_as_string(self, api: AsyncClient, services: dict) -> None:
        services["subscriptions"].list_plans.return_value = [
            SubscriptionPlan(
                id=1,
                name="Premium",
                description=None,
                price=Decimal("299"),
                currency="RUB",
                token_amount=5000,
                level=2,
                features=["voice"],
            )
        ]
        response = await api.get(_URL_PLANS)
        assert response.status_code == 200
        plan = response.json()["data"][0]
        assert plan["price"] == "299.00"
        assert plan["level"] == 2

    async def test_open_subscription_is_201(
        self, api: AsyncClient, services: dict
    ) -> None:
        sub_id = uuid.uuid4()
        services["subscriptions"].open_subscription.return_value = OpenedSubscription(
            subscription_id=sub_id, new_balance=5000, superseded=1
        )

        response = await api.post(
            _URL_SUBSCRIPTIONS, json={"plan_id": 1, "payment_id": "pay_1"}
        )

        assert response.status_code == 201
        assert response.json()["data"] == {
            "subscription_id": str(sub_id),
            "new_balance": 5000,
        }
        services["subscriptions"].open_subscription.assert_awaited_once_with(
            _USER_ID, 1, "pay_1"
        )

    async def test_current_plan_free_tier(
        self, api: AsyncClient, services: dict
    ) -> None:
        services["entitlements"].get_current_plan_detail.return_value = PlanDetail(
            has_active_subscription=False,
            plan_name="Free",
            level=1,
            token_balance=12,
            exhausted=True,
        )
        response = await api.get(_URL_CURRENT)
        data = response.json()["data"]
        assert data["has_active_subscription"] is False
        assert data["exhausted"] is True
        assert data["subscription_id"] is None

    async def test_cancel_returns_subscription(
        self, api: AsyncClient, services: dict
    ) -> None:
        sub = UserSubscription(
            id=uuid.uuid4(),
            user_id=_USER_ID,
            plan_id=1,
            status="cancelled",
            start_date=datetime.now(UTC),
            end_date=datetime.now(UTC),
        )
        services["subscriptions"].cancel_subscription.return_value = sub
        response = await api.post(f"{_URL_SUBSCRIPTIONS}/{sub.id}/cancel")
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"

    async def test_entitlements_report_quota(
        self, api: AsyncClient, services: dict
    ) -> None:
        services["entitlements"].resolve_plan_level.return_value = PlanLevel(
            plan_name="Premium", level=2
        )
        response = await api.get(_URL_ENTITLEMENTS, params={"current_prompts": 3})
        data = response.json()["data"]
        assert data["plan_level"] == 2
        assert data["prompt_limits"] == {
            "current": 3,
            "max": 3,
            "can_create_more": False,
        }

    async def test_entitlements_unlimited_max_is_null(
        self, api: AsyncClient, services: dict
    ) -> None:
        services["entitlements"].resolve_plan_level.return_value = PlanLevel(
            plan_name="Pro", level=3
        )
        response = await api.get(_URL_ENTITLEMENTS)
        assert response.json()["data"]["prompt_limits"]["max"] is None


# =============================================================================
# TestAuthGuards
# =============================================================================


class TestAuthGuards:
    """JWT cookie auth and the admin guard."""

    @pytest.fixture
    def hosted_mode(self) -> Iterator[None]:
        original_enabled = settings.auth_enabled
        original_secret = settings.auth_secret
        settings.auth_enabled = True
        settings.auth_secret = SecretStr(TEST_AUTH_SECRET)
        yield
        settings.auth_enabled = original_enabled
        settings.auth_secret = original_secret

    async def test_missing_cookie_is_401(
        self, api: AsyncClient, hosted_mode: None
    ) -> None:
        response = await api.get(_URL_BALANCE)
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    async def test_bad_signature_is_401(
        self, api: AsyncClient, hosted_mode: None
    ) -> None:
        token = create_test_jwt(_USER_ID, secret="x" * 40)
        api.cookies.set(settings.auth_cookie_name, token)
        response = await api.get(_URL_BALANCE)
        assert response.status_code == 401

    async def test_valid_cookie_identifies_user(
        self, api: AsyncClient, services: dict, hosted_mode: None
    ) -> None:
        other = uuid.uuid4()
        services["ledger"].get_balance.return_value = 1
        token = create_test_jwt(other)
        api.cookies.set(settings.auth_cookie_name, token)
        response = await api.get(_URL_BALANCE)
        assert response.status_code == 200
        services["ledger"].get_balance.assert_awaited_once_with(other)

    async def test_admin_route_rejects_non_admin(
        self, app, api: AsyncClient, services: dict
    ) -> None:
        _as_user(app, is_admin=False)
        response = await api.post(
            f"/api/v1/admin/users/{uuid.uuid4()}/tokens", json={"tokens_to_add": 5}
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ADMIN_REQUIRED"
        services["ledger"].add_tokens.assert_not_awaited()

    async def test_admin_credit(self, app, api: AsyncClient, services: dict) -> None:
        _as_user(app, is_admin=True)
        target = uuid.uuid4()
        services["ledger"].add_tokens.return_value = 1005
        response = await api.post(
            f"/api/v1/admin/users/{target}/tokens", json={"tokens_to_add": 5}
        )
        assert response.status_code == 200
        assert response.json()["data"]["new_balance"] == 1005
        services["ledger"].add_tokens.assert_awaited_once_with(target, 5)

    async def test_admin_provision_new_user_is_201(
        self, app, api: AsyncClient, services: dict
    ) -> None:
        _as_user(app, is_admin=True)
        new_user = User(
            id=uuid.uuid4(),
            telegram_id="777",
            first_name="New",
            token_balance=1000,
            is_admin=False,
            created_at=datetime.now(UTC),
        )
        services["provisioning"].provision_user.return_value = (new_user, True)
        response = await api.post(
            "/api/v1/admin/users", json={"telegram_id": "777", "first_name": "New"}
        )
        assert response.status_code == 201
        assert response.json()["data"]["user"]["token_balance"] == 1000

    async def test_admin_create_plan_rejects_negative_price(
        self, app, api: AsyncClient, services: dict
    ) -> None:
        _as_user(app, is_admin=True)
        response = await api.post(
            "/api/v1/admin/plans",
            json={"name": "X", "price": "-1", "token_amount": 10, "level": 2},
        )
        assert response.status_code == 400
        services["subscriptions"].create_plan.assert_not_awaited()

    @pytest.mark.parametrize(
        "price",
        ["100000000", "1e9", "1.999"],
        ids=["column-overflow", "exponent-overflow", "three-decimals"],
    )
    async def test_admin_create_plan_rejects_unstorable_price(
        self, app, api: AsyncClient, services: dict, price: str
    ) -> None:
        _as_user(app, is_admin=True)
        response = await api.post(
            "/api/v1/admin/plans",
            json={"name": "X", "price": price, "token_amount": 10},
        )
        assert response.status_code == 400
        services["subscriptions"].create_plan.assert_not_awaited()

    async def test_admin_create_plan_accepts_largest_price(
        self, app, api: AsyncClient, services: dict
    ) -> None:
        _as_user(app, is_admin=True)
        services["subscriptions"].create_plan.return_value = _plan(
            price=Decimal("99999999.99")
        )
        response = await api.post(
            "/api/v1/admin/plans",
            json={"name": "X", "price": "99999999.99", "token_amount": 10},
        )
        assert response.status_code == 201
        assert response.json()["data"]["price"] == "99999999.99"

    async def test_admin_list_plans_includes_inactive(
        self, app, api: AsyncClient, services: dict
    ) -> None:
        _as_user(app, is_admin=True)
        services["subscriptions"].list_all_plans.return_value = [
            _plan(),
            _plan(id=2, name="Legacy", is_active=False),
        ]
        response = await api.get("/api/v1/admin/plans")
        assert response.status_code == 200
        assert [(p["name"], p["is_active"]) for p in response.json()["data"]] == [
            ("Premium", True),
            ("Legacy", False),
        ]

    async def test_admin_update_plan_passes_only_given_fields(
        self, app, api: AsyncClient, services: dict
    ) -> None:
        _as_user(app, is_admin=True)
        services["subscriptions"].update_plan.return_value = _plan(
            level=3, is_active=False, price=Decimal("450")
        )
        response = await api.put(
            "/api/v1/admin/plans/1",
            json={"price": "450", "level": 3, "is_active": False},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["level"] == 3
        assert data["is_active"] is False
        services["subscriptions"].update_plan.assert_awaited_once_with(
            1,
            name=None,
            description=None,
            price=Decimal("450"),
            currency=None,
            token_amount=None,
            level=3,
            features=None,
            is_active=False,
        )

    async def test_admin_update_plan_rejects_unknown_field(
        self, app, api: AsyncClient, services: dict
    ) -> None:
        _as_user(app, is_admin=True)
        response = await api.put("/api/v1/admin/plans/1", json={"id": 9})
        assert response.status_code == 400
        services["subscriptions"].update_plan.assert_not_awaited()

    async def test_admin_update_unknown_plan_is_404(
        self, app, api: AsyncClient, services: dict
    ) -> None:
        _as_user(app, is_admin=True)
        services["subscriptions"].update_plan.side_effect = NotFoundError(
            "Subscription plan", "99"
        )
        response = await api.put("/api/v1/admin/plans/99", json={"level": 2})
        assert response.status_code == 404

    async def test_admin_delete_plan_is_204(
        self, app, api: AsyncClient, services: dict
    ) -> None:
        _as_user(app, is_admin=True)
        services["subscriptions"].delete_plan.return_value = None
        response = await api.delete("/api/v1/admin/plans/1")
        assert response.status_code == 204
        assert response.content == b""
        services["subscriptions"].delete_plan.assert_awaited_once_with(1)

    async def test_admin_delete_referenced_plan_is_422(
        self, app, api: AsyncClient, services: dict
    ) -> None:
        _as_user(app, is_admin=True)
        services["subscriptions"].delete_plan.side_effect = InvalidStateError(
            "Plan 1 is referenced by subscriptions; deactivate it instead"
        )
        response = await api.delete("/api/v1/admin/plans/1")
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_STATE_TRANSITION"

    async def test_admin_plan_routes_reject_non_admin(
        self, app, api: AsyncClient, services: dict
    ) -> None:
        _as_user(app, is_admin=False)
        assert (await api.get("/api/v1/admin/plans")).status_code == 403
        assert (await api.delete("/api/v1/admin/plans/1")).status_code == 403
        services["subscriptions"].delete_plan.assert_not_awaited()


# =============================================================================
# TestHealth
# =============================================================================


class TestHealth:
    """GET /health reports store reachability."""

    async def test_healthy(self, api: AsyncClient) -> None:
        response = await api.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "ok"}

    async def test_degraded_when_store_down(self, app, api: AsyncClient) -> None:
        app.state.database.ping = AsyncMock(return_value=False)
        response = await api.get("/health")
        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
