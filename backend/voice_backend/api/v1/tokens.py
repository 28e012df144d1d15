"""Token ledger API router.

Endpoints for the balance, usage deductions reported by the realtime
voice relay, and the usage history. All endpoints require authentication.
"""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from voice_backend.api.deps import CurrentUserId, Ledger
from voice_backend.core.config import settings
from voice_backend.core.pagination import PaginationParams, pagination_params
from voice_backend.core.rate_limiting import limiter
from voice_backend.core.responses import DataResponse, ListResponse, PaginationMeta
from voice_backend.schemas.tokens import (
    BalanceResponse,
    DeductRequest,
    DeductResponse,
    UsageBreakdownResponse,
    UsageRecordResponse,
)

router = APIRouter()

Pagination = Annotated[PaginationParams, Depends(pagination_params)]


# =============================================================================
# GET /balance
# =============================================================================


@router.get("/balance")
async def get_balance(
    user_id: CurrentUserId,
    ledger: Ledger,
) -> DataResponse[BalanceResponse]:
    """Return the user's current token balance."""
    balance = await ledger.get_balance(user_id)
    return DataResponse(
        data=BalanceResponse(token_balance=balance, as_of=datetime.now(UTC))
    )


# =============================================================================
# POST /deduct
# =============================================================================


@router.post("/deduct")
@limiter.limit(settings.rate_limit_deduct)
async def deduct_tokens(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: DeductRequest,
    user_id: CurrentUserId,
    ledger: Ledger,
) -> DataResponse[DeductResponse]:
    """Debit reported usage from the balance.

    With check_only the balance is verified but nothing is written.
    Returns 402 INSUFFICIENT_BALANCE when the balance does not cover
    usage.total_tokens.
    """
    result = await ledger.deduct(
        user_id,
        body.usage.to_breakdown(),
        body.session_id,
        check_only=body.check_only,
    )
    return DataResponse(
        data=DeductResponse(
            tokens_used=result.tokens_used,
            new_balance=result.new_balance,
            usage_breakdown=(
                UsageBreakdownResponse.from_breakdown(result.breakdown)
                if result.breakdown is not None
                else None
            ),
        )
    )


# =============================================================================
# GET /usage
# =============================================================================


@router.get("/usage")
async def get_usage_history(
    user_id: CurrentUserId,
    ledger: Ledger,
    pagination: Pagination,
) -> ListResponse[UsageRecordResponse]:
    """Return the paginated usage log, newest first."""
    records, total = await ledger.list_usage(
        user_id, offset=pagination.offset, limit=pagination.limit
    )
    return ListResponse(
        data=[
            UsageRecordResponse(
                id=str(record.id),
                session_id=record.session_id,
                cost_tokens=record.cost_tokens,
                input_tokens=record.input_tokens,
                output_tokens=record.output_tokens,
                created_at=record.created_at,
            )
            for record in records
        ],
        meta=PaginationMeta(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
        ),
    )
