"""Token ledger request/response schemas.

The deduction request mirrors the `usage` object the realtime voice API
reports at the end of each response: a total plus per-modality details.
Only total_tokens is debited; the details are stored for reporting.

All schemas use ConfigDict(extra="forbid") except the usage payload
details, which tolerate fields the realtime API may add later.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from voice_backend.services.ledger_service import (
    InputTokens,
    OutputTokens,
    UsageBreakdown,
)

# Realtime session references are opaque client strings
_MAX_SESSION_ID_LEN = 255

# Token counts are stored as PostgreSQL BIGINT
MAX_TOKEN_COUNT = 2**63 - 1

# =============================================================================
# Deduction request
# =============================================================================


class TokenDetails(BaseModel):
    """Per-modality counts from the realtime API usage report.

    Attributes:
        text_tokens: Text tokens.
        audio_tokens: Audio tokens.
        image_tokens: Image tokens (input only).
        cached_tokens: Cached tokens (input only).
    """

    model_config = ConfigDict(extra="ignore")

    text_tokens: int = Field(default=0, ge=0, le=MAX_TOKEN_COUNT)
    audio_tokens: int = Field(default=0, ge=0, le=MAX_TOKEN_COUNT)
    image_tokens: int = Field(default=0, ge=0, le=MAX_TOKEN_COUNT)
    cached_tokens: int = Field(default=0, ge=0, le=MAX_TOKEN_COUNT)


class UsageReport(BaseModel):
    """Token usage for one realtime response.

    Attributes:
        total_tokens: Tokens to debit.
        input_tokens: Total input tokens.
        output_tokens: Total output tokens.
        input_token_details: Input breakdown by modality.
        output_token_details: Output breakdown by modality.
    """

    model_config = ConfigDict(extra="ignore")

    total_tokens: int = Field(ge=0, le=MAX_TOKEN_COUNT)
    input_tokens: int = Field(default=0, ge=0, le=MAX_TOKEN_COUNT)
    output_tokens: int = Field(default=0, ge=0, le=MAX_TOKEN_COUNT)
    input_token_details: TokenDetails | None = None
    output_token_details: TokenDetails | None = None

    def to_breakdown(self) -> UsageBreakdown:
        """Convert to the ledger's usage value object."""
        inp = self.input_token_details or TokenDetails()
        out = self.output_token_details or TokenDetails()
        return UsageBreakdown(
            total=self.total_tokens,
            input=InputTokens(
                total=self.input_tokens,
                text=inp.text_tokens,
                audio=inp.audio_tokens,
                image=inp.image_tokens,
                cached=inp.cached_tokens,
            ),
            output=OutputTokens(
                total=self.output_tokens,
                text=out.text_tokens,
                audio=out.audio_tokens,
            ),
        )


class DeductRequest(BaseModel):
    """Request body for POST /tokens/deduct.

    Attributes:
        session_id: Realtime session reference stored with the usage record.
        usage: Token usage to debit.
        check_only: Only verify the balance covers usage.total_tokens.
    """

    model_config = ConfigDict(extra="forbid")

    session_id: str | None = Field(default=None, max_length=_MAX_SESSION_ID_LEN)
    usage: UsageReport
    check_only: bool = False


# =============================================================================
# Responses
# =============================================================================


class BalanceResponse(BaseModel):
    """Response for GET /tokens/balance.

    Attributes:
        token_balance: Current spendable tokens.
        as_of: When the balance was read.
    """

    model_config = ConfigDict(extra="forbid")

    token_balance: int
    as_of: datetime


class TokenBreakdown(BaseModel):
    """Category counts echoed back after a deduction."""

    model_config = ConfigDict(extra="forbid")

    total: int
    text: int
    audio: int
    image: int = 0
    cached: int = 0


class UsageBreakdownResponse(BaseModel):
    """Recorded usage for a committed deduction."""

    model_config = ConfigDict(extra="forbid")

    total: int
    input: TokenBreakdown
    output: TokenBreakdown

    @classmethod
    def from_breakdown(cls, usage: UsageBreakdown) -> "UsageBreakdownResponse":
        return cls(
            total=usage.total,
            input=TokenBreakdown(
                total=usage.input.total,
                text=usage.input.text,
                audio=usage.input.audio,
                image=usage.input.image,
                cached=usage.input.cached,
            ),
            output=TokenBreakdown(
                total=usage.output.total,
                text=usage.output.text,
                audio=usage.output.audio,
            ),
        )


class DeductResponse(BaseModel):
    """Response for POST /tokens/deduct.

    Attributes:
        tokens_used: Tokens debited (0 for check-only requests).
        new_balance: Balance after the call.
        usage_breakdown: Recorded usage, omitted for check-only requests.
    """

    model_config = ConfigDict(extra="forbid")

    tokens_used: int
    new_balance: int
    usage_breakdown: UsageBreakdownResponse | None = None


class UsageRecordResponse(BaseModel):
    """Response item for GET /tokens/usage.

    Attributes:
        id: Usage record UUID.
        session_id: Realtime session reference, if any.
        cost_tokens: Tokens debited.
        input_tokens: Total input tokens.
        output_tokens: Total output tokens.
        created_at: When the deduction committed.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    session_id: str | None
    cost_tokens: int
    input_tokens: int
    output_tokens: int
    created_at: datetime
