"""Response envelope models.

Success bodies are {"data": ...}; collections add {"meta": ...} with
pagination counts; failures are {"error": {"code", "message", "details"}}.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, computed_field

T = TypeVar("T")


class PaginationMeta(BaseModel):
    """Pagination metadata for collections.

    Attributes:
        total: Total number of items across all pages.
        page: Current page number (1-indexed).
        per_page: Number of items per page.
    """

    total: int
    page: int
    per_page: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_pages(self) -> int:
        """Number of pages needed to show all items (0 when empty)."""
        if self.total == 0:
            return 0
        return (self.total + self.per_page - 1) // self.per_page


class DataResponse(BaseModel, Generic[T]):
    """Envelope for a single resource."""

    data: T


class ListResponse(BaseModel, Generic[T]):
    """Envelope for a paginated collection."""

    data: list[T]
    meta: PaginationMeta


class ErrorDetail(BaseModel):
    """Error body.

    Attributes:
        code: Machine-readable error code (e.g., "INSUFFICIENT_BALANCE").
        message: Human-readable error message.
        details: Optional structured details (field errors, balances).
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    """Envelope for every error response."""

    error: ErrorDetail
