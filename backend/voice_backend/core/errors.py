"""API error classes.

Every failure the ledger, entitlement and subscription services can report
is one of the classes below. Each carries a machine-readable code and the
HTTP status the API boundary returns, so handlers map errors by type and
never by message text.
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for malformed usage payloads, non-positive credit amounts, etc.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class ForbiddenError(APIError):
    """Not allowed to access resource (403).

    Use when auth is valid but user lacks permission.
    """

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class AdminRequiredError(ForbiddenError):
    """Admin access required (403).

    Raised by the require_admin dependency when user lacks admin flag.
    """

    def __init__(self) -> None:
        APIError.__init__(
            self,
            code="ADMIN_REQUIRED",
            message="Admin access required",
            status_code=403,
        )


class NotFoundError(APIError):
    """Referenced user, plan or subscription does not exist (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class InvalidStateError(APIError):
    """Business rule violation (422).

    E.g., cancelling a subscription that has already expired.
    """

    def __init__(self, message: str) -> None:
        super().__init__(
            code="INVALID_STATE_TRANSITION",
            message=message,
            status_code=422,
        )


class InsufficientBalanceError(APIError):
    """Deduction exceeds the user's token balance (402).

    A business-rule rejection, not a system fault. Details include the
    current balance and the number of tokens the deduction needed.

    Args:
        balance: Current token balance.
        required: Tokens the rejected deduction would have consumed.
    """

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(
            code="INSUFFICIENT_BALANCE",
            message=f"Insufficient tokens: have {balance}, need {required}.",
            status_code=402,
            details=[{"balance": balance, "required": required}],
        )


class TransactionConflictError(APIError):
    """Concurrent write lost a serialization race (409).

    Transient: the caller may retry the whole operation. Writes are never
    retried automatically to avoid double deductions.

    Args:
        operation: Name of the store operation that conflicted.
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(
            code="TRANSACTION_CONFLICT",
            message=f"Concurrent update conflict during '{operation}'. Please retry.",
            status_code=409,
            details=[{"operation": operation, "retryable": True}],
        )


class StoreUnavailableError(APIError):
    """Persistent store unreachable or too slow (503).

    Covers connection failures, pool exhaustion and deadline expiry.

    Args:
        operation: Name of the store operation that failed.
        reason: Short description of the underlying fault.
    """

    def __init__(self, operation: str, reason: str = "unavailable") -> None:
        self.operation = operation
        super().__init__(
            code="STORE_UNAVAILABLE",
            message=f"Data store {reason} during '{operation}'",
            status_code=503,
        )
