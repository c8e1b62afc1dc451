"""API error classes.

Each error carries a machine-readable code and an HTTP status so the
exception handlers in main.py can render the standard error envelope.
Expected ledger outcomes (insufficient credits, payment not completed)
are returned as typed results by the services and only become errors
at the HTTP boundary.
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
    """Field validation failed (400)."""

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
    """Authentication required (401).

    Use when no valid API key or admin token was provided.
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class ForbiddenError(APIError):
    """Not allowed to access resource (403)."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class AdminRequiredError(ForbiddenError):
    """Admin access required (403).

    Raised by the admin dependency when the bearer token is valid but
    does not carry the admin role.
    """

    def __init__(self) -> None:
        APIError.__init__(
            self,
            code="ADMIN_REQUIRED",
            message="Admin access required",
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404).

    Use when requested resource doesn't exist OR belongs to another tenant.
    Revealing "exists but not yours" would leak other tenants' ids.
    """

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


class SessionNotFoundError(APIError):
    """Checkout session unknown for this tenant (404)."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            code="SESSION_NOT_FOUND",
            message=f"Checkout session '{session_id}' not found",
            status_code=404,
        )


class DeductionNotFoundError(APIError):
    """Refund names no generation deduction of this user and credit type (404)."""

    def __init__(self, deduction_id: str) -> None:
        super().__init__(
            code="DEDUCTION_NOT_FOUND",
            message=f"Deduction '{deduction_id}' not found",
            status_code=404,
        )


class PackageNotFoundError(APIError):
    """Credit package missing from the catalog (404).

    Raised before any checkout or settlement write takes place.
    """

    def __init__(self, package_id: str) -> None:
        super().__init__(
            code="PACKAGE_NOT_FOUND",
            message=f"Credit package '{package_id}' not found",
            status_code=404,
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class PaymentNotCompletedError(ConflictError):
    """Provider has not confirmed payment yet (409).

    Retryable: the client may call verify again later.
    """

    def __init__(self, session_id: str, *, retryable: bool = True) -> None:
        super().__init__(
            code="PAYMENT_NOT_COMPLETED",
            message="Payment has not been completed yet",
            details=[{"session_id": session_id, "retryable": retryable}],
        )


class SessionClosedError(ConflictError):
    """Checkout session reached a terminal non-completed state (409)."""

    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(
            code="SESSION_CLOSED",
            message=f"Checkout session is {status}",
            details=[{"session_id": session_id, "status": status}],
        )


class InvalidStateError(APIError):
    """Business rule violation (422)."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code="INVALID_STATE_TRANSITION",
            message=message,
            status_code=422,
        )


class InsufficientCreditsError(APIError):
    """Not enough credits of the requested type (402).

    The client shows this as a "please purchase more" prompt.

    Args:
        credit_type: Credit type that was requested.
        requested: Amount requested.
        available: Balance at the time of the attempt.
    """

    def __init__(self, credit_type: str, requested: int, available: int) -> None:
        super().__init__(
            code="INSUFFICIENT_CREDITS",
            message=f"Not enough {credit_type} credits. Please purchase more.",
            status_code=402,
            details=[
                {
                    "credit_type": credit_type,
                    "requested": requested,
                    "available": available,
                }
            ],
        )


class PaymentNotConfiguredError(APIError):
    """Payment provider credentials are missing or rejected (503).

    Fatal configuration error: the operation is aborted before any write.
    """

    def __init__(self, message: str = "Payment provider is not configured") -> None:
        super().__init__(
            code="PAYMENT_NOT_CONFIGURED",
            message=message,
            status_code=503,
        )


class PaymentProviderError(APIError):
    """Payment provider returned an unexpected error (502)."""

    def __init__(self, message: str = "Payment provider request failed") -> None:
        super().__init__(
            code="PAYMENT_PROVIDER_ERROR",
            message=message,
            status_code=502,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )
