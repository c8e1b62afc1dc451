"""Provider error taxonomy.

Adapters map SDK-specific exceptions onto these classes so callers can
decide between retrying, reporting "not completed yet", and treating the
failure as a configuration problem.
"""


__all__ = [
    "ProviderError",
    "RateLimitError",
    "AuthenticationError",
    "InvalidRequestError",
    "TransientError",
]


class ProviderError(Exception):
    """Base class for all provider errors.

    All provider-specific exceptions should inherit from this class,
    allowing callers to catch all provider errors with a single handler.
    """

    pass


class RateLimitError(ProviderError):
    """Rate limit exceeded.

    May carry a retry_after_seconds hint from the provider.
    """

    def __init__(self, message: str, retry_after_seconds: float | None = None):
        """Initialize RateLimitError.

        Args:
            message: Error description from the provider.
            retry_after_seconds: Optional hint from provider on when to retry.
        """
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class AuthenticationError(ProviderError):
    """Invalid or revoked API key.

    Not retryable: an admin has to fix the payment configuration.
    """

    pass


class InvalidRequestError(ProviderError):
    """Provider rejected the request (unknown session id, bad params)."""

    pass


class TransientError(ProviderError):
    """Temporary failure (network, timeout, server overload).

    Safe to retry. For settlement a timeout means "not known to be paid",
    never "failed": the payment may have succeeded on the provider side.
    """

    pass
