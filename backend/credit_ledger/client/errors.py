"""Client-side error taxonomy.

Sites catch LedgerClientError to handle every ledger failure in one
place, or the subclasses to tell "ledger unreachable" apart from "ledger
said no".
"""

from typing import Any

__all__ = [
    "LedgerClientError",
    "LedgerUnavailableError",
    "LedgerRequestError",
    "WebhookSignatureError",
    "WebhookPayloadError",
]


class LedgerClientError(Exception):
    """Base class for all client errors."""

    pass


class LedgerUnavailableError(LedgerClientError):
    """Network failure or timeout talking to the ledger.

    Nothing is known about whether the request took effect.
    """

    pass


class LedgerRequestError(LedgerClientError):
    """The ledger answered with an error envelope.

    Attributes:
        status_code: HTTP status.
        code: Machine-readable error code (e.g. "SESSION_NOT_FOUND").
        message: Human-readable message.
        details: Optional structured details from the envelope.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: list[Any] | None = None,
    ) -> None:
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class WebhookSignatureError(LedgerClientError):
    """Webhook signature missing, wrong, or outside the timestamp tolerance."""

    pass


class WebhookPayloadError(LedgerClientError):
    """Webhook body is not a known ledger event."""

    pass
