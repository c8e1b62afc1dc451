"""Mock payment gateway for tests and local development.

Sessions and PaymentIntents live in memory. Tests drive payment state
with set_status() and inject failures with fail_next().
"""

import json
from typing import Any

from credit_ledger.providers.config import ProviderConfig
from credit_ledger.providers.errors import AuthenticationError, ProviderError
from credit_ledger.providers.payments.base import (
    CheckoutRequest,
    CreatedIntent,
    CreatedSession,
    GatewayEvent,
    GatewaySessionStatus,
    PaymentGateway,
)


class MockPaymentGateway(PaymentGateway):
    """In-memory gateway.

    Attributes:
        statuses: Current status per session or intent id.
        requests: CheckoutRequest per created session or intent id.
        calls: Record of all method invocations for test assertions.
    """

    def __init__(self, config: ProviderConfig | None = None) -> None:
        """Initialize with optional config (defaults are fine for tests)."""
        super().__init__(config or ProviderConfig(payment_provider="mock"))
        self.statuses: dict[str, GatewaySessionStatus] = {}
        self.requests: dict[str, CheckoutRequest] = {}
        self.calls: list[dict[str, Any]] = []
        self._next_error: Exception | None = None
        self._counter = 0

    @property
    def provider_name(self) -> str:
        """Return 'mock' for testing."""
        return "mock"

    def set_status(self, session_id: str, status: GatewaySessionStatus) -> None:
        """Set the status the next status query for this id reports."""
        self.statuses[session_id] = status

    def fail_next(self, error: Exception) -> None:
        """Raise error from the next gateway call."""
        self._next_error = error

    def _raise_pending_error(self) -> None:
        if self._next_error is not None:
            error, self._next_error = self._next_error, None
            raise error

    async def create_session(self, request: CheckoutRequest) -> CreatedSession:
        """Create an unpaid in-memory session with a sequential id."""
        self.calls.append({"method": "create_session", "request": request})
        self._raise_pending_error()
        self._counter += 1
        session_id = f"cs_mock_{self._counter:04d}"
        self.statuses[session_id] = GatewaySessionStatus.UNPAID
        self.requests[session_id] = request
        return CreatedSession(
            session_id=session_id,
            url=f"https://checkout.mock.local/pay/{session_id}",
        )

    async def get_session_status(self, session_id: str) -> GatewaySessionStatus:
        """Report the configured status (UNKNOWN for unseen ids)."""
        self.calls.append({"method": "get_session_status", "session_id": session_id})
        self._raise_pending_error()
        return self.statuses.get(session_id, GatewaySessionStatus.UNKNOWN)

    async def create_intent(self, request: CheckoutRequest) -> CreatedIntent:
        """Create an unpaid in-memory PaymentIntent with a sequential id."""
        self.calls.append({"method": "create_intent", "request": request})
        self._raise_pending_error()
        self._counter += 1
        intent_id = f"pi_mock_{self._counter:04d}"
        self.statuses[intent_id] = GatewaySessionStatus.UNPAID
        self.requests[intent_id] = request
        return CreatedIntent(intent_id=intent_id, client_secret=f"{intent_id}_secret_mock")

    async def get_intent_status(self, intent_id: str) -> GatewaySessionStatus:
        """Report the configured status (UNKNOWN for unseen ids)."""
        self.calls.append({"method": "get_intent_status", "intent_id": intent_id})
        self._raise_pending_error()
        return self.statuses.get(intent_id, GatewaySessionStatus.UNKNOWN)

    def parse_webhook(
        self, payload: bytes, signature: str, secret: str
    ) -> GatewayEvent:
        """Accept a JSON body when signature equals secret."""
        self.calls.append({"method": "parse_webhook"})
        if signature != secret:
            raise AuthenticationError("Invalid mock webhook signature")
        try:
            body = json.loads(payload)
        except ValueError as e:
            raise ProviderError("Malformed mock webhook payload") from e
        return GatewayEvent(
            type=body["type"],
            session_id=body.get("session_id"),
            metadata=dict(body.get("metadata") or {}),
        )

    def status_calls(self) -> int:
        """Number of payment status queries (sessions and intents) so far."""
        return sum(
            1
            for call in self.calls
            if call["method"] in ("get_session_status", "get_intent_status")
        )
