"""Abstract base class and types for payment gateways.

A gateway is consumed, not reimplemented: the ledger only needs to open a
hosted checkout session (or a PaymentIntent for an embedded card form) and
later ask whether it was paid.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from credit_ledger.providers.config import ProviderConfig

# Currencies charged in whole units (no minor unit multiplier)
ZERO_DECIMAL_CURRENCIES = frozenset({"jpy", "krw", "vnd", "idr", "php", "thb"})


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a major-unit price to the integer amount gateways expect.

    Args:
        amount: Price in major units (750 yen, 9.99 dollars).
        currency: ISO currency code, any case.

    Returns:
        Integer amount: unchanged for zero-decimal currencies, x100 otherwise.
    """
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class GatewaySessionStatus(str, Enum):
    """Authoritative payment state of a provider session."""

    PAID = "paid"
    UNPAID = "unpaid"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


@dataclass
class CheckoutRequest:
    """Everything a gateway needs to open a hosted checkout.

    Attributes:
        tenant_id: Site starting the checkout (sent as metadata).
        user_id: Buyer (sent as metadata).
        user_email: Prefilled customer email.
        package_id: Purchased package (sent as metadata).
        credit_type: Credit type of the package (sent as metadata).
        product_name: Line item label.
        amount: Price in major units.
        currency: ISO currency code.
        success_url: Redirect after payment; the gateway appends the
            session id placeholder. Required for hosted checkout, unused
            for PaymentIntents.
        cancel_url: Redirect when the buyer abandons checkout.
    """

    tenant_id: str
    user_id: str
    user_email: str | None
    package_id: str
    credit_type: str
    product_name: str
    amount: Decimal
    currency: str
    success_url: str | None = None
    cancel_url: str | None = None

    @property
    def metadata(self) -> dict[str, str]:
        """Metadata echoed back by the provider on the session and webhooks."""
        return {
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "user_email": self.user_email or "",
            "package_id": self.package_id,
            "credit_type": self.credit_type,
        }


@dataclass
class CreatedSession:
    """Result of opening a checkout session.

    Attributes:
        session_id: Provider session id (the settlement key).
        url: Hosted checkout page for the buyer.
    """

    session_id: str
    url: str


@dataclass
class CreatedIntent:
    """Result of creating a PaymentIntent.

    Attributes:
        intent_id: Provider intent id (the settlement key).
        client_secret: Secret the browser uses to confirm the payment.
    """

    intent_id: str
    client_secret: str


@dataclass
class GatewayEvent:
    """A verified provider webhook event.

    Attributes:
        type: Provider event type (e.g. "checkout.session.completed").
        session_id: Session or PaymentIntent the event refers to, when
            applicable.
        metadata: Metadata attached to the session or intent at creation.
    """

    type: str
    session_id: str | None
    metadata: dict[str, str] = field(default_factory=dict)


class PaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    def __init__(self, config: "ProviderConfig") -> None:
        """Initialize with provider configuration.

        Args:
            config: Timeouts and retry policy.
        """
        self.config = config

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return provider identifier (e.g. 'stripe')."""
        ...

    @abstractmethod
    async def create_session(self, request: CheckoutRequest) -> CreatedSession:
        """Open a hosted checkout session.

        Args:
            request: Package, price, buyer, and redirect URLs.

        Returns:
            CreatedSession with the provider id and redirect URL.

        Raises:
            ProviderError: On API failure after retries.
        """
        ...

    @abstractmethod
    async def get_session_status(self, session_id: str) -> GatewaySessionStatus:
        """Ask the provider whether a session has been paid.

        Args:
            session_id: Provider session id.

        Returns:
            PAID, UNPAID, EXPIRED, or UNKNOWN.

        Raises:
            TransientError: Timeout or network failure after retries.
            AuthenticationError: Credentials rejected.
            ProviderError: Any other provider failure.
        """
        ...

    @abstractmethod
    async def create_intent(self, request: CheckoutRequest) -> CreatedIntent:
        """Create a PaymentIntent confirmed by the buyer's browser.

        Args:
            request: Package, price, and buyer.

        Returns:
            CreatedIntent with the provider id and client secret.

        Raises:
            ProviderError: On API failure after retries.
        """
        ...

    @abstractmethod
    async def get_intent_status(self, intent_id: str) -> GatewaySessionStatus:
        """Ask the provider whether a PaymentIntent has succeeded.

        Raises:
            TransientError: Timeout or network failure after retries.
            AuthenticationError: Credentials rejected.
            ProviderError: Any other provider failure.
        """
        ...

    @abstractmethod
    def parse_webhook(
        self, payload: bytes, signature: str, secret: str
    ) -> GatewayEvent:
        """Verify and decode a provider webhook.

        Raises:
            AuthenticationError: Signature does not verify.
            ProviderError: Payload is not a valid event.
        """
        ...
