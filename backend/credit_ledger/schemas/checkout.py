"""Checkout and package catalog schemas for the tenant API.

Monetary values are serialized as strings to preserve decimal precision.
"""

from datetime import datetime
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from credit_ledger.models.credit import CreditType


def _validate_redirect_url(value: str) -> str:
    """Require an absolute http(s) URL for provider redirects."""
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        msg = "must be an absolute http(s) URL"
        raise ValueError(msg)
    return value


# =============================================================================
# Packages
# =============================================================================


class PackageResponse(BaseModel):
    """A package offered for purchase.

    Attributes:
        id: UUID as string.
        name: Display name.
        credit_type: Credit type the package grants.
        credits: Credits granted.
        price: Price in major units, as a string.
        currency: ISO currency code.
        display_order: Sort order.
        description: Short description or None.
        highlight_label: Badge text or None.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    credit_type: CreditType
    credits: int
    price: str
    currency: str
    display_order: int
    description: str | None = None
    highlight_label: str | None = None


class PackageCatalogResponse(BaseModel):
    """Response for GET /api/v1/packages: active packages per credit type."""

    model_config = ConfigDict(extra="forbid")

    article: list[PackageResponse]
    image: list[PackageResponse]
    rewrite: list[PackageResponse]


# =============================================================================
# Checkout
# =============================================================================


class CheckoutCreateRequest(BaseModel):
    """Request schema for POST /api/v1/checkout/sessions.

    Attributes:
        user_id: Buyer (site-local id).
        user_email: Prefilled at the provider when given.
        package_id: Package to buy.
        success_url: Redirect after payment; the session id is appended.
        cancel_url: Redirect when the buyer abandons checkout.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1, max_length=128)
    user_email: str | None = Field(default=None, max_length=255)
    package_id: str = Field(min_length=1, max_length=64)
    success_url: str = Field(max_length=2000)
    cancel_url: str = Field(max_length=2000)

    @field_validator("success_url", "cancel_url")
    @classmethod
    def check_redirect_url(cls, v: str) -> str:
        return _validate_redirect_url(v)


class CheckoutCreateResponse(BaseModel):
    """A pending checkout session the buyer should be redirected to."""

    model_config = ConfigDict(extra="forbid")

    session_id: str
    checkout_url: str
    package_id: str
    credit_type: CreditType
    credits: int
    amount: str
    currency: str
    expires_at: datetime


class PaymentIntentCreateRequest(BaseModel):
    """Request schema for POST /api/v1/checkout/intents."""

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1, max_length=128)
    user_email: str | None = Field(default=None, max_length=255)
    package_id: str = Field(min_length=1, max_length=64)


class PaymentIntentCreateResponse(BaseModel):
    """A pending PaymentIntent for an embedded card form.

    Attributes:
        payment_intent_id: Verify this id once the form reports success.
        client_secret: Passed to the provider's browser SDK, never stored.
    """

    model_config = ConfigDict(extra="forbid")

    payment_intent_id: str
    client_secret: str
    package_id: str
    credit_type: CreditType
    credits: int
    amount: str
    currency: str
    expires_at: datetime


class CheckoutVerifyRequest(BaseModel):
    """Request schema for POST /api/v1/checkout/verify.

    session_id is a checkout session id or a PaymentIntent id.
    """

    model_config = ConfigDict(extra="forbid")

    session_id: str = Field(min_length=1, max_length=255)


class CheckoutVerifyResponse(BaseModel):
    """Settlement outcome.

    Attributes:
        session_id: Provider session id.
        status: Always "completed" (other outcomes are error responses).
        credit_type: Credit type granted.
        credits_added: Credits granted by this session.
        balance: Balance after settlement; None when the session was
            settled by an earlier call.
        transaction_ref: Ledger entry id of the grant.
        already_completed: True when an earlier call did the grant.
    """

    model_config = ConfigDict(extra="forbid")

    session_id: str
    status: str = "completed"
    credit_type: CreditType
    credits_added: int
    balance: int | None = None
    transaction_ref: str | None = None
    already_completed: bool = False


class CheckoutSessionResponse(BaseModel):
    """A checkout session as listed for a user."""

    model_config = ConfigDict(extra="forbid")

    session_id: str
    kind: str
    package_id: str
    credit_type: str
    credits: int
    amount: str
    currency: str
    status: str
    credits_added: int | None
    created_at: datetime
    expires_at: datetime
    completed_at: datetime | None
