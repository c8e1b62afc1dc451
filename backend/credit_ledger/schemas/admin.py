"""Admin API request/response schemas.

Tenants, manual credit adjustments, reconciliation, the package catalog,
and payment provider credentials.

All monetary values are serialized as strings to preserve decimal precision.
All schemas use ConfigDict(extra="forbid") to reject unexpected fields.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from credit_ledger.models.credit import CreditType

# Max string length for decimal input fields. Prevents pathological-precision
# Decimal parsing from consuming CPU/memory.
_MAX_DECIMAL_STR_LEN = 20

_TENANT_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{1,63}$")
_CURRENCY_PATTERN = re.compile(r"^[a-z]{3}$")

_MSG_NAME_MAX_100 = "name must be at most 100 characters"
_MSG_DESC_MAX_255 = "description must be at most 255 characters"
_MSG_LABEL_MAX_50 = "highlight_label must be at most 50 characters"


def _parse_decimal(value: str, field_name: str) -> Decimal:
    if len(value) > _MAX_DECIMAL_STR_LEN:
        msg = f"{field_name} string representation too long"
        raise ValueError(msg)
    try:
        d = Decimal(value)
    except InvalidOperation:
        msg = f"{field_name} must be a valid decimal number"
        raise ValueError(msg) from None
    if not d.is_finite():
        msg = f"{field_name} must be a finite number"
        raise ValueError(msg)
    return d


def _validate_positive_decimal(value: str, field_name: str) -> str:
    """Validate a string parses as a finite, positive Decimal (> 0)."""
    if _parse_decimal(value, field_name) <= 0:
        msg = f"{field_name} must be > 0"
        raise ValueError(msg)
    return value


def _validate_percentage(value: str, field_name: str) -> str:
    """Validate a string parses as a Decimal between 0 and 100."""
    d = _parse_decimal(value, field_name)
    if d < 0 or d > 100:
        msg = f"{field_name} must be between 0 and 100"
        raise ValueError(msg)
    return value


def _validate_currency(value: str) -> str:
    lowered = value.lower()
    if not _CURRENCY_PATTERN.match(lowered):
        msg = "currency must be a 3-letter ISO code"
        raise ValueError(msg)
    return lowered


def _validate_credits(value: int) -> int:
    if value <= 0:
        msg = "credits must be > 0"
        raise ValueError(msg)
    if value > 1_000_000:
        msg = "credits must be <= 1000000"
        raise ValueError(msg)
    return value


# =============================================================================
# Tenants
# =============================================================================


class TenantCreate(BaseModel):
    """Request schema for POST /admin/tenants.

    Attributes:
        id: Site identifier: lowercase letters, digits, "-" and "_".
        name: Display name.
        webhook_url: Endpoint notified of balance changes.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str = Field(min_length=1, max_length=255)
    webhook_url: str | None = Field(default=None, max_length=500)

    @field_validator("id")
    @classmethod
    def check_id_format(cls, v: str) -> str:
        if not _TENANT_ID_PATTERN.match(v):
            msg = "id must be 2-64 chars of lowercase letters, digits, '-' or '_'"
            raise ValueError(msg)
        return v


class TenantUpdate(BaseModel):
    """Request schema for PATCH /admin/tenants/:id.

    All fields optional. An empty webhook_url clears it.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    webhook_url: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None


class TenantResponse(BaseModel):
    """Tenant as seen by admins (credentials omitted)."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    webhook_url: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class TenantCreatedResponse(TenantResponse):
    """Creation response: the only time the API key is shown.

    Attributes:
        api_key: Plaintext tenant API key (sent as X-API-Key).
        webhook_secret: HMAC secret for verifying ledger webhooks.
    """

    api_key: str
    webhook_secret: str


# =============================================================================
# Credits
# =============================================================================


class CreditAdjustRequest(BaseModel):
    """Request schema for PUT /admin/tenants/:tid/users/:uid/credits.

    Attributes:
        credit_type: Counter to adjust.
        operation: "add" adds amount; "set" overwrites the balance.
        amount: Credits to add (> 0) or the new balance (>= 0).
        reason: Logged reason.
        description: Optional note stored on the log entry.
    """

    model_config = ConfigDict(extra="forbid")

    credit_type: CreditType
    operation: Literal["add", "set"]
    amount: int = Field(ge=0, le=10_000_000)
    reason: Literal["admin_adjustment", "bonus"] = "admin_adjustment"
    description: str | None = None

    @field_validator("description")
    @classmethod
    def check_description_length(cls, v: str | None) -> str | None:
        if v is not None and len(v) > 255:
            raise ValueError(_MSG_DESC_MAX_255)
        return v

    @model_validator(mode="after")
    def check_add_positive(self) -> "CreditAdjustRequest":
        if self.operation == "add" and self.amount == 0:
            msg = "amount must be > 0 for operation 'add'"
            raise ValueError(msg)
        return self


class AdminBalancesResponse(BaseModel):
    """Account as seen by admins."""

    model_config = ConfigDict(extra="forbid")

    tenant_id: str
    user_id: str
    user_email: str | None
    article: int
    image: int
    rewrite: int
    total_articles_generated: int
    total_images_generated: int
    total_rewrites_generated: int
    created_at: datetime
    updated_at: datetime


class CreditAdjustResponse(BaseModel):
    """Outcome of an admin adjustment.

    Attributes:
        credit_type: Adjusted counter.
        delta: Signed change applied (0 when set to the current value).
        balance: Balance after the adjustment.
        transaction_id: Log entry id, or None when nothing changed.
    """

    model_config = ConfigDict(extra="forbid")

    credit_type: CreditType
    delta: int
    balance: int
    transaction_id: str | None


class CreditTypeDriftResponse(BaseModel):
    """Stored vs replayed balance for one credit type."""

    model_config = ConfigDict(extra="forbid")

    credit_type: CreditType
    stored: int
    replayed: int
    drift: int


class ReconciliationResponse(BaseModel):
    """Result of replaying an account's transaction log."""

    model_config = ConfigDict(extra="forbid")

    tenant_id: str
    user_id: str
    entries: int
    consistent: bool
    per_type: list[CreditTypeDriftResponse]
    broken_chain: list[str]


# =============================================================================
# Packages
# =============================================================================


class PackageCreate(BaseModel):
    """Request schema for POST /admin/packages.

    Attributes:
        name: Package name, max 100 chars.
        credit_type: Credit type granted.
        credits: Credits granted (> 0).
        price: Price in major units as a string (> 0).
        currency: ISO code; defaults to the configured currency.
        display_order: Sort order in the catalog.
        description: Short description, max 255 chars.
        highlight_label: Optional badge text, max 50 chars.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    credit_type: CreditType
    credits: int
    price: str
    currency: str | None = None
    display_order: int = Field(default=0, ge=0, le=1000)
    description: str | None = None
    highlight_label: str | None = None

    @field_validator("name")
    @classmethod
    def check_name_length(cls, v: str) -> str:
        if len(v) > 100:
            raise ValueError(_MSG_NAME_MAX_100)
        return v

    @field_validator("credits")
    @classmethod
    def check_credits(cls, v: int) -> int:
        return _validate_credits(v)

    @field_validator("price")
    @classmethod
    def check_price(cls, v: str) -> str:
        return _validate_positive_decimal(v, "price")

    @field_validator("currency")
    @classmethod
    def check_currency(cls, v: str | None) -> str | None:
        return _validate_currency(v) if v is not None else v

    @field_validator("description")
    @classmethod
    def check_description_length(cls, v: str | None) -> str | None:
        if v is not None and len(v) > 255:
            raise ValueError(_MSG_DESC_MAX_255)
        return v

    @field_validator("highlight_label")
    @classmethod
    def check_highlight_label_length(cls, v: str | None) -> str | None:
        if v is not None and len(v) > 50:
            raise ValueError(_MSG_LABEL_MAX_50)
        return v


class PackageUpdate(BaseModel):
    """Request schema for PATCH /admin/packages/:id.

    All fields optional; only provided fields are updated. The credit type
    of an existing package cannot change.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1)
    credits: int | None = None
    price: str | None = None
    currency: str | None = None
    is_active: bool | None = None
    display_order: int | None = Field(default=None, ge=0, le=1000)
    description: str | None = None
    highlight_label: str | None = None

    @field_validator("name")
    @classmethod
    def check_name_length(cls, v: str | None) -> str | None:
        if v is not None and len(v) > 100:
            raise ValueError(_MSG_NAME_MAX_100)
        return v

    @field_validator("credits")
    @classmethod
    def check_credits(cls, v: int | None) -> int | None:
        return _validate_credits(v) if v is not None else v

    @field_validator("price")
    @classmethod
    def check_price(cls, v: str | None) -> str | None:
        return _validate_positive_decimal(v, "price") if v is not None else v

    @field_validator("currency")
    @classmethod
    def check_currency(cls, v: str | None) -> str | None:
        return _validate_currency(v) if v is not None else v

    @field_validator("description")
    @classmethod
    def check_description_length(cls, v: str | None) -> str | None:
        if v is not None and len(v) > 255:
            raise ValueError(_MSG_DESC_MAX_255)
        return v

    @field_validator("highlight_label")
    @classmethod
    def check_highlight_label_length(cls, v: str | None) -> str | None:
        if v is not None and len(v) > 50:
            raise ValueError(_MSG_LABEL_MAX_50)
        return v


class AdminPackageResponse(BaseModel):
    """Package as seen by admins (inactive ones included)."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    credit_type: CreditType
    credits: int
    price: str
    currency: str
    is_active: bool
    display_order: int
    description: str | None
    highlight_label: str | None
    created_at: datetime
    updated_at: datetime


# =============================================================================
# Payment Provider Config
# =============================================================================


class PaymentConfigUpsert(BaseModel):
    """Request schema for PUT /admin/payment-config.

    Keys are optional on update; an omitted key keeps its stored value.

    Attributes:
        publishable_key: Public key (pk_...).
        secret_key: Server key (sk_...).
        webhook_secret: Webhook endpoint secret (whsec_...).
        default_currency: Currency used for new packages.
        mode: "test" or "live".
        fee_percentage: Informational platform fee, 0-100.
    """

    model_config = ConfigDict(extra="forbid")

    publishable_key: str | None = Field(default=None, max_length=255)
    secret_key: str | None = Field(default=None, max_length=255)
    webhook_secret: str | None = Field(default=None, max_length=255)
    default_currency: str = "jpy"
    mode: Literal["test", "live"] = "test"
    fee_percentage: str = "0"

    @field_validator("publishable_key")
    @classmethod
    def check_publishable_key(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith("pk_"):
            msg = "Invalid publishable key format (should start with pk_)"
            raise ValueError(msg)
        return v

    @field_validator("secret_key")
    @classmethod
    def check_secret_key(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith("sk_"):
            msg = "Invalid secret key format (should start with sk_)"
            raise ValueError(msg)
        return v

    @field_validator("webhook_secret")
    @classmethod
    def check_webhook_secret(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith("whsec_"):
            msg = "Invalid webhook secret format (should start with whsec_)"
            raise ValueError(msg)
        return v

    @field_validator("default_currency")
    @classmethod
    def check_currency(cls, v: str) -> str:
        return _validate_currency(v)

    @field_validator("fee_percentage")
    @classmethod
    def check_fee_percentage(cls, v: str) -> str:
        return _validate_percentage(v, "fee_percentage")


class PaymentConfigResponse(BaseModel):
    """Stored provider config with keys masked."""

    model_config = ConfigDict(extra="forbid")

    provider: str
    publishable_key: str | None
    secret_key: str | None
    webhook_secret: str | None
    default_currency: str
    mode: str
    fee_percentage: str
    updated_by: str | None
    updated_at: datetime


class ExpireStaleResponse(BaseModel):
    """Result of the checkout expiry sweep."""

    model_config = ConfigDict(extra="forbid")

    expired: int
