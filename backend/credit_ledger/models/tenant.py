"""Tenant (site) ORM model."""

from sqlalchemy import Boolean, String, text
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.models.base import Base, TimestampMixin


class Tenant(Base, TimestampMixin):
    """A site whose users hold credit accounts.

    Attributes:
        id: Site identifier chosen at registration.
        name: Display name.
        api_key_hash: SHA-256 of the tenant API key. The plaintext key is
            only returned once, at creation.
        webhook_url: Endpoint notified when a user's balance changes.
        webhook_secret: HMAC secret for outbound webhook signatures.
        is_active: Disabled tenants are rejected at authentication; their
            accounts are kept.
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    api_key_hash: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )
    webhook_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    webhook_secret: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
