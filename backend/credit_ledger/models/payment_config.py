"""Payment provider configuration ORM model."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.models.base import Base, utc_now


class PaymentProviderConfig(Base):
    """Credentials and defaults for one payment provider.

    Keyed by provider name and written only by upsert, so a config row
    exists continuously once created.

    Attributes:
        provider: Provider key (e.g. "stripe").
        publishable_key: Public key handed to browsers.
        secret_key: Server-side API key.
        webhook_secret: Endpoint secret for provider webhook signatures.
        default_currency: Currency used when a package has none.
        mode: "test" or "live".
        fee_percentage: Informational platform fee.
        updated_by: Admin subject that last wrote the row.
        updated_at: Last write time.
    """

    __tablename__ = "payment_provider_configs"
    __table_args__ = (
        CheckConstraint(
            "mode IN ('test', 'live')",
            name="ck_payment_provider_configs_mode",
        ),
    )

    provider: Mapped[str] = mapped_column(String(32), primary_key=True)
    publishable_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    secret_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    webhook_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    default_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    mode: Mapped[str] = mapped_column(String(4), nullable=False, default="test")
    fee_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0")
    )
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
        nullable=False,
    )
