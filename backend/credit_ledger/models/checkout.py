"""Checkout session ORM model.

One row per payment-provider checkout session or PaymentIntent. The
status column is the settlement guard: it only ever leaves ``pending``
through a conditional UPDATE, so a session can be credited at most once.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.models.base import Base, utc_now


class CheckoutStatus(str, Enum):
    """Checkout session lifecycle.

    pending -> completed (terminal, replayed idempotently)
    pending -> expired | failed (terminal)
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class CheckoutKind(str, Enum):
    """How the buyer pays: hosted checkout page or embedded card form."""

    CHECKOUT = "checkout"
    PAYMENT_INTENT = "payment_intent"


class CheckoutSession(Base):
    """A credit package purchase in flight or settled.

    Attributes:
        session_id: Provider checkout session or PaymentIntent id (primary
            key).
        tenant_id: Site that started the checkout. Every lookup is scoped
            by this column.
        user_id: Site-local user identifier.
        user_email: Email passed to the provider.
        kind: checkout or payment_intent; selects the provider status query.
        package_id: Purchased CreditPackage id.
        credit_type: Credit type of the package at purchase time.
        credits: Credits the package granted at purchase time; settlement
            grants exactly this, whatever the package says later.
        amount: Price charged, in major currency units.
        currency: ISO currency code (lowercase).
        status: pending, completed, failed, or expired.
        credits_added: Credits granted on settlement.
        transaction_ref: CreditTransaction id of the settlement grant.
        created_at: When the checkout was started.
        expires_at: After this instant an unpaid session expires.
        completed_at: When the session was settled.
    """

    __tablename__ = "checkout_sessions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'expired')",
            name="ck_checkout_sessions_status",
        ),
        CheckConstraint(
            "credit_type IN ('article', 'image', 'rewrite')",
            name="ck_checkout_sessions_credit_type",
        ),
        CheckConstraint(
            "kind IN ('checkout', 'payment_intent')",
            name="ck_checkout_sessions_kind",
        ),
        CheckConstraint("credits > 0", name="ck_checkout_sessions_credits_positive"),
        Index("ix_checkout_sessions_tenant_user", "tenant_id", "user_id"),
        Index("ix_checkout_sessions_status_expires", "status", "expires_at"),
    )

    session_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    kind: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=CheckoutKind.CHECKOUT.value,
        server_default=CheckoutKind.CHECKOUT.value,
    )
    package_id: Mapped[str] = mapped_column(String(64), nullable=False)
    credit_type: Mapped[str] = mapped_column(String(10), nullable=False)
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=CheckoutStatus.PENDING.value,
        server_default=CheckoutStatus.PENDING.value,
    )
    credits_added: Mapped[int | None] = mapped_column(Integer, nullable=True)
    transaction_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
