"""Credit package catalog ORM model."""

import uuid
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Integer, Numeric, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.models.base import Base, TimestampMixin


class CreditPackage(Base, TimestampMixin):
    """Admin-configurable credit package.

    The ledger only reads packages to resolve "package_id -> credits to
    grant"; the admin surface owns writes. Deactivated packages stay in
    the table so sessions bought before deactivation still settle.

    Attributes:
        id: UUID primary key.
        name: Display name (e.g. "10 articles").
        credit_type: article, image, or rewrite.
        credits: Credits granted per purchase.
        price: Price in major currency units (750 = ¥750, 9.99 = $9.99).
        currency: ISO currency code (lowercase).
        is_active: Offered for new checkouts.
        display_order: Sort order in the site purchase UI.
        description: Short description for UI.
        highlight_label: Optional badge (e.g. Most Popular).
    """

    __tablename__ = "credit_packages"
    __table_args__ = (
        CheckConstraint("credits > 0", name="ck_credit_packages_credits_positive"),
        CheckConstraint("price > 0", name="ck_credit_packages_price_positive"),
        CheckConstraint(
            "credit_type IN ('article', 'image', 'rewrite')",
            name="ck_credit_packages_credit_type",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    credit_type: Mapped[str] = mapped_column(String(10), nullable=False)
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    display_order: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    highlight_label: Mapped[str | None] = mapped_column(String(50), nullable=True)
