"""Credit accounts and the append-only transaction log.

A CreditAccount holds three independent balances per (tenant, user) plus
lifetime usage counters. Every balance change writes one
CreditTransaction in the same database transaction.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import InstrumentedAttribute, Mapped, mapped_column

from credit_ledger.models.base import Base, TimestampMixin, utc_now


class CreditType(str, Enum):
    """Kinds of generation a credit pays for."""

    ARTICLE = "article"
    IMAGE = "image"
    REWRITE = "rewrite"


class Direction(str, Enum):
    """Sign of a transaction log entry."""

    DEBIT = "debit"
    CREDIT = "credit"


class TransactionReason(str, Enum):
    """Why a balance changed."""

    GENERATION = "generation"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    PURCHASE = "purchase"
    BONUS = "bonus"
    REFUND = "refund"


def _values(enum_cls: type[Enum]) -> str:
    return ", ".join(f"'{member.value}'" for member in enum_cls)


class CreditAccount(Base, TimestampMixin):
    """Per-(tenant, user) credit balances.

    Accounts are created lazily with free-tier seed balances on first
    access and never deleted. Balances only move through the conditional
    UPDATEs in CreditAccountRepository.

    Attributes:
        tenant_id: Owning site.
        user_id: Site-local user identifier.
        user_email: Last known email for the user (display only).
        article_credits: Remaining article generations.
        image_credits: Remaining image generations.
        rewrite_credits: Remaining rewrite generations.
        total_articles_generated: Lifetime article generations consumed.
        total_images_generated: Lifetime image generations consumed.
        total_rewrites_generated: Lifetime rewrite generations consumed.
        last_sequence: Sequence number of the newest log entry; bumped
            by every append so entries replay in a total order.
    """

    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("article_credits >= 0", name="ck_credit_accounts_article"),
        CheckConstraint("image_credits >= 0", name="ck_credit_accounts_image"),
        CheckConstraint("rewrite_credits >= 0", name="ck_credit_accounts_rewrite"),
        CheckConstraint(
            "total_articles_generated >= 0", name="ck_credit_accounts_total_article"
        ),
        CheckConstraint(
            "total_images_generated >= 0", name="ck_credit_accounts_total_image"
        ),
        CheckConstraint(
            "total_rewrites_generated >= 0", name="ck_credit_accounts_total_rewrite"
        ),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    article_credits: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    image_credits: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    rewrite_credits: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    total_articles_generated: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    total_images_generated: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    total_rewrites_generated: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    last_sequence: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    def balance_of(self, credit_type: CreditType) -> int:
        """Current balance of one credit type."""
        return getattr(self, balance_column(credit_type).key)

    def usage_of(self, credit_type: CreditType) -> int:
        """Lifetime generations consumed for one credit type."""
        return getattr(self, usage_column(credit_type).key)

    def balances(self) -> dict[CreditType, int]:
        """All three balances keyed by credit type."""
        return {credit_type: self.balance_of(credit_type) for credit_type in CreditType}


# Closed mapping from credit type to columns. Column names are never built
# from request strings.
_BALANCE_COLUMNS: dict[CreditType, InstrumentedAttribute[int]] = {
    CreditType.ARTICLE: CreditAccount.article_credits,
    CreditType.IMAGE: CreditAccount.image_credits,
    CreditType.REWRITE: CreditAccount.rewrite_credits,
}

_USAGE_COLUMNS: dict[CreditType, InstrumentedAttribute[int]] = {
    CreditType.ARTICLE: CreditAccount.total_articles_generated,
    CreditType.IMAGE: CreditAccount.total_images_generated,
    CreditType.REWRITE: CreditAccount.total_rewrites_generated,
}


def balance_column(credit_type: CreditType | str) -> InstrumentedAttribute[int]:
    """Map a credit type to its balance column.

    Args:
        credit_type: Credit type member or its string value.

    Returns:
        The mapped column attribute.

    Raises:
        ValueError: If credit_type is not article, image, or rewrite.
    """
    return _BALANCE_COLUMNS[CreditType(credit_type)]


def usage_column(credit_type: CreditType | str) -> InstrumentedAttribute[int]:
    """Map a credit type to its lifetime usage column."""
    return _USAGE_COLUMNS[CreditType(credit_type)]


class CreditTransaction(Base):
    """Append-only ledger entry.

    One row per balance-changing operation. Rows are never updated or
    deleted; replaying them in sequence order from zero reproduces the
    account's balances. A refund references the deduction it returns, and
    a partial unique index allows one refund per deduction.

    Attributes:
        id: Generated identifier, used as the transaction_ref of purchases.
        tenant_id: Owning site.
        user_id: Site-local user identifier.
        sequence: Per-account position in the log, from 1 without gaps.
        credit_type: article, image, or rewrite.
        direction: debit or credit.
        amount: Positive number of credits moved.
        resulting_balance: Balance of credit_type after this entry.
        reason: generation, admin_adjustment, purchase, bonus, or refund.
        external_reference: Checkout session id, caller reference, or for
            refunds the id of the refunded deduction.
        description: Free-text note (admin adjustments, seeds).
        created_at: Entry timestamp.
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_transactions_amount_positive"),
        CheckConstraint(
            "resulting_balance >= 0", name="ck_credit_transactions_balance_nonneg"
        ),
        CheckConstraint(
            f"credit_type IN ({_values(CreditType)})",
            name="ck_credit_transactions_credit_type",
        ),
        CheckConstraint(
            f"direction IN ({_values(Direction)})",
            name="ck_credit_transactions_direction",
        ),
        CheckConstraint(
            f"reason IN ({_values(TransactionReason)})",
            name="ck_credit_transactions_reason",
        ),
        UniqueConstraint(
            "tenant_id",
            "user_id",
            "sequence",
            name="uq_credit_transactions_account_sequence",
        ),
        Index("ix_credit_transactions_external_reference", "external_reference"),
        Index(
            "uq_credit_transactions_refund_reference",
            "tenant_id",
            "external_reference",
            unique=True,
            postgresql_where=text("reason = 'refund'"),
            sqlite_where=text("reason = 'refund'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    credit_type: Mapped[str] = mapped_column(String(10), nullable=False)
    direction: Mapped[str] = mapped_column(String(6), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    resulting_balance: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(20), nullable=False)
    external_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    @property
    def signed_amount(self) -> int:
        """Amount with debits negative."""
        return self.amount if self.direction == Direction.CREDIT else -self.amount
