"""Add log sequence, deduction-bound refunds, and PaymentIntent sessions.

Revision ID: 002_sequence_intents
Revises: 001_credit_ledger
Create Date: 2026-10-19

credit_transactions gains a per-account sequence (backfilled in
created_at order) that replaces created_at as the replay order, and a
partial unique index so each deduction is refunded at most once.
checkout_sessions gains kind (checkout or payment_intent) and the
credits the package granted when the session was created.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "002_sequence_intents"
down_revision: str | None = "001_credit_ledger"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Add the new columns, backfill them, then tighten constraints."""
    # 1. credit_accounts.last_sequence
    op.add_column(
        "credit_accounts",
        sa.Column("last_sequence", sa.Integer, server_default="0", nullable=False),
    )

    # 2. credit_transactions.sequence, numbered per account by age
    op.add_column(
        "credit_transactions", sa.Column("sequence", sa.Integer, nullable=True)
    )
    op.execute(
        """
        UPDATE credit_transactions AS t
        SET sequence = numbered.n
        FROM (
            SELECT id, ROW_NUMBER() OVER (
                PARTITION BY tenant_id, user_id ORDER BY created_at, id
            ) AS n
            FROM credit_transactions
        ) AS numbered
        WHERE t.id = numbered.id
        """
    )
    op.execute(
        """
        UPDATE credit_accounts AS a
        SET last_sequence = totals.n
        FROM (
            SELECT tenant_id, user_id, MAX(sequence) AS n
            FROM credit_transactions
            GROUP BY tenant_id, user_id
        ) AS totals
        WHERE a.tenant_id = totals.tenant_id AND a.user_id = totals.user_id
        """
    )
    op.alter_column("credit_transactions", "sequence", nullable=False)
    op.create_unique_constraint(
        "uq_credit_transactions_account_sequence",
        "credit_transactions",
        ["tenant_id", "user_id", "sequence"],
    )
    op.drop_index(
        "ix_credit_transactions_account_created",
        table_name="credit_transactions",
    )

    # 3. Refunds now reference their deduction; older ones referenced nothing
    op.execute(
        "UPDATE credit_transactions SET external_reference = NULL "
        "WHERE reason = 'refund'"
    )
    op.create_index(
        "uq_credit_transactions_refund_reference",
        "credit_transactions",
        ["tenant_id", "external_reference"],
        unique=True,
        postgresql_where=sa.text("reason = 'refund'"),
    )

    # 4. checkout_sessions.kind and credits
    op.add_column(
        "checkout_sessions",
        sa.Column("kind", sa.String(16), server_default="checkout", nullable=False),
    )
    op.add_column("checkout_sessions", sa.Column("credits", sa.Integer, nullable=True))
    op.execute(
        """
        UPDATE checkout_sessions AS s
        SET credits = COALESCE(s.credits_added, p.credits)
        FROM credit_packages AS p
        WHERE p.id::text = s.package_id
        """
    )
    # Sessions whose package was deleted and never settled cannot be priced
    op.execute(
        "UPDATE checkout_sessions SET credits = COALESCE(credits_added, 1) "
        "WHERE credits IS NULL"
    )
    op.alter_column("checkout_sessions", "credits", nullable=False)
    op.create_check_constraint(
        "ck_checkout_sessions_kind",
        "checkout_sessions",
        "kind IN ('checkout', 'payment_intent')",
    )
    op.create_check_constraint(
        "ck_checkout_sessions_credits_positive",
        "checkout_sessions",
        "credits > 0",
    )


def downgrade() -> None:
    """Drop the new columns and restore the created_at index."""
    op.drop_constraint(
        "ck_checkout_sessions_credits_positive", "checkout_sessions", type_="check"
    )
    op.drop_constraint("ck_checkout_sessions_kind", "checkout_sessions", type_="check")
    op.drop_column("checkout_sessions", "credits")
    op.drop_column("checkout_sessions", "kind")

    op.drop_index(
        "uq_credit_transactions_refund_reference",
        table_name="credit_transactions",
    )
    op.create_index(
        "ix_credit_transactions_account_created",
        "credit_transactions",
        ["tenant_id", "user_id", "created_at"],
    )
    op.drop_constraint(
        "uq_credit_transactions_account_sequence",
        "credit_transactions",
        type_="unique",
    )
    op.drop_column("credit_transactions", "sequence")
    op.drop_column("credit_accounts", "last_sequence")
