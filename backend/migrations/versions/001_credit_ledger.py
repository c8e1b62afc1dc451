"""Create credit ledger tables.

Revision ID: 001_credit_ledger
Revises: None
Create Date: 2026-10-01

Creates tenants, credit_accounts, credit_transactions, credit_packages,
checkout_sessions, and payment_provider_configs. Balance and amount
invariants are enforced by CHECK constraints; checkout_sessions.status is
the settlement guard.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_credit_ledger"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# ---------------------------------------------------------------------------
# Shared column types
# ---------------------------------------------------------------------------
_TENANT_ID = sa.String(64)
_USER_ID = sa.String(128)
_CREDIT_TYPE = sa.String(10)
_MONEY = sa.Numeric(precision=12, scale=2)
_NOW = sa.func.now()

_CREDIT_TYPES = "'article', 'image', 'rewrite'"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=_NOW,
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=_NOW,
            nullable=False,
        ),
    ]


def _counter(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer, server_default="0", nullable=False)


def upgrade() -> None:
    """Create all ledger tables and indexes."""
    # 1. tenants
    op.create_table(
        "tenants",
        sa.Column("id", _TENANT_ID, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("api_key_hash", sa.String(64), nullable=False),
        sa.Column("webhook_url", sa.String(500), nullable=True),
        sa.Column("webhook_secret", sa.String(128), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        *_timestamps(),
    )

    # 2. credit_accounts: one row per (tenant, user), three balances
    op.create_table(
        "credit_accounts",
        sa.Column("tenant_id", _TENANT_ID, primary_key=True),
        sa.Column("user_id", _USER_ID, primary_key=True),
        sa.Column("user_email", sa.String(255), nullable=True),
        _counter("article_credits"),
        _counter("image_credits"),
        _counter("rewrite_credits"),
        _counter("total_articles_generated"),
        _counter("total_images_generated"),
        _counter("total_rewrites_generated"),
        *_timestamps(),
        sa.CheckConstraint("article_credits >= 0", name="ck_credit_accounts_article"),
        sa.CheckConstraint("image_credits >= 0", name="ck_credit_accounts_image"),
        sa.CheckConstraint("rewrite_credits >= 0", name="ck_credit_accounts_rewrite"),
        sa.CheckConstraint(
            "total_articles_generated >= 0", name="ck_credit_accounts_total_article"
        ),
        sa.CheckConstraint(
            "total_images_generated >= 0", name="ck_credit_accounts_total_image"
        ),
        sa.CheckConstraint(
            "total_rewrites_generated >= 0", name="ck_credit_accounts_total_rewrite"
        ),
    )

    # 3. credit_transactions: append-only log
    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("tenant_id", _TENANT_ID, nullable=False),
        sa.Column("user_id", _USER_ID, nullable=False),
        sa.Column("credit_type", _CREDIT_TYPE, nullable=False),
        sa.Column("direction", sa.String(6), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("resulting_balance", sa.Integer, nullable=False),
        sa.Column("reason", sa.String(20), nullable=False),
        sa.Column("external_reference", sa.String(255), nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=_NOW,
            nullable=False,
        ),
        sa.CheckConstraint("amount > 0", name="ck_credit_transactions_amount_positive"),
        sa.CheckConstraint(
            "resulting_balance >= 0", name="ck_credit_transactions_balance_nonneg"
        ),
        sa.CheckConstraint(
            f"credit_type IN ({_CREDIT_TYPES})",
            name="ck_credit_transactions_credit_type",
        ),
        sa.CheckConstraint(
            "direction IN ('debit', 'credit')",
            name="ck_credit_transactions_direction",
        ),
        sa.CheckConstraint(
            "reason IN ('generation', 'admin_adjustment', 'purchase', 'bonus', 'refund')",
            name="ck_credit_transactions_reason",
        ),
    )

    # 4. credit_packages
    op.create_table(
        "credit_packages",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("credit_type", _CREDIT_TYPE, nullable=False),
        sa.Column("credits", sa.Integer, nullable=False),
        sa.Column("price", _MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        sa.Column("display_order", sa.Integer, server_default="0", nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("highlight_label", sa.String(50), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("credits > 0", name="ck_credit_packages_credits_positive"),
        sa.CheckConstraint("price > 0", name="ck_credit_packages_price_positive"),
        sa.CheckConstraint(
            f"credit_type IN ({_CREDIT_TYPES})",
            name="ck_credit_packages_credit_type",
        ),
    )

    # 5. checkout_sessions: keyed by provider session id
    op.create_table(
        "checkout_sessions",
        sa.Column("session_id", sa.String(255), primary_key=True),
        sa.Column("tenant_id", _TENANT_ID, nullable=False),
        sa.Column("user_id", _USER_ID, nullable=False),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("package_id", sa.String(64), nullable=False),
        sa.Column("credit_type", _CREDIT_TYPE, nullable=False),
        sa.Column("amount", _MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(10), server_default="pending", nullable=False),
        sa.Column("credits_added", sa.Integer, nullable=True),
        sa.Column("transaction_ref", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=_NOW,
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'expired')",
            name="ck_checkout_sessions_status",
        ),
        sa.CheckConstraint(
            f"credit_type IN ({_CREDIT_TYPES})",
            name="ck_checkout_sessions_credit_type",
        ),
    )

    # 6. payment_provider_configs: one row per provider
    op.create_table(
        "payment_provider_configs",
        sa.Column("provider", sa.String(32), primary_key=True),
        sa.Column("publishable_key", sa.String(255), nullable=True),
        sa.Column("secret_key", sa.String(255), nullable=True),
        sa.Column("webhook_secret", sa.String(255), nullable=True),
        sa.Column("default_currency", sa.String(3), nullable=False),
        sa.Column("mode", sa.String(4), server_default="test", nullable=False),
        sa.Column(
            "fee_percentage",
            sa.Numeric(precision=5, scale=2),
            server_default="0",
            nullable=False,
        ),
        sa.Column("updated_by", sa.String(255), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=_NOW,
            nullable=False,
        ),
        sa.CheckConstraint(
            "mode IN ('test', 'live')",
            name="ck_payment_provider_configs_mode",
        ),
    )

    # 7. Indexes
    op.create_index(
        "ix_tenants_api_key_hash", "tenants", ["api_key_hash"], unique=True
    )
    op.create_index(
        "ix_credit_transactions_account_created",
        "credit_transactions",
        ["tenant_id", "user_id", "created_at"],
    )
    op.create_index(
        "ix_credit_transactions_external_reference",
        "credit_transactions",
        ["external_reference"],
    )
    op.create_index(
        "ix_checkout_sessions_tenant_user",
        "checkout_sessions",
        ["tenant_id", "user_id"],
    )
    op.create_index(
        "ix_checkout_sessions_status_expires",
        "checkout_sessions",
        ["status", "expires_at"],
    )
    op.create_index(
        "ix_credit_packages_active",
        "credit_packages",
        ["credit_type", "display_order"],
        postgresql_where=sa.text("is_active = TRUE"),
    )


def downgrade() -> None:
    """Drop all ledger tables."""
    op.drop_index("ix_credit_packages_active", table_name="credit_packages")
    op.drop_index(
        "ix_checkout_sessions_status_expires", table_name="checkout_sessions"
    )
    op.drop_index("ix_checkout_sessions_tenant_user", table_name="checkout_sessions")
    op.drop_index(
        "ix_credit_transactions_external_reference",
        table_name="credit_transactions",
    )
    op.drop_index(
        "ix_credit_transactions_account_created",
        table_name="credit_transactions",
    )
    op.drop_index("ix_tenants_api_key_hash", table_name="tenants")

    op.drop_table("payment_provider_configs")
    op.drop_table("checkout_sessions")
    op.drop_table("credit_packages")
    op.drop_table("credit_transactions")
    op.drop_table("credit_accounts")
    op.drop_table("tenants")
