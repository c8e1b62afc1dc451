"""SQLAlchemy ORM models for the credit ledger.

All models are exported from this module for convenient imports:
    from credit_ledger.models import CreditAccount, CheckoutSession, ...

Models are organized by domain:
- tenant.py: Tenant (sites and their API keys)
- credit.py: CreditAccount, CreditTransaction, and the closed enums
- catalog.py: CreditPackage
- checkout.py: CheckoutSession
- payment_config.py: PaymentProviderConfig
"""

from credit_ledger.models.base import Base, TimestampMixin
from credit_ledger.models.catalog import CreditPackage
from credit_ledger.models.checkout import CheckoutKind, CheckoutSession, CheckoutStatus
from credit_ledger.models.credit import (
    CreditAccount,
    CreditTransaction,
    CreditType,
    Direction,
    TransactionReason,
)
from credit_ledger.models.payment_config import PaymentProviderConfig
from credit_ledger.models.tenant import Tenant

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    # Tenancy
    "Tenant",
    # Ledger
    "CreditAccount",
    "CreditTransaction",
    "CreditType",
    "Direction",
    "TransactionReason",
    # Catalog and checkout
    "CreditPackage",
    "CheckoutKind",
    "CheckoutSession",
    "CheckoutStatus",
    "PaymentProviderConfig",
]
