"""Tenant-side client library.

Sites use LedgerClient for every ledger call, WebhookReceiver to keep
the shared BalanceCache honest, and GenerationGate to wrap generation
calls with deduct-then-refund.
"""

from credit_ledger.client.cache import BalanceCache, CacheStats, UserBalances
from credit_ledger.client.errors import (
    LedgerClientError,
    LedgerRequestError,
    LedgerUnavailableError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from credit_ledger.client.gate import GenerationGate
from credit_ledger.client.ledger_client import (
    CheckoutLink,
    CheckoutVerification,
    CreditChange,
    InsufficientCredits,
    LedgerClient,
    PaymentIntentLink,
)
from credit_ledger.client.webhook import WebhookReceiver

__all__ = [
    # Cache
    "BalanceCache",
    "CacheStats",
    "UserBalances",
    # Client
    "LedgerClient",
    "CreditChange",
    "InsufficientCredits",
    "CheckoutLink",
    "CheckoutVerification",
    "PaymentIntentLink",
    "GenerationGate",
    "WebhookReceiver",
    # Errors
    "LedgerClientError",
    "LedgerRequestError",
    "LedgerUnavailableError",
    "WebhookPayloadError",
    "WebhookSignatureError",
]
