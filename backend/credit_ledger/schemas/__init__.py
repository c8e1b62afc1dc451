"""Pydantic request/response schemas for API endpoints."""

from credit_ledger.schemas.checkout import (
    CheckoutCreateRequest,
    CheckoutCreateResponse,
    CheckoutVerifyRequest,
    CheckoutVerifyResponse,
    PackageCatalogResponse,
    PackageResponse,
)
from credit_ledger.schemas.credits import (
    BalancesResponse,
    CreditMutationRequest,
    CreditMutationResponse,
    TransactionResponse,
)

__all__ = [
    # Credits
    "BalancesResponse",
    "CreditMutationRequest",
    "CreditMutationResponse",
    "TransactionResponse",
    # Checkout
    "CheckoutCreateRequest",
    "CheckoutCreateResponse",
    "CheckoutVerifyRequest",
    "CheckoutVerifyResponse",
    "PackageCatalogResponse",
    "PackageResponse",
]
