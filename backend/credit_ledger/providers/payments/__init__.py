"""Payment gateway adapters."""

from credit_ledger.providers.payments.base import (
    CheckoutRequest,
    CreatedIntent,
    CreatedSession,
    GatewayEvent,
    GatewaySessionStatus,
    PaymentGateway,
    to_minor_units,
)

__all__ = [
    "CheckoutRequest",
    "CreatedIntent",
    "CreatedSession",
    "GatewayEvent",
    "GatewaySessionStatus",
    "PaymentGateway",
    "to_minor_units",
]
