"""Payment provider abstraction layer.

Exports:
    Error classes for provider error handling
    ProviderConfig for configuration
    Factory functions for gateway instances
"""

from credit_ledger.providers.config import ProviderConfig
from credit_ledger.providers.errors import (
    AuthenticationError,
    InvalidRequestError,
    ProviderError,
    RateLimitError,
    TransientError,
)
from credit_ledger.providers.factory import (
    create_payment_gateway,
    get_provider_config,
    reset_providers,
)

__all__ = [
    # Config
    "ProviderConfig",
    # Errors
    "ProviderError",
    "RateLimitError",
    "AuthenticationError",
    "InvalidRequestError",
    "TransientError",
    # Factory
    "create_payment_gateway",
    "get_provider_config",
    "reset_providers",
]
