"""Payment gateway factory functions.

The process-level ProviderConfig is a singleton; gateways are built per
call from the admin-managed PaymentProviderConfig row, so rotating keys
in the admin surface takes effect on the next request.
"""

from credit_ledger.core.errors import PaymentNotConfiguredError
from credit_ledger.models.payment_config import PaymentProviderConfig
from credit_ledger.providers.config import ProviderConfig
from credit_ledger.providers.payments.base import PaymentGateway
from credit_ledger.providers.payments.mock_adapter import MockPaymentGateway
from credit_ledger.providers.payments.stripe_adapter import StripeCheckoutGateway

_provider_config: ProviderConfig | None = None
_mock_gateway: MockPaymentGateway | None = None


def get_provider_config(config: ProviderConfig | None = None) -> ProviderConfig:
    """Get or create the ProviderConfig singleton.

    Args:
        config: Optional configuration. The first call with a config sets
            it; otherwise it is loaded from the environment.

    Returns:
        ProviderConfig instance.
    """
    global _provider_config

    if _provider_config is None:
        _provider_config = config or ProviderConfig.from_env()

    return _provider_config


def create_payment_gateway(
    payment_config: PaymentProviderConfig | None,
    config: ProviderConfig | None = None,
) -> PaymentGateway:
    """Build the gateway for the configured provider.

    Args:
        payment_config: Stored credentials row, or None if an admin has
            not configured payments yet.
        config: Process-level tuning. Defaults to the singleton.

    Returns:
        PaymentGateway instance.

    Raises:
        PaymentNotConfiguredError: Missing row or missing secret key.
        ValueError: If the configured provider is unknown.
    """
    global _mock_gateway

    config = config or get_provider_config()

    if config.payment_provider == "mock":
        # One in-memory gateway per process so sessions survive across requests
        if _mock_gateway is None:
            _mock_gateway = MockPaymentGateway(config)
        return _mock_gateway

    if config.payment_provider == "stripe":
        if payment_config is None or not payment_config.secret_key:
            raise PaymentNotConfiguredError()
        return StripeCheckoutGateway(config, secret_key=payment_config.secret_key)

    raise ValueError(f"Unknown payment provider: {config.payment_provider}")


def reset_providers() -> None:
    """Reset provider singletons.

    Used in tests to ensure isolation between test cases.
    """
    global _provider_config, _mock_gateway
    _provider_config = None
    _mock_gateway = None
