"""Payment provider tuning.

Credentials live in the payment_provider_configs table (admin-managed);
this dataclass holds the process-level knobs: which adapter to build,
timeouts, and retry policy.
"""

import os
from dataclasses import dataclass

from credit_ledger.core.config import settings


@dataclass
class ProviderConfig:
    """Process-level payment provider configuration.

    Attributes:
        payment_provider: Adapter to build ("stripe" or "mock").
        request_timeout_seconds: Upper bound on one provider call.
        max_retries: Max retry attempts for transient errors.
        retry_base_delay_ms: Base delay for exponential backoff.
        retry_max_delay_ms: Max delay cap for exponential backoff.
    """

    payment_provider: str = "stripe"
    request_timeout_seconds: float = 10.0
    max_retries: int = 2
    retry_base_delay_ms: int = 250
    retry_max_delay_ms: int = 5000

    @classmethod
    def from_env(cls) -> "ProviderConfig":
        """Load configuration from environment variables.

        Returns:
            ProviderConfig instance with values from environment.
        """
        return cls(
            payment_provider=os.getenv("PAYMENT_PROVIDER", "stripe"),
            request_timeout_seconds=settings.payment_timeout_seconds,
            max_retries=int(os.getenv("PAYMENT_MAX_RETRIES", "2")),
            retry_base_delay_ms=int(os.getenv("PAYMENT_RETRY_BASE_DELAY_MS", "250")),
            retry_max_delay_ms=int(os.getenv("PAYMENT_RETRY_MAX_DELAY_MS", "5000")),
        )
