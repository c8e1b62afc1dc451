"""Retry strategy for provider operations.

Exponential backoff with jitter for transient errors.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from credit_ledger.providers.errors import RateLimitError, TransientError

__all__ = ["with_retries"]

if TYPE_CHECKING:
    from credit_ledger.providers.config import ProviderConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retries(
    func: Callable[[], Awaitable[T]],
    config: "ProviderConfig",
    retryable_errors: tuple[type[Exception], ...] = (TransientError, RateLimitError),
) -> T:
    """Execute function with exponential backoff retry.

    Args:
        func: Async function to execute (no arguments).
        config: Provider configuration with retry settings.
        retryable_errors: Tuple of error types that should trigger retry.

    Returns:
        Result from successful function execution.

    Raises:
        TransientError: If all retries exhausted due to transient failures.
        RateLimitError: If all retries exhausted due to rate limiting.
        RuntimeError: If retry loop exits unexpectedly without error or result.

    Note:
        If the error is a RateLimitError with retry_after_seconds set,
        that value is used instead of exponential backoff, capped at
        retry_max_delay_ms.
    """
    last_error: Exception | None = None

    for attempt in range(config.max_retries + 1):
        try:
            return await func()
        except retryable_errors as e:
            last_error = e

            if attempt == config.max_retries:
                break

            if isinstance(e, RateLimitError) and e.retry_after_seconds:
                delay = min(e.retry_after_seconds, config.retry_max_delay_ms / 1000)
            else:
                base_delay = config.retry_base_delay_ms * (2**attempt)
                jitter = random.uniform(0, base_delay * 0.1)  # nosec B311
                delay = min(base_delay + jitter, config.retry_max_delay_ms) / 1000

            logger.warning(
                "Payment provider error (attempt %d/%d): %s. Retrying in %.2fs",
                attempt + 1,
                config.max_retries + 1,
                e,
                delay,
            )

            await asyncio.sleep(delay)

    if last_error is not None:
        raise last_error
    raise RuntimeError("Retry loop exited without error or result")
