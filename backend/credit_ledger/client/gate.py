"""Deduct-then-generate wrapper for costly generation calls.

Credits are taken before the generation runs and handed back if it
fails, so a user can never generate without paying and never pays for
a generation that did not happen.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from credit_ledger.client.errors import LedgerClientError
from credit_ledger.client.ledger_client import InsufficientCredits, LedgerClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GenerationGate:
    """Guards generation calls with a ledger deduction.

    Args:
        client: Ledger client whose cache is consulted before deducting.
    """

    def __init__(self, client: LedgerClient) -> None:
        self._client = client

    async def run(
        self,
        user_id: str,
        credit_type: str,
        generate: Callable[[], Awaitable[T]],
        amount: int = 1,
    ) -> T | InsufficientCredits:
        """Deduct, generate, and refund if generation raises.

        A cached balance below amount short-circuits without a ledger
        call. The ledger's own check is still authoritative when the
        cache is stale or empty.

        Args:
            user_id: User paying for the generation.
            credit_type: "article", "image", or "rewrite".
            generate: Coroutine factory doing the actual work.
            amount: Credits the generation costs.

        Returns:
            The value returned by generate(), or InsufficientCredits.

        Raises:
            Exception: Whatever generate() raised, after the refund.
            LedgerClientError: The deduction itself failed.
        """
        cached = self._client.cache.get(user_id)
        if cached is not None and cached.of(credit_type) < amount:
            return InsufficientCredits(
                credit_type=credit_type,
                requested=amount,
                available=cached.of(credit_type),
            )

        deduction = await self._client.deduct(user_id, credit_type, amount)
        if isinstance(deduction, InsufficientCredits):
            return deduction

        try:
            return await generate()
        except Exception:
            try:
                await self._client.refund(user_id, credit_type, deduction.transaction_id)
            except LedgerClientError:
                logger.exception(
                    "Refund of %d %s credits for user %s failed (deduction %s)",
                    amount,
                    credit_type,
                    user_id,
                    deduction.transaction_id,
                )
            raise
