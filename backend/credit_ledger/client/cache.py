"""Site-side balance cache.

Holds the last balances read from the ledger for a short TTL so that
page renders do not hit the ledger on every request. The ledger remains
the only authority: the cache is invalidated on every mutation made
through LedgerClient and whenever the ledger's credits_updated webhook
arrives.

Safe for single-threaded asyncio usage (one event loop per site worker).
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

DEFAULT_TTL_SECONDS = 60.0


@dataclass(frozen=True)
class UserBalances:
    """Balances as reported by the ledger.

    Attributes:
        user_id: Site-local user id.
        article: Article credits.
        image: Image credits.
        rewrite: Rewrite credits.
    """

    user_id: str
    article: int
    image: int
    rewrite: int

    def of(self, credit_type: str) -> int:
        """Balance of one credit type ("article", "image", or "rewrite")."""
        if credit_type not in ("article", "image", "rewrite"):
            msg = f"Unknown credit type: {credit_type}"
            raise ValueError(msg)
        return getattr(self, credit_type)


@dataclass
class CacheStats:
    """Cache statistics for monitoring.

    Attributes:
        size: Entries currently held (expired ones included until read).
        hits: Fresh reads served from the cache.
        misses: Reads that found nothing or an expired entry.
        invalidations: Entries dropped by invalidate().
    """

    size: int
    hits: int
    misses: int
    invalidations: int


class BalanceCache:
    """In-memory TTL cache of UserBalances keyed by user id.

    One cache per site: the API key already scopes every ledger call to
    a single tenant.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize an empty cache.

        Args:
            ttl_seconds: How long an entry is served after it was stored.
            clock: Monotonic time source (injectable for tests).
        """
        if ttl_seconds <= 0:
            msg = f"ttl_seconds must be positive, got {ttl_seconds}"
            raise ValueError(msg)

        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[UserBalances, float]] = {}
        self._hits = 0
        self._misses = 0
        self._invalidations = 0

    def get(self, user_id: str) -> UserBalances | None:
        """Return fresh balances, or None if absent or expired."""
        entry = self._entries.get(user_id)
        if entry is None:
            self._misses += 1
            return None

        balances, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[user_id]
            self._misses += 1
            return None

        self._hits += 1
        return balances

    def put(self, balances: UserBalances) -> None:
        """Store balances for their user, replacing any previous entry."""
        self._entries[balances.user_id] = (balances, self._clock() + self._ttl)

    def invalidate(self, user_id: str) -> bool:
        """Drop one user's entry.

        Returns:
            True if an entry was removed.
        """
        if self._entries.pop(user_id, None) is None:
            return False
        self._invalidations += 1
        return True

    def clear(self) -> None:
        """Drop every entry."""
        self._invalidations += len(self._entries)
        self._entries.clear()

    @property
    def stats(self) -> CacheStats:
        """Current cache statistics."""
        return CacheStats(
            size=len(self._entries),
            hits=self._hits,
            misses=self._misses,
            invalidations=self._invalidations,
        )
