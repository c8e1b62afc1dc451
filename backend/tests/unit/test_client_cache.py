"""Tests for the site-side BalanceCache."""

import pytest

from credit_ledger.client.cache import BalanceCache, UserBalances


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _balances(user_id: str = "42", article: int = 5) -> UserBalances:
    return UserBalances(user_id=user_id, article=article, image=10, rewrite=3)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> BalanceCache:
    return BalanceCache(ttl_seconds=60, clock=clock)


class TestGetPut:
    """Tests for BalanceCache.get() and put()."""

    def test_fresh_entry_is_served(self, cache: BalanceCache) -> None:
        """A stored entry is returned until the TTL runs out."""
        cache.put(_balances())

        assert cache.get("42") == _balances()
        assert cache.stats.hits == 1

    def test_expired_entry_is_dropped(self, cache: BalanceCache, clock: FakeClock) -> None:
        """At exactly the TTL the entry is gone."""
        cache.put(_balances())
        clock.now += 60

        assert cache.get("42") is None
        assert cache.stats.size == 0
        assert cache.stats.misses == 1

    def test_put_replaces_and_restarts_ttl(
        self, cache: BalanceCache, clock: FakeClock
    ) -> None:
        """A newer read replaces the older one."""
        cache.put(_balances(article=5))
        clock.now += 50
        cache.put(_balances(article=4))
        clock.now += 50

        cached = cache.get("42")
        assert cached is not None
        assert cached.article == 4

    def test_unknown_user_is_a_miss(self, cache: BalanceCache) -> None:
        """Nothing stored means None."""
        assert cache.get("nobody") is None
        assert cache.stats.misses == 1

    def test_rejects_non_positive_ttl(self) -> None:
        """A cache that never serves anything is a configuration error."""
        with pytest.raises(ValueError, match="positive"):
            BalanceCache(ttl_seconds=0)


class TestInvalidation:
    """Tests for invalidate() and clear()."""

    def test_invalidate_drops_one_user(self, cache: BalanceCache) -> None:
        """Only the named user is affected."""
        cache.put(_balances("42"))
        cache.put(_balances("43"))

        assert cache.invalidate("42") is True
        assert cache.get("42") is None
        assert cache.get("43") is not None

    def test_invalidate_missing_returns_false(self, cache: BalanceCache) -> None:
        """Dropping an absent entry is a no-op."""
        assert cache.invalidate("42") is False
        assert cache.stats.invalidations == 0

    def test_clear_counts_every_entry(self, cache: BalanceCache) -> None:
        """clear() drops everything."""
        cache.put(_balances("42"))
        cache.put(_balances("43"))

        cache.clear()

        assert cache.stats.size == 0
        assert cache.stats.invalidations == 2


class TestUserBalances:
    """Tests for UserBalances.of()."""

    def test_of_each_type(self) -> None:
        """Lookup by credit type name."""
        balances = UserBalances(user_id="42", article=1, image=2, rewrite=3)

        assert [balances.of(t) for t in ("article", "image", "rewrite")] == [1, 2, 3]

    def test_unknown_type(self) -> None:
        """Only the three credit types exist."""
        with pytest.raises(ValueError, match="Unknown credit type"):
            _balances().of("video")
