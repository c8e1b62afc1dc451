"""Tests for LedgerClient against an httpx.MockTransport.

The handler plays the ledger's side of the wire: data envelopes on
success and the {"error": {...}} envelope on failure.
"""

import json
from collections.abc import Callable

import httpx
import pytest

from credit_ledger.client.cache import BalanceCache, UserBalances
from credit_ledger.client.errors import LedgerRequestError, LedgerUnavailableError
from credit_ledger.client.ledger_client import (
    CreditChange,
    InsufficientCredits,
    LedgerClient,
    PaymentIntentLink,
)

_API_KEY = "rk_test_key"  # nosec B105

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler, cache: BalanceCache | None = None) -> LedgerClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LedgerClient(
        "https://ledger.example.com/", _API_KEY, cache or BalanceCache(), http
    )


def _balances_body(user_id: str = "42", article: int = 5) -> dict:
    return {
        "data": {
            "user_id": user_id,
            "article": article,
            "image": 10,
            "rewrite": 3,
            "usage": {"article": 0, "image": 0, "rewrite": 0},
        }
    }


def _error_body(code: str, message: str, details: list | None = None) -> dict:
    error: dict = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"error": error}


class TestGetBalances:
    """Tests for LedgerClient.get_balances()."""

    async def test_reads_through_and_caches(self) -> None:
        """The first read hits the ledger, the second is served from cache."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=_balances_body())

        client = _client(handler)

        first = await client.get_balances("42")
        second = await client.get_balances("42")

        assert first == second == UserBalances(user_id="42", article=5, image=10, rewrite=3)
        assert len(requests) == 1
        request = requests[0]
        assert request.url.path == "/api/v1/credits/42"
        assert request.headers["X-API-Key"] == _API_KEY

    async def test_passes_email(self) -> None:
        """The optional email is sent as a query parameter."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_balances_body())

        await _client(handler).get_balances("42", user_email="u@example.com")

        assert seen[0].url.params["user_email"] == "u@example.com"

    async def test_error_envelope_is_raised(self) -> None:
        """Non-2xx responses become LedgerRequestError with the code."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json=_error_body("UNAUTHORIZED", "Invalid API key"))

        with pytest.raises(LedgerRequestError) as exc_info:
            await _client(handler).get_balances("42")

        assert exc_info.value.status_code == 401
        assert exc_info.value.code == "UNAUTHORIZED"

    async def test_non_json_error(self) -> None:
        """A proxy error page still produces a LedgerRequestError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        with pytest.raises(LedgerRequestError) as exc_info:
            await _client(handler).get_balances("42")

        assert exc_info.value.code == "HTTP_ERROR"

    async def test_transport_failure(self) -> None:
        """Connection problems become LedgerUnavailableError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(LedgerUnavailableError):
            await _client(handler).get_balances("42")


class TestDeductAndRefund:
    """Tests for LedgerClient.deduct() and refund()."""

    async def test_deduct_success_invalidates_cache(self) -> None:
        """A mutation always drops the cached balances."""
        cache = BalanceCache()
        cache.put(UserBalances(user_id="42", article=5, image=10, rewrite=3))
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "data": {
                        "credit_type": "article",
                        "amount": 1,
                        "balance": 4,
                        "transaction_id": "txn-1",
                    }
                },
            )

        result = await _client(handler, cache).deduct("42", "article", reference="post-9")

        assert result == CreditChange(
            credit_type="article", amount=1, balance=4, transaction_id="txn-1"
        )
        assert bodies == [{"credit_type": "article", "amount": 1, "reference": "post-9"}]
        assert cache.get("42") is None

    async def test_insufficient_is_returned(self) -> None:
        """402 becomes an InsufficientCredits result, not an exception."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                402,
                json=_error_body(
                    "INSUFFICIENT_CREDITS",
                    "Not enough image credits",
                    [{"credit_type": "image", "requested": 2, "available": 1}],
                ),
            )

        result = await _client(handler).deduct("42", "image", 2)

        assert result == InsufficientCredits(credit_type="image", requested=2, available=1)

    async def test_transport_failure_still_invalidates(self) -> None:
        """An unknown outcome must not leave stale balances behind."""
        cache = BalanceCache()
        cache.put(UserBalances(user_id="42", article=5, image=10, rewrite=3))

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(LedgerUnavailableError):
            await _client(handler, cache).deduct("42", "article")

        assert cache.get("42") is None

    async def test_refund_names_deduction(self) -> None:
        """The refund body carries the deduction id and drops the cache entry."""
        cache = BalanceCache()
        cache.put(UserBalances(user_id="42", article=4, image=10, rewrite=3))
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/credits/42/refund"
            seen.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "data": {
                        "credit_type": "article",
                        "amount": 1,
                        "balance": 5,
                        "transaction_id": "txn-refund",
                    }
                },
            )

        change = await _client(handler, cache).refund("42", "article", "txn-deduct")

        assert seen == [{"credit_type": "article", "deduction_id": "txn-deduct"}]
        assert change.balance == 5
        assert cache.get("42") is None

    async def test_refund_conflict_is_raised(self) -> None:
        """Refunding a deduction twice is a 409 the caller sees."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                409, json=_error_body("NOTHING_TO_REFUND", "Deduction was already refunded")
            )

        with pytest.raises(LedgerRequestError) as exc_info:
            await _client(handler).refund("42", "article", "txn-deduct")

        assert exc_info.value.code == "NOTHING_TO_REFUND"


class TestCheckout:
    """Tests for the checkout helpers."""

    async def test_create_checkout(self) -> None:
        """The ledger's session is returned as a CheckoutLink."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/checkout/sessions"
            return httpx.Response(
                201,
                json={
                    "data": {
                        "session_id": "cs_1",
                        "checkout_url": "https://pay.example.com/cs_1",
                        "package_id": "pkg",
                        "credit_type": "article",
                        "credits": 10,
                        "amount": "750",
                        "currency": "jpy",
                        "expires_at": "2026-01-01T00:00:00Z",
                    }
                },
            )

        link = await _client(handler).create_checkout(
            "42", "pkg", "https://site/ok", "https://site/cancel"
        )

        assert link.session_id == "cs_1"
        assert link.checkout_url == "https://pay.example.com/cs_1"
        assert link.credits == 10

    async def test_create_payment_intent(self) -> None:
        """The ledger's intent is returned with its client secret."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/checkout/intents"
            assert json.loads(request.content)["package_id"] == "pkg"
            return httpx.Response(
                201,
                json={
                    "data": {
                        "payment_intent_id": "pi_1",
                        "client_secret": "pi_1_secret",
                        "package_id": "pkg",
                        "credit_type": "image",
                        "credits": 50,
                        "amount": "9.99",
                        "currency": "usd",
                        "expires_at": "2026-01-01T00:00:00Z",
                    }
                },
            )

        link = await _client(handler).create_payment_intent("42", "pkg")

        assert link == PaymentIntentLink(
            payment_intent_id="pi_1",
            client_secret="pi_1_secret",
            credit_type="image",
            credits=50,
            amount="9.99",
            currency="usd",
        )

    async def test_verify_invalidates_buyer(self) -> None:
        """After settlement the buyer's next read goes to the ledger."""
        cache = BalanceCache()
        cache.put(UserBalances(user_id="42", article=5, image=10, rewrite=3))

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "data": {
                        "session_id": "cs_1",
                        "status": "completed",
                        "credit_type": "article",
                        "credits_added": 10,
                        "balance": 15,
                        "transaction_ref": "txn-9",
                        "already_completed": False,
                    }
                },
            )

        verification = await _client(handler, cache).verify_checkout("cs_1", "42")

        assert verification.credits_added == 10
        assert verification.balance == 15
        assert verification.already_completed is False
        assert cache.get("42") is None

    async def test_verify_not_paid_keeps_cache(self) -> None:
        """An unpaid session changes no balance."""
        cache = BalanceCache()
        cache.put(UserBalances(user_id="42", article=5, image=10, rewrite=3))

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                409, json=_error_body("PAYMENT_NOT_COMPLETED", "Payment not completed")
            )

        with pytest.raises(LedgerRequestError) as exc_info:
            await _client(handler, cache).verify_checkout("cs_1", "42")

        assert exc_info.value.code == "PAYMENT_NOT_COMPLETED"
        assert cache.get("42") is not None


class TestLifecycle:
    """Tests for client ownership of the HTTP connection pool."""

    async def test_does_not_close_borrowed_client(self) -> None:
        """A caller-provided client stays open."""
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=_balances_body()))
        )

        async with LedgerClient("https://ledger.example.com", _API_KEY, BalanceCache(), http):
            pass

        assert http.is_closed is False
        await http.aclose()

    async def test_closes_owned_client(self) -> None:
        """A client created by LedgerClient is closed with it."""
        client = LedgerClient("https://ledger.example.com", _API_KEY, BalanceCache())

        await client.aclose()

        assert client._http.is_closed is True
