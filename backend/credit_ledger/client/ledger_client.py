"""HTTP client for the credit ledger, used by tenant sites.

Wraps the tenant API (X-API-Key) and keeps a BalanceCache in front of
balance reads. Every mutation made through the client drops the user's
cache entry, so the next read goes back to the ledger.

Usage:
    cache = BalanceCache(ttl_seconds=60)
    async with LedgerClient("https://ledger.example.com", api_key, cache) as client:
        balances = await client.get_balances("42")
        result = await client.deduct("42", "article")
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from credit_ledger.client.cache import BalanceCache, UserBalances
from credit_ledger.client.errors import LedgerRequestError, LedgerUnavailableError

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class CreditChange:
    """A deduction or refund the ledger applied.

    Attributes:
        credit_type: Credit type changed.
        amount: Credits moved.
        balance: Balance after the change.
        transaction_id: Ledger entry id.
    """

    credit_type: str
    amount: int
    balance: int
    transaction_id: str


@dataclass(frozen=True)
class InsufficientCredits:
    """The balance did not cover the request; nothing was deducted."""

    credit_type: str
    requested: int
    available: int


@dataclass(frozen=True)
class CheckoutLink:
    """A pending checkout to redirect the buyer to."""

    session_id: str
    checkout_url: str
    credit_type: str
    credits: int
    amount: str
    currency: str


@dataclass(frozen=True)
class PaymentIntentLink:
    """A pending PaymentIntent for the site's embedded card form."""

    payment_intent_id: str
    client_secret: str
    credit_type: str
    credits: int
    amount: str
    currency: str


@dataclass(frozen=True)
class CheckoutVerification:
    """A settled checkout.

    Attributes:
        session_id: Provider session id.
        credit_type: Credit type granted.
        credits_added: Credits granted by the session.
        balance: Balance after settlement, None if settled earlier.
        already_completed: True when an earlier call did the grant.
    """

    session_id: str
    credit_type: str
    credits_added: int
    balance: int | None
    already_completed: bool


class LedgerClient:
    """Async client for one tenant's view of the ledger.

    Args:
        base_url: Ledger root URL (without /api/v1).
        api_key: Tenant API key, sent as X-API-Key.
        cache: Balance cache shared with the site's WebhookReceiver.
        http_client: Optional client (tests pass one backed by
            httpx.MockTransport). Owned and closed by this object otherwise.
        timeout_seconds: Per-request timeout for the owned client.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        cache: BalanceCache,
        http_client: httpx.AsyncClient | None = None,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/") + API_PREFIX
        self._headers = {"X-API-Key": api_key, "Accept": "application/json"}
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self.cache = cache

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this object created it."""
        if self._owns_client:
            await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            return await self._http.request(
                method,
                f"{self._base_url}{path}",
                headers=self._headers,
                json=json,
                params=params,
            )
        except httpx.TransportError as e:
            logger.warning("Ledger unreachable (%s %s): %s", method, path, e)
            raise LedgerUnavailableError(str(e)) from e

    @staticmethod
    def _error(response: httpx.Response) -> LedgerRequestError:
        try:
            error = response.json()["error"]
        except (ValueError, KeyError, TypeError):
            return LedgerRequestError(
                response.status_code, "HTTP_ERROR", response.reason_phrase
            )
        return LedgerRequestError(
            response.status_code,
            error.get("code", "HTTP_ERROR"),
            error.get("message", ""),
            error.get("details"),
        )

    def _data(self, response: httpx.Response) -> Any:
        if response.is_error:
            raise self._error(response)
        return response.json()["data"]

    # -------------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------------

    async def get_balances(
        self, user_id: str, user_email: str | None = None
    ) -> UserBalances:
        """Return balances, from the cache when fresh.

        A cache miss reads through to the ledger, which creates the
        account with free-tier balances on first sight.
        """
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached

        params = {"user_email": user_email} if user_email else None
        data = self._data(await self._request("GET", f"/credits/{user_id}", params=params))
        balances = UserBalances(
            user_id=data["user_id"],
            article=data["article"],
            image=data["image"],
            rewrite=data["rewrite"],
        )
        self.cache.put(balances)
        return balances

    async def deduct(
        self,
        user_id: str,
        credit_type: str,
        amount: int = 1,
        reference: str | None = None,
    ) -> CreditChange | InsufficientCredits:
        """Deduct credits before a generation.

        Returns:
            CreditChange on success, InsufficientCredits on a 402.

        Raises:
            LedgerRequestError: Any other error response.
            LedgerUnavailableError: Transport failure.
        """
        try:
            response = await self._request(
                "POST",
                f"/credits/{user_id}/deduct",
                json={"credit_type": credit_type, "amount": amount, "reference": reference},
            )
        finally:
            self.cache.invalidate(user_id)

        if response.status_code == httpx.codes.PAYMENT_REQUIRED:
            error = self._error(response)
            detail = (error.details or [{}])[0]
            return InsufficientCredits(
                credit_type=detail.get("credit_type", credit_type),
                requested=detail.get("requested", amount),
                available=detail.get("available", 0),
            )
        return self._change(self._data(response))

    async def refund(
        self,
        user_id: str,
        credit_type: str,
        deduction_id: str,
        amount: int | None = None,
    ) -> CreditChange:
        """Return the credits of a deduction whose generation failed.

        Args:
            user_id: User who was charged.
            credit_type: Credit type of the deduction.
            deduction_id: CreditChange.transaction_id of the deduction.
            amount: Credits to return; the whole deduction when omitted.

        Raises:
            LedgerRequestError: 404 DEDUCTION_NOT_FOUND, 409
                NOTHING_TO_REFUND (already refunded), or any other error.
            LedgerUnavailableError: Transport failure.
        """
        body: dict[str, Any] = {"credit_type": credit_type, "deduction_id": deduction_id}
        if amount is not None:
            body["amount"] = amount
        try:
            response = await self._request(
                "POST", f"/credits/{user_id}/refund", json=body
            )
        finally:
            self.cache.invalidate(user_id)
        return self._change(self._data(response))

    @staticmethod
    def _change(data: dict[str, Any]) -> CreditChange:
        return CreditChange(
            credit_type=data["credit_type"],
            amount=data["amount"],
            balance=data["balance"],
            transaction_id=data["transaction_id"],
        )

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------

    async def list_packages(self) -> dict[str, list[dict[str, Any]]]:
        """Active packages grouped by credit type."""
        data: dict[str, list[dict[str, Any]]] = self._data(
            await self._request("GET", "/packages")
        )
        return data

    async def create_checkout(
        self,
        user_id: str,
        package_id: str,
        success_url: str,
        cancel_url: str,
        user_email: str | None = None,
    ) -> CheckoutLink:
        """Open a hosted checkout for a package."""
        data = self._data(
            await self._request(
                "POST",
                "/checkout/sessions",
                json={
                    "user_id": user_id,
                    "user_email": user_email,
                    "package_id": package_id,
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                },
            )
        )
        return CheckoutLink(
            session_id=data["session_id"],
            checkout_url=data["checkout_url"],
            credit_type=data["credit_type"],
            credits=data["credits"],
            amount=data["amount"],
            currency=data["currency"],
        )

    async def create_payment_intent(
        self,
        user_id: str,
        package_id: str,
        user_email: str | None = None,
    ) -> PaymentIntentLink:
        """Create a PaymentIntent; settle it with verify_checkout()."""
        data = self._data(
            await self._request(
                "POST",
                "/checkout/intents",
                json={
                    "user_id": user_id,
                    "user_email": user_email,
                    "package_id": package_id,
                },
            )
        )
        return PaymentIntentLink(
            payment_intent_id=data["payment_intent_id"],
            client_secret=data["client_secret"],
            credit_type=data["credit_type"],
            credits=data["credits"],
            amount=data["amount"],
            currency=data["currency"],
        )

    async def verify_checkout(self, session_id: str, user_id: str) -> CheckoutVerification:
        """Settle a checkout after the buyer returns from the provider.

        Safe to repeat. A 409 PAYMENT_NOT_COMPLETED means the provider has
        not confirmed yet; verify again later.

        Args:
            session_id: Provider session id from the success redirect, or
                a PaymentIntent id.
            user_id: Buyer, whose cache entry is dropped on settlement.

        Raises:
            LedgerRequestError: Not found, not paid, closed, or provider error.
            LedgerUnavailableError: Transport failure.
        """
        data = self._data(
            await self._request("POST", "/checkout/verify", json={"session_id": session_id})
        )
        self.cache.invalidate(user_id)
        return CheckoutVerification(
            session_id=data["session_id"],
            credit_type=data["credit_type"],
            credits_added=data["credits_added"],
            balance=data.get("balance"),
            already_completed=data.get("already_completed", False),
        )
