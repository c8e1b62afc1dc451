"""Stripe Checkout and PaymentIntent gateway adapter.

Wraps the synchronous stripe SDK. Each call passes the secret key
explicitly (``api_key=``) instead of mutating the module-level
``stripe.api_key``, and runs in a worker thread under a hard timeout so a
slow Stripe response can never hold a settlement request open
indefinitely.
"""

import asyncio
import contextlib
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

import stripe
import structlog

from credit_ledger.providers.errors import (
    AuthenticationError,
    InvalidRequestError,
    ProviderError,
    RateLimitError,
    TransientError,
)
from credit_ledger.providers.payments.base import (
    CheckoutRequest,
    CreatedIntent,
    CreatedSession,
    GatewayEvent,
    GatewaySessionStatus,
    PaymentGateway,
    to_minor_units,
)
from credit_ledger.providers.retry import with_retries

if TYPE_CHECKING:
    from credit_ledger.providers.config import ProviderConfig

logger = structlog.get_logger()

T = TypeVar("T")

_SESSION_ID_PLACEHOLDER = "session_id={CHECKOUT_SESSION_ID}"

# PaymentIntent states in which the buyer can still complete payment
_INTENT_OPEN_STATUSES = frozenset(
    {
        "requires_payment_method",
        "requires_confirmation",
        "requires_action",
        "processing",
        "requires_capture",
    }
)


def _classify_stripe_error(error: Exception) -> ProviderError:
    """Map stripe SDK exceptions to internal error taxonomy.

    Returns a ProviderError subclass instance (does not raise).
    The caller raises via ``raise _classify_stripe_error(e) from e``.
    """
    if isinstance(error, stripe.RateLimitError):
        retry_after = None
        headers = getattr(error, "headers", None) or {}
        retry_header = headers.get("retry-after")
        if retry_header is not None:
            with contextlib.suppress(ValueError):
                retry_after = float(retry_header)
        return RateLimitError(str(error), retry_after_seconds=retry_after)

    if isinstance(error, (stripe.AuthenticationError, stripe.PermissionError)):
        return AuthenticationError(str(error))

    if isinstance(error, stripe.InvalidRequestError):
        return InvalidRequestError(str(error))

    if isinstance(error, stripe.APIConnectionError):
        return TransientError(str(error))

    if isinstance(error, stripe.APIError):
        # 5xx from Stripe
        return TransientError(str(error))

    return ProviderError(str(error))


def _as_dict(obj: Any) -> dict[str, Any]:
    """Return an SDK response as a plain dict.

    StripeObject stopped subclassing dict in recent SDK releases; there
    ``.get()`` raises and nested objects are not mappings.
    """
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def _metadata(obj: dict[str, Any]) -> dict[str, str]:
    return {str(key): str(value) for key, value in (obj.get("metadata") or {}).items()}


def _with_session_placeholder(success_url: str) -> str:
    """Append the checkout session id template to the success URL."""
    separator = "&" if "?" in success_url else "?"
    return f"{success_url}{separator}{_SESSION_ID_PLACEHOLDER}"


class StripeCheckoutGateway(PaymentGateway):
    """Stripe gateway: hosted Checkout sessions and PaymentIntents.

    Args:
        config: Timeouts and retry policy.
        secret_key: Stripe secret key (sk_test_... / sk_live_...).
    """

    def __init__(self, config: "ProviderConfig", *, secret_key: str) -> None:
        super().__init__(config)
        self._secret_key = secret_key

    @property
    def provider_name(self) -> str:
        """Return 'stripe'."""
        return "stripe"

    async def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking SDK call in a thread under the request timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs),
                timeout=self.config.request_timeout_seconds,
            )
        except TimeoutError as e:
            raise TransientError(
                f"Stripe did not respond within "
                f"{self.config.request_timeout_seconds:.1f}s"
            ) from e
        except stripe.StripeError as e:
            raise _classify_stripe_error(e) from e

    async def create_session(self, request: CheckoutRequest) -> CreatedSession:
        """Open a Stripe Checkout session for one package.

        Retries reuse the same idempotency key, so a retried create after
        a lost response returns the original session instead of opening a
        second one.

        Args:
            request: Package, price, buyer, and redirect URLs.

        Returns:
            CreatedSession with the Stripe session id and hosted URL.

        Raises:
            ProviderError: On API failure after retries.
        """
        if not request.success_url or not request.cancel_url:
            raise InvalidRequestError("Hosted checkout needs success and cancel URLs")
        idempotency_key = f"checkout-{uuid.uuid4()}"
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": request.currency.lower(),
                        "product_data": {"name": request.product_name},
                        "unit_amount": to_minor_units(
                            request.amount, request.currency
                        ),
                    },
                    "quantity": 1,
                }
            ],
            "success_url": _with_session_placeholder(request.success_url),
            "cancel_url": request.cancel_url,
            "metadata": request.metadata,
        }
        if request.user_email:
            params["customer_email"] = request.user_email

        async def _create() -> Any:
            return await self._call(
                stripe.checkout.Session.create,
                api_key=self._secret_key,
                idempotency_key=idempotency_key,
                **params,
            )

        session = _as_dict(await with_retries(_create, self.config))
        logger.info(
            "stripe_checkout_created",
            session_id=session["id"],
            tenant_id=request.tenant_id,
            package_id=request.package_id,
        )
        return CreatedSession(session_id=session["id"], url=session["url"])

    async def create_intent(self, request: CheckoutRequest) -> CreatedIntent:
        """Create a PaymentIntent for an embedded card form.

        Args:
            request: Package, price, and buyer. Redirect URLs are unused.

        Returns:
            CreatedIntent with the intent id and its client secret.

        Raises:
            ProviderError: On API failure after retries.
        """
        idempotency_key = f"intent-{uuid.uuid4()}"
        params: dict[str, Any] = {
            "amount": to_minor_units(request.amount, request.currency),
            "currency": request.currency.lower(),
            "automatic_payment_methods": {"enabled": True},
            "description": request.product_name,
            "metadata": request.metadata,
        }
        if request.user_email:
            params["receipt_email"] = request.user_email

        async def _create() -> Any:
            return await self._call(
                stripe.PaymentIntent.create,
                api_key=self._secret_key,
                idempotency_key=idempotency_key,
                **params,
            )

        intent = _as_dict(await with_retries(_create, self.config))
        logger.info(
            "stripe_payment_intent_created",
            intent_id=intent["id"],
            tenant_id=request.tenant_id,
            package_id=request.package_id,
        )
        return CreatedIntent(intent_id=intent["id"], client_secret=intent["client_secret"])

    async def get_session_status(self, session_id: str) -> GatewaySessionStatus:
        """Retrieve a Checkout session and map it to a payment status.

        Args:
            session_id: Stripe Checkout session id (cs_...).

        Returns:
            PAID when payment_status is "paid"; EXPIRED when the session
            status is "expired"; UNPAID for open or unpaid sessions;
            UNKNOWN for anything else.

        Raises:
            TransientError: Timeout or network failure after retries.
            AuthenticationError: Credentials rejected.
            ProviderError: Any other provider failure.
        """

        async def _retrieve() -> Any:
            return await self._call(
                stripe.checkout.Session.retrieve,
                session_id,
                api_key=self._secret_key,
            )

        session = _as_dict(await with_retries(_retrieve, self.config))
        payment_status = session.get("payment_status")
        status = session.get("status")

        if payment_status == "paid":
            return GatewaySessionStatus.PAID
        if status == "expired":
            return GatewaySessionStatus.EXPIRED
        if payment_status == "unpaid" or status in ("open", "complete"):
            return GatewaySessionStatus.UNPAID
        logger.warning(
            "stripe_session_status_unrecognized",
            session_id=session_id,
            status=status,
            payment_status=payment_status,
        )
        return GatewaySessionStatus.UNKNOWN

    async def get_intent_status(self, intent_id: str) -> GatewaySessionStatus:
        """Retrieve a PaymentIntent and map it to a payment status.

        Returns:
            PAID when succeeded, EXPIRED when canceled, UNPAID while the
            buyer can still pay, UNKNOWN otherwise.
        """

        async def _retrieve() -> Any:
            return await self._call(
                stripe.PaymentIntent.retrieve,
                intent_id,
                api_key=self._secret_key,
            )

        intent = _as_dict(await with_retries(_retrieve, self.config))
        status = intent.get("status")
        if status == "succeeded":
            return GatewaySessionStatus.PAID
        if status == "canceled":
            return GatewaySessionStatus.EXPIRED
        if status in _INTENT_OPEN_STATUSES:
            return GatewaySessionStatus.UNPAID
        logger.warning("stripe_intent_status_unrecognized", intent_id=intent_id, status=status)
        return GatewaySessionStatus.UNKNOWN

    def parse_webhook(
        self, payload: bytes, signature: str, secret: str
    ) -> GatewayEvent:
        """Verify a Stripe webhook and extract the session or intent.

        Args:
            payload: Raw request body.
            signature: Stripe-Signature header value.
            secret: Endpoint signing secret (whsec_...).

        Returns:
            GatewayEvent with the event type, the checkout session or
            PaymentIntent id, and its metadata.

        Raises:
            AuthenticationError: Signature does not verify.
            ProviderError: Payload is not a valid event.
        """
        try:
            event = _as_dict(stripe.Webhook.construct_event(payload, signature, secret))
        except stripe.SignatureVerificationError as e:
            raise AuthenticationError("Invalid Stripe webhook signature") from e
        except ValueError as e:
            raise ProviderError("Malformed Stripe webhook payload") from e

        try:
            data_object = _as_dict(event["data"]["object"])
            event_type = event["type"]
        except (KeyError, TypeError) as e:
            raise ProviderError("Stripe event has no data object") from e

        session_id = None
        metadata: dict[str, str] = {}
        if data_object.get("object") in ("checkout.session", "payment_intent"):
            session_id = data_object.get("id")
            metadata = _metadata(data_object)
        return GatewayEvent(type=event_type, session_id=session_id, metadata=metadata)
