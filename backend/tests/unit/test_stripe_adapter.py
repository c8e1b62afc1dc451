"""Tests for the Stripe Checkout and PaymentIntent gateway adapter.

The stripe SDK is patched at its call sites, so no request leaves the
process. Covers request building, status mapping, error classification,
and webhook verification. Responses are given both as plain dicts and as
real SDK objects built with construct_from(), which are not dicts on
current SDK releases.
"""

import hashlib
import hmac
import json
import time
from decimal import Decimal
from unittest.mock import patch

import pytest
import stripe

from credit_ledger.providers.config import ProviderConfig
from credit_ledger.providers.errors import (
    AuthenticationError,
    InvalidRequestError,
    ProviderError,
    RateLimitError,
    TransientError,
)
from credit_ledger.providers.payments.base import (
    CheckoutRequest,
    GatewaySessionStatus,
)
from credit_ledger.providers.payments.stripe_adapter import (
    StripeCheckoutGateway,
    _classify_stripe_error,
)

# Security: test-only placeholders, never real keys
_SECRET_KEY = "sk_test_placeholder"  # nosec B105  # gitleaks:allow
_WEBHOOK_SECRET = "whsec_test_placeholder"  # nosec B105  # gitleaks:allow


@pytest.fixture
def gateway() -> StripeCheckoutGateway:
    """Gateway without retries so error tests stay fast."""
    return StripeCheckoutGateway(
        ProviderConfig(payment_provider="stripe", max_retries=0),
        secret_key=_SECRET_KEY,
    )


def _request(**overrides) -> CheckoutRequest:
    values = {
        "tenant_id": "site-a",
        "user_id": "user-1",
        "user_email": "buyer@example.com",
        "package_id": "pkg-1",
        "credit_type": "article",
        "product_name": "10 articles",
        "amount": Decimal("750"),
        "currency": "JPY",
        "success_url": "https://site-a.example.com/thanks",
        "cancel_url": "https://site-a.example.com/pricing",
    }
    values.update(overrides)
    return CheckoutRequest(**values)


# =============================================================================
# create_session
# =============================================================================


class TestCreateSession:
    """Tests for StripeCheckoutGateway.create_session()."""

    async def test_builds_one_line_item(self, gateway: StripeCheckoutGateway) -> None:
        """Price, currency, metadata, and key are passed through."""
        with patch(
            "stripe.checkout.Session.create",
            return_value={"id": "cs_test_1", "url": "https://checkout.stripe.com/c/1"},
        ) as create:
            created = await gateway.create_session(_request())

        assert created.session_id == "cs_test_1"
        assert created.url == "https://checkout.stripe.com/c/1"
        kwargs = create.call_args.kwargs
        assert kwargs["api_key"] == _SECRET_KEY
        assert kwargs["mode"] == "payment"
        price_data = kwargs["line_items"][0]["price_data"]
        assert price_data["currency"] == "jpy"
        assert price_data["unit_amount"] == 750
        assert kwargs["metadata"]["tenant_id"] == "site-a"
        assert kwargs["customer_email"] == "buyer@example.com"
        assert kwargs["idempotency_key"].startswith("checkout-")

    async def test_accepts_sdk_object(self, gateway: StripeCheckoutGateway) -> None:
        """A StripeObject response is read without dict methods."""
        session = stripe.checkout.Session.construct_from(
            {
                "id": "cs_test_1",
                "object": "checkout.session",
                "url": "https://checkout.stripe.com/c/1",
            },
            _SECRET_KEY,
        )
        with patch("stripe.checkout.Session.create", return_value=session):
            created = await gateway.create_session(_request())

        assert created.session_id == "cs_test_1"
        assert created.url == "https://checkout.stripe.com/c/1"

    async def test_requires_redirect_urls(self, gateway: StripeCheckoutGateway) -> None:
        """Hosted checkout cannot be opened without somewhere to return to."""
        with (
            patch("stripe.checkout.Session.create") as create,
            pytest.raises(InvalidRequestError),
        ):
            await gateway.create_session(_request(success_url=None))

        create.assert_not_called()

    async def test_success_url_gets_session_placeholder(
        self, gateway: StripeCheckoutGateway
    ) -> None:
        """The session id template is appended with the right separator."""
        with patch(
            "stripe.checkout.Session.create",
            return_value={"id": "cs_test_1", "url": "u"},
        ) as create:
            await gateway.create_session(
                _request(success_url="https://site-a.example.com/thanks?lang=ja")
            )

        assert create.call_args.kwargs["success_url"] == (
            "https://site-a.example.com/thanks?lang=ja&session_id={CHECKOUT_SESSION_ID}"
        )

    async def test_two_decimal_currency_in_minor_units(
        self, gateway: StripeCheckoutGateway
    ) -> None:
        """USD prices are sent in cents."""
        with patch(
            "stripe.checkout.Session.create",
            return_value={"id": "cs_test_1", "url": "u"},
        ) as create:
            await gateway.create_session(
                _request(amount=Decimal("9.99"), currency="usd", user_email=None)
            )

        kwargs = create.call_args.kwargs
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 999
        assert "customer_email" not in kwargs

    async def test_auth_failure_is_classified(self, gateway: StripeCheckoutGateway) -> None:
        """A rejected key becomes AuthenticationError."""
        with (
            patch(
                "stripe.checkout.Session.create",
                side_effect=stripe.AuthenticationError("Invalid API Key"),
            ),
            pytest.raises(AuthenticationError),
        ):
            await gateway.create_session(_request())


# =============================================================================
# get_session_status
# =============================================================================


class TestGetSessionStatus:
    """Tests for StripeCheckoutGateway.get_session_status()."""

    @pytest.mark.parametrize(
        ("session", "expected"),
        [
            ({"status": "complete", "payment_status": "paid"}, GatewaySessionStatus.PAID),
            ({"status": "open", "payment_status": "unpaid"}, GatewaySessionStatus.UNPAID),
            ({"status": "expired", "payment_status": "unpaid"}, GatewaySessionStatus.EXPIRED),
            (
                {"status": "complete", "payment_status": "no_payment_required"},
                GatewaySessionStatus.UNPAID,
            ),
            ({"status": None, "payment_status": None}, GatewaySessionStatus.UNKNOWN),
        ],
    )
    async def test_maps_stripe_status(
        self,
        gateway: StripeCheckoutGateway,
        session: dict,
        expected: GatewaySessionStatus,
    ) -> None:
        """Only payment_status == paid counts as paid."""
        with patch("stripe.checkout.Session.retrieve", return_value=session) as retrieve:
            status = await gateway.get_session_status("cs_test_1")

        assert status == expected
        assert retrieve.call_args.args == ("cs_test_1",)
        assert retrieve.call_args.kwargs["api_key"] == _SECRET_KEY

    async def test_connection_error_is_transient(
        self, gateway: StripeCheckoutGateway
    ) -> None:
        """Network failures are retryable."""
        with (
            patch(
                "stripe.checkout.Session.retrieve",
                side_effect=stripe.APIConnectionError("reset"),
            ),
            pytest.raises(TransientError),
        ):
            await gateway.get_session_status("cs_test_1")

    async def test_retries_transient_then_succeeds(self) -> None:
        """With retries enabled a single connection blip is absorbed."""
        gateway = StripeCheckoutGateway(
            ProviderConfig(payment_provider="stripe", max_retries=1, retry_base_delay_ms=1),
            secret_key=_SECRET_KEY,
        )
        with patch(
            "stripe.checkout.Session.retrieve",
            side_effect=[
                stripe.APIConnectionError("reset"),
                {"status": "complete", "payment_status": "paid"},
            ],
        ):
            status = await gateway.get_session_status("cs_test_1")

        assert status == GatewaySessionStatus.PAID

    async def test_reads_sdk_object(self, gateway: StripeCheckoutGateway) -> None:
        """A retrieved StripeObject maps like the equivalent dict."""
        session = stripe.checkout.Session.construct_from(
            {
                "id": "cs_test_1",
                "object": "checkout.session",
                "status": "complete",
                "payment_status": "paid",
            },
            _SECRET_KEY,
        )
        with patch("stripe.checkout.Session.retrieve", return_value=session):
            status = await gateway.get_session_status("cs_test_1")

        assert status == GatewaySessionStatus.PAID


# =============================================================================
# PaymentIntents
# =============================================================================


class TestPaymentIntents:
    """Tests for create_intent() and get_intent_status()."""

    async def test_create_builds_intent(self, gateway: StripeCheckoutGateway) -> None:
        """Amount, currency, metadata, and receipt email are passed through."""
        intent = stripe.PaymentIntent.construct_from(
            {
                "id": "pi_test_1",
                "object": "payment_intent",
                "client_secret": "pi_test_1_secret_x",
                "status": "requires_payment_method",
            },
            _SECRET_KEY,
        )
        with patch("stripe.PaymentIntent.create", return_value=intent) as create:
            created = await gateway.create_intent(
                _request(success_url=None, cancel_url=None)
            )

        assert created.intent_id == "pi_test_1"
        assert created.client_secret == "pi_test_1_secret_x"
        kwargs = create.call_args.kwargs
        assert kwargs["api_key"] == _SECRET_KEY
        assert kwargs["amount"] == 750
        assert kwargs["currency"] == "jpy"
        assert kwargs["metadata"]["tenant_id"] == "site-a"
        assert kwargs["receipt_email"] == "buyer@example.com"
        assert kwargs["idempotency_key"].startswith("intent-")

    @pytest.mark.parametrize(
        ("intent_status", "expected"),
        [
            ("succeeded", GatewaySessionStatus.PAID),
            ("requires_payment_method", GatewaySessionStatus.UNPAID),
            ("processing", GatewaySessionStatus.UNPAID),
            ("canceled", GatewaySessionStatus.EXPIRED),
            ("something_new", GatewaySessionStatus.UNKNOWN),
        ],
    )
    async def test_maps_intent_status(
        self,
        gateway: StripeCheckoutGateway,
        intent_status: str,
        expected: GatewaySessionStatus,
    ) -> None:
        """Only succeeded counts as paid; canceled is terminal."""
        intent = stripe.PaymentIntent.construct_from(
            {"id": "pi_test_1", "object": "payment_intent", "status": intent_status},
            _SECRET_KEY,
        )
        with patch("stripe.PaymentIntent.retrieve", return_value=intent) as retrieve:
            status = await gateway.get_intent_status("pi_test_1")

        assert status == expected
        assert retrieve.call_args.args == ("pi_test_1",)
        assert retrieve.call_args.kwargs["api_key"] == _SECRET_KEY

    async def test_auth_failure_is_classified(self, gateway: StripeCheckoutGateway) -> None:
        """A rejected key becomes AuthenticationError."""
        with (
            patch(
                "stripe.PaymentIntent.create",
                side_effect=stripe.AuthenticationError("Invalid API Key"),
            ),
            pytest.raises(AuthenticationError),
        ):
            await gateway.create_intent(_request())


# =============================================================================
# Error classification
# =============================================================================


class TestClassifyStripeError:
    """Tests for _classify_stripe_error()."""

    def test_rate_limit_reads_retry_after(self) -> None:
        """The retry-after header becomes retry_after_seconds."""
        error = stripe.RateLimitError("Too many requests")
        error.headers = {"retry-after": "2"}

        classified = _classify_stripe_error(error)

        assert isinstance(classified, RateLimitError)
        assert classified.retry_after_seconds == 2.0

    def test_permission_error_is_authentication(self) -> None:
        """Restricted keys lacking permission are credential problems."""
        assert isinstance(
            _classify_stripe_error(stripe.PermissionError("no access")),
            AuthenticationError,
        )

    def test_invalid_request(self) -> None:
        """Bad parameters are not retryable."""
        assert isinstance(
            _classify_stripe_error(stripe.InvalidRequestError("No such session", "id")),
            InvalidRequestError,
        )

    def test_api_error_is_transient(self) -> None:
        """Stripe 5xx responses are retryable."""
        assert isinstance(_classify_stripe_error(stripe.APIError("boom")), TransientError)

    def test_unknown_error_is_generic(self) -> None:
        """Anything else is a plain ProviderError."""
        classified = _classify_stripe_error(RuntimeError("odd"))

        assert type(classified) is ProviderError


# =============================================================================
# parse_webhook
# =============================================================================


class TestParseWebhook:
    """Tests for StripeCheckoutGateway.parse_webhook()."""

    def test_extracts_checkout_session(self, gateway: StripeCheckoutGateway) -> None:
        """Session id and metadata come from the event's data object."""
        event = {
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "object": "checkout.session",
                    "id": "cs_test_1",
                    "metadata": {"tenant_id": "site-a", "user_id": "user-1"},
                }
            },
        }
        with patch("stripe.Webhook.construct_event", return_value=event) as construct:
            parsed = gateway.parse_webhook(b"{}", "t=1,v1=abc", "whsec_test")

        construct.assert_called_once_with(b"{}", "t=1,v1=abc", "whsec_test")
        assert parsed.type == "checkout.session.completed"
        assert parsed.session_id == "cs_test_1"
        assert parsed.metadata == {"tenant_id": "site-a", "user_id": "user-1"}

    def test_non_session_event_has_no_session_id(
        self, gateway: StripeCheckoutGateway
    ) -> None:
        """Events about other objects carry no session."""
        event = {
            "type": "charge.refunded",
            "data": {"object": {"object": "charge", "id": "ch_1"}},
        }
        with patch("stripe.Webhook.construct_event", return_value=event):
            parsed = gateway.parse_webhook(b"{}", "sig", "whsec_test")

        assert parsed.session_id is None
        assert parsed.metadata == {}

    def test_bad_signature(self, gateway: StripeCheckoutGateway) -> None:
        """Signature failures become AuthenticationError."""
        with (
            patch(
                "stripe.Webhook.construct_event",
                side_effect=stripe.SignatureVerificationError("bad", "sig"),
            ),
            pytest.raises(AuthenticationError),
        ):
            gateway.parse_webhook(b"{}", "sig", "whsec_test")

    def test_malformed_payload(self, gateway: StripeCheckoutGateway) -> None:
        """Unparseable bodies become ProviderError."""
        with (
            patch("stripe.Webhook.construct_event", side_effect=ValueError("bad json")),
            pytest.raises(ProviderError),
        ):
            gateway.parse_webhook(b"not json", "sig", "whsec_test")


def _signed(event: dict, secret: str = _WEBHOOK_SECRET) -> tuple[bytes, str]:
    """Serialize an event and sign it the way Stripe does."""
    payload = json.dumps(event)
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode(),
        f"{timestamp}.{payload}".encode(),
        hashlib.sha256,
    ).hexdigest()
    return payload.encode(), f"t={timestamp},v1={signature}"


def _event(event_type: str, data_object: dict) -> dict:
    return {
        "id": "evt_test_1",
        "object": "event",
        "api_version": "2024-06-20",
        "created": int(time.time()),
        "type": event_type,
        "data": {"object": data_object},
    }


class TestParseSignedWebhook:
    """parse_webhook() against the SDK's real signature check and event objects."""

    def test_checkout_session_completed(self, gateway: StripeCheckoutGateway) -> None:
        """Session id and metadata survive SDK event construction."""
        payload, signature = _signed(
            _event(
                "checkout.session.completed",
                {
                    "id": "cs_test_1",
                    "object": "checkout.session",
                    "payment_status": "paid",
                    "metadata": {"tenant_id": "site-a", "user_id": "user-1"},
                },
            )
        )

        parsed = gateway.parse_webhook(payload, signature, _WEBHOOK_SECRET)

        assert parsed.type == "checkout.session.completed"
        assert parsed.session_id == "cs_test_1"
        assert parsed.metadata == {"tenant_id": "site-a", "user_id": "user-1"}

    def test_payment_intent_succeeded(self, gateway: StripeCheckoutGateway) -> None:
        """PaymentIntent events report the intent id as the session id."""
        payload, signature = _signed(
            _event(
                "payment_intent.succeeded",
                {
                    "id": "pi_test_1",
                    "object": "payment_intent",
                    "status": "succeeded",
                    "metadata": {"tenant_id": "site-a"},
                },
            )
        )

        parsed = gateway.parse_webhook(payload, signature, _WEBHOOK_SECRET)

        assert parsed.type == "payment_intent.succeeded"
        assert parsed.session_id == "pi_test_1"
        assert parsed.metadata == {"tenant_id": "site-a"}

    def test_wrong_secret_is_rejected(self, gateway: StripeCheckoutGateway) -> None:
        """A body signed with another secret fails verification."""
        payload, signature = _signed(
            _event("checkout.session.completed", {"id": "cs_1", "object": "checkout.session"}),
            secret="whsec_other",
        )

        with pytest.raises(AuthenticationError):
            gateway.parse_webhook(payload, signature, _WEBHOOK_SECRET)

    def test_tampered_body_is_rejected(self, gateway: StripeCheckoutGateway) -> None:
        """Changing the body after signing invalidates the signature."""
        payload, signature = _signed(
            _event("checkout.session.completed", {"id": "cs_1", "object": "checkout.session"})
        )

        with pytest.raises(AuthenticationError):
            gateway.parse_webhook(payload.replace(b"cs_1", b"cs_2"), signature, _WEBHOOK_SECRET)



def test_provider_name(gateway: StripeCheckoutGateway) -> None:
    """Adapters report their provider name."""
    assert gateway.provider_name == "stripe"
