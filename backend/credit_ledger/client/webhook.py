"""Receiver for ledger-to-site webhooks.

The site mounts handle() behind its own HTTP route. Events:
- credits_updated: drop the user's cache entry
- cache_flush: drop every entry
- test_webhook: acknowledge only
"""

import json
import logging
import time
from collections.abc import Callable, Mapping

from credit_ledger.client.cache import BalanceCache
from credit_ledger.client.errors import WebhookPayloadError, WebhookSignatureError
from credit_ledger.core.signing import SIGNATURE_HEADER, TIMESTAMP_HEADER, verify_signature

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300

CREDITS_UPDATED = "credits_updated"
CACHE_FLUSH = "cache_flush"
TEST_WEBHOOK = "test_webhook"


def _header(headers: Mapping[str, str], name: str) -> str | None:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


class WebhookReceiver:
    """Verifies signed ledger webhooks and applies them to a BalanceCache.

    Args:
        secret: Tenant webhook secret returned at tenant registration.
        cache: Cache shared with the site's LedgerClient.
        tolerance_seconds: Maximum clock skew accepted for the timestamp.
        clock: Wall-clock source in Unix seconds (injectable for tests).
    """

    def __init__(
        self,
        secret: str,
        cache: BalanceCache,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            msg = "Webhook secret must not be empty"
            raise ValueError(msg)
        self._secret = secret
        self._cache = cache
        self._tolerance = tolerance_seconds
        self._clock = clock

    def _verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        signature = _header(headers, SIGNATURE_HEADER)
        raw_timestamp = _header(headers, TIMESTAMP_HEADER)
        if not signature or not raw_timestamp:
            raise WebhookSignatureError("Missing signature headers")

        try:
            timestamp = int(raw_timestamp)
        except ValueError as e:
            raise WebhookSignatureError("Malformed timestamp") from e

        if abs(self._clock() - timestamp) > self._tolerance:
            raise WebhookSignatureError("Timestamp outside tolerance")

        if not verify_signature(self._secret, timestamp, body, signature):
            raise WebhookSignatureError("Invalid signature")

    def handle(self, body: bytes, headers: Mapping[str, str]) -> str:
        """Verify and apply one webhook.

        Args:
            body: Raw request body, exactly as received.
            headers: Request headers (any case).

        Returns:
            The event name that was applied.

        Raises:
            WebhookSignatureError: Missing, stale, or wrong signature.
            WebhookPayloadError: Body is not JSON or the event is unknown.
        """
        self._verify(body, headers)

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise WebhookPayloadError("Body is not valid JSON") from e
        if not isinstance(payload, dict):
            raise WebhookPayloadError("Body is not a JSON object")

        event = payload.get("event")
        if event == CREDITS_UPDATED:
            user_id = payload.get("user_id")
            if not user_id:
                raise WebhookPayloadError("credits_updated without user_id")
            self._cache.invalidate(str(user_id))
            logger.info("Credits updated for user %s; cache entry dropped", user_id)
        elif event == CACHE_FLUSH:
            self._cache.clear()
            logger.info("Balance cache flushed by ledger")
        elif event != TEST_WEBHOOK:
            raise WebhookPayloadError(f"Unknown event: {event}")

        return event
