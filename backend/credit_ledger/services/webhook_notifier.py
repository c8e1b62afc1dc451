"""Outbound balance-change notifications to tenant sites.

The site keeps a short-TTL balance cache; this POST tells it to drop a
user's entry. Delivery is best effort: a dead or slow site never fails
the ledger operation that triggered the notification.
"""

import json
import logging
import time
from typing import TYPE_CHECKING

import httpx

from credit_ledger.core.config import settings
from credit_ledger.core.signing import SIGNATURE_HEADER, TIMESTAMP_HEADER, sign_payload

if TYPE_CHECKING:
    from credit_ledger.models.tenant import Tenant
    from credit_ledger.services.ledger_service import Balances

logger = logging.getLogger(__name__)

CREDITS_UPDATED_EVENT = "credits_updated"


def build_credits_updated_body(user_id: str, balances: "Balances", timestamp: int) -> bytes:
    """Serialize the credits_updated payload with stable key order."""
    payload = {
        "event": CREDITS_UPDATED_EVENT,
        "user_id": user_id,
        "balances": {
            "article": balances.article,
            "image": balances.image,
            "rewrite": balances.rewrite,
        },
        "timestamp": timestamp,
    }
    return json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")


class TenantWebhookNotifier:
    """Signs and POSTs balance-change events to a tenant's webhook URL.

    Args:
        http_client: Optional shared client (tests pass one backed by
            httpx.MockTransport). A short-lived client is opened per call
            otherwise.
        timeout_seconds: Per-request timeout. Defaults to settings.
        enabled: Master switch. Defaults to settings.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        timeout_seconds: float | None = None,
        enabled: bool | None = None,
    ) -> None:
        self._http_client = http_client
        self._timeout = timeout_seconds or settings.webhook_timeout_seconds
        self._enabled = (
            settings.webhook_notifications_enabled if enabled is None else enabled
        )

    async def notify_credits_updated(
        self,
        tenant: "Tenant",
        user_id: str,
        balances: "Balances",
    ) -> bool:
        """Tell the tenant site that a user's balances changed.

        Args:
            tenant: Tenant whose site should be notified.
            user_id: Affected user.
            balances: Balances after the change.

        Returns:
            True if the site acknowledged with a 2xx, False if skipped or
            delivery failed.
        """
        if not self._enabled or not tenant.webhook_url or not tenant.webhook_secret:
            return False

        timestamp = int(time.time())
        body = build_credits_updated_body(user_id, balances, timestamp)
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_payload(tenant.webhook_secret, timestamp, body),
            TIMESTAMP_HEADER: str(timestamp),
        }

        try:
            if self._http_client is not None:
                resp = await self._http_client.post(
                    tenant.webhook_url, content=body, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    resp = await client.post(
                        tenant.webhook_url,
                        content=body,
                        headers=headers,
                        timeout=self._timeout,
                    )
            resp.raise_for_status()
        except Exception:
            logger.warning(
                "Failed to notify tenant %s about user %s", tenant.id, user_id, exc_info=True
            )
            return False
        return True
