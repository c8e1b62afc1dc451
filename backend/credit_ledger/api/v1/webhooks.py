"""Payment provider webhook router.

Unauthenticated by API key: the provider signature is the credential.
A verified checkout.session.completed or payment_intent.succeeded event
runs the same idempotent settlement as POST /checkout/verify, so it is
harmless whether the webhook or the browser redirect arrives first.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Header, Request

from credit_ledger.api.deps import DbSession, Gateway, Ledger, Notifier
from credit_ledger.core.errors import (
    PaymentNotCompletedError,
    PaymentNotConfiguredError,
    ValidationError,
)
from credit_ledger.providers.errors import AuthenticationError, ProviderError
from credit_ledger.repositories.payment_config_repository import (
    PaymentConfigRepository,
)
from credit_ledger.services.checkout_service import (
    CheckoutService,
    PaymentNotCompleted,
    Settled,
)

logger = structlog.get_logger()

router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: DbSession,
    gateway: Gateway,
    ledger: Ledger,
    notifier: Notifier,
    stripe_signature: Annotated[str | None, Header()] = None,
) -> dict:
    """Verify a Stripe event and settle the checkout or intent it refers to.

    Returns 400 for a missing or invalid signature. Events that do not
    concern a completed checkout or a succeeded PaymentIntent are
    acknowledged with 200.
    """
    if not stripe_signature:
        raise ValidationError("Missing Stripe-Signature header")

    payment_config = await PaymentConfigRepository.get(db, "stripe")
    if payment_config is None or not payment_config.webhook_secret:
        raise PaymentNotConfiguredError("Webhook secret is not configured")
    webhook_secret = payment_config.webhook_secret

    payload = await request.body()
    try:
        event = gateway.parse_webhook(payload, stripe_signature, webhook_secret)
    except AuthenticationError as exc:
        logger.warning("stripe_webhook_bad_signature")
        raise ValidationError("Invalid webhook signature") from exc
    except ProviderError as exc:
        raise ValidationError("Malformed webhook payload") from exc

    service = CheckoutService(db, gateway, ledger, notifier)
    result = await service.settle_from_webhook(event)

    if result is None:
        return {"received": True, "handled": False}

    if isinstance(result, PaymentNotCompleted):
        # Provider could not confirm right now; a non-2xx makes it redeliver
        logger.info("stripe_webhook_retry_later", session_id=result.session_id)
        raise PaymentNotCompletedError(result.session_id)

    logger.info(
        "stripe_webhook_processed",
        event_type=event.type,
        session_id=event.session_id,
        outcome=type(result).__name__,
        credits=result.credits_added if isinstance(result, Settled) else None,
    )
    return {"received": True, "handled": True}
