"""Shared dependencies for API endpoints.

Tenant routes authenticate with the X-API-Key header; admin routes with a
Bearer JWT signed with ADMIN_TOKEN_SECRET. The payment gateway is built
per request from the stored provider config.
"""

from typing import Annotated

import jwt
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.database import get_db
from credit_ledger.core.errors import AdminRequiredError, UnauthorizedError
from credit_ledger.core.security import decode_admin_token, is_admin_claims
from credit_ledger.models.tenant import Tenant
from credit_ledger.providers.factory import create_payment_gateway
from credit_ledger.providers.payments.base import PaymentGateway
from credit_ledger.repositories.payment_config_repository import (
    PaymentConfigRepository,
)
from credit_ledger.repositories.tenant_repository import TenantRepository
from credit_ledger.services.ledger_service import LedgerService
from credit_ledger.services.webhook_notifier import TenantWebhookNotifier

# Security: one message for every tenant auth failure (unknown key, bad
# key, disabled tenant) so callers cannot tell which one happened.
_INVALID_API_KEY = "Invalid or missing API key"

DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_tenant(
    db: DbSession,
    x_api_key: Annotated[str | None, Header()] = None,
) -> Tenant:
    """Resolve the X-API-Key header to an active tenant.

    Args:
        db: Database session (injected).
        x_api_key: Plaintext tenant API key.

    Returns:
        The authenticated Tenant.

    Raises:
        UnauthorizedError: Missing, unknown, or deactivated key.
    """
    if not x_api_key:
        raise UnauthorizedError(_INVALID_API_KEY)

    tenant = await TenantRepository.get_by_api_key(db, x_api_key)
    if tenant is None or not tenant.is_active:
        raise UnauthorizedError(_INVALID_API_KEY)
    return tenant


def get_admin_subject(request: Request) -> str:
    """Validate the admin Bearer token and return its subject.

    Validation steps:
    1. Read "Authorization: Bearer <jwt>"
    2. Decode + verify signature (HS256), exp, aud, iss
    3. Require role=admin and a sub claim

    Raises:
        UnauthorizedError: Missing or invalid token.
        AdminRequiredError: Valid token without the admin role.
    """
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedError()

    try:
        claims = decode_admin_token(token)
    except jwt.InvalidTokenError as exc:
        raise UnauthorizedError() from exc

    subject = claims.get("sub")
    if not subject:
        raise UnauthorizedError()
    if not is_admin_claims(claims):
        raise AdminRequiredError()
    return str(subject)


CurrentTenant = Annotated[Tenant, Depends(get_current_tenant)]
AdminSubject = Annotated[str, Depends(get_admin_subject)]


async def get_payment_gateway(db: DbSession) -> PaymentGateway:
    """Build the payment gateway from the stored provider config.

    Raises:
        PaymentNotConfiguredError: No usable credentials stored.
    """
    payment_config = await PaymentConfigRepository.get(db, "stripe")
    return create_payment_gateway(payment_config)


def get_ledger_service(db: DbSession) -> LedgerService:
    """Ledger service bound to the request session."""
    return LedgerService(db)


def get_webhook_notifier() -> TenantWebhookNotifier:
    """Notifier for tenant balance-change webhooks."""
    return TenantWebhookNotifier()


Gateway = Annotated[PaymentGateway, Depends(get_payment_gateway)]
Ledger = Annotated[LedgerService, Depends(get_ledger_service)]
Notifier = Annotated[TenantWebhookNotifier, Depends(get_webhook_notifier)]
