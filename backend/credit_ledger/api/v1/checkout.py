"""Checkout API router.

Creates provider checkout sessions and PaymentIntents and verifies them
after the buyer pays. Verification is idempotent: repeating it for a settled
session returns the original grant with already_completed=true.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from credit_ledger.api.deps import CurrentTenant, DbSession, Gateway, Ledger, Notifier
from credit_ledger.core.config import settings
from credit_ledger.core.errors import (
    PaymentNotCompletedError,
    SessionClosedError,
    SessionNotFoundError,
)
from credit_ledger.core.pagination import PaginationParams, pagination_params
from credit_ledger.core.rate_limiting import limiter
from credit_ledger.core.responses import DataResponse, ListResponse, PaginationMeta
from credit_ledger.repositories.checkout_session_repository import (
    CheckoutSessionRepository,
)
from credit_ledger.schemas.checkout import (
    CheckoutCreateRequest,
    CheckoutCreateResponse,
    CheckoutSessionResponse,
    CheckoutVerifyRequest,
    CheckoutVerifyResponse,
    PaymentIntentCreateRequest,
    PaymentIntentCreateResponse,
)
from credit_ledger.services.checkout_service import (
    AlreadyCompleted,
    CheckoutService,
    PaymentNotCompleted,
    SessionClosed,
    SessionNotFound,
    SettlementResult,
)

router = APIRouter()

Pagination = Annotated[PaginationParams, Depends(pagination_params)]


def settlement_response(result: SettlementResult) -> CheckoutVerifyResponse:
    """Map a settlement result to the 200 body or raise its API error.

    Raises:
        SessionNotFoundError: Unknown session for this tenant.
        PaymentNotCompletedError: Not paid yet (retryable).
        SessionClosedError: Expired or failed.
    """
    if isinstance(result, SessionNotFound):
        raise SessionNotFoundError(result.session_id)
    if isinstance(result, PaymentNotCompleted):
        raise PaymentNotCompletedError(result.session_id, retryable=result.retryable)
    if isinstance(result, SessionClosed):
        raise SessionClosedError(result.session_id, result.status.value)
    if isinstance(result, AlreadyCompleted):
        return CheckoutVerifyResponse(
            session_id=result.session_id,
            credit_type=result.credit_type,
            credits_added=result.credits_added,
            transaction_ref=result.transaction_ref,
            already_completed=True,
        )
    return CheckoutVerifyResponse(
        session_id=result.session_id,
        credit_type=result.credit_type,
        credits_added=result.credits_added,
        balance=result.balance,
        transaction_ref=result.transaction_ref,
    )


# =============================================================================
# POST /checkout/sessions
# =============================================================================


@router.post("/sessions", status_code=201)
@limiter.limit(lambda: settings.rate_limit_checkout)
async def create_checkout_session(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: CheckoutCreateRequest,
    tenant: CurrentTenant,
    db: DbSession,
    gateway: Gateway,
    ledger: Ledger,
) -> DataResponse[CheckoutCreateResponse]:
    """Open a hosted checkout for an active package.

    Returns 404 PACKAGE_NOT_FOUND for unknown or inactive packages and
    503 PAYMENT_NOT_CONFIGURED when no provider credentials are stored.
    """
    service = CheckoutService(db, gateway, ledger)
    created = await service.create_checkout(
        tenant_id=tenant.id,
        user_id=body.user_id,
        user_email=body.user_email,
        package_id=body.package_id,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )
    return DataResponse(
        data=CheckoutCreateResponse(
            session_id=created.session_id,
            checkout_url=created.url,
            package_id=created.package_id,
            credit_type=created.credit_type,
            credits=created.credits,
            amount=str(created.amount),
            currency=created.currency,
            expires_at=created.expires_at,
        )
    )


# =============================================================================
# POST /checkout/intents
# =============================================================================


@router.post("/intents", status_code=201)
@limiter.limit(lambda: settings.rate_limit_checkout)
async def create_payment_intent(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: PaymentIntentCreateRequest,
    tenant: CurrentTenant,
    db: DbSession,
    gateway: Gateway,
    ledger: Ledger,
) -> DataResponse[PaymentIntentCreateResponse]:
    """Create a PaymentIntent for an embedded card form.

    Settle it with POST /checkout/verify using the returned
    payment_intent_id. Errors match POST /checkout/sessions.
    """
    service = CheckoutService(db, gateway, ledger)
    created = await service.create_payment_intent(
        tenant_id=tenant.id,
        user_id=body.user_id,
        user_email=body.user_email,
        package_id=body.package_id,
    )
    return DataResponse(
        data=PaymentIntentCreateResponse(
            payment_intent_id=created.payment_intent_id,
            client_secret=created.client_secret,
            package_id=created.package_id,
            credit_type=created.credit_type,
            credits=created.credits,
            amount=str(created.amount),
            currency=created.currency,
            expires_at=created.expires_at,
        )
    )


# =============================================================================
# POST /checkout/verify
# =============================================================================


@router.post("/verify")
@limiter.limit(lambda: settings.rate_limit_checkout)
async def verify_checkout(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: CheckoutVerifyRequest,
    tenant: CurrentTenant,
    db: DbSession,
    gateway: Gateway,
    ledger: Ledger,
    notifier: Notifier,
) -> DataResponse[CheckoutVerifyResponse]:
    """Verify payment with the provider and grant the package once.

    Accepts checkout session ids and PaymentIntent ids.

    Errors:
        404 SESSION_NOT_FOUND, 409 PAYMENT_NOT_COMPLETED (retry later),
        409 SESSION_CLOSED, 503 PAYMENT_NOT_CONFIGURED, 502 on provider
        failure.
    """
    service = CheckoutService(db, gateway, ledger, notifier)
    result = await service.verify_and_settle(tenant.id, body.session_id)
    return DataResponse(data=settlement_response(result))


# =============================================================================
# GET /checkout/sessions
# =============================================================================


@router.get("/sessions")
async def list_checkout_sessions(
    tenant: CurrentTenant,
    db: DbSession,
    pagination: Pagination,
    user_id: Annotated[str, Query(min_length=1, max_length=128)],
) -> ListResponse[CheckoutSessionResponse]:
    """Return a user's checkout sessions, newest first."""
    sessions, total = await CheckoutSessionRepository.list_for_user(
        db,
        tenant_id=tenant.id,
        user_id=user_id,
        offset=pagination.offset,
        limit=pagination.limit,
    )
    return ListResponse(
        data=[
            CheckoutSessionResponse(
                session_id=session.session_id,
                kind=session.kind,
                package_id=session.package_id,
                credit_type=session.credit_type,
                credits=session.credits,
                amount=str(session.amount),
                currency=session.currency,
                status=session.status,
                credits_added=session.credits_added,
                created_at=session.created_at,
                expires_at=session.expires_at,
                completed_at=session.completed_at,
            )
            for session in sessions
        ],
        meta=PaginationMeta(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
        ),
    )
