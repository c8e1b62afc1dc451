"""Credits API router.

Balance reads, deductions, refunds, and the transaction log for one
user of the calling tenant. All endpoints require X-API-Key; the tenant
is never taken from the URL.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, Request

from credit_ledger.api.deps import CurrentTenant, DbSession, Ledger
from credit_ledger.core.config import settings
from credit_ledger.core.errors import (
    ConflictError,
    DeductionNotFoundError,
    InsufficientCreditsError,
)
from credit_ledger.core.pagination import PaginationParams, pagination_params
from credit_ledger.core.rate_limiting import limiter
from credit_ledger.core.responses import DataResponse, ListResponse, PaginationMeta
from credit_ledger.models.credit import CreditTransaction, CreditType
from credit_ledger.schemas.credits import (
    BalancesResponse,
    CreditMutationRequest,
    CreditMutationResponse,
    RefundRequest,
    TransactionResponse,
    UsageCounts,
)
from credit_ledger.services.ledger_service import (
    Balances,
    InsufficientCredits,
    NothingToRefund,
    RefundRejection,
)

router = APIRouter()

# =============================================================================
# Shared types
# =============================================================================

UserId = Annotated[str, Path(min_length=1, max_length=128)]
Pagination = Annotated[PaginationParams, Depends(pagination_params)]
CreditTypeFilter = Annotated[
    CreditType | None,
    Query(description="Filter: article, image, rewrite"),
]


def _balances_response(balances: Balances) -> BalancesResponse:
    return BalancesResponse(
        user_id=balances.user_id,
        article=balances.article,
        image=balances.image,
        rewrite=balances.rewrite,
        usage=UsageCounts(
            article=balances.usage.get(CreditType.ARTICLE, 0),
            image=balances.usage.get(CreditType.IMAGE, 0),
            rewrite=balances.usage.get(CreditType.REWRITE, 0),
        ),
    )


def transaction_response(txn: CreditTransaction) -> TransactionResponse:
    """Convert a log entry to its API shape."""
    return TransactionResponse(
        id=str(txn.id),
        credit_type=txn.credit_type,
        direction=txn.direction,
        amount=txn.amount,
        resulting_balance=txn.resulting_balance,
        reason=txn.reason,
        external_reference=txn.external_reference,
        description=txn.description,
        created_at=txn.created_at,
    )


# =============================================================================
# GET /credits/{user_id}
# =============================================================================


@router.get("/{user_id}")
async def get_credits(
    user_id: UserId,
    tenant: CurrentTenant,
    ledger: Ledger,
    db: DbSession,
    user_email: Annotated[str | None, Query(max_length=255)] = None,
) -> DataResponse[BalancesResponse]:
    """Return the user's balances, creating the account on first sight.

    New accounts start with the free-tier seed balances.
    """
    balances = await ledger.get_balances(tenant.id, user_id, user_email)
    await db.commit()
    return DataResponse(data=_balances_response(balances))


# =============================================================================
# POST /credits/{user_id}/deduct
# =============================================================================


@router.post("/{user_id}/deduct")
@limiter.limit(lambda: settings.rate_limit_deduct)
async def deduct_credits(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    user_id: UserId,
    body: CreditMutationRequest,
    tenant: CurrentTenant,
    ledger: Ledger,
    db: DbSession,
) -> DataResponse[CreditMutationResponse]:
    """Deduct credits atomically.

    Returns 402 INSUFFICIENT_CREDITS without changing anything when the
    balance does not cover the amount.
    """
    result = await ledger.deduct(
        tenant.id,
        user_id,
        body.credit_type,
        body.amount,
        external_reference=body.reference,
    )
    # Keep a lazily created account even when the deduction is rejected
    await db.commit()

    if isinstance(result, InsufficientCredits):
        raise InsufficientCreditsError(
            credit_type=result.credit_type.value,
            requested=result.requested,
            available=result.available,
        )

    return DataResponse(
        data=CreditMutationResponse(
            credit_type=result.credit_type,
            amount=result.amount,
            balance=result.balance,
            transaction_id=str(result.transaction_id),
        )
    )


# =============================================================================
# POST /credits/{user_id}/refund
# =============================================================================


@router.post("/{user_id}/refund")
@limiter.limit(lambda: settings.rate_limit_deduct)
async def refund_credits(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    user_id: UserId,
    body: RefundRequest,
    tenant: CurrentTenant,
    ledger: Ledger,
    db: DbSession,
) -> DataResponse[CreditMutationResponse]:
    """Return the credits of a generation deduction that failed.

    Errors:
        404 DEDUCTION_NOT_FOUND when deduction_id is not a generation
        deduction of this user and credit type. 409 NOTHING_TO_REFUND when
        it was already refunded or the amount exceeds the deduction.
    """
    result = await ledger.refund(
        tenant.id,
        user_id,
        body.credit_type,
        body.deduction_id,
        body.amount,
    )
    await db.commit()

    if isinstance(result, NothingToRefund):
        if result.reason == RefundRejection.UNKNOWN_DEDUCTION:
            raise DeductionNotFoundError(result.deduction_id)
        raise ConflictError(
            code="NOTHING_TO_REFUND",
            message="Deduction was already refunded or is smaller than the refund",
            details=[
                {
                    "credit_type": result.credit_type.value,
                    "deduction_id": result.deduction_id,
                    "requested": result.requested,
                    "refundable": result.refundable,
                    "reason": result.reason.value,
                }
            ],
        )

    return DataResponse(
        data=CreditMutationResponse(
            credit_type=result.credit_type,
            amount=result.amount,
            balance=result.balance,
            transaction_id=str(result.transaction_id),
        )
    )


# =============================================================================
# GET /credits/{user_id}/transactions
# =============================================================================


@router.get("/{user_id}/transactions")
async def list_transactions(
    user_id: UserId,
    tenant: CurrentTenant,
    ledger: Ledger,
    pagination: Pagination,
    credit_type: CreditTypeFilter = None,
) -> ListResponse[TransactionResponse]:
    """Return the user's transaction log, newest first."""
    entries, total = await ledger.list_transactions(
        tenant.id,
        user_id,
        offset=pagination.offset,
        limit=pagination.limit,
        credit_type=credit_type,
    )
    return ListResponse(
        data=[transaction_response(txn) for txn in entries],
        meta=PaginationMeta(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
        ),
    )
