"""Repository for checkout sessions.

Status transitions are compare-and-swap UPDATEs guarded by
``status = 'pending'``: of any number of concurrent callers, exactly one
sees rowcount == 1.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, cast

from sqlalchemy import func, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.models.checkout import CheckoutKind, CheckoutSession, CheckoutStatus
from credit_ledger.models.credit import CreditType

_CLOSED_STATUSES = frozenset({CheckoutStatus.EXPIRED, CheckoutStatus.FAILED})


class CheckoutSessionRepository:
    """Stateless repository for CheckoutSession.

    All methods are static; none of them commit.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        session_id: str,
        tenant_id: str,
        user_id: str,
        user_email: str | None,
        package_id: str,
        credit_type: CreditType,
        credits: int,
        amount: Decimal,
        currency: str,
        expires_at: datetime,
        kind: CheckoutKind = CheckoutKind.CHECKOUT,
    ) -> CheckoutSession:
        """Persist a new pending checkout session or PaymentIntent.

        Args:
            db: Async database session.
            session_id: Provider session or intent id.
            tenant_id: Site that started the checkout.
            user_id: Buyer.
            user_email: Buyer email sent to the provider.
            package_id: Purchased package.
            credit_type: Credit type of the package.
            credits: Credits the package grants now; settlement grants this.
            amount: Price charged.
            currency: Currency code.
            expires_at: When an unpaid session lapses.
            kind: Hosted checkout or PaymentIntent.

        Returns:
            The created session.
        """
        session = CheckoutSession(
            session_id=session_id,
            tenant_id=tenant_id,
            user_id=user_id,
            user_email=user_email,
            kind=CheckoutKind(kind).value,
            package_id=package_id,
            credit_type=CreditType(credit_type).value,
            credits=credits,
            amount=amount,
            currency=currency,
            status=CheckoutStatus.PENDING.value,
            expires_at=expires_at,
        )
        db.add(session)
        await db.flush()
        return session

    @staticmethod
    async def get_scoped(
        db: AsyncSession,
        *,
        tenant_id: str,
        session_id: str,
    ) -> CheckoutSession | None:
        """Get a session only if it belongs to tenant_id.

        A session owned by another tenant is indistinguishable from a
        missing one.

        Returns:
            CheckoutSession if found for this tenant, None otherwise.
        """
        stmt = (
            select(CheckoutSession)
            .where(
                CheckoutSession.session_id == session_id,
                CheckoutSession.tenant_id == tenant_id,
            )
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def claim(
        db: AsyncSession,
        *,
        tenant_id: str,
        session_id: str,
        now: datetime,
    ) -> bool:
        """Move a session from pending to completed.

        Args:
            db: Async database session.
            tenant_id: Owning site.
            session_id: Provider session id.
            now: Completion timestamp.

        Returns:
            True if this call won the transition, False if the session was
            no longer pending.
        """
        stmt = (
            update(CheckoutSession)
            .where(
                CheckoutSession.session_id == session_id,
                CheckoutSession.tenant_id == tenant_id,
                CheckoutSession.status == CheckoutStatus.PENDING.value,
            )
            .values(status=CheckoutStatus.COMPLETED.value, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        return result.rowcount == 1

    @staticmethod
    async def record_settlement(
        db: AsyncSession,
        *,
        session_id: str,
        credits_added: int,
        transaction_ref: str,
    ) -> None:
        """Store the settlement outcome on a claimed session.

        Only valid after a successful claim() in the same transaction.
        """
        stmt = (
            update(CheckoutSession)
            .where(
                CheckoutSession.session_id == session_id,
                CheckoutSession.status == CheckoutStatus.COMPLETED.value,
            )
            .values(credits_added=credits_added, transaction_ref=transaction_ref)
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)

    @staticmethod
    async def close(
        db: AsyncSession,
        *,
        tenant_id: str,
        session_id: str,
        status: CheckoutStatus,
    ) -> bool:
        """Move a pending session to expired or failed.

        Returns:
            True if the session was pending and is now closed.

        Raises:
            ValueError: If status is not expired or failed.
        """
        status = CheckoutStatus(status)
        if status not in _CLOSED_STATUSES:
            msg = f"close() only accepts expired or failed, got {status.value}"
            raise ValueError(msg)
        stmt = (
            update(CheckoutSession)
            .where(
                CheckoutSession.session_id == session_id,
                CheckoutSession.tenant_id == tenant_id,
                CheckoutSession.status == CheckoutStatus.PENDING.value,
            )
            .values(status=status.value)
            .execution_options(synchronize_session=False)
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        return result.rowcount == 1

    @staticmethod
    async def expire_stale(db: AsyncSession, *, now: datetime) -> int:
        """Expire every pending session whose expires_at has passed.

        Returns:
            Number of sessions expired.
        """
        stmt = (
            update(CheckoutSession)
            .where(
                CheckoutSession.status == CheckoutStatus.PENDING.value,
                CheckoutSession.expires_at <= now,
            )
            .values(status=CheckoutStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        return result.rowcount

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[CheckoutSession], int]:
        """List a user's checkout sessions, newest first.

        Returns:
            Tuple of (sessions, total count).
        """
        conditions = [
            CheckoutSession.tenant_id == tenant_id,
            CheckoutSession.user_id == user_id,
        ]
        total_result = await db.execute(
            select(func.count()).select_from(CheckoutSession).where(*conditions)
        )
        total = total_result.scalar_one()

        result = await db.execute(
            select(CheckoutSession)
            .where(*conditions)
            .order_by(CheckoutSession.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total
