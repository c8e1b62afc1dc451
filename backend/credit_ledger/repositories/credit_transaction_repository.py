"""Repository for the append-only credit transaction log.

There is deliberately no update or delete here: log entries are an audit
trail and are only ever inserted.
"""

import uuid

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.models.credit import (
    CreditAccount,
    CreditTransaction,
    CreditType,
    Direction,
    TransactionReason,
)


class CreditTransactionRepository:
    """Stateless repository for CreditTransaction.

    All methods are static. Pass an AsyncSession for every call so the
    caller controls transaction boundaries.
    """

    @staticmethod
    async def _next_sequence(db: AsyncSession, *, tenant_id: str, user_id: str) -> int:
        """Bump the account's log counter and return the new value.

        The UPDATE takes the account row lock, so concurrent appends to one
        account get consecutive numbers in commit order.
        """
        stmt = (
            update(CreditAccount)
            .where(
                CreditAccount.tenant_id == tenant_id,
                CreditAccount.user_id == user_id,
            )
            .values(last_sequence=CreditAccount.last_sequence + 1)
            .returning(CreditAccount.last_sequence)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        sequence = result.scalar_one_or_none()
        if sequence is None:
            msg = f"Credit account {tenant_id}/{user_id} missing during log append"
            raise RuntimeError(msg)
        return sequence

    @staticmethod
    async def append(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
        credit_type: CreditType,
        direction: Direction,
        amount: int,
        resulting_balance: int,
        reason: TransactionReason,
        external_reference: str | None = None,
        description: str | None = None,
    ) -> CreditTransaction:
        """Append a log entry.

        Args:
            db: Async database session.
            tenant_id: Owning site.
            user_id: Site-local user id.
            credit_type: Counter that changed.
            direction: debit or credit.
            amount: Positive number of credits moved.
            resulting_balance: Counter value after the change.
            reason: Why the balance changed.
            external_reference: Checkout session id or caller reference.
            description: Human-readable note.

        Returns:
            Created CreditTransaction with generated id and sequence.

        Raises:
            RuntimeError: If the account does not exist.
        """
        sequence = await CreditTransactionRepository._next_sequence(
            db, tenant_id=tenant_id, user_id=user_id
        )
        txn = CreditTransaction(
            tenant_id=tenant_id,
            user_id=user_id,
            sequence=sequence,
            credit_type=CreditType(credit_type).value,
            direction=Direction(direction).value,
            amount=amount,
            resulting_balance=resulting_balance,
            reason=TransactionReason(reason).value,
            external_reference=external_reference,
            description=description,
        )
        db.add(txn)
        await db.flush()
        return txn

    @staticmethod
    async def get_for_account(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
        entry_id: str,
    ) -> CreditTransaction | None:
        """Get one entry by id, only if it belongs to this account.

        Returns:
            The entry, or None when the id is malformed, unknown, or owned
            by another account.
        """
        try:
            parsed = uuid.UUID(entry_id)
        except ValueError:
            return None
        stmt = select(CreditTransaction).where(
            CreditTransaction.id == parsed,
            CreditTransaction.tenant_id == tenant_id,
            CreditTransaction.user_id == user_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_for_account(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
        offset: int = 0,
        limit: int = 50,
        credit_type: CreditType | None = None,
    ) -> tuple[list[CreditTransaction], int]:
        """List log entries for one account, newest first.

        Args:
            db: Async database session.
            tenant_id: Owning site.
            user_id: Site-local user id.
            offset: Number of records to skip.
            limit: Maximum records to return.
            credit_type: Optional filter.

        Returns:
            Tuple of (entries, total count).
        """
        conditions = [
            CreditTransaction.tenant_id == tenant_id,
            CreditTransaction.user_id == user_id,
        ]
        if credit_type is not None:
            conditions.append(
                CreditTransaction.credit_type == CreditType(credit_type).value
            )

        count_stmt = (
            select(func.count()).select_from(CreditTransaction).where(*conditions)
        )
        total_result = await db.execute(count_stmt)
        total = total_result.scalar_one()

        data_stmt = (
            select(CreditTransaction)
            .where(*conditions)
            .order_by(CreditTransaction.sequence.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        return list(result.scalars().all()), total

    @staticmethod
    async def history(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
    ) -> list[CreditTransaction]:
        """All entries for one account in sequence order, for replay."""
        stmt = (
            select(CreditTransaction)
            .where(
                CreditTransaction.tenant_id == tenant_id,
                CreditTransaction.user_id == user_id,
            )
            .order_by(CreditTransaction.sequence.asc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def find_by_reference(
        db: AsyncSession,
        *,
        tenant_id: str,
        external_reference: str,
        reason: TransactionReason,
    ) -> CreditTransaction | None:
        """Find the entry recorded for an external reference, if any."""
        stmt = select(CreditTransaction).where(
            CreditTransaction.tenant_id == tenant_id,
            CreditTransaction.external_reference == external_reference,
            CreditTransaction.reason == TransactionReason(reason).value,
        )
        result = await db.execute(stmt)
        return result.scalars().first()
