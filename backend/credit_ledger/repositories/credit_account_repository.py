"""Repository for CreditAccount: the atomic balance primitives.

Every balance change is a single conditional UPDATE ... RETURNING, never
a read-then-write pair, so concurrent requests for the same account
cannot lose updates or drive a counter negative.
"""

from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.database import dialect_insert
from credit_ledger.models.base import utc_now
from credit_ledger.models.credit import (
    CreditAccount,
    CreditType,
    balance_column,
    usage_column,
)


@dataclass(frozen=True)
class CreditSeed:
    """Free-tier balances written when an account is first created."""

    article: int = 0
    image: int = 0
    rewrite: int = 0

    def amount_for(self, credit_type: CreditType) -> int:
        """Seed balance for one credit type."""
        return {
            CreditType.ARTICLE: self.article,
            CreditType.IMAGE: self.image,
            CreditType.REWRITE: self.rewrite,
        }[CreditType(credit_type)]


def _require_positive(amount: int) -> None:
    if amount <= 0:
        msg = f"amount must be positive, got {amount}"
        raise ValueError(msg)


class CreditAccountRepository:
    """Stateless repository for credit account counters.

    All methods are static and take db as the first argument. None of
    them commit; callers own the transaction so the balance change and
    its transaction log entry commit together.
    """

    @staticmethod
    async def read(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
    ) -> CreditAccount | None:
        """Get an account without creating it.

        Args:
            db: Async database session.
            tenant_id: Owning site.
            user_id: Site-local user id.

        Returns:
            CreditAccount if found, None otherwise.
        """
        stmt = (
            select(CreditAccount)
            .where(
                CreditAccount.tenant_id == tenant_id,
                CreditAccount.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def lock(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
    ) -> CreditAccount | None:
        """Get an account under SELECT ... FOR UPDATE.

        Checks made after the lock (e.g. "was this deduction refunded")
        see every earlier commit for the account. SQLite ignores FOR
        UPDATE; there the transaction already holds the write lock.
        """
        stmt = (
            select(CreditAccount)
            .where(
                CreditAccount.tenant_id == tenant_id,
                CreditAccount.user_id == user_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
        seed: CreditSeed,
        user_email: str | None = None,
    ) -> tuple[CreditAccount, bool]:
        """Return the account, inserting it with seed balances if absent.

        Uses INSERT ... ON CONFLICT (tenant_id, user_id) DO NOTHING so two
        simultaneous first accesses create exactly one row. Only the
        caller whose insert actually landed gets created=True, which is
        what gates writing the seed log entries.

        Args:
            db: Async database session.
            tenant_id: Owning site.
            user_id: Site-local user id.
            seed: Starting balances for a new account.
            user_email: Optional email stored on first creation.

        Returns:
            Tuple of (account, created).
        """
        now = utc_now()
        insert = dialect_insert(db)
        stmt = (
            insert(CreditAccount)
            .values(
                tenant_id=tenant_id,
                user_id=user_id,
                user_email=user_email,
                article_credits=seed.article,
                image_credits=seed.image,
                rewrite_credits=seed.rewrite,
                total_articles_generated=0,
                total_images_generated=0,
                total_rewrites_generated=0,
                last_sequence=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["tenant_id", "user_id"])
            .returning(CreditAccount.tenant_id)
        )
        result = await db.execute(stmt)
        # RETURNING yields a row only when this insert landed
        created = result.first() is not None

        account = await CreditAccountRepository.read(
            db, tenant_id=tenant_id, user_id=user_id
        )
        if account is None:
            msg = f"Credit account {tenant_id}/{user_id} vanished after upsert"
            raise RuntimeError(msg)

        if not created and user_email and account.user_email != user_email:
            await db.execute(
                update(CreditAccount)
                .where(
                    CreditAccount.tenant_id == tenant_id,
                    CreditAccount.user_id == user_id,
                )
                .values(user_email=user_email)
            )
            account.user_email = user_email

        return account, created

    @staticmethod
    async def try_deduct(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
        credit_type: CreditType,
        amount: int,
    ) -> int | None:
        """Atomically decrement a balance if it covers the amount.

        The balance check is part of the UPDATE's WHERE clause. The
        matching lifetime usage counter is incremented in the same
        statement.

        Args:
            db: Async database session.
            tenant_id: Owning site.
            user_id: Site-local user id.
            credit_type: Which counter to decrement.
            amount: Credits to deduct (must be positive).

        Returns:
            New balance, or None if the balance was insufficient or the
            account does not exist.

        Raises:
            ValueError: If amount is not positive.
        """
        _require_positive(amount)
        balance = balance_column(credit_type)
        usage = usage_column(credit_type)
        stmt = (
            update(CreditAccount)
            .where(
                CreditAccount.tenant_id == tenant_id,
                CreditAccount.user_id == user_id,
                balance >= amount,
            )
            .values(
                {
                    balance: balance - amount,
                    usage: usage + amount,
                    CreditAccount.updated_at: utc_now(),
                }
            )
            .returning(balance)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def grant(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
        credit_type: CreditType,
        amount: int,
    ) -> int | None:
        """Atomically increment a balance. No upper bound is enforced.

        Args:
            db: Async database session.
            tenant_id: Owning site.
            user_id: Site-local user id.
            credit_type: Which counter to increment.
            amount: Credits to add (must be positive).

        Returns:
            New balance, or None if the account does not exist.

        Raises:
            ValueError: If amount is not positive.
        """
        _require_positive(amount)
        balance = balance_column(credit_type)
        stmt = (
            update(CreditAccount)
            .where(
                CreditAccount.tenant_id == tenant_id,
                CreditAccount.user_id == user_id,
            )
            .values({balance: balance + amount, CreditAccount.updated_at: utc_now()})
            .returning(balance)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def try_refund(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
        credit_type: CreditType,
        amount: int,
    ) -> int | None:
        """Return credits for a generation that did not happen.

        Increments the balance and decrements the lifetime usage counter,
        conditional on usage >= amount so a refund can never exceed what
        was consumed.

        Returns:
            New balance, or None if there is not enough usage to refund.

        Raises:
            ValueError: If amount is not positive.
        """
        _require_positive(amount)
        balance = balance_column(credit_type)
        usage = usage_column(credit_type)
        stmt = (
            update(CreditAccount)
            .where(
                CreditAccount.tenant_id == tenant_id,
                CreditAccount.user_id == user_id,
                usage >= amount,
            )
            .values(
                {
                    balance: balance + amount,
                    usage: usage - amount,
                    CreditAccount.updated_at: utc_now(),
                }
            )
            .returning(balance)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def set_balance_locked(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
        credit_type: CreditType,
        value: int,
    ) -> tuple[int, int] | None:
        """Set a balance to an absolute value under a row lock.

        SELECT ... FOR UPDATE holds the row until the caller commits, so
        the returned previous value is the one actually overwritten.
        SQLite ignores FOR UPDATE; there the transaction already holds the
        database write lock.

        Args:
            db: Async database session.
            tenant_id: Owning site.
            user_id: Site-local user id.
            credit_type: Which counter to set.
            value: New balance (must be >= 0).

        Returns:
            Tuple of (previous, new) balance, or None if no account.

        Raises:
            ValueError: If value is negative.
        """
        if value < 0:
            msg = f"balance cannot be negative, got {value}"
            raise ValueError(msg)
        balance = balance_column(credit_type)
        result = await db.execute(
            select(balance)
            .where(
                CreditAccount.tenant_id == tenant_id,
                CreditAccount.user_id == user_id,
            )
            .with_for_update()
        )
        previous = result.scalar_one_or_none()
        if previous is None:
            return None
        await db.execute(
            update(CreditAccount)
            .where(
                CreditAccount.tenant_id == tenant_id,
                CreditAccount.user_id == user_id,
            )
            .values({balance: value, CreditAccount.updated_at: utc_now()})
        )
        return previous, value
