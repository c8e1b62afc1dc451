"""Ledger service: balance mutations paired with transaction log entries.

Each public mutation runs the atomic CreditAccountRepository primitive
and appends the matching CreditTransaction in the same database
transaction. Nothing here commits; the API handler or the settlement
service commits the unit of work, so a failed log write rolls back the
balance change with it.

Insufficient credits is an expected outcome and is returned as a typed
result, not raised.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.config import settings
from credit_ledger.models.credit import (
    CreditAccount,
    CreditTransaction,
    CreditType,
    Direction,
    TransactionReason,
)
from credit_ledger.repositories.credit_account_repository import (
    CreditAccountRepository,
    CreditSeed,
)
from credit_ledger.repositories.credit_transaction_repository import (
    CreditTransactionRepository,
)

logger = logging.getLogger(__name__)

_SEED_DESCRIPTION = "Free tier"


def default_seed() -> CreditSeed:
    """Seed balances from settings."""
    return CreditSeed(
        article=settings.seed_article_credits,
        image=settings.seed_image_credits,
        rewrite=settings.seed_rewrite_credits,
    )


# =============================================================================
# Result types
# =============================================================================


@dataclass
class Balances:
    """Snapshot of an account's balances.

    Attributes:
        tenant_id: Owning site.
        user_id: Site-local user id.
        article: Article credits.
        image: Image credits.
        rewrite: Rewrite credits.
        usage: Lifetime generations consumed per credit type.
    """

    tenant_id: str
    user_id: str
    article: int
    image: int
    rewrite: int
    usage: dict[CreditType, int] = field(default_factory=dict)

    @classmethod
    def from_account(cls, account: CreditAccount) -> "Balances":
        """Build a snapshot from an ORM row."""
        return cls(
            tenant_id=account.tenant_id,
            user_id=account.user_id,
            article=account.article_credits,
            image=account.image_credits,
            rewrite=account.rewrite_credits,
            usage={credit_type: account.usage_of(credit_type) for credit_type in CreditType},
        )

    def of(self, credit_type: CreditType) -> int:
        """Balance of one credit type."""
        return {
            CreditType.ARTICLE: self.article,
            CreditType.IMAGE: self.image,
            CreditType.REWRITE: self.rewrite,
        }[CreditType(credit_type)]


@dataclass
class Deducted:
    """Successful deduction."""

    credit_type: CreditType
    amount: int
    balance: int
    transaction_id: uuid.UUID


@dataclass
class InsufficientCredits:
    """Deduction rejected because the balance does not cover it."""

    credit_type: CreditType
    requested: int
    available: int


@dataclass
class Granted:
    """Successful grant, refund, or adjustment."""

    credit_type: CreditType
    amount: int
    balance: int
    transaction_id: uuid.UUID | None


class RefundRejection(str, Enum):
    """Why a refund was refused."""

    UNKNOWN_DEDUCTION = "unknown_deduction"
    ALREADY_REFUNDED = "already_refunded"
    EXCEEDS_DEDUCTION = "exceeds_deduction"
    EXCEEDS_USAGE = "exceeds_usage"


@dataclass
class NothingToRefund:
    """Refund rejected; nothing was changed.

    Attributes:
        credit_type: Credit type of the request.
        requested: Credits asked for.
        refundable: Credits the named deduction could still return.
        reason: Which check failed.
        deduction_id: The deduction named by the caller.
    """

    credit_type: CreditType
    requested: int
    refundable: int
    reason: RefundRejection
    deduction_id: str


@dataclass
class CreditTypeDrift:
    """Replay vs stored balance for one credit type."""

    credit_type: CreditType
    stored: int
    replayed: int

    @property
    def drift(self) -> int:
        """Stored minus replayed (0 when consistent)."""
        return self.stored - self.replayed


@dataclass
class ReconciliationReport:
    """Outcome of replaying an account's log.

    Attributes:
        tenant_id: Owning site.
        user_id: Site-local user id.
        entries: Number of log entries replayed.
        per_type: Stored vs replayed balance per credit type.
        broken_chain: Ids of entries whose resulting_balance does not match
            the running replay total.
    """

    tenant_id: str
    user_id: str
    entries: int
    per_type: list[CreditTypeDrift]
    broken_chain: list[uuid.UUID] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        """True when every balance replays exactly and the chain is intact."""
        return not self.broken_chain and all(row.drift == 0 for row in self.per_type)


# =============================================================================
# Service
# =============================================================================


class LedgerService:
    """Tenant-facing ledger operations.

    Args:
        db: Async database session (the caller commits).
        seed: Free-tier balances for new accounts. Defaults to settings.
    """

    def __init__(self, db: AsyncSession, seed: CreditSeed | None = None) -> None:
        self._db = db
        self._seed = seed or default_seed()

    async def _ensure_account(
        self,
        tenant_id: str,
        user_id: str,
        user_email: str | None = None,
    ) -> CreditAccount:
        """Get-or-create the account, logging seed grants on creation.

        Seed balances are logged as bonus credits so replaying the log from
        zero reproduces the stored balances.
        """
        account, created = await CreditAccountRepository.get_or_create(
            self._db,
            tenant_id=tenant_id,
            user_id=user_id,
            seed=self._seed,
            user_email=user_email,
        )
        if created:
            for credit_type in CreditType:
                amount = self._seed.amount_for(credit_type)
                if amount > 0:
                    await CreditTransactionRepository.append(
                        self._db,
                        tenant_id=tenant_id,
                        user_id=user_id,
                        credit_type=credit_type,
                        direction=Direction.CREDIT,
                        amount=amount,
                        resulting_balance=amount,
                        reason=TransactionReason.BONUS,
                        description=_SEED_DESCRIPTION,
                    )
            logger.info("Created credit account %s/%s with seed", tenant_id, user_id)
        return account

    async def get_balances(
        self,
        tenant_id: str,
        user_id: str,
        user_email: str | None = None,
    ) -> Balances:
        """Read balances, creating the account with seed balances if new.

        Args:
            tenant_id: Owning site.
            user_id: Site-local user id.
            user_email: Optional email to store on the account.

        Returns:
            Current balances.
        """
        account = await self._ensure_account(tenant_id, user_id, user_email)
        return Balances.from_account(account)

    async def read_balances(self, tenant_id: str, user_id: str) -> Balances | None:
        """Read balances without creating the account."""
        account = await CreditAccountRepository.read(
            self._db, tenant_id=tenant_id, user_id=user_id
        )
        return Balances.from_account(account) if account else None

    async def deduct(
        self,
        tenant_id: str,
        user_id: str,
        credit_type: CreditType,
        amount: int = 1,
        reason: TransactionReason = TransactionReason.GENERATION,
        external_reference: str | None = None,
    ) -> Deducted | InsufficientCredits:
        """Deduct credits if the balance covers them.

        A user seen for the first time is created with seed balances and
        then charged against them.

        Args:
            tenant_id: Owning site.
            user_id: Site-local user id.
            credit_type: Counter to charge.
            amount: Credits to deduct (positive).
            reason: Log reason (generation unless stated otherwise).
            external_reference: Optional caller reference for the log entry.

        Returns:
            Deducted with the new balance, or InsufficientCredits (no log
            entry is written in that case).

        Raises:
            ValueError: If amount is not positive.
        """
        credit_type = CreditType(credit_type)
        account = await self._ensure_account(tenant_id, user_id)

        new_balance = await CreditAccountRepository.try_deduct(
            self._db,
            tenant_id=tenant_id,
            user_id=user_id,
            credit_type=credit_type,
            amount=amount,
        )
        if new_balance is None:
            refreshed = await CreditAccountRepository.read(
                self._db, tenant_id=tenant_id, user_id=user_id
            )
            available = (refreshed or account).balance_of(credit_type)
            logger.info(
                "Insufficient %s credits for %s/%s: requested %d, available %d",
                credit_type.value,
                tenant_id,
                user_id,
                amount,
                available,
            )
            return InsufficientCredits(
                credit_type=credit_type, requested=amount, available=available
            )

        entry = await CreditTransactionRepository.append(
            self._db,
            tenant_id=tenant_id,
            user_id=user_id,
            credit_type=credit_type,
            direction=Direction.DEBIT,
            amount=amount,
            resulting_balance=new_balance,
            reason=reason,
            external_reference=external_reference,
        )
        return Deducted(
            credit_type=credit_type,
            amount=amount,
            balance=new_balance,
            transaction_id=entry.id,
        )

    async def grant(
        self,
        tenant_id: str,
        user_id: str,
        credit_type: CreditType,
        amount: int,
        reason: TransactionReason,
        external_reference: str | None = None,
        description: str | None = None,
    ) -> Granted:
        """Add credits and log them.

        Args:
            tenant_id: Owning site.
            user_id: Site-local user id.
            credit_type: Counter to increment.
            amount: Credits to add (positive, unbounded).
            reason: purchase, bonus, admin_adjustment, ...
            external_reference: Checkout session id for purchases.
            description: Optional note for the log.

        Returns:
            Granted with the new balance and the log entry id.

        Raises:
            ValueError: If amount is not positive.
        """
        credit_type = CreditType(credit_type)
        await self._ensure_account(tenant_id, user_id)

        new_balance = await CreditAccountRepository.grant(
            self._db,
            tenant_id=tenant_id,
            user_id=user_id,
            credit_type=credit_type,
            amount=amount,
        )
        if new_balance is None:
            msg = f"Credit account {tenant_id}/{user_id} missing during grant"
            raise RuntimeError(msg)

        entry = await CreditTransactionRepository.append(
            self._db,
            tenant_id=tenant_id,
            user_id=user_id,
            credit_type=credit_type,
            direction=Direction.CREDIT,
            amount=amount,
            resulting_balance=new_balance,
            reason=reason,
            external_reference=external_reference,
            description=description,
        )
        return Granted(
            credit_type=credit_type,
            amount=amount,
            balance=new_balance,
            transaction_id=entry.id,
        )

    async def refund(
        self,
        tenant_id: str,
        user_id: str,
        credit_type: CreditType,
        deduction_id: str,
        amount: int | None = None,
    ) -> Granted | NothingToRefund:
        """Return the credits of one generation deduction that failed.

        The refund must name a generation debit of the same user and
        credit type. It returns at most that debit's amount, and each
        debit can be refunded once; the refund entry stores the debit id
        as its external reference.

        Args:
            tenant_id: Owning site.
            user_id: Site-local user id.
            credit_type: Credit type of the deduction.
            deduction_id: Log entry id returned by deduct().
            amount: Credits to return. Defaults to the whole deduction.

        Returns:
            Granted with the new balance, or NothingToRefund.

        Raises:
            ValueError: If amount is not positive.
        """
        credit_type = CreditType(credit_type)
        if amount is not None and amount <= 0:
            msg = f"amount must be positive, got {amount}"
            raise ValueError(msg)

        def rejected(
            reason: RefundRejection, refundable: int, requested: int | None = None
        ) -> NothingToRefund:
            logger.info(
                "Refund of %s for %s/%s rejected: %s",
                deduction_id,
                tenant_id,
                user_id,
                reason.value,
            )
            return NothingToRefund(
                credit_type=credit_type,
                requested=requested or amount or refundable,
                refundable=refundable,
                reason=reason,
                deduction_id=deduction_id,
            )

        # Serializes refunds of one account so the once-only check holds
        account = await CreditAccountRepository.lock(
            self._db, tenant_id=tenant_id, user_id=user_id
        )
        if account is None:
            return rejected(RefundRejection.UNKNOWN_DEDUCTION, 0)

        deduction = await CreditTransactionRepository.get_for_account(
            self._db, tenant_id=tenant_id, user_id=user_id, entry_id=deduction_id
        )
        if (
            deduction is None
            or deduction.direction != Direction.DEBIT
            or deduction.reason != TransactionReason.GENERATION
            or deduction.credit_type != credit_type
        ):
            return rejected(RefundRejection.UNKNOWN_DEDUCTION, 0)

        reference = str(deduction.id)
        previous = await CreditTransactionRepository.find_by_reference(
            self._db,
            tenant_id=tenant_id,
            external_reference=reference,
            reason=TransactionReason.REFUND,
        )
        if previous is not None:
            return rejected(RefundRejection.ALREADY_REFUNDED, 0, amount or deduction.amount)

        requested = amount if amount is not None else deduction.amount
        if requested > deduction.amount:
            return rejected(RefundRejection.EXCEEDS_DEDUCTION, deduction.amount)

        new_balance = await CreditAccountRepository.try_refund(
            self._db,
            tenant_id=tenant_id,
            user_id=user_id,
            credit_type=credit_type,
            amount=requested,
        )
        if new_balance is None:
            return rejected(RefundRejection.EXCEEDS_USAGE, account.usage_of(credit_type))

        entry = await CreditTransactionRepository.append(
            self._db,
            tenant_id=tenant_id,
            user_id=user_id,
            credit_type=credit_type,
            direction=Direction.CREDIT,
            amount=requested,
            resulting_balance=new_balance,
            reason=TransactionReason.REFUND,
            external_reference=reference,
        )
        return Granted(
            credit_type=credit_type,
            amount=requested,
            balance=new_balance,
            transaction_id=entry.id,
        )

    async def adjust(
        self,
        tenant_id: str,
        user_id: str,
        credit_type: CreditType,
        operation: str,
        amount: int,
        reason: TransactionReason = TransactionReason.ADMIN_ADJUSTMENT,
        description: str | None = None,
    ) -> Granted:
        """Admin adjustment: add to a balance or set it outright.

        ``add`` is a plain grant. ``set`` writes the absolute value under a
        row lock and logs the signed delta as a credit or debit, so replay
        still matches. Setting a balance to its current value logs nothing.

        Args:
            tenant_id: Owning site.
            user_id: Site-local user id.
            credit_type: Counter to adjust.
            operation: "add" or "set".
            amount: Credits to add (positive) or the new balance (>= 0).
            reason: admin_adjustment or bonus.
            description: Optional note for the log.

        Returns:
            Granted with the resulting balance and the signed delta as amount.

        Raises:
            ValueError: Unknown operation or out-of-range amount.
        """
        credit_type = CreditType(credit_type)
        if operation == "add":
            return await self.grant(
                tenant_id,
                user_id,
                credit_type,
                amount,
                reason=reason,
                description=description,
            )
        if operation != "set":
            msg = f"Unknown adjustment operation: {operation}"
            raise ValueError(msg)

        await self._ensure_account(tenant_id, user_id)
        changed = await CreditAccountRepository.set_balance_locked(
            self._db,
            tenant_id=tenant_id,
            user_id=user_id,
            credit_type=credit_type,
            value=amount,
        )
        if changed is None:
            msg = f"Credit account {tenant_id}/{user_id} missing during adjustment"
            raise RuntimeError(msg)
        previous, new_balance = changed
        delta = new_balance - previous
        if delta == 0:
            return Granted(
                credit_type=credit_type, amount=0, balance=new_balance, transaction_id=None
            )

        entry = await CreditTransactionRepository.append(
            self._db,
            tenant_id=tenant_id,
            user_id=user_id,
            credit_type=credit_type,
            direction=Direction.CREDIT if delta > 0 else Direction.DEBIT,
            amount=abs(delta),
            resulting_balance=new_balance,
            reason=reason,
            description=description,
        )
        return Granted(
            credit_type=credit_type,
            amount=delta,
            balance=new_balance,
            transaction_id=entry.id,
        )

    async def list_transactions(
        self,
        tenant_id: str,
        user_id: str,
        *,
        offset: int = 0,
        limit: int = 50,
        credit_type: CreditType | None = None,
    ) -> tuple[list[CreditTransaction], int]:
        """Page through an account's log, newest first."""
        return await CreditTransactionRepository.list_for_account(
            self._db,
            tenant_id=tenant_id,
            user_id=user_id,
            offset=offset,
            limit=limit,
            credit_type=credit_type,
        )

    async def reconcile(self, tenant_id: str, user_id: str) -> ReconciliationReport | None:
        """Replay the log from zero and compare with stored balances.

        Returns:
            ReconciliationReport, or None if the account does not exist.
        """
        account = await CreditAccountRepository.read(
            self._db, tenant_id=tenant_id, user_id=user_id
        )
        if account is None:
            return None

        history = await CreditTransactionRepository.history(
            self._db, tenant_id=tenant_id, user_id=user_id
        )
        running = {credit_type: 0 for credit_type in CreditType}
        broken_chain: list[uuid.UUID] = []
        for entry in history:
            credit_type = CreditType(entry.credit_type)
            running[credit_type] += entry.signed_amount
            if entry.resulting_balance != running[credit_type]:
                broken_chain.append(entry.id)

        report = ReconciliationReport(
            tenant_id=tenant_id,
            user_id=user_id,
            entries=len(history),
            per_type=[
                CreditTypeDrift(
                    credit_type=credit_type,
                    stored=account.balance_of(credit_type),
                    replayed=running[credit_type],
                )
                for credit_type in CreditType
            ],
            broken_chain=broken_chain,
        )
        if not report.consistent:
            logger.warning(
                "Ledger drift for %s/%s: %s",
                tenant_id,
                user_id,
                {row.credit_type.value: row.drift for row in report.per_type},
            )
        return report
