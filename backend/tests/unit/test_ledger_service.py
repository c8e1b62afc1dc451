"""Tests for LedgerService: balance mutations paired with log entries.

Each mutation must leave exactly one transaction log entry whose
resulting_balance matches the stored balance, so replaying the log from
zero reproduces the account.
"""

from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.models.base import utc_now
from credit_ledger.models.credit import (
    CreditTransaction,
    CreditType,
    Direction,
    TransactionReason,
)
from credit_ledger.repositories.credit_transaction_repository import (
    CreditTransactionRepository,
)
from credit_ledger.services.ledger_service import (
    Deducted,
    Granted,
    InsufficientCredits,
    LedgerService,
    NothingToRefund,
    RefundRejection,
)
from tests.conftest import TEST_SEED

_TENANT = "site-a"
_USER = "user-1"


@pytest.fixture
def ledger(db_session: AsyncSession) -> LedgerService:
    """Ledger service with the standard free-tier seed."""
    return LedgerService(db_session, seed=TEST_SEED)


async def _history(db: AsyncSession, user_id: str = _USER):
    return await CreditTransactionRepository.history(
        db, tenant_id=_TENANT, user_id=user_id
    )


# =============================================================================
# get_balances
# =============================================================================


class TestGetBalances:
    """Tests for LedgerService.get_balances()."""

    async def test_new_user_gets_seed(self, ledger: LedgerService) -> None:
        """First sight creates the account with free-tier balances."""
        balances = await ledger.get_balances(_TENANT, _USER)

        assert (balances.article, balances.image, balances.rewrite) == (5, 10, 3)
        assert balances.usage == {
            CreditType.ARTICLE: 0,
            CreditType.IMAGE: 0,
            CreditType.REWRITE: 0,
        }

    async def test_seed_is_logged_as_bonus(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """One bonus entry per seeded credit type."""
        await ledger.get_balances(_TENANT, _USER)

        entries = await _history(db_session)
        assert len(entries) == 3
        assert {e.reason for e in entries} == {TransactionReason.BONUS.value}
        assert all(e.description == "Free tier" for e in entries)

    async def test_repeated_reads_do_not_reseed(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """Seed entries are written once."""
        await ledger.get_balances(_TENANT, _USER)
        await ledger.get_balances(_TENANT, _USER)

        assert len(await _history(db_session)) == 3

    async def test_zero_seed_writes_no_entry(self, db_session: AsyncSession) -> None:
        """Credit types seeded with zero get no log entry."""
        from credit_ledger.repositories.credit_account_repository import CreditSeed

        service = LedgerService(db_session, seed=CreditSeed(article=2))

        await service.get_balances(_TENANT, _USER)

        entries = await _history(db_session)
        assert [(e.credit_type, e.amount) for e in entries] == [("article", 2)]

    async def test_read_balances_does_not_create(self, ledger: LedgerService) -> None:
        """read_balances() is side-effect free."""
        assert await ledger.read_balances(_TENANT, "ghost") is None


# =============================================================================
# deduct
# =============================================================================


class TestDeduct:
    """Tests for LedgerService.deduct()."""

    async def test_deduct_returns_new_balance_and_entry(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """A covered deduction writes one debit entry."""
        result = await ledger.deduct(_TENANT, _USER, CreditType.ARTICLE)

        assert isinstance(result, Deducted)
        assert result.balance == 4
        entries = await _history(db_session)
        debit = entries[-1]
        assert debit.id == result.transaction_id
        assert debit.direction == Direction.DEBIT.value
        assert debit.reason == TransactionReason.GENERATION.value
        assert debit.resulting_balance == 4

    async def test_first_deduct_creates_account(self, ledger: LedgerService) -> None:
        """Deducting for an unseen user charges the seed."""
        result = await ledger.deduct(_TENANT, "new-user", CreditType.IMAGE, 3)

        assert isinstance(result, Deducted)
        assert result.balance == 7

    async def test_insufficient_is_a_result_not_an_error(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """An uncovered deduction reports what was available and logs nothing."""
        await ledger.get_balances(_TENANT, _USER)

        result = await ledger.deduct(_TENANT, _USER, CreditType.REWRITE, 4)

        assert result == InsufficientCredits(
            credit_type=CreditType.REWRITE, requested=4, available=3
        )
        assert len(await _history(db_session)) == 3

    async def test_zero_balance_rejects_single_credit(self, ledger: LedgerService) -> None:
        """A drained balance rejects the next deduction."""
        for _ in range(3):
            await ledger.deduct(_TENANT, _USER, CreditType.REWRITE)

        result = await ledger.deduct(_TENANT, _USER, CreditType.REWRITE)

        assert isinstance(result, InsufficientCredits)
        assert result.available == 0

    async def test_external_reference_is_logged(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """The caller reference lands on the debit entry."""
        await ledger.deduct(
            _TENANT, _USER, CreditType.ARTICLE, external_reference="post-42"
        )

        entries = await _history(db_session)
        assert entries[-1].external_reference == "post-42"


# =============================================================================
# grant / refund
# =============================================================================


class TestGrant:
    """Tests for LedgerService.grant()."""

    async def test_grant_logs_purchase(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """Purchases carry the checkout session id as external reference."""
        result = await ledger.grant(
            _TENANT,
            _USER,
            CreditType.ARTICLE,
            10,
            reason=TransactionReason.PURCHASE,
            external_reference="cs_test_1",
        )

        assert result.balance == 15
        entry = (await _history(db_session))[-1]
        assert entry.reason == TransactionReason.PURCHASE.value
        assert entry.external_reference == "cs_test_1"

    async def test_grant_rejects_non_positive(self, ledger: LedgerService) -> None:
        """Grants must be positive."""
        with pytest.raises(ValueError, match="positive"):
            await ledger.grant(
                _TENANT, _USER, CreditType.ARTICLE, 0, reason=TransactionReason.BONUS
            )


class TestRefund:
    """Tests for LedgerService.refund(): bound to one generation deduction."""

    async def _deduct(self, ledger: LedgerService, amount: int = 2) -> Deducted:
        result = await ledger.deduct(_TENANT, _USER, CreditType.IMAGE, amount)
        assert isinstance(result, Deducted)
        return result

    async def test_refund_after_deduct(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """Refunding a deduction restores the balance and references it."""
        deducted = await self._deduct(ledger)

        result = await ledger.refund(
            _TENANT, _USER, CreditType.IMAGE, str(deducted.transaction_id)
        )

        assert isinstance(result, Granted)
        assert result.amount == 2
        assert result.balance == 10
        entry = (await _history(db_session))[-1]
        assert entry.reason == TransactionReason.REFUND.value
        assert entry.external_reference == str(deducted.transaction_id)

    async def test_partial_refund(self, ledger: LedgerService) -> None:
        """Less than the deduction may be returned."""
        deducted = await self._deduct(ledger, 3)

        result = await ledger.refund(
            _TENANT, _USER, CreditType.IMAGE, str(deducted.transaction_id), 1
        )

        assert isinstance(result, Granted)
        assert result.balance == 8

    async def test_refund_twice_is_rejected(self, ledger: LedgerService) -> None:
        """A deduction is refunded at most once, even partially."""
        deducted = await self._deduct(ledger, 3)
        await ledger.refund(
            _TENANT, _USER, CreditType.IMAGE, str(deducted.transaction_id), 1
        )

        result = await ledger.refund(
            _TENANT, _USER, CreditType.IMAGE, str(deducted.transaction_id), 1
        )

        assert isinstance(result, NothingToRefund)
        assert result.reason == RefundRejection.ALREADY_REFUNDED
        assert (await ledger.get_balances(_TENANT, _USER)).image == 8

    async def test_refund_more_than_deduction_is_rejected(
        self, ledger: LedgerService
    ) -> None:
        """Lifetime usage elsewhere does not raise the cap of one deduction."""
        await self._deduct(ledger, 2)
        small = await self._deduct(ledger, 1)

        result = await ledger.refund(
            _TENANT, _USER, CreditType.IMAGE, str(small.transaction_id), 3
        )

        assert result == NothingToRefund(
            credit_type=CreditType.IMAGE,
            requested=3,
            refundable=1,
            reason=RefundRejection.EXCEEDS_DEDUCTION,
            deduction_id=str(small.transaction_id),
        )
        assert (await ledger.get_balances(_TENANT, _USER)).image == 7

    async def test_unknown_reference_cannot_mint(self, ledger: LedgerService) -> None:
        """Spent credits are not returned against a made-up reference."""
        await ledger.adjust(_TENANT, _USER, CreditType.ARTICLE, "set", 2)
        await ledger.deduct(_TENANT, _USER, CreditType.ARTICLE)
        await ledger.deduct(_TENANT, _USER, CreditType.ARTICLE)

        result = await ledger.refund(_TENANT, _USER, CreditType.ARTICLE, "bogus")

        assert isinstance(result, NothingToRefund)
        assert result.reason == RefundRejection.UNKNOWN_DEDUCTION
        assert (await ledger.get_balances(_TENANT, _USER)).article == 0

    async def test_other_credit_type_is_unknown(self, ledger: LedgerService) -> None:
        """An image deduction cannot be refunded as article credits."""
        deducted = await self._deduct(ledger)

        result = await ledger.refund(
            _TENANT, _USER, CreditType.ARTICLE, str(deducted.transaction_id)
        )

        assert isinstance(result, NothingToRefund)
        assert result.reason == RefundRejection.UNKNOWN_DEDUCTION

    async def test_other_users_deduction_is_unknown(self, ledger: LedgerService) -> None:
        """Deductions are scoped to the refunding user."""
        deducted = await self._deduct(ledger)

        result = await ledger.refund(
            _TENANT, "user-2", CreditType.IMAGE, str(deducted.transaction_id)
        )

        assert isinstance(result, NothingToRefund)
        assert result.reason == RefundRejection.UNKNOWN_DEDUCTION

    async def test_non_generation_entry_is_unknown(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """Seed bonuses and admin debits are not refundable deductions."""
        await ledger.adjust(_TENANT, _USER, CreditType.IMAGE, "set", 4)
        entries = await _history(db_session)
        bonus = next(e for e in entries if e.reason == TransactionReason.BONUS.value)
        admin_debit = entries[-1]

        for entry in (bonus, admin_debit):
            result = await ledger.refund(
                _TENANT, _USER, CreditType(entry.credit_type), str(entry.id)
            )
            assert isinstance(result, NothingToRefund)
            assert result.reason == RefundRejection.UNKNOWN_DEDUCTION

    async def test_rejects_non_positive_amount(self, ledger: LedgerService) -> None:
        """Zero is not a refund."""
        deducted = await self._deduct(ledger)

        with pytest.raises(ValueError, match="positive"):
            await ledger.refund(
                _TENANT, _USER, CreditType.IMAGE, str(deducted.transaction_id), 0
            )


# =============================================================================
# adjust
# =============================================================================


class TestAdjust:
    """Tests for LedgerService.adjust()."""

    async def test_add_grants(self, ledger: LedgerService) -> None:
        """add behaves like a grant."""
        result = await ledger.adjust(_TENANT, _USER, CreditType.ARTICLE, "add", 7)

        assert result.amount == 7
        assert result.balance == 12

    async def test_set_down_logs_debit(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """Setting below the current balance logs the difference as a debit."""
        result = await ledger.adjust(_TENANT, _USER, CreditType.IMAGE, "set", 4)

        assert result.amount == -6
        assert result.balance == 4
        entry = (await _history(db_session))[-1]
        assert entry.direction == Direction.DEBIT.value
        assert entry.amount == 6
        assert entry.reason == TransactionReason.ADMIN_ADJUSTMENT.value

    async def test_set_to_current_value_logs_nothing(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """A no-op set has no transaction id."""
        result = await ledger.adjust(_TENANT, _USER, CreditType.IMAGE, "set", 10)

        assert result.amount == 0
        assert result.transaction_id is None
        assert len(await _history(db_session)) == 3

    async def test_unknown_operation(self, ledger: LedgerService) -> None:
        """Only add and set exist."""
        with pytest.raises(ValueError, match="Unknown adjustment"):
            await ledger.adjust(_TENANT, _USER, CreditType.IMAGE, "multiply", 2)


# =============================================================================
# reconcile / list_transactions
# =============================================================================


class TestReconcile:
    """Tests for LedgerService.reconcile()."""

    async def test_mixed_history_replays_exactly(self, ledger: LedgerService) -> None:
        """Every kind of mutation keeps the log consistent."""
        deducted = await ledger.deduct(_TENANT, _USER, CreditType.ARTICLE, 2)
        assert isinstance(deducted, Deducted)
        await ledger.refund(
            _TENANT, _USER, CreditType.ARTICLE, str(deducted.transaction_id), 1
        )
        await ledger.grant(
            _TENANT, _USER, CreditType.IMAGE, 20, reason=TransactionReason.PURCHASE
        )
        await ledger.adjust(_TENANT, _USER, CreditType.REWRITE, "set", 0)

        report = await ledger.reconcile(_TENANT, _USER)

        assert report is not None
        assert report.consistent is True
        assert report.entries == 7
        stored = {row.credit_type: row.stored for row in report.per_type}
        assert stored == {
            CreditType.ARTICLE: 4,
            CreditType.IMAGE: 30,
            CreditType.REWRITE: 0,
        }

    async def test_detects_drift(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """A balance changed outside the ledger shows up as drift."""
        from sqlalchemy import text

        await ledger.get_balances(_TENANT, _USER)
        await db_session.execute(
            text(
                "UPDATE credit_accounts SET article_credits = 99 "
                "WHERE tenant_id = :t AND user_id = :u"
            ),
            {"t": _TENANT, "u": _USER},
        )

        report = await ledger.reconcile(_TENANT, _USER)

        assert report is not None
        assert report.consistent is False
        drift = {row.credit_type: row.drift for row in report.per_type}
        assert drift[CreditType.ARTICLE] == 94

    async def test_missing_account(self, ledger: LedgerService) -> None:
        """No account, no report."""
        assert await ledger.reconcile(_TENANT, "ghost") is None


class TestLogOrder:
    """Entries replay in append order, whatever their timestamps say."""

    async def test_sequence_counts_up_per_account(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """Each account numbers its own entries from 1 without gaps."""
        await ledger.deduct(_TENANT, _USER, CreditType.IMAGE)
        await ledger.deduct(_TENANT, "user-2", CreditType.IMAGE)

        mine = await _history(db_session)
        theirs = await _history(db_session, "user-2")

        assert [e.sequence for e in mine] == [1, 2, 3, 4]
        assert [e.sequence for e in theirs] == [1, 2, 3, 4]

    async def test_replay_ignores_timestamps(
        self, ledger: LedgerService, db_session: AsyncSession
    ) -> None:
        """Equal or reversed created_at values do not reorder the log."""
        for _ in range(3):
            await ledger.deduct(_TENANT, _USER, CreditType.IMAGE)
        await ledger.grant(
            _TENANT, _USER, CreditType.IMAGE, 5, reason=TransactionReason.PURCHASE
        )
        base = utc_now()
        for entry in await _history(db_session):
            await db_session.execute(
                update(CreditTransaction)
                .where(CreditTransaction.id == entry.id)
                .values(created_at=base - timedelta(seconds=entry.sequence // 2))
            )

        history = await _history(db_session)
        report = await ledger.reconcile(_TENANT, _USER)

        image = [e.resulting_balance for e in history if e.credit_type == "image"]
        assert image == [10, 9, 8, 7, 12]
        assert report is not None
        assert report.consistent is True
        assert report.broken_chain == []

        newest, _ = await ledger.list_transactions(_TENANT, _USER, offset=0, limit=1)
        assert newest[0].reason == TransactionReason.PURCHASE.value


class TestListTransactions:
    """Tests for LedgerService.list_transactions()."""

    async def test_filter_and_paging(self, ledger: LedgerService) -> None:
        """Filter by credit type and page newest first."""
        for _ in range(3):
            await ledger.deduct(_TENANT, _USER, CreditType.IMAGE)

        entries, total = await ledger.list_transactions(
            _TENANT, _USER, offset=0, limit=2, credit_type=CreditType.IMAGE
        )

        assert total == 4
        assert len(entries) == 2
        assert entries[0].resulting_balance == 7
