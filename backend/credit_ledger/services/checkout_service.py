"""Checkout settlement: sell credit packages and credit each payment once.

Buyers pay either on a hosted checkout page or through a PaymentIntent
confirmed by an embedded card form. Both are tracked as a checkout
session row, and that row is the idempotency guard. Settlement claims it
with a compare-and-swap (pending -> completed) and grants credits in the
same transaction, so of any number of concurrent verifications (browser
redirect, retries, provider webhook) exactly one grants.

No database transaction is held open across a payment provider call.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.config import settings
from credit_ledger.core.errors import (
    PackageNotFoundError,
    PaymentNotConfiguredError,
    PaymentProviderError,
)
from credit_ledger.models.base import utc_now
from credit_ledger.models.catalog import CreditPackage
from credit_ledger.models.checkout import CheckoutKind, CheckoutSession, CheckoutStatus
from credit_ledger.models.credit import CreditType, TransactionReason
from credit_ledger.providers.errors import (
    AuthenticationError,
    ProviderError,
    RateLimitError,
    TransientError,
)
from credit_ledger.providers.payments.base import (
    CheckoutRequest,
    GatewayEvent,
    GatewaySessionStatus,
    PaymentGateway,
)
from credit_ledger.repositories.checkout_session_repository import (
    CheckoutSessionRepository,
)
from credit_ledger.repositories.credit_package_repository import (
    CreditPackageRepository,
)
from credit_ledger.repositories.tenant_repository import TenantRepository
from credit_ledger.services.ledger_service import LedgerService
from credit_ledger.services.webhook_notifier import TenantWebhookNotifier

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED_EVENT = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED_EVENT = "payment_intent.succeeded"
SETTLEMENT_EVENTS = frozenset({CHECKOUT_COMPLETED_EVENT, PAYMENT_INTENT_SUCCEEDED_EVENT})


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite reads) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# =============================================================================
# Result types
# =============================================================================


@dataclass(frozen=True)
class CreatedCheckout:
    """A pending checkout the buyer can be redirected to."""

    session_id: str
    url: str
    package_id: str
    credit_type: CreditType
    credits: int
    amount: Decimal
    currency: str
    expires_at: datetime


@dataclass(frozen=True)
class CreatedPaymentIntent:
    """A pending PaymentIntent the buyer's browser confirms.

    Attributes:
        payment_intent_id: Provider intent id; verify it like a session id.
        client_secret: Handed to the provider's card form.
    """

    payment_intent_id: str
    client_secret: str
    package_id: str
    credit_type: CreditType
    credits: int
    amount: Decimal
    currency: str
    expires_at: datetime


@dataclass(frozen=True)
class Settled:
    """This call granted the package credits."""

    session_id: str
    credit_type: CreditType
    credits_added: int
    balance: int
    transaction_ref: str


@dataclass(frozen=True)
class AlreadyCompleted:
    """The session was settled earlier; nothing was granted now."""

    session_id: str
    credit_type: CreditType
    credits_added: int
    transaction_ref: str | None


@dataclass(frozen=True)
class PaymentNotCompleted:
    """The provider has not confirmed payment. Safe to verify again later."""

    session_id: str
    retryable: bool = True


@dataclass(frozen=True)
class SessionNotFound:
    """No session with this id exists for the calling tenant."""

    session_id: str


@dataclass(frozen=True)
class SessionClosed:
    """The session expired or failed without payment."""

    session_id: str
    status: CheckoutStatus


SettlementResult = (
    Settled | AlreadyCompleted | PaymentNotCompleted | SessionNotFound | SessionClosed
)


@dataclass(frozen=True)
class _Purchase:
    """What a pending session buys, as stored when it was created."""

    user_id: str
    package_id: str
    credit_type: CreditType
    credits: int


def _already_completed(session: CheckoutSession) -> AlreadyCompleted:
    return AlreadyCompleted(
        session_id=session.session_id,
        credit_type=CreditType(session.credit_type),
        credits_added=session.credits_added or 0,
        transaction_ref=session.transaction_ref,
    )


# =============================================================================
# Service
# =============================================================================


class CheckoutService:
    """Creates checkout sessions and settles paid ones exactly once.

    Args:
        db: Async database session. This service commits its own units of
            work.
        gateway: Payment gateway for the configured provider.
        ledger: Ledger service bound to the same session. Created from db
            when omitted.
        notifier: Tenant webhook notifier. Notifications are skipped when
            omitted.
        ttl_hours: Lifetime of an unpaid session. Defaults to settings.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        ledger: LedgerService | None = None,
        notifier: TenantWebhookNotifier | None = None,
        ttl_hours: int | None = None,
    ) -> None:
        self._db = db
        self._gateway = gateway
        self._ledger = ledger or LedgerService(db)
        self._notifier = notifier
        self._ttl = timedelta(hours=ttl_hours or settings.checkout_session_ttl_hours)

    async def create_checkout(
        self,
        *,
        tenant_id: str,
        user_id: str,
        user_email: str | None,
        package_id: str,
        success_url: str,
        cancel_url: str,
    ) -> CreatedCheckout:
        """Open a provider checkout for an active package and persist it.

        Args:
            tenant_id: Calling site.
            user_id: Buyer.
            user_email: Buyer email prefilled at the provider.
            package_id: Package to buy.
            success_url: Redirect after payment.
            cancel_url: Redirect on abandon.

        Returns:
            CreatedCheckout with the provider URL.

        Raises:
            PackageNotFoundError: Package unknown or inactive.
            PaymentNotConfiguredError: Provider rejected the credentials.
            PaymentProviderError: Provider unreachable or rejected the request.
        """
        package = await self._active_package(package_id)
        request = self._request_for(tenant_id, user_id, user_email, package)
        request.success_url = success_url
        request.cancel_url = cancel_url
        try:
            created = await self._gateway.create_session(request)
        except AuthenticationError as e:
            logger.error("Payment provider rejected credentials: %s", e)
            raise PaymentNotConfiguredError() from e
        except ProviderError as e:
            logger.warning("Checkout creation failed for %s/%s: %s", tenant_id, user_id, e)
            raise PaymentProviderError() from e

        expires_at = await self._persist(
            created.session_id, CheckoutKind.CHECKOUT, request, package
        )
        return CreatedCheckout(
            session_id=created.session_id,
            url=created.url,
            package_id=str(package.id),
            credit_type=CreditType(package.credit_type),
            credits=package.credits,
            amount=package.price,
            currency=package.currency,
            expires_at=expires_at,
        )

    async def create_payment_intent(
        self,
        *,
        tenant_id: str,
        user_id: str,
        user_email: str | None,
        package_id: str,
    ) -> CreatedPaymentIntent:
        """Create a provider PaymentIntent for an active package and persist it.

        The intent settles through verify_and_settle() exactly like a
        hosted checkout session; its id is the session id.

        Raises:
            PackageNotFoundError: Package unknown or inactive.
            PaymentNotConfiguredError: Provider rejected the credentials.
            PaymentProviderError: Provider unreachable or rejected the request.
        """
        package = await self._active_package(package_id)
        request = self._request_for(tenant_id, user_id, user_email, package)
        try:
            created = await self._gateway.create_intent(request)
        except AuthenticationError as e:
            logger.error("Payment provider rejected credentials: %s", e)
            raise PaymentNotConfiguredError() from e
        except ProviderError as e:
            logger.warning("Intent creation failed for %s/%s: %s", tenant_id, user_id, e)
            raise PaymentProviderError() from e

        expires_at = await self._persist(
            created.intent_id, CheckoutKind.PAYMENT_INTENT, request, package
        )
        return CreatedPaymentIntent(
            payment_intent_id=created.intent_id,
            client_secret=created.client_secret,
            package_id=str(package.id),
            credit_type=CreditType(package.credit_type),
            credits=package.credits,
            amount=package.price,
            currency=package.currency,
            expires_at=expires_at,
        )

    async def _active_package(self, package_id: str) -> CreditPackage:
        package = await CreditPackageRepository.get_active(self._db, package_id)
        if package is None:
            raise PackageNotFoundError(package_id)
        # Nothing written yet; release the transaction before the network call
        await self._db.commit()
        return package

    @staticmethod
    def _request_for(
        tenant_id: str,
        user_id: str,
        user_email: str | None,
        package: CreditPackage,
    ) -> CheckoutRequest:
        return CheckoutRequest(
            tenant_id=tenant_id,
            user_id=user_id,
            user_email=user_email,
            package_id=str(package.id),
            credit_type=package.credit_type,
            product_name=package.name,
            amount=package.price,
            currency=package.currency,
        )

    async def _persist(
        self,
        session_id: str,
        kind: CheckoutKind,
        request: CheckoutRequest,
        package: CreditPackage,
    ) -> datetime:
        """Store the pending row, freezing the package's current credits."""
        expires_at = utc_now() + self._ttl
        await CheckoutSessionRepository.create(
            self._db,
            session_id=session_id,
            tenant_id=request.tenant_id,
            user_id=request.user_id,
            user_email=request.user_email,
            package_id=str(package.id),
            credit_type=CreditType(package.credit_type),
            credits=package.credits,
            amount=package.price,
            currency=package.currency,
            expires_at=expires_at,
            kind=kind,
        )
        await self._db.commit()

        logger.info(
            "Created %s %s for %s/%s (package %s)",
            kind.value,
            session_id,
            request.tenant_id,
            request.user_id,
            package.id,
        )
        return expires_at

    async def _query_gateway(
        self, session_id: str, kind: CheckoutKind
    ) -> GatewaySessionStatus | PaymentNotCompleted:
        try:
            if kind == CheckoutKind.PAYMENT_INTENT:
                return await self._gateway.get_intent_status(session_id)
            return await self._gateway.get_session_status(session_id)
        except (TransientError, RateLimitError) as e:
            logger.info("Payment status unavailable for %s: %s", session_id, e)
            return PaymentNotCompleted(session_id=session_id, retryable=True)
        except AuthenticationError as e:
            logger.error("Payment provider rejected credentials: %s", e)
            raise PaymentNotConfiguredError() from e
        except ProviderError as e:
            logger.warning("Payment status query failed for %s: %s", session_id, e)
            raise PaymentProviderError() from e

    async def _close_expired(self, tenant_id: str, session_id: str) -> SettlementResult:
        closed = await CheckoutSessionRepository.close(
            self._db,
            tenant_id=tenant_id,
            session_id=session_id,
            status=CheckoutStatus.EXPIRED,
        )
        await self._db.commit()
        if closed:
            logger.info("Checkout %s expired unpaid", session_id)
            return SessionClosed(session_id=session_id, status=CheckoutStatus.EXPIRED)

        # Someone else moved it first; report whatever they decided
        session = await CheckoutSessionRepository.get_scoped(
            self._db, tenant_id=tenant_id, session_id=session_id
        )
        await self._db.commit()
        if session is not None and session.status == CheckoutStatus.COMPLETED:
            return _already_completed(session)
        status = CheckoutStatus(session.status) if session else CheckoutStatus.EXPIRED
        return SessionClosed(session_id=session_id, status=status)

    async def verify_and_settle(self, tenant_id: str, session_id: str) -> SettlementResult:
        """Verify payment with the provider and grant the package once.

        Safe to call any number of times, concurrently, for the same
        session: at most one call returns Settled, later ones return
        AlreadyCompleted with the same credits_added. PaymentIntent ids
        are verified the same way as checkout session ids.

        The credits granted are the ones stored on the session when it
        was created, so catalog edits made while the buyer pays do not
        change what the payment buys.

        Args:
            tenant_id: Calling site. Sessions of other tenants are
                reported as SessionNotFound.
            session_id: Provider checkout session or PaymentIntent id.

        Returns:
            Settled, AlreadyCompleted, PaymentNotCompleted,
            SessionNotFound, or SessionClosed.

        Raises:
            PaymentNotConfiguredError: Provider rejected the credentials.
            PaymentProviderError: Non-retryable provider failure.
        """
        session = await CheckoutSessionRepository.get_scoped(
            self._db, tenant_id=tenant_id, session_id=session_id
        )
        if session is None:
            await self._db.commit()
            return SessionNotFound(session_id=session_id)

        status = CheckoutStatus(session.status)
        if status == CheckoutStatus.COMPLETED:
            await self._db.commit()
            return _already_completed(session)
        if status in (CheckoutStatus.EXPIRED, CheckoutStatus.FAILED):
            await self._db.commit()
            return SessionClosed(session_id=session_id, status=status)

        purchase = _Purchase(
            user_id=session.user_id,
            package_id=session.package_id,
            credit_type=CreditType(session.credit_type),
            credits=session.credits,
        )
        kind = CheckoutKind(session.kind)
        expires_at = as_utc(session.expires_at)
        # Release the read transaction before the provider call
        await self._db.commit()

        gateway_status = await self._query_gateway(session_id, kind)
        if isinstance(gateway_status, PaymentNotCompleted):
            return gateway_status

        if gateway_status == GatewaySessionStatus.EXPIRED:
            return await self._close_expired(tenant_id, session_id)

        if gateway_status != GatewaySessionStatus.PAID:
            if utc_now() >= expires_at:
                return await self._close_expired(tenant_id, session_id)
            return PaymentNotCompleted(session_id=session_id, retryable=True)

        return await self._settle_paid(tenant_id, session_id, purchase)

    async def _settle_paid(
        self,
        tenant_id: str,
        session_id: str,
        purchase: _Purchase,
    ) -> SettlementResult:
        try:
            won = await CheckoutSessionRepository.claim(
                self._db, tenant_id=tenant_id, session_id=session_id, now=utc_now()
            )
            if not won:
                session = await CheckoutSessionRepository.get_scoped(
                    self._db, tenant_id=tenant_id, session_id=session_id
                )
                await self._db.commit()
                if session is None:
                    return SessionNotFound(session_id=session_id)
                if session.status == CheckoutStatus.COMPLETED:
                    logger.info("Checkout %s already settled by a concurrent call", session_id)
                    return _already_completed(session)
                return SessionClosed(
                    session_id=session_id, status=CheckoutStatus(session.status)
                )

            # Only the description comes from the catalog; the package may be gone
            package = await CreditPackageRepository.get(self._db, purchase.package_id)
            granted = await self._ledger.grant(
                tenant_id,
                purchase.user_id,
                purchase.credit_type,
                purchase.credits,
                reason=TransactionReason.PURCHASE,
                external_reference=session_id,
                description=package.name if package is not None else None,
            )
            transaction_ref = str(granted.transaction_id)
            await CheckoutSessionRepository.record_settlement(
                self._db,
                session_id=session_id,
                credits_added=purchase.credits,
                transaction_ref=transaction_ref,
            )

            tenant = None
            balances = None
            if self._notifier is not None:
                tenant = await TenantRepository.get(self._db, tenant_id)
                balances = await self._ledger.read_balances(tenant_id, purchase.user_id)
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise

        logger.info(
            "Settled checkout %s: %d %s credits for %s/%s",
            session_id,
            purchase.credits,
            purchase.credit_type.value,
            tenant_id,
            purchase.user_id,
        )
        if self._notifier is not None and tenant is not None and balances is not None:
            await self._notifier.notify_credits_updated(tenant, purchase.user_id, balances)

        return Settled(
            session_id=session_id,
            credit_type=purchase.credit_type,
            credits_added=purchase.credits,
            balance=granted.balance,
            transaction_ref=transaction_ref,
        )

    async def settle_from_webhook(self, event: GatewayEvent) -> SettlementResult | None:
        """Settle from a verified provider webhook event.

        The tenant comes from the session or intent metadata written at
        creation. Events other than a completed checkout or a succeeded
        PaymentIntent are acknowledged and ignored, as are intents without
        tenant metadata (those a hosted checkout opens on our behalf).

        Returns:
            The settlement result, or None when the event was ignored.
        """
        if event.type not in SETTLEMENT_EVENTS or not event.session_id:
            logger.debug("Ignoring payment event %s", event.type)
            return None

        tenant_id = event.metadata.get("tenant_id")
        if not tenant_id:
            logger.warning("Payment event %s has no tenant metadata", event.session_id)
            return None

        return await self.verify_and_settle(tenant_id, event.session_id)

    async def expire_stale_sessions(self, now: datetime | None = None) -> int:
        """Expire every pending session past its expiry.

        Returns:
            Number of sessions expired.
        """
        return await expire_stale_sessions(self._db, now)


async def expire_stale_sessions(db: AsyncSession, now: datetime | None = None) -> int:
    """Expire every pending session past its expiry and commit.

    Needs no payment gateway, so the sweep runs even while payments are
    unconfigured.

    Returns:
        Number of sessions expired.
    """
    count = await CheckoutSessionRepository.expire_stale(db, now=now or utc_now())
    await db.commit()
    if count:
        logger.info("Expired %d stale checkout sessions", count)
    return count
