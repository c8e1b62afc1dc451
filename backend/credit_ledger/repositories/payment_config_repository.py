"""Repository for payment provider configuration."""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.database import dialect_insert
from credit_ledger.models.base import utc_now
from credit_ledger.models.payment_config import PaymentProviderConfig


class PaymentConfigRepository:
    """Stateless repository for PaymentProviderConfig."""

    @staticmethod
    async def get(db: AsyncSession, provider: str) -> PaymentProviderConfig | None:
        """Get the config row for a provider."""
        result = await db.execute(
            select(PaymentProviderConfig)
            .where(PaymentProviderConfig.provider == provider)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert(
        db: AsyncSession,
        *,
        provider: str,
        default_currency: str,
        mode: str,
        fee_percentage: Decimal,
        updated_by: str | None,
        publishable_key: str | None = None,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
    ) -> PaymentProviderConfig:
        """Insert or update the config row for a provider in one statement.

        Key fields left as None keep their stored value on update, so an
        admin can change the currency without re-entering secrets.

        Returns:
            The stored config row.
        """
        values = {
            "provider": provider,
            "default_currency": default_currency.lower(),
            "mode": mode,
            "fee_percentage": fee_percentage,
            "updated_by": updated_by,
            "updated_at": utc_now(),
            "publishable_key": publishable_key,
            "secret_key": secret_key,
            "webhook_secret": webhook_secret,
        }
        on_update = {
            key: value
            for key, value in values.items()
            if key != "provider"
            and not (
                key in ("publishable_key", "secret_key", "webhook_secret")
                and value is None
            )
        }

        insert = dialect_insert(db)
        stmt = (
            insert(PaymentProviderConfig)
            .values(**values)
            .on_conflict_do_update(index_elements=["provider"], set_=on_update)
        )
        await db.execute(stmt)

        config = await PaymentConfigRepository.get(db, provider)
        if config is None:
            msg = f"Payment config for {provider} missing after upsert"
            raise RuntimeError(msg)
        return config
