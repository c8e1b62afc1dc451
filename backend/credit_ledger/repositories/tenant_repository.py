"""Repository for tenants (sites)."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.security import (
    generate_api_key,
    generate_webhook_secret,
    hash_api_key,
)
from credit_ledger.models.tenant import Tenant


class TenantRepository:
    """Stateless repository for Tenant."""

    @staticmethod
    async def get(db: AsyncSession, tenant_id: str) -> Tenant | None:
        """Get a tenant by id."""
        result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_api_key(db: AsyncSession, api_key: str) -> Tenant | None:
        """Resolve a plaintext API key to its tenant.

        The key is hashed before the lookup; plaintext keys are never
        stored or compared.

        Args:
            db: Async database session.
            api_key: Value of the X-API-Key header.

        Returns:
            Tenant if the key matches, None otherwise (active or not).
        """
        result = await db.execute(
            select(Tenant).where(Tenant.api_key_hash == hash_api_key(api_key))
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        tenant_id: str,
        name: str,
        webhook_url: str | None = None,
    ) -> tuple[Tenant, str]:
        """Register a tenant and issue its API key.

        Returns:
            Tuple of (tenant, plaintext API key). The plaintext key is not
            recoverable afterwards.
        """
        api_key = generate_api_key()
        tenant = Tenant(
            id=tenant_id,
            name=name,
            api_key_hash=hash_api_key(api_key),
            webhook_url=webhook_url,
            webhook_secret=generate_webhook_secret(),
            is_active=True,
        )
        db.add(tenant)
        await db.flush()
        await db.refresh(tenant)
        return tenant, api_key

    @staticmethod
    async def update(
        db: AsyncSession,
        tenant: Tenant,
        *,
        name: str | None = None,
        webhook_url: str | None = None,
        is_active: bool | None = None,
    ) -> Tenant:
        """Apply a partial update. None leaves a field unchanged."""
        if name is not None:
            tenant.name = name
        if webhook_url is not None:
            tenant.webhook_url = webhook_url or None
        if is_active is not None:
            tenant.is_active = is_active
        await db.flush()
        await db.refresh(tenant)
        return tenant
