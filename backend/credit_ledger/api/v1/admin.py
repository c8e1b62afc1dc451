"""Admin API router.

Tenants, manual credit adjustments, reconciliation, the package catalog,
payment provider credentials, and the checkout expiry sweep.

All endpoints require the AdminSubject dependency (Bearer JWT).
"""

import uuid
from decimal import Decimal
from typing import Annotated, Any

from fastapi import APIRouter, Path, Response, status

from credit_ledger.api.deps import AdminSubject, DbSession, Ledger, Notifier
from credit_ledger.core.config import settings
from credit_ledger.core.errors import ConflictError, NotFoundError
from credit_ledger.core.responses import DataResponse
from credit_ledger.core.security import mask_secret
from credit_ledger.models.catalog import CreditPackage
from credit_ledger.models.credit import CreditType, TransactionReason
from credit_ledger.models.payment_config import PaymentProviderConfig
from credit_ledger.models.tenant import Tenant
from credit_ledger.repositories.credit_account_repository import (
    CreditAccountRepository,
)
from credit_ledger.repositories.credit_package_repository import (
    CreditPackageRepository,
)
from credit_ledger.repositories.payment_config_repository import (
    PaymentConfigRepository,
)
from credit_ledger.repositories.tenant_repository import TenantRepository
from credit_ledger.schemas.admin import (
    AdminBalancesResponse,
    AdminPackageResponse,
    CreditAdjustRequest,
    CreditAdjustResponse,
    CreditTypeDriftResponse,
    ExpireStaleResponse,
    PackageCreate,
    PackageUpdate,
    PaymentConfigResponse,
    PaymentConfigUpsert,
    ReconciliationResponse,
    TenantCreate,
    TenantCreatedResponse,
    TenantResponse,
    TenantUpdate,
)
from credit_ledger.services.checkout_service import expire_stale_sessions

router = APIRouter()

# =============================================================================
# Shared types and helpers
# =============================================================================

_PAYMENT_PROVIDER = "stripe"

# Package columns that are NOT NULL; an explicit null in a PATCH is ignored
_REQUIRED_PACKAGE_FIELDS = frozenset(
    {"name", "credits", "price", "currency", "is_active", "display_order"}
)

TenantId = Annotated[str, Path(min_length=1, max_length=64)]
UserId = Annotated[str, Path(min_length=1, max_length=128)]


def _tenant_response(tenant: Tenant) -> TenantResponse:
    return TenantResponse(
        id=tenant.id,
        name=tenant.name,
        webhook_url=tenant.webhook_url,
        is_active=tenant.is_active,
        created_at=tenant.created_at,
        updated_at=tenant.updated_at,
    )


def _package_response(package: CreditPackage) -> AdminPackageResponse:
    return AdminPackageResponse(
        id=str(package.id),
        name=package.name,
        credit_type=CreditType(package.credit_type),
        credits=package.credits,
        price=str(package.price),
        currency=package.currency,
        is_active=package.is_active,
        display_order=package.display_order,
        description=package.description,
        highlight_label=package.highlight_label,
        created_at=package.created_at,
        updated_at=package.updated_at,
    )


def _payment_config_response(config: PaymentProviderConfig) -> PaymentConfigResponse:
    return PaymentConfigResponse(
        provider=config.provider,
        publishable_key=mask_secret(config.publishable_key),
        secret_key=mask_secret(config.secret_key),
        webhook_secret=mask_secret(config.webhook_secret),
        default_currency=config.default_currency,
        mode=config.mode,
        fee_percentage=str(config.fee_percentage),
        updated_by=config.updated_by,
        updated_at=config.updated_at,
    )


async def _require_tenant(db: DbSession, tenant_id: str) -> Tenant:
    tenant = await TenantRepository.get(db, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant", tenant_id)
    return tenant


async def _require_package(db: DbSession, package_id: uuid.UUID) -> CreditPackage:
    package = await CreditPackageRepository.get(db, package_id)
    if package is None:
        raise NotFoundError("Credit package", str(package_id))
    return package


# =============================================================================
# Tenants
# =============================================================================


@router.post("/tenants", status_code=status.HTTP_201_CREATED)
async def create_tenant(
    _admin: AdminSubject,
    db: DbSession,
    body: TenantCreate,
) -> DataResponse[TenantCreatedResponse]:
    """Register a tenant. The API key is returned only in this response."""
    if await TenantRepository.get(db, body.id) is not None:
        raise ConflictError(
            code="TENANT_EXISTS",
            message=f"Tenant '{body.id}' already exists",
        )
    tenant, api_key = await TenantRepository.create(
        db, tenant_id=body.id, name=body.name, webhook_url=body.webhook_url
    )
    await db.commit()
    base = _tenant_response(tenant)
    return DataResponse(
        data=TenantCreatedResponse(
            **base.model_dump(),
            api_key=api_key,
            webhook_secret=tenant.webhook_secret,
        )
    )


@router.patch("/tenants/{tenant_id}")
async def update_tenant(
    _admin: AdminSubject,
    db: DbSession,
    tenant_id: TenantId,
    body: TenantUpdate,
) -> DataResponse[TenantResponse]:
    """Rename a tenant, change its webhook URL, or (de)activate it."""
    tenant = await _require_tenant(db, tenant_id)
    tenant = await TenantRepository.update(
        db,
        tenant,
        name=body.name,
        webhook_url=body.webhook_url,
        is_active=body.is_active,
    )
    await db.commit()
    return DataResponse(data=_tenant_response(tenant))


# =============================================================================
# Credits
# =============================================================================


@router.get("/tenants/{tenant_id}/users/{user_id}/credits")
async def get_user_credits(
    _admin: AdminSubject,
    db: DbSession,
    tenant_id: TenantId,
    user_id: UserId,
) -> DataResponse[AdminBalancesResponse]:
    """Read an account without creating it."""
    account = await CreditAccountRepository.read(db, tenant_id=tenant_id, user_id=user_id)
    if account is None:
        raise NotFoundError("Credit account", f"{tenant_id}/{user_id}")
    return DataResponse(
        data=AdminBalancesResponse(
            tenant_id=account.tenant_id,
            user_id=account.user_id,
            user_email=account.user_email,
            article=account.article_credits,
            image=account.image_credits,
            rewrite=account.rewrite_credits,
            total_articles_generated=account.total_articles_generated,
            total_images_generated=account.total_images_generated,
            total_rewrites_generated=account.total_rewrites_generated,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )
    )


@router.put("/tenants/{tenant_id}/users/{user_id}/credits")
async def adjust_user_credits(
    admin: AdminSubject,
    db: DbSession,
    ledger: Ledger,
    notifier: Notifier,
    tenant_id: TenantId,
    user_id: UserId,
    body: CreditAdjustRequest,
) -> DataResponse[CreditAdjustResponse]:
    """Add to or overwrite one balance. Every change is logged."""
    tenant = await _require_tenant(db, tenant_id)
    result = await ledger.adjust(
        tenant_id,
        user_id,
        body.credit_type,
        body.operation,
        body.amount,
        reason=TransactionReason(body.reason),
        description=body.description or f"Adjusted by {admin}",
    )
    balances = await ledger.read_balances(tenant_id, user_id)
    await db.commit()

    if result.amount != 0 and balances is not None:
        await notifier.notify_credits_updated(tenant, user_id, balances)

    return DataResponse(
        data=CreditAdjustResponse(
            credit_type=result.credit_type,
            delta=result.amount,
            balance=result.balance,
            transaction_id=str(result.transaction_id) if result.transaction_id else None,
        )
    )


@router.get("/tenants/{tenant_id}/users/{user_id}/reconciliation")
async def reconcile_user_credits(
    _admin: AdminSubject,
    ledger: Ledger,
    tenant_id: TenantId,
    user_id: UserId,
) -> DataResponse[ReconciliationResponse]:
    """Replay the account's log and compare it with stored balances."""
    report = await ledger.reconcile(tenant_id, user_id)
    if report is None:
        raise NotFoundError("Credit account", f"{tenant_id}/{user_id}")
    return DataResponse(
        data=ReconciliationResponse(
            tenant_id=report.tenant_id,
            user_id=report.user_id,
            entries=report.entries,
            consistent=report.consistent,
            per_type=[
                CreditTypeDriftResponse(
                    credit_type=row.credit_type,
                    stored=row.stored,
                    replayed=row.replayed,
                    drift=row.drift,
                )
                for row in report.per_type
            ],
            broken_chain=[str(entry_id) for entry_id in report.broken_chain],
        )
    )


# =============================================================================
# Packages
# =============================================================================


@router.get("/packages")
async def list_packages(
    _admin: AdminSubject,
    db: DbSession,
) -> DataResponse[list[AdminPackageResponse]]:
    """List all packages, inactive ones included."""
    packages = await CreditPackageRepository.list_all(db)
    return DataResponse(data=[_package_response(package) for package in packages])


@router.post("/packages", status_code=status.HTTP_201_CREATED)
async def create_package(
    _admin: AdminSubject,
    db: DbSession,
    body: PackageCreate,
) -> DataResponse[AdminPackageResponse]:
    """Add a package to the catalog."""
    package = await CreditPackageRepository.create(
        db,
        name=body.name,
        credit_type=body.credit_type,
        credits=body.credits,
        price=Decimal(body.price),
        currency=body.currency or settings.default_currency,
        display_order=body.display_order,
        description=body.description,
        highlight_label=body.highlight_label,
    )
    await db.commit()
    return DataResponse(data=_package_response(package))


@router.patch("/packages/{package_id}")
async def update_package(
    _admin: AdminSubject,
    db: DbSession,
    package_id: uuid.UUID,
    body: PackageUpdate,
) -> DataResponse[AdminPackageResponse]:
    """Update a package. Only provided fields change."""
    package = await _require_package(db, package_id)
    fields: dict[str, Any] = {}
    for field in body.model_fields_set:
        value = getattr(body, field)
        if value is None and field in _REQUIRED_PACKAGE_FIELDS:
            continue
        fields[field] = Decimal(value) if field == "price" else value
    package = await CreditPackageRepository.update(db, package, fields)
    await db.commit()
    return DataResponse(data=_package_response(package))


@router.delete("/packages/{package_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_package(
    _admin: AdminSubject,
    db: DbSession,
    package_id: uuid.UUID,
) -> Response:
    """Withdraw a package from sale. Settled and pending sessions keep it."""
    package = await _require_package(db, package_id)
    await CreditPackageRepository.deactivate(db, package)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Payment Provider Config
# =============================================================================


@router.get("/payment-config")
async def get_payment_config(
    _admin: AdminSubject,
    db: DbSession,
) -> DataResponse[PaymentConfigResponse]:
    """Read the provider config with keys masked."""
    config = await PaymentConfigRepository.get(db, _PAYMENT_PROVIDER)
    if config is None:
        raise NotFoundError("Payment config")
    return DataResponse(data=_payment_config_response(config))


@router.put("/payment-config")
async def upsert_payment_config(
    admin: AdminSubject,
    db: DbSession,
    body: PaymentConfigUpsert,
) -> DataResponse[PaymentConfigResponse]:
    """Store provider credentials. Omitted keys keep their stored value."""
    config = await PaymentConfigRepository.upsert(
        db,
        provider=_PAYMENT_PROVIDER,
        default_currency=body.default_currency,
        mode=body.mode,
        fee_percentage=Decimal(body.fee_percentage),
        updated_by=admin,
        publishable_key=body.publishable_key,
        secret_key=body.secret_key,
        webhook_secret=body.webhook_secret,
    )
    await db.commit()
    return DataResponse(data=_payment_config_response(config))


# =============================================================================
# Checkout maintenance
# =============================================================================


@router.post("/checkout/expire-stale")
async def expire_stale_checkouts(
    _admin: AdminSubject,
    db: DbSession,
) -> DataResponse[ExpireStaleResponse]:
    """Expire pending checkout sessions past their expiry."""
    expired = await expire_stale_sessions(db)
    return DataResponse(data=ExpireStaleResponse(expired=expired))
