"""Package catalog API router.

Active credit packages, grouped by credit type for the purchase page.
"""

from fastapi import APIRouter

from credit_ledger.api.deps import CurrentTenant, DbSession
from credit_ledger.core.responses import DataResponse
from credit_ledger.models.catalog import CreditPackage
from credit_ledger.models.credit import CreditType
from credit_ledger.repositories.credit_package_repository import (
    CreditPackageRepository,
)
from credit_ledger.schemas.checkout import PackageCatalogResponse, PackageResponse

router = APIRouter()


def package_response(package: CreditPackage) -> PackageResponse:
    """Convert a catalog row to its tenant-facing shape."""
    return PackageResponse(
        id=str(package.id),
        name=package.name,
        credit_type=CreditType(package.credit_type),
        credits=package.credits,
        price=str(package.price),
        currency=package.currency,
        display_order=package.display_order,
        description=package.description,
        highlight_label=package.highlight_label,
    )


@router.get("")
async def list_packages(
    _tenant: CurrentTenant,
    db: DbSession,
) -> DataResponse[PackageCatalogResponse]:
    """Return active packages per credit type, in display order."""
    grouped: dict[CreditType, list[PackageResponse]] = {
        credit_type: [] for credit_type in CreditType
    }
    for package in await CreditPackageRepository.list_active(db):
        grouped[CreditType(package.credit_type)].append(package_response(package))

    return DataResponse(
        data=PackageCatalogResponse(
            article=grouped[CreditType.ARTICLE],
            image=grouped[CreditType.IMAGE],
            rewrite=grouped[CreditType.REWRITE],
        )
    )
