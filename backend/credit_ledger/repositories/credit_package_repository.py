"""Repository for the credit package catalog."""

import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.models.catalog import CreditPackage
from credit_ledger.models.credit import CreditType

# Fields an admin update may touch
_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "credits",
        "price",
        "currency",
        "is_active",
        "display_order",
        "description",
        "highlight_label",
    }
)


def _parse_id(package_id: str | uuid.UUID) -> uuid.UUID | None:
    if isinstance(package_id, uuid.UUID):
        return package_id
    try:
        return uuid.UUID(package_id)
    except ValueError:
        return None


class CreditPackageRepository:
    """Stateless repository for CreditPackage."""

    @staticmethod
    async def get(
        db: AsyncSession, package_id: str | uuid.UUID
    ) -> CreditPackage | None:
        """Get a package by id, active or not.

        Settlement resolves packages through this method so that a package
        deactivated after purchase still grants its credits.

        Args:
            db: Async database session.
            package_id: Package UUID (string form accepted).

        Returns:
            CreditPackage if found, None for unknown or malformed ids.
        """
        parsed = _parse_id(package_id)
        if parsed is None:
            return None
        result = await db.execute(select(CreditPackage).where(CreditPackage.id == parsed))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_active(
        db: AsyncSession, package_id: str | uuid.UUID
    ) -> CreditPackage | None:
        """Get a package only if it is offered for new checkouts."""
        package = await CreditPackageRepository.get(db, package_id)
        if package is None or not package.is_active:
            return None
        return package

    @staticmethod
    async def list_active(db: AsyncSession) -> list[CreditPackage]:
        """Active packages in display order."""
        result = await db.execute(
            select(CreditPackage)
            .where(CreditPackage.is_active.is_(True))
            .order_by(CreditPackage.display_order, CreditPackage.price)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_all(db: AsyncSession) -> list[CreditPackage]:
        """All packages, including deactivated ones."""
        result = await db.execute(
            select(CreditPackage).order_by(
                CreditPackage.credit_type, CreditPackage.display_order
            )
        )
        return list(result.scalars().all())

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        name: str,
        credit_type: CreditType,
        credits: int,
        price: Decimal,
        currency: str,
        is_active: bool = True,
        display_order: int = 0,
        description: str | None = None,
        highlight_label: str | None = None,
    ) -> CreditPackage:
        """Create a package.

        Returns:
            The created package with its generated id.
        """
        package = CreditPackage(
            name=name,
            credit_type=CreditType(credit_type).value,
            credits=credits,
            price=price,
            currency=currency.lower(),
            is_active=is_active,
            display_order=display_order,
            description=description,
            highlight_label=highlight_label,
        )
        db.add(package)
        await db.flush()
        await db.refresh(package)
        return package

    @staticmethod
    async def update(
        db: AsyncSession,
        package: CreditPackage,
        fields: dict[str, Any],
    ) -> CreditPackage:
        """Apply a partial update to a package.

        Args:
            db: Async database session.
            package: Loaded package to modify.
            fields: Field values keyed by column name. Unknown keys are
                rejected; credit_type is immutable because pending checkout
                sessions already recorded it.

        Returns:
            The updated package.

        Raises:
            ValueError: If fields contains a non-updatable key.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            msg = f"Cannot update package fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        for key, value in fields.items():
            if key == "currency" and value is not None:
                value = value.lower()
            setattr(package, key, value)
        await db.flush()
        await db.refresh(package)
        return package

    @staticmethod
    async def deactivate(db: AsyncSession, package: CreditPackage) -> CreditPackage:
        """Soft-disable a package. Rows are never deleted."""
        package.is_active = False
        await db.flush()
        return package
