"""Shared fixtures for ledger tests.

Every test gets its own SQLite file database (aiosqlite) with the full
schema created from the ORM metadata. API tests drive the real FastAPI
app through httpx's ASGITransport, with the database, payment gateway,
and tenant webhook notifier swapped for test doubles.
"""

from collections.abc import AsyncGenerator, Iterator
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from credit_ledger.core.config import settings
from credit_ledger.core.database import create_engine_for
from credit_ledger.core.rate_limiting import limiter
from credit_ledger.core.security import create_admin_token
from credit_ledger.models.base import Base
from credit_ledger.models.catalog import CreditPackage
from credit_ledger.models.credit import CreditType
from credit_ledger.models.tenant import Tenant
from credit_ledger.providers import factory
from credit_ledger.providers.config import ProviderConfig
from credit_ledger.providers.payments.mock_adapter import MockPaymentGateway
from credit_ledger.repositories.credit_account_repository import CreditSeed
from credit_ledger.repositories.credit_package_repository import (
    CreditPackageRepository,
)
from credit_ledger.repositories.tenant_repository import TenantRepository
from credit_ledger.services.ledger_service import Balances
from credit_ledger.services.webhook_notifier import TenantWebhookNotifier

# Security: This is a test-only secret. Production uses a real secret from env.
TEST_ADMIN_SECRET = "test-admin-secret-that-is-at-least-32-characters"  # nosec B105  # gitleaks:allow
TEST_ADMIN_SUBJECT = "ops@example.com"

TEST_TENANT_ID = "site-a"
OTHER_TENANT_ID = "site-b"

# Matches the settings defaults so service- and API-level tests agree
TEST_SEED = CreditSeed(article=5, image=10, rewrite=3)


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with the schema created."""
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory for tests that need several independent sessions."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Single session for repository and service tests.

    SQLite transactions hold the write lock until they end, so tests that
    also call the API must commit or roll back before each request.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# Domain fixtures
# =============================================================================


@dataclass
class RegisteredTenant:
    """A tenant together with the plaintext key issued at creation."""

    tenant: Tenant
    api_key: str

    @property
    def id(self) -> str:
        return self.tenant.id


async def register_tenant(
    db: AsyncSession,
    tenant_id: str = TEST_TENANT_ID,
    webhook_url: str | None = "https://site-a.example.com/ledger-webhook",
) -> RegisteredTenant:
    """Create and commit a tenant."""
    tenant, api_key = await TenantRepository.create(
        db, tenant_id=tenant_id, name=f"Site {tenant_id}", webhook_url=webhook_url
    )
    await db.commit()
    return RegisteredTenant(tenant=tenant, api_key=api_key)


@pytest_asyncio.fixture
async def tenant(db_session: AsyncSession) -> RegisteredTenant:
    """The primary tenant (site-a)."""
    return await register_tenant(db_session)


@pytest_asyncio.fixture
async def other_tenant(db_session: AsyncSession) -> RegisteredTenant:
    """A second tenant for isolation tests (site-b)."""
    return await register_tenant(
        db_session, OTHER_TENANT_ID, webhook_url="https://site-b.example.com/hook"
    )


@pytest_asyncio.fixture
async def article_package(db_session: AsyncSession) -> CreditPackage:
    """Active package: 10 article credits for 750 JPY."""
    package = await CreditPackageRepository.create(
        db_session,
        name="10 articles",
        credit_type=CreditType.ARTICLE,
        credits=10,
        price=Decimal("750"),
        currency="jpy",
        display_order=1,
    )
    await db_session.commit()
    return package


@pytest.fixture
def mock_gateway() -> Iterator[MockPaymentGateway]:
    """In-memory payment gateway, injected into the factory singleton."""
    gateway = MockPaymentGateway(ProviderConfig(payment_provider="mock", max_retries=0))
    factory._mock_gateway = gateway

    yield gateway

    factory.reset_providers()


class RecordingNotifier(TenantWebhookNotifier):
    """Notifier that records calls instead of sending HTTP requests."""

    def __init__(self) -> None:
        super().__init__(enabled=True)
        self.calls: list[tuple[str, str, Balances]] = []

    async def notify_credits_updated(
        self, tenant: Tenant, user_id: str, balances: Balances
    ) -> bool:
        self.calls.append((tenant.id, user_id, balances))
        return True


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Recording tenant webhook notifier."""
    return RecordingNotifier()


# =============================================================================
# API clients
# =============================================================================


@pytest.fixture
def app(
    session_factory: async_sessionmaker[AsyncSession],
    mock_gateway: MockPaymentGateway,
    notifier: RecordingNotifier,
) -> Iterator:
    """FastAPI app wired to the test database and test doubles.

    Sets up:
    - get_db override backed by the per-test SQLite database
    - get_payment_gateway override returning the mock gateway
    - get_webhook_notifier override returning the recording notifier
    - admin token secret, with rate limiting disabled
    """
    from credit_ledger.api.deps import get_payment_gateway, get_webhook_notifier
    from credit_ledger.core.database import get_db
    from credit_ledger.main import app as fastapi_app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_payment_gateway] = lambda: mock_gateway
    fastapi_app.dependency_overrides[get_webhook_notifier] = lambda: notifier

    original_secret = settings.admin_token_secret
    original_limiter_enabled = limiter.enabled
    settings.admin_token_secret = SecretStr(TEST_ADMIN_SECRET)
    limiter.enabled = False

    yield fastapi_app

    settings.admin_token_secret = original_secret
    limiter.enabled = original_limiter_enabled
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app, tenant: RegisteredTenant) -> AsyncGenerator[AsyncClient, None]:
    """Client authenticated as the primary tenant (X-API-Key)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-API-Key": tenant.api_key},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def other_client(
    app, other_tenant: RegisteredTenant
) -> AsyncGenerator[AsyncClient, None]:
    """Client authenticated as the second tenant."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-API-Key": other_tenant.api_key},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def admin_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Client carrying a valid admin Bearer token."""
    token = create_admin_token(TEST_ADMIN_SUBJECT, secret=TEST_ADMIN_SECRET)
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def anonymous_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Client with no credentials."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
