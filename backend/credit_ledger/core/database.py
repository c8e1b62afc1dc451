"""Async database engine and session management.

Configures the SQLAlchemy async engine and provides dependency injection
for database sessions. PostgreSQL (asyncpg) in deployment; SQLite
(aiosqlite) is supported for local runs and tests.
"""

from collections.abc import AsyncGenerator, Callable
from typing import Any

from sqlalchemy import event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from credit_ledger.core.config import settings


def _enable_sqlite_write_serialization(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite defers BEGIN until the first write, which lets two
    transactions read the same row and then race. BEGIN IMMEDIATE gives
    the same one-writer-at-a-time guarantee Postgres row locks give the
    conditional updates.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    Args:
        url: SQLAlchemy async URL (postgresql+asyncpg or sqlite+aiosqlite).
        echo: Log emitted SQL.

    Returns:
        Configured AsyncEngine.
    """
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": 30},
        )
        _enable_sqlite_write_serialization(engine)
        return engine

    return create_async_engine(url, echo=echo, pool_pre_ping=True)


engine = create_engine_for(
    settings.database_url,
    echo=settings.environment == "development",
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def dialect_insert(db: AsyncSession) -> Callable[..., Any]:
    """Return the bound dialect's INSERT construct (supports ON CONFLICT).

    Args:
        db: Session whose bind decides the dialect.

    Returns:
        ``sqlalchemy.dialects.postgresql.insert`` or the SQLite equivalent.
    """
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert
