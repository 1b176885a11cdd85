"""Database connection and session management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import event, text

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ridership_api.config import get_settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

# Execution option that makes a SQLite transaction take the write lock up front.
WRITE_LOCK_OPTION = "sqlite_write_lock"


def create_engine_for_url(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine configured for the backend behind ``url``.

    SQLite engines get explicit transaction control so SAVEPOINTs work.
    Sessions that claim the write lock (see ``claim_write_lock``) open with
    ``BEGIN IMMEDIATE`` so writers serialize instead of failing on lock
    upgrade. Every other transaction is a plain deferred ``BEGIN`` and never
    waits on a writer.
    """
    if url.startswith("sqlite"):
        settings = get_settings()
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": settings.sqlite_busy_timeout_sec},
        )
        _install_sqlite_hooks(engine)
        return engine

    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, _connection_record: Any) -> None:
        # Disable the driver's implicit BEGIN; we emit our own below.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        if conn.get_execution_options().get(WRITE_LOCK_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


async def claim_write_lock(session: AsyncSession) -> None:
    """Bind ``session`` to a connection whose transaction holds the write lock.

    Must run before the session touches the database. A no-op on backends
    other than SQLite.
    """
    await session.connection(execution_options={WRITE_LOCK_OPTION: True})


def get_engine() -> AsyncEngine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine_for_url(str(settings.database_url), echo=settings.debug)
    return _engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database sessions (for use outside of FastAPI)."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Session whose work commits as one unit, or rolls back entirely.

    A ledger write and the aggregate fold it triggers share one of these, so
    either both become durable or neither does.
    """
    factory = factory or get_session_factory()
    async with factory() as session:
        try:
            await claim_write_lock(session)
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise


async def check_database_connection() -> bool:
    """Check if database is reachable."""
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


async def close_database() -> None:
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
