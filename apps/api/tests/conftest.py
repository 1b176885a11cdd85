"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import partial
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ridership_api.config import get_settings
from ridership_api.database import create_engine_for_url, make_session_factory, unit_of_work
from ridership_api.main import app
from ridership_api.models import Base
from ridership_api.services.aggregation.engine import AggregationEngine, reset_aggregation_engine
from ridership_api.services.aggregation.periodic import PeriodicAnalyticsJob
from ridership_api.services.aggregation.worker import reset_worker
from ridership_api.services.ledger.ledger import TripLedger, reset_ledger

from .fixtures.ledger_fixture import load_reference_data


@pytest.fixture(autouse=True)
def _reset_singletons() -> Any:
    """Drop cached settings and service singletons between tests."""
    get_settings.cache_clear()
    reset_aggregation_engine()
    reset_ledger()
    reset_worker()
    yield
    reset_aggregation_engine()
    reset_ledger()
    reset_worker()


@pytest.fixture
def mock_db_connection() -> Any:
    """Mock database connection check."""
    with patch("ridership_api.main.check_database_connection", new_callable=AsyncMock) as mock:
        mock.return_value = True
        yield mock


@pytest.fixture
async def client(mock_db_connection: Any) -> AsyncGenerator[AsyncClient, None]:  # noqa: ARG001
    """Async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# File-backed SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture
def sqlite_path(tmp_path: Path) -> Path:
    return tmp_path / "ridership.db"


@pytest.fixture
async def sqlite_engine(sqlite_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Engine over a fresh on-disk database with the full schema."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{sqlite_path}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(sqlite_engine)


@pytest.fixture
async def reference_data(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Modes, routes 1-3, stations 1-3 and riders 1-10."""
    async with unit_of_work(session_factory) as session:
        await load_reference_data(session)


@pytest.fixture
def aggregator() -> AggregationEngine:
    """Engine with a small retry budget and no backoff sleep."""
    return AggregationEngine(max_attempts=3, backoff_base_sec=0.0, backoff_max_sec=0.0)


@pytest.fixture
def ledger(aggregator: AggregationEngine) -> TripLedger:
    return TripLedger(aggregator=aggregator)


@pytest.fixture
def uow(session_factory: async_sessionmaker[AsyncSession]) -> Any:
    """unit_of_work bound to the test database."""
    return partial(unit_of_work, session_factory)


# ---------------------------------------------------------------------------
# API client backed by the SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_client(
    session_factory: async_sessionmaker[AsyncSession],
    reference_data: None,  # noqa: ARG001
    mock_db_connection: Any,  # noqa: ARG001
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose routers read and write the test database."""

    @asynccontextmanager
    async def _unit_of_work() -> AsyncGenerator[AsyncSession, None]:
        async with unit_of_work(session_factory) as session:
            yield session

    @asynccontextmanager
    async def _session_context() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    job_cls = partial(PeriodicAnalyticsJob, session_factory=session_factory)

    with (
        patch("ridership_api.routers.trips.unit_of_work", _unit_of_work),
        patch("ridership_api.routers.events.unit_of_work", _unit_of_work),
        patch("ridership_api.routers.admin.unit_of_work", _unit_of_work),
        patch("ridership_api.routers.summaries.get_session_context", _session_context),
        patch("ridership_api.routers.admin.get_session_context", _session_context),
        patch("ridership_api.routers.admin.PeriodicAnalyticsJob", job_cls),
    ):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
