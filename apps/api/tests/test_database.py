"""Tests for SQLite transaction handling."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridership_api.database import WRITE_LOCK_OPTION, claim_write_lock
from ridership_api.models import Trip
from ridership_api.services.ledger.ledger import TripLedger

from .fixtures.ledger_fixture import trip_payload


class TestWriteLock:
    @pytest.mark.asyncio
    async def test_unit_of_work_claims_write_lock(self, uow: Any) -> None:
        async with uow() as session:
            conn = await session.connection()
            assert conn.sync_connection.get_execution_options().get(WRITE_LOCK_OPTION) is True

    @pytest.mark.asyncio
    async def test_plain_session_does_not(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        async with session_factory() as session:
            conn = await session.connection()
            assert WRITE_LOCK_OPTION not in conn.sync_connection.get_execution_options()

    @pytest.mark.asyncio
    async def test_claim_write_lock(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        async with session_factory() as session:
            await claim_write_lock(session)
            conn = await session.connection()
            assert conn.sync_connection.get_execution_options().get(WRITE_LOCK_OPTION) is True


@pytest.mark.usefixtures("reference_data")
class TestReadersAndWriters:
    @pytest.mark.asyncio
    async def test_read_not_blocked_by_open_writer(
        self,
        ledger: TripLedger,
        uow: Any,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with uow() as writer:
            await ledger.append(writer, trip_payload())

            async with session_factory() as reader:
                # Well under the busy timeout: a reader waiting on the lock would time out here.
                count = await asyncio.wait_for(
                    reader.scalar(select(func.count()).select_from(Trip)), timeout=5
                )
            assert count == 0

        async with session_factory() as reader:
            assert await reader.scalar(select(func.count()).select_from(Trip)) == 1
