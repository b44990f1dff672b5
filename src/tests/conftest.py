import asyncio
import os
from typing import AsyncGenerator, Awaitable, Callable, Iterator

import asyncpg
import pytest
import pytest_asyncio
from testcontainers.postgres import PostgresContainer

from gridhistory.dedup import TABLE as ERRORS_TABLE
from gridhistory.interface import GridHistory
from gridhistory.migrate import run_all_migrations
from gridhistory.peaks import MILESTONES_TABLE, RECORDS_TABLE
from gridhistory.postgres import PostgresStore
from gridhistory.snapshot import TABLE as LATEST_TABLE
from gridhistory.store import MemoryStore, UpsertStore
from gridhistory.tiers import TIERS, Tier
from tests.utils import DAY, FixedClock, parse_time

# Disable ryuk to avoid port conflicts
os.environ.setdefault("TESTCONTAINERS_RYUK_DISABLED", "true")

ALL_TABLES = [t.table for t in TIERS] + [LATEST_TABLE, RECORDS_TABLE, MILESTONES_TABLE, ERRORS_TABLE]


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(DAY.replace(hour=13, minute=2))


@pytest.fixture
def history(store: MemoryStore, clock: FixedClock) -> GridHistory:
    return GridHistory(store, clock)


async def _fill(store: UpsertStore, tier: Tier, text: str) -> None:
    rows: dict = {}
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    timestamps = [parse_time(t) for t in lines[0].split(",")]
    for line in lines[1:]:
        column, values = [t.strip() for t in line.split(":", 1)]
        for timestamp, value in zip(timestamps, values.split(",")):
            value = value.strip()
            if not value:
                continue
            target = rows.setdefault(timestamp, {"time": timestamp})
            target[column] = int(value) if column == "visits" else float(value)
    # Rows carry different columns, so upsert them one at a time
    for row in rows.values():
        await store.upsert(tier.table, ["time"], [row])


@pytest.fixture
def make_series(store: MemoryStore) -> Callable[[Tier, str], Awaitable[None]]:
    '''
    Usage:

        async def test_foo(make_series):
            await make_series(HALF_HOURS, """
                        11:30, 12:00, 12:30
                demand:  5000,      ,  5100
                wind:       4,     5,
            """)

    This upserts three half-hour rows: demand and wind at 11:30, wind alone at 12:00 and demand
    alone at 12:30. Times are on the day of ``tests.utils.DAY`` unless written in full.
    '''

    async def fn(tier: Tier, text: str) -> None:
        await _fill(store, tier, text)

    return fn


async def _migrate(url: str) -> None:
    connection = await asyncpg.connect(url)
    try:
        await run_all_migrations(connection)
    finally:
        await connection.close()


@pytest.fixture(scope="session")
def postgres() -> Iterator[PostgresContainer]:
    try:
        container = PostgresContainer("postgres:16", driver=None)
        container.start()
    except Exception as exc:
        pytest.skip(f"PostgreSQL container unavailable: {exc}")
    try:
        # A private loop, so the loop of the test being set up is left alone
        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(_migrate(container.get_connection_url()))
        finally:
            loop.close()
        yield container
    finally:
        container.stop()


@pytest_asyncio.fixture
async def pg_store(postgres: PostgresContainer) -> AsyncGenerator[PostgresStore, None]:
    store = PostgresStore(await asyncpg.connect(postgres.get_connection_url()))
    try:
        yield store
        await store.connection.execute(f"TRUNCATE TABLE {', '.join(ALL_TABLES)}")
    finally:
        await store.close()


@pytest.fixture
def make_pg_series(pg_store: PostgresStore) -> Callable[[Tier, str], Awaitable[None]]:
    async def fn(tier: Tier, text: str) -> None:
        await _fill(pg_store, tier, text)

    return fn
