import datetime

import pytest

from gridhistory.snapshot import LatestSnapshot
from gridhistory.store import MemoryStore
from tests.utils import parse_time


@pytest.mark.asyncio
@pytest.mark.parametrize("reverse", [False, True])
async def test_batch_keeps_most_recent_reading(store: MemoryStore, reverse: bool) -> None:
    snapshot = LatestSnapshot(store)
    batch = [(parse_time("12:00"), 100.0), (parse_time("12:05"), 80.0)]
    if reverse:
        batch.reverse()

    await snapshot.update_batch(["wind"], batch)

    values = await snapshot.get_all()
    assert [(v.source, v.value, v.time) for v in values] == [("wind", 80.0, parse_time("12:05"))]


@pytest.mark.asyncio
async def test_older_reading_does_not_replace_newer(store: MemoryStore) -> None:
    snapshot = LatestSnapshot(store)

    assert await snapshot.update("wind", 80.0, parse_time("12:05")) is True
    assert await snapshot.update("wind", 100.0, parse_time("12:00")) is False
    # Retried duplicate
    assert await snapshot.update("wind", 80.0, parse_time("12:05")) is True

    datum, time = await snapshot.get()
    assert datum["wind"] == 80.0
    assert time == parse_time("12:05")


@pytest.mark.asyncio
async def test_batch_uses_latest_non_missing_value_per_source(store: MemoryStore) -> None:
    snapshot = LatestSnapshot(store)

    await snapshot.update_batch(
        ["wind", "solar"],
        [(parse_time("12:00"), 100.0, 3.0), (parse_time("12:05"), 110.0, None)],
    )

    datum, time = await snapshot.get()
    assert datum.values == {"wind": 110.0, "solar": 3.0}
    assert time == parse_time("12:05")


@pytest.mark.asyncio
async def test_naive_time_is_stored_as_utc(store: MemoryStore) -> None:
    snapshot = LatestSnapshot(store)

    await snapshot.update("gas", 12.5, datetime.datetime(2024, 3, 4, 12, 0))

    (value,) = await snapshot.get_all()
    assert value.time == parse_time("12:00")


@pytest.mark.asyncio
async def test_empty_snapshot(store: MemoryStore) -> None:
    datum, time = await LatestSnapshot(store).get()
    assert datum.values == {}
    assert time is None
