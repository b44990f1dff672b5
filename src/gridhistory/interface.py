import datetime
import functools
import logging
import math
import numbers
from typing import Any, Awaitable, Callable, Sequence

from gridhistory.dedup import ErrorDeduplicator
from gridhistory.downsample import Downsampler
from gridhistory.errors import MalformedInput
from gridhistory.models import GENERATION_COLUMNS, METRIC_COLUMNS, Datum, State
from gridhistory.peaks import PeakTracker
from gridhistory.propagate import ForwardPropagator
from gridhistory.retention import RetentionTrimmer
from gridhistory.snapshot import LatestSnapshot
from gridhistory.store import Record, UpsertStore
from gridhistory.tiers import DAYS, FIVE_MINUTES, HALF_HOURS, WEEKS, YEARS, Tier, to_utc, utcnow

logger = logging.getLogger(__name__)

BatchRow = tuple[Any, ...]


def _transaction(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    @functools.wraps(func)
    async def decorated(self: "GridHistory", *args: Any, **kwargs: Any) -> Any:
        async with self.store.transaction():
            return await func(self, *args, **kwargs)

    return decorated


def validate_batch(columns: Sequence[str], batch: Sequence[BatchRow]) -> list[BatchRow]:
    """Check a batch of ``(time, *values)`` rows and return it normalised, newest first.

    Times become UTC and values floats. Any problem rejects the whole batch.
    """
    unknown = [c for c in columns if c not in METRIC_COLUMNS]
    if unknown:
        raise MalformedInput(f"Unknown columns: {', '.join(unknown)}")

    rows: list[BatchRow] = []
    for position, row in enumerate(batch):
        if len(row) != len(columns) + 1:
            raise MalformedInput(
                f"Row {position} has {len(row)} fields, expected time and {len(columns)} values"
            )
        time, *values = row
        if not isinstance(time, datetime.datetime):
            raise MalformedInput(f"Row {position} has no valid time: {time!r}")
        for column, value in zip(columns, values):
            if value is not None and (
                isinstance(value, bool) or not isinstance(value, numbers.Real)
            ):
                raise MalformedInput(f"Row {position} has a non-numeric {column}: {value!r}")
            if value is not None and not math.isfinite(value):
                raise MalformedInput(f"Row {position} has a non-finite {column}: {value!r}")
        rows.append((to_utc(time), *(None if v is None else float(v) for v in values)))

    rows.sort(key=lambda row: row[0], reverse=True)
    return rows


def _average(records: list[Record]) -> Datum:
    return Datum.average(Datum.from_record(record) for record in records)


def _series(records: list[Record]) -> dict[datetime.datetime, Datum]:
    return {record["time"]: Datum.from_record(record) for record in records}


class GridHistory:
    """Ingestion and reporting entry point.

    One ingestion cycle calls ``update_generation`` and ``update`` for each fetched batch and
    then ``finish_update`` once. Each call runs in a single transaction, so a failure leaves
    the tiers as they were after the previous call and the cycle can simply be retried.
    Cycles must not overlap.
    """

    def __init__(
        self, store: UpsertStore, clock: Callable[[], datetime.datetime] = utcnow
    ):
        self.store = store
        self.clock = clock
        self.snapshot = LatestSnapshot(store)
        self.downsampler = Downsampler(store)
        self.propagator = ForwardPropagator(store)
        self.trimmer = RetentionTrimmer(store, clock)
        self.peaks = PeakTracker(store)
        self.errors = ErrorDeduplicator(store)

    async def _write_series(self, tier: Tier, columns: Sequence[str], rows: list[BatchRow]) -> None:
        await self.store.upsert(
            tier.table,
            ["time"],
            [{"time": row[0], **dict(zip(columns, row[1:]))} for row in rows],
        )

    @_transaction
    async def update_generation(self, batch: Sequence[BatchRow]) -> None:
        """Ingest five-minute generation samples, ``(time, *values)`` in GENERATION_COLUMNS order"""
        if not batch:
            logger.debug("Empty generation batch")
            return
        rows = validate_batch(GENERATION_COLUMNS, batch)

        await self.snapshot.update_batch(GENERATION_COLUMNS, rows)
        await self._write_series(FIVE_MINUTES, GENERATION_COLUMNS, rows)

        await self.propagator.capture(HALF_HOURS)
        await self.downsampler.promote_five_minutes()
        await self.propagator.propagate(HALF_HOURS)
        await self.trimmer.trim(FIVE_MINUTES)
        await self.peaks.track()

    @_transaction
    async def update(
        self,
        columns: Sequence[str],
        batch: Sequence[BatchRow],
        is_latest: bool,
        is_half_hourly: bool,
    ) -> None:
        """Ingest demand, pricing or emissions readings, ``(time, *values)`` in ``columns`` order.

        Args:
            columns: The metric columns the batch carries
            batch: The readings, in any order
            is_latest: Whether the readings should also update the latest snapshot
            is_half_hourly: Whether the readings are half-hourly or five-minute samples
        """
        if not batch:
            logger.debug("Empty batch for %s", ", ".join(columns))
            return
        rows = validate_batch(columns, batch)

        if is_latest:
            await self.snapshot.update_batch(columns, rows)
        await self._write_series(HALF_HOURS if is_half_hourly else FIVE_MINUTES, columns, rows)

    @_transaction
    async def finish_update(self) -> None:
        """Roll half-hours up into days, weeks and months, then trim and track the peak"""
        await self.downsampler.promote(HALF_HOURS, DAYS)
        await self.downsampler.promote(DAYS, WEEKS)
        await self.downsampler.promote(DAYS, YEARS)
        await self.trimmer.trim(HALF_HOURS)
        await self.peaks.track()

    @_transaction
    async def record_visit(self) -> int:
        """Count a view of the newest half-hour; returns its visit count (0 if there is none)"""
        time = await self.get_latest_bucket_time()
        if time is None:
            return 0
        return await self.store.increment(HALF_HOURS.table, {"time": time}, "visits")

    async def get_latest_bucket_time(self) -> datetime.datetime | None:
        latest = await self.store.latest(HALF_HOURS.table)
        return latest["time"] if latest else None

    @_transaction
    async def get_state(self) -> State:
        latest, time = await self.snapshot.get()
        # Current day and week are still filling up, so they are left out of the week and year
        past_day = list(
            reversed(await self.store.select(HALF_HOURS.table, descending=True, limit=48))
        )
        past_week = list(
            reversed(await self.store.select(DAYS.table, descending=True, limit=7, offset=1))
        )
        past_year = list(
            reversed(await self.store.select(WEEKS.table, descending=True, limit=52, offset=1))
        )
        all_days = await self.store.select(DAYS.table)
        all_months = await self.store.select(YEARS.table)

        return State(
            time=time,
            latest=latest,
            past_day=_average(past_day),
            past_week=_average(past_week),
            past_year=_average(past_year),
            all_time=_average(all_days),
            day_series=_series(past_day),
            week_series=_series(past_week),
            year_series=_series(past_year),
            all_time_series=_series(all_months),
            record=await self.peaks.get_record(),
            milestones={m.threshold: m.time for m in await self.peaks.get_milestones()},
        )
