import datetime
import logging
import math
from typing import Sequence

from gridhistory.models import Milestone, PeakRecord, TimeSeriesRow
from gridhistory.store import UpsertStore
from gridhistory.tiers import HALF_HOURS, to_utc

logger = logging.getLogger(__name__)

RECORDS_TABLE = "peak_records"
MILESTONES_TABLE = "milestones"

# Transmission-connected and embedded wind together
TRACKED_COLUMNS = ("wind", "embedded_wind")


class PeakTracker:
    """All-time maximum of a derived half-hourly metric, and the first time it reached each
    whole unit.

    Every new maximum is appended to ``peak_records``. Milestones are recomputed from that
    history on each update and only the missing ones are written, so replayed or out-of-order
    updates never move a milestone that was already recorded.
    """

    def __init__(self, store: UpsertStore, columns: Sequence[str] = TRACKED_COLUMNS):
        self.store = store
        self.columns = tuple(columns)

    async def track(self, time: datetime.datetime | None = None) -> bool:
        """Update from the half-hour bucket at ``time`` (default: the newest one).

        Returns whether a new record was set. Buckets missing any tracked column are skipped.
        """
        if time is None:
            record = await self.store.latest(HALF_HOURS.table)
        else:
            rows = await self.store.select(
                HALF_HOURS.table, where={"time": to_utc(time)}, order_by=None
            )
            record = rows[0] if rows else None
        if record is None:
            return False

        row = TimeSeriesRow.from_record(record)
        value = row.datum.total(self.columns)
        if value is None:
            logger.debug("Half-hour %s is missing %s, not tracking", row.time, self.columns)
            return False
        return await self.update(value, row.time)

    async def update(self, value: float, time: datetime.datetime) -> bool:
        time = to_utc(time)
        record = await self.get_record()
        is_record = record is None or value > record.value
        if is_record:
            await self.store.upsert(RECORDS_TABLE, ["time"], [{"time": time, "value": value}])
            logger.info("New peak of %s at %s", value, time)
        await self.refresh_milestones()
        return is_record

    async def refresh_milestones(self) -> list[Milestone]:
        """Insert the first crossing of every whole unit not yet recorded; returns new ones"""
        first_crossings: dict[int, datetime.datetime] = {}
        for row in await self.store.select(RECORDS_TABLE):
            for threshold in range(1, math.floor(row["value"]) + 1):
                # Oldest first, so the first time seen is the first crossing
                first_crossings.setdefault(threshold, row["time"])

        existing = {m.threshold for m in await self.get_milestones()}
        new = [
            Milestone(threshold, time)
            for threshold, time in sorted(first_crossings.items())
            if threshold not in existing
        ]
        if new:
            await self.store.insert_missing(
                MILESTONES_TABLE,
                ["threshold"],
                [{"threshold": m.threshold, "time": m.time} for m in new],
            )
            logger.info("Reached milestones %d to %d", new[0].threshold, new[-1].threshold)
        return new

    async def get_record(self) -> PeakRecord | None:
        rows = await self.store.select(RECORDS_TABLE, order_by="value", descending=True, limit=1)
        if not rows:
            return None
        return PeakRecord(float(rows[0]["value"]), rows[0]["time"])

    async def get_milestones(self) -> list[Milestone]:
        rows = await self.store.select(MILESTONES_TABLE, order_by="threshold")
        return [Milestone(row["threshold"], row["time"]) for row in rows]
