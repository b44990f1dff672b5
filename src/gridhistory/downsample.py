import datetime
import logging
from typing import Callable, Sequence

from gridhistory.models import GENERATION_COLUMNS, METRIC_COLUMNS, Datum, TimeSeriesRow
from gridhistory.store import UpsertStore
from gridhistory.tiers import FIVE_MINUTES, HALF_HOURS, Tier, floor_half_hour

logger = logging.getLogger(__name__)

# A half-hour is complete once the five-minute sample starting 25 minutes into it is stored,
# so subtracting 25 minutes from the newest sample and flooring gives the last complete one
COMPLETENESS_MARGIN = datetime.timedelta(minutes=25)


class Downsampler:
    def __init__(self, store: UpsertStore):
        self.store = store

    async def promote(
        self,
        source: Tier,
        destination: Tier,
        bucket: Callable[[datetime.datetime], datetime.datetime] | None = None,
        columns: Sequence[str] = METRIC_COLUMNS,
        until: datetime.datetime | None = None,
    ) -> list[TimeSeriesRow]:
        """Upsert one row per bucket of ``source`` into ``destination``.

        Args:
            source: Tier to read rows from
            destination: Tier to upsert aggregated rows into
            bucket: Maps a row time to its bucket start (defaults to the destination's)
            columns: Metric columns to average and write; other columns are left untouched
            until: Latest bucket start to promote; later buckets are skipped

        Each column is averaged over the rows that have a value for it. Visit counts are summed
        when both tiers carry them. Returns the promoted rows, oldest first.
        """
        bucket = bucket or destination.bucket
        records = await self.store.select(source.table)
        if not records:
            logger.debug("Nothing to promote from %s", source.name)
            return []

        groups: dict[datetime.datetime, list[TimeSeriesRow]] = {}
        for record in records:
            row = TimeSeriesRow.from_record(record)
            start = bucket(row.time)
            if until is not None and start > until:
                continue
            groups.setdefault(start, []).append(row)
        if not groups:
            logger.debug("No complete %s buckets in %s", destination.name, source.name)
            return []

        sum_visits = source.has_visits and destination.has_visits
        promoted = [
            TimeSeriesRow(
                time=start,
                datum=Datum.average((row.datum for row in rows), columns),
                visits=sum(row.visits or 0 for row in rows) if sum_visits else None,
            )
            for start, rows in sorted(groups.items())
        ]
        await self.store.upsert(
            destination.table, ["time"], [row.to_record(columns) for row in promoted]
        )
        logger.info(
            "Promoted %d %s rows into %d %s buckets",
            sum(len(rows) for rows in groups.values()),
            source.name,
            len(promoted),
            destination.name,
        )
        return promoted

    async def complete_half_hour(self) -> datetime.datetime | None:
        """Start of the newest half-hour for which every five-minute sample can have arrived"""
        latest = await self.store.latest(FIVE_MINUTES.table)
        if latest is None:
            return None
        return floor_half_hour(latest["time"] - COMPLETENESS_MARGIN)

    async def promote_five_minutes(self) -> list[TimeSeriesRow]:
        """Promote complete half-hours of generation samples"""
        until = await self.complete_half_hour()
        if until is None:
            return []
        return await self.promote(FIVE_MINUTES, HALF_HOURS, columns=GENERATION_COLUMNS, until=until)
