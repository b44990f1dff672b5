import datetime
import logging
from typing import Any, Sequence

from gridhistory.models import Datum, LatestValue
from gridhistory.store import UpsertStore
from gridhistory.tiers import to_utc

logger = logging.getLogger(__name__)

TABLE = "latest"


class LatestSnapshot:
    """Current value of every source, independent of the time-series buckets"""

    def __init__(self, store: UpsertStore):
        self.store = store

    async def update(self, source: str, value: float, time: datetime.datetime) -> bool:
        """Overwrite the stored value of ``source`` unless a newer reading is already stored.

        Returns whether the stored value changed.
        """
        time = to_utc(time)
        current = await self.store.select(TABLE, where={"source": source}, order_by=None)
        if current and current[0]["time"] > time:
            logger.debug("Ignoring %s reading at %s, stored one is newer", source, time)
            return False
        await self.store.upsert(
            TABLE, ["source"], [{"source": source, "value": value, "time": time}]
        )
        return True

    async def update_batch(
        self,
        columns: Sequence[str],
        batch: Sequence[tuple[Any, ...]],
    ) -> None:
        """Apply the most recent reading of each column in a batch of ``(time, *values)`` rows"""
        # Most recent first, so the first non-null value of a column is its latest reading
        rows = sorted(batch, key=lambda row: row[0], reverse=True)
        for index, source in enumerate(columns):
            for row in rows:
                if row[index + 1] is not None:
                    await self.update(source, row[index + 1], row[0])
                    break

    async def get_all(self) -> list[LatestValue]:
        rows = await self.store.select(TABLE, order_by="source")
        return [LatestValue(row["source"], row["value"], row["time"]) for row in rows]

    async def get(self) -> tuple[Datum, datetime.datetime | None]:
        """Latest datum and the time of the most recent reading in it"""
        values = await self.get_all()
        datum = Datum({v.source: float(v.value) for v in values})
        return datum, max((v.time for v in values), default=None)
