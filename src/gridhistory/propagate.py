import logging
from typing import Sequence

from gridhistory.models import SLOW_COLUMNS
from gridhistory.store import Record, UpsertStore
from gridhistory.tiers import Tier

logger = logging.getLogger(__name__)


class ForwardPropagator:
    """Carries slow-changing columns forward into buckets created without them.

    ``capture`` must run before a promotion batch and ``propagate`` after it. The captured row
    existed before the batch, so a row created by the batch itself (which lacks the slow
    columns) is never used as the source.
    """

    def __init__(self, store: UpsertStore, columns: Sequence[str] = SLOW_COLUMNS):
        self.store = store
        self.columns = tuple(columns)
        self._captured: dict[str, Record | None] = {}

    async def capture(self, tier: Tier) -> Record | None:
        previous = await self.store.latest(tier.table)
        self._captured[tier.table] = previous
        return previous

    async def propagate(self, tier: Tier) -> int:
        """Overwrite the slow columns of rows newer than the captured one; returns the row count"""
        try:
            previous = self._captured.pop(tier.table)
        except KeyError:
            raise RuntimeError(f"capture() was not called for the {tier.name} tier") from None

        if previous is None:
            logger.debug("No %s row existed before promotion, nothing to propagate", tier.name)
            return 0
        values = {c: previous[c] for c in self.columns if previous.get(c) is not None}
        if not values:
            logger.debug("Row at %s has no slow-changing values to propagate", previous["time"])
            return 0

        newer = await self.store.select(tier.table, after=previous["time"])
        if not newer:
            return 0
        await self.store.upsert(
            tier.table, ["time"], [{"time": row["time"], **values} for row in newer]
        )
        logger.info(
            "Propagated %s from %s into %d %s rows",
            ", ".join(values),
            previous["time"],
            len(newer),
            tier.name,
        )
        return len(newer)
