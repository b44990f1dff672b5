import datetime
import logging
from typing import Callable

from gridhistory.store import UpsertStore
from gridhistory.tiers import Tier, utcnow

logger = logging.getLogger(__name__)


class RetentionTrimmer:
    def __init__(
        self, store: UpsertStore, clock: Callable[[], datetime.datetime] = utcnow
    ):
        self.store = store
        self.clock = clock

    async def trim(self, tier: Tier, retention: datetime.timedelta | None = None) -> int:
        """Delete rows older than the tier's retention horizon.

        The cut-off is rounded down to the next-coarser tier's bucket boundary, so a row is only
        deleted once the bucket it contributes to is complete. Rows exactly at the cut-off are
        kept. Tiers without a horizon are never trimmed. Returns how many rows were deleted.
        """
        cutoff = tier.cutoff(self.clock(), retention)
        if cutoff is None:
            return 0
        deleted = await self.store.delete(tier.table, before=cutoff)
        if deleted:
            logger.info("Deleted %d %s rows before %s", deleted, tier.name, cutoff)
        return deleted
