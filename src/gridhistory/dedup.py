from gridhistory.models import ErrorCounter
from gridhistory.store import UpsertStore

TABLE = "errors"


class ErrorDeduplicator:
    """Counts repeated failures of an action so callers can escalate instead of re-alerting.

    Usage:

        count = await errors.record("fetch demand", str(exc))
        if count == 3:
            alert(...)
        ...
        await errors.clear("fetch demand")  # after the next success
    """

    def __init__(self, store: UpsertStore):
        self.store = store

    async def record(self, action: str, error: str) -> int:
        return await self.store.increment(TABLE, {"action": action, "error": error}, "count")

    async def clear(self, action: str) -> int:
        return await self.store.delete(TABLE, where={"action": action})

    async def get(self, action: str) -> list[ErrorCounter]:
        rows = await self.store.select(TABLE, where={"action": action}, order_by="error")
        return [ErrorCounter(row["action"], row["error"], row["count"]) for row in rows]
