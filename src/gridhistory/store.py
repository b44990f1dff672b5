"""Insert-or-overwrite-by-key storage.

Every component writes through ``upsert`` so that replaying the same inputs leaves the store
in the same state. Rows are plain mappings from column name to value; tables that hold time
series are keyed by a ``time`` column and are returned ordered by it.
"""

import copy
import datetime
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Sequence

Record = dict[str, Any]


class UpsertStore(ABC):
    @abstractmethod
    def transaction(self) -> Any:
        """Async context manager; the block commits as a whole or not at all.

        A nested block that fails is rolled back on its own, like a savepoint.
        """
        raise NotImplementedError

    @abstractmethod
    async def upsert(
        self, table: str, key_columns: Sequence[str], rows: Sequence[Mapping[str, Any]]
    ) -> None:
        """Insert rows, or overwrite only the given non-key columns of rows sharing the key"""
        raise NotImplementedError

    @abstractmethod
    async def insert_missing(
        self, table: str, key_columns: Sequence[str], rows: Sequence[Mapping[str, Any]]
    ) -> None:
        """Insert rows whose key is not present yet; existing rows are left untouched"""
        raise NotImplementedError

    @abstractmethod
    async def increment(self, table: str, key: Mapping[str, Any], column: str) -> int:
        """Add one to ``column`` of the keyed row, creating it at 1, and return the new value"""
        raise NotImplementedError

    @abstractmethod
    async def select(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        before: datetime.datetime | None = None,
        after: datetime.datetime | None = None,
        order_by: str | None = "time",
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Record]:
        """Fetch rows matching ``where`` with ``after < time < before``, ordered by ``order_by``"""
        raise NotImplementedError

    @abstractmethod
    async def delete(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        before: datetime.datetime | None = None,
    ) -> int:
        """Delete rows matching ``where`` with ``time < before``; returns how many were deleted"""
        raise NotImplementedError

    async def latest(self, table: str) -> Record | None:
        rows = await self.select(table, descending=True, limit=1)
        return rows[0] if rows else None


class MemoryStore(UpsertStore):
    """Keeps tables in process memory. Used for tests and one-off replays"""

    def __init__(self) -> None:
        self.tables: dict[str, dict[tuple[Any, ...], Record]] = {}

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        saved = copy.deepcopy(self.tables)
        try:
            yield
        except BaseException:
            self.tables = saved
            raise

    async def upsert(
        self, table: str, key_columns: Sequence[str], rows: Sequence[Mapping[str, Any]]
    ) -> None:
        target = self.tables.setdefault(table, {})
        for row in rows:
            key = tuple(row[c] for c in key_columns)
            if key in target:
                target[key].update(row)
            else:
                target[key] = dict(row)

    async def insert_missing(
        self, table: str, key_columns: Sequence[str], rows: Sequence[Mapping[str, Any]]
    ) -> None:
        target = self.tables.setdefault(table, {})
        for row in rows:
            target.setdefault(tuple(row[c] for c in key_columns), dict(row))

    async def increment(self, table: str, key: Mapping[str, Any], column: str) -> int:
        target = self.tables.setdefault(table, {})
        row = target.setdefault(tuple(key.values()), {**key, column: 0})
        row[column] = (row.get(column) or 0) + 1
        return row[column]

    def _matching(
        self,
        table: str,
        where: Mapping[str, Any] | None,
        before: datetime.datetime | None,
        after: datetime.datetime | None,
    ) -> list[tuple[tuple[Any, ...], Record]]:
        result = []
        for key, row in self.tables.get(table, {}).items():
            if where and any(row.get(c) != v for c, v in where.items()):
                continue
            if before is not None and not row["time"] < before:
                continue
            if after is not None and not row["time"] > after:
                continue
            result.append((key, row))
        return result

    async def select(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        before: datetime.datetime | None = None,
        after: datetime.datetime | None = None,
        order_by: str | None = "time",
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Record]:
        rows = [dict(row) for _, row in self._matching(table, where, before, after)]
        if order_by is not None:
            rows.sort(key=lambda row: row[order_by], reverse=descending)
        end = None if limit is None else offset + limit
        return rows[offset:end]

    async def delete(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        before: datetime.datetime | None = None,
    ) -> int:
        matching = self._matching(table, where, before, None)
        for key, _ in matching:
            del self.tables[table][key]
        return len(matching)
