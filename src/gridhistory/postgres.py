import datetime
import functools
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Sequence

import asyncpg

from gridhistory import settings
from gridhistory.errors import StorageUnavailable
from gridhistory.store import Record, UpsertStore

_CONNECTION_ERRORS = (
    OSError,
    TimeoutError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
)


def _storage_errors(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    @functools.wraps(func)
    async def decorated(*args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except _CONNECTION_ERRORS as exc:
            raise StorageUnavailable(str(exc)) from exc
        except asyncpg.exceptions.InterfaceError as exc:
            # asyncpg reports use of a closed connection as an interface error
            store = args[0]
            if isinstance(store, PostgresStore) and store.connection.is_closed():
                raise StorageUnavailable(str(exc)) from exc
            raise

    return decorated


def _quote(column: str) -> str:
    return f'"{column}"'


def _conditions(
    where: Mapping[str, Any] | None,
    before: datetime.datetime | None,
    after: datetime.datetime | None,
) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    for column, value in (where or {}).items():
        params.append(value)
        clauses.append(f"{_quote(column)} = ${len(params)}")
    if before is not None:
        params.append(before)
        clauses.append(f'"time" < ${len(params)}')
    if after is not None:
        params.append(after)
        clauses.append(f'"time" > ${len(params)}')
    return (f"WHERE {' AND '.join(clauses)}" if clauses else ""), params


class PostgresStore(UpsertStore):
    """Upsert store over a single asyncpg connection.

    Tables are created by ``gridhistory.migrate``. Connection failures surface as
    ``StorageUnavailable``; every other database error propagates unchanged.
    """

    def __init__(self, connection: asyncpg.Connection):
        self.connection = connection

    @classmethod
    @_storage_errors
    async def connect(cls, **overrides: Any) -> "PostgresStore":
        params = {
            "host": settings.DB_HOST,
            "port": settings.DB_PORT,
            "database": settings.DB_NAME,
            "user": settings.DB_USER,
            "password": settings.DB_PASSWORD,
        }
        params.update(overrides)
        return cls(await asyncpg.connect(**params))

    async def close(self) -> None:
        await self.connection.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        try:
            async with self.connection.transaction():
                yield
        except _CONNECTION_ERRORS as exc:
            raise StorageUnavailable(str(exc)) from exc
        except asyncpg.exceptions.InterfaceError as exc:
            if self.connection.is_closed():
                raise StorageUnavailable(str(exc)) from exc
            raise

    async def _insert(
        self,
        table: str,
        key_columns: Sequence[str],
        rows: Sequence[Mapping[str, Any]],
        overwrite: bool,
    ) -> None:
        if not rows:
            return
        columns = list(rows[0])
        value_columns = [c for c in columns if c not in key_columns]
        if overwrite and value_columns:
            conflict = "DO UPDATE SET " + ", ".join(
                f"{_quote(c)} = EXCLUDED.{_quote(c)}" for c in value_columns
            )
        else:
            conflict = "DO NOTHING"
        await self.connection.executemany(
            f"""
                INSERT INTO {table} ({", ".join(_quote(c) for c in columns)})
                VALUES ({", ".join(f"${i + 1}" for i in range(len(columns)))})
                ON CONFLICT ({", ".join(_quote(c) for c in key_columns)}) {conflict}
            """,
            [tuple(row[c] for c in columns) for row in rows],
        )

    @_storage_errors
    async def upsert(
        self, table: str, key_columns: Sequence[str], rows: Sequence[Mapping[str, Any]]
    ) -> None:
        await self._insert(table, key_columns, rows, overwrite=True)

    @_storage_errors
    async def insert_missing(
        self, table: str, key_columns: Sequence[str], rows: Sequence[Mapping[str, Any]]
    ) -> None:
        await self._insert(table, key_columns, rows, overwrite=False)

    @_storage_errors
    async def increment(self, table: str, key: Mapping[str, Any], column: str) -> int:
        key_columns = list(key)
        return await self.connection.fetchval(
            f"""
                INSERT INTO {table} ({", ".join(_quote(c) for c in key_columns)}, {_quote(column)})
                VALUES ({", ".join(f"${i + 1}" for i in range(len(key_columns)))}, 1)
                ON CONFLICT ({", ".join(_quote(c) for c in key_columns)})
                    DO UPDATE SET {_quote(column)} = {table}.{_quote(column)} + 1
                RETURNING {_quote(column)}
            """,
            *key.values(),
        )

    @_storage_errors
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
        condition, params = _conditions(where, before, after)
        query = f"SELECT * FROM {table} {condition}"
        if order_by is not None:
            query += f" ORDER BY {_quote(order_by)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"
        if offset:
            params.append(offset)
            query += f" OFFSET ${len(params)}"
        return [dict(row) for row in await self.connection.fetch(query, *params)]

    @_storage_errors
    async def delete(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        before: datetime.datetime | None = None,
    ) -> int:
        condition, params = _conditions(where, before, None)
        status = await self.connection.execute(f"DELETE FROM {table} {condition}", *params)
        # Status is "DELETE <count>"
        return int(status.split()[-1])
