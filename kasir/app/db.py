import json
from contextlib import asynccontextmanager
from decimal import Decimal
from functools import partial
from typing import Any, Optional, Sequence

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import set_json_loads

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from .config import settings
from .errors import BackendError
from .query import Query, QueryResult, compile_count, compile_select


async def _configure(conn: psycopg.AsyncConnection) -> None:
    # Embedded relations come back as jsonb; keep their amounts exact.
    set_json_loads(partial(json.loads, parse_float=Decimal), conn)


def create_pool(conninfo: Optional[str] = None) -> AsyncConnectionPool:
    # open=False: the pool is opened explicitly from the app lifespan.
    return AsyncConnectionPool(
        conninfo=conninfo or settings.db_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        kwargs={"row_factory": dict_row},
        configure=_configure,
        open=False,
    )


class PostgresBackend:
    """Table-query backend over the hosted Postgres (select/filter/order/range/count, insert, update)."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    @asynccontextmanager
    async def _conn(self, timeout: Optional[float] = None):
        # The pool commits when the block exits cleanly and rolls back on error.
        try:
            async with self.pool.connection(timeout=timeout) as conn:
                yield conn
        except (psycopg.Error, PoolTimeout) as exc:
            raise BackendError(str(exc)) from exc

    async def fetch(self, query: Query) -> QueryResult:
        async with self._conn() as conn:
            async with conn.cursor() as cur:
                count = None
                if query.count == "exact":
                    stmt, params = compile_count(query)
                    await cur.execute(stmt, params)
                    row = await cur.fetchone()
                    count = int(row["count"]) if row else 0
                if query.head:
                    return QueryResult(rows=[], count=count)
                stmt, params = compile_select(query)
                await cur.execute(stmt, params)
                rows = await cur.fetchall()
                return QueryResult(rows=list(rows or []), count=count)

    async def insert(self, table: str, rows: Sequence[dict]) -> list[dict]:
        out: list[dict] = []
        if not rows:
            return out
        async with self._conn() as conn:
            async with conn.cursor() as cur:
                # One statement per row, all inside the same transaction.
                for row in rows:
                    cols = list(row.keys())
                    stmt = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
                        sql.Identifier(table),
                        sql.SQL(", ").join(sql.Identifier(c) for c in cols),
                        sql.SQL(", ").join(sql.Placeholder() for _ in cols),
                    )
                    await cur.execute(stmt, [row[c] for c in cols])
                    created = await cur.fetchone()
                    if created:
                        out.append(created)
        return out

    async def update(self, table: str, values: dict, **match: Any) -> list[dict]:
        if not values:
            raise ValueError("no values to update")
        if not match:
            # Never issue an unscoped UPDATE.
            raise ValueError("update requires at least one match column")
        sets = list(values.keys())
        keys = list(match.keys())
        stmt = sql.SQL("UPDATE {} SET {} WHERE {} RETURNING *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in sets),
            sql.SQL(" AND ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in keys),
        )
        params = [values[c] for c in sets] + [match[c] for c in keys]
        async with self._conn() as conn:
            async with conn.cursor() as cur:
                await cur.execute(stmt, params)
                return list(await cur.fetchall() or [])

    async def ping(self, timeout: float = 5.0) -> bool:
        async with self._conn(timeout=timeout) as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1 AS ok")
                row = await cur.fetchone()
                return bool(row and row["ok"] == 1)
