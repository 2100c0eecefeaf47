"""
PostgreSQL persistence backend (asyncpg).

The connection pool is created lazily on first use so that
``create_persistence`` stays synchronous. Stored procedures are invoked
with named-argument notation, ``SELECT name(p_records => $1::jsonb)``,
matching how the database-side functions declare their parameters.
A missing function (SQLSTATE 42883) surfaces as ``ProcedureNotFoundError``.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

import asyncpg

from municipal_spine.core.errors import PersistenceError, ProcedureNotFoundError
from municipal_spine.core.logging import get_logger
from municipal_spine.persistence.base import ConnectionInfo, Row
from municipal_spine.persistence.dialect import PostgreSQLDialect, ident

if TYPE_CHECKING:
    from asyncpg import Pool

logger = get_logger(__name__)


def normalize_database_url(url: str) -> str:
    """Normalize a database URL for asyncpg.

    Examples:
        >>> normalize_database_url("postgresql+asyncpg://localhost/db")
        'postgresql://localhost/db'
        >>> normalize_database_url("postgresql://localhost/db?sslmode=require")
        'postgresql://localhost/db'
    """
    if url.startswith("postgresql+asyncpg://"):
        url = url.replace("postgresql+asyncpg://", "postgresql://", 1)
    if "?sslmode=" in url or "&sslmode=" in url:
        url = re.sub(r"[?&]sslmode=[^&]*", "", url)
        url = url.rstrip("?&")
        if "?" not in url and "&" in url:
            url = url.replace("&", "?", 1)
    return url


def _encode(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return value


class PostgresPersistence:
    """``Persistence`` implementation over an asyncpg pool."""

    def __init__(self, url: str, *, min_size: int = 1, max_size: int = 5):
        self.url = normalize_database_url(url)
        self.min_size = min_size
        self.max_size = max_size
        self.dialect = PostgreSQLDialect()
        self._pool: Pool | None = None
        self.info = ConnectionInfo(backend="postgresql", persistent=True, url=url)

    async def _get_pool(self) -> Pool:
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.url, min_size=self.min_size, max_size=self.max_size
                )
            except (OSError, asyncpg.PostgresError) as e:
                raise PersistenceError(f"Could not connect to PostgreSQL: {e}", cause=e) from e
            logger.info("postgres_pool_created", min_size=self.min_size, max_size=self.max_size)
        return self._pool

    async def _write_many(self, sql: str, params: list[tuple[Any, ...]], table: str) -> int:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(sql, params)
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), cause=e).with_context(table=table) from e
        return len(params)

    async def _fetch(self, sql: str, params: list[Any], table: str) -> list[Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                return await conn.fetch(sql, *params)
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), cause=e).with_context(table=table) from e

    async def insert(self, table: str, rows: list[Row]) -> int:
        if not rows:
            return 0
        columns = list(rows[0].keys())
        params = [tuple(_encode(row.get(c)) for c in columns) for row in rows]
        return await self._write_many(self.dialect.insert(table, columns), params, table)

    async def upsert(self, table: str, rows: list[Row], conflict_keys: list[str]) -> int:
        if not rows:
            return 0
        columns = list(rows[0].keys())
        params = [tuple(_encode(row.get(c)) for c in columns) for row in rows]
        sql = self.dialect.upsert(table, columns, conflict_keys)
        return await self._write_many(sql, params, table)

    async def select_column(
        self, table: str, column: str, filter: dict[str, Any] | None = None
    ) -> list[Any]:
        sql, params = self.dialect.select(table, [column], filter)
        return [record[0] for record in await self._fetch(sql, params, table)]

    async def select_rows(
        self,
        table: str,
        columns: list[str] | None = None,
        filter: dict[str, Any] | None = None,
    ) -> list[Row]:
        sql, params = self.dialect.select(table, columns, filter)
        return [dict(record) for record in await self._fetch(sql, params, table)]

    async def count(self, table: str, filter: dict[str, Any] | None = None) -> int:
        sql, params = self.dialect.count(table, filter)
        records = await self._fetch(sql, params, table)
        return int(records[0][0])

    async def call_procedure(self, name: str, args: dict[str, Any] | None = None) -> Any:
        pool = await self._get_pool()
        args = args or {}
        params = [_encode(value) for value in args.values()]
        named = ", ".join(
            f"{ident(key)} => ${i}::jsonb" if isinstance(value, (dict, list)) else f"{ident(key)} => ${i}"
            for i, (key, value) in enumerate(args.items(), start=1)
        )
        sql = f"SELECT {ident(name)}({named})"
        try:
            async with pool.acquire() as conn:
                return await conn.fetchval(sql, *params)
        except asyncpg.exceptions.UndefinedFunctionError as e:
            raise ProcedureNotFoundError(name, cause=e) from e
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), cause=e).with_context(procedure=name) from e

    async def create_table(
        self,
        table: str,
        columns: dict[str, str],
        unique: list[str] | None = None,
        primary_key: str | None = None,
    ) -> None:
        pool = await self._get_pool()
        sql = self.dialect.create_table(table, columns, unique, primary_key)
        try:
            async with pool.acquire() as conn:
                await conn.execute(sql)
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), cause=e).with_context(table=table) from e

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("postgres_pool_closed")


__all__ = ["PostgresPersistence", "normalize_database_url"]
