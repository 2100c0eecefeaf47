"""
SQLite persistence backend.

Runs stdlib ``sqlite3`` calls in a worker thread via ``asyncio.to_thread``
so the pipeline keeps one cooperative control flow. Each write call is one
transaction: a chunk is either applied fully or rolled back.

SQLite has no stored procedures; named procedures are looked up in the
registry passed at construction and raise ``ProcedureNotFoundError`` when
absent, which sends the aggregator down its in-process fallback.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from municipal_spine.core.errors import PersistenceError, ProcedureNotFoundError
from municipal_spine.core.logging import get_logger
from municipal_spine.persistence.base import ConnectionInfo, Procedure, Row
from municipal_spine.persistence.dialect import SQLiteDialect

logger = get_logger(__name__)


def _encode(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return value


class SQLitePersistence:
    """``Persistence`` implementation over a single sqlite3 connection."""

    def __init__(
        self,
        path: str = ":memory:",
        *,
        url: str | None = None,
        procedures: dict[str, Procedure] | None = None,
    ):
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self.dialect = SQLiteDialect()
        self.procedures: dict[str, Procedure] = dict(procedures or {})
        self.info = ConnectionInfo(
            backend="sqlite",
            persistent=path != ":memory:",
            url=url or path,
            resolved_path=str(Path(path).resolve()) if path != ":memory:" else None,
        )

    # ── Sync helpers (run in a worker thread) ────────────────────────────

    def _write_many(self, sql: str, params: list[tuple[Any, ...]], table: str) -> int:
        with self._lock:
            try:
                with self._conn:
                    self._conn.executemany(sql, params)
            except sqlite3.Error as e:
                raise PersistenceError(str(e), cause=e).with_context(table=table) from e
        return len(params)

    def _query(self, sql: str, params: list[Any], table: str) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(str(e), cause=e).with_context(table=table) from e

    def _execute(self, sql: str, table: str) -> None:
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(sql)
            except sqlite3.Error as e:
                raise PersistenceError(str(e), cause=e).with_context(table=table) from e

    # ── Protocol ─────────────────────────────────────────────────────────

    async def insert(self, table: str, rows: list[Row]) -> int:
        if not rows:
            return 0
        columns = list(rows[0].keys())
        sql = self.dialect.insert(table, columns)
        params = [tuple(_encode(row.get(c)) for c in columns) for row in rows]
        return await asyncio.to_thread(self._write_many, sql, params, table)

    async def upsert(self, table: str, rows: list[Row], conflict_keys: list[str]) -> int:
        if not rows:
            return 0
        columns = list(rows[0].keys())
        sql = self.dialect.upsert(table, columns, conflict_keys)
        params = [tuple(_encode(row.get(c)) for c in columns) for row in rows]
        return await asyncio.to_thread(self._write_many, sql, params, table)

    async def select_column(
        self, table: str, column: str, filter: dict[str, Any] | None = None
    ) -> list[Any]:
        sql, params = self.dialect.select(table, [column], filter)
        rows = await asyncio.to_thread(self._query, sql, params, table)
        return [row[0] for row in rows]

    async def select_rows(
        self,
        table: str,
        columns: list[str] | None = None,
        filter: dict[str, Any] | None = None,
    ) -> list[Row]:
        sql, params = self.dialect.select(table, columns, filter)
        rows = await asyncio.to_thread(self._query, sql, params, table)
        return [dict(row) for row in rows]

    async def count(self, table: str, filter: dict[str, Any] | None = None) -> int:
        sql, params = self.dialect.count(table, filter)
        rows = await asyncio.to_thread(self._query, sql, params, table)
        return int(rows[0][0])

    async def call_procedure(self, name: str, args: dict[str, Any] | None = None) -> Any:
        procedure = self.procedures.get(name)
        if procedure is None:
            raise ProcedureNotFoundError(name)
        return await procedure(self, args or {})

    async def create_table(
        self,
        table: str,
        columns: dict[str, str],
        unique: list[str] | None = None,
        primary_key: str | None = None,
    ) -> None:
        sql = self.dialect.create_table(table, columns, unique, primary_key)
        await asyncio.to_thread(self._execute, sql, table)
        logger.debug("table_ensured", table=table, backend="sqlite")

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


__all__ = ["SQLitePersistence"]
