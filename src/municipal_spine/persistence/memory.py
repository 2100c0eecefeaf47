"""
In-memory persistence backend.

Tables are lists of dicts; upserts are keyed by the conflict tuple. Used by
the test suite and by ``--database memory://`` dry runs.

``fault_hook`` is called before every operation as
``hook(operation, target, payload)`` and may raise to simulate a backend
failure for one specific call.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from typing import Any

from municipal_spine.core.errors import PersistenceError, ProcedureNotFoundError
from municipal_spine.persistence.base import ConnectionInfo, Procedure, Row
from municipal_spine.persistence.dialect import NOT_NULL

FaultHook = Callable[[str, str, Any], None]


def _matches(row: Row, filter: dict[str, Any] | None) -> bool:
    if not filter:
        return True
    for column, expected in filter.items():
        value = row.get(column)
        if expected is NOT_NULL:
            if value is None:
                return False
        elif value != expected:
            return False
    return True


class MemoryPersistence:
    """Dict-backed implementation of the ``Persistence`` protocol."""

    def __init__(
        self,
        procedures: dict[str, Procedure] | None = None,
        fault_hook: FaultHook | None = None,
    ):
        self.tables: dict[str, list[Row]] = {}
        self.procedures: dict[str, Procedure] = dict(procedures or {})
        self.fault_hook = fault_hook
        self.calls: list[tuple[str, str, int]] = []
        self.info = ConnectionInfo(backend="memory", persistent=False, url="memory://")

    def _before(self, operation: str, target: str, payload: Any = None) -> None:
        size = len(payload) if isinstance(payload, list) else 0
        self.calls.append((operation, target, size))
        if self.fault_hook is not None:
            self.fault_hook(operation, target, payload)

    def rows(self, table: str) -> list[Row]:
        """Direct (copied) access to a table's rows for assertions."""
        return [dict(row) for row in self.tables.get(table, [])]

    def register_procedure(self, name: str, procedure: Procedure) -> None:
        self.procedures[name] = procedure

    async def insert(self, table: str, rows: list[Row]) -> int:
        self._before("insert", table, rows)
        self.tables.setdefault(table, []).extend(copy.deepcopy(rows))
        return len(rows)

    async def upsert(self, table: str, rows: list[Row], conflict_keys: list[str]) -> int:
        self._before("upsert", table, rows)
        if not conflict_keys:
            raise PersistenceError("upsert requires conflict keys").with_context(table=table)
        target = self.tables.setdefault(table, [])
        index = {tuple(row.get(k) for k in conflict_keys): row for row in target}
        for row in rows:
            key = tuple(row.get(k) for k in conflict_keys)
            existing = index.get(key)
            if existing is not None:
                existing.update(copy.deepcopy(row))
            else:
                new_row = copy.deepcopy(row)
                target.append(new_row)
                index[key] = new_row
        return len(rows)

    async def select_column(
        self, table: str, column: str, filter: dict[str, Any] | None = None
    ) -> list[Any]:
        self._before("select", table)
        return [row.get(column) for row in self.tables.get(table, []) if _matches(row, filter)]

    async def select_rows(
        self,
        table: str,
        columns: list[str] | None = None,
        filter: dict[str, Any] | None = None,
    ) -> list[Row]:
        self._before("select", table)
        result = []
        for row in self.tables.get(table, []):
            if _matches(row, filter):
                result.append({c: row.get(c) for c in columns} if columns else dict(row))
        return result

    async def count(self, table: str, filter: dict[str, Any] | None = None) -> int:
        self._before("count", table)
        return sum(1 for row in self.tables.get(table, []) if _matches(row, filter))

    async def call_procedure(self, name: str, args: dict[str, Any] | None = None) -> Any:
        self._before("procedure", name, (args or {}).get("p_records"))
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
        self.tables.setdefault(table, [])

    async def close(self) -> None:
        return None


__all__ = ["FaultHook", "MemoryPersistence"]
