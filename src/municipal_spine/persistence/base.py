"""
Persistence collaborator contract.

The pipeline only ever talks to storage through this protocol: insert,
conflict-aware upsert, column/row selects, counts, and named procedure
calls. Backends report failures by raising ``PersistenceError`` (or
``ProcedureNotFoundError`` when a procedure is not provisioned).

Procedures on the non-PostgreSQL backends are plain async callables
registered by name and invoked as ``await proc(persistence, args)``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

Row = dict[str, Any]
Procedure = Callable[["Persistence", dict[str, Any]], Awaitable[Any]]


@runtime_checkable
class Persistence(Protocol):
    """Async storage contract used by the loader, aggregator and ledger."""

    info: ConnectionInfo

    async def insert(self, table: str, rows: list[Row]) -> int: ...

    async def upsert(self, table: str, rows: list[Row], conflict_keys: list[str]) -> int: ...

    async def select_column(
        self, table: str, column: str, filter: dict[str, Any] | None = None
    ) -> list[Any]: ...

    async def select_rows(
        self,
        table: str,
        columns: list[str] | None = None,
        filter: dict[str, Any] | None = None,
    ) -> list[Row]: ...

    async def count(self, table: str, filter: dict[str, Any] | None = None) -> int: ...

    async def call_procedure(self, name: str, args: dict[str, Any] | None = None) -> Any: ...

    async def create_table(
        self,
        table: str,
        columns: dict[str, str],
        unique: list[str] | None = None,
        primary_key: str | None = None,
    ) -> None: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class ConnectionInfo:
    """Metadata about the chosen persistence backend."""

    backend: str
    """Backend identifier: ``"memory"``, ``"sqlite"`` or ``"postgresql"``."""

    persistent: bool
    """Whether data survives process exit."""

    url: str
    """The original URL or path used to create the backend."""

    resolved_path: str | None = None
    """For file-based SQLite, the resolved absolute path."""

    @property
    def is_sqlite(self) -> bool:
        return self.backend == "sqlite"

    @property
    def is_postgres(self) -> bool:
        return self.backend == "postgresql"


__all__ = ["ConnectionInfo", "Persistence", "Procedure", "Row"]
