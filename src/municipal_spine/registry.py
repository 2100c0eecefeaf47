"""
Canonical municipality registry.

The registry seeds the name index. The in-scope allow-list is injected
(from settings) rather than hard-coded so the same pipelines can run for
another territory.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from municipal_spine.core.logging import get_logger

if TYPE_CHECKING:
    from municipal_spine.persistence.base import Persistence

logger = get_logger(__name__)

DIM_MUNICIPIO = "dim_municipio"


@dataclass(frozen=True)
class MunicipalityEntry:
    """One authoritative ``{code, canonical_name}`` pair."""

    code: str
    canonical_name: str


@runtime_checkable
class Registry(Protocol):
    async def list_municipalities(self) -> list[MunicipalityEntry]: ...


def _filter_allowed(
    entries: Iterable[MunicipalityEntry], allowed_codes: Iterable[str] | None
) -> list[MunicipalityEntry]:
    allowed = frozenset(allowed_codes or ())
    if not allowed:
        return list(entries)
    return [entry for entry in entries if entry.code in allowed]


class StaticRegistry:
    """Registry over an in-memory list (tests, CLI ``resolve`` dry runs)."""

    def __init__(
        self,
        entries: Iterable[MunicipalityEntry],
        allowed_codes: Iterable[str] | None = None,
    ):
        self._entries = _filter_allowed(entries, allowed_codes)

    async def list_municipalities(self) -> list[MunicipalityEntry]:
        return list(self._entries)


class PersistenceRegistry:
    """Reads ``dim_municipio (ine_code, municipio_nombre)`` from persistence."""

    def __init__(
        self,
        persistence: Persistence,
        allowed_codes: Iterable[str] | None = None,
        table: str = DIM_MUNICIPIO,
    ):
        self.persistence = persistence
        self.allowed_codes = frozenset(allowed_codes or ())
        self.table = table

    async def list_municipalities(self) -> list[MunicipalityEntry]:
        rows = await self.persistence.select_rows(self.table, ["ine_code", "municipio_nombre"])
        entries = [
            MunicipalityEntry(code=str(row["ine_code"]), canonical_name=row["municipio_nombre"])
            for row in sorted(rows, key=lambda r: str(r["ine_code"]))
            if row.get("ine_code") and row.get("municipio_nombre")
        ]
        entries = _filter_allowed(entries, self.allowed_codes)
        logger.debug("registry_loaded", table=self.table, municipalities=len(entries))
        return entries


async def seed_registry(
    persistence: Persistence, entries: Iterable[MunicipalityEntry]
) -> int:
    """Upsert registry entries into ``dim_municipio``."""
    rows = [{"ine_code": e.code, "municipio_nombre": e.canonical_name} for e in entries]
    if not rows:
        return 0
    return await persistence.upsert(DIM_MUNICIPIO, rows, ["ine_code"])


__all__ = [
    "DIM_MUNICIPIO",
    "MunicipalityEntry",
    "PersistenceRegistry",
    "Registry",
    "StaticRegistry",
    "seed_registry",
]
