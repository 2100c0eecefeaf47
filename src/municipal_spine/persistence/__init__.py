"""
Persistence backends and the URL-driven factory.

``create_persistence(url)`` picks the backend from the URL scheme:

============================  ======================
URL                           Backend
============================  ======================
``memory://`` / ``memory``    MemoryPersistence
``sqlite:///path`` / a path   SQLitePersistence
``sqlite:///:memory:``        SQLitePersistence (in-memory)
``postgresql://...``          PostgresPersistence
============================  ======================
"""

from __future__ import annotations

from municipal_spine.core.errors import ConfigError
from municipal_spine.core.logging import get_logger
from municipal_spine.persistence.base import ConnectionInfo, Persistence, Procedure, Row
from municipal_spine.persistence.dialect import NOT_NULL
from municipal_spine.persistence.memory import MemoryPersistence
from municipal_spine.persistence.sqlite import SQLitePersistence

logger = get_logger(__name__)


def _parse_url(db: str | None) -> tuple[str, str]:
    """Parse a database URL into (scheme, target)."""
    if db is None or db in ("", "memory", "memory://"):
        return "memory", ""

    if db.startswith("sqlite:///"):
        return "sqlite", db[len("sqlite:///"):] or ":memory:"

    if db.startswith("sqlite://"):
        return "sqlite", db[len("sqlite://"):] or ":memory:"

    if db.startswith(("postgresql://", "postgres://", "postgresql+asyncpg://")):
        return "postgresql", db

    if "://" in db:
        raise ConfigError(f"Unsupported database URL scheme: {db.split('://', 1)[0]}")

    # Bare file path: SQLite file
    return "sqlite", db


def create_persistence(
    url: str | None = None,
    *,
    procedures: dict[str, Procedure] | None = None,
    pool_size: int = 5,
) -> Persistence:
    """Create a persistence backend from a database URL.

    ``procedures`` registers named procedures on the memory and SQLite
    backends; PostgreSQL resolves procedure names server-side.
    """
    scheme, target = _parse_url(url)
    if scheme == "memory":
        persistence: Persistence = MemoryPersistence(procedures=procedures)
    elif scheme == "sqlite":
        persistence = SQLitePersistence(target, url=url, procedures=procedures)
    else:
        from municipal_spine.persistence.postgres import PostgresPersistence

        persistence = PostgresPersistence(target, max_size=pool_size)
    logger.debug("persistence_created", backend=persistence.info.backend)
    return persistence


__all__ = [
    "ConnectionInfo",
    "MemoryPersistence",
    "NOT_NULL",
    "Persistence",
    "Procedure",
    "Row",
    "SQLitePersistence",
    "create_persistence",
]
