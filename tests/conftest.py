"""
Shared pytest fixtures for municipal-spine tests.

This module provides:
- In-memory and SQLite persistence backends
- A registry of the Tenerife municipalities
- Test settings (no page delays, small batches)
- Logging context cleanup between tests
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import pytest_asyncio
import structlog

# Ensure municipal_spine is importable without an install
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from municipal_spine.core.logging import clear_context
from municipal_spine.core.settings import MunicipalSettings, reset_settings
from municipal_spine.persistence import MemoryPersistence, SQLitePersistence
from municipal_spine.registry import MunicipalityEntry, StaticRegistry

TENERIFE_MUNICIPALITIES = [
    ("38001", "Adeje"),
    ("38004", "Arafo"),
    ("38005", "Arico"),
    ("38006", "Arona"),
    ("38010", "Buenavista del Norte"),
    ("38011", "Candelaria"),
    ("38012", "Fasnia"),
    ("38015", "Garachico"),
    ("38017", "Granadilla de Abona"),
    ("38018", "Guancha (La)"),
    ("38019", "Guía de Isora"),
    ("38020", "Güímar"),
    ("38022", "Icod de los Vinos"),
    ("38023", "San Cristóbal de La Laguna"),
    ("38025", "Matanza de Acentejo (La)"),
    ("38026", "Orotava (La)"),
    ("38028", "Puerto de la Cruz"),
    ("38031", "Realejos (Los)"),
    ("38032", "Rosario (El)"),
    ("38034", "San Juan de la Rambla"),
    ("38035", "San Miguel de Abona"),
    ("38038", "Santa Cruz de Tenerife"),
    ("38039", "Santa Úrsula"),
    ("38040", "Santiago del Teide"),
    ("38041", "Sauzal (El)"),
    ("38042", "Silos (Los)"),
    ("38043", "Tacoronte"),
    ("38044", "Tanque (El)"),
    ("38046", "Tegueste"),
    ("38051", "Victoria de Acentejo (La)"),
    ("38052", "Vilaflor de Chasna"),
]


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _clean_state(monkeypatch):
    """Clear structlog contextvars, logging config and cached settings around each test."""
    for var in ("MUNICIPAL_DATABASE_URL", "MUNICIPAL_ALLOWED_CODES", "MUNICIPAL_BATCH_SIZE"):
        monkeypatch.delenv(var, raising=False)
    clear_context()
    reset_settings()
    yield
    clear_context()
    reset_settings()
    structlog.reset_defaults()


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def settings() -> MunicipalSettings:
    """Settings for tests: memory database, no page delay."""
    return MunicipalSettings(
        _env_file=None,
        database_url="memory://",
        batch_size=500,
        page_size=100,
        page_delay_seconds=0,
        wikidata_delay_seconds=0,
    )


# =============================================================================
# Persistence
# =============================================================================


@pytest.fixture
def memory_persistence() -> MemoryPersistence:
    return MemoryPersistence()


@pytest_asyncio.fixture
async def sqlite_persistence():
    persistence = SQLitePersistence(":memory:")
    yield persistence
    await persistence.close()


# =============================================================================
# Registry
# =============================================================================


@pytest.fixture
def tenerife_entries() -> list[MunicipalityEntry]:
    return [MunicipalityEntry(code, name) for code, name in TENERIFE_MUNICIPALITIES]


@pytest.fixture
def tenerife_registry(tenerife_entries) -> StaticRegistry:
    return StaticRegistry(tenerife_entries)
