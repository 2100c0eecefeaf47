"""
Centralized settings for municipal-spine.

``MunicipalSettings`` is the single validated source of configuration. All
fields can be set through ``MUNICIPAL_*`` environment variables (for example
``MUNICIPAL_DATABASE_URL=postgresql://...``) or a ``.env`` file.

The allow-list of in-scope municipality codes is configuration, not a
module constant: point ``MUNICIPAL_ALLOWED_CODES`` at another territory's
codes and the same pipelines run there. An empty allow-list disables the
filter.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# INE codes of the 31 municipalities of Tenerife
TENERIFE_CODES: frozenset[str] = frozenset({
    "38001", "38004", "38005", "38006", "38010", "38011", "38012", "38015",
    "38017", "38018", "38019", "38020", "38022", "38023", "38025", "38026",
    "38028", "38031", "38032", "38034", "38035", "38038", "38039", "38040",
    "38041", "38042", "38043", "38044", "38046", "38051", "38052",
})

DEFAULT_CKAN_BASE_URL = "https://datos.tenerife.es/ckan/api/3/action"


class MunicipalSettings(BaseSettings):
    """municipal-spine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MUNICIPAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(default="sqlite:///data/municipal.db")
    database_pool_size: int = Field(default=5)

    # ── Loading ──────────────────────────────────────────────────
    batch_size: int = Field(default=500, description="Rows per upsert chunk")

    # ── Sources ──────────────────────────────────────────────────
    ckan_base_url: str = Field(default=DEFAULT_CKAN_BASE_URL)
    page_size: int = Field(default=1000)
    page_delay_seconds: float = Field(default=0.2)
    http_timeout_seconds: float = Field(default=30.0)
    nomenclator_path: str | None = Field(default=None)
    wikidata_delay_seconds: float = Field(default=1.0)
    resource_ids: dict[str, str] = Field(
        default_factory=dict,
        description="Resource id overrides keyed by \"dataset.resource\"",
    )

    # ── Domain ───────────────────────────────────────────────────
    allowed_codes: Annotated[frozenset[str], NoDecode] = Field(default=TENERIFE_CODES)
    match_threshold: int = Field(default=5, description="Minimum fallback substring score")
    target_year: int = Field(default=2026, description="Year sports events must fall in")
    population_year: int = Field(default=2025)
    snapshot_date: str = Field(default="2025-01-01")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")
    service_name: str = Field(default="municipal-spine")

    @field_validator("allowed_codes", mode="before")
    @classmethod
    def _split_codes(cls, value: object) -> object:
        if isinstance(value, str):
            return frozenset(code.strip() for code in value.split(",") if code.strip())
        return value

    @field_validator("batch_size", "page_size")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @property
    def json_logs(self) -> bool:
        return self.log_format.lower() == "json"


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, MunicipalSettings] = {}


def get_settings(*, _force_reload: bool = False) -> MunicipalSettings:
    """Load, validate, and cache a :class:`MunicipalSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = MunicipalSettings()
    _settings_cache["default"] = settings
    return settings


def reset_settings() -> None:
    """Drop the cached settings (used by tests after changing env vars)."""
    _settings_cache.clear()


__all__ = [
    "DEFAULT_CKAN_BASE_URL",
    "MunicipalSettings",
    "TENERIFE_CODES",
    "get_settings",
    "reset_settings",
]
