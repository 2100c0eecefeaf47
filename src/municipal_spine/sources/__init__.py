"""Upstream data sources and the factory that picks one per dataset."""

from __future__ import annotations

from typing import TYPE_CHECKING

from municipal_spine.core.errors import ConfigError
from municipal_spine.sources.base import RawRecord, Source, StaticSource, drain
from municipal_spine.sources.ckan import CkanSource
from municipal_spine.sources.nomenclator import NomenclatorSource
from municipal_spine.sources.wikidata import WikidataSource

if TYPE_CHECKING:
    from municipal_spine.core.settings import MunicipalSettings
    from municipal_spine.datasets.schema import DatasetSpec


def create_source(dataset: DatasetSpec, settings: MunicipalSettings) -> Source:
    """Build the source a dataset declares (``ckan``, ``nomenclator``, ``wikidata``)."""
    if dataset.source_kind == "ckan":
        return CkanSource(settings.ckan_base_url, timeout=settings.http_timeout_seconds)
    if dataset.source_kind == "nomenclator":
        if not settings.nomenclator_path:
            raise ConfigError("MUNICIPAL_NOMENCLATOR_PATH is required for the nomenclator dataset")
        return NomenclatorSource(
            settings.nomenclator_path,
            settings.allowed_codes,
            year=settings.population_year,
            snapshot_date=settings.snapshot_date,
        )
    if dataset.source_kind == "wikidata":
        return WikidataSource(
            settings.allowed_codes,
            delay=settings.wikidata_delay_seconds,
            timeout=settings.http_timeout_seconds,
        )
    raise ConfigError(f"Unknown source kind: {dataset.source_kind}")


__all__ = [
    "CkanSource",
    "NomenclatorSource",
    "RawRecord",
    "Source",
    "StaticSource",
    "WikidataSource",
    "create_source",
    "drain",
]
