"""
Schema bootstrap for empty databases.

Creates the ledger tables, ``dim_municipio`` and every bronze, silver and
fact table declared by the dataset descriptors with
``CREATE TABLE IF NOT EXISTS``. Silver and fact tables get a UNIQUE
constraint on their composite key so generic upserts have a conflict
target. This is not a migration tool: existing tables are left as they are.
"""

from __future__ import annotations

from collections.abc import Iterable

from municipal_spine.core.logging import get_logger
from municipal_spine.datasets.schema import DatasetSpec
from municipal_spine.ledger import RUN_COLUMNS, RUNS_TABLE, STEP_COLUMNS, STEPS_TABLE
from municipal_spine.persistence.base import Persistence
from municipal_spine.registry import DIM_MUNICIPIO

logger = get_logger(__name__)

BRONZE_COLUMNS = {
    "source_dataset_id": "text",
    "source_resource_id": "text",
    "raw_row": "json",
    "ingested_at": "text",
}

DIM_MUNICIPIO_COLUMNS = {
    "ine_code": "text",
    "municipio_nombre": "text",
    "updated_at": "text",
}


async def ensure_schema(persistence: Persistence, datasets: Iterable[DatasetSpec]) -> list[str]:
    """Create all tables for ``datasets``; returns the table names touched."""
    tables: list[str] = []

    async def create(table: str, columns: dict[str, str], **kwargs) -> None:
        if table in tables:
            return
        await persistence.create_table(table, columns, **kwargs)
        tables.append(table)

    await create(RUNS_TABLE, RUN_COLUMNS, primary_key="id")
    await create(STEPS_TABLE, STEP_COLUMNS, primary_key="id")
    await create(DIM_MUNICIPIO, DIM_MUNICIPIO_COLUMNS, primary_key="ine_code")

    for dataset in datasets:
        for resource in dataset.resources:
            await create(resource.bronze_table, BRONZE_COLUMNS)
            await create(
                resource.silver_table,
                resource.silver_columns(),
                unique=list(resource.key_fields),
            )
        for fact in dataset.facts:
            await create(fact.table, fact.fact_columns(), unique=list(fact.key_columns))

    logger.info("schema_ensured", backend=persistence.info.backend, tables=len(tables))
    return tables


__all__ = ["BRONZE_COLUMNS", "DIM_MUNICIPIO_COLUMNS", "ensure_schema"]
