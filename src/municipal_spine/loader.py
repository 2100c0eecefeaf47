"""
Batch loader: chunked bronze inserts and silver upserts.

Each silver chunk goes through:

1. Deduplicate by composite key (first occurrence kept).
2. Referential gate: drop rows whose required parent key does not exist.
3. Soft validation: null out a row's own reference that does not exist.
4. Upsert (generic ``ON CONFLICT`` or a named procedure).

Null key fields are stored as ``NULL_KEY`` (``""``) first: UNIQUE
constraints treat NULLs as distinct, so a NULL key never hits
``ON CONFLICT``.

A failing chunk is logged with one sample row and counted in ``errors``;
the remaining chunks are still attempted. The loader never returns a
global success flag: callers inspect ``errors``.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import asdict, dataclass
from typing import Any

from municipal_spine.core.errors import PersistenceError, ProcedureNotFoundError
from municipal_spine.core.logging import get_logger
from municipal_spine.datasets.schema import ReferenceGate
from municipal_spine.persistence.base import Persistence, Row

logger = get_logger(__name__)

MAX_MISSING_SAMPLE = 10

NULL_KEY = ""


@dataclass
class LoadResult:
    """Counters for one load call."""

    inserted: int = 0
    updated: int = 0
    errors: int = 0
    skipped_dedup: int = 0
    skipped_invalid_ref: int = 0
    nulled_refs: int = 0

    @property
    def loaded(self) -> int:
        return self.inserted + self.updated

    def merge(self, other: LoadResult) -> LoadResult:
        self.inserted += other.inserted
        self.updated += other.updated
        self.errors += other.errors
        self.skipped_dedup += other.skipped_dedup
        self.skipped_invalid_ref += other.skipped_invalid_ref
        self.nulled_refs += other.nulled_refs
        return self

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def chunked(rows: Sequence[Row], size: int) -> Iterator[list[Row]]:
    for start in range(0, len(rows), size):
        yield list(rows[start:start + size])


def composite_key(row: Row, key_fields: Sequence[str]) -> tuple[Any, ...]:
    return tuple(row.get(k) for k in key_fields)


def fill_null_keys(rows: Sequence[Row], key_fields: Sequence[str]) -> int:
    """Replace None in ``key_fields`` with ``NULL_KEY``; returns the values filled."""
    filled = 0
    for row in rows:
        for key in key_fields:
            if row.get(key) is None:
                row[key] = NULL_KEY
                filled += 1
    return filled


def deduplicate_batch(
    rows: Sequence[Row], key_fields: Sequence[str], *, table: str | None = None
) -> tuple[list[Row], list[Row]]:
    """Split ``rows`` into (kept, dropped); the first row per key is kept."""
    seen: set[tuple[Any, ...]] = set()
    kept: list[Row] = []
    dropped: list[Row] = []
    for row in rows:
        key = composite_key(row, key_fields)
        if key in seen:
            dropped.append(row)
            logger.debug("duplicate_row_dropped", table=table, key=list(key))
            continue
        seen.add(key)
        kept.append(row)
    return kept, dropped


def partition_by_reference(
    rows: Sequence[Row], field: str, valid_keys: set[Any]
) -> tuple[list[Row], list[Row]]:
    """Split ``rows`` into (valid, invalid) by ``row[field] in valid_keys``."""
    valid: list[Row] = []
    invalid: list[Row] = []
    for row in rows:
        (valid if row.get(field) in valid_keys else invalid).append(row)
    return valid, invalid


def soft_validate_reference(rows: Sequence[Row], field: str, valid_keys: set[Any]) -> int:
    """Null out non-null ``row[field]`` values missing from ``valid_keys``."""
    nulled = 0
    for row in rows:
        value = row.get(field)
        if value is not None and value not in valid_keys:
            row[field] = None
            nulled += 1
    return nulled


def _reported_error(result: Any) -> str | None:
    """Error message from a procedure's result object, if it reports one."""
    if isinstance(result, dict) and result.get("error"):
        return str(result["error"])
    return None


class BatchLoader:
    """Chunked, fault-isolated writer over a ``Persistence`` backend."""

    def __init__(self, persistence: Persistence, batch_size: int = 500):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.persistence = persistence
        self.batch_size = batch_size

    async def _valid_keys(self, gate: ReferenceGate) -> set[Any]:
        values = await self.persistence.select_column(gate.parent_table, gate.parent_column)
        return {v for v in values if v is not None}

    async def load_bronze(self, table: str, records: Sequence[Row]) -> LoadResult:
        """Append raw records; bronze rows are never updated."""
        result = LoadResult()
        for number, chunk in enumerate(chunked(records, self.batch_size), start=1):
            try:
                await self.persistence.insert(table, chunk)
            except Exception as e:
                result.errors += len(chunk)
                logger.error(
                    "bronze_chunk_failed",
                    table=table,
                    chunk=number,
                    rows=len(chunk),
                    error=str(e),
                    sample=chunk[0],
                )
                continue
            result.inserted += len(chunk)
        logger.info("bronze_loaded", table=table, **result.to_dict())
        return result

    async def load_silver(
        self,
        table: str,
        rows: Sequence[Row],
        key_fields: Sequence[str],
        *,
        reference: ReferenceGate | None = None,
        soft_reference: ReferenceGate | None = None,
        procedure: str | None = None,
    ) -> LoadResult:
        """Deduplicate, gate, and upsert ``rows`` chunk by chunk."""
        result = LoadResult()
        key_fields = list(key_fields)

        parent_keys = await self._valid_keys(reference) if reference else None
        soft_keys = await self._valid_keys(soft_reference) if soft_reference else None
        missing_sample: list[Any] = []

        for number, chunk in enumerate(chunked(rows, self.batch_size), start=1):
            fill_null_keys(chunk, key_fields)
            chunk, dropped = deduplicate_batch(chunk, key_fields, table=table)
            result.skipped_dedup += len(dropped)
            if dropped:
                logger.warning("duplicates_dropped", table=table, chunk=number, count=len(dropped))

            if reference is not None and parent_keys is not None:
                chunk, invalid = partition_by_reference(chunk, reference.field, parent_keys)
                result.skipped_invalid_ref += len(invalid)
                for row in invalid:
                    if len(missing_sample) >= MAX_MISSING_SAMPLE:
                        break
                    value = row.get(reference.field)
                    if value not in missing_sample:
                        missing_sample.append(value)

            if soft_reference is not None and soft_keys is not None:
                result.nulled_refs += soft_validate_reference(chunk, soft_reference.field, soft_keys)

            if not chunk:
                continue

            try:
                procedure = await self._write(table, chunk, key_fields, procedure)
            except Exception as e:
                result.errors += len(chunk)
                logger.error(
                    "silver_chunk_failed",
                    table=table,
                    chunk=number,
                    rows=len(chunk),
                    error=str(e),
                    sample=chunk[0],
                )
                continue
            result.updated += len(chunk)

        if result.skipped_invalid_ref and reference is not None:
            logger.warning(
                "referential_gap_detected",
                table=table,
                field=reference.field,
                parent_table=reference.parent_table,
                dropped=result.skipped_invalid_ref,
                sample=missing_sample,
            )
        if result.nulled_refs and soft_reference is not None:
            logger.warning(
                "invalid_references_nulled",
                table=table,
                field=soft_reference.field,
                count=result.nulled_refs,
            )
        logger.info("silver_loaded", table=table, **result.to_dict())
        return result

    async def _write(
        self,
        table: str,
        chunk: list[Row],
        key_fields: list[str],
        procedure: str | None,
    ) -> str | None:
        """Write one chunk; returns the procedure to use for the next chunk."""
        if procedure:
            try:
                outcome = await self.persistence.call_procedure(procedure, {"p_records": chunk})
            except ProcedureNotFoundError:
                logger.warning("upsert_procedure_missing", table=table, procedure=procedure)
            else:
                error = _reported_error(outcome)
                if error:
                    raise PersistenceError(error).with_context(table=table, procedure=procedure)
                return procedure
        await self.persistence.upsert(table, chunk, key_fields)
        return None

    async def upsert_rows(
        self, table: str, rows: Sequence[Row], key_fields: Sequence[str]
    ) -> LoadResult:
        """Plain deduplicated upsert (used for fact tables)."""
        return await self.load_silver(table, rows, key_fields)


__all__ = [
    "BatchLoader",
    "LoadResult",
    "MAX_MISSING_SAMPLE",
    "chunked",
    "composite_key",
    "NULL_KEY",
    "deduplicate_batch",
    "fill_null_keys",
    "partition_by_reference",
    "soft_validate_reference",
]
