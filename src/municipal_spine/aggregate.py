"""
Gold-layer fact refresh.

The preferred path pushes aggregation down to a named database procedure
and reads back the fact row count. When the procedure is missing or
fails, silver rows with a municipality code are grouped in-process and
the fact rows are upserted through the batch loader. Groups that no
longer have silver rows keep their key with zeroed totals.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from municipal_spine.core.errors import PersistenceError
from municipal_spine.core.logging import get_logger
from municipal_spine.core.timestamps import to_iso8601, utc_now
from municipal_spine.datasets.schema import MUNICIPALITY_CODE, FactSpec
from municipal_spine.loader import BatchLoader, fill_null_keys
from municipal_spine.persistence.base import Persistence, Row
from municipal_spine.persistence.dialect import NOT_NULL

logger = get_logger(__name__)


@dataclass
class AggregateResult:
    table: str
    refreshed: int
    method: str
    errors: int = 0


def _to_number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def group_facts(rows: Iterable[Row], fact: FactSpec) -> list[Row]:
    """Group silver rows by ``fact.group_by``, counting and summing measures.

    Attributes keep the first non-null value seen per group.
    """
    groups: dict[tuple[Any, ...], Row] = {}
    for row in rows:
        key = tuple(row.get(column) for column in fact.group_by)
        acc = groups.get(key)
        if acc is None:
            acc = dict(zip(fact.key_columns, key))
            acc.update(dict.fromkeys(fact.attributes))
            acc.update(_zeroed(fact))
            groups[key] = acc
        for attribute, source in fact.attributes.items():
            if acc[attribute] is None:
                acc[attribute] = row.get(source)
        if fact.count_column:
            acc[fact.count_column] += 1
        for measure, source in fact.measures.items():
            acc[measure] += _to_number(row.get(source))
    return list(groups.values())


def _zeroed(fact: FactSpec) -> Row:
    totals: Row = {measure: 0 for measure in fact.measures}
    if fact.count_column:
        totals[fact.count_column] = 0
    return totals


def _split_filter(source_filter: dict[str, Any]) -> tuple[dict[str, Any], dict[str, frozenset[Any]]]:
    """Split into SQL equality filters and in-process membership filters."""
    equality: dict[str, Any] = {}
    members: dict[str, frozenset[Any]] = {}
    for column, value in source_filter.items():
        if isinstance(value, (set, frozenset, tuple, list)):
            members[column] = frozenset(value)
        else:
            equality[column] = value
    return equality, members


class Aggregator:
    """Recomputes fact tables from silver tables."""

    def __init__(self, persistence: Persistence, loader: BatchLoader):
        self.persistence = persistence
        self.loader = loader

    async def refresh(self, fact: FactSpec) -> AggregateResult:
        if fact.procedure:
            try:
                await self.persistence.call_procedure(fact.procedure)
                refreshed = await self.persistence.count(fact.table)
            except Exception as e:
                logger.warning(
                    "fact_procedure_failed_using_fallback",
                    table=fact.table,
                    procedure=fact.procedure,
                    error=str(e),
                )
            else:
                logger.info("facts_refreshed", table=fact.table, method="procedure", rows=refreshed)
                return AggregateResult(table=fact.table, refreshed=refreshed, method="procedure")
        return await self._fallback(fact)

    async def _fallback(self, fact: FactSpec) -> AggregateResult:
        equality, members = _split_filter(dict(fact.source_filter))
        filter: dict[str, Any] = {MUNICIPALITY_CODE: NOT_NULL}
        filter.update(equality)
        rows = await self.persistence.select_rows(fact.silver_table, filter=filter)
        if members:
            rows = [
                row for row in rows
                if all(row.get(column) in allowed for column, allowed in members.items())
            ]

        facts = group_facts(rows, fact)
        fill_null_keys(facts, fact.key_columns)
        stale = await self._stale_groups(fact, facts)
        stamp = to_iso8601(utc_now())
        for row in facts + stale:
            row["updated_at"] = stamp

        result = await self.loader.upsert_rows(fact.table, facts, fact.key_columns)
        if stale:
            # separate batch: stale rows carry no attribute columns
            result.merge(await self.loader.upsert_rows(fact.table, stale, fact.key_columns))
        if result.errors:
            raise PersistenceError(
                f"{result.errors} fact rows failed to upsert"
            ).with_context(table=fact.table)

        logger.info(
            "facts_refreshed",
            table=fact.table,
            method="fallback",
            silver_rows=len(rows),
            rows=result.loaded,
            zeroed=len(stale),
        )
        return AggregateResult(table=fact.table, refreshed=result.loaded, method="fallback")

    async def _stale_groups(self, fact: FactSpec, facts: list[Row]) -> list[Row]:
        """Existing fact keys absent from the recompute, with totals reset to zero."""
        if not fact.has_totals:
            return []
        key_columns = list(fact.key_columns)
        fresh = {tuple(row[k] for k in key_columns) for row in facts}
        existing = await self.persistence.select_rows(fact.table, columns=key_columns)
        stale: list[Row] = []
        for row in existing:
            key = tuple(row.get(k) for k in key_columns)
            if key not in fresh:
                stale.append({**dict(zip(key_columns, key)), **_zeroed(fact)})
        return stale


__all__ = ["AggregateResult", "Aggregator", "group_facts"]
