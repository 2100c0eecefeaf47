"""
Declarative dataset descriptors.

One generic pipeline runs every dataset; what differs between datasets is
captured here: the fields to project from raw rows, the silver composite
key, referential gates, and the fact tables to recompute.

    DatasetSpec
      ├── ResourceSpec (one per upstream resource, parents first)
      │     ├── FieldSpec (raw → typed projection + per-field checks)
      │     └── ReferenceGate (hard or soft foreign-key check)
      └── FactSpec (gold table grouping + measures)
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

# Record-level validator: returns a rejection reason, or None to accept
Validator = Callable[[dict[str, Any]], str | None]

FIELD_KINDS = (
    "string", "upper", "integer", "numeric", "date", "postal_code", "ine_code", "boolean", "json",
)

_LOGICAL_TYPES = {
    "string": "text",
    "upper": "text",
    "integer": "integer",
    "numeric": "numeric",
    "date": "text",
    "postal_code": "text",
    "ine_code": "text",
    "boolean": "boolean",
    "json": "json",
}

MUNICIPALITY_CODE = "municipality_code"
MUNICIPALITY_NORMALIZED = "municipio_normalizado"


@dataclass(frozen=True)
class FieldSpec:
    """
    Projection of one silver column from a raw row.

    ``sources`` lists raw column names in priority order; the first one
    present with a non-null value is used (defaults to ``name``).
    ``range`` bounds numeric values: out-of-range values are nulled when
    ``on_range == "null"`` and reject the record when ``"reject"``.
    ``in_target_year`` rejects dates outside the configured target year.
    """

    name: str
    kind: str = "string"
    required: bool = False
    sources: tuple[str, ...] = ()
    choices: frozenset[str] | None = None
    range: tuple[float, float] | None = None
    on_range: str = "null"
    in_target_year: bool = False
    max_length: int | None = None

    def __post_init__(self) -> None:
        if self.kind not in FIELD_KINDS:
            raise ValueError(f"Unknown field kind {self.kind!r} for {self.name}")
        if self.on_range not in ("null", "reject"):
            raise ValueError(f"on_range must be 'null' or 'reject', got {self.on_range!r}")

    @property
    def raw_names(self) -> tuple[str, ...]:
        return self.sources or (self.name,)

    @property
    def logical_type(self) -> str:
        return _LOGICAL_TYPES[self.kind]


@dataclass(frozen=True)
class ReferenceGate:

    field: str
    parent_table: str
    parent_column: str


@dataclass(frozen=True)
class ResourceSpec:
    """One upstream resource and its bronze/silver tables."""

    key: str
    resource_id: str
    bronze_table: str
    silver_table: str
    fields: tuple[FieldSpec, ...]
    key_fields: tuple[str, ...]
    municipality_field: str | None = "municipio_nombre"
    postal_code_field: str | None = None
    reference: ReferenceGate | None = None
    soft_reference: ReferenceGate | None = None
    procedure: str | None = None
    validators: tuple[Validator, ...] = ()

    @property
    def resolves_municipality(self) -> bool:
        return self.municipality_field is not None

    def get_field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def silver_columns(self) -> dict[str, str]:
        """Column name → logical type for the silver table."""
        columns = {"source_dataset_id": "text", "source_resource_id": "text"}
        for spec in self.fields:
            columns[spec.name] = spec.logical_type
        columns.setdefault(MUNICIPALITY_CODE, "text")
        if self.resolves_municipality:
            columns[MUNICIPALITY_NORMALIZED] = "text"
        columns["updated_at"] = "text"
        return columns


@dataclass(frozen=True)
class FactSpec:
    """
    Gold table recomputed from one silver table.

    ``group_by`` are silver columns and ``key_columns`` the matching fact
    columns (same order). ``measures`` maps fact column → silver column to
    sum; ``attributes`` maps fact column → silver column whose first value
    per group is copied. ``source_filter`` narrows the silver rows read by
    the in-process fallback: scalar values are equality filters, a set or
    tuple value keeps rows whose column is one of its members.
    """

    table: str
    silver_table: str
    group_by: tuple[str, ...]
    key_columns: tuple[str, ...]
    measures: Mapping[str, str] = field(default_factory=dict)
    count_column: str | None = "total"
    procedure: str | None = None
    source_filter: Mapping[str, Any] = field(default_factory=dict)
    key_types: Mapping[str, str] = field(default_factory=dict)
    attributes: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if len(self.group_by) != len(self.key_columns):
            raise ValueError(f"{self.table}: group_by and key_columns differ in length")

    @property
    def has_totals(self) -> bool:
        return bool(self.count_column or self.measures)

    def fact_columns(self) -> dict[str, str]:
        columns = {k: self.key_types.get(k, "text") for k in self.key_columns}
        for attribute in self.attributes:
            columns[attribute] = "text"
        if self.count_column:
            columns[self.count_column] = "integer"
        for measure in self.measures:
            columns[measure] = "numeric"
        columns["updated_at"] = "text"
        return columns


@dataclass(frozen=True)
class DatasetSpec:
    """A dataset: one pipeline run covers all of its resources."""

    name: str
    pipeline_name: str
    dataset_id: str
    resources: tuple[ResourceSpec, ...]
    facts: tuple[FactSpec, ...] = ()
    overrides: Mapping[str, str] = field(default_factory=dict)
    postal_overrides: Mapping[str, str] = field(default_factory=dict)
    source_kind: str = "ckan"
    description: str = ""


__all__ = [
    "DatasetSpec",
    "FIELD_KINDS",
    "FactSpec",
    "FieldSpec",
    "MUNICIPALITY_CODE",
    "MUNICIPALITY_NORMALIZED",
    "ReferenceGate",
    "ResourceSpec",
    "Validator",
]
