"""
Record validation and normalization (bronze -> silver).

Coerces heterogeneous raw values (strings, numbers, dates, booleans,
postal codes) into typed, nullable domain values and projects a raw row
onto the closed set of fields its ``ResourceSpec`` declares.

A record is rejected, never raised, when:
- a required field normalizes to null
- a value falls outside its enumeration whitelist
- a numeric value falls outside its range (when configured to reject)
- a date falls outside the target year
- a dataset-level validator returns a reason
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time
from typing import Any

from municipal_spine.core.timestamps import from_iso8601, to_iso8601
from municipal_spine.datasets.schema import (
    MUNICIPALITY_CODE,
    FieldSpec,
    ResourceSpec,
)

_NULL_TOKENS = frozenset({"", "null", "NULL"})

TRUE_TOKENS = frozenset({"true", "verdadero", "si", "sí", "1"})
FALSE_TOKENS = frozenset({"false", "falso", "no", "0"})

_DATE_FORMATS = (
    "%d/%m/%Y",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d-%m-%Y",
    "%d-%m-%Y %H:%M",
    "%d-%m-%Y %H:%M:%S",
    "%Y/%m/%d",
)

_DECIMAL_COMMA = re.compile(r"^[+-]?\d+,\d+$")
_INE_CODE = re.compile(r"\d{5}")


# =============================================================================
# Value normalizers
# =============================================================================


def normalize_string(value: Any) -> str | None:
    """Trimmed string, or None for null/empty-after-trim."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_numeric(value: Any) -> float | None:
    """
    Coerce a number or numeric string to float.

    ``""``, ``"null"`` and ``"NULL"`` are null; so are non-finite and
    unparseable values. A lone decimal comma (``"3,5"``) is accepted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if text in _NULL_TOKENS:
            return None
        if _DECIMAL_COMMA.match(text):
            text = text.replace(",", ".")
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def normalize_integer(value: Any) -> int | None:
    """Like :func:`normalize_numeric`, floored to an int."""
    number = normalize_numeric(value)
    if number is None:
        return None
    return math.floor(number)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def normalize_date(value: Any) -> str | None:
    """
    Parse a date/datetime to an ISO-8601 UTC instant string.

    Accepts ISO-8601 strings, ``dd/mm/yyyy`` and ``dd-mm-yyyy`` (optionally
    with a time), and ``date``/``datetime`` objects. Naive values are
    taken as UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_iso8601(_as_utc(value))
    if isinstance(value, date):
        return to_iso8601(datetime.combine(value, time.min, tzinfo=UTC))
    text = normalize_string(value)
    if text is None or text in _NULL_TOKENS:
        return None
    try:
        return to_iso8601(_as_utc(datetime.fromisoformat(text)))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return to_iso8601(_as_utc(datetime.strptime(text, fmt)))
        except ValueError:
            continue
    return None


def normalize_postal_code(value: Any) -> str | None:
    """Postal code as a string, truncated to 10 characters."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = normalize_string(value)
    if text is None:
        return None
    return text[:10]


def normalize_ine_code(value: Any) -> str | None:
    """Five-digit INE municipality code, or None when malformed."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = normalize_string(value)
    if text is None or not _INE_CODE.fullmatch(text):
        return None
    return text


def parse_boolean(value: Any) -> bool | None:
    """Recognize Spanish/English true/false tokens; anything else is None."""
    if isinstance(value, bool):
        return value
    text = normalize_string(value)
    if text is None:
        return None
    token = text.lower()
    if token in TRUE_TOKENS:
        return True
    if token in FALSE_TOKENS:
        return False
    return None


def _normalize_upper(value: Any) -> str | None:
    text = normalize_string(value)
    return text.upper() if text is not None else None


def _normalize_json(value: Any) -> Any:
    return value if value not in (None, "") else None


NORMALIZERS = {
    "string": normalize_string,
    "upper": _normalize_upper,
    "integer": normalize_integer,
    "numeric": normalize_numeric,
    "date": normalize_date,
    "postal_code": normalize_postal_code,
    "ine_code": normalize_ine_code,
    "boolean": parse_boolean,
    "json": _normalize_json,
}


# =============================================================================
# Record normalization
# =============================================================================


@dataclass
class SilverRecord:
    """
    A typed, validated projection of one raw row.

    ``values`` holds exactly the fields declared by the resource;
    ``municipality_code`` starts as None and is filled by name resolution.
    """

    source_dataset_id: str
    source_resource_id: str
    values: dict[str, Any]
    municipality_code: str | None = None
    municipio_normalizado: str | None = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def to_row(self, include_normalized: bool = True) -> dict[str, Any]:
        row: dict[str, Any] = {
            "source_dataset_id": self.source_dataset_id,
            "source_resource_id": self.source_resource_id,
        }
        row.update(self.values)
        row[MUNICIPALITY_CODE] = self.municipality_code
        if include_normalized:
            row["municipio_normalizado"] = self.municipio_normalizado
        return row


@dataclass
class RejectedRecord:
    """Raw row that failed validation, with the reason."""

    raw: dict[str, Any]
    reason: str


@dataclass
class ValidationResult:
    """Container for normalized records and rejections."""

    valid: list[SilverRecord] = field(default_factory=list)
    rejected: list[RejectedRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.valid) + len(self.rejected)

    @property
    def valid_count(self) -> int:
        return len(self.valid)

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)

    @property
    def rejection_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return len(self.rejected) / self.total

    def reasons(self) -> Counter[str]:
        return Counter(r.reason for r in self.rejected)


def _raw_value(raw: dict[str, Any], spec: FieldSpec) -> Any:
    for name in spec.raw_names:
        value = raw.get(name)
        if value is not None:
            return value
    return None


def _date_year(iso: str) -> int | None:
    parsed = from_iso8601(iso)
    return parsed.year if parsed else None


def normalize_record(
    raw: dict[str, Any],
    resource: ResourceSpec,
    dataset_id: str,
    *,
    target_year: int | None = None,
) -> SilverRecord | RejectedRecord:
    """Project a raw row onto ``resource.fields`` and validate it."""
    values: dict[str, Any] = {}
    for spec in resource.fields:
        value = NORMALIZERS[spec.kind](_raw_value(raw, spec))

        if value is not None and spec.max_length is not None and isinstance(value, str):
            value = value[: spec.max_length]

        if value is None:
            if spec.required:
                return RejectedRecord(raw=raw, reason=f"missing_required:{spec.name}")
            values[spec.name] = None
            continue

        if spec.choices is not None and value not in spec.choices:
            return RejectedRecord(raw=raw, reason=f"invalid_choice:{spec.name}")

        if spec.range is not None:
            low, high = spec.range
            if not low <= value <= high:
                if spec.on_range == "reject" or spec.required:
                    return RejectedRecord(raw=raw, reason=f"out_of_range:{spec.name}")
                value = None

        if spec.in_target_year and target_year is not None:
            if _date_year(value) != target_year:
                return RejectedRecord(raw=raw, reason=f"out_of_period:{spec.name}")

        values[spec.name] = value

    for validator in resource.validators:
        reason = validator(values)
        if reason:
            return RejectedRecord(raw=raw, reason=reason)

    code = values.pop(MUNICIPALITY_CODE, None)
    return SilverRecord(
        source_dataset_id=dataset_id,
        source_resource_id=resource.resource_id,
        values=values,
        municipality_code=code,
    )


def normalize_records(
    rows: list[dict[str, Any]],
    resource: ResourceSpec,
    dataset_id: str,
    *,
    target_year: int | None = None,
) -> ValidationResult:
    """Normalize a batch of raw rows, splitting accepted and rejected."""
    result = ValidationResult()
    for raw in rows:
        outcome = normalize_record(raw, resource, dataset_id, target_year=target_year)
        if isinstance(outcome, RejectedRecord):
            result.rejected.append(outcome)
        else:
            result.valid.append(outcome)
    return result


__all__ = [
    "FALSE_TOKENS",
    "RejectedRecord",
    "SilverRecord",
    "TRUE_TOKENS",
    "ValidationResult",
    "normalize_date",
    "normalize_ine_code",
    "normalize_integer",
    "normalize_numeric",
    "normalize_postal_code",
    "normalize_record",
    "normalize_records",
    "normalize_string",
    "parse_boolean",
]
