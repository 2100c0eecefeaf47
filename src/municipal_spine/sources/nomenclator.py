"""
INE Nomenclátor source (population by settlement unit).

The published file is semicolon-delimited, latin-1 encoded, with a few
title lines before the header row. Rows are kept only when their type is
one of ``M`` (municipality), ``ES`` (singular entity), ``NUC`` (nucleus)
or ``DIS`` (disseminated), and their INE code is in the allow-list.

Column layout after the header::

    Provincia ; Municipio ; Código Unidad ; Unidad ; Tipo ; Total ; Hombres ; Mujeres

Some editions carry an extra column before ``Tipo``, shifting it to index 5.
"""

from __future__ import annotations

import csv
import io
import re
from collections.abc import Iterable
from pathlib import Path

from municipal_spine.core.errors import SourceError
from municipal_spine.core.logging import get_logger
from municipal_spine.registry import MunicipalityEntry
from municipal_spine.sources.base import RawRecord

logger = get_logger(__name__)

UNIT_TYPES = frozenset({"M", "ES", "NUC", "DIS"})

_PROV_CODE = re.compile(r"^(\d{2})\s")
_MUNI_CODE = re.compile(r"^(\d+)\s+(.*)$")


def extract_prov_code(provincia: str) -> str | None:
    """``"38 Santa Cruz de Tenerife"`` → ``"38"``."""
    match = _PROV_CODE.match(provincia.strip())
    return match.group(1) if match else None


def extract_muni_code(municipio: str) -> str | None:
    """``"1 Adeje"`` → ``"001"``."""
    match = _MUNI_CODE.match(municipio.strip())
    return match.group(1).zfill(3) if match else None


def extract_muni_name(municipio: str) -> str:
    """``"1 Adeje"`` → ``"Adeje"``."""
    match = _MUNI_CODE.match(municipio.strip())
    return match.group(2).strip() if match else municipio.strip()


def parse_population(value: str | None) -> int:
    """Population count; ``"N.E."`` (not specified) and blanks are 0."""
    text = (value or "").strip().upper()
    if text in ("", "N.E.", "N.E"):
        return 0
    text = text.replace(".", "")
    match = re.match(r"^-?\d+", text)
    return int(match.group(0)) if match else 0


def normalize_unit_code(unit_code: str) -> str:
    """``"00 02 03"`` → ``"000203"``."""
    return re.sub(r"\s+", "", unit_code)


def parse_nomenclator(
    text: str,
    allowed_codes: Iterable[str] | None = None,
    *,
    year: int = 2025,
    snapshot_date: str = "2025-01-01",
) -> list[RawRecord]:
    """Parse nomenclátor CSV text into raw records."""
    allowed = frozenset(allowed_codes or ())
    header_found = False
    records: list[RawRecord] = []

    for fields in csv.reader(io.StringIO(text), delimiter=";"):
        fields = [f.strip() for f in fields]
        if not any(fields):
            continue
        if not header_found:
            line = ";".join(fields)
            if "Provincia" in line and "Municipio" in line:
                header_found = True
            continue
        if len(fields) < 8:
            continue

        if fields[4].upper() in UNIT_TYPES:
            tipo_index = 4
        elif len(fields) > 5 and fields[5].upper() in UNIT_TYPES:
            tipo_index = 5
        else:
            continue

        prov_code = extract_prov_code(fields[0])
        muni_code = extract_muni_code(fields[1])
        if not prov_code or not muni_code:
            continue
        ine_code = prov_code + muni_code
        if allowed and ine_code not in allowed:
            continue

        def _at(index: int) -> str | None:
            return fields[index] if index < len(fields) else None

        records.append({
            "ine_code": ine_code,
            "prov_code": prov_code,
            "muni_code": muni_code,
            "municipio_nombre": extract_muni_name(fields[1]),
            "unit_code": normalize_unit_code(fields[2]),
            "unit_name": fields[3],
            "tipo": fields[tipo_index].upper(),
            "population_total": parse_population(_at(tipo_index + 1)),
            "population_male": parse_population(_at(tipo_index + 2)),
            "population_female": parse_population(_at(tipo_index + 3)),
            "year": year,
            "snapshot_date": snapshot_date,
        })

    if not header_found:
        raise SourceError("Nomenclátor header row (Provincia/Municipio) not found")
    logger.info("nomenclator_parsed", rows=len(records))
    return records


def municipalities_from_records(records: Iterable[RawRecord]) -> list[MunicipalityEntry]:
    """Registry entries from the municipality-level (``M``) rows."""
    seen: dict[str, MunicipalityEntry] = {}
    for record in records:
        if record.get("tipo") == "M" and record["ine_code"] not in seen:
            seen[record["ine_code"]] = MunicipalityEntry(
                code=record["ine_code"], canonical_name=record["municipio_nombre"]
            )
    return list(seen.values())


class NomenclatorSource:
    """Serves parsed nomenclátor rows as pages (any resource id)."""

    def __init__(
        self,
        path_or_text: str | Path,
        allowed_codes: Iterable[str] | None = None,
        *,
        year: int = 2025,
        snapshot_date: str = "2025-01-01",
        encoding: str = "latin-1",
    ):
        self.path_or_text = path_or_text
        self.allowed_codes = frozenset(allowed_codes or ())
        self.year = year
        self.snapshot_date = snapshot_date
        self.encoding = encoding
        self._records: list[RawRecord] | None = None

    def _read_text(self) -> str:
        if isinstance(self.path_or_text, Path) or (
            "\n" not in self.path_or_text and ";" not in self.path_or_text
        ):
            path = Path(self.path_or_text)
            try:
                return path.read_text(encoding=self.encoding)
            except OSError as e:
                raise SourceError(f"Nomenclátor file not readable: {path}", cause=e) from e
        return str(self.path_or_text)

    def records(self) -> list[RawRecord]:
        if self._records is None:
            self._records = parse_nomenclator(
                self._read_text(),
                self.allowed_codes,
                year=self.year,
                snapshot_date=self.snapshot_date,
            )
        return self._records

    async def fetch_page(self, resource_id: str, limit: int, offset: int) -> list[RawRecord]:
        return [dict(r) for r in self.records()[offset:offset + limit]]

    def municipalities(self) -> list[MunicipalityEntry]:
        return municipalities_from_records(self.records())


__all__ = [
    "NomenclatorSource",
    "UNIT_TYPES",
    "extract_muni_code",
    "extract_muni_name",
    "extract_prov_code",
    "municipalities_from_records",
    "normalize_unit_code",
    "parse_nomenclator",
    "parse_population",
]
