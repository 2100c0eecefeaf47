"""Tests for municipal_spine.normalize: value coercion and record validation."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from municipal_spine.datasets.catalog import ALOJAMIENTOS, EQUIPAMIENTOS, EVENTOS_DEPORTIVOS
from municipal_spine.datasets.schema import FieldSpec, ResourceSpec
from municipal_spine.normalize import (
    RejectedRecord,
    SilverRecord,
    normalize_date,
    normalize_ine_code,
    normalize_integer,
    normalize_numeric,
    normalize_postal_code,
    normalize_record,
    normalize_records,
    normalize_string,
    parse_boolean,
)

ALOJAMIENTO = ALOJAMIENTOS.resources[0]
EQUIPAMIENTO = EQUIPAMIENTOS.resources[0]
EVENTO = EVENTOS_DEPORTIVOS.resources[0]


# ── Value normalizers ────────────────────────────────────────────────────


class TestNormalizeString:
    @pytest.mark.parametrize("value", [None, "", "   ", "\t\n"])
    def test_empty_is_none(self, value):
        assert normalize_string(value) is None

    def test_trims(self):
        assert normalize_string("  Hotel X  ") == "Hotel X"

    def test_non_strings_are_stringified(self):
        assert normalize_string(38001) == "38001"


class TestNormalizeNumeric:
    @pytest.mark.parametrize("value", ["", "null", "NULL", None, "abc", float("nan"), float("inf")])
    def test_null_and_garbage(self, value):
        assert normalize_numeric(value) is None

    def test_numbers_and_strings(self):
        assert normalize_numeric(3) == 3.0
        assert normalize_numeric("28.4636") == pytest.approx(28.4636)
        assert normalize_numeric(" -16.25 ") == pytest.approx(-16.25)

    def test_decimal_comma(self):
        assert normalize_numeric("3,5") == pytest.approx(3.5)

    def test_booleans_are_not_numbers(self):
        assert normalize_numeric(True) is None


class TestNormalizeInteger:
    def test_floors(self):
        assert normalize_integer("12.9") == 12
        assert normalize_integer(-1.5) == -2

    def test_null_tokens(self):
        assert normalize_integer("NULL") is None


class TestNormalizeDate:
    def test_iso_date(self):
        assert normalize_date("2026-03-01") == "2026-03-01T00:00:00.000Z"

    def test_iso_with_offset_is_converted_to_utc(self):
        assert normalize_date("2026-03-01T10:00:00+01:00") == "2026-03-01T09:00:00.000Z"

    def test_spanish_day_first(self):
        assert normalize_date("15/06/2026") == "2026-06-15T00:00:00.000Z"
        assert normalize_date("15-06-2026 18:30") == "2026-06-15T18:30:00.000Z"

    def test_date_and_datetime_objects(self):
        assert normalize_date(date(2026, 1, 2)) == "2026-01-02T00:00:00.000Z"
        assert normalize_date(datetime(2026, 1, 2, 3, 4, 5)) == "2026-01-02T03:04:05.000Z"

    @pytest.mark.parametrize("value", [None, "", "null", "not a date", "32/13/2026"])
    def test_unparseable_is_none(self, value):
        assert normalize_date(value) is None


class TestNormalizePostalCode:
    def test_truncates_to_ten(self):
        assert normalize_postal_code("38400-ABCDEFG") == "38400-ABCD"

    def test_numeric_input(self):
        assert normalize_postal_code(38400) == "38400"
        assert normalize_postal_code(38400.0) == "38400"

    def test_empty(self):
        assert normalize_postal_code("  ") is None


class TestNormalizeIneCode:
    def test_five_digit_codes(self):
        assert normalize_ine_code(" 38001 ") == "38001"
        assert normalize_ine_code(38001) == "38001"
        assert normalize_ine_code(38001.0) == "38001"

    def test_malformed_codes_are_null(self):
        assert normalize_ine_code("380") is None
        assert normalize_ine_code("3800A") is None
        assert normalize_ine_code("380011") is None
        assert normalize_ine_code(None) is None


class TestParseBoolean:
    @pytest.mark.parametrize("value", ["true", "TRUE", "Sí", "si", "verdadero", "1", True])
    def test_true_tokens(self, value):
        assert parse_boolean(value) is True

    @pytest.mark.parametrize("value", ["false", "No", "FALSO", "0", False])
    def test_false_tokens(self, value):
        assert parse_boolean(value) is False

    @pytest.mark.parametrize("value", [None, "", "quizás", "2"])
    def test_anything_else_is_none(self, value):
        assert parse_boolean(value) is None


# ── Record validation ────────────────────────────────────────────────────


class TestNormalizeRecord:
    def test_valid_record_projects_declared_fields_only(self):
        raw = {
            "municipio": "Adeje",
            "modalidad": "hotelera",
            "tipo": "Hotel",
            "nombre": " Hotel X ",
            "plazas_alojativas": "120",
            "_id": 7,
            "extra_column": "ignored",
        }
        record = normalize_record(raw, ALOJAMIENTO, "ds-1")

        assert isinstance(record, SilverRecord)
        assert record.source_dataset_id == "ds-1"
        assert record.source_resource_id == ALOJAMIENTO.resource_id
        assert record.get("municipio_nombre") == "Adeje"
        assert record.get("modalidad") == "HOTELERA"
        assert record.get("nombre") == "Hotel X"
        assert record.get("plazas_alojativas") == 120
        assert "extra_column" not in record.values
        assert "_id" not in record.values
        assert record.municipality_code is None

    def test_missing_required_field_rejects(self):
        raw = {"municipio": "Adeje", "modalidad": "HOTELERA", "nombre": "Hotel X"}
        outcome = normalize_record(raw, ALOJAMIENTO, "ds-1")
        assert isinstance(outcome, RejectedRecord)
        assert outcome.reason == "missing_required:tipo"

    def test_enumeration_whitelist(self):
        raw = {"municipio": "Adeje", "modalidad": "camping", "tipo": "x", "nombre": "y"}
        outcome = normalize_record(raw, ALOJAMIENTO, "ds-1")
        assert isinstance(outcome, RejectedRecord)
        assert outcome.reason == "invalid_choice:modalidad"

    def test_out_of_range_optional_value_is_nulled(self):
        raw = {
            "equipamiento_nombre": "Mirador",
            "equipamiento_tipo": "Mirador",
            "municipio_nombre": "Arona",
            "latitud": "128.5",
            "longitud": "-16.7",
        }
        record = normalize_record(raw, EQUIPAMIENTO, "ds-1")
        assert isinstance(record, SilverRecord)
        assert record.get("latitud") is None
        assert record.get("longitud") == pytest.approx(-16.7)

    def test_out_of_range_rejects_when_configured(self):
        resource = ResourceSpec(
            key="r",
            resource_id="r",
            bronze_table="b",
            silver_table="s",
            fields=(FieldSpec("plazas", kind="integer", range=(0, 10), on_range="reject"),),
            key_fields=("plazas",),
            municipality_field=None,
        )
        outcome = normalize_record({"plazas": 11}, resource, "ds")
        assert isinstance(outcome, RejectedRecord)
        assert outcome.reason == "out_of_range:plazas"

    def test_date_outside_target_year_rejects(self):
        raw = {
            "evento_nombre": "Carrera",
            "municipio_nombre": "Adeje",
            "evento_fecha_inicio": "2025-12-31",
        }
        outcome = normalize_record(raw, EVENTO, "ds", target_year=2026)
        assert isinstance(outcome, RejectedRecord)
        assert outcome.reason == "out_of_period:evento_fecha_inicio"

    def test_end_date_must_share_the_target_year(self):
        raw = {
            "evento_nombre": "Carrera",
            "municipio_nombre": "Adeje",
            "evento_fecha_inicio": "2026-12-31",
            "evento_fecha_fin": "2027-01-01",
        }
        outcome = normalize_record(raw, EVENTO, "ds", target_year=2026)
        assert isinstance(outcome, RejectedRecord)
        assert outcome.reason == "out_of_period:evento_fecha_fin"

    def test_event_inside_target_year_is_accepted(self):
        raw = {
            "evento_nombre": "Carrera",
            "municipio_nombre": "Adeje",
            "evento_fecha_inicio": "01/05/2026",
            "evento_fecha_fin": "02/05/2026",
        }
        record = normalize_record(raw, EVENTO, "ds", target_year=2026)
        assert isinstance(record, SilverRecord)
        assert record.get("evento_fecha_inicio") == "2026-05-01T00:00:00.000Z"

    def test_municipality_code_field_moves_to_record(self):
        resource = ResourceSpec(
            key="r",
            resource_id="r",
            bronze_table="b",
            silver_table="s",
            fields=(FieldSpec("municipality_code", required=True, sources=("ine_code",)),),
            key_fields=("municipality_code",),
            municipality_field=None,
        )
        record = normalize_record({"ine_code": "38001"}, resource, "ds")
        assert record.municipality_code == "38001"
        assert "municipality_code" not in record.values
        assert record.to_row(include_normalized=False)["municipality_code"] == "38001"


class TestNormalizeRecords:
    def test_counts_and_reasons(self):
        rows = [
            {"municipio": "Adeje", "modalidad": "HOTELERA", "tipo": "Hotel", "nombre": "A"},
            {"municipio": "Adeje", "modalidad": "HOTELERA", "tipo": "Hotel"},
            {"municipio": "Adeje", "modalidad": "OTRA", "tipo": "Hotel", "nombre": "C"},
            {"municipio": "Adeje", "modalidad": "HOTELERA", "tipo": "Hotel"},
        ]
        result = normalize_records(rows, ALOJAMIENTO, "ds")

        assert result.total == 4
        assert result.valid_count == 1
        assert result.rejected_count == 3
        assert result.rejection_rate == pytest.approx(0.75)
        assert result.reasons() == {"missing_required:nombre": 2, "invalid_choice:modalidad": 1}

    def test_empty_batch(self):
        result = normalize_records([], ALOJAMIENTO, "ds")
        assert result.total == 0
        assert result.rejection_rate == 0.0
