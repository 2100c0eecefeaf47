"""Tests for MunicipalSettings and the error hierarchy."""

from __future__ import annotations

import pydantic
import pytest

from municipal_spine.core.errors import (
    ErrorCategory,
    MunicipalError,
    PersistenceError,
    ProcedureNotFoundError,
    SourceError,
    StepFailedError,
)
from municipal_spine.core.settings import TENERIFE_CODES, MunicipalSettings, get_settings, reset_settings


class TestSettings:
    def test_defaults(self):
        settings = MunicipalSettings(_env_file=None)
        assert settings.allowed_codes == TENERIFE_CODES
        assert len(settings.allowed_codes) == 31
        assert settings.match_threshold == 5
        assert settings.batch_size == 500
        assert settings.resource_ids == {}

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("MUNICIPAL_DATABASE_URL", "postgresql://etl@db/municipal")
        monkeypatch.setenv("MUNICIPAL_ALLOWED_CODES", "35001, 35002,")
        monkeypatch.setenv("MUNICIPAL_BATCH_SIZE", "50")
        monkeypatch.setenv("MUNICIPAL_RESOURCE_IDS", '{"alojamientos.alojamientos": "abc"}')

        settings = MunicipalSettings(_env_file=None)

        assert settings.database_url == "postgresql://etl@db/municipal"
        assert settings.allowed_codes == frozenset({"35001", "35002"})
        assert settings.batch_size == 50
        assert settings.resource_ids == {"alojamientos.alojamientos": "abc"}

    @pytest.mark.parametrize("field", ["batch_size", "page_size"])
    def test_sizes_must_be_positive(self, field):
        with pytest.raises(pydantic.ValidationError):
            MunicipalSettings(_env_file=None, **{field: 0})

    def test_json_logs(self):
        assert MunicipalSettings(_env_file=None, log_format="JSON").json_logs
        assert not MunicipalSettings(_env_file=None).json_logs

    def test_get_settings_is_cached(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("MUNICIPAL_BATCH_SIZE", "7")
        assert get_settings().batch_size == first.batch_size
        reset_settings()
        assert get_settings().batch_size == 7


class TestErrors:
    def test_categories(self):
        assert SourceError("x").category == ErrorCategory.SOURCE
        assert PersistenceError("x").category == ErrorCategory.DATABASE
        assert ProcedureNotFoundError("refresh_x").category == ErrorCategory.DATABASE

    def test_with_context_and_to_dict(self):
        cause = ValueError("bad json")
        error = SourceError("CKAN API returned invalid JSON", cause=cause).with_context(
            resource_id="res-1", url="https://x", page=3
        )

        assert error.__cause__ is cause
        assert error.to_dict() == {
            "error_type": "SourceError",
            "message": "CKAN API returned invalid JSON",
            "category": "SOURCE",
            "context": {"resource_id": "res-1", "url": "https://x", "page": 3},
            "cause": "bad json",
        }

    def test_step_failed_records_step(self):
        error = StepFailedError("refresh_facts", "fact_x: boom")
        assert isinstance(error, MunicipalError)
        assert error.step_name == "refresh_facts"
        assert error.context.step == "refresh_facts"

    def test_procedure_not_found_name(self):
        error = ProcedureNotFoundError("upsert_bic_batch")
        assert error.procedure == "upsert_bic_batch"
        assert "upsert_bic_batch" in str(error)
