"""Tests for municipal_spine.persistence: backends, dialects, factory, schema."""

from __future__ import annotations

import pytest

from municipal_spine.core.errors import ConfigError, PersistenceError, ProcedureNotFoundError, ValidationError
from municipal_spine.datasets.catalog import ALOJAMIENTOS, INSTALACIONES_DEPORTIVAS
from municipal_spine.ledger import RUNS_TABLE, STEPS_TABLE
from municipal_spine.persistence import (
    NOT_NULL,
    MemoryPersistence,
    SQLitePersistence,
    create_persistence,
)
from municipal_spine.persistence.dialect import PostgreSQLDialect, SQLiteDialect, ident
from municipal_spine.persistence.postgres import normalize_database_url
from municipal_spine.persistence.schema import ensure_schema
from municipal_spine.registry import DIM_MUNICIPIO


# ── Dialects ─────────────────────────────────────────────────────────────


class TestDialect:
    def test_sqlite_upsert(self):
        sql = SQLiteDialect().upsert("silver_x", ["a", "b", "c"], ["a"])
        assert sql == (
            "INSERT INTO silver_x (a, b, c) VALUES (?, ?, ?) "
            "ON CONFLICT (a) DO UPDATE SET b = excluded.b, c = excluded.c"
        )

    def test_postgres_upsert_uses_numbered_placeholders(self):
        sql = PostgreSQLDialect().upsert("silver_x", ["a", "b"], ["a"])
        assert "VALUES ($1, $2)" in sql
        assert "b = EXCLUDED.b" in sql

    def test_upsert_with_only_key_columns_does_nothing(self):
        sql = SQLiteDialect().upsert("t", ["a"], ["a"])
        assert sql.endswith("ON CONFLICT (a) DO NOTHING")

    def test_where_clause(self):
        sql, params = PostgreSQLDialect().select(
            "t", ["a"], {"a": NOT_NULL, "b": None, "c": "x", "d": 2}
        )
        assert sql == "SELECT a FROM t WHERE a IS NOT NULL AND b IS NULL AND c = $1 AND d = $2"
        assert params == ["x", 2]

    def test_create_table(self):
        sql = SQLiteDialect().create_table(
            "t", {"id": "text", "n": "integer", "j": "json"}, unique=["n"], primary_key="id"
        )
        assert sql == "CREATE TABLE IF NOT EXISTS t (id TEXT PRIMARY KEY, n INTEGER, j TEXT, UNIQUE (n))"

    def test_unknown_column_type(self):
        with pytest.raises(ValidationError):
            SQLiteDialect().column_type("money")

    @pytest.mark.parametrize("name", ["bad name", "t; DROP TABLE x", "1abc", ""])
    def test_identifiers_are_validated(self, name):
        with pytest.raises(ValidationError):
            ident(name)


# ── Factory ──────────────────────────────────────────────────────────────


class TestCreatePersistence:
    @pytest.mark.parametrize("url", [None, "", "memory", "memory://"])
    def test_memory(self, url):
        assert isinstance(create_persistence(url), MemoryPersistence)

    @pytest.mark.asyncio
    async def test_sqlite_in_memory(self):
        persistence = create_persistence("sqlite:///:memory:")
        assert isinstance(persistence, SQLitePersistence)
        assert persistence.info.persistent is False
        await persistence.close()

    @pytest.mark.asyncio
    async def test_sqlite_file(self, tmp_path):
        path = tmp_path / "data" / "spine.db"
        persistence = create_persistence(str(path))
        assert persistence.info.is_sqlite
        assert persistence.info.persistent
        assert path.parent.exists()
        await persistence.close()

    def test_unknown_scheme(self):
        with pytest.raises(ConfigError):
            create_persistence("mysql://localhost/db")


class TestNormalizeDatabaseUrl:
    @pytest.mark.parametrize(("url", "expected"), [
        ("postgresql+asyncpg://u:p@host/db", "postgresql://u:p@host/db"),
        ("postgresql://host/db?sslmode=require", "postgresql://host/db"),
        ("postgresql://host/db?application_name=etl&sslmode=disable", "postgresql://host/db?application_name=etl"),
        ("postgresql://host/db?sslmode=require&application_name=etl", "postgresql://host/db?application_name=etl"),
        ("postgresql://host/db", "postgresql://host/db"),
    ])
    def test_asyncpg_compatible(self, url, expected):
        assert normalize_database_url(url) == expected


# ── Memory backend ───────────────────────────────────────────────────────


class TestMemoryPersistence:
    @pytest.mark.asyncio
    async def test_select_filters(self, memory_persistence):
        await memory_persistence.insert("t", [{"a": 1, "b": None}, {"a": 2, "b": "x"}])
        assert await memory_persistence.select_column("t", "a", {"b": NOT_NULL}) == [2]
        assert await memory_persistence.count("t", {"a": 1}) == 1
        assert await memory_persistence.select_rows("t", ["a"]) == [{"a": 1}, {"a": 2}]

    @pytest.mark.asyncio
    async def test_missing_table_reads_empty(self, memory_persistence):
        assert await memory_persistence.select_rows("nope") == []
        assert await memory_persistence.count("nope") == 0

    @pytest.mark.asyncio
    async def test_upsert_requires_keys(self, memory_persistence):
        with pytest.raises(PersistenceError):
            await memory_persistence.upsert("t", [{"a": 1}], [])

    @pytest.mark.asyncio
    async def test_stored_rows_are_copies(self, memory_persistence):
        row = {"a": 1, "nested": {"x": 1}}
        await memory_persistence.insert("t", [row])
        row["nested"]["x"] = 2
        assert memory_persistence.rows("t")[0]["nested"] == {"x": 1}

    @pytest.mark.asyncio
    async def test_procedures(self, memory_persistence):
        async def echo(persistence, args):
            return {"count": len(args["p_records"])}

        memory_persistence.register_procedure("echo", echo)
        assert await memory_persistence.call_procedure("echo", {"p_records": [1, 2]}) == {"count": 2}
        with pytest.raises(ProcedureNotFoundError):
            await memory_persistence.call_procedure("missing")


# ── SQLite backend ───────────────────────────────────────────────────────


class TestSQLitePersistence:
    @pytest.mark.asyncio
    async def test_upsert_on_composite_key(self, sqlite_persistence):
        await sqlite_persistence.create_table(
            "silver_x", {"a": "text", "b": "text", "v": "integer"}, unique=["a", "b"]
        )
        await sqlite_persistence.upsert("silver_x", [{"a": "1", "b": "x", "v": 1}], ["a", "b"])
        await sqlite_persistence.upsert("silver_x", [{"a": "1", "b": "x", "v": 5}], ["a", "b"])

        assert await sqlite_persistence.count("silver_x") == 1
        assert await sqlite_persistence.select_column("silver_x", "v") == [5]

    @pytest.mark.asyncio
    async def test_json_values_are_encoded(self, sqlite_persistence):
        await sqlite_persistence.create_table("bronze_x", {"raw_row": "json"})
        await sqlite_persistence.insert("bronze_x", [{"raw_row": {"nombre": "Güímar"}}])
        stored = await sqlite_persistence.select_column("bronze_x", "raw_row")
        assert stored == ['{"nombre": "Güímar"}']

    @pytest.mark.asyncio
    async def test_failed_chunk_rolls_back(self, sqlite_persistence):
        await sqlite_persistence.create_table("t", {"id": "text"}, primary_key="id")
        with pytest.raises(PersistenceError):
            await sqlite_persistence.insert("t", [{"id": "a"}, {"id": "a"}])
        assert await sqlite_persistence.count("t") == 0

    @pytest.mark.asyncio
    async def test_missing_table_raises(self, sqlite_persistence):
        with pytest.raises(PersistenceError):
            await sqlite_persistence.select_rows("nope")

    @pytest.mark.asyncio
    async def test_no_procedures_by_default(self, sqlite_persistence):
        with pytest.raises(ProcedureNotFoundError):
            await sqlite_persistence.call_procedure("refresh_equipamientos_facts")


# ── Schema bootstrap ─────────────────────────────────────────────────────


class TestEnsureSchema:
    @pytest.mark.asyncio
    async def test_creates_all_tables_once(self, sqlite_persistence):
        tables = await ensure_schema(sqlite_persistence, [ALOJAMIENTOS, INSTALACIONES_DEPORTIVAS])

        assert tables[:3] == [RUNS_TABLE, STEPS_TABLE, DIM_MUNICIPIO]
        assert len(tables) == len(set(tables))
        for resource in ALOJAMIENTOS.resources + INSTALACIONES_DEPORTIVAS.resources:
            assert resource.bronze_table in tables
            assert resource.silver_table in tables
        for fact in ALOJAMIENTOS.facts:
            assert fact.table in tables

    @pytest.mark.asyncio
    async def test_is_repeatable(self, sqlite_persistence):
        await ensure_schema(sqlite_persistence, [ALOJAMIENTOS])
        await ensure_schema(sqlite_persistence, [ALOJAMIENTOS])
        assert await sqlite_persistence.count(RUNS_TABLE) == 0

    @pytest.mark.asyncio
    async def test_silver_key_is_a_conflict_target(self, sqlite_persistence):
        await ensure_schema(sqlite_persistence, [ALOJAMIENTOS])
        resource = ALOJAMIENTOS.resources[0]
        row = {"source_resource_id": "r", "municipio_normalizado": "adeje", "nombre": "Hotel X", "plazas_alojativas": 1}

        await sqlite_persistence.upsert(resource.silver_table, [row], list(resource.key_fields))
        await sqlite_persistence.upsert(
            resource.silver_table, [dict(row, plazas_alojativas=2)], list(resource.key_fields)
        )
        assert await sqlite_persistence.select_column(resource.silver_table, "plazas_alojativas") == [2]
