"""
SQL dialect abstraction for the SQL-backed persistence implementations.

Each dialect renders the small set of statements the pipeline needs:
parameterized insert, composite-key upsert, filtered select, count, and
``CREATE TABLE IF NOT EXISTS`` from logical column types.

Table and column names are validated identifiers; values always travel
as bind parameters.

Example:
    >>> SQLiteDialect().upsert("silver_x", ["a", "b", "c"], ["a"])
    'INSERT INTO silver_x (a, b, c) VALUES (?, ?, ?) ON CONFLICT (a) DO UPDATE SET b = excluded.b, c = excluded.c'
"""

from __future__ import annotations

import re
from typing import Any, Protocol

from municipal_spine.core.errors import ValidationError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class NotNull:
    """Filter sentinel meaning ``column IS NOT NULL``."""

    def __repr__(self) -> str:
        return "NOT_NULL"


NOT_NULL = NotNull()


def ident(name: str) -> str:
    """Validate a table or column identifier."""
    if not _IDENTIFIER.match(name):
        raise ValidationError(f"Invalid SQL identifier: {name!r}")
    return name


class Dialect(Protocol):
    """Renders SQL fragments for one database engine."""

    @property
    def name(self) -> str: ...

    def placeholder(self, index: int) -> str: ...

    def column_type(self, logical: str) -> str: ...


class _BaseDialect:
    """Statement builders shared by the concrete dialects."""

    name = "base"
    excluded = "excluded"
    types: dict[str, str] = {}

    def placeholder(self, index: int) -> str:
        raise NotImplementedError

    def placeholders(self, count: int) -> str:
        return ", ".join(self.placeholder(i + 1) for i in range(count))

    def column_type(self, logical: str) -> str:
        try:
            return self.types[logical]
        except KeyError:
            raise ValidationError(f"Unknown column type: {logical!r}") from None

    def insert(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(ident(c) for c in columns)
        return f"INSERT INTO {ident(table)} ({cols}) VALUES ({self.placeholders(len(columns))})"

    def upsert(self, table: str, columns: list[str], key_columns: list[str]) -> str:
        """INSERT ... ON CONFLICT (keys) DO UPDATE SET non-key columns."""
        cols = ", ".join(ident(c) for c in columns)
        keys = ", ".join(ident(k) for k in key_columns)
        update_cols = [c for c in columns if c not in key_columns]
        head = (
            f"INSERT INTO {ident(table)} ({cols}) VALUES ({self.placeholders(len(columns))}) "
            f"ON CONFLICT ({keys})"
        )
        if not update_cols:
            return f"{head} DO NOTHING"
        updates = ", ".join(f"{c} = {self.excluded}.{c}" for c in update_cols)
        return f"{head} DO UPDATE SET {updates}"

    def where(self, filter: dict[str, Any] | None, start: int = 1) -> tuple[str, list[Any]]:
        """Render an equality/IS NOT NULL WHERE clause and its parameters."""
        if not filter:
            return "", []
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in filter.items():
            if value is NOT_NULL:
                clauses.append(f"{ident(column)} IS NOT NULL")
            elif value is None:
                clauses.append(f"{ident(column)} IS NULL")
            else:
                params.append(value)
                clauses.append(f"{ident(column)} = {self.placeholder(start + len(params) - 1)}")
        return " WHERE " + " AND ".join(clauses), params

    def select(
        self, table: str, columns: list[str] | None, filter: dict[str, Any] | None
    ) -> tuple[str, list[Any]]:
        cols = ", ".join(ident(c) for c in columns) if columns else "*"
        where, params = self.where(filter)
        return f"SELECT {cols} FROM {ident(table)}{where}", params

    def count(self, table: str, filter: dict[str, Any] | None) -> tuple[str, list[Any]]:
        where, params = self.where(filter)
        return f"SELECT COUNT(*) FROM {ident(table)}{where}", params

    def create_table(
        self,
        table: str,
        columns: dict[str, str],
        unique: list[str] | None = None,
        primary_key: str | None = None,
    ) -> str:
        defs = []
        for column, logical in columns.items():
            line = f"{ident(column)} {self.column_type(logical)}"
            if column == primary_key:
                line += " PRIMARY KEY"
            defs.append(line)
        if unique:
            defs.append(f"UNIQUE ({', '.join(ident(c) for c in unique)})")
        return f"CREATE TABLE IF NOT EXISTS {ident(table)} ({', '.join(defs)})"


class SQLiteDialect(_BaseDialect):
    """SQLite dialect (``?`` placeholders, lowercase ``excluded``)."""

    name = "sqlite"
    excluded = "excluded"
    types = {
        "text": "TEXT",
        "integer": "INTEGER",
        "numeric": "REAL",
        "boolean": "INTEGER",
        "json": "TEXT",
        "serial": "INTEGER",
    }

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"


class PostgreSQLDialect(_BaseDialect):
    """PostgreSQL dialect for asyncpg (``$n`` placeholders, ``EXCLUDED``)."""

    name = "postgresql"
    excluded = "EXCLUDED"
    types = {
        "text": "TEXT",
        "integer": "BIGINT",
        "numeric": "DOUBLE PRECISION",
        "boolean": "BOOLEAN",
        "json": "JSONB",
        "serial": "BIGSERIAL",
    }

    def placeholder(self, index: int) -> str:
        return f"${index}"


__all__ = [
    "Dialect",
    "NOT_NULL",
    "NotNull",
    "PostgreSQLDialect",
    "SQLiteDialect",
    "ident",
]
