"""
CLI utility helpers: output formatting and persistence management.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from municipal_spine.core.errors import MunicipalError
from municipal_spine.core.settings import MunicipalSettings, get_settings
from municipal_spine.persistence import Persistence, create_persistence

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


# ── Persistence helper ───────────────────────────────────────────────────


def open_persistence(
    database: str | None = None,
    settings: MunicipalSettings | None = None,
) -> Persistence:
    """Open the backend for ``--database`` (defaults to ``MUNICIPAL_DATABASE_URL``)."""
    settings = settings or get_settings()
    return create_persistence(database or settings.database_url, pool_size=settings.database_pool_size)


def run_with_persistence(
    database: str | None,
    work: Callable[[Persistence], Awaitable[T]],
) -> T:
    """Run ``work`` on a fresh backend, close it, and turn domain errors into exit 1."""

    async def _main() -> T:
        persistence = open_persistence(database)
        try:
            return await work(persistence)
        finally:
            await persistence.close()

    try:
        return asyncio.run(_main())
    except MunicipalError as e:
        err_console.print(f"[bold red]Error[/bold red] ({e.category.value}): {e.message}")
        raise typer.Exit(code=1) from e


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def print_json(data: Any) -> None:
    payload = [_to_dict(d) for d in data] if isinstance(data, list | tuple) else _to_dict(data)
    console.print_json(json.dumps(payload, default=str))


def print_table(items: list, *, title: str = "", columns: list[str] | None = None) -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    if not items:
        console.print("[dim]No items.[/dim]")
        return
    rows = [_to_dict(item) for item in items]
    columns = columns or list(rows[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if row.get(c) is None else str(row.get(c)) for c in columns))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
