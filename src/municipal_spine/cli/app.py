"""
Root Typer application for the municipal-spine CLI.

Commands::

    municipal-spine run alojamientos equipamientos
    municipal-spine run --all --database postgresql://etl@localhost/municipal
    municipal-spine datasets
    municipal-spine runs list --status failed
    municipal-spine resolve "Orotava (La)" "Realejos, Los"
    municipal-spine init-db --nomenclator data/nomenclator_38.csv
"""

from __future__ import annotations

import typer
from typer import Typer

from municipal_spine import __version__
from municipal_spine.cli.runs import app as runs_app
from municipal_spine.cli.utils import (
    console,
    err_console,
    print_json,
    print_table,
    run_with_persistence,
)
from municipal_spine.core.errors import ConfigError
from municipal_spine.core.logging import configure_logging
from municipal_spine.core.settings import get_settings
from municipal_spine.datasets.catalog import CATALOG, get_dataset, list_datasets
from municipal_spine.matching import MunicipalityResolver, NameIndex
from municipal_spine.persistence.schema import ensure_schema
from municipal_spine.pipeline import PipelineResult, run_pipelines
from municipal_spine.registry import PersistenceRegistry, seed_registry
from municipal_spine.sources.nomenclator import NomenclatorSource

app = Typer(
    name="municipal-spine",
    help="municipal-spine: medallion ETL for municipal open data.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version / logging callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"municipal-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Override MUNICIPAL_LOG_LEVEL."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines."),
) -> None:
    """municipal-spine CLI: run pipelines and inspect the run ledger."""
    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=True if json_logs else settings.json_logs,
        service=settings.service_name,
    )


app.add_typer(runs_app, name="runs", help="Run/Step ledger views.")


# ── Commands ─────────────────────────────────────────────────────────────


def _summary_rows(results: list[PipelineResult]) -> list[dict]:
    return [
        {
            "pipeline": r.pipeline_name,
            "status": "ok" if r.success else "failed",
            "fetched": r.summary.get("records_fetched", 0),
            "bronze": r.summary.get("bronze_inserted", 0),
            "silver": r.summary.get("silver_upserted", 0),
            "skipped": r.summary.get("silver_skipped", 0),
            "unresolved": r.summary.get("silver_unresolved", 0),
            "errors": r.summary.get("silver_errors", 0) + r.summary.get("bronze_errors", 0),
            "facts": r.summary.get("facts_refreshed", 0),
            "run_id": r.run_id,
        }
        for r in results
    ]


@app.command()
def run(
    names: list[str] | None = typer.Argument(None, help="Datasets to run (see `datasets`)."),
    all_datasets: bool = typer.Option(False, "--all", help="Run every dataset in the catalog."),
    database: str | None = typer.Option(None, "--database", "-d"),
    stop_on_failure: bool = typer.Option(False, "--stop-on-failure", help="Stop after the first failed run."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run one or more dataset pipelines and print their summaries."""
    selected = list(CATALOG) if all_datasets else list(names or [])
    if not selected:
        err_console.print("[bold red]Error[/bold red]: name at least one dataset or pass --all")
        raise typer.Exit(code=2)
    try:
        datasets = [get_dataset(name) for name in selected]
    except ConfigError as e:
        err_console.print(f"[bold red]Error[/bold red]: {e.message}")
        raise typer.Exit(code=2) from e

    async def _run(persistence) -> list[PipelineResult]:
        await ensure_schema(persistence, datasets)
        return await run_pipelines(
            [d.name for d in datasets],
            persistence,
            stop_on_failure=stop_on_failure,
        )

    results = run_with_persistence(database, _run)

    if json_out:
        print_json(results)
    else:
        print_table(_summary_rows(results), title="Pipeline runs")
        for result in results:
            if result.error:
                err_console.print(f"[red]{result.pipeline_name}[/red]: {result.error}")

    if not all(r.success for r in results):
        raise typer.Exit(code=1)


@app.command("datasets")
def datasets_command(json_out: bool = typer.Option(False, "--json")) -> None:
    """List the datasets in the catalog."""
    rows = [
        {
            "name": d.name,
            "pipeline": d.pipeline_name,
            "source": d.source_kind,
            "resources": ", ".join(r.key for r in d.resources),
            "facts": ", ".join(f.table for f in d.facts),
            "description": d.description,
        }
        for d in list_datasets()
    ]
    if json_out:
        print_json(rows)
        return
    print_table(rows, title="Datasets")


@app.command()
def resolve(
    names: list[str] = typer.Argument(..., help="Municipality names to resolve."),
    database: str | None = typer.Option(None, "--database", "-d"),
    nomenclator: str | None = typer.Option(
        None, "--nomenclator", help="Resolve against a nomenclátor file instead of dim_municipio."
    ),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Resolve free-text municipality names and show how each matched."""
    settings = get_settings()

    async def _resolve(persistence) -> list[dict]:
        if nomenclator:
            entries = NomenclatorSource(nomenclator, settings.allowed_codes).municipalities()
        else:
            entries = await PersistenceRegistry(persistence, settings.allowed_codes).list_municipalities()
        if not entries:
            raise ConfigError("Registry is empty; run `municipal-spine init-db --nomenclator <file>`")
        resolver = MunicipalityResolver(NameIndex.build(entries, threshold=settings.match_threshold))
        rows = []
        for name in names:
            resolution = resolver.resolve(name)
            rows.append({
                "name": name,
                "code": resolution.code,
                "canonical": resolver.index.canonical_name(resolution.code) if resolution.code else None,
                "method": resolution.method,
                "variant": resolution.variant,
                "score": resolution.score,
            })
        return rows

    rows = run_with_persistence(database, _resolve)
    if json_out:
        print_json(rows)
    else:
        print_table(rows, title="Resolution")
    if any(row["code"] is None for row in rows):
        raise typer.Exit(code=1)


@app.command("init-db")
def init_db(
    database: str | None = typer.Option(None, "--database", "-d"),
    nomenclator: str | None = typer.Option(
        None, "--nomenclator", help="Seed dim_municipio from this nomenclátor file."
    ),
) -> None:
    """Create ledger, registry, bronze, silver and fact tables."""
    settings = get_settings()
    path = nomenclator or settings.nomenclator_path

    async def _init(persistence) -> tuple[int, int]:
        tables = await ensure_schema(persistence, list_datasets())
        seeded = 0
        if path:
            source = NomenclatorSource(
                path,
                settings.allowed_codes,
                year=settings.population_year,
                snapshot_date=settings.snapshot_date,
            )
            seeded = await seed_registry(persistence, source.municipalities())
        return len(tables), seeded

    tables, seeded = run_with_persistence(database, _init)
    console.print(f"[green]Schema ready[/green]: {tables} tables")
    if path:
        console.print(f"[green]Registry seeded[/green]: {seeded} municipalities")
