"""
CLI: ``municipal-spine runs``: read-only views of the Run/Step ledger.
"""

from __future__ import annotations

from typing import Any

import typer

from municipal_spine.cli.utils import console, err_console, print_dict, print_json, print_table, run_with_persistence
from municipal_spine.core.timestamps import to_iso8601
from municipal_spine.ledger import Run, RunLedger, Step

app = typer.Typer(no_args_is_help=True)


def _run_view(run: Run) -> dict[str, Any]:
    return {
        "id": run.id,
        "pipeline": run.pipeline_name,
        "status": run.status.value,
        "started_at": to_iso8601(run.started_at),
        "ended_at": to_iso8601(run.ended_at),
    }


@app.command("list")
def list_runs(
    pipeline: str | None = typer.Option(None, "--pipeline", "-p"),
    status: str | None = typer.Option(None, "--status", "-s"),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List pipeline runs, newest first."""

    async def _list(persistence) -> list[Run]:
        return await RunLedger(persistence).list_runs(pipeline_name=pipeline, status=status, limit=limit)

    runs = run_with_persistence(database, _list)
    views = [_run_view(run) for run in runs]
    if json_out:
        print_json(views)
        return
    print_table(views, title="Runs")


@app.command("show")
def show_run(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a run, its metadata and its steps."""

    async def _show(persistence) -> tuple[Run | None, list[Step]]:
        ledger = RunLedger(persistence)
        run = await ledger.get_run(run_id)
        steps = await ledger.get_steps(run_id) if run else []
        return run, steps

    run, steps = run_with_persistence(database, _show)
    if run is None:
        err_console.print(f"[bold red]Error[/bold red]: run {run_id} not found")
        raise typer.Exit(code=1)

    if json_out:
        print_json({**_run_view(run), "metadata": run.metadata, "steps": [s.to_dict() for s in steps]})
        return

    print_dict(_run_view(run), title=f"Run: {run_id}")
    if run.metadata:
        console.print()
        print_dict(run.metadata, title="Metadata")
    console.print()
    print_table([s.to_dict() for s in steps], title="Steps")
