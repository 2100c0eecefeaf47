"""
Medallion pipeline orchestrator.

One generic pipeline runs every dataset in the catalog. A run executes
five phases in order, each tracked as a Step in the ledger::

    fetch → load_bronze → transform → load_silver → refresh_facts

The first four are mandatory: an exception fails the Step, fails the Run
and skips the remaining phases. ``refresh_facts`` is optional: its failure
is recorded on the Step and the Run still completes.

Every phase iterates over the dataset's resources in declared order, so
parent resources are fetched, transformed and loaded before children.

``run()`` never raises; callers inspect ``PipelineResult.success``.

Example:
    >>> pipeline = MedallionPipeline(get_dataset("alojamientos"), source, persistence)
    >>> result = await pipeline.run()
    >>> result.summary["silver_upserted"]
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from municipal_spine.aggregate import Aggregator
from municipal_spine.core.errors import StepFailedError
from municipal_spine.core.logging import LogContext, get_logger
from municipal_spine.core.settings import MunicipalSettings, get_settings
from municipal_spine.core.timestamps import to_iso8601, utc_now
from municipal_spine.datasets.catalog import get_dataset
from municipal_spine.datasets.schema import DatasetSpec, ResourceSpec
from municipal_spine.ledger import Run, RunLedger, RunStatus, Step
from municipal_spine.loader import BatchLoader
from municipal_spine.matching import MunicipalityResolver, NameIndex
from municipal_spine.normalize import normalize_records
from municipal_spine.persistence.base import Persistence, Row
from municipal_spine.registry import PersistenceRegistry, Registry
from municipal_spine.sources import create_source
from municipal_spine.sources.base import RawRecord, Source, drain

logger = get_logger(__name__)

MANDATORY_PHASES = ("fetch", "load_bronze", "transform", "load_silver")
OPTIONAL_PHASES = ("refresh_facts",)
PHASES = MANDATORY_PHASES + OPTIONAL_PHASES

SUMMARY_KEYS = (
    "records_fetched",
    "bronze_inserted",
    "bronze_errors",
    "silver_transformed",
    "silver_skipped",
    "silver_unresolved",
    "silver_upserted",
    "silver_errors",
    "silver_skipped_dedup",
    "silver_skipped_invalid_ref",
    "silver_nulled_refs",
    "facts_refreshed",
    "facts_errors",
)

MAX_UNRESOLVED_SAMPLE = 20


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""

    success: bool
    run_id: str | None
    pipeline_name: str
    summary: dict[str, int] = field(default_factory=dict)
    steps: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "run_id": self.run_id,
            "pipeline": self.pipeline_name,
            "summary": dict(self.summary),
            "steps": list(self.steps),
            "error": self.error,
        }


def resolve_resource_ids(
    dataset: DatasetSpec, resource_ids: Mapping[str, str] | None
) -> tuple[ResourceSpec, ...]:
    """Apply ``"dataset.resource"`` → id overrides to the dataset's resources."""
    if not resource_ids:
        return dataset.resources
    resources = []
    for resource in dataset.resources:
        override = resource_ids.get(f"{dataset.name}.{resource.key}")
        resources.append(replace(resource, resource_id=override) if override else resource)
    return tuple(resources)


class MedallionPipeline:
    """Runs one dataset through bronze, silver and gold."""

    def __init__(
        self,
        dataset: DatasetSpec,
        source: Source,
        persistence: Persistence,
        registry: Registry | None = None,
        settings: MunicipalSettings | None = None,
        *,
        overrides: Mapping[str, str] | None = None,
        postal_overrides: Mapping[str, str] | None = None,
    ):
        self.dataset = dataset
        self.source = source
        self.persistence = persistence
        self.settings = settings or get_settings()
        self.registry = registry or PersistenceRegistry(persistence, self.settings.allowed_codes)
        self.overrides = {**dataset.overrides, **(overrides or {})}
        self.postal_overrides = {**dataset.postal_overrides, **(postal_overrides or {})}
        self.resources = resolve_resource_ids(dataset, self.settings.resource_ids)

        self.ledger = RunLedger(persistence)
        self.loader = BatchLoader(persistence, self.settings.batch_size)
        self.aggregator = Aggregator(persistence, self.loader)

        self.summary: dict[str, int] = dict.fromkeys(SUMMARY_KEYS, 0)
        self._raw: dict[str, list[RawRecord]] = {}
        self._silver: dict[str, list[Row]] = {}

    @property
    def pipeline_name(self) -> str:
        return self.dataset.pipeline_name

    # ── Run lifecycle ────────────────────────────────────────────────────

    async def run(self) -> PipelineResult:
        run: Run | None = None
        steps: list[Step] = []
        try:
            run = await self.ledger.start_run(
                self.pipeline_name,
                metadata={"dataset": self.dataset.name, "dataset_id": self.dataset.dataset_id},
            )
            async with LogContext(run_id=run.id, pipeline=self.pipeline_name):
                return await self._execute(run, steps)
        except Exception as e:
            # Ledger writes themselves failed
            logger.error("pipeline_crashed", pipeline=self.pipeline_name, error=str(e), exc_info=True)
            if run is not None and run.status == RunStatus.RUNNING:
                await self._close_crashed_run(run, steps, e)
            return PipelineResult(
                success=False,
                run_id=run.id if run else None,
                pipeline_name=self.pipeline_name,
                summary=dict(self.summary),
                steps=[s.to_dict() for s in steps],
                error=str(e),
            )

    async def _close_crashed_run(self, run: Run, steps: list[Step], error: Exception) -> None:
        """Try once to mark ``run`` failed so it is not left RUNNING."""
        failed_step = next((s.step_name for s in reversed(steps) if s.status != RunStatus.COMPLETED), None)
        try:
            await self.ledger.finish_run(
                run,
                RunStatus.FAILED,
                metadata={"error": str(error), "failed_step": failed_step, "summary": dict(self.summary)},
            )
        except Exception as close_error:
            logger.error("run_close_failed", run_id=run.id, error=str(close_error))

    async def _execute(self, run: Run, steps: list[Step]) -> PipelineResult:
        phases: dict[str, Callable[[], Awaitable[None]]] = {
            "fetch": self.fetch,
            "load_bronze": self.load_bronze,
            "transform": self.transform,
            "load_silver": self.load_silver,
            "refresh_facts": self.refresh_facts,
        }

        for name in PHASES:
            step = await self.ledger.start_step(run, name)
            steps.append(step)
            try:
                await phases[name]()
            except Exception as e:
                await self.ledger.finish_step(step, RunStatus.FAILED, error_message=str(e))
                if name in OPTIONAL_PHASES:
                    logger.warning("optional_step_failed", step=name, error=str(e))
                    continue
                logger.error("step_failed", step=name, error=str(e))
                await self.ledger.finish_run(
                    run,
                    RunStatus.FAILED,
                    metadata={"error": str(e), "failed_step": name, "summary": dict(self.summary)},
                )
                return self._result(run, steps, error=str(e))
            await self.ledger.finish_step(step, RunStatus.COMPLETED)

        await self.ledger.finish_run(run, RunStatus.COMPLETED, metadata=dict(self.summary))
        logger.info("pipeline_completed", **self.summary)
        return self._result(run, steps)

    def _result(self, run: Run, steps: list[Step], error: str | None = None) -> PipelineResult:
        return PipelineResult(
            success=run.status == RunStatus.COMPLETED,
            run_id=run.id,
            pipeline_name=self.pipeline_name,
            summary=dict(self.summary),
            steps=[s.to_dict() for s in steps],
            error=error,
        )

    # ── Phases ───────────────────────────────────────────────────────────

    async def fetch(self) -> None:
        for resource in self.resources:
            records = await drain(
                self.source,
                resource.resource_id,
                page_size=self.settings.page_size,
                page_delay=self.settings.page_delay_seconds,
            )
            self._raw[resource.key] = records
            self.summary["records_fetched"] += len(records)

    async def load_bronze(self) -> None:
        ingested_at = to_iso8601(utc_now())
        for resource in self.resources:
            rows = [
                {
                    "source_dataset_id": self.dataset.dataset_id,
                    "source_resource_id": resource.resource_id,
                    "raw_row": raw,
                    "ingested_at": ingested_at,
                }
                for raw in self._raw.get(resource.key, [])
            ]
            result = await self.loader.load_bronze(resource.bronze_table, rows)
            self.summary["bronze_inserted"] += result.inserted
            self.summary["bronze_errors"] += result.errors

    async def transform(self) -> None:
        resolver = None
        if any(r.resolves_municipality for r in self.resources):
            resolver = await self._build_resolver()

        updated_at = to_iso8601(utc_now())
        for resource in self.resources:
            validation = normalize_records(
                self._raw.get(resource.key, []),
                resource,
                self.dataset.dataset_id,
                target_year=self.settings.target_year,
            )
            if validation.rejected:
                logger.warning(
                    "records_rejected",
                    resource=resource.key,
                    count=validation.rejected_count,
                    reasons=dict(validation.reasons()),
                )

            rows: list[Row] = []
            for record in validation.valid:
                if resolver is not None and resource.municipality_field is not None:
                    postal = record.get(resource.postal_code_field) if resource.postal_code_field else None
                    resolution = resolver.resolve(record.get(resource.municipality_field), postal)
                    record.municipality_code = resolution.code
                    record.municipio_normalizado = resolver.normalized_name(resolution)
                    if not resolution.resolved:
                        self.summary["silver_unresolved"] += 1
                row = record.to_row(include_normalized=resource.resolves_municipality)
                row["updated_at"] = updated_at
                rows.append(row)

            self._silver[resource.key] = rows
            self.summary["silver_transformed"] += validation.valid_count
            self.summary["silver_skipped"] += validation.rejected_count

        if resolver is not None and resolver.unresolved:
            logger.warning(
                "municipalities_unresolved",
                distinct=len(resolver.unresolved),
                names=sorted(resolver.unresolved)[:MAX_UNRESOLVED_SAMPLE],
            )

    async def _build_resolver(self) -> MunicipalityResolver:
        entries = await self.registry.list_municipalities()
        if not entries:
            logger.warning("registry_empty", hint="run `municipal-spine init-db --nomenclator <file>`")
        index = NameIndex.build(entries, threshold=self.settings.match_threshold)
        return MunicipalityResolver(index, self.overrides, self.postal_overrides)

    async def load_silver(self) -> None:
        for resource in self.resources:
            result = await self.loader.load_silver(
                resource.silver_table,
                self._silver.get(resource.key, []),
                resource.key_fields,
                reference=resource.reference,
                soft_reference=resource.soft_reference,
                procedure=resource.procedure,
            )
            self.summary["silver_upserted"] += result.loaded
            self.summary["silver_errors"] += result.errors
            self.summary["silver_skipped_dedup"] += result.skipped_dedup
            self.summary["silver_skipped_invalid_ref"] += result.skipped_invalid_ref
            self.summary["silver_nulled_refs"] += result.nulled_refs

    async def refresh_facts(self) -> None:
        failures: list[str] = []
        for fact in self.dataset.facts:
            try:
                result = await self.aggregator.refresh(fact)
            except Exception as e:
                self.summary["facts_errors"] += 1
                failures.append(f"{fact.table}: {e}")
                logger.error("fact_refresh_failed", table=fact.table, error=str(e))
                continue
            self.summary["facts_refreshed"] += result.refreshed
        if failures:
            raise StepFailedError("refresh_facts", "; ".join(failures))


# ── Multi-dataset runner ─────────────────────────────────────────────────

SourceFactory = Callable[[DatasetSpec, MunicipalSettings], Source]


async def _close_source(source: Source) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()


async def run_pipelines(
    names: Iterable[str],
    persistence: Persistence,
    *,
    settings: MunicipalSettings | None = None,
    source_factory: SourceFactory | None = None,
    registry: Registry | None = None,
    stop_on_failure: bool = False,
) -> list[PipelineResult]:
    """Run several datasets sequentially, one Run each."""
    settings = settings or get_settings()
    factory = source_factory or create_source
    results: list[PipelineResult] = []

    for name in names:
        dataset = get_dataset(name)
        try:
            source = factory(dataset, settings)
        except Exception as e:
            logger.error("source_unavailable", dataset=dataset.name, error=str(e))
            results.append(
                PipelineResult(
                    success=False,
                    run_id=None,
                    pipeline_name=dataset.pipeline_name,
                    summary=dict.fromkeys(SUMMARY_KEYS, 0),
                    error=str(e),
                )
            )
        else:
            try:
                pipeline = MedallionPipeline(dataset, source, persistence, registry, settings)
                results.append(await pipeline.run())
            finally:
                await _close_source(source)

        if stop_on_failure and not results[-1].success:
            logger.warning("pipelines_stopped", failed_at=name)
            break

    return results


__all__ = [
    "MANDATORY_PHASES",
    "MedallionPipeline",
    "OPTIONAL_PHASES",
    "PHASES",
    "PipelineResult",
    "SUMMARY_KEYS",
    "resolve_resource_ids",
    "run_pipelines",
]
