"""
Run/Step ledger: the durable trace of pipeline executions.

A Run is created when a pipeline starts and closed exactly once. Each
phase gets a Step, created right before the phase executes and closed
right after it. Each Step stores its 1-based ``sequence`` within the Run;
steps are listed by it, since phases can start within the same millisecond.

Status lifecycle (both entities)::

    RUNNING ──► COMPLETED
       │
       └──────► FAILED

Rows are written with ``insert`` when opened and closed with an ``upsert``
on ``id``, so the ledger works on any ``Persistence`` backend.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from municipal_spine.core.errors import PipelineError, ValidationError
from municipal_spine.core.logging import get_logger
from municipal_spine.core.timestamps import from_iso8601, to_iso8601, utc_now
from municipal_spine.persistence.base import Persistence, Row

logger = get_logger(__name__)

RUNS_TABLE = "etl_runs"
STEPS_TABLE = "etl_run_steps"

RUN_COLUMNS = {
    "id": "text",
    "pipeline_name": "text",
    "status": "text",
    "started_at": "text",
    "ended_at": "text",
    "metadata": "json",
}

STEP_COLUMNS = {
    "id": "text",
    "run_id": "text",
    "step_name": "text",
    "sequence": "integer",
    "status": "text",
    "started_at": "text",
    "ended_at": "text",
    "error_message": "text",
}


class RunStatus(str, Enum):
    """Status of a Run or a Step."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


VALID_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.RUNNING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
}


class InvalidTransitionError(PipelineError):
    """Raised when closing an already-closed Run or Step."""

    def __init__(self, current: RunStatus, target: RunStatus, entity: str):
        super().__init__(f"Invalid {entity} transition: {current.value} → {target.value}")
        self.current = current
        self.target = target


def validate_transition(current: RunStatus, target: RunStatus, entity: str) -> None:
    if target not in VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current, target, entity)


def _load_json(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


@dataclass
class Run:
    """One pipeline execution."""

    id: str
    pipeline_name: str
    status: RunStatus
    started_at: datetime
    ended_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, pipeline_name: str, metadata: dict[str, Any] | None = None) -> Run:
        return cls(
            id=str(uuid.uuid4()),
            pipeline_name=pipeline_name,
            status=RunStatus.RUNNING,
            started_at=utc_now(),
            metadata=metadata or {},
        )

    def to_row(self) -> Row:
        return {
            "id": self.id,
            "pipeline_name": self.pipeline_name,
            "status": self.status.value,
            "started_at": to_iso8601(self.started_at),
            "ended_at": to_iso8601(self.ended_at),
            "metadata": self.metadata,
        }

    @classmethod
    def from_row(cls, row: Row) -> Run:
        return cls(
            id=row["id"],
            pipeline_name=row["pipeline_name"],
            status=RunStatus(row["status"]),
            started_at=from_iso8601(row["started_at"]),
            ended_at=from_iso8601(row.get("ended_at")),
            metadata=_load_json(row.get("metadata")),
        )


@dataclass
class Step:
    """One phase of a Run."""

    id: str
    run_id: str
    step_name: str
    status: RunStatus
    started_at: datetime
    ended_at: datetime | None = None
    error_message: str | None = None
    sequence: int = 0

    @classmethod
    def create(cls, run_id: str, step_name: str, sequence: int = 0) -> Step:
        return cls(
            id=str(uuid.uuid4()),
            run_id=run_id,
            step_name=step_name,
            status=RunStatus.RUNNING,
            started_at=utc_now(),
            sequence=sequence,
        )

    @property
    def duration_ms(self) -> int | None:
        if self.ended_at is None:
            return None
        return int((self.ended_at - self.started_at).total_seconds() * 1000)

    def to_row(self) -> Row:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "step_name": self.step_name,
            "sequence": self.sequence,
            "status": self.status.value,
            "started_at": to_iso8601(self.started_at),
            "ended_at": to_iso8601(self.ended_at),
            "error_message": self.error_message,
        }

    def to_dict(self) -> dict[str, Any]:
        """Step result as reported in the pipeline summary."""
        return {
            "step_name": self.step_name,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
        }

    @classmethod
    def from_row(cls, row: Row) -> Step:
        return cls(
            id=row["id"],
            run_id=row["run_id"],
            step_name=row["step_name"],
            status=RunStatus(row["status"]),
            started_at=from_iso8601(row["started_at"]),
            ended_at=from_iso8601(row.get("ended_at")),
            error_message=row.get("error_message"),
            sequence=row.get("sequence") or 0,
        )


class RunLedger:
    """Persists Run and Step lifecycle changes."""

    def __init__(self, persistence: Persistence):
        self.persistence = persistence
        self._sequences: dict[str, int] = {}

    async def start_run(self, pipeline_name: str, metadata: dict[str, Any] | None = None) -> Run:
        run = Run.create(pipeline_name, metadata)
        await self.persistence.insert(RUNS_TABLE, [run.to_row()])
        logger.info("run_started", run_id=run.id, pipeline=pipeline_name)
        return run

    async def finish_run(
        self,
        run: Run,
        status: RunStatus,
        metadata: dict[str, Any] | None = None,
    ) -> Run:
        """Close the run; ``metadata`` replaces what was stored at start.

        ``run`` is only updated once the write succeeds, so a failed close
        leaves it RUNNING and can be retried.
        """
        validate_transition(run.status, status, "Run")
        closed = replace(
            run,
            status=status,
            ended_at=utc_now(),
            metadata=run.metadata if metadata is None else metadata,
        )
        await self.persistence.upsert(RUNS_TABLE, [closed.to_row()], ["id"])
        run.status, run.ended_at, run.metadata = closed.status, closed.ended_at, closed.metadata
        logger.info("run_finished", run_id=run.id, status=status.value)
        return run

    async def start_step(self, run: Run, step_name: str) -> Step:
        sequence = self._sequences.get(run.id, 0) + 1
        self._sequences[run.id] = sequence
        step = Step.create(run.id, step_name, sequence)
        await self.persistence.insert(STEPS_TABLE, [step.to_row()])
        logger.debug("step_started", step=step_name)
        return step

    async def finish_step(
        self,
        step: Step,
        status: RunStatus,
        error_message: str | None = None,
    ) -> Step:
        validate_transition(step.status, status, "Step")
        closed = replace(step, status=status, ended_at=utc_now(), error_message=error_message)
        await self.persistence.upsert(STEPS_TABLE, [closed.to_row()], ["id"])
        step.status, step.ended_at, step.error_message = closed.status, closed.ended_at, closed.error_message
        logger.debug("step_finished", step=step.step_name, status=status.value, duration_ms=step.duration_ms)
        return step

    async def list_runs(
        self,
        pipeline_name: str | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> list[Run]:
        filter: dict[str, Any] = {}
        if pipeline_name:
            filter["pipeline_name"] = pipeline_name
        if status:
            try:
                filter["status"] = RunStatus(status).value
            except ValueError as e:
                raise ValidationError(f"Unknown run status: {status}") from e
        rows = await self.persistence.select_rows(RUNS_TABLE, filter=filter or None)
        runs = [Run.from_row(row) for row in rows]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return runs[:limit]

    async def get_run(self, run_id: str) -> Run | None:
        rows = await self.persistence.select_rows(RUNS_TABLE, filter={"id": run_id})
        return Run.from_row(rows[0]) if rows else None

    async def get_steps(self, run_id: str) -> list[Step]:
        rows = await self.persistence.select_rows(STEPS_TABLE, filter={"run_id": run_id})
        steps = [Step.from_row(row) for row in rows]
        steps.sort(key=lambda s: (s.sequence, s.started_at))
        return steps


__all__ = [
    "InvalidTransitionError",
    "RUNS_TABLE",
    "RUN_COLUMNS",
    "Run",
    "RunLedger",
    "RunStatus",
    "STEPS_TABLE",
    "STEP_COLUMNS",
    "Step",
    "VALID_TRANSITIONS",
    "validate_transition",
]
