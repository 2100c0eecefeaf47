"""
Structured error types for municipal-spine.

Every failure that crosses a module boundary is a ``MunicipalError``. Each
one carries a category, a structured context, and an optional chained
cause, so the orchestrator can record it on a Step and the log line keeps
the provenance (dataset, resource, table) of the failure.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                      MunicipalError                           │
        │              (category, context, cause)                       │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  SourceError        PersistenceError       ConfigError        │
        │  (SOURCE)           (DATABASE)             (CONFIG)           │
        │                          │                                    │
        │                   ProcedureNotFoundError                      │
        │                                                               │
        │  ValidationError    PipelineError                             │
        │  (VALIDATION)       (PIPELINE)                                │
        │                          │                                    │
        │                   StepFailedError                             │
        └──────────────────────────────────────────────────────────────┘

Record-level rejections are never raised: the normalizer returns them as
values and the caller counts them. Chunk load failures are caught by the
batch loader. Only step failures reach the orchestrator.

Usage:
    from municipal_spine.core.errors import SourceError

    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        raise SourceError("CKAN request failed", cause=e).with_context(url=url)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification in logs and run metadata."""

    SOURCE = "SOURCE"             # Upstream API, file not found, bad payload
    DATABASE = "DATABASE"         # Persistence call failed
    VALIDATION = "VALIDATION"     # Record or parameter invalid
    CONFIG = "CONFIG"             # Missing or invalid settings
    PIPELINE = "PIPELINE"         # Orchestration failure
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        pipeline: Pipeline (dataset) name
        step: Step name within the run
        run_id: Run identifier
        dataset: Source dataset identifier
        resource_id: Source resource identifier
        table: Table being read or written
        url: URL that was being accessed
        http_status: HTTP status code if applicable
        metadata: Additional key-value pairs
    """

    pipeline: str | None = None
    step: str | None = None
    run_id: str | None = None
    dataset: str | None = None
    resource_id: str | None = None
    table: str | None = None
    url: str | None = None
    http_status: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["pipeline", "step", "run_id", "dataset", "resource_id",
                    "table", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class MunicipalError(Exception):
    """
    Base exception for all municipal-spine errors.

    Subclasses set ``default_category``. The original exception, when there
    is one, is passed as ``cause`` and chained as ``__cause__``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> MunicipalError:
        """Add context fields fluently; unknown keys go to ``metadata``."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# SOURCE ERRORS
# =============================================================================


class SourceError(MunicipalError):
    """Error fetching or decoding data from an upstream source."""

    default_category = ErrorCategory.SOURCE


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================


class PersistenceError(MunicipalError):
    """A persistence call (insert, upsert, select, procedure) failed."""

    default_category = ErrorCategory.DATABASE


class ProcedureNotFoundError(PersistenceError):
    """The named stored procedure is not provisioned on this backend."""

    def __init__(self, name: str, **kwargs: Any):
        super().__init__(f"Procedure not found: {name}", **kwargs)
        self.procedure = name


# =============================================================================
# CONFIGURATION / VALIDATION ERRORS
# =============================================================================


class ConfigError(MunicipalError):
    """Missing or invalid configuration (unknown dataset, bad URL)."""

    default_category = ErrorCategory.CONFIG


class ValidationError(MunicipalError):
    """Invalid parameters or schema descriptors."""

    default_category = ErrorCategory.VALIDATION


# =============================================================================
# PIPELINE ERRORS
# =============================================================================


class PipelineError(MunicipalError):
    """Error raised while orchestrating a pipeline run."""

    default_category = ErrorCategory.PIPELINE


class StepFailedError(PipelineError):
    """A pipeline phase raised; wraps the original error with the step name."""

    def __init__(self, step_name: str, message: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.step_name = step_name
        self.context.step = step_name


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "MunicipalError",
    "SourceError",
    "PersistenceError",
    "ProcedureNotFoundError",
    "ConfigError",
    "ValidationError",
    "PipelineError",
    "StepFailedError",
]
