"""Core primitives: errors, logging, settings and timestamps."""

from municipal_spine.core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorContext,
    MunicipalError,
    PersistenceError,
    PipelineError,
    ProcedureNotFoundError,
    SourceError,
    StepFailedError,
    ValidationError,
)
from municipal_spine.core.logging import LogContext, configure_logging, get_logger
from municipal_spine.core.settings import MunicipalSettings, get_settings

__all__ = [
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "LogContext",
    "MunicipalError",
    "MunicipalSettings",
    "PersistenceError",
    "PipelineError",
    "ProcedureNotFoundError",
    "SourceError",
    "StepFailedError",
    "ValidationError",
    "configure_logging",
    "get_logger",
    "get_settings",
]
