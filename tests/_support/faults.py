"""
Fault injection for deterministic test failures.

``MemoryPersistence`` calls its ``fault_hook(operation, target, payload)``
before every operation. The hooks built here raise ``InjectedFault`` on a
chosen call so chunk-level and step-level isolation can be exercised
without a real database::

    hook = fail_on_call("upsert", "silver_alojamiento", call_number=2)
    persistence = MemoryPersistence(fault_hook=hook)

``fail_phase`` replaces one pipeline phase with a coroutine that raises.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from typing import Any


class InjectedFault(Exception):
    """Raised by an installed fault."""


class FaultPlan:
    """Fault hook that fires on selected calls of ``(operation, target)``."""

    def __init__(self) -> None:
        self._rules: list[tuple[str, str | None, set[int] | None, str]] = []
        self.seen: Counter[tuple[str, str]] = Counter()

    def add(
        self,
        operation: str,
        target: str | None = None,
        *,
        calls: set[int] | None = None,
        message: str = "Injected test fault",
    ) -> FaultPlan:
        """Fail ``operation`` on ``target`` at the given 1-based call numbers (all when None)."""
        self._rules.append((operation, target, calls, message))
        return self

    def __call__(self, operation: str, target: str, payload: Any) -> None:
        self.seen[(operation, target)] += 1
        number = self.seen[(operation, target)]
        for rule_op, rule_target, calls, message in self._rules:
            if rule_op != operation:
                continue
            if rule_target is not None and rule_target != target:
                continue
            if calls is None or number in calls:
                raise InjectedFault(f"{message} ({operation} {target} #{number})")


def fail_on_call(operation: str, target: str | None = None, *, call_number: int) -> FaultPlan:
    return FaultPlan().add(operation, target, calls={call_number})


def fail_always(operation: str, target: str | None = None) -> FaultPlan:
    return FaultPlan().add(operation, target)


def fail_phase(pipeline: Any, phase: str, message: str = "Injected phase fault") -> None:
    """Make ``pipeline.<phase>()`` raise ``InjectedFault``."""

    async def _raise() -> None:
        raise InjectedFault(message)

    setattr(pipeline, phase, _raise)


FaultHook = Callable[[str, str, Any], None]

__all__ = ["FaultHook", "FaultPlan", "InjectedFault", "fail_always", "fail_on_call", "fail_phase"]
