"""
Test support utilities for municipal-spine tests.

Helpers that don't fit as pytest fixtures but are useful across test files.
"""

from __future__ import annotations

from typing import Any


def assert_dict_subset(actual: dict, expected: dict, path: str = "") -> None:
    """
    Assert that expected is a subset of actual (recursive).

    Args:
        actual: The full dictionary
        expected: The expected subset
        path: Current path (for error messages)
    """
    for key, expected_value in expected.items():
        current_path = f"{path}.{key}" if path else key

        assert key in actual, f"Missing key at {current_path}"
        actual_value = actual[key]

        if isinstance(expected_value, dict) and isinstance(actual_value, dict):
            assert_dict_subset(actual_value, expected_value, current_path)
        else:
            assert actual_value == expected_value, (
                f"Mismatch at {current_path}: "
                f"expected {expected_value!r}, got {actual_value!r}"
            )


class StepOrderValidator:
    """
    Validates the order of a run's steps.

    Usage:
        validator = StepOrderValidator(result.steps)
        validator.assert_before("fetch", "load_bronze")
        validator.assert_exact_order(["fetch", "load_bronze", ...])
    """

    def __init__(self, steps: list[Any]) -> None:
        self.step_names = [s["step_name"] if isinstance(s, dict) else s.step_name for s in steps]
        self._index = {name: i for i, name in enumerate(self.step_names)}

    def get_index(self, step_name: str) -> int:
        if step_name not in self._index:
            raise ValueError(f"Step '{step_name}' not found in {self.step_names}")
        return self._index[step_name]

    def assert_before(self, first: str, second: str) -> None:
        first_idx = self.get_index(first)
        second_idx = self.get_index(second)
        assert first_idx < second_idx, (
            f"Expected '{first}' (index {first_idx}) before "
            f"'{second}' (index {second_idx}), order: {self.step_names}"
        )

    def assert_exact_order(self, expected: list[str]) -> None:
        assert self.step_names == expected, (
            f"Step order mismatch:\n"
            f"  Expected: {expected}\n"
            f"  Actual:   {self.step_names}"
        )
