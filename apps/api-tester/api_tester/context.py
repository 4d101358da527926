"""Per-scenario execution state."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from .models import StepResult
from .values import VariableValue


class ExecutionContext:
    """Variables, step completion flags and step results for one scenario run.

    Variables only ever grow or get overwritten during a run. Completion flags
    and results are written at most once per step.
    """

    def __init__(self, variables: Optional[Mapping[str, VariableValue]] = None) -> None:
        self.variables: dict[str, VariableValue] = dict(variables or {})
        self.step_status: dict[str, bool] = {}
        self.step_results: dict[str, StepResult] = {}

    def get_variable(self, name: str) -> tuple[VariableValue, bool]:
        if name in self.variables:
            return self.variables[name], True
        return None, False

    def set_variable(self, name: str, value: VariableValue) -> None:
        self.variables[name] = value

    def update_variables(self, values: Mapping[str, VariableValue]) -> None:
        self.variables.update(values)

    def is_completed(self, step_name: str) -> bool:
        return self.step_status.get(step_name, False)

    def mark_completed(self, step_name: str) -> None:
        if step_name in self.step_status:
            raise RuntimeError(f"Step '{step_name}' already completed in this run")
        self.step_status[step_name] = True

    def record_result(self, step_name: str, result: StepResult) -> None:
        if step_name in self.step_results:
            raise RuntimeError(f"Step '{step_name}' already has a recorded result in this run")
        self.step_results[step_name] = result

    def get_step_result(self, step_name: str) -> Optional[StepResult]:
        return self.step_results.get(step_name)

    def snapshot(self) -> dict[str, Any]:
        return {
            "variables": dict(self.variables),
            "completed": sorted(name for name, done in self.step_status.items() if done),
            "results": sorted(self.step_results),
        }
