"""Scenario execution engine."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

import structlog

from .context import ExecutionContext
from .executor import StepExecutor, StepOutcome, StepState
from .gate import check_dependencies
from .models import Scenario, ScenarioResult, ScenarioStep, StepResult
from .values import VariableValue

LOGGER = structlog.get_logger("api_tester")

StepStartHook = Callable[[Scenario, ScenarioStep, int], None]
StepFinishHook = Callable[[Scenario, ScenarioStep, int, StepOutcome], None]


class ConfigurationError(ValueError):
    """Raised for malformed scenario or configuration input; aborts the run."""


class ScenarioNotFoundError(LookupError):
    """Raised when a scenario requested by name does not exist."""


class ScenarioEngine:
    """Runs scenarios in declaration order, each step strictly after the previous one.

    Every scenario gets a fresh :class:`ExecutionContext`. Variables flow from
    one scenario into the next unless ``isolate_variables`` is set.
    """

    def __init__(
        self,
        executor: StepExecutor,
        *,
        isolate_variables: bool = False,
        seed_variables: Optional[Mapping[str, VariableValue]] = None,
        on_step_start: Optional[StepStartHook] = None,
        on_step_finish: Optional[StepFinishHook] = None,
    ) -> None:
        self.executor = executor
        self.isolate_variables = isolate_variables
        self._seed = dict(seed_variables or {})
        self._variables: dict[str, VariableValue] = dict(self._seed)
        self._last_context: Optional[ExecutionContext] = None
        self.on_step_start = on_step_start
        self.on_step_finish = on_step_finish

    @property
    def variables(self) -> dict[str, VariableValue]:
        return dict(self._variables)

    def get_variable(self, name: str) -> tuple[VariableValue, bool]:
        if name in self._variables:
            return self._variables[name], True
        return None, False

    def set_variable(self, name: str, value: VariableValue) -> None:
        self._variables[name] = value

    def get_step_result(self, step_name: str) -> Optional[StepResult]:
        """Result of ``step_name`` in the most recently run scenario."""

        if self._last_context is None:
            return None
        return self._last_context.get_step_result(step_name)

    def run_scenario(self, scenario: Scenario) -> ScenarioResult:
        logger = LOGGER.bind(scenario=scenario.name)
        logger.info("scenario_started", steps=len(scenario.steps), description=scenario.description)
        for issue in check_dependencies(scenario):
            logger.warning("dependency_unsatisfiable", step=issue.step, dependency=issue.dependency, kind=issue.kind)

        seed = self._seed if self.isolate_variables else self._variables
        context = ExecutionContext(seed)
        self._last_context = context

        started_at = datetime.now(timezone.utc)
        results: list[StepResult] = []
        skipped: list[str] = []
        for index, step in enumerate(scenario.steps, start=1):
            if self.on_step_start is not None:
                self.on_step_start(scenario, step, index)
            outcome = self.executor.execute(step, context, scenario=scenario.name, index=index)
            if outcome.state is StepState.SKIPPED:
                skipped.append(step.name)
            elif outcome.result is not None:
                results.append(outcome.result)
            if self.on_step_finish is not None:
                self.on_step_finish(scenario, step, index, outcome)

        if not self.isolate_variables:
            self._variables = dict(context.variables)
        finished_at = datetime.now(timezone.utc)

        passed = sum(1 for result in results if result.passed)
        logger.info(
            "scenario_finished",
            total=len(results),
            passed=passed,
            failed=len(results) - passed,
            skipped=len(skipped),
        )
        return ScenarioResult(
            scenario=scenario.name,
            description=scenario.description,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=round((finished_at - started_at).total_seconds() * 1000, 3),
            total_steps=len(results),
            passed_steps=passed,
            failed_steps=len(results) - passed,
            skipped_steps=skipped,
            results=results,
        )

    def run_scenarios(self, scenarios: Iterable[Any]) -> list[ScenarioResult]:
        return [self.run_scenario(scenario) for scenario in _validated(scenarios)]

    def run_all(self, scenarios: Iterable[Any]) -> list[StepResult]:
        """Run every scenario in order and concatenate their step results."""

        results: list[StepResult] = []
        for scenario_result in self.run_scenarios(scenarios):
            results.extend(scenario_result.results)
        return results

    def run_named(self, scenarios: Iterable[Any], name: str) -> ScenarioResult:
        for scenario in _validated(scenarios):
            if scenario.name == name:
                return self.run_scenario(scenario)
        raise ScenarioNotFoundError(f"Scenario not found: {name}")


def _validated(scenarios: Iterable[Any]) -> Sequence[Scenario]:
    if scenarios is None or isinstance(scenarios, (str, bytes, Mapping)):
        raise ConfigurationError("Scenarios must be provided as a list")
    validated: list[Scenario] = []
    for position, scenario in enumerate(scenarios, start=1):
        if not isinstance(scenario, Scenario):
            raise ConfigurationError(
                f"Scenario #{position} is malformed: expected Scenario, got {type(scenario).__name__}"
            )
        validated.append(scenario)
    return validated
