"""Dependency gating between scenario steps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from .models import Scenario, ScenarioStep


@dataclass(frozen=True)
class DependencyIssue:
    step: str
    dependency: str
    kind: str

    def describe(self) -> str:
        if self.kind == "unknown":
            return f"step '{self.step}' depends on unknown step '{self.dependency}'"
        if self.kind == "forward":
            return f"step '{self.step}' depends on later step '{self.dependency}'"
        return f"step '{self.step}' is part of a dependency cycle through '{self.dependency}'"


def can_run(step: ScenarioStep, status: Mapping[str, bool]) -> bool:
    """True when every declared dependency has completed in this run."""

    return all(status.get(dependency, False) for dependency in step.dependencies)


def missing_dependencies(step: ScenarioStep, status: Mapping[str, bool]) -> list[str]:
    return [dependency for dependency in step.dependencies if not status.get(dependency, False)]


def check_dependencies(scenario: Scenario) -> list[DependencyIssue]:
    """Report dependencies that can never be satisfied when steps run in order.

    Nothing here is fatal: such steps are skipped at runtime.
    """

    positions = {step.name: index for index, step in enumerate(scenario.steps)}
    graph = {step.name: list(step.dependencies) for step in scenario.steps}
    issues: list[DependencyIssue] = []

    for index, step in enumerate(scenario.steps):
        for dependency in step.dependencies:
            if dependency not in positions:
                issues.append(DependencyIssue(step.name, dependency, "unknown"))
            elif positions[dependency] >= index and not _on_cycle(graph, step.name, dependency):
                issues.append(DependencyIssue(step.name, dependency, "forward"))

    for step in scenario.steps:
        for dependency in step.dependencies:
            if dependency in positions and _on_cycle(graph, step.name, dependency):
                issues.append(DependencyIssue(step.name, dependency, "cycle"))
    return issues


def _on_cycle(graph: Mapping[str, list[str]], origin: str, start: str) -> bool:
    """True when ``origin`` is reachable from ``start`` along dependency edges."""

    stack = [start]
    seen: set[str] = set()
    while stack:
        current = stack.pop()
        if current == origin:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(graph.get(current, ()))
    return False
