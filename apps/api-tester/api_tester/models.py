"""Scenario, configuration and runtime models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_VALUES: dict[str, Any] = {
    "id": "1",
    "page": "1",
    "limit": "10",
    "offset": "0",
    "token": "test-token",
}


class StepAssertions(BaseModel):
    """Extra checks consumed by the response validator."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    status: Optional[int] = None
    response_time_ms: Optional[float] = None
    json_: dict[str, Any] = Field(default_factory=dict, alias="json")


class ScenarioStep(BaseModel):
    """Single HTTP call inside a scenario."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(min_length=1)
    description: Optional[str] = None
    endpoint: str = Field(min_length=1)
    method: str = "GET"
    path_params: dict[str, Any] = Field(default_factory=dict)
    query_params: dict[str, Any] = Field(default_factory=dict)
    request_body: Any = None
    extract: dict[str, str] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    assertions: Optional[StepAssertions] = Field(default=None, alias="assert")

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()


class Scenario(BaseModel):
    """Ordered, named sequence of steps."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: Optional[str] = None
    steps: list[ScenarioStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_step_names(self) -> "Scenario":
        seen: set[str] = set()
        for step in self.steps:
            if step.name in seen:
                raise ValueError(f"Scenario '{self.name}' declares step '{step.name}' more than once")
            seen.add(step.name)
        return self


class RequestDefaults(BaseModel):
    headers: dict[str, str] = Field(default_factory=dict)
    path_params: dict[str, str] = Field(default_factory=dict)
    query_params: dict[str, str] = Field(default_factory=dict)
    request_bodies: dict[str, Any] = Field(default_factory=dict)


class TesterConfig(BaseModel):
    """Unified configuration loaded from YAML and CLI overrides."""

    includes: list[str] = Field(default_factory=list)
    spec: Optional[str] = None
    spec_files: list[str] = Field(default_factory=list, alias="specFiles")
    base_url: Optional[str] = None
    output_dir: str = "./test-reports"
    timeout: float = 30
    verbose: bool = False
    request: RequestDefaults = Field(default_factory=RequestDefaults)
    default_values: dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_VALUES))
    isolate_variables: bool = False
    validate_responses: bool = True
    scenarios: list[Scenario] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    def spec_paths(self) -> list[str]:
        paths = list(self.spec_files)
        if self.spec and self.spec not in paths:
            paths.insert(0, self.spec)
        return paths


class StepResult(BaseModel):
    """Runtime result for one executed step."""

    scenario: str
    step_index: int
    step_name: str
    method: str
    path: str
    status: str
    state: str
    status_code: Optional[int] = None
    expected_status: Optional[str] = None
    started_at: datetime
    finished_at: datetime
    duration_ms: float
    elapsed_ms: Optional[float] = None
    response_body: Optional[str] = None
    extracted: list[str] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status == "passed"


class ScenarioResult(BaseModel):
    """Outcome of one scenario run."""

    scenario: str
    description: Optional[str] = None
    started_at: datetime
    finished_at: datetime
    duration_ms: float
    total_steps: int
    passed_steps: int
    failed_steps: int
    skipped_steps: list[str] = Field(default_factory=list)
    results: list[StepResult] = Field(default_factory=list)


class SuiteResult(BaseModel):
    """Aggregated runtime summary."""

    run_id: str
    mode: str
    base_url: str
    started_at: datetime
    finished_at: datetime
    duration_ms: float
    total_steps: int
    passed_steps: int
    failed_steps: int
    skipped_steps: int
    failures: list[dict[str, Any]] = Field(default_factory=list)
    scenarios: list[ScenarioResult] = Field(default_factory=list)
    events_file: str
    summary_file: str
    junit_file: str
