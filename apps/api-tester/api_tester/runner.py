"""Suite orchestration: collaborators, scenario/endpoint mode and run artifacts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Optional
import time
import xml.etree.ElementTree as ET

import structlog

from contract_parser.indexer import EndpointIndex
from contract_parser.models import Endpoint
from contract_parser.normalizers import load_definitions

from .console_reporter import ConsoleReporter
from .engine import ScenarioEngine, ScenarioNotFoundError
from .executor import StepExecutor, StepOutcome, StepState
from .extractor import ResponseExtractor
from .http_executor import HttpRequestSender, TransportError
from .models import Scenario, ScenarioResult, ScenarioStep, StepResult, SuiteResult, TesterConfig
from .output_config import OutputFormat
from .resolver import VariableResolver
from .validator import ResponseValidator

LOGGER = structlog.get_logger("api_tester")

ENDPOINT_MODE_SCENARIO = "endpoints"


@dataclass
class RunArtifacts:
    run_dir: Path
    events_file: Path
    summary_file: Path
    junit_file: Path


class TestRunner:
    """Executes a configured suite and records artifacts."""

    __test__ = False  # not a pytest class

    def __init__(
        self,
        config: TesterConfig,
        *,
        run_id: str,
        output_root: Optional[Path] = None,
        output_format: OutputFormat = OutputFormat.AUTO,
        scenario_name: Optional[str] = None,
        sender: Optional[HttpRequestSender] = None,
    ) -> None:
        self.config = config
        self.run_id = run_id
        self.output_root = output_root or Path(config.output_dir)
        self.scenario_name = scenario_name
        self.index = EndpointIndex(load_definitions(Path(item) for item in config.spec_paths()))
        self.sender = sender or HttpRequestSender(
            base_url=config.base_url,
            timeout=config.timeout,
            headers=config.request.headers,
            request_bodies=config.request.request_bodies,
        )
        self.validator = ResponseValidator() if config.validate_responses else None
        self._reporter = ConsoleReporter(output_format=output_format)
        self._events: Optional[IO[str]] = None

    def run(self) -> SuiteResult:
        structlog.contextvars.bind_contextvars(run_id=self.run_id)
        try:
            return self._run()
        finally:
            structlog.contextvars.unbind_contextvars("run_id")

    def _run(self) -> SuiteResult:
        artifacts = self._prepare_artifacts()
        started_at = datetime.now(timezone.utc)
        LOGGER.info("suite_started", endpoints=len(self.index), scenarios=len(self.config.scenarios))

        with artifacts.events_file.open("w", encoding="utf-8") as events_handle:
            self._events = events_handle
            try:
                if self.config.scenarios:
                    mode = "scenarios"
                    scenario_results = self._run_scenarios()
                else:
                    mode = "endpoints"
                    scenario_results = [self._run_endpoints()]
            finally:
                self._events = None

        finished_at = datetime.now(timezone.utc)
        summary = self._build_summary(
            mode=mode,
            started_at=started_at,
            finished_at=finished_at,
            scenario_results=scenario_results,
            artifacts=artifacts,
        )
        artifacts.summary_file.write_text(summary.model_dump_json(indent=2), encoding="utf-8")
        self._write_junit(scenario_results, artifacts.junit_file)

        self._reporter.finish_test_suite(
            total=summary.total_steps,
            passed=summary.passed_steps,
            failed=summary.failed_steps,
            skipped=summary.skipped_steps,
            duration_ms=summary.duration_ms,
        )
        LOGGER.info(
            "suite_finished",
            total=summary.total_steps,
            passed=summary.passed_steps,
            failed=summary.failed_steps,
            summary_file=str(artifacts.summary_file),
        )
        return summary

    def _run_scenarios(self) -> list[ScenarioResult]:
        executor = StepExecutor(
            endpoints=self.index,
            sender=self.sender,
            resolver=VariableResolver(self.config.default_values),
            extractor=ResponseExtractor(),
            validator=self.validator,
        )
        engine = ScenarioEngine(
            executor,
            isolate_variables=self.config.isolate_variables,
            on_step_start=self._on_step_start,
            on_step_finish=self._on_step_finish,
        )
        scenarios = self.config.scenarios
        if self.scenario_name:
            scenarios = [scenario for scenario in scenarios if scenario.name == self.scenario_name]
            if not scenarios:
                raise ScenarioNotFoundError(f"Scenario not found: {self.scenario_name}")
        return [self._run_one(engine, scenario) for scenario in scenarios]

    def _run_one(self, engine: ScenarioEngine, scenario: Scenario) -> ScenarioResult:
        self._reporter.start_scenario(scenario.name, len(scenario.steps))
        try:
            return engine.run_scenario(scenario)
        finally:
            self._reporter.finish_scenario()

    def _run_endpoints(self) -> ScenarioResult:
        """Hit every endpoint of the definition once, using parameter examples."""

        endpoints = self.index.endpoints()
        self._reporter.start_scenario(ENDPOINT_MODE_SCENARIO, len(endpoints))
        validator = self.validator or ResponseValidator()
        started_at = datetime.now(timezone.utc)
        results: list[StepResult] = []
        try:
            for index, endpoint in enumerate(endpoints, start=1):
                name = endpoint.operation_id or endpoint.label
                self._reporter.report_step_start(index, name, endpoint.path, endpoint.method)
                result = self._run_endpoint(endpoint, index, name, validator)
                results.append(result)
                self._write_event(result)
                self._reporter.report_step_result(
                    step_num=index,
                    step_name=name,
                    endpoint=endpoint.path,
                    method=endpoint.method,
                    passed=result.passed,
                    duration_ms=result.duration_ms,
                    error_msg=result.error,
                )
        finally:
            self._reporter.finish_scenario()
        finished_at = datetime.now(timezone.utc)
        passed = sum(1 for result in results if result.passed)
        return ScenarioResult(
            scenario=ENDPOINT_MODE_SCENARIO,
            description="Every endpoint of the API definition",
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=round((finished_at - started_at).total_seconds() * 1000, 3),
            total_steps=len(results),
            passed_steps=passed,
            failed_steps=len(results) - passed,
            results=results,
        )

    def _run_endpoint(
        self,
        endpoint: Endpoint,
        index: int,
        name: str,
        validator: ResponseValidator,
    ) -> StepResult:
        path_params = {p.name: p.example for p in endpoint.parameters_in("path") if p.example}
        path_params.update(self.config.request.path_params)
        query_params = {p.name: p.example for p in endpoint.parameters_in("query") if p.example}
        query_params.update(self.config.request.query_params)

        started_at = datetime.now(timezone.utc)
        timer = time.perf_counter()
        response = None
        error: Optional[str] = None
        passed = False
        expected: Optional[str] = None
        try:
            response = self.sender.send(endpoint, path_params, query_params, endpoint.request_body)
        except TransportError as exc:
            LOGGER.warning("transport_failed", endpoint=endpoint.label, error=str(exc))
            error = str(exc)
        else:
            verdict = validator.validate(endpoint, response)
            passed = verdict.passed
            error = verdict.failure_reason
            expected = verdict.expected_status

        return StepResult(
            scenario=ENDPOINT_MODE_SCENARIO,
            step_index=index,
            step_name=name,
            method=endpoint.method,
            path=endpoint.path,
            status="passed" if passed else "failed",
            state=StepState.SUCCEEDED.value if passed else StepState.FAILED.value,
            status_code=response.status_code if response else None,
            expected_status=expected,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            duration_ms=round((time.perf_counter() - timer) * 1000, 3),
            elapsed_ms=response.elapsed_ms if response else None,
            response_body=response.body if response else None,
            error=error,
        )

    def _on_step_start(self, scenario: Scenario, step: ScenarioStep, index: int) -> None:
        self._reporter.report_step_start(index, step.name, step.endpoint, step.method)

    def _on_step_finish(self, scenario: Scenario, step: ScenarioStep, index: int, outcome: StepOutcome) -> None:
        if outcome.state is StepState.SKIPPED:
            self._reporter.report_step_skipped(index, step.name, outcome.missing)
            return
        if outcome.result is None:
            return
        self._write_event(outcome.result)
        self._reporter.report_step_result(
            step_num=index,
            step_name=step.name,
            endpoint=outcome.result.path,
            method=step.method,
            passed=outcome.result.passed,
            duration_ms=outcome.result.duration_ms,
            error_msg=outcome.result.error,
        )

    def _write_event(self, result: StepResult) -> None:
        if self._events is None:
            return
        self._events.write(result.model_dump_json() + "\n")
        self._events.flush()

    def _prepare_artifacts(self) -> RunArtifacts:
        run_dir = self.output_root / self.run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        return RunArtifacts(
            run_dir=run_dir,
            events_file=run_dir / "events.jsonl",
            summary_file=run_dir / "summary.json",
            junit_file=run_dir / "results.junit.xml",
        )

    def _build_summary(
        self,
        *,
        mode: str,
        started_at: datetime,
        finished_at: datetime,
        scenario_results: list[ScenarioResult],
        artifacts: RunArtifacts,
    ) -> SuiteResult:
        step_results = [result for scenario in scenario_results for result in scenario.results]
        failed = [result for result in step_results if not result.passed]
        failures_payload = [
            {
                "scenario": result.scenario,
                "step_name": result.step_name,
                "status_code": result.status_code,
                "error": result.error,
            }
            for result in failed
        ]
        duration_ms = (finished_at - started_at).total_seconds() * 1000
        return SuiteResult(
            run_id=self.run_id,
            mode=mode,
            base_url=self.sender.base_url,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=round(duration_ms, 3),
            total_steps=len(step_results),
            passed_steps=len(step_results) - len(failed),
            failed_steps=len(failed),
            skipped_steps=sum(len(scenario.skipped_steps) for scenario in scenario_results),
            failures=failures_payload,
            scenarios=scenario_results,
            events_file=str(artifacts.events_file),
            summary_file=str(artifacts.summary_file),
            junit_file=str(artifacts.junit_file),
        )

    def _write_junit(self, scenario_results: list[ScenarioResult], junit_file: Path) -> None:
        suites = ET.Element("testsuites", attrib={"name": self.run_id})
        for scenario in scenario_results:
            suite = ET.SubElement(
                suites,
                "testsuite",
                attrib={
                    "name": scenario.scenario,
                    "tests": str(scenario.total_steps + len(scenario.skipped_steps)),
                    "failures": str(scenario.failed_steps),
                    "skipped": str(len(scenario.skipped_steps)),
                    "time": str(scenario.duration_ms / 1000),
                },
            )
            for result in scenario.results:
                case = ET.SubElement(
                    suite,
                    "testcase",
                    attrib={
                        "classname": scenario.scenario,
                        "name": result.step_name,
                        "time": str(result.duration_ms / 1000),
                    },
                )
                if not result.passed:
                    failure = ET.SubElement(
                        case,
                        "failure",
                        attrib={"message": result.error or "Step failed"},
                    )
                    failure.text = result.response_body or result.error or ""
            for step_name in scenario.skipped_steps:
                case = ET.SubElement(suite, "testcase", attrib={"classname": scenario.scenario, "name": step_name})
                ET.SubElement(case, "skipped", attrib={"message": "dependencies not completed"})
        tree = ET.ElementTree(suites)
        tree.write(junit_file, encoding="utf-8", xml_declaration=True)

