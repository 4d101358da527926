"""Execution of a single scenario step."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol
import json
import time

import structlog

from contract_parser.models import Endpoint

from .context import ExecutionContext
from .extractor import ResponseExtractor
from .gate import can_run, missing_dependencies
from .http_executor import HttpResponse, TransportError, quote_path_value
from .models import ScenarioStep, StepAssertions, StepResult
from .resolver import VariableResolver
from .validator import ValidationOutcome, classify_by_status
from .values import to_text

LOGGER = structlog.get_logger("api_tester")


class StepState(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class EndpointResolver(Protocol):
    def find(self, path: str, method: str) -> Optional[Endpoint]: ...


class RequestSender(Protocol):
    def send(
        self,
        endpoint: Endpoint,
        path_params: dict[str, str],
        query_params: dict[str, str],
        body: Optional[str] = None,
    ) -> HttpResponse: ...


class Validator(Protocol):
    def validate(
        self,
        endpoint: Endpoint,
        response: HttpResponse,
        assertions: Optional[StepAssertions] = None,
    ) -> ValidationOutcome: ...


@dataclass
class PreparedRequest:
    endpoint: Endpoint
    path_params: dict[str, str]
    query_params: dict[str, str]
    body: Optional[str]
    bindings: dict[str, Any] = field(default_factory=dict)


@dataclass
class StepOutcome:
    state: StepState
    result: Optional[StepResult] = None
    missing: list[str] = field(default_factory=list)


class StepExecutor:
    """Drives one step: gate, resolve, send, classify, extract, record."""

    def __init__(
        self,
        *,
        endpoints: EndpointResolver,
        sender: RequestSender,
        resolver: VariableResolver,
        extractor: Optional[ResponseExtractor] = None,
        validator: Optional[Validator] = None,
    ) -> None:
        self.endpoints = endpoints
        self.sender = sender
        self.resolver = resolver
        self.extractor = extractor or ResponseExtractor()
        self.validator = validator

    def execute(
        self,
        step: ScenarioStep,
        context: ExecutionContext,
        *,
        scenario: str,
        index: int,
    ) -> StepOutcome:
        logger = LOGGER.bind(scenario=scenario, step=step.name)

        if not can_run(step, context.step_status):
            missing = missing_dependencies(step, context.step_status)
            logger.warning("step_skipped", reason="dependencies not completed", missing=missing)
            return StepOutcome(state=StepState.SKIPPED, missing=missing)

        logger.info("step_started", method=step.method, endpoint=step.endpoint)
        started_at = datetime.now(timezone.utc)
        timer = time.perf_counter()

        prepared = self.prepare(step, context)
        try:
            response = self.sender.send(
                prepared.endpoint,
                prepared.path_params,
                prepared.query_params,
                prepared.body,
            )
        except TransportError as exc:
            logger.warning("transport_failed", error=str(exc))
            result = self._result(
                step,
                scenario=scenario,
                index=index,
                path=prepared.endpoint.path,
                started_at=started_at,
                timer=timer,
                state=StepState.FAILED,
                error=str(exc),
            )
            context.record_result(step.name, result)
            return StepOutcome(state=StepState.FAILED, result=result)

        if self.validator is not None:
            verdict = self.validator.validate(prepared.endpoint, response, step.assertions)
        else:
            verdict = classify_by_status(response)
        state = StepState.SUCCEEDED if verdict.passed else StepState.FAILED
        # Completion gates dependents; passing does not.
        context.mark_completed(step.name)

        extracted: list[str] = []
        if step.extract and response.body:
            extracted = sorted(
                self.extractor.extract(step.extract, response.body, context, step=step.name)
            )

        result = self._result(
            step,
            scenario=scenario,
            index=index,
            path=prepared.endpoint.path,
            started_at=started_at,
            timer=timer,
            state=state,
            response=response,
            verdict=verdict,
            extracted=extracted,
        )
        context.record_result(step.name, result)
        if verdict.passed:
            logger.info("step_passed", status_code=response.status_code, elapsed_ms=response.elapsed_ms)
        else:
            logger.warning("step_failed", status_code=response.status_code, reason=verdict.failure_reason)
        return StepOutcome(state=state, result=result)

    def prepare(self, step: ScenarioStep, context: ExecutionContext) -> PreparedRequest:
        """Resolve path parameters, then the endpoint path, then query and body."""

        bindings: dict[str, Any] = {}
        path_params: dict[str, str] = {}
        for key, raw in step.path_params.items():
            outcome = self.resolver.render(to_text(raw), context, bindings, field=f"path_params.{key}")
            path_params[key] = outcome.text
            bindings[key] = outcome.text

        path = self.resolver.render(step.endpoint, context, bindings, field="endpoint", encode=quote_path_value).text
        for name, value in bindings.items():
            path_params.setdefault(name, to_text(value))

        query_params = {
            key: self.resolver.render(to_text(raw), context, bindings, field=f"query_params.{key}").text
            for key, raw in step.query_params.items()
        }

        body = self._render_body(step.request_body, context, bindings)
        endpoint = self.resolve_endpoint(step).model_copy(update={"path": path})
        return PreparedRequest(
            endpoint=endpoint,
            path_params=path_params,
            query_params=query_params,
            body=body,
            bindings=bindings,
        )

    def resolve_endpoint(self, step: ScenarioStep) -> Endpoint:
        endpoint = self.endpoints.find(step.endpoint, step.method)
        if endpoint is not None:
            return endpoint
        LOGGER.warning("endpoint_not_in_definition", method=step.method, endpoint=step.endpoint)
        return Endpoint(
            path=step.endpoint,
            method=step.method,
            operation_id=step.name,
            description=step.description or step.name,
            synthetic=True,
        )

    def _render_body(
        self,
        raw: Any,
        context: ExecutionContext,
        bindings: dict[str, Any],
    ) -> Optional[str]:
        if raw is None:
            return None
        if isinstance(raw, str):
            text = raw
        else:
            text = json.dumps(raw, ensure_ascii=False)
        if not text:
            return None
        return self.resolver.render(text, context, bindings, field="request_body").text

    @staticmethod
    def _result(
        step: ScenarioStep,
        *,
        scenario: str,
        index: int,
        path: str,
        started_at: datetime,
        timer: float,
        state: StepState,
        response: Optional[HttpResponse] = None,
        verdict: Optional[ValidationOutcome] = None,
        extracted: Optional[list[str]] = None,
        error: Optional[str] = None,
    ) -> StepResult:
        duration_ms = (time.perf_counter() - timer) * 1000
        return StepResult(
            scenario=scenario,
            step_index=index,
            step_name=step.name,
            method=step.method,
            path=path,
            status="passed" if state is StepState.SUCCEEDED else "failed",
            state=state.value,
            status_code=response.status_code if response else None,
            expected_status=verdict.expected_status if verdict else None,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            duration_ms=round(duration_ms, 3),
            elapsed_ms=response.elapsed_ms if response else None,
            response_body=response.body if response else None,
            extracted=extracted or [],
            error=error or (verdict.failure_reason if verdict else None),
        )
