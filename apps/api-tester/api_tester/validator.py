"""Response validation against declared statuses, JSON schemas and step assertions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
import json

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from contract_parser.models import Endpoint, ResponseSpec

from .extractor import anchor, dotted, lookup_path, strip_anchor
from .http_executor import HttpResponse
from .models import StepAssertions


@dataclass(frozen=True)
class ValidationOutcome:
    passed: bool
    failure_reason: Optional[str] = None
    expected_status: Optional[str] = None


def status_in_success_range(status_code: int) -> bool:
    return 200 <= status_code < 300


def classify_by_status(response: HttpResponse) -> ValidationOutcome:
    """Fallback classification used when no validator is wired in."""

    if status_in_success_range(response.status_code):
        return ValidationOutcome(passed=True, expected_status="2xx")
    return ValidationOutcome(
        passed=False,
        failure_reason=f"Status code {response.status_code} is outside the 2xx success range",
        expected_status="2xx",
    )


def expected_status_code(endpoint: Endpoint) -> Optional[str]:
    """Lowest declared 2xx code, else the first declared numeric code."""

    numeric = [code for code in endpoint.responses if code.isdigit()]
    successes = sorted(code for code in numeric if code.startswith("2"))
    if successes:
        return successes[0]
    return numeric[0] if numeric else None


class ResponseValidator:
    """Compares a response with what the endpoint declares and what the step asserts."""

    def validate(
        self,
        endpoint: Endpoint,
        response: HttpResponse,
        assertions: Optional[StepAssertions] = None,
    ) -> ValidationOutcome:
        declared = expected_status_code(endpoint)
        expected = str(assertions.status) if assertions and assertions.status is not None else declared

        if expected is None:
            outcome = classify_by_status(response)
            if not outcome.passed:
                return outcome
        elif str(response.status_code) != expected:
            return ValidationOutcome(
                passed=False,
                failure_reason=f"Status code mismatch: expected {expected}, got {response.status_code}",
                expected_status=expected,
            )

        expected_label = expected or "2xx"
        spec = endpoint.responses.get(str(response.status_code))
        schema_failure = self._check_schema(spec, response)
        if schema_failure:
            return ValidationOutcome(passed=False, failure_reason=schema_failure, expected_status=expected_label)

        if assertions is not None:
            assertion_failure = self._check_assertions(assertions, response)
            if assertion_failure:
                return ValidationOutcome(
                    passed=False,
                    failure_reason=assertion_failure,
                    expected_status=expected_label,
                )

        return ValidationOutcome(passed=True, expected_status=expected_label)

    @staticmethod
    def _check_schema(spec: Optional[ResponseSpec], response: HttpResponse) -> Optional[str]:
        if spec is None or not spec.json_schema or not response.body:
            return None
        try:
            document = json.loads(response.body)
        except ValueError as exc:
            return f"Response body is not valid JSON: {exc}"
        try:
            validator = Draft7Validator(spec.json_schema)
            errors = sorted(validator.iter_errors(document), key=lambda err: list(err.path))
        except SchemaError as exc:
            return f"Declared response schema is invalid: {exc.message}"
        if not errors:
            return None
        lines = [f"- {_error_location(err.path)}: {err.message}" for err in errors]
        return "Response body does not match schema:\n" + "\n".join(lines)

    @staticmethod
    def _check_assertions(assertions: StepAssertions, response: HttpResponse) -> Optional[str]:
        threshold = assertions.response_time_ms
        if threshold is not None and response.elapsed_ms >= threshold:
            return f"Response time {response.elapsed_ms:.0f}ms exceeded threshold {threshold:g}ms"
        if not assertions.json_:
            return None
        try:
            document = json.loads(response.body)
        except ValueError:
            return "Response body is not valid JSON; json assertions cannot be checked"
        for path, expected in assertions.json_.items():
            actual, found = _find(document, path)
            if not found:
                return f"Assertion failed: {path} not present in response"
            if actual != expected:
                return f"Assertion failed: {path} expected {expected!r} but was {actual!r}"
        return None


def _find(document: Any, path: str) -> tuple[Any, bool]:
    # Same spellings as extraction, minus the first-item heuristic.
    anchored = anchor(path)
    stripped = strip_anchor(anchored)
    for candidate in (anchored, stripped, dotted(path)):
        value, found = lookup_path(document, candidate)
        if found:
            return value, True
    return None, False


def _error_location(path: Any) -> str:
    parts = [str(part) for part in path]
    return "$." + ".".join(parts) if parts else "$"
