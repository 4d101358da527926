from __future__ import annotations

import json
from typing import Callable, Optional

import pytest
from structlog.testing import capture_logs

from contract_parser.indexer import EndpointIndex
from contract_parser.models import ApiDefinition, Endpoint, ResponseSpec

from api_tester.context import ExecutionContext
from api_tester.engine import ConfigurationError, ScenarioEngine, ScenarioNotFoundError
from api_tester.executor import StepExecutor, StepState
from api_tester.extractor import ResponseExtractor
from api_tester.http_executor import HttpResponse, TransportError
from api_tester.models import Scenario, ScenarioStep
from api_tester.resolver import VariableResolver
from api_tester.validator import ResponseValidator

Handler = Callable[[Endpoint, dict, dict, Optional[str]], HttpResponse]


class RecordingSender:
    """Answers requests through ``handler`` and remembers every call in order."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.calls: list[dict[str, object]] = []

    def send(self, endpoint, path_params, query_params, body=None) -> HttpResponse:
        self.calls.append(
            {
                "method": endpoint.method,
                "path": endpoint.path,
                "path_params": dict(path_params),
                "query_params": dict(query_params),
                "body": body,
            }
        )
        return self.handler(endpoint, path_params, query_params, body)


def _json(status: int, payload: object) -> HttpResponse:
    return HttpResponse(status_code=status, elapsed_ms=1.0, body=json.dumps(payload))


def _index() -> EndpointIndex:
    ok = {"200": ResponseSpec(description="ok"), "201": ResponseSpec(description="created")}
    definition = ApiDefinition(
        title="Shop",
        version="1.0",
        endpoints=[
            Endpoint(path="/users", method="POST", responses={"201": ok["201"]}),
            Endpoint(path="/users/{userId}", method="GET", responses={"200": ok["200"]}),
            Endpoint(path="/users/{userId}/orders", method="GET", responses={"200": ok["200"]}),
        ],
    )
    return EndpointIndex(definition)


def _engine(handler: Handler, **kwargs) -> tuple[ScenarioEngine, RecordingSender]:
    sender = RecordingSender(handler)
    executor = StepExecutor(
        endpoints=_index(),
        sender=sender,
        resolver=VariableResolver({"limit": "10"}),
        extractor=ResponseExtractor(),
        validator=ResponseValidator(),
    )
    return ScenarioEngine(executor, **kwargs), sender


def _shop_handler(endpoint, path_params, query_params, body) -> HttpResponse:
    if endpoint.method == "POST":
        return _json(201, {"id": 42, "name": json.loads(body)["name"]})
    return _json(200, {"items": [{"id": 7}]})


def test_extracted_variable_flows_into_dependent_step() -> None:
    engine, sender = _engine(_shop_handler)
    scenario = Scenario(
        name="user-flow",
        steps=[
            ScenarioStep(
                name="create",
                endpoint="/users",
                method="post",
                request_body={"name": "Ada"},
                extract={"user_id": "$.id"},
            ),
            ScenarioStep(
                name="orders",
                endpoint="/users/{userId}/orders",
                query_params={"limit": "{limit}"},
                extract={"first_order": "items[0].id"},
                dependencies=["create"],
            ),
        ],
    )

    result = engine.run_scenario(scenario)

    assert [call["path"] for call in sender.calls] == ["/users", "/users/42/orders"]
    assert sender.calls[0]["body"] == '{"name": "Ada"}'
    assert sender.calls[1]["query_params"] == {"limit": "10"}
    assert result.passed_steps == 2
    assert result.results[0].extracted == ["user_id"]
    assert engine.variables == {"user_id": 42, "first_order": 7}
    assert engine.get_step_result("orders").status_code == 200


def test_path_params_are_resolved_before_the_path() -> None:
    engine, sender = _engine(_shop_handler, seed_variables={"user_id": 3})
    scenario = Scenario(
        name="lookup",
        steps=[ScenarioStep(name="get", endpoint="/users/{userId}", path_params={"userId": "{{.user_id}}"})],
    )

    engine.run_scenario(scenario)

    assert sender.calls[0]["path"] == "/users/3"
    assert sender.calls[0]["path_params"] == {"userId": "3"}


def test_step_with_incomplete_dependency_is_skipped_without_request() -> None:
    def refuse(endpoint, path_params, query_params, body) -> HttpResponse:
        raise TransportError("connection refused")

    engine, sender = _engine(refuse)
    scenario = Scenario(
        name="down",
        steps=[
            ScenarioStep(name="create", endpoint="/users", method="POST", request_body={"name": "x"}),
            ScenarioStep(name="fetch", endpoint="/users/{userId}", dependencies=["create"]),
        ],
    )

    with capture_logs() as logs:
        result = engine.run_scenario(scenario)

    assert len(sender.calls) == 1
    assert result.skipped_steps == ["fetch"]
    assert [step.step_name for step in result.results] == ["create"]
    assert result.results[0].state == StepState.FAILED.value
    assert result.results[0].status_code is None
    assert "connection refused" in result.results[0].error
    skipped = [entry for entry in logs if entry["event"] == "step_skipped"]
    assert skipped[0]["missing"] == ["create"]


def test_failed_validation_still_completes_the_step() -> None:
    def server_error(endpoint, path_params, query_params, body) -> HttpResponse:
        if endpoint.method == "POST":
            return _json(500, {"error": "boom"})
        return _json(200, {})

    engine, sender = _engine(server_error)
    scenario = Scenario(
        name="completed-not-passed",
        steps=[
            ScenarioStep(name="create", endpoint="/users", method="POST"),
            ScenarioStep(name="fetch", endpoint="/users/1", dependencies=["create"]),
        ],
    )

    result = engine.run_scenario(scenario)

    assert len(sender.calls) == 2
    assert [step.status for step in result.results] == ["failed", "passed"]
    assert "expected 201, got 500" in result.results[0].error
    assert result.skipped_steps == []


def test_unknown_endpoint_runs_against_a_synthetic_endpoint() -> None:
    engine, sender = _engine(lambda *args: _json(200, {}))
    scenario = Scenario(name="health", steps=[ScenarioStep(name="ping", endpoint="/health")])

    with capture_logs() as logs:
        result = engine.run_scenario(scenario)

    assert sender.calls[0]["path"] == "/health"
    assert result.passed_steps == 1
    assert any(entry["event"] == "endpoint_not_in_definition" for entry in logs)


def test_variables_carry_over_between_scenarios() -> None:
    engine, sender = _engine(_shop_handler)
    producer = Scenario(
        name="producer",
        steps=[ScenarioStep(name="create", endpoint="/users", method="POST", request_body='{"name": "B"}', extract={"user_id": "id"})],
    )
    consumer = Scenario(name="consumer", steps=[ScenarioStep(name="fetch", endpoint="/users/{user_id}")])

    results = engine.run_scenarios([producer, consumer])

    assert [result.passed_steps for result in results] == [1, 1]
    assert sender.calls[1]["path"] == "/users/42"


def test_isolated_scenarios_start_from_the_seed() -> None:
    engine, sender = _engine(_shop_handler, isolate_variables=True, seed_variables={"region": "eu"})
    producer = Scenario(
        name="producer",
        steps=[ScenarioStep(name="create", endpoint="/users", method="POST", request_body='{"name": "B"}', extract={"user_id": "id"})],
    )
    consumer = Scenario(
        name="consumer",
        steps=[ScenarioStep(name="fetch", endpoint="/users/{user_id}", query_params={"region": "{region}"})],
    )

    engine.run_scenarios([producer, consumer])

    assert sender.calls[1]["path"] == "/users/{user_id}"
    assert sender.calls[1]["query_params"] == {"region": "eu"}
    assert engine.variables == {"region": "eu"}


def test_run_all_concatenates_results_in_order() -> None:
    engine, _ = _engine(lambda *args: _json(200, {}))
    scenarios = [
        Scenario(name="one", steps=[ScenarioStep(name="a", endpoint="/users/1"), ScenarioStep(name="b", endpoint="/users/2")]),
        Scenario(name="two", steps=[ScenarioStep(name="a", endpoint="/users/3")]),
    ]

    results = engine.run_all(scenarios)

    assert [(result.scenario, result.step_name) for result in results] == [("one", "a"), ("one", "b"), ("two", "a")]


def test_run_named_and_malformed_input() -> None:
    engine, _ = _engine(lambda *args: _json(200, {}))
    scenarios = [Scenario(name="only", steps=[ScenarioStep(name="a", endpoint="/users/1")])]

    assert engine.run_named(scenarios, "only").total_steps == 1
    with pytest.raises(ScenarioNotFoundError):
        engine.run_named(scenarios, "other")
    with pytest.raises(ConfigurationError):
        engine.run_scenarios("not-a-list")
    with pytest.raises(ConfigurationError):
        engine.run_scenarios([{"name": "raw-dict"}])


def test_engine_variables_can_be_seeded_and_inspected() -> None:
    engine, sender = _engine(lambda *args: _json(200, {}))
    engine.set_variable("user_id", 5)

    engine.run_scenario(Scenario(name="s", steps=[ScenarioStep(name="a", endpoint="/users/{userId}")]))

    assert sender.calls[0]["path"] == "/users/5"
    assert engine.get_variable("user_id") == (5, True)
    assert engine.get_variable("missing") == (None, False)
    assert engine.get_step_result("a").passed
    assert engine.get_step_result("b") is None


def test_context_records_each_step_once() -> None:
    context = ExecutionContext()
    context.set_variable("token", "t")
    context.mark_completed("a")

    with pytest.raises(RuntimeError):
        context.mark_completed("a")
    assert context.is_completed("a")
    assert not context.is_completed("b")
    assert context.snapshot() == {"variables": {"token": "t"}, "completed": ["a"], "results": []}


def test_completed_steps_do_not_leak_into_the_next_scenario() -> None:
    engine, sender = _engine(_shop_handler)
    first = Scenario(
        name="first",
        steps=[ScenarioStep(name="login", endpoint="/users", method="POST", request_body={"name": "Ada"})],
    )
    second = Scenario(
        name="second",
        steps=[ScenarioStep(name="fetch", endpoint="/users/1", dependencies=["login"])],
    )

    results = engine.run_scenarios([first, second])

    assert [call["path"] for call in sender.calls] == ["/users"]
    assert results[0].passed_steps == 1
    assert results[1].results == []
    assert results[1].skipped_steps == ["fetch"]


def test_substituted_path_values_are_percent_encoded() -> None:
    engine, sender = _engine(lambda *args: _json(200, {}), seed_variables={"name": "John Doe"})
    scenario = Scenario(
        name="encoded",
        steps=[
            ScenarioStep(name="a", endpoint="/users/{name}"),
            ScenarioStep(name="b", endpoint="/health"),
        ],
    )

    result = engine.run_scenario(scenario)

    assert [call["path"] for call in sender.calls] == ["/users/John%20Doe", "/health"]
    assert result.passed_steps == 2


def test_substituted_braces_are_not_substituted_again() -> None:
    engine, sender = _engine(
        lambda *args: _json(200, {}),
        seed_variables={"wrapped": "{other}", "other": "x"},
    )

    engine.run_scenario(Scenario(name="braces", steps=[ScenarioStep(name="a", endpoint="/items/{wrapped}")]))

    assert sender.calls[0]["path"] == "/items/%7Bother%7D"


def test_transport_error_on_one_step_does_not_abort_the_scenario() -> None:
    def reject_spaces(endpoint, path_params, query_params, body) -> HttpResponse:
        if " " in endpoint.path:
            raise TransportError("URL can't contain control characters")
        return _json(200, {})

    engine, sender = _engine(reject_spaces)
    scenario = Scenario(
        name="mixed",
        steps=[
            ScenarioStep(name="a", endpoint="/users/John Doe"),
            ScenarioStep(name="b", endpoint="/health"),
        ],
    )

    result = engine.run_scenario(scenario)

    assert len(sender.calls) == 2
    assert [step.status for step in result.results] == ["failed", "passed"]
