from __future__ import annotations

import json

from structlog.testing import capture_logs

from api_tester.context import ExecutionContext
from api_tester.extractor import ResponseExtractor, candidate_paths, dotted, lookup_path


def test_lookup_path_walks_maps_and_lists() -> None:
    document = {"data": {"items": [{"id": 1}, {"id": 2}]}}

    assert lookup_path(document, "data.items.1.id") == (2, True)
    assert lookup_path(document, "data.items.5.id") == (None, False)
    assert lookup_path(document, "data.missing") == (None, False)
    assert lookup_path(document, "") == (None, False)


def test_candidate_paths_order() -> None:
    assert candidate_paths("items[0].id") == ["$.items[0].id", "items[0].id", "items.0.id"]
    assert candidate_paths("$.data.id") == ["$.data.id", "data.id", "data.0.id"]


def test_extracted_values_keep_their_type() -> None:
    context = ExecutionContext()
    body = json.dumps({"id": 99, "active": True, "owner": {"name": "Ada"}, "tags": ["a"]})

    extracted = ResponseExtractor().extract(
        {"user_id": "$.id", "active": "active", "owner": "owner", "tags": "tags"},
        body,
        context,
    )

    assert extracted == {"user_id": 99, "active": True, "owner": {"name": "Ada"}, "tags": ["a"]}
    assert context.get_variable("user_id") == (99, True)


def test_bracket_notation_is_normalised() -> None:
    context = ExecutionContext()

    ResponseExtractor().extract({"first": "items[0].id"}, json.dumps({"items": [{"id": 1}]}), context)

    assert context.variables == {"first": 1}


def test_root_array_paths_in_every_notation() -> None:
    context = ExecutionContext()

    extracted = ResponseExtractor().extract(
        {"dot": "0.id", "bracket": "[0].id", "anchored": "$[0].id"},
        json.dumps([{"id": 5}]),
        context,
    )

    assert extracted == {"dot": 5, "bracket": 5, "anchored": 5}
    assert {dotted(path) for path in ("$[0].id", "[0].id", "0.id", "$.0.id")} == {"0.id"}


def test_first_item_heuristic() -> None:
    context = ExecutionContext()

    ResponseExtractor().extract({"user": "users.name"}, json.dumps({"users": [{"id": "u-1"}]}), context)

    assert context.variables == {"user": "u-1"}


def test_failing_rule_does_not_stop_the_batch() -> None:
    context = ExecutionContext({"kept": "yes"})

    with capture_logs() as logs:
        extracted = ResponseExtractor().extract(
            {"missing": "$.nope", "name": "$.name"},
            json.dumps({"name": "widget"}),
            context,
            step="create",
        )

    assert extracted == {"name": "widget"}
    assert context.variables == {"kept": "yes", "name": "widget"}
    failures = [entry for entry in logs if entry["event"] == "extraction_failed"]
    assert len(failures) == 1
    assert failures[0]["variable"] == "missing"
    assert failures[0]["step"] == "create"


def test_invalid_json_skips_extraction() -> None:
    context = ExecutionContext({"kept": "yes"})

    with capture_logs() as logs:
        extracted = ResponseExtractor().extract({"id": "$.id"}, "<html>oops</html>", context)

    assert extracted == {}
    assert context.variables == {"kept": "yes"}
    assert [entry["event"] for entry in logs] == ["extraction_skipped"]
