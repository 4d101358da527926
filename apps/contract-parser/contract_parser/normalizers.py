"""Helpers for turning OpenAPI/Swagger specifications into ApiDefinition objects."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable
import json

import yaml

from .models import ApiDefinition, Endpoint, Parameter, ResponseSpec

HTTP_METHODS = ("get", "post", "put", "delete", "patch", "head", "options")
_MAX_REF_DEPTH = 32


class UnsupportedSpecError(RuntimeError):
    """Raised when the CLI cannot determine how to parse a spec."""


def normalize_spec(spec_path: Path) -> ApiDefinition:
    """Normalize an OpenAPI 3 or Swagger 2 document into an ApiDefinition."""

    suffix = spec_path.suffix.lower()
    if suffix not in {".json", ".yaml", ".yml"}:
        raise UnsupportedSpecError(f"Unsupported specification format: {suffix}")
    try:
        raw_text = spec_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise UnsupportedSpecError(f"Cannot read specification {spec_path}: {exc}") from exc
    try:
        parsed = yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        raise UnsupportedSpecError(f"Specification {spec_path} is not valid YAML/JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise UnsupportedSpecError("Expected OpenAPI/Swagger document to be an object")
    if "openapi" in parsed:
        return _normalize_openapi(parsed, spec_path)
    if "swagger" in parsed:
        return _normalize_swagger(parsed, spec_path)
    raise UnsupportedSpecError("YAML/JSON file is not an OpenAPI/Swagger document")


def load_definitions(spec_paths: Iterable[Path]) -> ApiDefinition:
    """Parse every spec file and merge their endpoints into a single definition."""

    definitions = [normalize_spec(path) for path in spec_paths]
    if not definitions:
        raise UnsupportedSpecError("No specification files were provided")
    if len(definitions) == 1:
        return definitions[0]
    merged = ApiDefinition(title="Merged API definition", version="1.0")
    for definition in definitions:
        merged.source_paths.extend(definition.source_paths)
        merged.endpoints.extend(definition.endpoints)
    return merged


def _normalize_openapi(data: dict[str, Any], spec_path: Path) -> ApiDefinition:
    info = data.get("info") or {}
    endpoints: list[Endpoint] = []

    for raw_path, path_item in (data.get("paths") or {}).items():
        if not isinstance(path_item, dict):
            continue
        shared_params = path_item.get("parameters") or []
        for method in HTTP_METHODS:
            entry = path_item.get(method)
            if not isinstance(entry, dict):
                continue
            parameters = [
                _openapi_parameter(data, raw)
                for raw in _merge_parameters(data, shared_params, entry.get("parameters") or [])
            ]
            endpoints.append(
                Endpoint(
                    path=raw_path,
                    method=method.upper(),
                    operation_id=entry.get("operationId"),
                    description=entry.get("description") or entry.get("summary"),
                    tags=list(entry.get("tags") or []),
                    request_body=_openapi_request_body(data, entry.get("requestBody")),
                    parameters=parameters,
                    responses=_openapi_responses(data, entry.get("responses") or {}),
                )
            )

    return ApiDefinition(
        title=info.get("title") or spec_path.stem,
        version=str(info.get("version", "0")),
        description=info.get("description"),
        source_paths=[str(spec_path)],
        endpoints=endpoints,
    )


def _normalize_swagger(data: dict[str, Any], spec_path: Path) -> ApiDefinition:
    info = data.get("info") or {}
    base_path = (data.get("basePath") or "").rstrip("/")
    endpoints: list[Endpoint] = []

    for raw_path, path_item in (data.get("paths") or {}).items():
        if not isinstance(path_item, dict):
            continue
        shared_params = path_item.get("parameters") or []
        for method in HTTP_METHODS:
            entry = path_item.get(method)
            if not isinstance(entry, dict):
                continue
            parameters: list[Parameter] = []
            request_body: str | None = None
            for raw in _merge_parameters(data, shared_params, entry.get("parameters") or []):
                if raw.get("in") == "body":
                    schema = _inline_refs(data, raw.get("schema") or {})
                    example = schema.get("example") if isinstance(schema, dict) else None
                    if example is not None:
                        request_body = _example_text(example)
                    continue
                parameters.append(
                    Parameter(
                        name=str(raw.get("name", "")),
                        location=str(raw.get("in", "query")),
                        required=bool(raw.get("required", False)),
                        description=raw.get("description"),
                        type=raw.get("type") or "string",
                        example=_first_example(raw.get("x-example"), raw.get("example"), raw.get("default")),
                    )
                )
            responses: dict[str, ResponseSpec] = {}
            for status, raw_response in (entry.get("responses") or {}).items():
                response = _resolve_ref(data, raw_response)
                if not isinstance(response, dict):
                    continue
                examples = response.get("examples") or {}
                responses[str(status)] = ResponseSpec(
                    description=response.get("description"),
                    json_schema=_inline_refs(data, response["schema"]) if "schema" in response else None,
                    example=examples.get("application/json"),
                )
            endpoints.append(
                Endpoint(
                    path=f"{base_path}{raw_path}",
                    method=method.upper(),
                    operation_id=entry.get("operationId"),
                    description=entry.get("description") or entry.get("summary"),
                    tags=list(entry.get("tags") or []),
                    request_body=request_body,
                    parameters=parameters,
                    responses=responses,
                )
            )

    return ApiDefinition(
        title=info.get("title") or spec_path.stem,
        version=str(info.get("version", "0")),
        description=info.get("description"),
        source_paths=[str(spec_path)],
        endpoints=endpoints,
    )


def _merge_parameters(
    document: dict[str, Any],
    shared: list[Any],
    own: list[Any],
) -> list[dict[str, Any]]:
    # Operation-level parameters override path-level ones with the same name+location.
    merged: dict[tuple[str, str], dict[str, Any]] = {}
    for raw in [*shared, *own]:
        resolved = _resolve_ref(document, raw)
        if not isinstance(resolved, dict):
            continue
        merged[(str(resolved.get("name")), str(resolved.get("in")))] = resolved
    return list(merged.values())


def _openapi_parameter(document: dict[str, Any], raw: dict[str, Any]) -> Parameter:
    schema = _inline_refs(document, raw.get("schema") or {})
    schema_type = schema.get("type") if isinstance(schema, dict) else None
    if isinstance(schema_type, list):
        schema_type = schema_type[0] if schema_type else None
    schema_example = schema.get("example") if isinstance(schema, dict) else None
    return Parameter(
        name=str(raw.get("name", "")),
        location=str(raw.get("in", "query")),
        required=bool(raw.get("required", False)),
        description=raw.get("description"),
        type=schema_type,
        example=_first_example(raw.get("example"), schema_example),
    )


def _openapi_request_body(document: dict[str, Any], raw: Any) -> str | None:
    body = _resolve_ref(document, raw)
    if not isinstance(body, dict):
        return None
    for content_type, media in (body.get("content") or {}).items():
        if "json" not in content_type or not isinstance(media, dict):
            continue
        schema = _inline_refs(document, media.get("schema") or {})
        example = media.get("example")
        if example is None and isinstance(schema, dict):
            example = schema.get("example")
        if example is not None:
            return _example_text(example)
    return None


def _openapi_responses(document: dict[str, Any], raw_responses: dict[str, Any]) -> dict[str, ResponseSpec]:
    responses: dict[str, ResponseSpec] = {}
    for status, raw in raw_responses.items():
        response = _resolve_ref(document, raw)
        if not isinstance(response, dict):
            continue
        spec = ResponseSpec(description=response.get("description"))
        for content_type, media in (response.get("content") or {}).items():
            if "json" not in content_type or not isinstance(media, dict):
                continue
            if "schema" in media:
                spec.json_schema = _inline_refs(document, media["schema"])
            spec.example = media.get("example")
            break
        responses[str(status)] = spec
    return responses


def _resolve_ref(document: dict[str, Any], node: Any) -> Any:
    """Follow local ``$ref`` pointers until a concrete node is reached."""

    depth = 0
    while isinstance(node, dict) and isinstance(node.get("$ref"), str):
        depth += 1
        if depth > _MAX_REF_DEPTH:
            raise UnsupportedSpecError(f"Reference chain too deep at {node['$ref']}")
        node = _lookup_pointer(document, node["$ref"])
    return node


def _inline_refs(document: dict[str, Any], node: Any, _stack: tuple[str, ...] = ()) -> Any:
    """Return a copy of ``node`` with local references expanded.

    Recursive schemas are cut at the point of recursion and replaced with an
    empty schema, which accepts anything.
    """

    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str):
            if ref in _stack:
                return {}
            return _inline_refs(document, _lookup_pointer(document, ref), (*_stack, ref))
        return {key: _inline_refs(document, value, _stack) for key, value in node.items()}
    if isinstance(node, list):
        return [_inline_refs(document, item, _stack) for item in node]
    return node


def _lookup_pointer(document: dict[str, Any], ref: str) -> Any:
    if not ref.startswith("#/"):
        raise UnsupportedSpecError(f"Only local references are supported: {ref}")
    node: Any = document
    for token in ref[2:].split("/"):
        token = token.replace("~1", "/").replace("~0", "~")
        if not isinstance(node, dict) or token not in node:
            raise UnsupportedSpecError(f"Unresolvable reference: {ref}")
        node = node[token]
    return node


def _first_example(*candidates: Any) -> str | None:
    for candidate in candidates:
        if candidate is not None:
            return _example_text(candidate)
    return None


def _example_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, ensure_ascii=False)
