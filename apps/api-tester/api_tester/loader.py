"""Configuration loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Any
import os

import yaml
from pydantic import ValidationError

from .engine import ConfigurationError
from .http_executor import BASE_URL_ENV
from .models import TesterConfig

_SCALAR_KEYS = (
    "spec",
    "base_url",
    "output_dir",
    "timeout",
    "verbose",
    "isolate_variables",
    "validate_responses",
)
_MAP_KEYS = ("default_values",)
_REQUEST_KEYS = ("headers", "path_params", "query_params", "request_bodies")


def load_config(path: Path) -> TesterConfig:
    """Load a YAML config, merge its includes and validate the result."""

    document = _load_document(path.resolve(), ())
    try:
        return TesterConfig.model_validate(document)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {path}:\n{exc}") from exc


def ensure_runnable(config: TesterConfig) -> None:
    """A run needs at least one spec file and a base URL (config or environment)."""

    if not config.spec_paths():
        raise ConfigurationError("An API specification file is required (spec or spec_files)")
    if not config.base_url and not os.getenv(BASE_URL_ENV):
        raise ConfigurationError(f"An API base URL is required (base_url or {BASE_URL_ENV})")


def _load_document(path: Path, stack: tuple[Path, ...]) -> dict[str, Any]:
    if path in stack:
        chain = " -> ".join(str(item) for item in (*stack, path))
        raise ConfigurationError(f"Configuration include cycle: {chain}")
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Configuration file {path} is not valid YAML: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")

    _resolve_spec_paths(data, path.parent)
    includes = data.get("includes") or []
    if not isinstance(includes, list):
        raise ConfigurationError(f"'includes' in {path} must be a list")

    merged = dict(data)
    merged["includes"] = []
    for include in includes:
        include_path = Path(include)
        if not include_path.is_absolute():
            include_path = path.parent / include_path
        included = _load_document(include_path.resolve(), (*stack, path))
        merged = merge_documents(merged, included)
    return merged


def _resolve_spec_paths(data: dict[str, Any], base_dir: Path) -> None:
    if isinstance(data.get("spec"), str) and data["spec"]:
        data["spec"] = _absolute(data["spec"], base_dir)
    for key in ("spec_files", "specFiles"):
        if isinstance(data.get(key), list):
            data[key] = [_absolute(str(item), base_dir) for item in data[key]]


def _absolute(value: str, base_dir: Path) -> str:
    candidate = Path(value)
    if candidate.is_absolute():
        return str(candidate)
    return str((base_dir / candidate).resolve())


def merge_documents(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge an included document into ``base``.

    Scalars are replaced when the override sets them, maps are merged key by
    key, spec files are de-duplicated and scenarios are appended.
    """

    result = dict(base)
    for key in _SCALAR_KEYS:
        if override.get(key) not in (None, ""):
            result[key] = override[key]

    spec_files = list(base.get("spec_files") or base.get("specFiles") or [])
    for item in override.get("spec_files") or override.get("specFiles") or []:
        if item not in spec_files:
            spec_files.append(item)
    result.pop("specFiles", None)
    if spec_files:
        result["spec_files"] = spec_files

    for key in _MAP_KEYS:
        if override.get(key):
            result[key] = {**(base.get(key) or {}), **override[key]}

    base_request = base.get("request") or {}
    override_request = override.get("request") or {}
    if override_request:
        result["request"] = {
            name: {**(base_request.get(name) or {}), **(override_request.get(name) or {})}
            for name in _REQUEST_KEYS
        }

    scenarios = list(base.get("scenarios") or [])
    scenarios.extend(override.get("scenarios") or [])
    if scenarios:
        result["scenarios"] = scenarios
    return result
