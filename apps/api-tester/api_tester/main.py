"""CLI entrypoint for api-tester."""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer

if __package__ in {None, ""}:
    current_file = Path(__file__).resolve()
    package_root = current_file.parents[1]
    apps_dir = current_file.parents[2]
    for candidate in [package_root, apps_dir / "contract-parser"]:
        candidate_str = str(candidate)
        if candidate_str not in sys.path and candidate.exists():
            sys.path.insert(0, candidate_str)
    __package__ = "api_tester"

from contract_parser.indexer import EndpointIndex
from contract_parser.normalizers import UnsupportedSpecError, load_definitions

from .engine import ConfigurationError, ScenarioNotFoundError
from .loader import ensure_runnable, load_config
from .logging_utils import configure_logging
from .models import TesterConfig
from .output_config import get_output_format, log_format_for
from .runner import TestRunner

app = typer.Typer(help="Run dependency-aware API scenarios against an OpenAPI/Swagger definition.")

CONFIG_ERROR_EXIT_CODE = 2


def _default_run_id() -> str:
    return datetime.now(timezone.utc).strftime("run-%Y%m%dT%H%M%SZ")


def _apply_overrides(
    config: TesterConfig,
    *,
    spec: list[Path],
    url: Optional[str],
    timeout: Optional[float],
    output_dir: Optional[Path],
    verbose: bool,
) -> TesterConfig:
    updates: dict[str, object] = {}
    if spec:
        updates["spec"] = None
        updates["spec_files"] = [str(path.resolve()) for path in spec]
    if url:
        updates["base_url"] = url
    if timeout is not None:
        updates["timeout"] = timeout
    if output_dir is not None:
        updates["output_dir"] = str(output_dir)
    if verbose:
        updates["verbose"] = True
    return config.model_copy(update=updates)


@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file."),
    spec: list[Path] = typer.Option([], "--spec", help="OpenAPI/Swagger file(s); overrides the config."),
    url: Optional[str] = typer.Option(None, "--url", help="API base URL; overrides the config."),
    timeout: Optional[float] = typer.Option(None, help="Per-request timeout in seconds."),
    output_dir: Optional[Path] = typer.Option(None, help="Directory for run artifacts."),
    run_id: Optional[str] = typer.Option(None, help="Identifier of this run (artifact sub-directory)."),
    scenario: Optional[str] = typer.Option(None, "--scenario", "-s", help="Run only the named scenario."),
    output_format: Optional[str] = typer.Option(None, help="Console output: auto, rich, plain or json."),
    log_level: str = typer.Option("WARNING", help="Log level for the operator stream."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    strict: bool = typer.Option(False, help="Exit with code 1 when any step fails."),
) -> None:
    """Execute the configured scenarios (or every endpoint) and write run artifacts."""

    fmt = get_output_format(output_format)
    configure_logging("DEBUG" if verbose else log_level, log_format_for(fmt))

    try:
        loaded = load_config(config) if config else TesterConfig()
        effective = _apply_overrides(
            loaded,
            spec=spec,
            url=url,
            timeout=timeout,
            output_dir=output_dir,
            verbose=verbose,
        )
        ensure_runnable(effective)
        runner = TestRunner(
            effective,
            run_id=run_id or _default_run_id(),
            output_root=Path(effective.output_dir),
            output_format=fmt,
            scenario_name=scenario,
        )
        summary = runner.run()
    except (ConfigurationError, UnsupportedSpecError, ScenarioNotFoundError) as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=CONFIG_ERROR_EXIT_CODE) from exc

    typer.secho(f"Summary written -> {summary.summary_file}", fg=typer.colors.CYAN)
    if strict and summary.failed_steps:
        raise typer.Exit(code=1)


@app.command()
def endpoints(
    spec: list[Path] = typer.Option(..., "--spec", exists=True, readable=True, help="OpenAPI/Swagger file(s)."),
) -> None:
    """List the endpoints parsed from the given specification files."""

    try:
        index = EndpointIndex(load_definitions(spec))
    except UnsupportedSpecError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(json.dumps(index.describe(), indent=2, ensure_ascii=False))


def main() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
