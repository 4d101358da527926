"""Human-facing progress output for scenario runs.

Interactive terminals get a rich live table with a progress bar; CI jobs and
redirected output get one plain line per step. ``--output-format json`` leaves
the console to the structured log stream.
"""

import os
import sys
from typing import Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TaskID, TextColumn
from rich.table import Table
from rich.text import Text

from .output_config import OutputFormat

CI_ENV_VARS = ("CI", "GITHUB_ACTIONS", "GITLAB_CI", "JENKINS_HOME", "TRAVIS", "BUILDKITE")

_VERDICT_STYLES = {
    "PASS": "green",
    "FAIL": "red",
    "SKIP": "yellow",
}


def running_in_ci() -> bool:
    return any(name in os.environ for name in CI_ENV_VARS)


def _verdict(passed: bool) -> str:
    return "PASS" if passed else "FAIL"


class ConsoleReporter:
    """Renders scenario progress, one row per step, and a closing suite panel."""

    def __init__(self, output_format: OutputFormat = OutputFormat.AUTO):
        self.output_format = output_format
        self.quiet = output_format == OutputFormat.JSON
        self.use_rich = self._wants_rich()
        self.console: Optional[Console] = Console() if self.use_rich else None

        self._scenario: Optional[str] = None
        self._total_steps = 0
        self._live: Optional[Live] = None
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None
        self._table: Optional[Table] = None

    def _wants_rich(self) -> bool:
        if self.output_format == OutputFormat.RICH:
            return True
        if self.output_format != OutputFormat.AUTO:
            return False
        return sys.stdout.isatty() and not running_in_ci()

    # -- scenario lifecycle -------------------------------------------------

    def start_scenario(self, scenario_name: str, total_steps: int) -> None:
        self._scenario = scenario_name
        self._total_steps = total_steps
        if self.quiet:
            return
        if not self.use_rich:
            print(f"== Scenario {scenario_name} ({total_steps} steps)")
            return

        self._table = Table(title=scenario_name, title_justify="left", header_style="bold cyan")
        for column, width in (("#", 4), ("Step", 24), ("Request", 40), ("Result", 8), ("Time", 10)):
            self._table.add_column(column, width=width, justify="right" if column == "Time" else "left")
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=self.console,
        )
        self._task = self._progress.add_task(f"[cyan]{scenario_name}", total=total_steps)
        self._live = Live(Group(self._progress, self._table), console=self.console, refresh_per_second=4)
        self._live.start()

    def finish_scenario(self) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None
        elif not self.quiet and not self.use_rich:
            print()
        self._scenario = None

    # -- steps ----------------------------------------------------------------

    def report_step_start(self, step_num: int, step_name: str, endpoint: str, method: str) -> None:
        if self.quiet or self.use_rich:
            return
        print(f"  [{step_num}/{self._total_steps}] {step_name}  {method} {endpoint} ", end="", flush=True)

    def report_step_result(
        self,
        step_num: int,
        step_name: str,
        endpoint: str,
        method: str,
        passed: bool,
        duration_ms: float,
        error_msg: Optional[str] = None,
    ) -> None:
        if self.quiet:
            return
        verdict = _verdict(passed)
        if not self.use_rich:
            print(f"{verdict} {duration_ms:.0f}ms")
            if error_msg and not passed:
                for line in error_msg.splitlines():
                    print(f"      {line}")
            return
        self._add_row(step_num, step_name, f"{method} {endpoint}", verdict, f"{duration_ms:.0f}ms")
        if error_msg and not passed:
            self._table.add_row("", "", Text(error_msg, style="red"), "", "")

    def report_step_skipped(self, step_num: int, step_name: str, missing: list[str]) -> None:
        if self.quiet:
            return
        reason = f"waiting on {', '.join(missing)}" if missing else "dependencies not completed"
        if not self.use_rich:
            print(f"SKIP ({reason})")
            return
        self._add_row(step_num, step_name, Text(reason, style="dim"), "SKIP", "")

    def _add_row(self, step_num: int, step_name: str, request, verdict: str, elapsed: str) -> None:
        self._table.add_row(str(step_num), step_name, request, Text(verdict, style=_VERDICT_STYLES[verdict]), elapsed)
        self._progress.advance(self._task)

    # -- suite ------------------------------------------------------------------

    def finish_test_suite(self, total: int, passed: int, failed: int, skipped: int, duration_ms: float) -> None:
        if self.quiet:
            return
        headline = "ALL STEPS PASSED" if failed == 0 else f"{failed} STEP(S) FAILED"
        counts = f"total={total} passed={passed} failed={failed} skipped={skipped} duration={duration_ms:.0f}ms"
        if not self.use_rich:
            print(counts)
            print(headline)
            return
        colour = "green" if failed == 0 else "red"
        self.console.print()
        self.console.print(Panel(Text(counts, style="bold"), title=Text(headline, style=f"bold {colour}"), border_style=colour))
