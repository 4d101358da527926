"""structlog setup for the api-tester operator stream."""

from __future__ import annotations

import logging
import sys
from io import StringIO
from typing import Any

import structlog
from rich.console import Console
from rich.text import Text

from .output_config import LogFormat

LOGGER_NAME = "api_tester"

_HIDDEN_KEYS = frozenset({"color_message", "stack"})
_EVENT_COLUMN = 28


class RichEventRenderer:
    """Renders ``timestamp [level] event key=value ...`` lines styled with rich."""

    level_styles = {
        "debug": "dim cyan",
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "critical": "bold white on red",
    }

    def __init__(self, width: int = 200) -> None:
        self.width = width

    def __call__(self, logger: Any, name: str, event_dict: dict[str, Any]) -> str:
        level = event_dict.pop("level", "info")
        line = Text.assemble(
            (event_dict.pop("timestamp", ""), "dim white"),
            " ",
            (f"[{level:<8}]", self.level_styles.get(level, "white")),
            " ",
            (str(event_dict.pop("event", "")).ljust(_EVENT_COLUMN), "bold white"),
        )
        fields = [(key, value) for key, value in sorted(event_dict.items()) if key not in _HIDDEN_KEYS]
        for key, value in fields:
            line.append(f" {key}=", style="dim white")
            line.append(str(value), style="bright_cyan")
        return self._to_ansi(line)

    def _to_ansi(self, text: Text) -> str:
        buffer = StringIO()
        Console(file=buffer, force_terminal=True, width=self.width, legacy_windows=False).print(text, end="")
        return buffer.getvalue()


def _renderer(log_format: LogFormat) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    if log_format == "plain":
        return structlog.dev.ConsoleRenderer(colors=False)
    return RichEventRenderer()


def configure_logging(log_level: str, log_format: LogFormat = "console") -> structlog.stdlib.BoundLogger:
    """Route structlog events through stdlib logging to stderr.

    stdout stays free for the console reporter and command output.
    """

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, stream=sys.stderr, format="%(message)s", force=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.format_exc_info,
            _renderer(log_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    return structlog.get_logger(LOGGER_NAME)
