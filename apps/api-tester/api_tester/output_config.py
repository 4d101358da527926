"""Output format configuration shared by the console reporter and logging."""

import os
from enum import Enum
from typing import Literal


class OutputFormat(str, Enum):
    """Output format options for the console."""
    AUTO = "auto"
    RICH = "rich"
    PLAIN = "plain"
    JSON = "json"


LogFormat = Literal["json", "console", "plain"]

ENV_VAR_NAME = "CONSOLE_OUTPUT_FORMAT"


def get_output_format(cli_override: str | None = None) -> OutputFormat:
    """
    Get the output format with priority: CLI parameter > Environment variable > Default (auto).

    Args:
        cli_override: Optional CLI parameter value that takes precedence

    Returns:
        OutputFormat enum value
    """
    # Priority 1: CLI parameter
    if cli_override:
        try:
            return OutputFormat(cli_override.lower())
        except ValueError:
            pass

    # Priority 2: Environment variable
    env_value = os.environ.get(ENV_VAR_NAME)
    if env_value:
        try:
            return OutputFormat(env_value.lower())
        except ValueError:
            pass

    # Priority 3: Default
    return OutputFormat.AUTO


def log_format_for(output_format: OutputFormat) -> LogFormat:
    """Map the console output format onto a log renderer: json stays json, plain drops colors."""
    if output_format == OutputFormat.JSON:
        return "json"
    if output_format == OutputFormat.PLAIN:
        return "plain"
    return "console"
