"""Variable values and their canonical text form."""

from __future__ import annotations

from typing import Any, Union
import json

VariableValue = Union[str, int, float, bool, None, list[Any], dict[str, Any]]


def to_text(value: VariableValue) -> str:
    """Render a variable value the way it is substituted into URLs, queries and bodies."""

    if isinstance(value, str):
        return value
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if value is None:
        return "null"
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
