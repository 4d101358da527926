"""Extraction of response values into scenario variables."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional
import json
import re

import structlog

from .context import ExecutionContext

LOGGER = structlog.get_logger("api_tester")

_BRACKET_INDEX = re.compile(r"\[(\d+)\]")
_MISSING = object()


def lookup_path(document: Any, path: str) -> tuple[Any, bool]:
    """Walk a dot-separated path; numeric segments index into lists.

    Only dot notation is understood, and ``$`` is an ordinary key here. Callers
    try the alternative spellings of a path in :func:`candidate_paths` order.
    """

    if path == "":
        return None, False
    node: Any = document
    for segment in path.split("."):
        if isinstance(node, dict):
            node = node.get(segment, _MISSING)
        elif isinstance(node, list) and segment.isdigit():
            index = int(segment)
            node = node[index] if index < len(node) else _MISSING
        else:
            return None, False
        if node is _MISSING:
            return None, False
    return node, True


def anchor(path: str) -> str:
    path = path.strip()
    if path.startswith("$"):
        return path
    if path.startswith("["):
        return f"${path}"
    return f"$.{path.lstrip('.')}"


def strip_anchor(path: str) -> str:
    if path.startswith("$"):
        path = path[1:]
    return path.lstrip(".")


def brackets_to_dots(path: str) -> str:
    return _BRACKET_INDEX.sub(r".\1", path)


def dotted(path: str) -> str:
    """``$[0].id``, ``[0].id`` and ``0.id`` all become ``0.id``."""

    return strip_anchor(brackets_to_dots(anchor(path)))


def first_item_id(path: str) -> str:
    collection = path.split(".", 1)[0].split("[", 1)[0]
    return f"{collection}.0.id"


def candidate_paths(expression: str) -> list[str]:
    """Spellings of ``expression`` in the order they are tried, without repeats."""

    anchored = anchor(expression)
    stripped = strip_anchor(anchored)
    flat = dotted(expression)
    ordered: list[str] = []
    for candidate in (anchored, stripped, flat, first_item_id(flat)):
        if candidate not in ordered:
            ordered.append(candidate)
    return ordered


class ResponseExtractor:
    """Applies extraction rules (variable name -> path) to JSON response bodies."""

    def __init__(self, lookup: Callable[[Any, str], tuple[Any, bool]] = lookup_path) -> None:
        self._lookup = lookup

    def extract(
        self,
        rules: Mapping[str, str],
        body: str | bytes,
        context: ExecutionContext,
        *,
        step: Optional[str] = None,
    ) -> dict[str, Any]:
        """Store every value found into ``context`` and return what was extracted.

        A body that is not valid JSON skips the whole batch. A rule that does
        not match is logged and the remaining rules still run.
        """

        logger = LOGGER.bind(step=step) if step else LOGGER
        try:
            document = json.loads(body)
        except (TypeError, ValueError) as exc:
            logger.warning("extraction_skipped", reason="response is not valid JSON", error=str(exc))
            return {}

        extracted: dict[str, Any] = {}
        for variable, expression in rules.items():
            for candidate in candidate_paths(expression):
                value, found = self._lookup(document, candidate)
                if found:
                    extracted[variable] = value
                    logger.debug("variable_extracted", variable=variable, path=candidate)
                    break
            else:
                logger.warning("extraction_failed", variable=variable, path=expression)
        context.update_variables(extracted)
        return extracted
