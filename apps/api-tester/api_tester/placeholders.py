"""Placeholder tokenizing and rendering for ``{name}`` and ``{{.name}}`` templates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union
import re

from .values import to_text

# Template form first so ``{{.id}}`` is never read as ``{`` + ``{.id}`` + ``}``.
# Simple names must look like identifiers, otherwise JSON objects such as
# ``{"count":1}`` inside request bodies would be taken for placeholders.
_PLACEHOLDER_PATTERN = re.compile(
    r"\{\{\s*\.(?P<template>[A-Za-z0-9_]+)\s*\}\}|\{(?P<simple>[A-Za-z_][A-Za-z0-9_.\-]*)\}"
)


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class Placeholder:
    name: str
    raw: str


Segment = Union[Literal, Placeholder]


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one placeholder name."""

    value: Any = None
    found: bool = False
    tier: Optional[str] = None
    source: Optional[str] = None


@dataclass
class RenderOutcome:
    text: str
    unresolved: list[str] = field(default_factory=list)


def tokenize(text: str) -> list[Segment]:
    """Split ``text`` into literal and placeholder segments in a single pass."""

    segments: list[Segment] = []
    cursor = 0
    for match in _PLACEHOLDER_PATTERN.finditer(text):
        if match.start() > cursor:
            segments.append(Literal(text[cursor:match.start()]))
        name = match.group("template") or match.group("simple")
        segments.append(Placeholder(name=name, raw=match.group(0)))
        cursor = match.end()
    if cursor < len(text):
        segments.append(Literal(text[cursor:]))
    return segments


def render(
    text: str,
    lookup: Callable[[str], Resolution],
    encode: Optional[Callable[[str], str]] = None,
) -> RenderOutcome:
    """Substitute every placeholder through ``lookup``; unresolved ones stay verbatim.

    ``encode`` is applied to each substituted value, never to the template text.
    """

    parts: list[str] = []
    unresolved: list[str] = []
    for segment in tokenize(text):
        if isinstance(segment, Literal):
            parts.append(segment.text)
            continue
        resolution = lookup(segment.name)
        if resolution.found:
            value = to_text(resolution.value)
            parts.append(encode(value) if encode else value)
        else:
            parts.append(segment.raw)
            unresolved.append(segment.name)
    return RenderOutcome(text="".join(parts), unresolved=unresolved)
