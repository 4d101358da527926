"""Name transforms used to match placeholders against differently-cased variables."""

from __future__ import annotations

from typing import Callable
import re

NameTransform = Callable[[str], str]

_UPPER = re.compile(r"(?<!^)(?=[A-Z])")


def to_camel_case(name: str) -> str:
    """``event_id`` -> ``eventId``."""

    head, *rest = name.split("_")
    return head + "".join(word[:1].upper() + word[1:] for word in rest if word)


def to_snake_case(name: str) -> str:
    """``eventId`` -> ``event_id``."""

    return _UPPER.sub("_", name).lower()


def to_kebab_case(name: str) -> str:
    """``eventId`` / ``event_id`` -> ``event-id``."""

    return to_snake_case(name).replace("_", "-")


DEFAULT_NAME_TRANSFORMS: tuple[NameTransform, ...] = (to_camel_case, to_snake_case)


def alternative_names(name: str, transforms: tuple[NameTransform, ...] = DEFAULT_NAME_TRANSFORMS) -> list[str]:
    """Distinct renderings of ``name`` in transform order, excluding ``name`` itself."""

    seen = {name}
    result: list[str] = []
    for transform in transforms:
        candidate = transform(name)
        if candidate and candidate not in seen:
            seen.add(candidate)
            result.append(candidate)
    return result
