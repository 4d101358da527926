"""Placeholder resolution through local bindings, context variables, aliases and defaults."""

from __future__ import annotations

from typing import Any, Callable, Mapping, MutableMapping, Optional

import structlog

from .context import ExecutionContext
from .naming import DEFAULT_NAME_TRANSFORMS, NameTransform, alternative_names
from .placeholders import RenderOutcome, Resolution, render

LOGGER = structlog.get_logger("api_tester")

TIER_LOCAL = "local"
TIER_CONTEXT = "context"
TIER_ALIAS = "alias"
TIER_DEFAULT = "default"

Bindings = MutableMapping[str, Any]


class VariableResolver:
    """Resolves placeholder names, stopping at the first tier that knows the name.

    1. ``local``   - bindings computed for the current step invocation
    2. ``context`` - exact name in the scenario variables
    3. ``alias``   - camelCase / snake_case renderings of the name in the
                     scenario variables; a hit is cached into the bindings
    4. ``default`` - the configured default value pool
    """

    def __init__(
        self,
        default_values: Optional[Mapping[str, Any]] = None,
        transforms: tuple[NameTransform, ...] = DEFAULT_NAME_TRANSFORMS,
    ) -> None:
        self.default_values = dict(default_values or {})
        self.transforms = transforms

    def resolve(
        self,
        name: str,
        context: ExecutionContext,
        bindings: Optional[Bindings] = None,
    ) -> Resolution:
        if bindings is not None and name in bindings:
            return Resolution(bindings[name], True, TIER_LOCAL, name)

        value, found = context.get_variable(name)
        if found:
            return Resolution(value, True, TIER_CONTEXT, name)

        for alias in alternative_names(name, self.transforms):
            value, found = context.get_variable(alias)
            if found:
                if bindings is not None:
                    bindings[name] = value
                return Resolution(value, True, TIER_ALIAS, alias)

        if name in self.default_values:
            return Resolution(self.default_values[name], True, TIER_DEFAULT, name)

        return Resolution()

    def render(
        self,
        text: str,
        context: ExecutionContext,
        bindings: Optional[Bindings] = None,
        *,
        field: str = "template",
        encode: Optional[Callable[[str], str]] = None,
    ) -> RenderOutcome:
        """Render ``text`` and log a warning for every placeholder left unresolved."""

        outcome = render(text, lambda name: self.resolve(name, context, bindings), encode)
        for name in outcome.unresolved:
            LOGGER.warning("placeholder_unresolved", placeholder=name, field=field)
        return outcome
