"""Endpoint lookup over a parsed API definition."""

from __future__ import annotations

from typing import Any

from .models import ApiDefinition, Endpoint


class EndpointIndex:
    """Indexes endpoints by (path, method) for the scenario engine."""

    def __init__(self, definition: ApiDefinition | None = None) -> None:
        self._endpoints: dict[tuple[str, str], Endpoint] = {}
        self._ordered: list[Endpoint] = []
        if definition is not None:
            self.add_definition(definition)

    def add_definition(self, definition: ApiDefinition) -> None:
        """Add every endpoint of the definition; the first declaration of a route wins."""

        for endpoint in definition.endpoints:
            key = _key(endpoint.path, endpoint.method)
            if key in self._endpoints:
                continue
            self._endpoints[key] = endpoint
            self._ordered.append(endpoint)

    def find(self, path: str, method: str) -> Endpoint | None:
        return self._endpoints.get(_key(path, method))

    def endpoints(self) -> list[Endpoint]:
        return list(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)

    def describe(self) -> list[dict[str, Any]]:
        """Return a compact listing used by the ``endpoints`` CLI command."""

        return [
            {
                "method": endpoint.method,
                "path": endpoint.path,
                "operation": endpoint.operation_id,
                "parameters": [f"{param.location}:{param.name}" for param in endpoint.parameters],
                "responses": sorted(endpoint.responses),
            }
            for endpoint in self._ordered
        ]


def _key(path: str, method: str) -> tuple[str, str]:
    return path, method.upper()
