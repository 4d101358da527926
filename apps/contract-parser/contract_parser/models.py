"""Pydantic models describing a parsed API definition."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class Parameter(BaseModel):
    """Single operation parameter (path, query, header or cookie)."""

    name: str
    location: str
    required: bool = False
    description: str | None = None
    type: str | None = None
    example: str | None = None


class ResponseSpec(BaseModel):
    """Declared response for one status code."""

    description: str | None = None
    json_schema: dict[str, Any] | None = None
    example: Any = None


class Endpoint(BaseModel):
    """Represents a single API operation extracted from an input specification."""

    path: str
    method: str
    operation_id: str | None = None
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    request_body: str | None = None
    parameters: list[Parameter] = Field(default_factory=list)
    responses: dict[str, ResponseSpec] = Field(default_factory=dict)
    synthetic: bool = False

    def parameters_in(self, location: str) -> list[Parameter]:
        return [param for param in self.parameters if param.location == location]

    @property
    def label(self) -> str:
        return f"{self.method} {self.path}"


class ApiDefinition(BaseModel):
    """Normalized API definition merged from one or more specification files."""

    title: str
    version: str
    description: str | None = None
    source_paths: list[str] = Field(default_factory=list)
    endpoints: list[Endpoint] = Field(default_factory=list)
