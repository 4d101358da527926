"""HTTP request sending for scenario steps."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional
import json
import http.client
import os
import re
import socket
import time
from urllib import error, parse, request

import structlog

from contract_parser.models import Endpoint

LOGGER = structlog.get_logger("api_tester")

DEFAULT_BASE_URL = "http://127.0.0.1:8080"
DEFAULT_TIMEOUT = 30.0
BASE_URL_ENV = "API_TESTER_BASE_URL"
TIMEOUT_ENV = "API_TESTER_TIMEOUT"
_BODY_METHODS = {"POST", "PUT", "PATCH"}
_PATH_SLOT = re.compile(r"\{([^{}/]+)\}")


def quote_path_value(value: str) -> str:
    """Percent-encode one path segment value, slashes and braces included."""

    return parse.quote(value, safe="")


class TransportError(RuntimeError):
    """Raised when a request never produced an HTTP response."""


@dataclass
class HttpResponse:
    """Details about a performed request."""

    status_code: int
    elapsed_ms: float
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


class HttpRequestSender:
    """Sends endpoint requests via ``urllib`` with a fixed per-request timeout."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        headers: Optional[Mapping[str, str]] = None,
        request_bodies: Optional[Mapping[str, Any]] = None,
    ) -> None:
        env_base = os.getenv(BASE_URL_ENV, DEFAULT_BASE_URL)
        self._base_url = (base_url or env_base).rstrip("/")
        env_timeout = os.getenv(TIMEOUT_ENV, str(DEFAULT_TIMEOUT))
        self._timeout = timeout or float(env_timeout)
        self._headers = dict(headers or {})
        self._request_bodies = dict(request_bodies or {})

    @property
    def base_url(self) -> str:
        return self._base_url

    def send(
        self,
        endpoint: Endpoint,
        path_params: Mapping[str, str],
        query_params: Mapping[str, str],
        body: str | None = None,
    ) -> HttpResponse:
        method = endpoint.method.upper()
        url = self.build_url(endpoint.path, path_params, query_params)

        headers = {"Accept": "application/json"}
        headers.update(self._headers)
        for param in endpoint.parameters_in("header"):
            if param.example:
                headers[param.name] = param.example

        body_bytes = self._encode_body(method, endpoint.path, body)
        if body_bytes:
            headers.setdefault("Content-Type", "application/json")

        LOGGER.debug("request_sending", method=method, url=url, has_body=bool(body_bytes))
        return self._perform_request(method, url, headers, body_bytes)

    def build_url(
        self,
        path: str,
        path_params: Mapping[str, str],
        query_params: Mapping[str, str],
    ) -> str:
        # Single pass over the template: substituted values are never re-scanned.
        resolved_path = _PATH_SLOT.sub(
            lambda match: quote_path_value(str(path_params[match.group(1)]))
            if match.group(1) in path_params
            else match.group(0),
            path,
        )
        if not resolved_path.startswith("/"):
            resolved_path = f"/{resolved_path}"
        url = f"{self._base_url}{resolved_path}"
        if query_params:
            url = f"{url}?{parse.urlencode(dict(query_params))}"
        return url

    def _encode_body(self, method: str, path: str, body: str | None) -> bytes | None:
        if body:
            return body.encode("utf-8")
        if method not in _BODY_METHODS:
            return None
        template = self._request_bodies.get(path)
        if template is None:
            return None
        if isinstance(template, str):
            return template.encode("utf-8")
        return json.dumps(template).encode("utf-8")

    def _perform_request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
    ) -> HttpResponse:
        start = time.perf_counter()
        try:
            req = request.Request(url, data=body, headers=headers, method=method)
            with request.urlopen(req, timeout=self._timeout) as response:
                payload = response.read().decode("utf-8", errors="replace")
                status = response.getcode()
                response_headers = dict(response.headers.items())
        except error.HTTPError as exc:
            payload = exc.read().decode("utf-8", errors="replace")
            status = exc.code
            response_headers = dict(exc.headers.items()) if exc.headers else {}
        except (error.URLError, http.client.HTTPException, socket.timeout, ConnectionError, ValueError) as exc:
            # ValueError covers malformed URLs and non-ASCII request lines.
            raise TransportError(f"HTTP request failed for {method} {url}: {exc}") from exc
        elapsed_ms = (time.perf_counter() - start) * 1000
        return HttpResponse(
            status_code=status,
            elapsed_ms=round(elapsed_ms, 3),
            headers=response_headers,
            body=payload,
        )
