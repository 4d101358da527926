from __future__ import annotations

import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from contract_parser.models import Endpoint, Parameter

from api_tester.http_executor import HttpRequestSender, TransportError


def _start_echo_server() -> tuple[HTTPServer, threading.Thread]:
    class Handler(BaseHTTPRequestHandler):
        def _echo(self, status: int) -> None:
            length = int(self.headers.get("Content-Length") or 0)
            payload = {
                "method": self.command,
                "path": self.path,
                "body": self.rfile.read(length).decode("utf-8") if length else None,
                "headers": {key.lower(): value for key, value in self.headers.items()},
            }
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.end_headers()
            self.wfile.write(json.dumps(payload).encode("utf-8"))

        def do_GET(self) -> None:  # noqa: N802 - HTTP handler requirement
            self._echo(404 if self.path.startswith("/missing") else 200)

        def do_POST(self) -> None:  # noqa: N802 - HTTP handler requirement
            self._echo(201)

        def log_message(self, format: str, *args: object) -> None:  # pragma: no cover - silence logs
            return

    server = HTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server, thread


@pytest.fixture()
def echo_url():
    server, thread = _start_echo_server()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    thread.join(timeout=2)


def test_build_url_quotes_path_params_and_encodes_query() -> None:
    sender = HttpRequestSender(base_url="http://api.local/v1/")

    url = sender.build_url("/files/{name}", {"name": "a b/c"}, {"q": "x y", "page": "2"})

    assert url == "http://api.local/v1/files/a%20b%2Fc?q=x+y&page=2"


def test_build_url_substitutes_each_slot_once() -> None:
    sender = HttpRequestSender(base_url="http://api.local")

    assert sender.build_url("/files/{a}", {"a": "{b}", "b": "x"}, {}) == "http://api.local/files/%7Bb%7D"
    assert sender.build_url("/items/%7Bother%7D", {"other": "x"}, {}) == "http://api.local/items/%7Bother%7D"


def test_send_applies_headers_and_body(echo_url: str) -> None:
    sender = HttpRequestSender(base_url=echo_url, timeout=5, headers={"Authorization": "Bearer t"})
    endpoint = Endpoint(
        path="/users",
        method="POST",
        parameters=[Parameter(name="X-Trace", location="header", example="abc")],
    )

    response = sender.send(endpoint, {}, {}, '{"name": "Ada"}')

    echoed = json.loads(response.body)
    assert response.status_code == 201
    assert response.elapsed_ms >= 0
    assert echoed["body"] == '{"name": "Ada"}'
    assert echoed["headers"]["authorization"] == "Bearer t"
    assert echoed["headers"]["x-trace"] == "abc"
    assert echoed["headers"]["content-type"] == "application/json"


def test_configured_request_body_is_used_when_step_has_none(echo_url: str) -> None:
    sender = HttpRequestSender(base_url=echo_url, request_bodies={"/users": {"name": "default"}})

    response = sender.send(Endpoint(path="/users", method="POST"), {}, {})

    assert json.loads(json.loads(response.body)["body"]) == {"name": "default"}


def test_http_error_status_is_a_response(echo_url: str) -> None:
    sender = HttpRequestSender(base_url=echo_url)

    response = sender.send(Endpoint(path="/missing/{id}", method="GET"), {"id": "7"}, {})

    assert response.status_code == 404
    assert json.loads(response.body)["path"] == "/missing/7"


def test_unreachable_host_raises_transport_error() -> None:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    sender = HttpRequestSender(base_url=f"http://127.0.0.1:{port}", timeout=2)

    with pytest.raises(TransportError):
        sender.send(Endpoint(path="/ping", method="GET"), {}, {})


def test_base_url_falls_back_to_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_TESTER_BASE_URL", "http://env.local/")

    assert HttpRequestSender().base_url == "http://env.local"


@pytest.mark.parametrize("path", ["/users/John Doe", "/users/Zoë"])
def test_unsendable_path_raises_transport_error(echo_url: str, path: str) -> None:
    sender = HttpRequestSender(base_url=echo_url, timeout=2)

    with pytest.raises(TransportError):
        sender.send(Endpoint(path=path, method="GET"), {}, {})
