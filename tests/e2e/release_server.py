"""In-process HTTP server standing in for the GitHub release host."""

from __future__ import annotations

import dataclasses
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer


@dataclasses.dataclass
class Route:
    status: int
    body: bytes = b""
    headers: dict[str, str] = dataclasses.field(default_factory=dict)


class ReleaseServer:
    """Local HTTP server hosting release archives and digest sidecars."""

    def __init__(self) -> None:
        self.routes: dict[str, Route] = {}
        self.requests: list[str] = []
        self._lock = threading.Lock()
        self._server = ThreadingHTTPServer(("127.0.0.1", 0), self._handler_class())
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def base_url(self) -> str:
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}/download"

    def start(self) -> "ReleaseServer":
        self._thread.start()
        return self

    def stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=5)

    def serve(self, path: str, body: bytes) -> None:
        self.routes[path] = Route(200, body, {"Content-Length": str(len(body))})

    def redirect(self, path: str, location: str) -> None:
        self.routes[path] = Route(302, headers={"Location": location, "Content-Length": "0"})

    def record(self, path: str) -> Route | None:
        with self._lock:
            self.requests.append(path)
        return self.routes.get(path)

    def _handler_class(self) -> type[BaseHTTPRequestHandler]:
        server = self

        class _Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802 - http.server naming
                route = server.record(self.path)
                if route is None:
                    route = Route(404, b"Not Found", {"Content-Length": "9"})
                self.send_response(route.status)
                for name, value in route.headers.items():
                    self.send_header(name, value)
                self.end_headers()
                self.wfile.write(route.body)

            def log_message(self, format: str, *args: object) -> None:
                return

        return _Handler


@dataclasses.dataclass
class BrunodoRun:
    exit_code: int | None = None

