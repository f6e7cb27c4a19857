"""Observability sidecar serving /healthz, /readyz and /metrics over HTTP.

The server holds no business logic, so every service can start one on a
dedicated port next to its main listener.
"""

from __future__ import annotations

import gc
import json
import logging
import platform
import threading
import time
from collections import Counter
from collections.abc import Callable
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

_LOG = logging.getLogger(__name__)
_PROCESS_START = time.time()

ReadyFunc = Callable[[], object]
"""Readiness probe: return normally when ready, raise to report not ready."""

_JSON = "application/json"
_METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


class _ObsHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, port: int, ready: ReadyFunc | None) -> None:
        self.ready = ready
        self.requests: Counter[str] = Counter()
        self.requests_lock = threading.Lock()
        super().__init__(("", port), _Handler)

    def count(self, path: str) -> None:
        with self.requests_lock:
            self.requests[path] += 1

    def request_counts(self) -> dict[str, int]:
        with self.requests_lock:
            return dict(self.requests)


def _render_metrics(server: _ObsHTTPServer) -> str:
    lines = [
        "# HELP process_start_time_seconds Start time of the process since unix epoch in seconds.",
        "# TYPE process_start_time_seconds gauge",
        f"process_start_time_seconds {_PROCESS_START:.3f}",
        "# HELP python_info Python platform information.",
        "# TYPE python_info gauge",
        'python_info{implementation="%s",version="%s"} 1'
        % (platform.python_implementation(), platform.python_version()),
        "# HELP python_gc_collections_total Number of times each generation was collected.",
        "# TYPE python_gc_collections_total counter",
    ]
    for generation, stats in enumerate(gc.get_stats()):
        lines.append(
            f'python_gc_collections_total{{generation="{generation}"}} {stats["collections"]}'
        )
    lines += [
        "# HELP obs_http_requests_total Requests served by the observability server.",
        "# TYPE obs_http_requests_total counter",
    ]
    for path, count in sorted(server.request_counts().items()):
        lines.append(f'obs_http_requests_total{{path="{path}"}} {count}')
    return "\n".join(lines) + "\n"


class _Handler(BaseHTTPRequestHandler):
    server: _ObsHTTPServer
    timeout = 5

    def _respond(self, status: HTTPStatus, content_type: str, body: str) -> None:
        data = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(data)

    def _dispatch(self) -> None:
        path = self.path.split("?", 1)[0]
        if path == "/healthz":
            self.server.count(path)
            self._respond(HTTPStatus.OK, _JSON, '{"status":"ok"}\n')
        elif path == "/readyz":
            self.server.count(path)
            ready = self.server.ready
            if ready is not None:
                try:
                    ready()
                except Exception as exc:
                    body = json.dumps({"status": "not_ready", "error": str(exc)})
                    self._respond(HTTPStatus.SERVICE_UNAVAILABLE, _JSON, body + "\n")
                    return
            self._respond(HTTPStatus.OK, _JSON, '{"status":"ready"}\n')
        elif path == "/metrics":
            self.server.count(path)
            self._respond(HTTPStatus.OK, _METRICS_CONTENT_TYPE, _render_metrics(self.server))
        else:
            self._respond(HTTPStatus.NOT_FOUND, "text/plain; charset=utf-8", "404 page not found\n")

    do_GET = _dispatch
    do_HEAD = _dispatch
    do_POST = _dispatch

    def log_message(self, format: str, *args: object) -> None:
        _LOG.debug("obs %s - %s", self.address_string(), format % args)


class ObsServer:
    """Handle to a running observability server."""

    def __init__(self, httpd: _ObsHTTPServer) -> None:
        self._httpd = httpd
        self._lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(
            target=httpd.serve_forever, name="obs-server", daemon=True
        )
        self._thread.start()

    @property
    def port(self) -> int:
        """The TCP port the server is bound to."""
        return self._httpd.server_address[1]

    @property
    def closed(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        """Stop serving and release the socket. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._httpd.shutdown()
        self._httpd.server_close()
        self._thread.join()

    def __enter__(self) -> ObsServer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


def start(port: int, ready: ReadyFunc | None = None) -> ObsServer:
    """Bind ``port`` (0 picks a free one) and serve in a background thread."""
    httpd = _ObsHTTPServer(port, ready)
    server = ObsServer(httpd)
    _LOG.info("obs server listening port=%d", server.port)
    return server