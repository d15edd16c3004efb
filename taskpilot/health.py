"""
Health Check Server

Small HTTP server for liveness, readiness, status and metrics.
"""

import json
import threading
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from typing import Callable, Optional
from urllib.parse import urlparse

from taskpilot.logger import info, error


class HealthHandler(BaseHTTPRequestHandler):
    """HTTP handler for health check endpoints. Providers are set per server."""

    status_provider: Optional[Callable[[], dict]] = None
    metrics_provider: Optional[Callable[[], str]] = None

    def log_message(self, format, *args):
        """Suppress default HTTP logging."""
        pass

    def do_GET(self):
        path = urlparse(self.path).path.rstrip('/') or '/'
        routes = {
            '/': self._handle_health,
            '/health': self._handle_health,
            '/ready': self._handle_ready,
            '/status': self._handle_status,
            '/metrics': self._handle_metrics,
        }
        handler = routes.get(path)
        if handler is None:
            self._send_json(404, {"error": "Not found"})
            return
        try:
            handler()
        except Exception as e:
            error("Health endpoint failed", err=e, path=path)
            self._send_json(500, {"error": str(e)})

    def _status(self) -> Optional[dict]:
        provider = type(self).status_provider
        return provider() if provider else None

    def _handle_health(self):
        self._send_json(200, {"status": "healthy"})

    def _handle_ready(self):
        status = self._status()
        if status is None or status.get("ready", True):
            self._send_json(200, {"status": "ready"})
        else:
            self._send_json(503, {"status": "not_ready"})

    def _handle_status(self):
        status = self._status()
        self._send_json(200, status if status is not None else {"status": "no_status_provider"})

    def _handle_metrics(self):
        provider = type(self).metrics_provider
        body = provider() if provider else "# No metrics provider configured\n"
        self._send_text(200, body, "text/plain; version=0.0.4")

    def _send_json(self, code: int, data: dict):
        self._send_text(code, json.dumps(data, default=str), 'application/json')

    def _send_text(self, code: int, text: str, content_type: str):
        payload = text.encode()
        self.send_response(code)
        self.send_header('Content-Type', content_type)
        self.send_header('Content-Length', str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)


class HealthServer:
    """
    HTTP server for health checks, run on a background thread.

    Exposes:
    - /health  - Basic liveness check
    - /ready   - Readiness (status provider's "ready" flag)
    - /status  - Detailed status information (JSON)
    - /metrics - Prometheus-format metrics
    """

    def __init__(
        self,
        port: int = 8080,
        status_provider: Callable[[], dict] = None,
        metrics_provider: Callable[[], str] = None,
        host: str = '0.0.0.0',
    ):
        self.host = host
        self.port = port
        self._handler = type('BoundHealthHandler', (HealthHandler,), {
            'status_provider': staticmethod(status_provider) if status_provider else None,
            'metrics_provider': staticmethod(metrics_provider) if metrics_provider else None,
        })
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def bound_port(self) -> Optional[int]:
        return self._server.server_port if self._server else None

    def start(self) -> bool:
        """Start serving. Returns False if the port could not be bound."""
        try:
            self._server = ThreadingHTTPServer((self.host, self.port), self._handler)
        except OSError as e:
            error("Failed to start health server", err=e, port=self.port)
            return False

        self._thread = threading.Thread(target=self._server.serve_forever, name="health", daemon=True)
        self._thread.start()
        info(f"Health server started on port {self.bound_port}")
        return True

    def stop(self):
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
            info("Health server stopped")
