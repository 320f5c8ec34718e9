"""
HTTP adapter for SwarmAPI on top of http.server.

Usage:
    python main.py serve [--config config/economy.yaml] [--port 8402]
"""

import json
import logging
import signal
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Type
from urllib.parse import parse_qs, urlparse

from economy.api import ApiRequest, ApiResponse, SwarmAPI
from swarm.base import SwarmError

logger = logging.getLogger(__name__)


class SwarmHandler(BaseHTTPRequestHandler):
    """Translates HTTP requests into ApiRequest and back."""

    api: SwarmAPI

    def _read_body(self) -> Dict[str, Any]:
        length = int(self.headers.get("Content-Length", 0))
        if length == 0:
            return {}
        try:
            body = json.loads(self.rfile.read(length))
        except (ValueError, UnicodeDecodeError):
            raise SwarmError("Request body is not valid JSON", status=400)
        if not isinstance(body, dict):
            raise SwarmError("Request body must be a JSON object", status=400)
        return body

    def _send(self, response: ApiResponse) -> None:
        body = json.dumps(response.body, indent=2, default=str).encode()
        self.send_response(response.status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(body)

    def _dispatch(self, method: str) -> None:
        started = time.monotonic()
        parsed = urlparse(self.path)
        try:
            body = self._read_body() if method == "POST" else {}
        except SwarmError as e:
            response = ApiResponse(status=e.status, body=e.to_dict())
        else:
            response = self.api.handle(ApiRequest(
                method=method,
                path=parsed.path,
                query={k: v[0] for k, v in parse_qs(parsed.query).items()},
                headers=dict(self.headers.items()),
                body=body,
            ))
        self._send(response)
        logger.info("request", extra={
            "method": method,
            "path_": parsed.path,
            "status_code": response.status,
            "duration_ms": round((time.monotonic() - started) * 1000, 2),
            "client_ip": self.client_address[0],
        })

    def do_GET(self) -> None:
        self._dispatch("GET")

    def do_POST(self) -> None:
        self._dispatch("POST")

    def log_message(self, format: str, *args: Any) -> None:
        pass  # requests are logged by _dispatch


def make_server(api: SwarmAPI, host: str = "127.0.0.1", port: int = 8402) -> ThreadingHTTPServer:
    handler: Type[SwarmHandler] = type("BoundSwarmHandler", (SwarmHandler,), {"api": api})
    return ThreadingHTTPServer((host, port), handler)


def run_server(api: SwarmAPI, host: str = "127.0.0.1", port: int = 8402) -> None:
    server = make_server(api, host, port)

    def shutdown(signum: int, frame: Optional[Any]) -> None:
        logger.info("signal %s, shutting down", signum)
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, shutdown)
    logger.info("swarm economy listening on %s:%d", host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
        logger.info("server stopped")
