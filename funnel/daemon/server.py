"""HTTP API of the daemon, served over the local IPC socket."""

from __future__ import annotations

import json
import logging
import socket
import socketserver
import threading
from dataclasses import dataclass
from typing import Any, Callable, Protocol
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer

from werkzeug.exceptions import MethodNotAllowed, NotFound
from werkzeug.wrappers import Request, Response

from funnel import ipc
from funnel.daemon.types import (
    ActionRequest,
    AddRequest,
    AddResponse,
    DaemonStatus,
    ErrorResponse,
    Status,
    TorrentInfo,
)

log = logging.getLogger(__name__)

Handler = Callable[..., Response]


class ManagerInterface(Protocol):
    """The part of the torrent manager used by the HTTP server."""

    def add(self, magnet: str) -> AddResponse: ...

    def list(self, status_filter: Status | None) -> list[TorrentInfo]: ...

    def pause(self, torrent_id: str) -> None: ...

    def resume(self, torrent_id: str) -> None: ...

    def stop(self, torrent_id: str) -> None: ...

    def remove(self, torrent_id: str) -> None: ...

    def daemon_status(self) -> DaemonStatus: ...


@dataclass(frozen=True)
class _Route:
    method: str
    segments: tuple[str, ...]
    handler: Handler

    def match(self, parts: list[str]) -> dict[str, str] | None:
        if len(parts) != len(self.segments):
            return None
        params: dict[str, str] = {}
        for segment, part in zip(self.segments, parts):
            if segment.startswith("{") and segment.endswith("}"):
                if not part:
                    return None
                params[segment[1:-1]] = part
            elif segment != part:
                return None
        return params


class Router:
    """A small WSGI router matching "METHOD /path/{name}" patterns."""

    def __init__(self) -> None:
        self._routes: list[_Route] = []

    def add(self, method: str, pattern: str, handler: Handler) -> None:
        """Route requests for method and pattern to handler(request, **params)."""
        segments = tuple(pattern.split("/")[1:])
        self._routes.append(_Route(method.upper(), segments, handler))

    def __call__(self, environ, start_response):
        request = Request(environ)
        parts = request.path.split("/")[1:]
        allowed: list[str] = []
        for route in self._routes:
            params = route.match(parts)
            if params is None:
                continue
            if route.method != request.method:
                allowed.append(route.method)
                continue
            response = route.handler(request, **params)
            return response(environ, start_response)
        error = MethodNotAllowed(valid_methods=allowed) if allowed else NotFound()
        return error(environ, start_response)


def _to_json(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    return value


def write_json(status: int, value: Any) -> Response:
    """Return a JSON response with the given status code."""
    body = json.dumps(_to_json(value)) + "\n"
    return Response(body, status=status, mimetype="application/json")


def write_error(status: int, message: str) -> Response:
    """Return a JSON error response."""
    return write_json(status, ErrorResponse(error=message))


def _decode(request: Request) -> Any:
    return json.loads(request.get_data())


class _RequestHandler(WSGIRequestHandler):
    def __init__(self, request, client_address, server) -> None:
        # Unix socket peers have no address; wsgiref expects a host tuple.
        super().__init__(request, ("local", 0), server)

    def log_message(self, format: str, *args: Any) -> None:
        log.debug("[daemon] " + format, *args)


class _SocketWSGIServer(socketserver.ThreadingMixIn, WSGIServer):
    daemon_threads = True

    def __init__(self, sock: socket.socket, app) -> None:
        super().__init__(("localhost", 0), _RequestHandler, bind_and_activate=False)
        self.socket.close()
        self.socket = sock
        self.server_name = "localhost"
        self.server_port = 0
        self.setup_environ()
        self.set_app(app)


class Server:
    """The daemon's HTTP API as a WSGI application."""

    def __init__(self, manager: ManagerInterface, cancel: Callable[[], None]) -> None:
        self._manager = manager
        self._cancel = cancel
        self._router = Router()
        self.register_routes(self._router)
        self._httpd: _SocketWSGIServer | None = None
        self._httpd_lock = threading.Lock()

    def register_routes(self, router: Router) -> None:
        """Register the standard API routes on router."""
        router.add("POST", "/api/torrents", self._handle_add)
        router.add("GET", "/api/torrents", self._handle_list)
        router.add("PATCH", "/api/torrents/{id}", self._handle_action)
        router.add("POST", "/api/torrents/{id}/stop", self._handle_stop)
        router.add("DELETE", "/api/torrents/{id}", self._handle_remove)
        router.add("GET", "/api/status", self._handle_status)
        router.add("POST", "/api/shutdown", self._handle_shutdown)

    def __call__(self, environ, start_response):
        return self._router(environ, start_response)

    def serve(self, sock: socket.socket) -> None:
        """Serve HTTP on an already listening socket until shut down."""
        log.info("[daemon] listening on %s", sock.getsockname())
        httpd = _SocketWSGIServer(sock, self)
        with self._httpd_lock:
            self._httpd = httpd
        try:
            httpd.serve_forever()
        finally:
            httpd.server_close()

    def listen_and_serve(self) -> None:
        """Serve HTTP over the IPC socket."""
        self.serve(ipc.new_listener())

    def shutdown(self) -> None:
        """Stop serving; returns once the serving loop has ended."""
        with self._httpd_lock:
            httpd = self._httpd
            self._httpd = None
        if httpd is not None:
            httpd.shutdown()

    def _handle_add(self, request: Request) -> Response:
        try:
            req = AddRequest.from_dict(_decode(request))
        except ValueError as exc:
            return write_error(400, f"invalid JSON: {exc}")
        if not req.magnet:
            return write_error(400, "magnet is required")
        try:
            resp = self._manager.add(req.magnet)
        except Exception as exc:
            return write_error(500, str(exc))
        return write_json(201 if resp.new else 200, resp)

    def _handle_list(self, request: Request) -> Response:
        raw = request.args.get("status", "")
        status_filter: Status | None = None
        if raw:
            try:
                status_filter = Status(raw)
            except ValueError:
                return write_json(200, [])
        return write_json(200, self._manager.list(status_filter))

    def _handle_action(self, request: Request, id: str) -> Response:
        try:
            req = ActionRequest.from_dict(_decode(request))
        except ValueError as exc:
            return write_error(400, f"invalid JSON: {exc}")
        actions = {"pause": self._manager.pause, "resume": self._manager.resume}
        action = actions.get(req.action)
        if action is None:
            return write_error(400, "unknown action: " + req.action)
        try:
            action(id)
        except Exception as exc:
            return write_error(400, str(exc))
        return Response(status=204)

    def _handle_stop(self, request: Request, id: str) -> Response:
        try:
            self._manager.stop(id)
        except Exception as exc:
            return write_error(400, str(exc))
        return Response(status=204)

    def _handle_remove(self, request: Request, id: str) -> Response:
        try:
            self._manager.remove(id)
        except Exception as exc:
            return write_error(404, str(exc))
        return Response(status=204)

    def _handle_status(self, request: Request) -> Response:
        return write_json(200, self._manager.daemon_status())

    def _handle_shutdown(self, request: Request) -> Response:
        response = Response(status=204)
        self._cancel()
        return response