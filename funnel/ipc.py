"""Local IPC transport between the CLI and the daemon over a Unix socket."""

from __future__ import annotations

import contextlib
import http.client
import os
import socket
import sys

_override_path = ""


def set_socket_path(path: str | os.PathLike[str]) -> None:
    """Override the auto-detected socket path; an empty value clears it."""
    global _override_path
    _override_path = os.fspath(path) if path else ""


def socket_path() -> str:
    """Return the platform-specific IPC socket path."""
    if _override_path:
        return _override_path
    if sys.platform == "win32":
        return r"\\.\pipe\funnel"
    home = os.path.expanduser("~")
    if sys.platform == "darwin":
        return os.path.join(home, "Library", "Application Support", "funnel", "funnel.sock")
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return os.path.join(runtime_dir, "funnel.sock")
    return os.path.join(home, ".local", "share", "funnel", "funnel.sock")


def new_listener() -> socket.socket:
    """Create a listening Unix domain socket, replacing any stale one."""
    path = socket_path()
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, mode=0o700, exist_ok=True)
    with contextlib.suppress(OSError):
        os.remove(path)
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.bind(path)
        sock.listen()
    except OSError:
        sock.close()
        raise
    return sock


class UnixHTTPConnection(http.client.HTTPConnection):
    """HTTP connection that dials the daemon's Unix socket."""

    def __init__(self, path: str | None = None, timeout: float | None = None) -> None:
        super().__init__("localhost", timeout=timeout)
        self.path = path

    def connect(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(self.path or socket_path())
        except OSError:
            sock.close()
            raise
        self.sock = sock


def new_http_connection(timeout: float | None = None) -> UnixHTTPConnection:
    """Return an HTTP connection to the daemon socket."""
    return UnixHTTPConnection(timeout=timeout)