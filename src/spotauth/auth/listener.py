"""Loopback HTTP listener that receives the authorization redirect.

:class:`RedirectListener` binds ``127.0.0.1`` on a fixed port (it must match
the redirect URI registered with Spotify) and serves exactly one path. When
the provider redirects the browser there, the listener renders a result
page immediately and, after a short delay that lets the page paint, hands
the parsed :class:`~spotauth.models.CallbackResult` to ``on_callback``.
The hand-off runs on a timer thread, decoupled from the HTTP response.

Routes::

    GET <callback_path>?code=..&state=..   -> 200 text/html success page
    GET <callback_path>?error=..&state=..  -> 200 text/html error page
    GET <callback_path>                    -> 400 text/plain
    anything else                          -> 404 text/plain "Not Found"
"""

from __future__ import annotations

import errno
import logging
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

from spotauth.auth.pages import error_page, success_page
from spotauth.exceptions import ListenerError, PortInUseError
from spotauth.models import CallbackResult

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_CALLBACK_PATH = "/callback"

_ADDR_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}


class _ListenerHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    # SO_REUSEADDR lets a second process bind an occupied port on Windows.
    allow_reuse_address = sys.platform != "win32"

    listener: "RedirectListener"


class _CallbackRequestHandler(BaseHTTPRequestHandler):
    server: _ListenerHTTPServer

    def do_GET(self) -> None:  # noqa: N802
        listener = self.server.listener
        parsed = urlsplit(self.path)

        if parsed.path != listener.callback_path:
            self._send_text(404, "Not Found")
            return

        try:
            result = CallbackResult.from_query(parsed.query)
        except ValueError as exc:
            self._send_text(400, f"Error: {exc}")
            return

        if result.is_success:
            self._send_html(success_page())
        else:
            assert result.error is not None
            self._send_html(error_page(result.error))
        listener._schedule_handoff(result)

    def _send_html(self, body: str) -> None:
        self._send(200, body.encode("utf-8"), "text/html; charset=utf-8")

    def _send_text(self, status: int, body: str) -> None:
        self._send(status, body.encode("utf-8"), "text/plain; charset=utf-8")

    def _send(self, status: int, payload: bytes, content_type: str) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(payload)))
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format: str, *args: Any) -> None:
        # The query string carries the authorization code; log the path only.
        path = urlsplit(getattr(self, "path", "") or "").path
        logger.debug("listener %s %s", getattr(self, "command", None), path)


class RedirectListener:
    """Short-lived loopback server for one authorization redirect.

    Args:
        port: TCP port to bind. Must match the registered redirect URI.
            ``0`` picks a free port (useful in tests).
        callback_path: The single path served.
        on_callback: Receives the parsed callback after ``handoff_delay``.
        handoff_delay: Seconds between serving the page and the hand-off.
        host: Interface to bind; loopback only.

    Example::

        listener = RedirectListener(port=3000, on_callback=print)
        listener.start()
        ...
        listener.stop()
    """

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        callback_path: str = DEFAULT_CALLBACK_PATH,
        on_callback: Optional[Callable[[CallbackResult], None]] = None,
        handoff_delay: float = 3.0,
        host: str = DEFAULT_HOST,
    ) -> None:
        self._host = host
        self._port = port
        self._callback_path = callback_path
        self._on_callback = on_callback
        self._handoff_delay = handoff_delay
        self._lock = threading.Lock()
        self._server: Optional[_ListenerHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._timers: list[threading.Timer] = []

    @property
    def port(self) -> int:
        return self._port

    @property
    def callback_path(self) -> str:
        return self._callback_path

    @property
    def redirect_uri(self) -> str:
        return f"http://{self._host}:{self._port}{self._callback_path}"

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._server is not None

    def start(self) -> int:
        """Bind the port and start serving on a daemon thread.

        Returns:
            The bound port.

        Raises:
            PortInUseError: If another process already holds the port.
            ListenerError: For any other bind failure, or if this listener
                is already running.
        """
        with self._lock:
            if self._server is not None:
                raise ListenerError("Redirect listener is already running")
            try:
                server = _ListenerHTTPServer(
                    (self._host, self._port), _CallbackRequestHandler
                )
            except OSError as exc:
                if exc.errno in _ADDR_IN_USE:
                    raise PortInUseError(self._port) from exc
                raise ListenerError(
                    f"Could not start the redirect listener on "
                    f"{self._host}:{self._port}: {exc.strerror or exc}"
                ) from exc

            server.listener = self
            self._port = server.server_address[1]
            thread = threading.Thread(
                target=server.serve_forever,
                name=f"spotauth-listener-{self._port}",
                daemon=True,
            )
            thread.start()
            self._server = server
            self._thread = thread

        logger.info("Redirect listener started on %s", self.redirect_uri)
        return self._port

    def stop(self) -> None:
        """Stop serving and release the port. Safe to call repeatedly."""
        with self._lock:
            server, thread, timers = self._server, self._thread, self._timers
            self._server = None
            self._thread = None
            self._timers = []

        for timer in timers:
            timer.cancel()
        if server is None:
            return

        server.shutdown()
        server.server_close()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        logger.info("Redirect listener stopped on %s", self.redirect_uri)

    def _schedule_handoff(self, result: CallbackResult) -> None:
        if self._on_callback is None:
            return
        timer = threading.Timer(self._handoff_delay, self._deliver, args=(result,))
        timer.daemon = True
        with self._lock:
            if self._server is None:
                return
            self._timers.append(timer)
            timer.start()

    def _deliver(self, result: CallbackResult) -> None:
        assert self._on_callback is not None
        try:
            self._on_callback(result)
        except Exception:
            logger.exception("Authorization hand-off raised")
