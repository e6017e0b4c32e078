"""Single-use loopback listener for the OAuth redirect.

Lifecycle:
    IDLE -> LISTENING -> RECEIVED -> STOPPED
    IDLE -> LISTENING -> TIMED_OUT -> STOPPED

The listener binds the host:port of the configured redirect URI, serves on
a daemon thread, captures the first redirect that carries ``code`` or
``error`` on the configured path, and is torn down on every exit path.
Requests for other paths get a 404 and the listener keeps waiting.
"""

import logging
import threading
from enum import Enum
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from basecamp_cli.auth.models import CallbackResult
from basecamp_cli.errors import CallbackBindFailedError, CallbackTimeoutError

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = ("127.0.0.1", "localhost")
BIND_HOST = "127.0.0.1"
HANDLER_TIMEOUT = 5.0

SUCCESS_BODY = (
    b"<html><body><h1>Basecamp login complete</h1>"
    b"<p>You can close this window and return to the terminal.</p></body></html>"
)
FAILURE_BODY = (
    b"<html><body><h1>Basecamp login failed</h1>"
    b"<p>You can return to the terminal and retry.</p></body></html>"
)
MISSING_CODE_BODY = (
    b"<html><body><h1>Invalid Request</h1>"
    b"<p>Missing authorization code in callback.</p></body></html>"
)
NOT_FOUND_BODY = b"<html><body><h1>Not Found</h1></body></html>"


class CallbackState(str, Enum):
    """Listener lifecycle states."""

    IDLE = "idle"
    LISTENING = "listening"
    RECEIVED = "received"
    TIMED_OUT = "timed_out"
    STOPPED = "stopped"


def parse_loopback_redirect(redirect_uri: str) -> tuple[str, int, str]:
    """Validate a redirect URI for local callback handling.

    Args:
        redirect_uri: e.g. ``http://127.0.0.1:45455/callback``.

    Returns:
        Tuple of (host, port, path).

    Raises:
        CallbackBindFailedError: If the URI is not http on 127.0.0.1 or
            localhost with an explicit port.
    """
    parsed = urlparse(redirect_uri)

    if parsed.scheme != "http":
        raise CallbackBindFailedError(
            "redirect_uri for CLI login must use http loopback "
            "(for example http://127.0.0.1:45455/callback)."
        )

    host = parsed.hostname
    if host not in LOOPBACK_HOSTS:
        raise CallbackBindFailedError(
            "redirect_uri host must be localhost or 127.0.0.1 for CLI login."
        )

    try:
        port = parsed.port
    except ValueError as e:
        raise CallbackBindFailedError(f"redirect_uri has an invalid port: {e}") from e

    if port is None:
        raise CallbackBindFailedError(
            "redirect_uri must include an explicit port for local callback handling."
        )

    return host, port, parsed.path or "/"


class _CallbackHTTPServer(ThreadingHTTPServer):
    """Threaded HTTP server that knows which CallbackServer it reports to.

    Each connection is served on its own daemon thread.
    """

    daemon_threads = True
    # A port already bound by another login must fail the bind
    allow_reuse_address = False

    def __init__(self, address: tuple[str, int], owner: "CallbackServer") -> None:
        self.owner = owner
        super().__init__(address, _CallbackRequestHandler)


class _CallbackRequestHandler(BaseHTTPRequestHandler):
    """HTTP handler for the OAuth redirect."""

    server: _CallbackHTTPServer
    # Per-connection read timeout in seconds
    timeout = HANDLER_TIMEOUT

    def log_message(self, format: str, *args: Any) -> None:
        """Route request logs to debug logging instead of stderr."""
        # Request lines carry the authorization code; log the path only.
        logger.debug("Callback request: %s", urlparse(self.path).path)

    def do_GET(self) -> None:
        """Handle GET request from OAuth redirect."""
        owner = self.server.owner
        request_parsed = urlparse(self.path)

        # Only handle the callback path
        if request_parsed.path != owner.expected_path:
            self._send_html(404, NOT_FOUND_BODY)
            return

        query_params = parse_qs(request_parsed.query)
        result = CallbackResult(
            code=_first(query_params, "code"),
            state=_first(query_params, "state"),
            error=_first(query_params, "error"),
            error_description=_first(query_params, "error_description"),
        )

        if result.error:
            self._send_html(400, FAILURE_BODY)
        elif result.code:
            self._send_html(200, SUCCESS_BODY)
        else:
            self._send_html(400, MISSING_CODE_BODY)
            return

        owner._deliver(result)

    def _send_html(self, status: int, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    return values[0] if values else None


class CallbackServer:
    """Loopback rendezvous for exactly one OAuth redirect.

    Example:
        ```python
        with CallbackServer("http://127.0.0.1:45455/callback") as callback:
            webbrowser.open(auth_url)
            result = callback.wait(timeout=180)
        ```
    """

    def __init__(self, redirect_uri: str) -> None:
        self.redirect_uri = redirect_uri
        self.expected_path = "/"
        self._state = CallbackState.IDLE
        self._lock = threading.Lock()
        self._received = threading.Event()
        self._result: CallbackResult | None = None
        self._server: _CallbackHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> CallbackState:
        return self._state

    @property
    def port(self) -> int | None:
        """Bound port while listening."""
        if self._server is None:
            return None
        return self._server.server_address[1]

    def __enter__(self) -> "CallbackServer":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def start(self) -> None:
        """Bind the redirect URI's port and start accepting requests.

        Raises:
            CallbackBindFailedError: If the redirect URI is not a loopback
                URI or the port cannot be bound.
            RuntimeError: If the listener was already started.
        """
        if self._state is not CallbackState.IDLE:
            raise RuntimeError(f"CallbackServer cannot start from state {self._state.value}")

        _host, port, path = parse_loopback_redirect(self.redirect_uri)
        self.expected_path = path

        try:
            server = _CallbackHTTPServer((BIND_HOST, port), self)
        except OSError as e:
            raise CallbackBindFailedError(
                f"Failed to bind callback server on {BIND_HOST}:{port}: {e}"
            ) from e

        self._server = server
        self._thread = threading.Thread(
            target=server.serve_forever,
            kwargs={"poll_interval": 0.05},
            name="basecamp-oauth-callback",
            daemon=True,
        )
        self._state = CallbackState.LISTENING
        self._thread.start()
        logger.info("OAuth callback listener started on %s:%s%s", BIND_HOST, port, path)

    def wait(self, timeout: float) -> CallbackResult:
        """Block until the redirect arrives or ``timeout`` seconds pass.

        The listener is stopped before this returns or raises.

        Raises:
            CallbackTimeoutError: If no redirect arrived in time.
            RuntimeError: If the listener was never started.
        """
        if self._state is CallbackState.IDLE:
            raise RuntimeError("CallbackServer.wait called before start")

        try:
            self._received.wait(timeout)
            with self._lock:
                result = self._result
                if result is None:
                    self._state = CallbackState.TIMED_OUT

            if result is None:
                logger.warning("No OAuth callback received within %ss", timeout)
                raise CallbackTimeoutError(timeout)
            return result
        finally:
            self.stop()

    def stop(self) -> None:
        """Unbind the socket. Safe to call repeatedly and from any state."""
        server, self._server = self._server, None
        thread, self._thread = self._thread, None

        if server is not None:
            server.shutdown()
            server.server_close()
            logger.info("OAuth callback listener stopped")
        if thread is not None:
            thread.join(timeout=5)

        with self._lock:
            self._state = CallbackState.STOPPED
        # Wake any waiter; with no result recorded it reports a timeout.
        self._received.set()

    def _deliver(self, result: CallbackResult) -> None:
        """Record the first redirect; later ones are ignored."""
        with self._lock:
            if self._state is not CallbackState.LISTENING:
                return
            self._result = result
            self._state = CallbackState.RECEIVED
        self._received.set()
