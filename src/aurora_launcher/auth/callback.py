"""One-shot loopback listener that captures the authorization redirect.

The identity provider finishes an interactive sign-in by redirecting the
browser to ``http://localhost:<port>/?code=...``.  ``CallbackListener`` binds
that port, serves exactly one meaningful request on a background thread, and
hands the code to the waiting caller through a ``threading.Event``.

The listener is a context manager and the wait is bounded: the server is shut
down and its socket closed on every exit path, whether the code arrived, the
provider reported an error, or the timeout elapsed.
"""

from __future__ import annotations

import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlencode, urlparse

from aurora_launcher.auth.token_chain import AuthError, ChainStage

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://login.microsoftonline.com/consumers/oauth2/v2.0/authorize"
LOGIN_SCOPE = "XboxLive.signin offline_access"

_SUCCESS_PAGE = b"<h1>Login successful!</h1><p>You may close this window.</p>"
_ERROR_PAGE = b"<h1>Error</h1><p>No code received.</p>"
_GONE_PAGE = b"<h1>Already handled</h1><p>This login request has completed.</p>"


class LoginTimeoutError(AuthError):
    """Raised when no redirect arrives within the configured bound."""

    def __init__(self, timeout: float) -> None:
        super().__init__(ChainStage.AUTHORIZE, f"no authorization redirect within {timeout:.0f}s")
        self.timeout = timeout


def build_authorize_url(client_id: str, redirect_uri: str, authorize_url: str = AUTHORIZE_URL) -> str:
    return authorize_url + "?" + urlencode({
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": LOGIN_SCOPE,
    })


class _CallbackHandler(BaseHTTPRequestHandler):
    server_version = "AuroraCallback/1.0"
    server: _CallbackServer

    def do_GET(self) -> None:
        if not self.server.claim():
            self._respond(410, _GONE_PAGE)
            return

        query = parse_qs(urlparse(self.path).query)
        code = query.get("code", [None])[0]
        error = query.get("error_description", query.get("error", [None]))[0]
        self._respond(200, _SUCCESS_PAGE if code else _ERROR_PAGE)
        self.server.complete(code, error)

    def log_message(self, fmt: str, *args: object) -> None:
        logger.debug("callback: " + fmt, *args)

    def _respond(self, status: int, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


class _CallbackServer(HTTPServer):
    def __init__(self, host: str, port: int) -> None:
        super().__init__((host, port), _CallbackHandler)
        self.code: str | None = None
        self.error: str | None = None
        self.done = threading.Event()
        self._claimed = False
        self._lock = threading.Lock()

    def claim(self) -> bool:
        with self._lock:
            if self._claimed:
                return False
            self._claimed = True
            return True

    def complete(self, code: str | None, error: str | None) -> None:
        self.code = code
        self.error = error
        self.done.set()


class CallbackListener:
    """Scoped single-request HTTP listener for the authorization redirect."""

    def __init__(self, host: str = "localhost", port: int = 8080) -> None:
        self._host = host
        self._port = port
        self._server: _CallbackServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        if self._server is None:
            return self._port
        return self._server.server_address[1]

    @property
    def redirect_uri(self) -> str:
        return f"http://{self._host}:{self.port}/"

    def __enter__(self) -> CallbackListener:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def start(self) -> None:
        self._server = _CallbackServer(self._host, self._port)
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="aurora-login-callback",
            daemon=True,
        )
        self._thread.start()
        logger.info("Waiting for authorization redirect at %s", self.redirect_uri)

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        logger.debug("Callback listener stopped")

    def wait(self, timeout: float) -> str:
        """Block until the redirect arrives and return its authorization code.

        Raises ``LoginTimeoutError`` after *timeout* seconds, or ``AuthError``
        if the redirect carried no code.
        """
        if self._server is None:
            raise RuntimeError("CallbackListener.wait() called before start()")
        if not self._server.done.wait(timeout):
            raise LoginTimeoutError(timeout)
        if not self._server.code:
            raise AuthError(
                ChainStage.AUTHORIZE,
                f"redirect carried no authorization code ({self._server.error or 'no error given'})",
            )
        return self._server.code
