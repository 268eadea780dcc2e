"""Loopback HTTP server that receives the provider redirect.

:class:`CallbackServer` listens on ``127.0.0.1`` (first free port from 3000
to 3010 by default) in a daemon thread. Every request to a callback path is
turned into a full callback URL, which is

1. written to the ``oauth2_callback`` storage slot as
   ``{url, code, state, timestamp}`` (unless it carries nothing), and
2. pushed to every subscribed listener (see :meth:`CallbackServer.subscribe`),
   which is how :class:`~oauthflow.auth.channels.HostPushChannel` hears it.

Redirects that put the parameters in the URL fragment never reach the
server in the request line, so the served page posts the fragment back as
a form body, which is handled the same way as a form-posting provider.
"""

from __future__ import annotations

import html
import logging
import threading
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlparse

from oauthflow.auth.callback import parse_callback_url
from oauthflow.auth.channels import CALLBACK_SLOT_KEY, Unsubscribe
from oauthflow.auth.storage import KeyValueStorage
from oauthflow.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CALLBACK_PATHS = frozenset({"/oauth-callback.html", "/oauth_callback.html", "/callback", "/"})

_FRAGMENT_RELAY = """
<script>
  if (window.location.hash.length > 1 && !window.location.search) {
    fetch(window.location.pathname, {
      method: "POST",
      headers: {"Content-Type": "application/x-www-form-urlencoded"},
      body: window.location.hash.substring(1)
    }).then(function (response) { return response.text(); })
      .then(function (page) { document.body.innerHTML = page; });
  }
</script>
"""


def _page(message: str) -> bytes:
    return (
        "<!DOCTYPE html><html><head><title>OAuth2 Callback</title></head>"
        f"<body><h2>{html.escape(message)}</h2>{_FRAGMENT_RELAY}</body></html>"
    ).encode("utf-8")


class CallbackServer:
    """Threaded loopback redirect target.

    Args:
        storage: Where the ``oauth2_callback`` slot is written. Optional;
            without it callbacks are only pushed to listeners.
        host: Bind address.
        port: First port to try.
        port_max: Last port to try.
        clock: Time source for the slot ``timestamp``.

    Example::

        with CallbackServer(storage) as server:
            unsubscribe = server.subscribe(print)
            ...
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        host: str = "127.0.0.1",
        port: int = 3000,
        port_max: int = 3010,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._host = host
        self._first_port = port
        self._port_max = max(port, port_max)
        self._clock = clock
        self._listeners: list[Callable[[str], None]] = []
        self._lock = threading.Lock()
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> Optional[int]:
        return self._server.server_address[1] if self._server is not None else None

    @property
    def running(self) -> bool:
        return self._server is not None

    def url_for(self, path: str = "/oauth-callback.html") -> str:
        if self.port is None:
            raise RuntimeError("Callback server is not running")
        return f"http://{self._host}:{self.port}{path}"

    def serves(self, redirect_uri: str) -> bool:
        """Whether *redirect_uri* points at this server's port and a callback path."""
        parsed = urlparse(redirect_uri)
        return (
            self.port is not None
            and parsed.hostname in ("localhost", "127.0.0.1", self._host)
            and parsed.port == self.port
            and (parsed.path or "/") in CALLBACK_PATHS
        )

    # --- Listener registry (host push subscription) ---

    def subscribe(self, listener: Callable[[str], None]) -> Unsubscribe:
        """Register *listener* for callback URLs. Returns an unsubscribe function.

        Listeners are called from the server thread.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def handle_callback(self, url: str) -> None:
        """Record *url* in the storage slot and push it to every listener."""
        payload = parse_callback_url(url, channel="server")
        logger.debug(
            "Callback server received code=%s state=%s error=%s",
            (payload.code or "")[:8] or None,
            (payload.state or "")[:8] or None,
            payload.error,
        )
        if self._storage is not None and not payload.is_empty:
            self._storage.set(
                CALLBACK_SLOT_KEY,
                {
                    "url": url,
                    "code": payload.code,
                    "state": payload.state,
                    "timestamp": self._clock(),
                },
            )
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(url)
            except Exception:
                logger.exception("Callback listener failed")

    # --- Server lifecycle ---

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        server = self

        class CallbackHandler(BaseHTTPRequestHandler):
            def _base_url(self) -> str:
                host = self.headers.get("Host") or f"{server._host}:{server.port}"
                return f"http://{host}"

            def _respond(self, status: int, message: str) -> None:
                body = _page(message)
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def _finish(self, url: str) -> None:
                server.handle_callback(url)
                payload = parse_callback_url(url)
                if payload.error:
                    message = f"Authorization failed: {payload.error}"
                    if payload.error_description:
                        message += f" - {payload.error_description}"
                elif payload.code:
                    message = (
                        "Authorization successful! You can close this window "
                        "and return to the application."
                    )
                else:
                    message = "Waiting for authorization..."
                self._respond(200, message)

            def do_GET(self) -> None:
                if urlparse(self.path).path not in CALLBACK_PATHS:
                    self.send_error(404, "Not Found")
                    return
                self._finish(f"{self._base_url()}{self.path}")

            def do_POST(self) -> None:
                parsed = urlparse(self.path)
                if parsed.path not in CALLBACK_PATHS:
                    self.send_error(404, "Not Found")
                    return
                length = int(self.headers.get("Content-Length") or 0)
                body = self.rfile.read(length).decode("utf-8", errors="replace")
                form = parse_qs(body)
                if "code" in form or "error" in form:
                    url = f"{self._base_url()}{parsed.path}?{body}"
                else:
                    url = f"{self._base_url()}{self.path}"
                self._finish(url)

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("callback server: " + format, *args)

        return CallbackHandler

    def start(self) -> int:
        """Bind the first free port and serve in a daemon thread.

        Returns:
            The bound port.

        Raises:
            ConfigurationError: If every port in the range is busy.
        """
        if self._server is not None:
            return self.port or 0
        handler = self._make_handler()
        last_error: Optional[OSError] = None
        for port in range(self._first_port, self._port_max + 1):
            try:
                self._server = HTTPServer((self._host, port), handler)
                break
            except OSError as exc:
                logger.debug("Callback port %d unavailable: %s", port, exc)
                last_error = exc
        if self._server is None:
            raise ConfigurationError(
                f"No free callback port between {self._first_port} and "
                f"{self._port_max}: {last_error}"
            )

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.2},
            name="oauthflow-callback-server",
            daemon=True,
        )
        self._thread.start()
        logger.info("OAuth2 callback server listening on %s", self.url_for("/"))
        return self.port or 0

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        logger.debug("Callback server stopped")

    def __enter__(self) -> CallbackServer:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()
