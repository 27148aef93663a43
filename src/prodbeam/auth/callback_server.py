"""Loopback HTTP listener that receives the OAuth authorization-code redirect.

The listener binds ``127.0.0.1`` on the port registered with the provider
(the redirect URI must match exactly, so no fallback port is ever tried)
and serves ``GET /callback?code=...&state=...``:

- any other path gets ``404`` and the listener keeps waiting;
- an ``error`` parameter fails with :class:`~prodbeam.exceptions.OAuthCallbackError`;
- a ``state`` that differs from the one we issued fails with
  :class:`~prodbeam.exceptions.OAuthStateMismatchError` before ``code`` is
  looked at;
- a missing ``code`` fails with :class:`~prodbeam.exceptions.OAuthProtocolError`;
- otherwise the browser gets a success page and the code is returned.

Requests are served by :class:`http.server.HTTPServer` on a worker thread;
the outcome is handed back to the event loop with
``loop.call_soon_threadsafe``. Only the first callback counts. The listener
is closed once it has an outcome, on timeout, and when the waiting task is
cancelled.

Example::

    async with CallbackListener(port, state) as listener:
        webbrowser.open(url)
        code = await listener.wait_for_code(timeout=120.0)
"""

from __future__ import annotations

import asyncio
import errno
import html
import logging
import secrets
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional, Union
from urllib.parse import parse_qs, urlsplit

from prodbeam.exceptions import (
    CallbackTimeoutError,
    OAuthCallbackError,
    OAuthProtocolError,
    OAuthStateMismatchError,
    PortInUseError,
)

logger = logging.getLogger(__name__)

CALLBACK_HOST = "127.0.0.1"
CALLBACK_PATH = "/callback"
DEFAULT_CALLBACK_TIMEOUT = 120.0

# serve_forever() checks for shutdown this often.
_POLL_INTERVAL = 0.05
# Socket timeout for each accepted connection.
_REQUEST_TIMEOUT = 10.0


# ------------------------------------------------------------------ #
# HTML pages
# ------------------------------------------------------------------ #


def _page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n"
        f"<html><head><meta charset=\"utf-8\"><title>prodbeam - {html.escape(title)}</title>"
        "<style>body{font-family:system-ui,sans-serif;display:flex;justify-content:center;"
        "align-items:center;min-height:100vh;margin:0;background:#f5f5f5}"
        ".card{background:#fff;padding:2rem 3rem;border-radius:8px;"
        "box-shadow:0 2px 8px rgba(0,0,0,.1);text-align:center}</style></head>"
        f"<body><div class=\"card\"><h1>{html.escape(title)}</h1>"
        f"<p>{html.escape(body)}</p></div></body></html>"
    )


SUCCESS_PAGE = _page(
    "Authorization complete",
    "prodbeam is now connected. You can close this tab and return to the terminal.",
)


def error_page(message: str) -> str:
    """Failure page; *message* may come from the provider and is escaped."""
    return _page("Authorization failed", message)


# ------------------------------------------------------------------ #
# HTTP server
# ------------------------------------------------------------------ #

_Outcome = Union[str, Exception]


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer
    timeout = _REQUEST_TIMEOUT

    def do_GET(self) -> None:
        status, page = self.server.listener._dispatch(self.path)
        body = page.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("OAuth callback: " + format, *args)


class _CallbackServer(HTTPServer):
    def __init__(self, listener: CallbackListener) -> None:
        self.listener = listener
        super().__init__((CALLBACK_HOST, listener._requested_port), _CallbackHandler)

    def handle_error(self, request: Any, client_address: Any) -> None:
        logger.debug("OAuth callback request from %s failed", client_address, exc_info=True)


# ------------------------------------------------------------------ #
# Listener
# ------------------------------------------------------------------ #


class CallbackListener:
    """One-shot loopback listener for a single authorization redirect.

    Args:
        port: TCP port to bind on ``127.0.0.1`` (``0`` picks a free port).
        expected_state: The ``state`` value placed in the authorization URL.

    Raises:
        PortInUseError: From :meth:`start` if *port* is already bound.
    """

    def __init__(self, port: int, expected_state: str) -> None:
        self._requested_port = port
        self._expected_state = expected_state
        self._httpd: Optional[_CallbackServer] = None
        self._serving: Optional[asyncio.Future[None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._result: Optional[asyncio.Future[str]] = None
        # Only read and written on the server thread.
        self._handled = False

    @property
    def port(self) -> int:
        """The bound port (differs from the requested one only for port ``0``)."""
        if self._httpd is None:
            return self._requested_port
        return self._httpd.server_address[1]

    async def start(self) -> None:
        """Bind the listening socket and start serving on a worker thread."""
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._result = loop.create_future()
        try:
            self._httpd = _CallbackServer(self)
        except OSError as exc:
            if exc.errno == errno.EADDRINUSE:
                raise PortInUseError(self._requested_port) from exc
            raise
        self._serving = loop.run_in_executor(None, self._httpd.serve_forever, _POLL_INTERVAL)
        logger.debug("OAuth callback listener on %s:%d", CALLBACK_HOST, self.port)

    async def wait_for_code(self, timeout: float = DEFAULT_CALLBACK_TIMEOUT) -> str:
        """Wait for the redirect and return the authorization code.

        The listener is closed before this returns or raises.

        Raises:
            CallbackTimeoutError: No callback arrived within *timeout* seconds.
            OAuthCallbackError: The provider reported an error.
            OAuthStateMismatchError: The ``state`` parameter did not match.
            OAuthProtocolError: The callback carried no ``code``.
        """
        if self._result is None:
            await self.start()
        assert self._result is not None
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout)
        except asyncio.TimeoutError:
            raise CallbackTimeoutError(
                f"Timed out waiting for the OAuth callback after {timeout:g}s"
            ) from None
        finally:
            await self.close()

    async def close(self) -> None:
        """Stop serving and release the port. Safe to call twice."""
        if self._httpd is None:
            return
        httpd, self._httpd = self._httpd, None
        try:
            # shutdown() blocks until serve_forever() has returned.
            await asyncio.to_thread(httpd.shutdown)
            if self._serving is not None:
                await self._serving
        finally:
            httpd.server_close()
            if self._result is not None and not self._result.done():
                self._result.cancel()
        logger.debug("OAuth callback listener closed")

    async def __aenter__(self) -> CallbackListener:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Request handling (server thread)
    # ------------------------------------------------------------------ #

    def _dispatch(self, target: str) -> tuple[int, str]:
        """Map a request target to a response, settling the result on ``/callback``."""
        url = urlsplit(target)
        if url.path != CALLBACK_PATH:
            return 404, _page("Not found", "This address only accepts the OAuth callback.")

        if self._handled:
            return 200, error_page("This authorization request has already been handled.")
        self._handled = True

        params = {key: values[0] for key, values in parse_qs(url.query).items()}

        error = params.get("error")
        if error:
            description = params.get("error_description", error)
            self._settle(OAuthCallbackError(error))
            return 200, error_page(f"Authorization failed: {description}")

        state = params.get("state", "")
        if not secrets.compare_digest(state.encode("utf-8"), self._expected_state.encode("utf-8")):
            self._settle(OAuthStateMismatchError())
            return 200, error_page(
                "State mismatch: this may be a CSRF attack. Please restart the login from the terminal."
            )

        code = params.get("code")
        if not code:
            self._settle(OAuthProtocolError("No authorization code received."))
            return 200, error_page("No authorization code received.")

        self._settle(code)
        return 200, SUCCESS_PAGE

    def _settle(self, outcome: _Outcome) -> None:
        assert self._loop is not None
        self._loop.call_soon_threadsafe(self._set_outcome, outcome)

    def _set_outcome(self, outcome: _Outcome) -> None:
        if self._result is None or self._result.done():
            return
        if isinstance(outcome, Exception):
            self._result.set_exception(outcome)
        else:
            self._result.set_result(outcome)


async def wait_for_authorization_code(
    port: int,
    expected_state: str,
    timeout: float = DEFAULT_CALLBACK_TIMEOUT,
    on_listening: Optional[Callable[[int], None]] = None,
) -> str:
    """Start a listener, wait for one redirect, and return its code.

    Args:
        port: Registered callback port.
        expected_state: The ``state`` sent in the authorization URL.
        timeout: Seconds to wait for the browser.
        on_listening: Called with the bound port once the socket is
            listening, e.g. to open the browser.

    Returns:
        The authorization code.

    Raises:
        PortInUseError: *port* is already bound.
        CallbackTimeoutError: Nothing arrived within *timeout*.
        OAuthProtocolError: The callback was an error, a state mismatch,
            or carried no code.
    """
    listener = CallbackListener(port, expected_state)
    await listener.start()
    try:
        if on_listening is not None:
            on_listening(listener.port)
        return await listener.wait_for_code(timeout)
    finally:
        await listener.close()
