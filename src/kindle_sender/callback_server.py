"""Local OAuth callback listener.

Objective:
    Capture the single browser redirect sent by the identity provider at the
    end of the authorization step, hand its query parameters to the flow
    controller, and shut down.

Responsibilities:
    - Bind the host/port of the configured callback URI up front, so a busy
      port fails fast with :class:`~kindle_sender.errors.ListenerError`.
    - Serve a tiny FastAPI app (one ``GET`` route on the callback path) with
      ``uvicorn`` in a background thread.
    - Accept the first redirect carrying ``code`` or ``error``; later requests
      get HTTP 409 and requests with neither parameter get HTTP 400.
    - Render a confirmation (or failure) page for the browser.

High-level call tree:
    - :meth:`CallbackListener.start` -> :class:`CallbackHandle`
        - :func:`build_callback_app`
    - :meth:`CallbackListener.await_result`
        - :meth:`CallbackHandle.wait`
        - :meth:`CallbackHandle.close`

Operational notes:
    - ``await_result`` is the only blocking point of the authorization flow.
      It always stops the server and closes the socket, so the port is free
      again once it returns or raises.
"""

import logging
import socket
import threading
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from .errors import AuthDeniedError, AuthTimeoutError, ListenerError
from .models import AuthorizationResult

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

DEFAULT_TIMEOUT_SECONDS = 300.0


class _CallbackSlot:
    """Holds the first accepted redirect; later offers are rejected."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._result: Optional[AuthorizationResult] = None

    def offer(self, result: AuthorizationResult) -> bool:
        with self._lock:
            if self._result is not None:
                return False
            self._result = result
        self._event.set()
        return True

    def wait(self, timeout: float) -> Optional[AuthorizationResult]:
        if not self._event.wait(timeout):
            return None
        return self._result


def build_callback_app(path: str, slot: _CallbackSlot) -> FastAPI:
    """Create the FastAPI app serving the callback route.

    Args:
        path: Callback path taken from the redirect URI.
        slot: Receives the captured redirect.

    Returns:
        FastAPI: App with a single ``GET`` route on ``path``.
    """

    app = FastAPI(title="Kindle Sender OAuth callback", docs_url=None, redoc_url=None, openapi_url=None)
    templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

    def render(request: Request, status_code: int, **context: Any) -> Any:
        context.setdefault("error", None)
        return templates.TemplateResponse(
            request, "callback.html", context, status_code=status_code
        )

    @app.get(path, response_class=HTMLResponse)
    def callback(request: Request) -> Any:
        """Receive the authorization redirect.

        Args:
            request: Incoming redirect request.

        Returns:
            Any: Rendered page for the browser.
        """

        params = request.query_params
        code = params.get("code")
        error = params.get("error")

        if not code and not error:
            logger.debug("Ignoring callback request without code or error")
            return render(
                request,
                400,
                title="Invalid callback",
                message="The request carried neither an authorization code nor an error.",
                success=False,
            )

        result = AuthorizationResult(
            code=code,
            state=params.get("state"),
            error=error,
            error_description=params.get("error_description"),
        )

        if not slot.offer(result):
            logger.debug("Rejecting duplicate callback request")
            return render(
                request,
                409,
                title="Already completed",
                message="This sign-in attempt was already handled. You can close this tab.",
                success=False,
            )

        if result.is_error:
            logger.info("Authorization redirect reported error=%s", error)
            return render(
                request,
                400,
                title="Authorization failed",
                message=result.error_description or "The identity provider reported an error.",
                error=error,
                success=False,
            )

        logger.info("Authorization code received")
        return render(
            request,
            200,
            title="Authorization complete",
            message="You can close this tab and return to the command line.",
            success=True,
        )

    return app


class CallbackHandle:
    """Running listener returned by :meth:`CallbackListener.start`.

    Attributes:
        host: Bound host.
        port: Bound port (the real port when the URI asked for port 0).
        path: Served callback path.
    """

    def __init__(self, sock: socket.socket, host: str, path: str) -> None:
        self.host = host
        self.port = sock.getsockname()[1]
        self.path = path
        self._socket = sock
        self._slot = _CallbackSlot()
        self._closed = False

        config = uvicorn.Config(
            build_callback_app(path, self._slot),
            log_config=None,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(
            target=self._server.run,
            kwargs={"sockets": [sock]},
            name="oauth-callback-listener",
            daemon=True,
        )
        self._thread.start()

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}{self.path}"

    def wait(self, timeout: float) -> Optional[AuthorizationResult]:
        """Block until a redirect is captured or ``timeout`` elapses.

        Args:
            timeout: Seconds to wait.

        Returns:
            Optional[AuthorizationResult]: Captured redirect, or None on timeout.
        """

        return self._slot.wait(timeout)

    def close(self, join_timeout: float = 5.0) -> None:
        """Stop the server thread and release the socket."""

        if self._closed:
            return
        self._closed = True

        self._server.should_exit = True
        self._thread.join(join_timeout)
        if self._thread.is_alive():
            logger.warning("Callback listener did not stop gracefully; forcing exit")
            self._server.force_exit = True
            self._thread.join(join_timeout)

        self._socket.close()
        logger.debug("Callback listener on %s:%s stopped", self.host, self.port)


class CallbackListener:
    """Start a one-shot callback listener and wait for its result.

    Args:
        timeout_seconds: How long :meth:`await_result` waits for the redirect.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.timeout_seconds = timeout_seconds

    def start(self, callback_uri: str) -> CallbackHandle:
        """Bind the callback URI's host/port and start serving.

        Args:
            callback_uri: Redirect URI, e.g. ``http://localhost:8080/callback``.

        Returns:
            CallbackHandle: Running listener.

        Raises:
            ListenerError: If the socket cannot be bound (port in use).
        """

        parsed = urlparse(callback_uri)
        host = parsed.hostname or "localhost"
        port = parsed.port if parsed.port is not None else (443 if parsed.scheme == "https" else 80)
        path = parsed.path or "/"

        try:
            sock = socket.create_server((host, port))
        except OSError as e:
            raise ListenerError(host, port, e.strerror or str(e)) from e

        handle = CallbackHandle(sock, host, path)
        logger.debug("Callback listener started on %s", handle.url)
        return handle

    def await_result(self, handle: CallbackHandle) -> AuthorizationResult:
        """Wait for the redirect, then shut the listener down.

        Args:
            handle: Listener returned by :meth:`start`.

        Returns:
            AuthorizationResult: Redirect carrying an authorization code.

        Raises:
            AuthTimeoutError: If no redirect arrived in time.
            AuthDeniedError: If the redirect carried an ``error``.
        """

        try:
            result = handle.wait(self.timeout_seconds)
        finally:
            handle.close()

        if result is None:
            raise AuthTimeoutError(self.timeout_seconds)
        if result.is_error:
            raise AuthDeniedError(result.error or "unknown_error", result.error_description)
        return result
