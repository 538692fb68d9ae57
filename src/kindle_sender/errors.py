"""Exception hierarchy.

Every component wraps transport-level failures (``requests``, ``OSError``,
pydantic validation) into one of these types before they leave the
component, so callers only ever handle :class:`KindleSenderError` subclasses.

Tree:
    - :class:`KindleSenderError`
        - :class:`ConfigurationError`
        - :class:`CacheError`
        - :class:`ListenerError`
        - :class:`AuthError`
            - :class:`AuthTimeoutError`
            - :class:`AuthDeniedError`
            - :class:`StateMismatchError`
            - :class:`ExchangeFailedError`
            - :class:`RefreshFailedError`
        - :class:`SendError`
        - :class:`FileOperationError`
"""

from typing import Optional


class KindleSenderError(RuntimeError):
    """Base class for all application errors."""


class ConfigurationError(KindleSenderError):
    """Raised when required settings are missing or invalid."""


class CacheError(KindleSenderError):
    """Raised when the token cache cannot be written or removed."""


class ListenerError(KindleSenderError):
    """Raised when the local callback listener cannot bind its socket.

    Args:
        host: Host the listener tried to bind.
        port: Port the listener tried to bind.
        reason: Underlying OS error message.
    """

    def __init__(self, host: str, port: int, reason: str = "") -> None:
        message = f"Cannot listen on {host}:{port}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.host = host
        self.port = port


class AuthError(KindleSenderError):
    """Base class for authorization failures."""


class AuthTimeoutError(AuthError):
    """No browser callback arrived within the allowed window.

    Args:
        timeout_seconds: Length of the window that elapsed.
    """

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"Timed out after {timeout_seconds:g} seconds waiting for the browser callback"
        )
        self.timeout_seconds = timeout_seconds


class AuthDeniedError(AuthError):
    """The identity provider redirected back with an ``error`` parameter.

    Args:
        error: OAuth error code (e.g. ``access_denied``).
        description: Human-readable ``error_description``.
    """

    def __init__(self, error: str, description: Optional[str] = None) -> None:
        super().__init__(description or error)
        self.error = error
        self.description = description or ""


class StateMismatchError(AuthError):
    """The callback carried a ``state`` value other than the one we issued."""


class ExchangeFailedError(AuthError):
    """The authorization code could not be exchanged for tokens."""


class RefreshFailedError(AuthError):
    """The refresh token was rejected or the refresh request failed."""


class SendError(KindleSenderError):
    """Raised when an e-book could not be sent."""


class FileOperationError(KindleSenderError):
    """Raised when listing or moving e-book files fails."""
