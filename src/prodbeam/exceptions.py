"""Exception hierarchy for prodbeam.

All exceptions inherit from :class:`ProdbeamError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`prodbeam.exit_codes`.
The top-level error handler in :func:`prodbeam.app.main` catches
``ProdbeamError`` and exits with the appropriate code.

Subclass hierarchy::

    ProdbeamError (exit 1)
    +-- ConfigError                  (exit 1)
    +-- ConnectionError_             (exit 6)
    +-- AuthError                    (exit 3)
        +-- AuthExpiredError
        +-- AuthorizationDeniedError
        +-- DeviceCodeExpiredError
        +-- CallbackTimeoutError
        +-- PortInUseError
        +-- OAuthProtocolError
            +-- OAuthCallbackError
            +-- OAuthStateMismatchError

:class:`OAuthProtocolError` and its subclasses mark callbacks that must not
be retried: the user has to restart the login flow.
"""

from prodbeam.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
)

_SERVICE_LABELS = {"github": "GitHub", "jira": "Jira"}


class ProdbeamError(Exception):
    """Base exception for all prodbeam errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`prodbeam.exit_codes`.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(ProdbeamError):
    """Raised for configuration problems (missing client id/secret, bad values)."""

    exit_code = EXIT_GENERIC_FAILURE


class ConnectionError_(ProdbeamError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class AuthError(ProdbeamError):
    """Raised when an OAuth exchange, refresh, or identity check fails."""

    exit_code = EXIT_AUTH_FAILURE


class AuthExpiredError(AuthError):
    """A previously working OAuth session can no longer be refreshed.

    Distinct from "not configured": the caller should direct the user back
    to ``prodbeam auth login`` for :attr:`service`.

    Args:
        service: ``"github"`` or ``"jira"``.
    """

    def __init__(self, service: str):
        self.service = str(service)
        label = _SERVICE_LABELS.get(self.service, self.service)
        super().__init__(
            f"{label} OAuth session expired. "
            'Run "prodbeam auth login" to re-authenticate.'
        )


class AuthorizationDeniedError(AuthError):
    """The user declined the authorization request."""


class DeviceCodeExpiredError(AuthError):
    """The device code expired before the user authorized it."""


class CallbackTimeoutError(AuthError):
    """No OAuth redirect reached the local listener in time."""


class PortInUseError(AuthError):
    """The registered callback port is already bound by another process.

    Args:
        port: The TCP port that could not be bound.
    """

    def __init__(self, port: int):
        self.port = port
        super().__init__(
            f"Port {port} is already in use. "
            "Close the process using it and try again."
        )


class OAuthProtocolError(AuthError):
    """The OAuth redirect was malformed; the login flow must be restarted."""


class OAuthCallbackError(OAuthProtocolError):
    """The provider redirected back with an ``error`` parameter.

    Args:
        error: The provider's error code (e.g. ``"access_denied"``).
    """

    def __init__(self, error: str):
        self.error = error
        super().__init__(f"Jira OAuth error: {error}")


class OAuthStateMismatchError(OAuthProtocolError):
    """The redirect's ``state`` did not match the one we issued (possible CSRF)."""

    def __init__(self) -> None:
        super().__init__("OAuth state mismatch -- possible CSRF attack.")
