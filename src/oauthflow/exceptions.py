"""Exception hierarchy for oauthflow.

All exceptions inherit from :class:`OAuthFlowError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`oauthflow.exit_codes`.
The CLI entry point in :func:`oauthflow.app.main` catches ``OAuthFlowError``
and exits with the appropriate code. Library callers of
:meth:`~oauthflow.auth.session.AuthSession.ensure_authenticated` receive the
same exceptions unchanged; none of them is swallowed by the engine.

Subclass hierarchy::

    OAuthFlowError (exit 1)
    +-- ConfigurationError              (exit 2)
    +-- InsecureRandomError             (exit 2)
    +-- AuthorizationError              (exit 3)
        +-- ProviderDeniedError
        +-- CallbackMissingCodeError
        +-- StateMismatchError
        +-- ExchangeFailedError
        +-- RefreshFailedError
        +-- AuthorizationTimeoutError   (exit 4)
        +-- AuthorizationCancelledError (exit 5)
"""

from __future__ import annotations

from typing import Any, Optional

from oauthflow.exit_codes import (
    EXIT_AUTH_CANCELLED,
    EXIT_AUTH_FAILURE,
    EXIT_AUTH_TIMEOUT,
    EXIT_CONFIG_ERROR,
    EXIT_GENERIC_FAILURE,
)


class OAuthFlowError(Exception):
    """Base exception for all oauthflow errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(OAuthFlowError):
    """Raised for incomplete connection config, bad credential sources or settings files.

    Always raised before any network request is sent or any authorization
    surface is opened.
    """

    exit_code = EXIT_CONFIG_ERROR


class InsecureRandomError(OAuthFlowError):
    """Raised when no cryptographically secure random source is available."""

    exit_code = EXIT_CONFIG_ERROR


class AuthorizationError(OAuthFlowError):
    """Base class for failures of a single authorization attempt."""

    exit_code = EXIT_AUTH_FAILURE


class ProviderDeniedError(AuthorizationError):
    """The provider redirected back with an ``error`` parameter."""

    def __init__(self, error: str, description: Optional[str] = None):
        self.error = error
        self.description = description
        message = f"OAuth2 provider returned error: {error}"
        if description:
            message += f" - {description}"
        super().__init__(message)


class CallbackMissingCodeError(AuthorizationError):
    """The callback carried neither an authorization code nor an error.

    The raw callback URL and both parsed parameter sets are kept on the
    exception so that a misconfigured redirect URI can be diagnosed.
    """

    def __init__(
        self,
        url: str,
        query: dict[str, str],
        fragment: dict[str, str],
    ):
        self.url = url
        self.query = query
        self.fragment = fragment
        super().__init__(
            "Authorization code not found in callback.\n"
            f"Callback URL: {url}\n"
            f"Query parameters: {query}\n"
            f"Fragment parameters: {fragment}\n"
            "Check that the provider is configured with exactly this redirect URI."
        )


class StateMismatchError(AuthorizationError):
    """The callback ``state`` does not match the pending attempt (possible CSRF)."""

    def __init__(self, received: Optional[str]):
        self.received = received
        super().__init__("Invalid state parameter in OAuth2 callback")


class ExchangeFailedError(AuthorizationError):
    """The token endpoint rejected the authorization code exchange.

    Attributes:
        status_code: HTTP status of the token endpoint response, or ``None``
            for transport-level failures.
        body: Response body text captured for diagnostics.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class RefreshFailedError(AuthorizationError):
    """A refresh-token grant failed; the stored record has been cleared."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AuthorizationTimeoutError(AuthorizationError):
    """No valid callback arrived within the correlation window."""

    exit_code = EXIT_AUTH_TIMEOUT

    def __init__(self, timeout: float, detail: Any = None):
        self.timeout = timeout
        message = f"OAuth2 authorization timed out after {timeout:g} seconds"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class AuthorizationCancelledError(AuthorizationError):
    """The pending attempt was discarded before a callback was correlated."""

    exit_code = EXIT_AUTH_CANCELLED
