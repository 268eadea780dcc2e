"""Canonical Pydantic models shared across all oauthflow modules.

This is the single source of truth for data shapes in the project. The models
fall into three groups:

**Flow models** -- live only for the duration of one authorization attempt:
    :class:`AuthorizationConfig`, :class:`PendingAttempt`,
    :class:`AttemptSecrets`, and :class:`CallbackPayload`.

**Persistent models** -- written to storage and read back after restarts:
    :class:`TokenRecord` and :class:`Connection`.

**Engine configuration** -- :class:`EngineSettings`, loaded by
:func:`~oauthflow.config.load_settings`.

All models use Pydantic v2. :class:`AuthorizationConfig` is frozen because a
pending attempt keeps a copy of it and the token exchange must use exactly
the values the authorization request was built from.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from oauthflow.exceptions import ConfigurationError, ExchangeFailedError

logger = logging.getLogger(__name__)


class AuthStatus(str, enum.Enum):
    """Authentication status of an identity as reported to collaborators."""

    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    MISSING = "missing"


class SessionState(str, enum.Enum):
    """Per-identity state of the :class:`~oauthflow.auth.session.AuthSession`."""

    IDLE = "idle"
    PENDING = "pending"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


# --- Flow models ---


class AuthorizationConfig(BaseModel):
    """OAuth2 client configuration for one provider.

    Immutable per attempt. ``client_secret`` may be omitted when PKCE is used
    or when the provider accepts public clients. ``client_secret_source`` is
    an alternative to an inline secret: a credential source descriptor
    (``env:VAR``, ``file:/path``) resolved only inside the privileged host.

    Example::

        AuthorizationConfig(
            authorize_url="https://idp/authorize",
            token_url="https://idp/token",
            client_id="abc",
            scopes=["read"],
            redirect_uri="https://app/cb",
            use_pkce=True,
        )
    """

    model_config = ConfigDict(frozen=True)

    authorize_url: str = Field(default="", description="Provider authorization endpoint")
    token_url: str = Field(default="", description="Provider token endpoint")
    client_id: str = Field(default="", description="OAuth2 client identifier")
    client_secret: Optional[str] = Field(
        default=None, description="Confidential client secret (never sent with PKCE)"
    )
    client_secret_source: Optional[str] = Field(
        default=None,
        description="Credential source for the client secret: env:VAR, file:/path, prompt",
    )
    scopes: list[str] = Field(default_factory=list)
    redirect_uri: str = Field(
        default="http://localhost:3000/oauth-callback.html",
        description="Redirect URI registered with the provider",
    )
    use_pkce: bool = Field(default=True, description="Use PKCE (S256) for this client")
    provider: Optional[str] = Field(
        default=None, description="Provider template key used for override lookups"
    )

    @property
    def has_secret(self) -> bool:
        """Whether a client secret is configured inline or by source."""
        return bool(self.client_secret or self.client_secret_source)

    def validate_for_flow(self) -> None:
        """Fail fast on missing endpoints or client id.

        Raises:
            ConfigurationError: If ``authorize_url``, ``token_url`` or
                ``client_id`` is empty.
        """
        missing = [
            name
            for name in ("authorize_url", "token_url", "client_id")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                "OAuth2 configuration missing required fields: " + ", ".join(missing)
            )
        if not self.use_pkce and not self.has_secret:
            logger.warning(
                "Client %s uses neither PKCE nor a client secret; "
                "the provider must accept public clients",
                self.client_id,
            )


class AttemptSecrets(BaseModel):
    """The per-attempt values the host needs to finish a token exchange."""

    model_config = ConfigDict(frozen=True)

    state: str
    code_verifier: Optional[str] = None


class PendingAttempt(BaseModel):
    """One in-flight authorization attempt. Never persisted.

    Created by :func:`~oauthflow.auth.request_builder.build_authorization_url`
    and discarded as soon as a callback is correlated, or on timeout and
    cancellation.
    """

    model_config = ConfigDict(frozen=True)

    identity: str
    state: str
    code_verifier: Optional[str] = None
    code_challenge: Optional[str] = None
    created_at: float
    config: AuthorizationConfig
    authorization_url: str = ""

    def secrets(self) -> AttemptSecrets:
        return AttemptSecrets(state=self.state, code_verifier=self.code_verifier)


class CallbackPayload(BaseModel):
    """A callback signal normalised from any delivery channel.

    Attributes:
        code: Authorization code, if present.
        state: Round-tripped CSRF state, if present.
        error: Provider error code, if present.
        error_description: Human-readable provider error, if present.
        url: The raw callback URL the values were parsed from.
        channel: Name of the channel that delivered the payload.
        query: All parameters parsed from the query string.
        fragment: All parameters parsed from the URL fragment.
    """

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None
    url: str = ""
    channel: str = "unknown"
    query: dict[str, str] = Field(default_factory=dict)
    fragment: dict[str, str] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """True when the payload carries neither code, state nor error."""
        return not (self.code or self.state or self.error)


# --- Persistent models ---


class TokenRecord(BaseModel):
    """Durable token record for one identity.

    ``expires_at`` and ``stored_at`` are absolute Unix timestamps (seconds)
    so the record stays meaningful across restarts.
    """

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None
    expires_at: float
    stored_at: float

    @classmethod
    def from_token_response(
        cls,
        data: dict[str, Any],
        now: float,
        default_lifetime: float = 3600.0,
        previous_refresh_token: Optional[str] = None,
    ) -> TokenRecord:
        """Normalise a token endpoint JSON response.

        Args:
            data: Parsed JSON from the token endpoint.
            now: Current time used as the issue time.
            default_lifetime: Lifetime applied when ``expires_in`` is absent.
            previous_refresh_token: Kept when a refresh response does not
                rotate the refresh token.

        Raises:
            ExchangeFailedError: If ``access_token`` is missing or
                ``expires_in`` is not a number.
        """
        if not isinstance(data, dict) or not data.get("access_token"):
            raise ExchangeFailedError("Token response missing 'access_token' field")

        expires_in = data.get("expires_in")
        if expires_in is None:
            logger.warning(
                "Token response has no expires_in; assuming %ss lifetime",
                default_lifetime,
            )
            lifetime = float(default_lifetime)
        else:
            try:
                lifetime = float(expires_in)
            except (TypeError, ValueError) as exc:
                raise ExchangeFailedError(
                    f"Token response has invalid 'expires_in': {expires_in!r}"
                ) from exc

        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope"),
            expires_at=now + lifetime,
            stored_at=now,
        )

    def seconds_remaining(self, now: float) -> float:
        return self.expires_at - now

    def to_storage(self) -> dict[str, Any]:
        """Serialise to the persistent record format (optional keys omitted)."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_storage(cls, data: dict[str, Any]) -> TokenRecord:
        return cls.model_validate(data)


class Connection(BaseModel):
    """A named identity and the OAuth2 client configuration used for it."""

    name: str = Field(description="Identity key (usually the target server id)")
    config: AuthorizationConfig


# --- Engine configuration ---


class EngineSettings(BaseModel):
    """Tunable engine parameters persisted at ``<config_dir>/settings.json``.

    Every duration is in seconds.
    """

    callback_timeout: float = Field(default=300.0, description="Callback correlation window")
    validity_buffer: float = Field(
        default=300.0, description="Tokens expiring sooner than this are treated as expired"
    )
    storage_poll_interval: float = Field(default=1.0, description="Storage slot polling cadence")
    callback_max_age: float = Field(
        default=300.0, description="Stored callbacks older than this are ignored"
    )
    liveness_interval: float = Field(default=1.0, description="Surface liveness poll cadence")
    liveness_degraded_interval: float = Field(
        default=3.0, description="Cadence once the surface cannot be observed"
    )
    liveness_ceiling: float = Field(default=600.0, description="Hard stop for liveness polling")
    abandon_grace: float = Field(
        default=2.0, description="Wait after the surface closes before giving up"
    )
    http_timeout: float = Field(default=30.0, description="Token endpoint request timeout")
    verify_ssl: bool = Field(default=True, description="Verify token endpoint certificates")
    callback_host: str = Field(default="127.0.0.1", description="Loopback callback bind address")
    callback_port: int = Field(default=3000, description="First loopback port to try")
    callback_port_max: int = Field(default=3010, description="Last loopback port to try")
    default_token_lifetime: float = Field(
        default=3600.0, description="Lifetime assumed when a provider omits expires_in"
    )
