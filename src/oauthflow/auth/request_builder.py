"""Authorization URL construction.

:func:`build_authorization_url` turns an
:class:`~oauthflow.models.AuthorizationConfig` into the provider's authorize
URL plus the :class:`~oauthflow.models.PendingAttempt` that remembers the
state and PKCE verifier needed to finish the flow. It opens nothing and
touches no storage.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Mapping, Optional
from urllib.parse import urlencode

from oauthflow.auth.crypto import STATE_LENGTH, VERIFIER_LENGTH, pkce_challenge, random_string
from oauthflow.auth.providers import ProviderOverride, get_override
from oauthflow.exceptions import ConfigurationError
from oauthflow.models import AuthorizationConfig, PendingAttempt

logger = logging.getLogger(__name__)


def build_authorization_url(
    config: AuthorizationConfig,
    identity: str = "default",
    *,
    overrides: Optional[Mapping[str, ProviderOverride]] = None,
    clock: Callable[[], float] = time.time,
    allow_insecure: bool = False,
) -> tuple[str, PendingAttempt]:
    """Build the authorize URL and a fresh pending attempt.

    A new ``state`` is generated on every call. With PKCE enabled a
    128-character verifier is generated and its S256 challenge is added
    to the URL.

    Args:
        config: Client configuration.
        identity: Identity the resulting token will be stored under.
        overrides: Provider override table; defaults to
            :data:`~oauthflow.auth.providers.PROVIDER_OVERRIDES`.
        clock: Time source for ``created_at``.
        allow_insecure: Passed through to the random generator.

    Returns:
        A tuple of ``(url, attempt)``. ``attempt.config`` is the effective
        configuration (after overrides), and the token exchange must use it.

    Raises:
        ConfigurationError: If the configuration is incomplete or the
            provider requires a client secret that is not configured.
        InsecureRandomError: If no secure random source is available.
    """
    config.validate_for_flow()

    override = get_override(config.provider, overrides)
    if override.requires_client_secret and not config.has_secret:
        raise ConfigurationError(
            f"Provider '{config.provider}' requires a client secret; "
            "set client_secret or client_secret_source"
        )
    if override.redirect_uri and override.redirect_uri != config.redirect_uri:
        logger.debug(
            "Provider %s pins redirect URI %s", config.provider, override.redirect_uri
        )
        config = config.model_copy(update={"redirect_uri": override.redirect_uri})

    state = random_string(STATE_LENGTH, allow_insecure=allow_insecure)

    params: dict[str, str] = {
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "scope": override.scope_separator.join(config.scopes),
        "state": state,
    }

    code_verifier: Optional[str] = None
    code_challenge: Optional[str] = None
    if config.use_pkce:
        code_verifier = random_string(VERIFIER_LENGTH, allow_insecure=allow_insecure)
        code_challenge = pkce_challenge(code_verifier)
        params["code_challenge"] = code_challenge
        params["code_challenge_method"] = "S256"

    for key, value in override.extra_authorize_params.items():
        params.setdefault(key, value)

    separator = "&" if "?" in config.authorize_url else "?"
    url = f"{config.authorize_url}{separator}{urlencode(params)}"

    attempt = PendingAttempt(
        identity=identity,
        state=state,
        code_verifier=code_verifier,
        code_challenge=code_challenge,
        created_at=clock(),
        config=config,
        authorization_url=url,
    )
    logger.debug(
        "Built authorization URL for %s (state %s..., pkce=%s)",
        identity,
        state[:8],
        config.use_pkce,
    )
    return url, attempt
