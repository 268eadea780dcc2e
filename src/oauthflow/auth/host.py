"""The privileged host side of the token exchange.

The host is the only place a client secret is resolved. The UI side hands
it the attempt's :class:`~oauthflow.models.AttemptSecrets` and the raw
callback URL; the host re-parses and re-checks the callback itself, resolves
the secret from ``client_secret_source`` when PKCE is not in use, and talks
to the token endpoint with its own HTTP client.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol

from oauthflow.auth.callback import parse_callback_url, validate_callback_state
from oauthflow.auth.token_endpoint import TokenEndpointClient
from oauthflow.config import resolve_credential
from oauthflow.models import AttemptSecrets, AuthorizationConfig

logger = logging.getLogger(__name__)


class HostTokenExchange(Protocol):
    """Capability exposed by a privileged host to the UI side."""

    async def exchange_token(
        self,
        config: AuthorizationConfig,
        secrets: AttemptSecrets,
        callback_url: str,
    ) -> dict[str, Any]: ...


class PrivilegedHost:
    """In-process host that keeps client secrets away from the UI side.

    Args:
        endpoint: Token endpoint client. A default one is created when
            omitted.
        credential_resolver: Resolves ``client_secret_source`` descriptors.
    """

    def __init__(
        self,
        endpoint: Optional[TokenEndpointClient] = None,
        credential_resolver: Callable[[str], str] = resolve_credential,
    ) -> None:
        self._endpoint = endpoint or TokenEndpointClient()
        self._resolve = credential_resolver

    def _client_secret(self, config: AuthorizationConfig) -> Optional[str]:
        if config.client_secret:
            return config.client_secret
        if config.client_secret_source:
            return self._resolve(config.client_secret_source)
        return None

    async def exchange_token(
        self,
        config: AuthorizationConfig,
        secrets: AttemptSecrets,
        callback_url: str,
    ) -> dict[str, Any]:
        """Exchange the code carried by *callback_url* for tokens.

        Raises:
            ProviderDeniedError: The callback carries a provider error.
            CallbackMissingCodeError: The callback has no code.
            StateMismatchError: The callback state does not match.
            ConfigurationError: The secret source cannot be resolved.
            ExchangeFailedError: The token endpoint request failed.
        """
        payload = validate_callback_state(
            parse_callback_url(callback_url, channel="host"), secrets.state
        )
        secret = None if secrets.code_verifier else self._client_secret(config)
        logger.debug("Host exchanging code for client %s", config.client_id)
        return await self._endpoint.exchange_code(
            config, payload.code or "", secrets.code_verifier, secret
        )

    async def refresh(self, config: AuthorizationConfig, refresh_token: str) -> dict[str, Any]:
        """Run a refresh grant with the host-held secret.

        Raises:
            RefreshFailedError: The token endpoint request failed.
        """
        return await self._endpoint.refresh(config, refresh_token, self._client_secret(config))
