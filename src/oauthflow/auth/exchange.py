"""Turns a validated callback into a stored token record."""

from __future__ import annotations

import logging
from typing import Optional

from oauthflow.auth.callback import build_callback_url
from oauthflow.auth.host import HostTokenExchange
from oauthflow.auth.token_endpoint import TokenEndpointClient
from oauthflow.auth.token_store import TokenStore
from oauthflow.models import CallbackPayload, PendingAttempt, TokenRecord

logger = logging.getLogger(__name__)


class TokenExchangeDelegate:
    """Exchange an authorization code through the host, or directly.

    The host path is preferred whenever a host is available because only the
    host can hold a client secret safely. The direct path posts from the
    calling context and is meant for PKCE public clients.

    Args:
        store: Where the resulting record is persisted.
        host: Privileged host capability, if any.
        endpoint: Token endpoint client for the direct path.
    """

    def __init__(
        self,
        store: TokenStore,
        host: Optional[HostTokenExchange] = None,
        endpoint: Optional[TokenEndpointClient] = None,
    ) -> None:
        self._store = store
        self._host = host
        self._endpoint = endpoint or TokenEndpointClient()

    @property
    def uses_host(self) -> bool:
        return self._host is not None

    async def exchange(self, attempt: PendingAttempt, payload: CallbackPayload) -> TokenRecord:
        """Exchange the code in *payload* and persist the resulting token.

        *payload* must already have been validated against *attempt*. The
        record is saved exactly once, under ``attempt.identity``.

        Raises:
            ExchangeFailedError: The token endpoint rejected the request or
                the response has no ``access_token``.
        """
        config = attempt.config
        if self._host is not None:
            callback_url = payload.url or build_callback_url(
                payload.model_dump(), config.redirect_uri
            )
            data = await self._host.exchange_token(config, attempt.secrets(), callback_url)
        else:
            if config.client_secret and not attempt.code_verifier:
                logger.warning(
                    "Sending client secret for %s from an unprivileged context; "
                    "configure a host or use PKCE",
                    config.client_id,
                )
            data = await self._endpoint.exchange_code(
                config, payload.code or "", attempt.code_verifier
            )

        record = self._store.record_from_response(data)
        self._store.save(attempt.identity, record)
        logger.info("Authorization for %s completed via %s", attempt.identity, payload.channel)
        return record
