"""Form-encoded requests to a provider's token endpoint.

:func:`build_token_request` and :func:`build_refresh_request` produce the
form bodies; :class:`TokenEndpointClient` posts them with
:class:`httpx.AsyncClient` and maps failures onto
:class:`~oauthflow.exceptions.ExchangeFailedError` /
:class:`~oauthflow.exceptions.RefreshFailedError`.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from oauthflow.exceptions import ExchangeFailedError, RefreshFailedError
from oauthflow.models import AuthorizationConfig

logger = logging.getLogger(__name__)

_HEADERS = {"Accept": "application/json"}


def build_token_request(
    config: AuthorizationConfig,
    code: str,
    code_verifier: Optional[str],
    client_secret: Optional[str] = None,
) -> dict[str, str]:
    """Build the ``authorization_code`` grant form.

    Exactly one proof of client identity is sent: the PKCE
    ``code_verifier`` when there is one, otherwise the client secret.

    Args:
        config: The effective configuration of the attempt.
        code: Authorization code from the callback.
        code_verifier: The attempt's PKCE verifier, or ``None``.
        client_secret: A secret resolved by the caller; falls back to
            ``config.client_secret``.
    """
    data: dict[str, str] = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": config.redirect_uri,
        "client_id": config.client_id,
    }
    secret = client_secret or config.client_secret
    if code_verifier:
        data["code_verifier"] = code_verifier
    elif secret:
        data["client_secret"] = secret
    return data


def build_refresh_request(
    config: AuthorizationConfig,
    refresh_token: str,
    client_secret: Optional[str] = None,
) -> dict[str, str]:
    """Build the ``refresh_token`` grant form."""
    data: dict[str, str] = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": config.client_id,
    }
    secret = client_secret or config.client_secret
    if secret:
        data["client_secret"] = secret
    return data


class TokenEndpointClient:
    """Posts grant forms to token endpoints.

    Args:
        timeout: Request timeout in seconds.
        verify: Verify TLS certificates.
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`
            in tests.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        verify: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._verify = verify
        self._transport = transport

    async def _post_form(self, token_url: str, data: dict[str, str]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                verify=self._verify,
                transport=self._transport,
            ) as client:
                response = await client.post(token_url, data=data, headers=_HEADERS)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExchangeFailedError(
                f"Token request failed with status {exc.response.status_code}: "
                f"{exc.response.text}",
                status_code=exc.response.status_code,
                body=exc.response.text,
            ) from exc
        except httpx.HTTPError as exc:
            raise ExchangeFailedError(f"Token request failed: {exc}") from exc

        try:
            token_data = response.json()
        except ValueError as exc:
            raise ExchangeFailedError(
                "Token endpoint returned a non-JSON response",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        if not isinstance(token_data, dict):
            raise ExchangeFailedError(
                "Token endpoint returned an unexpected JSON document",
                status_code=response.status_code,
                body=response.text,
            )
        return token_data

    async def exchange_code(
        self,
        config: AuthorizationConfig,
        code: str,
        code_verifier: Optional[str],
        client_secret: Optional[str] = None,
    ) -> dict[str, Any]:
        """Exchange an authorization code for tokens.

        Returns:
            The parsed JSON token response.

        Raises:
            ExchangeFailedError: On HTTP or transport errors.
        """
        data = build_token_request(config, code, code_verifier, client_secret)
        logger.debug(
            "Exchanging code %s... at %s (pkce=%s)",
            code[:8],
            config.token_url,
            "code_verifier" in data,
        )
        return await self._post_form(config.token_url, data)

    async def refresh(
        self,
        config: AuthorizationConfig,
        refresh_token: str,
        client_secret: Optional[str] = None,
    ) -> dict[str, Any]:
        """Run a refresh-token grant.

        Raises:
            RefreshFailedError: On HTTP or transport errors.
        """
        data = build_refresh_request(config, refresh_token, client_secret)
        logger.debug("Refreshing token at %s", config.token_url)
        try:
            return await self._post_form(config.token_url, data)
        except ExchangeFailedError as exc:
            raise RefreshFailedError(
                str(exc).replace("Token request", "Token refresh", 1),
                status_code=exc.status_code,
            ) from exc
