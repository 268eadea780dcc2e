"""Durable per-identity token records with validity checks and refresh.

Records live in a :class:`~oauthflow.auth.storage.KeyValueStorage` under
``oauth2_token_<identity>``. A token counts as valid only while more than
``validity_buffer`` seconds (five minutes by default) remain before it
expires, so callers never receive a token that is about to lapse mid-request.

Refreshes for the same identity are serialised by a per-identity
:class:`asyncio.Lock`; other identities never wait on it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional, Protocol

from pydantic import ValidationError

from oauthflow.auth.storage import KeyValueStorage
from oauthflow.exceptions import ExchangeFailedError, RefreshFailedError
from oauthflow.models import AuthorizationConfig, AuthStatus, TokenRecord

logger = logging.getLogger(__name__)

TOKEN_KEY_PREFIX = "oauth2_token_"


class TokenRefresher(Protocol):
    """Anything that can run a refresh-token grant.

    Implemented by :class:`~oauthflow.auth.token_endpoint.TokenEndpointClient`
    and :class:`~oauthflow.auth.host.PrivilegedHost`.
    """

    async def refresh(
        self, config: AuthorizationConfig, refresh_token: str
    ) -> dict[str, Any]: ...


class TokenStore:
    """Load, save and refresh token records.

    Args:
        storage: Backing key/value storage.
        refresher: Runs refresh grants. Without one, expired tokens are
            never refreshed.
        clock: Time source returning epoch seconds.
        validity_buffer: Seconds of remaining lifetime below which a token
            is treated as expired.
        default_lifetime: Lifetime assumed when a token response has no
            ``expires_in``.

    Example::

        store = TokenStore(MemoryStorage(), refresher=TokenEndpointClient())
        token = await store.get_valid_token("github", config)
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        refresher: Optional[TokenRefresher] = None,
        clock: Callable[[], float] = time.time,
        validity_buffer: float = 300.0,
        default_lifetime: float = 3600.0,
    ) -> None:
        self._storage = storage
        self._refresher = refresher
        self._clock = clock
        self._validity_buffer = validity_buffer
        self._default_lifetime = default_lifetime
        self._locks: dict[str, asyncio.Lock] = {}

    @staticmethod
    def key_for(identity: str) -> str:
        return f"{TOKEN_KEY_PREFIX}{identity}"

    def now(self) -> float:
        return self._clock()

    def identities(self) -> list[str]:
        """Return every identity that has a stored record."""
        return [
            key[len(TOKEN_KEY_PREFIX):]
            for key in self._storage.keys()
            if key.startswith(TOKEN_KEY_PREFIX)
        ]

    # --- Persistence ---

    def load(self, identity: str) -> Optional[TokenRecord]:
        """Return the stored record for *identity*, or ``None``.

        A record that no longer parses is treated as missing.
        """
        data = self._storage.get(self.key_for(identity))
        if data is None:
            return None
        try:
            return TokenRecord.from_storage(data)
        except ValidationError as exc:
            logger.warning("Discarding malformed token record for %s: %s", identity, exc)
            return None

    def save(self, identity: str, record: TokenRecord) -> None:
        self._storage.set(self.key_for(identity), record.to_storage())
        logger.debug(
            "Stored token for %s (expires in %.0fs)",
            identity,
            record.seconds_remaining(self.now()),
        )

    def clear(self, identity: str) -> None:
        self._storage.delete(self.key_for(identity))
        logger.debug("Cleared token for %s", identity)

    def record_from_response(
        self,
        data: dict[str, Any],
        previous_refresh_token: Optional[str] = None,
    ) -> TokenRecord:
        """Normalise a token endpoint response using this store's clock.

        Raises:
            ExchangeFailedError: If the response lacks ``access_token``.
        """
        return TokenRecord.from_token_response(
            data,
            now=self.now(),
            default_lifetime=self._default_lifetime,
            previous_refresh_token=previous_refresh_token,
        )

    # --- Validity ---

    def _record_is_valid(self, record: TokenRecord) -> bool:
        return record.seconds_remaining(self.now()) > self._validity_buffer

    def is_valid(self, identity: str) -> bool:
        """True iff a record exists with more than the buffer left before expiry."""
        record = self.load(identity)
        return record is not None and self._record_is_valid(record)

    def status(self, identity: str) -> AuthStatus:
        record = self.load(identity)
        if record is None:
            return AuthStatus.MISSING
        if self._record_is_valid(record):
            return AuthStatus.AUTHENTICATED
        return AuthStatus.EXPIRED

    # --- Refresh ---

    def _lock_for(self, identity: str) -> asyncio.Lock:
        lock = self._locks.get(identity)
        if lock is None:
            lock = self._locks[identity] = asyncio.Lock()
        return lock

    async def refresh(self, identity: str, config: AuthorizationConfig) -> TokenRecord:
        """Refresh the stored token for *identity* and persist the result.

        The previous refresh token is kept when the provider does not
        rotate it.

        Raises:
            RefreshFailedError: If there is no refresh token, no refresher,
                or the grant fails.
        """
        record = self.load(identity)
        if record is None or not record.refresh_token:
            raise RefreshFailedError(f"No refresh token available for '{identity}'")
        if self._refresher is None:
            raise RefreshFailedError("No token refresher configured")

        data = await self._refresher.refresh(config, record.refresh_token)
        try:
            new_record = self.record_from_response(
                data, previous_refresh_token=record.refresh_token
            )
        except ExchangeFailedError as exc:
            raise RefreshFailedError(f"Token refresh response invalid: {exc}") from exc
        self.save(identity, new_record)
        logger.info("Refreshed token for %s", identity)
        return new_record

    async def get_valid_token(
        self,
        identity: str,
        config: Optional[AuthorizationConfig] = None,
    ) -> Optional[str]:
        """Return a valid access token, refreshing when possible.

        Never returns a token inside the validity buffer. When the refresh
        fails the stored record is cleared and ``None`` is returned, so the
        caller falls back to interactive authorization.
        """
        record = self.load(identity)
        if record is not None and self._record_is_valid(record):
            return record.access_token
        if record is None or not record.refresh_token or config is None:
            return None

        async with self._lock_for(identity):
            # Another caller may have refreshed while we waited.
            record = self.load(identity)
            if record is not None and self._record_is_valid(record):
                return record.access_token
            if record is None or not record.refresh_token:
                return None
            try:
                new_record = await self.refresh(identity, config)
            except RefreshFailedError as exc:
                logger.warning("Token refresh for %s failed, clearing it: %s", identity, exc)
                self.clear(identity)
                return None
        return new_record.access_token
