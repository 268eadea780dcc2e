"""Session orchestration: the public entry point of the engine.

:class:`AuthSession` decides, per identity, whether a stored token is good
enough or an interactive authorization has to run, and makes sure at most
one authorization attempt is in flight per identity. Concurrent callers for
the same identity await the same attempt.

Per-identity state machine::

    IDLE -> PENDING -> AUTHENTICATED | FAILED
    AUTHENTICATED -> IDLE        (sign_out)
    AUTHENTICATED -> PENDING     (reauthenticate)
    FAILED -> PENDING            (next ensure_authenticated)

Everything an attempt acquires (channels, liveness monitor, abandonment
timer) is owned by an :class:`_AttemptScope` and released on every exit
path.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from oauthflow.auth.callback_server import CallbackServer
from oauthflow.auth.correlator import CallbackCorrelator, CallbackRoutes
from oauthflow.auth.exchange import TokenExchangeDelegate
from oauthflow.auth.host import PrivilegedHost
from oauthflow.auth.liveness import LivenessMonitor
from oauthflow.auth.request_builder import build_authorization_url
from oauthflow.auth.storage import FileStorage, KeyValueStorage
from oauthflow.auth.surface import AuthorizationSurface, BrowserSurface
from oauthflow.auth.token_endpoint import TokenEndpointClient
from oauthflow.auth.token_store import TokenStore
from oauthflow.exceptions import AuthorizationCancelledError
from oauthflow.models import (
    AuthorizationConfig,
    AuthStatus,
    EngineSettings,
    PendingAttempt,
    SessionState,
)

logger = logging.getLogger(__name__)


class _AttemptScope:
    """Resources held by one pending attempt."""

    def __init__(
        self,
        attempt: PendingAttempt,
        correlator: CallbackCorrelator,
        monitor: Optional[LivenessMonitor] = None,
    ) -> None:
        self.attempt = attempt
        self.correlator = correlator
        self.monitor = monitor
        self.cancel_error: Optional[AuthorizationCancelledError] = None
        self._abandon_handle: Optional[asyncio.TimerHandle] = None

    def acquire(self) -> None:
        self.correlator.start()
        if self.monitor is not None:
            self.monitor.start()

    def cancel(self, error: AuthorizationCancelledError) -> bool:
        """Fail the attempt with *error* if it is still waiting for a callback."""
        if self.cancel_error is None:
            self.cancel_error = error
        if self.correlator.finished:
            return False
        self.correlator.cancel(error)
        return True

    def schedule_abandon(self, delay: float) -> None:
        if self._abandon_handle is not None or self.correlator.finished:
            return
        self._abandon_handle = asyncio.get_running_loop().call_later(
            delay,
            self.cancel,
            AuthorizationCancelledError(
                "Authorization window was closed before the callback arrived"
            ),
        )

    def release(self) -> None:
        if self._abandon_handle is not None:
            self._abandon_handle.cancel()
            self._abandon_handle = None
        if self.monitor is not None:
            self.monitor.stop()
        self.correlator.close()


class AuthSession:
    """Per-identity authorization orchestrator.

    Args:
        store: Token persistence.
        delegate: Performs the code exchange.
        surface: Where the authorization URL is shown.
        routes: Callback delivery routes; builds the channels per attempt.
        settings: Engine timing and limits.
        clock: Time source returning epoch seconds.

    Example::

        session = create_default_session()
        await session.ensure_authenticated("github", config)
        token = await session.get_valid_token("github", config)
    """

    def __init__(
        self,
        store: TokenStore,
        delegate: TokenExchangeDelegate,
        surface: AuthorizationSurface,
        routes: CallbackRoutes,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._delegate = delegate
        self._surface = surface
        self._routes = routes
        self._settings = settings or EngineSettings()
        self._clock = clock
        self._states: dict[str, SessionState] = {}
        self._tasks: dict[str, asyncio.Task[bool]] = {}
        self._scopes: dict[str, _AttemptScope] = {}

    @property
    def store(self) -> TokenStore:
        return self._store

    @property
    def routes(self) -> CallbackRoutes:
        return self._routes

    # --- Inspection ---

    def state(self, identity: str) -> SessionState:
        return self._states.get(identity, SessionState.IDLE)

    def pending_attempt(self, identity: str) -> Optional[PendingAttempt]:
        scope = self._scopes.get(identity)
        return scope.attempt if scope is not None else None

    def is_authenticated(self, identity: str) -> AuthStatus:
        return self._store.status(identity)

    # --- Public operations ---

    async def ensure_authenticated(self, identity: str, config: AuthorizationConfig) -> bool:
        """Make sure *identity* has a valid token.

        Returns True immediately when a valid (or refreshable) token exists.
        Otherwise joins the in-flight attempt for *identity* or starts one.

        Raises:
            ConfigurationError: Incomplete configuration. Checked before the
                store is consulted, so no refresh runs and nothing is opened.
            AuthorizationError: Any failure of the attempt.
        """
        config.validate_for_flow()
        if identity not in self._tasks:
            token = await self._store.get_valid_token(identity, config)
            if token is not None:
                self._states[identity] = SessionState.AUTHENTICATED
                return True
        return await self._join_or_start(identity, config)

    async def get_valid_token(
        self, identity: str, config: AuthorizationConfig
    ) -> Optional[str]:
        """Return a valid access token, authorizing interactively if needed.

        Raises:
            ConfigurationError: Incomplete configuration; the stored token
                was neither refreshed nor touched.
        """
        config.validate_for_flow()
        token = await self._store.get_valid_token(identity, config)
        if token is not None:
            return token
        await self.ensure_authenticated(identity, config)
        return await self._store.get_valid_token(identity, config)

    async def reauthenticate(self, identity: str, config: AuthorizationConfig) -> bool:
        """Run a new attempt even when a valid token exists."""
        config.validate_for_flow()
        return await self._join_or_start(identity, config)

    def cancel(self, identity: str, reason: str = "OAuth2 authorization was cancelled") -> bool:
        """Discard the pending attempt for *identity*.

        Its waiters fail with :class:`~oauthflow.exceptions.AuthorizationCancelledError`.
        Returns False when nothing was pending.
        """
        task = self._tasks.get(identity)
        if task is None or task.done():
            return False
        error = AuthorizationCancelledError(reason)
        scope = self._scopes.get(identity)
        if scope is None or not scope.cancel(error):
            # Past the callback already (exchanging); interrupt the task itself.
            if scope is not None:
                scope.cancel_error = error
            task.cancel()
        logger.info("Cancelled pending authorization for %s", identity)
        return True

    def sign_out(self, identity: str) -> None:
        """Forget the token for *identity* and cancel any pending attempt."""
        self.cancel(identity, reason="Signed out during authorization")
        self._store.clear(identity)
        self._states[identity] = SessionState.IDLE
        logger.info("Signed out %s", identity)

    # --- Attempt lifecycle ---

    async def _join_or_start(self, identity: str, config: AuthorizationConfig) -> bool:
        task = self._tasks.get(identity)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._run_attempt(identity, config))
            self._tasks[identity] = task
            self._states[identity] = SessionState.PENDING
            task.add_done_callback(lambda done: self._forget(identity, done))
        else:
            logger.debug("Joining in-flight authorization for %s", identity)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise AuthorizationCancelledError("OAuth2 authorization was cancelled") from None
            raise

    def _forget(self, identity: str, task: asyncio.Task[bool]) -> None:
        if self._tasks.get(identity) is task:
            del self._tasks[identity]
        if task.cancelled():
            if self._states.get(identity) is SessionState.PENDING:
                self._states[identity] = SessionState.FAILED
        else:
            # Mark retrieved; every awaiter re-raises it through the shield.
            task.exception()

    def _open_scope(self, attempt: PendingAttempt) -> _AttemptScope:
        settings = self._settings
        correlator = self._routes.correlator(attempt, timeout=settings.callback_timeout)
        scope = _AttemptScope(attempt, correlator)

        def on_closed() -> None:
            # The callback may have landed in storage just before the close.
            self._routes.sweep()
            scope.schedule_abandon(settings.abandon_grace)

        scope.monitor = LivenessMonitor(
            self._surface,
            on_poll=self._routes.sweep,
            on_closed=on_closed,
            interval=settings.liveness_interval,
            degraded_interval=settings.liveness_degraded_interval,
            ceiling=settings.liveness_ceiling,
        )
        return scope

    def _close_surface(self) -> None:
        try:
            self._surface.close()
        except Exception:
            logger.exception("Failed to close the authorization surface")

    async def _run_attempt(self, identity: str, config: AuthorizationConfig) -> bool:
        scope: Optional[_AttemptScope] = None
        try:
            url, attempt = build_authorization_url(config, identity, clock=self._clock)
            self._routes.discard_stored_callback()
            scope = self._open_scope(attempt)
            self._scopes[identity] = scope
            self._routes.claim(attempt.state)
            try:
                scope.acquire()
                logger.info("Opening authorization surface for %s", identity)
                self._surface.open(url)
                payload = await scope.correlator.wait()
                await self._delegate.exchange(attempt, payload)
            except asyncio.CancelledError:
                if scope.cancel_error is not None:
                    raise scope.cancel_error from None
                raise
            finally:
                scope.release()
                self._routes.release(attempt.state)
                if self._scopes.get(identity) is scope:
                    del self._scopes[identity]
                if not self._scopes:
                    self._close_surface()
        except BaseException as exc:
            if self._states.get(identity) is SessionState.PENDING:
                self._states[identity] = SessionState.FAILED
            logger.warning("Authorization for %s failed: %s", identity, exc)
            raise

        if self._states.get(identity) is SessionState.PENDING:
            self._states[identity] = SessionState.AUTHENTICATED
        return True


def create_default_session(
    settings: Optional[EngineSettings] = None,
    *,
    storage: Optional[KeyValueStorage] = None,
    surface: Optional[AuthorizationSurface] = None,
    server: Optional[CallbackServer] = None,
    clock: Callable[[], float] = time.time,
) -> AuthSession:
    """Wire an :class:`AuthSession` with production defaults.

    File storage under the data directory, a :class:`PrivilegedHost` for
    exchanges and refreshes, and the system browser as the surface. When a
    running :class:`CallbackServer` is passed, its pushes feed the session.
    """
    settings = settings or EngineSettings()
    storage = storage if storage is not None else FileStorage()
    endpoint = TokenEndpointClient(timeout=settings.http_timeout, verify=settings.verify_ssl)
    host = PrivilegedHost(endpoint)
    store = TokenStore(
        storage,
        refresher=host,
        clock=clock,
        validity_buffer=settings.validity_buffer,
        default_lifetime=settings.default_token_lifetime,
    )
    routes = CallbackRoutes(
        storage,
        host_subscribe=server.subscribe if server is not None else None,
        poll_interval=settings.storage_poll_interval,
        max_age=settings.callback_max_age,
        clock=clock,
    )
    return AuthSession(
        store,
        TokenExchangeDelegate(store, host=host, endpoint=endpoint),
        surface or BrowserSurface(),
        routes,
        settings=settings,
        clock=clock,
    )
