"""Reconciles callbacks from every channel into one authoritative result.

All channels feed a single :class:`asyncio.Queue`. The first non-empty
payload is validated against the pending attempt and decides the outcome,
good or bad. Empty payloads are noise and are skipped. Once the outcome is
decided (or the wait times out or is cancelled) every channel is closed,
and anything arriving later is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Iterable, Optional, Union

from oauthflow.auth.callback import validate_callback
from oauthflow.auth.channels import (
    CALLBACK_EVENT,
    CALLBACK_SLOT_KEY,
    CallbackChannel,
    EventBroadcastChannel,
    EventBus,
    HostPushChannel,
    MessageBus,
    MessageChannel,
    StateFilter,
    StoragePollingChannel,
    Unsubscribe,
    normalize_message,
    read_stored_callback,
)
from oauthflow.auth.storage import KeyValueStorage
from oauthflow.exceptions import AuthorizationCancelledError, AuthorizationTimeoutError
from oauthflow.models import CallbackPayload, PendingAttempt

logger = logging.getLogger(__name__)

_QueueItem = Union[CallbackPayload, BaseException]


class CallbackCorrelator:
    """Wait for the callback that belongs to *attempt*.

    Args:
        attempt: The pending attempt callbacks are validated against.
        channels: Channel adapters to race. They are started by
            :meth:`wait` and always closed before it returns.
        timeout: Seconds to wait for a non-empty callback.
        foreign: Predicate telling whether a state belongs to some other
            attempt. Such payloads are skipped instead of failing this one.

    Example::

        correlator = CallbackCorrelator(attempt, [MessageChannel(bus)])
        payload = await correlator.wait()
    """

    def __init__(
        self,
        attempt: PendingAttempt,
        channels: Iterable[CallbackChannel],
        timeout: float = 300.0,
        foreign: Optional[StateFilter] = None,
    ) -> None:
        self._attempt = attempt
        self._channels = list(channels)
        self._timeout = timeout
        self._foreign = foreign
        self._queue: asyncio.Queue[_QueueItem] = asyncio.Queue()
        self._started = False
        self._waiting = False
        self._finished = False

    @property
    def channels(self) -> list[CallbackChannel]:
        return list(self._channels)

    @property
    def finished(self) -> bool:
        return self._finished

    def _offer(self, payload: CallbackPayload) -> None:
        if self._finished:
            logger.debug("Ignoring late callback from %s", payload.channel)
            return
        self._queue.put_nowait(payload)

    def cancel(self, exc: Optional[BaseException] = None) -> None:
        """Stop waiting and make :meth:`wait` raise *exc*.

        Defaults to :class:`~oauthflow.exceptions.AuthorizationCancelledError`.
        A payload already queued ahead of the cancellation still wins.
        """
        if self._finished:
            return
        self._queue.put_nowait(
            exc or AuthorizationCancelledError("OAuth2 authorization was cancelled")
        )

    def start(self) -> None:
        """Start listening on every channel.

        Called by :meth:`wait`; call it earlier to listen before the
        authorization surface opens. A failing channel closes the others.
        """
        if self._started:
            return
        self._started = True
        try:
            for channel in self._channels:
                channel.start(self._offer)
        except BaseException:
            self.close()
            raise

    def close(self) -> None:
        """Close every channel. Safe to call more than once."""
        self._finished = True
        for channel in self._channels:
            try:
                channel.close()
            except Exception:
                logger.exception("Failed to close callback channel %s", channel.name)

    async def _consume(self) -> CallbackPayload:
        while True:
            item = await self._queue.get()
            if isinstance(item, BaseException):
                raise item
            if item.is_empty:
                logger.debug("Ignoring empty callback from %s", item.channel)
                continue
            if self._foreign is not None and self._foreign(item.state):
                logger.debug("Ignoring callback for another attempt from %s", item.channel)
                continue
            logger.debug(
                "Callback received via %s (state %s...)",
                item.channel,
                (item.state or "")[:8],
            )
            return validate_callback(item, self._attempt)

    async def wait(self) -> CallbackPayload:
        """Start every channel and return the first valid callback.

        Raises:
            ProviderDeniedError: The first callback carries a provider error.
            CallbackMissingCodeError: The first callback has no code.
            StateMismatchError: The first callback's state does not match.
            AuthorizationTimeoutError: Nothing arrived within the timeout.
            AuthorizationCancelledError: :meth:`cancel` was called.
        """
        if self._waiting:
            raise RuntimeError("CallbackCorrelator.wait() may only be called once")
        self._waiting = True
        try:
            self.start()
            return await asyncio.wait_for(self._consume(), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise AuthorizationTimeoutError(self._timeout) from None
        finally:
            self.close()


def sweep_storage(
    storage: KeyValueStorage,
    bus: EventBus,
    max_age: float = 300.0,
    clock: Callable[[], float] = time.time,
) -> bool:
    """Re-broadcast a fresh stored callback as an ``oauth2-callback`` event.

    Used as a fallback when the authorization surface cannot be observed.
    Returns True if a callback was found.
    """
    payload = read_stored_callback(storage, max_age, clock, channel="sweep")
    if payload is None:
        return False
    logger.debug("Storage sweep found a callback, broadcasting it")
    bus.emit(CALLBACK_EVENT, payload)
    return True


class CallbackRoutes:
    """The shared routes a callback can travel through.

    Owns the in-process buses and the storage slot, and builds a fresh set
    of channel adapters for each attempt. Attempts for different identities
    share these routes, so every attempt claims its ``state`` while it is
    pending: a callback carrying another attempt's state is left to that
    attempt instead of failing this one.

    Args:
        storage: Storage holding the ``oauth2_callback`` slot.
        message_bus: In-process message bus; created when omitted.
        event_bus: In-process event bus; created when omitted.
        host_subscribe: Host push subscription function, e.g.
            :meth:`~oauthflow.auth.callback_server.CallbackServer.subscribe`.
        poll_interval: Storage polling cadence in seconds.
        max_age: Stored callbacks older than this are ignored.
        clock: Time source for callback ages.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        message_bus: Optional[MessageBus] = None,
        event_bus: Optional[EventBus] = None,
        host_subscribe: Optional[Callable[[Callable[[str], None]], Unsubscribe]] = None,
        poll_interval: float = 1.0,
        max_age: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage = storage
        self.message_bus = message_bus or MessageBus()
        self.event_bus = event_bus or EventBus()
        self._host_subscribe = host_subscribe
        self._poll_interval = poll_interval
        self._max_age = max_age
        self._clock = clock
        self._claimed: set[str] = set()
        self._retired: deque[str] = deque(maxlen=64)

    # --- State ownership ---

    def claim(self, state: str) -> None:
        """Mark *state* as belonging to a pending attempt."""
        self._claimed.add(state)

    def release(self, state: str) -> None:
        """Forget a finished attempt's claim.

        The state is remembered for a while so duplicate deliveries of its
        callback are ignored by later attempts.
        """
        if state in self._claimed:
            self._claimed.discard(state)
            self._retired.append(state)

    def is_claimed(self, state: Optional[str]) -> bool:
        return state is not None and state in self._claimed

    def claimed_elsewhere(self, state: Optional[str], own_state: str) -> bool:
        """True when *state* is another pending attempt's state."""
        return state != own_state and self.is_claimed(state)

    def belongs_elsewhere(self, state: Optional[str], own_state: str) -> bool:
        """True when *state* is another attempt's, pending or recently finished."""
        if state is None or state == own_state:
            return False
        return state in self._claimed or state in self._retired

    # --- Channels ---

    def channels(self, own_state: Optional[str] = None) -> list[CallbackChannel]:
        """Build the channel adapters for one attempt.

        With *own_state*, the storage channel leaves a stored callback alone
        when it carries another pending attempt's state.
        """
        accept: Optional[StateFilter] = None
        if own_state is not None:

            def _accept(state: Optional[str]) -> bool:
                return not self.claimed_elsewhere(state, own_state)

            accept = _accept

        channels: list[CallbackChannel] = [MessageChannel(self.message_bus)]
        if self._host_subscribe is not None:
            channels.append(HostPushChannel(self._host_subscribe))
        channels.append(
            StoragePollingChannel(
                self.storage,
                interval=self._poll_interval,
                max_age=self._max_age,
                clock=self._clock,
                accept=accept,
            )
        )
        channels.append(EventBroadcastChannel(self.event_bus))
        return channels

    def correlator(self, attempt: PendingAttempt, timeout: float = 300.0) -> CallbackCorrelator:
        """A correlator for *attempt* over fresh channels, skipping foreign states."""
        return CallbackCorrelator(
            attempt,
            self.channels(attempt.state),
            timeout=timeout,
            foreign=lambda state: self.belongs_elsewhere(state, attempt.state),
        )

    def sweep(self) -> bool:
        return sweep_storage(self.storage, self.event_bus, self._max_age, self._clock)

    def discard_stored_callback(self) -> None:
        """Drop a callback left in storage by an earlier attempt.

        A callback for an attempt that is still pending is kept.
        """
        entry = self.storage.get(CALLBACK_SLOT_KEY)
        if entry is None:
            return
        if self.is_claimed(normalize_message(entry, "storage").state):
            return
        self.storage.delete(CALLBACK_SLOT_KEY)
