"""Callback delivery channels.

A redirect can reach the waiting session by several independent routes,
and depending on the environment any of them may be the only one that
works. Each route is a :class:`CallbackChannel` adapter that converts
whatever it receives into a :class:`~oauthflow.models.CallbackPayload` and
hands it to a sink (the correlator). Adapters never validate; they only
normalise.

Channels:

* :class:`MessageChannel` -- in-process :class:`MessageBus` messages.
* :class:`HostPushChannel` -- URLs pushed by the host, possibly from another
  thread (the loopback callback server).
* :class:`StoragePollingChannel` -- polls the ``oauth2_callback`` storage
  slot written by the redirect target.
* :class:`EventBroadcastChannel` -- ``oauth2-callback`` events on an
  in-process :class:`EventBus`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from oauthflow.auth.callback import build_callback_url, parse_callback_url
from oauthflow.auth.storage import KeyValueStorage
from oauthflow.models import CallbackPayload

logger = logging.getLogger(__name__)

CALLBACK_SLOT_KEY = "oauth2_callback"
CALLBACK_EVENT = "oauth2-callback"
CALLBACK_MESSAGE_TYPE = "oauth_callback"

PayloadSink = Callable[[CallbackPayload], None]
StateFilter = Callable[[Optional[str]], bool]
Unsubscribe = Callable[[], None]


def normalize_message(message: Any, channel: str) -> CallbackPayload:
    """Convert a loosely shaped callback message into a payload.

    Accepts a callback URL, a ``{"type": "oauth_callback", "url": ...}``
    message, a mapping with ``code``/``state``/``error`` keys, or an existing
    payload. Bare fields are rendered into a query URL so the payload always
    carries a URL the host can re-parse. Anything else becomes an empty
    payload, which the correlator ignores as noise.
    """
    if isinstance(message, CallbackPayload):
        if message.url or message.is_empty:
            return message.model_copy(update={"channel": channel})
        return parse_callback_url(build_callback_url(message.model_dump()), channel=channel)
    if isinstance(message, str):
        return parse_callback_url(message, channel=channel)
    if isinstance(message, dict):
        url = message.get("url")
        if isinstance(url, str) and url:
            return parse_callback_url(url, channel=channel)
        if any(message.get(key) for key in ("code", "state", "error")):
            return parse_callback_url(build_callback_url(message), channel=channel)
    return CallbackPayload(channel=channel)


class _ListenerRegistry:
    def __init__(self) -> None:
        self._listeners: list[Callable[[Any], None]] = []

    def add(self, listener: Callable[[Any], None]) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, value: Any) -> None:
        for listener in list(self._listeners):
            listener(value)

    def __len__(self) -> int:
        return len(self._listeners)


class MessageBus:
    """Same-process message passing between the redirect page and the session."""

    def __init__(self) -> None:
        self._registry = _ListenerRegistry()

    def subscribe(self, listener: Callable[[Any], None]) -> Unsubscribe:
        return self._registry.add(listener)

    def post(self, message: Any) -> None:
        self._registry.notify(message)

    @property
    def listener_count(self) -> int:
        return len(self._registry)


class EventBus:
    """Named in-process events with arbitrary detail objects."""

    def __init__(self) -> None:
        self._registries: dict[str, _ListenerRegistry] = {}

    def subscribe(self, event: str, listener: Callable[[Any], None]) -> Unsubscribe:
        return self._registries.setdefault(event, _ListenerRegistry()).add(listener)

    def emit(self, event: str, detail: Any = None) -> None:
        registry = self._registries.get(event)
        if registry is not None:
            registry.notify(detail)

    def listener_count(self, event: str) -> int:
        registry = self._registries.get(event)
        return len(registry) if registry is not None else 0


class CallbackChannel(ABC):
    """Base class for callback delivery adapters.

    A channel is started once with a sink and closed once. After
    :meth:`close` it never calls the sink again.
    """

    name = "unknown"

    def __init__(self) -> None:
        self._sink: Optional[PayloadSink] = None

    @property
    def active(self) -> bool:
        return self._sink is not None

    def start(self, sink: PayloadSink) -> None:
        if self._sink is not None:
            raise RuntimeError(f"Channel '{self.name}' already started")
        self._sink = sink
        self._open()

    def close(self) -> None:
        if self._sink is None:
            return
        self._sink = None
        self._close()

    def _emit(self, payload: CallbackPayload) -> None:
        sink = self._sink
        if sink is None:
            logger.debug("Dropping payload on closed channel %s", self.name)
            return
        sink(payload)

    @abstractmethod
    def _open(self) -> None: ...

    @abstractmethod
    def _close(self) -> None: ...


class MessageChannel(CallbackChannel):
    name = "message"

    def __init__(self, bus: MessageBus) -> None:
        super().__init__()
        self._bus = bus
        self._unsubscribe: Optional[Unsubscribe] = None

    def _on_message(self, message: Any) -> None:
        self._emit(normalize_message(message, self.name))

    def _open(self) -> None:
        self._unsubscribe = self._bus.subscribe(self._on_message)

    def _close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


class HostPushChannel(CallbackChannel):
    """URLs pushed by the host through a subscription function.

    Args:
        subscribe: ``subscribe(listener) -> unsubscribe``. The listener may
            be invoked from any thread; it re-enters the event loop with
            :meth:`asyncio.AbstractEventLoop.call_soon_threadsafe`.
    """

    name = "host_push"

    def __init__(self, subscribe: Callable[[Callable[[str], None]], Unsubscribe]) -> None:
        super().__init__()
        self._subscribe = subscribe
        self._unsubscribe: Optional[Unsubscribe] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _on_push(self, url: str) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._deliver, url)
        except RuntimeError:
            # Loop already closed.
            logger.debug("Dropping host push after event loop shutdown")

    def _deliver(self, url: str) -> None:
        self._emit(parse_callback_url(url, channel=self.name))

    def _open(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self._subscribe(self._on_push)

    def _close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._loop = None


def read_stored_callback(
    storage: KeyValueStorage,
    max_age: float,
    clock: Callable[[], float] = time.time,
    channel: str = "storage",
    accept: Optional[StateFilter] = None,
) -> Optional[CallbackPayload]:
    """Take the callback stored in the ``oauth2_callback`` slot, if fresh.

    The slot is removed when it is read, and also when it has gone stale
    (older than *max_age* seconds) so it cannot be replayed later. A fresh
    entry whose state *accept* rejects is left in place for its owner.
    """
    entry = storage.get(CALLBACK_SLOT_KEY)
    if entry is None:
        return None

    try:
        timestamp = float(entry.get("timestamp", 0))
    except (TypeError, ValueError):
        timestamp = 0.0
    age = clock() - timestamp
    if age > max_age:
        storage.delete(CALLBACK_SLOT_KEY)
        logger.debug("Discarding stored callback that is %.0fs old", age)
        return None

    payload = normalize_message(entry, channel)
    if accept is not None and not accept(payload.state):
        return None
    storage.delete(CALLBACK_SLOT_KEY)
    return payload


class StoragePollingChannel(CallbackChannel):
    """Polls the storage slot every *interval* seconds.

    *accept*, when given, decides from the stored state whether this channel
    may take the entry; rejected entries stay in the slot.
    """

    name = "storage"

    def __init__(
        self,
        storage: KeyValueStorage,
        interval: float = 1.0,
        max_age: float = 300.0,
        clock: Callable[[], float] = time.time,
        accept: Optional[StateFilter] = None,
    ) -> None:
        super().__init__()
        self._storage = storage
        self._interval = interval
        self._max_age = max_age
        self._clock = clock
        self._accept = accept
        self._task: Optional[asyncio.Task[None]] = None

    def poll_once(self) -> bool:
        """Check the slot once. Returns True if a payload was emitted."""
        payload = read_stored_callback(
            self._storage, self._max_age, self._clock, self.name, accept=self._accept
        )
        if payload is None:
            return False
        self._emit(payload)
        return True

    async def _run(self) -> None:
        while self.active:
            self.poll_once()
            await asyncio.sleep(self._interval)

    def _open(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run())

    def _close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None


class EventBroadcastChannel(CallbackChannel):
    name = "event"

    def __init__(self, bus: EventBus, event: str = CALLBACK_EVENT) -> None:
        super().__init__()
        self._bus = bus
        self._event = event
        self._unsubscribe: Optional[Unsubscribe] = None

    def _on_event(self, detail: Any) -> None:
        self._emit(normalize_message(detail, self.name))

    def _open(self) -> None:
        self._unsubscribe = self._bus.subscribe(self._event, self._on_event)

    def _close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
