"""Watches the authorization surface while an attempt is pending.

The monitor polls :meth:`~oauthflow.auth.surface.AuthorizationSurface.is_closed`
on a fixed cadence. If the surface cannot be observed it slows down to the
degraded cadence and calls ``on_poll`` on every tick instead (the session
uses this to sweep the storage slot). When the surface reports closed,
``on_closed`` runs once and monitoring stops. A hard ceiling stops polling
no matter what.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from oauthflow.auth.surface import AuthorizationSurface, SurfaceObservationError

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """Background poller for one authorization surface.

    Args:
        surface: The surface to observe.
        on_poll: Called on each tick once the surface is unobservable.
        on_closed: Called once when the surface reports closed.
        interval: Normal polling cadence in seconds.
        degraded_interval: Cadence once the surface cannot be observed.
        ceiling: Seconds after which polling stops regardless of outcome.
    """

    def __init__(
        self,
        surface: AuthorizationSurface,
        on_poll: Optional[Callable[[], object]] = None,
        on_closed: Optional[Callable[[], object]] = None,
        interval: float = 1.0,
        degraded_interval: float = 3.0,
        ceiling: float = 600.0,
    ) -> None:
        self._surface = surface
        self._on_poll = on_poll
        self._on_closed = on_closed
        self._interval = interval
        self._degraded_interval = degraded_interval
        self._ceiling = ceiling
        self._degraded = False
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        try:
            await asyncio.wait_for(self._watch(), timeout=self._ceiling)
        except asyncio.TimeoutError:
            logger.debug("Liveness monitor reached its %gs ceiling", self._ceiling)

    async def _watch(self) -> None:
        while True:
            await asyncio.sleep(self._degraded_interval if self._degraded else self._interval)
            try:
                closed = self._surface.is_closed()
            except SurfaceObservationError as exc:
                if not self._degraded:
                    logger.debug("Surface not observable (%s), degrading to polling", exc)
                    self._degraded = True
                self._call(self._on_poll)
                continue
            if closed:
                logger.debug("Authorization surface closed")
                self._call(self._on_closed)
                return

    @staticmethod
    def _call(callback: Optional[Callable[[], object]]) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("Liveness monitor callback failed")
