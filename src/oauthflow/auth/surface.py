"""Authorization surfaces: where the user actually signs in."""

from __future__ import annotations

import logging
import threading
import webbrowser
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class SurfaceObservationError(Exception):
    """The surface's open/closed state cannot be observed."""


class AuthorizationSurface(ABC):
    """A window, tab or process that shows the provider's sign-in page."""

    @abstractmethod
    def open(self, url: str) -> None:
        """Show *url* to the user."""

    @abstractmethod
    def is_closed(self) -> bool:
        """Whether the user closed the surface.

        Raises:
            SurfaceObservationError: If closure cannot be observed.
        """

    def close(self) -> None:
        """Close the surface if it is still open. Optional."""


class BrowserSurface(AuthorizationSurface):
    """Opens the system browser.

    A browser tab opened through :mod:`webbrowser` cannot be observed, so
    :meth:`is_closed` always raises and the liveness monitor falls back to
    storage sweeps.
    """

    def __init__(self, opener: Callable[[str], Any] = webbrowser.open) -> None:
        self._opener = opener

    def open(self, url: str) -> None:
        # Some browsers block until the window closes.
        thread = threading.Thread(target=self._opener, args=(url,), daemon=True)
        thread.start()
        logger.debug("Opened system browser for authorization")

    def is_closed(self) -> bool:
        raise SurfaceObservationError("System browser windows cannot be observed")


class CallbackSurface(AuthorizationSurface):
    """A surface backed by caller-supplied callables.

    Args:
        opener: Called with the authorization URL.
        closed_check: Returns True once the surface is closed. Without one,
            closure is unobservable.
        closer: Called by :meth:`close`.
    """

    def __init__(
        self,
        opener: Callable[[str], Any],
        closed_check: Optional[Callable[[], bool]] = None,
        closer: Optional[Callable[[], Any]] = None,
    ) -> None:
        self._opener = opener
        self._closed_check = closed_check
        self._closer = closer

    def open(self, url: str) -> None:
        self._opener(url)

    def is_closed(self) -> bool:
        if self._closed_check is None:
            raise SurfaceObservationError("Surface does not report closure")
        return bool(self._closed_check())

    def close(self) -> None:
        if self._closer is not None:
            self._closer()
