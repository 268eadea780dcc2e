"""Key/value persistence used by the token store and the callback slot.

Two backends are provided:

* :class:`MemoryStorage` -- process-local dict, used in tests and for
  throwaway sessions.
* :class:`FileStorage` -- one JSON file per key under
  ``<data_dir>/storage/``. Files are written atomically via
  :func:`~oauthflow.config.atomic_write` with ``0o600`` permissions so that
  tokens are never world-readable, even momentarily.

Both are safe to call from the loopback callback server thread.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote, unquote

from oauthflow.config import atomic_write, get_data_dir

logger = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """Abstract JSON-document store keyed by string."""

    @abstractmethod
    def get(self, key: str) -> Optional[dict[str, Any]]:
        """Return the document stored under *key*, or ``None``."""

    @abstractmethod
    def set(self, key: str, value: dict[str, Any]) -> None:
        """Store *value* under *key*, replacing any previous document."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove *key*. A no-op when it does not exist."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Return all stored keys, sorted."""


class MemoryStorage(KeyValueStorage):
    """In-memory storage. Values are copied in and out."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[dict[str, Any]]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        raw = json.dumps(value)
        with self._lock:
            self._data[key] = raw

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


class FileStorage(KeyValueStorage):
    """File-backed storage, one ``<key>.json`` file per key.

    Args:
        root: Directory holding the files. Defaults to
            ``<data_dir>/storage``.

    Example::

        storage = FileStorage()
        storage.set("oauth2_token_github", {"access_token": "tok"})
        assert storage.get("oauth2_token_github")["access_token"] == "tok"
    """

    def __init__(self, root: Optional[Path] = None) -> None:
        self._root = root if root is not None else get_data_dir() / "storage"
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        return self._root / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[dict[str, Any]]:
        """Load the document for *key*.

        Returns:
            The parsed document, or ``None`` if the file does not exist or
            cannot be parsed.
        """
        path = self._path(key)
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable storage entry %s: %s", path, exc)
            return None
        return data if isinstance(data, dict) else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        atomic_write(self._path(key), json.dumps(value, indent=2) + "\n", mode=0o600)

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    def keys(self) -> list[str]:
        return sorted(unquote(p.stem) for p in self._root.glob("*.json") if p.is_file())
