"""Configuration management with XDG paths, atomic writes, and env overrides.

This module handles all persistent configuration for oauthflow:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.oauthflow/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Engine settings** -- A single :class:`~oauthflow.models.EngineSettings`
  JSON file, overridable by ``OAUTHFLOW_*`` environment variables. See
  :func:`load_settings`.
* **Connections** -- One JSON file per identity, each deserialised into a
  :class:`~oauthflow.models.Connection`. Managed via :func:`load_connection`,
  :func:`save_connection`, :func:`delete_connection`.
* **Credential resolution** -- :func:`resolve_credential` reads secrets
  from env vars, files, or interactive prompts. Only the privileged host
  calls it for client secrets.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so a crash never leaves a half-written file behind.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Optional

from oauthflow.exceptions import ConfigurationError
from oauthflow.models import Connection, EngineSettings

_APP_NAME = "oauthflow"
_SETTINGS_FILENAME = "settings.json"

_ENV_OVERRIDES = {
    "OAUTHFLOW_CALLBACK_TIMEOUT": "callback_timeout",
    "OAUTHFLOW_CALLBACK_PORT": "callback_port",
    "OAUTHFLOW_VERIFY_SSL": "verify_ssl",
}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/oauthflow/`` (default ``~/.config/oauthflow/``).
    On macOS/Windows: ``~/.oauthflow/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (tokens, callback slot, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/oauthflow/`` (default ``~/.local/share/oauthflow/``).
    On macOS/Windows: ``~/.oauthflow/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_connections_dir() -> Path:
    """Return ``<config_dir>/connections/``, creating it if necessary."""
    path = get_config_dir() / "connections"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is given
    the permissions are applied before any content is written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Engine settings ---


def _settings_path() -> Path:
    return get_config_dir() / _SETTINGS_FILENAME


def load_settings() -> EngineSettings:
    """Load engine settings from disk and apply ``OAUTHFLOW_*`` env overrides.

    Precedence (high to low): environment variables, ``settings.json``,
    defaults.

    Raises:
        ConfigurationError: If the settings file or an override is invalid.
    """
    path = _settings_path()
    data: dict = {}
    if path.is_file():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise ConfigurationError(f"Invalid settings file at {path}: {exc}") from exc

    for env_var, field in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            data[field] = value

    try:
        return EngineSettings.model_validate(data)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid engine settings: {exc}") from exc


def save_settings(settings: EngineSettings) -> None:
    """Persist engine settings atomically."""
    data = settings.model_dump(mode="json")
    atomic_write(_settings_path(), json.dumps(data, indent=2) + "\n")


# --- Connections ---


def _connection_path(name: str) -> Path:
    return get_connections_dir() / f"{name}.json"


def list_connections() -> list[str]:
    """Return all connection names, sorted alphabetically."""
    return sorted(p.stem for p in get_connections_dir().glob("*.json") if p.is_file())


def load_connection(name: str) -> Connection:
    """Load and validate a connection from disk.

    Raises:
        ConfigurationError: If the file does not exist or fails validation.
    """
    path = _connection_path(name)
    if not path.is_file():
        raise ConfigurationError(f"Connection '{name}' not found at {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return Connection.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid connection '{name}' at {path}: {exc}") from exc


def save_connection(connection: Connection) -> None:
    """Persist a connection. Files are ``0o600`` since they may hold a client secret."""
    data = connection.model_dump(mode="json", exclude_none=True)
    atomic_write(
        _connection_path(connection.name),
        json.dumps(data, indent=2) + "\n",
        mode=0o600,
    )


def delete_connection(name: str) -> None:
    """Delete a connection file.

    Raises:
        ConfigurationError: If the connection does not exist.
    """
    path = _connection_path(name)
    if not path.is_file():
        raise ConfigurationError(f"Connection '{name}' not found at {path}")
    path.unlink()


def connection_exists(name: str) -> bool:
    return _connection_path(name).is_file()


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)

    Raises:
        ConfigurationError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigurationError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigurationError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigurationError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter client secret: ")

    raise ConfigurationError(f"Unknown credential source format: {source}")
