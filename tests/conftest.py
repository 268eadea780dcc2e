"""Shared test fixtures for oauthflow.

Provides isolated config directories, a controllable clock, in-memory
storage, token endpoint fakes built on :class:`httpx.MockTransport`, and a
CLI runner. Fixtures are discovered by pytest automatically.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from oauthflow.auth.storage import MemoryStorage
from oauthflow.models import AuthorizationConfig
from oauthflow.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time; CliRunner swaps those streams, so a fresh manager is
    needed for the next test.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and data to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path,
    forces XDG path resolution, and clears every OAUTHFLOW_* override.
    """
    monkeypatch.setattr("oauthflow.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in [
        "OAUTHFLOW_CALLBACK_TIMEOUT",
        "OAUTHFLOW_CALLBACK_PORT",
        "OAUTHFLOW_VERIFY_SSL",
    ]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def quiet_output() -> OutputManager:
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True, no_color=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def pkce_config() -> AuthorizationConfig:
    return AuthorizationConfig(
        authorize_url="https://idp/authorize",
        token_url="https://idp/token",
        client_id="abc",
        scopes=["read"],
        redirect_uri="https://app/cb",
        use_pkce=True,
    )


@pytest.fixture
def secret_config() -> AuthorizationConfig:
    return AuthorizationConfig(
        authorize_url="https://idp/authorize",
        token_url="https://idp/token",
        client_id="abc",
        client_secret="s3cret",
        scopes=["read", "write"],
        redirect_uri="https://app/cb",
        use_pkce=False,
    )


class TokenEndpointRecorder:
    """Records form posts to a fake token endpoint and answers from a queue."""

    def __init__(self) -> None:
        self.requests: list[dict[str, str]] = []
        self.responses: list[httpx.Response] = []

    def respond(self, data: Any, status_code: int = 200) -> None:
        self.responses.append(httpx.Response(status_code, json=data))

    def respond_text(self, text: str, status_code: int) -> None:
        self.responses.append(httpx.Response(status_code, text=text))

    def handler(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.requests.append(form)
        if not self.responses:
            return httpx.Response(500, text="no response queued")
        return self.responses.pop(0)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def token_endpoint() -> TokenEndpointRecorder:
    return TokenEndpointRecorder()
