"""Auth commands -- sign in, print tokens, inspect status, sign out.

Typical workflow::

    oauthflow auth login github     # browser sign-in via the loopback server
    oauthflow auth token github     # print a valid access token
    oauthflow auth status           # token status for every connection
    oauthflow auth logout github
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Optional

import typer

from oauthflow.exceptions import OAuthFlowError
from oauthflow.output import error, get_output, info, success, suggest, warning

if TYPE_CHECKING:
    from oauthflow.models import AuthorizationConfig, EngineSettings

auth_app = typer.Typer(no_args_is_help=True)


def _load(identity: str) -> tuple[EngineSettings, AuthorizationConfig]:
    """Load settings and the connection config, exiting cleanly on config errors."""
    from oauthflow.config import load_connection, load_settings

    try:
        return load_settings(), load_connection(identity).config
    except OAuthFlowError as exc:
        error(str(exc))
        suggest(f"Create it: oauthflow connection add {identity} --client-id <id>")
        raise typer.Exit(code=exc.exit_code) from None


@auth_app.command("login")
def auth_login(
    identity: str = typer.Argument(help="Connection to sign in with."),
    force: bool = typer.Option(
        False, "--force", "-f", help="Sign in again even when a valid token exists."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the authorization URL instead of opening it."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the provider redirect."
    ),
) -> None:
    """Run the interactive authorization flow for a connection.

    Starts the loopback callback server, opens the provider's sign-in page
    and waits for the redirect. The resulting token is stored for later
    ``auth token`` calls.

    Example::

        oauthflow auth login github
        oauthflow auth login spotify --no-browser --timeout 120
    """
    from oauthflow.auth.callback_server import CallbackServer
    from oauthflow.auth.session import create_default_session
    from oauthflow.auth.storage import FileStorage
    from oauthflow.auth.surface import BrowserSurface, CallbackSurface

    settings, config = _load(identity)
    if timeout is not None:
        settings = settings.model_copy(update={"callback_timeout": timeout})

    storage = FileStorage()
    if no_browser:
        surface = CallbackSurface(lambda url: info(f"Open this URL to sign in:\n{url}"))
    else:
        surface = BrowserSurface()

    try:
        with CallbackServer(
            storage,
            host=settings.callback_host,
            port=settings.callback_port,
            port_max=settings.callback_port_max,
        ) as server:
            if not server.serves(config.redirect_uri):
                warning(
                    f"Redirect URI {config.redirect_uri} does not point at the callback "
                    f"server ({server.url_for()}); the redirect may not be received."
                )
            session = create_default_session(
                settings, storage=storage, surface=surface, server=server
            )
            info("Waiting for authorization in the browser...")
            if force:
                asyncio.run(session.reauthenticate(identity, config))
            else:
                asyncio.run(session.ensure_authenticated(identity, config))
    except OAuthFlowError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    success(f'Signed in to "{identity}".')
    suggest(f"Print the token: oauthflow auth token {identity}")


@auth_app.command("token")
def auth_token(
    identity: str = typer.Argument(help="Connection to print the token for."),
) -> None:
    """Print a valid access token, refreshing it if needed. Never opens a browser."""
    from oauthflow.auth.session import create_default_session

    settings, config = _load(identity)
    session = create_default_session(settings)
    try:
        token = asyncio.run(session.store.get_valid_token(identity, config))
    except OAuthFlowError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    if token is None:
        from oauthflow.exit_codes import EXIT_AUTH_FAILURE

        error(f'No valid token for "{identity}".')
        suggest(f"Sign in: oauthflow auth login {identity}")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)
    get_output().print_data(token)


@auth_app.command("status")
def auth_status(
    identity: Optional[str] = typer.Argument(
        None, help="Connection to check (default: all connections)."
    ),
) -> None:
    """Show token status and remaining lifetime."""
    from oauthflow.auth.storage import FileStorage
    from oauthflow.auth.token_store import TokenStore
    from oauthflow.config import list_connections, load_settings

    settings = load_settings()
    store = TokenStore(FileStorage(), validity_buffer=settings.validity_buffer)
    names = [identity] if identity else sorted(set(list_connections()) | set(store.identities()))
    if not names:
        info("No connections configured.")
        return

    now = time.time()
    rows: list[list[str]] = []
    for name in names:
        record = store.load(name)
        expires = "-"
        if record is not None:
            remaining = int(record.seconds_remaining(now))
            expires = f"{remaining}s" if remaining > 0 else "expired"
        rows.append([name, store.status(name).value, expires])
    get_output().print_table(["Identity", "Status", "Expires in"], rows, title="Tokens")


@auth_app.command("logout")
def auth_logout(
    identity: str = typer.Argument(help="Connection to sign out of."),
) -> None:
    """Forget the stored token for a connection."""
    from oauthflow.auth.session import create_default_session
    from oauthflow.config import load_settings

    session = create_default_session(load_settings())
    session.sign_out(identity)
    success(f'Signed out of "{identity}".')
