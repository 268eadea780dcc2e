"""Connection commands -- manage the OAuth2 client configuration per identity.

Typical workflow::

    oauthflow connection providers
    oauthflow connection add github --provider github --client-id abc \\
        --client-secret-source env:GITHUB_SECRET
    oauthflow connection list
"""

from __future__ import annotations

from typing import Optional

import typer

from oauthflow.exceptions import OAuthFlowError
from oauthflow.output import error, get_output, info, success, suggest

connection_app = typer.Typer(no_args_is_help=True)


@connection_app.command("add")
def connection_add(
    identity: str = typer.Argument(help="Identity the tokens will be stored under."),
    client_id: str = typer.Option(..., "--client-id", help="OAuth2 client id."),
    provider: Optional[str] = typer.Option(
        None, "--provider", "-p", help="Provider template key (see 'connection providers')."
    ),
    authorize_url: Optional[str] = typer.Option(
        None, "--authorize-url", help="Authorization endpoint (without --provider)."
    ),
    token_url: Optional[str] = typer.Option(
        None, "--token-url", help="Token endpoint (without --provider)."
    ),
    client_secret_source: Optional[str] = typer.Option(
        None,
        "--client-secret-source",
        "-s",
        help="Client secret source: env:VAR, file:/path, prompt.",
    ),
    scopes: Optional[list[str]] = typer.Option(
        None, "--scope", help="Scope to request. Repeat for several."
    ),
    redirect_uri: Optional[str] = typer.Option(
        None, "--redirect-uri", help="Redirect URI registered with the provider."
    ),
    pkce: Optional[bool] = typer.Option(
        None, "--pkce/--no-pkce", help="Use PKCE (default: template setting, else on)."
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing connection."),
) -> None:
    """Create or replace a connection.

    With ``--provider`` the endpoints, default scopes and flow come from the
    template; ``--scope`` and ``--pkce/--no-pkce`` still override them.
    Client secrets are only accepted as a source descriptor, never inline.

    Example::

        oauthflow connection add spotify --provider spotify --client-id abc
        oauthflow connection add idp --authorize-url https://idp/authorize \\
            --token-url https://idp/token --client-id abc --scope read
    """
    from oauthflow.auth.providers import DEFAULT_REDIRECT_URI, apply_template
    from oauthflow.config import connection_exists, save_connection
    from oauthflow.models import AuthorizationConfig, Connection

    if connection_exists(identity) and not force:
        error(f'Connection "{identity}" already exists.')
        suggest("Use --force to replace it.")
        raise typer.Exit(code=2)

    try:
        if provider:
            config = apply_template(
                provider,
                client_id,
                client_secret_source=client_secret_source,
                redirect_uri=redirect_uri,
            )
            updates: dict[str, object] = {}
            if scopes:
                updates["scopes"] = list(scopes)
            if pkce is not None:
                updates["use_pkce"] = pkce
            if updates:
                config = config.model_copy(update=updates)
        else:
            config = AuthorizationConfig(
                authorize_url=authorize_url or "",
                token_url=token_url or "",
                client_id=client_id,
                client_secret_source=client_secret_source,
                scopes=list(scopes or []),
                redirect_uri=redirect_uri or DEFAULT_REDIRECT_URI,
                use_pkce=True if pkce is None else pkce,
            )
        config.validate_for_flow()
    except OAuthFlowError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    save_connection(Connection(name=identity, config=config))
    success(f'Connection "{identity}" saved.')
    info(f"Redirect URI: {config.redirect_uri}")
    suggest(f"Sign in: oauthflow auth login {identity}")


@connection_app.command("list")
def connection_list() -> None:
    """List connections with their token status."""
    from oauthflow.auth.storage import FileStorage
    from oauthflow.auth.token_store import TokenStore
    from oauthflow.config import list_connections, load_connection

    names = list_connections()
    if not names:
        info("No connections configured.")
        suggest("Create one: oauthflow connection add <identity> -p <key> --client-id <id>")
        return

    store = TokenStore(FileStorage())
    rows: list[list[str]] = []
    for name in names:
        try:
            config = load_connection(name).config
        except OAuthFlowError:
            rows.append([name, "error", "-", "-", "-"])
            continue
        rows.append(
            [
                name,
                config.provider or "custom",
                config.client_id,
                "yes" if config.use_pkce else "no",
                store.status(name).value,
            ]
        )
    get_output().print_table(
        ["Identity", "Provider", "Client ID", "PKCE", "Token"], rows, title="Connections"
    )


@connection_app.command("show")
def connection_show(
    identity: str = typer.Argument(help="Connection to show."),
) -> None:
    """Print a connection's configuration. Inline secrets are masked."""
    from oauthflow.config import load_connection

    try:
        config = load_connection(identity).config
    except OAuthFlowError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    data = config.model_dump(mode="json", exclude_none=True)
    if "client_secret" in data:
        data["client_secret"] = "****"
    get_output().format_response(data)


@connection_app.command("remove")
def connection_remove(
    identity: str = typer.Argument(help="Connection to remove."),
) -> None:
    """Delete a connection and its stored token."""
    from oauthflow.auth.storage import FileStorage
    from oauthflow.auth.token_store import TokenStore
    from oauthflow.config import delete_connection

    try:
        delete_connection(identity)
    except OAuthFlowError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    TokenStore(FileStorage()).clear(identity)
    success(f'Connection "{identity}" removed.')


@connection_app.command("providers")
def connection_providers() -> None:
    """List the built-in provider templates."""
    from oauthflow.auth.providers import PROVIDER_TEMPLATES

    rows = [
        [
            key,
            template.name,
            template.flow,
            "yes" if template.requires_client_secret else "no",
        ]
        for key, template in sorted(PROVIDER_TEMPLATES.items())
    ]
    get_output().print_table(
        ["Key", "Name", "Flow", "Secret required"], rows, title="Provider templates"
    )
