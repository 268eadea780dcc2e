"""oauthflow -- client-side OAuth2 authorization-code engine with PKCE.

The engine builds authorization requests, waits for the provider redirect on
several independent delivery channels, exchanges the code through a
privileged host, and keeps per-identity tokens valid across restarts.

Typical usage::

    from oauthflow.auth import create_default_session
    from oauthflow.auth.providers import apply_template

    session = create_default_session()
    config = apply_template("github", client_id="abc", client_secret="...")
    token = await session.get_valid_token("github", config)

Modules:
    app: Typer application and CLI entry point.
    auth: The authorization engine.
    models: Pydantic models shared across the package.
    config: XDG-aware settings, connections and credential sources.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes.
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "0.1.0"
