"""Built-in CLI sub-commands for oauthflow.

* :mod:`~oauthflow.commands.connection` -- manage connection profiles and
  list provider templates.
* :mod:`~oauthflow.commands.auth` -- sign in, print tokens, show status and
  sign out.

Each module exports a :class:`typer.Typer` sub-application registered on the
root app by :func:`~oauthflow.app.register_commands`.
"""
