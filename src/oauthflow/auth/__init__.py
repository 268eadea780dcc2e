"""The OAuth2 authorization engine.

The main entry points are:

- :class:`AuthSession` -- per-identity orchestrator exposing
  ``ensure_authenticated``, ``get_valid_token``, ``sign_out`` and
  ``is_authenticated``.
- :func:`create_default_session` -- wires a session with file storage, a
  privileged host and the system browser.
- :class:`TokenStore` -- durable token records with validity and refresh.
- :class:`CallbackServer` -- loopback redirect target.

Typical usage::

    from oauthflow.auth import CallbackServer, create_default_session

    with CallbackServer(storage) as server:
        session = create_default_session(storage=storage, server=server)
        await session.ensure_authenticated("github", config)
"""

from oauthflow.auth.callback_server import CallbackServer
from oauthflow.auth.session import AuthSession, create_default_session
from oauthflow.auth.storage import FileStorage, KeyValueStorage, MemoryStorage
from oauthflow.auth.token_store import TokenStore

__all__ = [
    "AuthSession",
    "CallbackServer",
    "FileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "TokenStore",
    "create_default_session",
]
