"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~oauthflow.exceptions.OAuthFlowError` subclass.
Scripts wrapping the ``oauthflow`` CLI can inspect the exit code to tell a
denied authorization apart from a timed-out one without parsing stderr.

Example::

    $ oauthflow auth login github
    $ echo $?
    4   # EXIT_AUTH_TIMEOUT -- no callback arrived in time
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_CONFIG_ERROR = 2
"""The connection or engine configuration is missing or invalid."""

EXIT_AUTH_FAILURE = 3
"""The authorization flow or a token request failed."""

EXIT_AUTH_TIMEOUT = 4
"""No authorization callback arrived within the allowed window."""

EXIT_AUTH_CANCELLED = 5
"""The pending authorization attempt was cancelled or abandoned."""
