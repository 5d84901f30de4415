"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific failure class and is referenced by the
corresponding :class:`~spotauth.exceptions.SpotauthError` subclass.
Shell wrappers can inspect the exit code to decide whether to retry,
free the callback port, or re-run the login without parsing stderr.

Example::

    $ spotauth login
    $ echo $?
    8   # EXIT_PORT_IN_USE -- another process holds the callback port
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed (CSRF mismatch, provider denial, token exchange)."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (listener bind failure, unreachable token endpoint)."""

EXIT_PORT_IN_USE = 8
"""The fixed callback port is held by another process."""

EXIT_TIMEOUT = 9
"""No authorization redirect arrived before the login timed out."""
