"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~oidclogin.exceptions.OIDCLoginError` subclass.
Shell wrappers can inspect the exit code to tell a rejected login from a
timed out one without parsing stderr.

Example::

    $ oidclogin login --oidc-config oidc.yaml
    $ echo $?
    8   # EXIT_TIMEOUT -- nobody completed the browser login in time
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed (rejected state, provider error, failed exchange)."""

EXIT_CONNECTION_ERROR = 6
"""The local callback listener could not be started."""

EXIT_TIMEOUT = 8
"""The login was not completed before the deadline."""

EXIT_CANCELLED = 130
"""The user interrupted the command (Ctrl-C)."""
