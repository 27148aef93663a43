"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~prodbeam.exceptions.ProdbeamError` subclass.
Shell wrappers can inspect the exit code to tell an expired OAuth session
apart from a network failure without parsing stderr.

Example::

    $ prodbeam auth login --jira
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the OAuth flow was rejected or aborted
"""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred (including configuration errors)."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed, was denied, or the stored session expired."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_INTERRUPTED = 130
"""The user aborted the command with Ctrl-C."""
