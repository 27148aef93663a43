"""Credential and OAuth subsystem for GitHub and Jira.

The main entry points are:

- :class:`CredentialResolver` -- turns whatever is configured (environment
  variables, stored OAuth tokens, stored API tokens) into a ready-to-use
  credential, refreshing OAuth tokens silently.
- :func:`create_default_resolver` -- factory bound to the installation's
  config directory and registered OAuth apps.
- :class:`CredentialStore` -- the ``credentials.json`` file.
- :class:`GitHubDeviceFlow` and :class:`JiraOAuthClient` -- the two OAuth
  providers, built on :class:`OAuthProvider`.
- :func:`get_auth_statuses` -- read-only status for display.

Typical usage::

    from prodbeam.auth import create_default_resolver

    resolver = create_default_resolver()
    github = await resolver.resolve("github")
    if github is not None:
        headers = github.headers
"""

from prodbeam.auth.base import OAuthProvider
from prodbeam.auth.callback_server import CallbackListener, wait_for_authorization_code
from prodbeam.auth.credential_store import CredentialStore
from prodbeam.auth.github_device_flow import GitHubDeviceFlow
from prodbeam.auth.jira_oauth_flow import (
    JiraOAuthClient,
    build_authorization_url,
    generate_state,
)
from prodbeam.auth.resolver import CredentialResolver, create_default_resolver
from prodbeam.auth.status import format_time_left, get_auth_statuses

__all__ = [
    "CallbackListener",
    "CredentialResolver",
    "CredentialStore",
    "GitHubDeviceFlow",
    "JiraOAuthClient",
    "OAuthProvider",
    "build_authorization_url",
    "create_default_resolver",
    "format_time_left",
    "generate_state",
    "get_auth_statuses",
    "wait_for_authorization_code",
]
