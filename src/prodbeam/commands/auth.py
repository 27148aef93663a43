"""Auth commands -- connect prodbeam to GitHub and Jira.

Provides the ``prodbeam auth`` sub-command group:

* ``login`` walks through each service: environment overrides are left
  alone, an existing session or token can be kept, and otherwise the user
  picks browser login (OAuth) or pastes a token. Every new credential is
  checked against the service's "who am I" endpoint.
* ``status`` prints where each credential comes from and when it expires.
* ``logout`` removes stored OAuth tokens (stored API tokens are kept).

Typical workflow::

    prodbeam auth login --github --method browser
    prodbeam auth status
    prodbeam auth logout --jira
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Optional

import typer

from prodbeam.auth.base import utcnow
from prodbeam.auth.callback_server import CallbackListener
from prodbeam.auth.credential_store import CredentialStore
from prodbeam.auth.github_device_flow import GitHubDeviceFlow
from prodbeam.auth.identity import fetch_github_login, fetch_jira_display_name
from prodbeam.auth.jira_oauth_flow import (
    JiraOAuthClient,
    build_authorization_url,
    generate_state,
)
from prodbeam.auth.resolver import basic_auth_header, normalize_jira_base_url
from prodbeam.auth.status import format_time_left, get_auth_statuses
from prodbeam.config import github_token_from_env, jira_credentials_from_env, load_app_config
from prodbeam.exceptions import OAuthProtocolError, ProdbeamError
from prodbeam.models import (
    AuthMethod,
    GitHubOAuthTokens,
    GitHubPATCredential,
    JiraOAuthTokens,
    JiraPATCredential,
    OAuthAppConfig,
    Service,
)
from prodbeam.output import (
    error,
    get_output,
    header,
    highlight,
    info,
    print_table,
    success,
    suggest,
    warning,
)

logger = logging.getLogger(__name__)

auth_app = typer.Typer(no_args_is_help=True)

GITHUB_TOKEN_URL = "https://github.com/settings/tokens"
JIRA_TOKEN_URL = "https://id.atlassian.com/manage-profile/security/api-tokens"


class LoginMethod(str, Enum):
    """How ``auth login`` obtains a credential."""

    BROWSER = "browser"
    TOKEN = "token"


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _selected_services(github: bool, jira: bool) -> list[Service]:
    """``--github`` / ``--jira`` narrow the selection; neither means both."""
    if github == jira:
        return [Service.GITHUB, Service.JIRA]
    return [Service.GITHUB] if github else [Service.JIRA]


@contextmanager
def _cli_errors() -> Iterator[None]:
    """Turn prodbeam errors and Ctrl-C into clean exits."""
    try:
        yield
    except (KeyboardInterrupt, typer.Abort):
        info("\nCancelled.")
        raise typer.Exit() from None
    except ProdbeamError as exc:
        error(str(exc))
        if isinstance(exc, OAuthProtocolError):
            suggest("Restart the login: prodbeam auth login")
        raise typer.Exit(code=exc.exit_code) from None


def _ask(text: str, is_valid: Callable[[str], bool], hint: str, hide_input: bool = False) -> str:
    while True:
        value = typer.prompt(text, hide_input=hide_input).strip()
        if is_valid(value):
            return value
        error(hint)


def _choose_method(method: Optional[LoginMethod], recommended: LoginMethod) -> LoginMethod:
    if method is not None:
        return method
    browser = "Browser login"
    token = "Paste a token"
    if recommended is LoginMethod.BROWSER:
        browser += " (recommended)"
    else:
        token += " (recommended)"
    choice = _ask(
        f"How would you like to authenticate?\n  [1] {browser}\n  [2] {token}\n  Choice",
        lambda v: v in ("1", "2"),
        "Enter 1 or 2",
    )
    return LoginMethod.BROWSER if choice == "1" else LoginMethod.TOKEN


def _keep_existing(service: Service, store: CredentialStore) -> bool:
    """Offer to keep a usable stored credential; ``True`` means skip login."""
    record = store.read(service)
    label = service.label
    if isinstance(record, (GitHubOAuthTokens, JiraOAuthTokens)):
        expiry = record.refresh_token_expires_at
        if expiry <= utcnow():
            return False
        until = expiry.astimezone().strftime("%Y-%m-%d")
        return typer.confirm(f"{label}: OAuth active (refreshes until {until}). Keep current?", default=True)
    if isinstance(record, JiraPATCredential):
        return typer.confirm(f"{label}: token configured for {record.host}. Keep current?", default=True)
    if isinstance(record, GitHubPATCredential):
        return typer.confirm(f"{label}: token configured. Keep current?", default=True)
    return False


def _open_browser(url: str) -> None:
    try:
        webbrowser.open(url)
    except webbrowser.Error as exc:
        logger.debug("Could not open a browser: %s", exc)


# ------------------------------------------------------------------ #
# GitHub
# ------------------------------------------------------------------ #


def _login_github(store: CredentialStore, config: OAuthAppConfig, method: Optional[LoginMethod]) -> None:
    header("GitHub Authentication")
    if github_token_from_env() is not None:
        success("GitHub: using GITHUB_TOKEN env var")
        return
    if _keep_existing(Service.GITHUB, store):
        return

    if _choose_method(method, LoginMethod.BROWSER) is LoginMethod.BROWSER:
        asyncio.run(_github_device_login(store, config))
    else:
        _github_token_login(store)


async def _github_device_login(store: CredentialStore, config: OAuthAppConfig) -> None:
    flow = GitHubDeviceFlow(config.github_client_id)
    info("Starting GitHub device flow...")
    device = await flow.request_code(config.github_scopes)

    highlight(f"\n  Enter this code in your browser: {device.user_code}")
    highlight(f"  Open: {device.verification_uri}\n")
    with get_output().waiting("Waiting for authorization..."):
        tokens = await flow.poll(device.device_code, device.interval, device.expires_in)

    store.write(Service.GITHUB, tokens)
    login = await fetch_github_login(tokens.access_token)
    success(f"GitHub: authenticated as @{login} (OAuth)")


def _github_token_login(store: CredentialStore) -> None:
    info(f"Create a token at {GITHUB_TOKEN_URL}")
    info("Required scopes: repo, read:org, read:user")
    token = _ask("GitHub personal access token", bool, "Token is required.", hide_input=True)

    login = asyncio.run(fetch_github_login(token))
    store.write(Service.GITHUB, GitHubPATCredential(token=token))
    success(f"GitHub: authenticated as @{login} (token)")


# ------------------------------------------------------------------ #
# Jira
# ------------------------------------------------------------------ #


def _login_jira(store: CredentialStore, config: OAuthAppConfig, method: Optional[LoginMethod]) -> None:
    header("Jira Authentication")
    if jira_credentials_from_env() is not None:
        success("Jira: using environment variables")
        return
    if _keep_existing(Service.JIRA, store):
        return

    if _choose_method(method, LoginMethod.TOKEN) is LoginMethod.BROWSER:
        asyncio.run(_jira_browser_login(store, config))
    else:
        _jira_token_login(store)


async def _jira_browser_login(store: CredentialStore, config: OAuthAppConfig) -> None:
    client = JiraOAuthClient(config.jira_client_id, config.jira_client_secret)
    info("Starting Jira OAuth flow...")

    state = generate_state()
    url = build_authorization_url(
        config.jira_client_id, config.jira_redirect_uri, state, config.jira_scopes
    )
    async with CallbackListener(config.jira_callback_port, state) as listener:
        highlight("\n  Open this URL in your browser:")
        highlight(f"  {url}\n")
        _open_browser(url)
        with get_output().waiting("Waiting for authorization..."):
            code = await listener.wait_for_code()

    tokens = await client.complete_flow(code, config.jira_redirect_uri, config.jira_scopes)
    store.write(Service.JIRA, tokens)
    name = await fetch_jira_display_name(tokens.cloud_url, f"Bearer {tokens.access_token}")
    success(f"Jira: authenticated as {name} (OAuth)")


def _jira_token_login(store: CredentialStore) -> None:
    info(f"Create a token at {JIRA_TOKEN_URL}")
    host = _ask(
        "Jira Cloud hostname (e.g., company.atlassian.net)",
        lambda v: "." in v,
        "Must be a valid hostname",
    )
    email = _ask("Jira account email", lambda v: "@" in v, "Must be a valid email")
    api_token = _ask("Jira API token", bool, "Token is required.", hide_input=True)

    name = asyncio.run(
        fetch_jira_display_name(normalize_jira_base_url(host), basic_auth_header(email, api_token))
    )
    store.write(Service.JIRA, JiraPATCredential(host=host, email=email, api_token=api_token))
    success(f"Jira: authenticated as {name} (token)")


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


@auth_app.command("login")
def auth_login(
    github: bool = typer.Option(False, "--github", help="Only log in to GitHub."),
    jira: bool = typer.Option(False, "--jira", help="Only log in to Jira."),
    method: Optional[LoginMethod] = typer.Option(
        None, "--method", "-m", help="browser (OAuth) or token (paste a token)."
    ),
) -> None:
    """Authenticate with GitHub and/or Jira.

    Example::

        prodbeam auth login
        prodbeam auth login --jira --method token
    """
    store = CredentialStore()
    with _cli_errors():
        config = load_app_config()
        for service in _selected_services(github, jira):
            if service is Service.GITHUB:
                _login_github(store, config, method)
            else:
                _login_jira(store, config, method)
    suggest("Check the result: prodbeam auth status")


@auth_app.command("status")
def auth_status() -> None:
    """Show where each credential comes from and when it expires.

    Never refreshes tokens or contacts the services.
    """
    with _cli_errors():
        statuses = get_auth_statuses()

    rows: list[list[str]] = []
    for status in statuses:
        if status.method is AuthMethod.ENV:
            source = "env vars"
        elif status.method is AuthMethod.OAUTH:
            source = "OAuth"
        else:
            source = "API token" if status.valid else "-"
        token_left = format_time_left(status.expires_at) if status.expires_at else "-"
        refresh_left = (
            format_time_left(status.refresh_expires_at) if status.refresh_expires_at else "-"
        )
        rows.append(
            [status.service.label, source, token_left, refresh_left, status.error or "ok"]
        )

    print_table(
        ["Service", "Method", "Token expires", "Refresh expires", "Status"],
        rows,
        title="prodbeam auth status",
    )
    for status in statuses:
        if status.error == "Refresh token expired":
            warning(f"{status.service.label} session expired.")
            suggest(f"Log in again: prodbeam auth login --{status.service.value}")


@auth_app.command("logout")
def auth_logout(
    github: bool = typer.Option(False, "--github", help="Only log out of GitHub."),
    jira: bool = typer.Option(False, "--jira", help="Only log out of Jira."),
) -> None:
    """Remove stored OAuth tokens. Stored API tokens are kept."""
    store = CredentialStore()
    with _cli_errors():
        for service in _selected_services(github, jira):
            if store.read_oauth(service) is None:
                info(f"{service.label}: no OAuth tokens found")
                continue
            store.delete(service)
            success(f"{service.label}: OAuth tokens removed")
