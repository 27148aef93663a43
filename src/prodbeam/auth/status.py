"""Read-only credential status for ``prodbeam auth status``.

:func:`get_auth_statuses` reports, per service, where the credential comes
from and whether it is still usable. It never refreshes tokens, never
writes the store, and never touches the network, so it is safe to call as
often as a display needs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from prodbeam.auth.base import Clock, utcnow
from prodbeam.auth.credential_store import CredentialStore
from prodbeam.config import Environment, github_token_from_env, jira_credentials_from_env
from prodbeam.models import AuthMethod, AuthStatus, Service

NOT_CONFIGURED = {
    Service.GITHUB: "Not configured",
    Service.JIRA: "Not configured (optional)",
}
REFRESH_EXPIRED = "Refresh token expired"


def _env_configured(service: Service, env: Optional[Environment]) -> bool:
    if service is Service.GITHUB:
        return github_token_from_env(env) is not None
    return jira_credentials_from_env(env) is not None


def get_auth_status(
    service: Service,
    store: CredentialStore,
    env: Optional[Environment] = None,
    now: Optional[datetime] = None,
) -> AuthStatus:
    """Describe one service's credential without using it."""
    now = now or utcnow()

    if _env_configured(service, env):
        return AuthStatus(service=service, method=AuthMethod.ENV, valid=True)

    tokens = store.read_oauth(service)
    if tokens is not None:
        valid = tokens.refresh_token_expires_at > now
        return AuthStatus(
            service=service,
            method=AuthMethod.OAUTH,
            expires_at=tokens.access_token_expires_at,
            refresh_expires_at=tokens.refresh_token_expires_at,
            valid=valid,
            error=None if valid else REFRESH_EXPIRED,
        )

    if store.read_pat(service) is not None:
        return AuthStatus(service=service, method=AuthMethod.PAT, valid=True)

    return AuthStatus(
        service=service,
        method=AuthMethod.PAT,
        valid=False,
        error=NOT_CONFIGURED[service],
    )


def get_auth_statuses(
    store: Optional[CredentialStore] = None,
    env: Optional[Environment] = None,
    clock: Optional[Clock] = None,
) -> list[AuthStatus]:
    """Return the status of every service, GitHub first then Jira.

    Args:
        store: Credential store to inspect.
        env: Environment mapping (defaults to ``os.environ``).
        clock: Callable returning the current UTC time.
    """
    store = store if store is not None else CredentialStore(env=env)
    now = (clock or utcnow)()
    return [get_auth_status(service, store, env, now) for service in (Service.GITHUB, Service.JIRA)]


def format_time_left(expires_at: datetime, now: Optional[datetime] = None) -> str:
    """Render the time until *expires_at* compactly.

    More than 30 days shows months (``~5mo``), then whole days (``12d``),
    hours (``7h``) and minutes (``42m``). Past timestamps read ``expired``.
    """
    remaining = expires_at - (now or utcnow())
    seconds = remaining.total_seconds()
    if seconds <= 0:
        return "expired"

    hours = int(seconds // 3600)
    days = hours // 24
    if days > 30:
        return f"~{days // 30}mo"
    if days > 0:
        return f"{days}d"
    if hours > 0:
        return f"{hours}h"
    return f"{int(seconds // 60)}m"
