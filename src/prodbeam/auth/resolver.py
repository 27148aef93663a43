"""Credential resolver -- the single entry point for "give me a usable credential".

For each service the resolver applies a fixed precedence and stops at the
first match:

1. **Environment override** -- ``GITHUB_TOKEN``, or all three of
   ``JIRA_HOST`` / ``JIRA_EMAIL`` / ``JIRA_API_TOKEN``. Returned as a PAT
   without touching the store or the network.
2. **Stored OAuth record** -- returned as-is while the access token has
   more than :data:`REFRESH_BUFFER` left; otherwise refreshed silently
   through the registered :class:`~prodbeam.auth.base.OAuthProvider` and
   persisted. A failed refresh, or a refresh token that has itself
   expired, raises :class:`~prodbeam.exceptions.AuthExpiredError`.
3. **Stored PAT record**.
4. ``None`` -- not configured, which callers treat as a normal outcome.

Callers therefore see exactly three results: a ``Resolved*Auth`` value,
``None``, or :class:`AuthExpiredError`. Transport and protocol errors from
refresh never leak past this module.

See Also:
    :class:`~prodbeam.auth.credential_store.CredentialStore` for storage.
    :mod:`prodbeam.auth.status` for the read-only counterpart.
"""

from __future__ import annotations

import base64
import logging
from datetime import timedelta
from typing import Optional, Union

import httpx
from pydantic import ValidationError

from prodbeam.auth.base import Clock, OAuthProvider, utcnow
from prodbeam.auth.credential_store import CredentialStore
from prodbeam.auth.github_device_flow import GitHubDeviceFlow
from prodbeam.auth.jira_oauth_flow import JiraOAuthClient
from prodbeam.config import (
    Environment,
    github_token_from_env,
    jira_credentials_from_env,
    load_app_config,
)
from prodbeam.exceptions import AuthError, AuthExpiredError, ConfigError
from prodbeam.models import (
    AuthMethod,
    GitHubPATCredential,
    JiraOAuthTokens,
    JiraPATCredential,
    OAuthAppConfig,
    OAuthTokens,
    ResolvedGitHubAuth,
    ResolvedJiraAuth,
    Service,
)

logger = logging.getLogger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)
"""Access tokens closer than this to expiry are refreshed before use."""

ResolvedAuth = Union[ResolvedGitHubAuth, ResolvedJiraAuth]


def normalize_jira_base_url(host: str) -> str:
    """Turn a configured Jira host into a base URL.

    ``acme.atlassian.net/`` becomes ``https://acme.atlassian.net``.
    """
    base_url = host if host.startswith("https://") else f"https://{host}"
    return base_url.rstrip("/")


def basic_auth_header(email: str, api_token: str) -> str:
    """Return ``Basic base64(email:api_token)``."""
    raw = f"{email}:{api_token}".encode("utf-8")
    return f"Basic {base64.b64encode(raw).decode('ascii')}"


def _jira_pat_auth(credential: JiraPATCredential) -> ResolvedJiraAuth:
    return ResolvedJiraAuth(
        base_url=normalize_jira_base_url(credential.host),
        auth_header=basic_auth_header(credential.email, credential.api_token),
        method=AuthMethod.PAT,
    )


class CredentialResolver:
    """Resolve usable credentials for GitHub and Jira.

    OAuth providers are looked up by service. They can be registered up
    front (tests pass clients bound to a mock transport); otherwise the
    default client for a service is built from the
    :class:`~prodbeam.models.OAuthAppConfig` the first time a refresh is
    needed.

    Args:
        store: Credential store (defaults to the one under the config dir).
        env: Environment mapping (defaults to ``os.environ``).
        app_config: OAuth app settings (defaults to
            :func:`~prodbeam.config.load_app_config` for *env*).
        github_flow: Provider used to refresh GitHub tokens.
        jira_client: Provider used to refresh Jira tokens.
        clock: Callable returning the current UTC time.

    Example::

        resolver = create_default_resolver()
        auth = await resolver.resolve_github()
        if auth is None:
            ...  # not configured
    """

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        env: Optional[Environment] = None,
        app_config: Optional[OAuthAppConfig] = None,
        github_flow: Optional[OAuthProvider] = None,
        jira_client: Optional[OAuthProvider] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._env = env
        self._store = store if store is not None else CredentialStore(env=env)
        self._app_config = app_config
        self._clock = clock or utcnow
        self._providers: dict[Service, OAuthProvider] = {}
        for provider in (github_flow, jira_client):
            if provider is not None:
                self.register(provider)

    @property
    def store(self) -> CredentialStore:
        return self._store

    def register(self, provider: OAuthProvider) -> None:
        """Register the refresh provider for ``provider.service``, replacing any other."""
        self._providers[provider.service] = provider

    async def resolve(self, service: Union[Service, str]) -> Optional[ResolvedAuth]:
        """Resolve a credential for *service* (``"github"`` or ``"jira"``).

        Returns:
            The resolved credential, or ``None`` if nothing is configured.

        Raises:
            AuthExpiredError: A stored OAuth session can no longer be used.
                This includes a refresh that cannot run because the OAuth
                app is not configured (for example no Jira client secret);
                the underlying error is chained as ``__cause__``.
        """
        service = Service(service)
        if service is Service.GITHUB:
            return await self.resolve_github()
        return await self.resolve_jira()

    async def resolve_github(self) -> Optional[ResolvedGitHubAuth]:
        """Resolve GitHub: ``GITHUB_TOKEN``, then OAuth, then stored PAT."""
        token = github_token_from_env(self._env)
        if token:
            return ResolvedGitHubAuth(token=token, method=AuthMethod.PAT)

        tokens = self._store.read_oauth(Service.GITHUB)
        if tokens is not None:
            tokens = await self._ensure_fresh(Service.GITHUB, tokens)
            return ResolvedGitHubAuth(token=tokens.access_token, method=AuthMethod.OAUTH)

        record = self._store.read_pat(Service.GITHUB)
        if isinstance(record, GitHubPATCredential):
            return ResolvedGitHubAuth(token=record.token, method=AuthMethod.PAT)
        return None

    async def resolve_jira(self) -> Optional[ResolvedJiraAuth]:
        """Resolve Jira: env triple, then OAuth, then stored API token."""
        credential = jira_credentials_from_env(self._env)
        if credential is not None:
            return _jira_pat_auth(credential)

        tokens = self._store.read_oauth(Service.JIRA)
        if isinstance(tokens, JiraOAuthTokens):
            tokens = await self._ensure_fresh(Service.JIRA, tokens)
            return ResolvedJiraAuth(
                base_url=tokens.cloud_url,
                auth_header=f"Bearer {tokens.access_token}",
                method=AuthMethod.OAUTH,
            )

        record = self._store.read_pat(Service.JIRA)
        if isinstance(record, JiraPATCredential):
            return _jira_pat_auth(record)
        return None

    # ------------------------------------------------------------------ #
    # OAuth refresh
    # ------------------------------------------------------------------ #

    async def _ensure_fresh(self, service: Service, tokens: OAuthTokens) -> OAuthTokens:
        """Return *tokens* or a refreshed replacement that has been persisted."""
        now = self._clock()
        if tokens.access_token_expires_at - now > REFRESH_BUFFER:
            return tokens

        if tokens.refresh_token_expires_at <= now:
            logger.debug("%s refresh token expired at %s", service.value, tokens.refresh_token_expires_at)
            raise AuthExpiredError(service.value)

        logger.debug("Refreshing %s access token", service.value)
        try:
            provider = self._provider(service)
            refreshed = await provider.refresh_tokens(tokens)
        except (AuthError, ConfigError, ValidationError, httpx.HTTPError) as exc:
            logger.debug("%s token refresh failed: %s", service.value, exc)
            raise AuthExpiredError(service.value) from exc

        self._store.write(service, refreshed)
        return refreshed

    def _provider(self, service: Service) -> OAuthProvider:
        provider = self._providers.get(service)
        if provider is not None:
            return provider

        config = self._config()
        if service is Service.GITHUB:
            provider = GitHubDeviceFlow(config.github_client_id)
        else:
            provider = JiraOAuthClient(config.jira_client_id, config.jira_client_secret)
        self.register(provider)
        return provider

    def _config(self) -> OAuthAppConfig:
        if self._app_config is None:
            self._app_config = load_app_config(self._env)
        return self._app_config


def create_default_resolver(env: Optional[Environment] = None) -> CredentialResolver:
    """Create a :class:`CredentialResolver` for the current installation.

    The store lives under ``$PRODBEAM_HOME`` (or ``~/.prodbeam``) and the
    refresh clients use the registered OAuth apps, built on first use.
    """
    return CredentialResolver(store=CredentialStore(env=env), env=env)
