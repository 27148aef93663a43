"""Jira Cloud OAuth 2.0 (3LO) authorization-code flow.

Flow:
    1. :func:`generate_state` and :func:`build_authorization_url` produce
       the consent URL the user opens in a browser.
    2. Atlassian redirects to ``http://localhost:{port}/callback``, where
       :mod:`prodbeam.auth.callback_server` picks up the code.
    3. :meth:`JiraOAuthClient.exchange_code` trades the code for tokens.
    4. :meth:`JiraOAuthClient.discover_resources` lists the Jira sites the
       token can act on; the first one is used.

Atlassian rotates the refresh token on every use and resets its 90 day
inactivity window, whatever ``expires_in`` says, so the refresh expiry is
always recomputed locally.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from prodbeam.auth.base import DEFAULT_TIMEOUT, Clock, OAuthProvider, expiry_from_now, int_field
from prodbeam.exceptions import AuthError, ConfigError
from prodbeam.models import (
    JiraCloudResource,
    JiraOAuthTokens,
    OAuthTokens,
    Service,
    TokenGrant,
)

logger = logging.getLogger(__name__)

AUTH_URL = "https://auth.atlassian.com/authorize"
TOKEN_URL = "https://auth.atlassian.com/oauth/token"
RESOURCES_URL = "https://api.atlassian.com/oauth/token/accessible-resources"
CLOUD_API_BASE = "https://api.atlassian.com/ex/jira"

REFRESH_TOKEN_LIFETIME = timedelta(days=90)


def generate_state() -> str:
    """Return a random 32 character hex ``state`` value (16 bytes)."""
    return secrets.token_hex(16)


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    state: str,
    scopes: list[str],
) -> str:
    """Build the Atlassian consent URL the user must visit."""
    params = {
        "audience": "api.atlassian.com",
        "client_id": client_id,
        "scope": " ".join(scopes),
        "redirect_uri": redirect_uri,
        "state": state,
        "response_type": "code",
        "prompt": "consent",
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def cloud_url_for(cloud_id: str) -> str:
    """REST base URL for a Jira site reached through the Atlassian API gateway."""
    return f"{CLOUD_API_BASE}/{cloud_id}"


class JiraOAuthClient(OAuthProvider):
    """Token endpoint and resource discovery client for a Jira OAuth app.

    Args:
        client_id: The Atlassian OAuth app's client id.
        client_secret: The app's client secret.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport.
        clock: Callable returning the current UTC time.

    Raises:
        ConfigError: If *client_id* or *client_secret* is empty.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: Optional[str],
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        if not client_id:
            raise ConfigError("Jira OAuth requires a client id")
        if not client_secret:
            raise ConfigError(
                "Jira OAuth requires a client secret. "
                "Set PRODBEAM_JIRA_CLIENT_SECRET or use an API token instead."
            )
        super().__init__(timeout=timeout, transport=transport, clock=clock)
        self._client_id = client_id
        self._client_secret = client_secret

    @property
    def service(self) -> Service:
        return Service.JIRA

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange an authorization code for an access/refresh token pair.

        Raises:
            AuthError: On a non-success status (the response body is
                included) or a transport failure.
        """
        return await self._token_request(
            "Jira token exchange",
            {
                "grant_type": "authorization_code",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Run the refresh grant. The returned refresh token replaces the old one."""
        return await self._token_request(
            "Jira token refresh",
            {
                "grant_type": "refresh_token",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": refresh_token,
            },
        )

    async def discover_resources(self, access_token: str) -> list[JiraCloudResource]:
        """List the Jira Cloud sites *access_token* may call.

        Raises:
            AuthError: On a non-success status or an unexpected body.
        """
        action = "Cloud resource discovery"
        async with self._client() as client:
            response = await self._send(
                client,
                "GET",
                RESOURCES_URL,
                action,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        if not response.is_success:
            raise AuthError(
                f"{action} failed: {response.status_code} {response.reason_phrase}"
            )
        payload = self._decode(response, action)
        if not isinstance(payload, list):
            raise AuthError(f"{action} returned an unexpected response")
        try:
            return [JiraCloudResource.model_validate(item) for item in payload]
        except ValidationError as exc:
            raise AuthError(f"{action} returned an invalid site entry: {exc}") from exc

    async def complete_flow(
        self,
        code: str,
        redirect_uri: str,
        scopes: list[str],
    ) -> JiraOAuthTokens:
        """Exchange *code*, pick a site, and build the record to persist.

        When several sites are accessible the first one returned is used.

        Raises:
            AuthError: If the exchange or discovery fails, or no site is
                accessible.
        """
        grant = await self.exchange_code(code, redirect_uri)
        now = self._now()

        resources = await self.discover_resources(grant.access_token)
        if not resources:
            raise AuthError(
                "No accessible Jira Cloud sites found. "
                "Make sure your Atlassian account has access to a Jira site."
            )
        site = resources[0]
        if len(resources) > 1:
            logger.debug("Using first of %d accessible Jira sites: %s", len(resources), site.url)

        return JiraOAuthTokens(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            access_token_expires_at=expiry_from_now(now, grant.expires_in),
            refresh_token_expires_at=now + REFRESH_TOKEN_LIFETIME,
            scopes=grant.scope.split() if grant.scope else list(scopes),
            cloud_id=site.id,
            cloud_url=cloud_url_for(site.id),
        )

    async def refresh_tokens(self, tokens: OAuthTokens) -> JiraOAuthTokens:
        """Refresh a stored Jira record, keeping its site and scopes."""
        if not isinstance(tokens, JiraOAuthTokens):
            raise AuthError("Cannot refresh a non-Jira token record with the Jira client")
        grant = await self.refresh(tokens.refresh_token)
        now = self._now()
        return tokens.model_copy(
            update={
                "access_token": grant.access_token,
                "refresh_token": grant.refresh_token,
                "access_token_expires_at": expiry_from_now(now, grant.expires_in),
                "refresh_token_expires_at": now + REFRESH_TOKEN_LIFETIME,
            }
        )

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _token_request(self, action: str, body: dict[str, Any]) -> TokenGrant:
        async with self._client() as client:
            response = await self._send(client, "POST", TOKEN_URL, action, json=body)
        if not response.is_success:
            raise AuthError(f"{action} failed: {response.status_code} -- {response.text}")

        payload = self._decode(response, action)
        if not isinstance(payload, dict):
            raise AuthError(f"{action} returned an unexpected response")
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        if not access_token or not isinstance(access_token, str):
            raise AuthError(f"{action} response missing 'access_token' field")
        if not refresh_token or not isinstance(refresh_token, str):
            raise AuthError(
                f"{action} response missing 'refresh_token' field "
                "(is the offline_access scope granted?)"
            )
        try:
            return TokenGrant(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_in=int_field(payload, "expires_in", 3600),
                scope=str(payload.get("scope") or ""),
            )
        except ValidationError as exc:
            raise AuthError(f"{action} returned an invalid token response: {exc}") from exc
