"""Canonical Pydantic models shared across all prodbeam modules.

The models fall into three groups:

**Persisted credential records** -- one entry per service in
``credentials.json``, discriminated by the ``method`` field:
    :class:`GitHubPATCredential`, :class:`JiraPATCredential`,
    :class:`GitHubOAuthTokens`, and :class:`JiraOAuthTokens`.
    They serialise with camelCase keys (``accessToken``,
    ``refreshTokenExpiresAt``) so files written by earlier releases keep
    working.

**Provider wire shapes** -- parsed responses from the OAuth endpoints:
    :class:`DeviceCodeResponse`, :class:`TokenGrant`, and
    :class:`JiraCloudResource`.

**Resolver output** -- ephemeral values handed to API clients, never
written to disk:
    :class:`ResolvedGitHubAuth`, :class:`ResolvedJiraAuth`, and
    :class:`AuthStatus`.

All models use Pydantic v2.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Service(str, enum.Enum):
    """External services whose credentials prodbeam manages."""

    GITHUB = "github"
    JIRA = "jira"

    @property
    def label(self) -> str:
        """Display name (``GitHub`` / ``Jira``)."""
        return "GitHub" if self is Service.GITHUB else "Jira"


class AuthMethod(str, enum.Enum):
    """How a credential was obtained.

    ``ENV`` only appears in :class:`AuthStatus`; resolved credentials from
    environment variables report ``PAT``.
    """

    PAT = "pat"
    OAUTH = "oauth"
    ENV = "env"


# --- Persisted records ---


class _StoredRecord(BaseModel):
    """Base for records in ``credentials.json`` (camelCase on disk)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GitHubPATCredential(_StoredRecord):
    """A GitHub personal access token."""

    method: Literal["pat"] = "pat"
    token: str = Field(min_length=1)


class JiraPATCredential(_StoredRecord):
    """A Jira Cloud API token, sent as HTTP Basic ``email:api_token``."""

    method: Literal["pat"] = "pat"
    host: str = Field(min_length=1, description="e.g. company.atlassian.net")
    email: str = Field(min_length=1)
    api_token: str = Field(min_length=1)


class _OAuthTokenSet(_StoredRecord):
    """Fields shared by both services' OAuth records.

    Both expiries are absolute UTC timestamps computed when the tokens were
    received, never provider-relative durations.
    """

    method: Literal["oauth"] = "oauth"
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
    scopes: list[str] = Field(default_factory=list)
    token_type: Literal["bearer"] = "bearer"

    @field_validator("access_token_expires_at", "refresh_token_expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class GitHubOAuthTokens(_OAuthTokenSet):
    """GitHub App user tokens obtained through the device flow."""


class JiraOAuthTokens(_OAuthTokenSet):
    """Jira 3LO tokens plus the Atlassian cloud site they act on."""

    cloud_id: str
    cloud_url: str = Field(description="https://api.atlassian.com/ex/jira/{cloudId}")


OAuthTokens = Union[GitHubOAuthTokens, JiraOAuthTokens]
PATCredential = Union[GitHubPATCredential, JiraPATCredential]
CredentialRecord = Union[GitHubPATCredential, JiraPATCredential, GitHubOAuthTokens, JiraOAuthTokens]


# --- Provider responses ---


class DeviceCodeResponse(BaseModel):
    """Response of the device authorization endpoint (:rfc:`8628` section 3.2)."""

    device_code: str
    user_code: str
    verification_uri: str
    interval: int = 5
    expires_in: int = 900


class TokenGrant(BaseModel):
    """Token endpoint response for the authorization-code and refresh grants."""

    access_token: str
    refresh_token: str
    expires_in: int = 3600
    scope: str = ""


class JiraCloudResource(BaseModel):
    """An Atlassian site the access token may call."""

    id: str
    url: str
    name: str = ""


# --- Resolver output ---


class ResolvedGitHubAuth(BaseModel):
    """A ready-to-use GitHub bearer token."""

    token: str
    method: AuthMethod

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class ResolvedJiraAuth(BaseModel):
    """A Jira base URL plus the full ``Authorization`` header value.

    ``base_url`` is the site host for PAT credentials and
    ``https://api.atlassian.com/ex/jira/{cloudId}`` for OAuth.
    """

    base_url: str
    auth_header: str
    method: AuthMethod

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": self.auth_header}


class AuthStatus(BaseModel):
    """Read-only view of one service's credential state."""

    service: Service
    method: AuthMethod
    expires_at: Optional[datetime] = None
    refresh_expires_at: Optional[datetime] = None
    valid: bool
    error: Optional[str] = None


# --- OAuth application registration ---


class OAuthAppConfig(BaseModel):
    """Registered OAuth application settings for both providers.

    Built by :func:`prodbeam.config.load_app_config`. ``jira_client_secret``
    is ``None`` until configured; Jira OAuth operations reject that with a
    :class:`~prodbeam.exceptions.ConfigError`.
    """

    github_client_id: str
    github_scopes: list[str] = Field(default_factory=list)
    jira_client_id: str
    jira_client_secret: Optional[str] = None
    jira_scopes: list[str] = Field(default_factory=list)
    jira_callback_port: int = 19274

    @property
    def jira_redirect_uri(self) -> str:
        """Callback URL; must match the redirect URI registered with Atlassian."""
        return f"http://localhost:{self.jira_callback_port}/callback"
