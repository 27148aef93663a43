"""Abstract base class for OAuth providers.

This module defines the foundation shared by the two OAuth topologies:

- :class:`OAuthProvider` -- the abstract base class every provider client
  extends. It owns the HTTP settings (timeout, optional transport), the
  clock used to turn ``expires_in`` durations into absolute timestamps,
  and the :meth:`~OAuthProvider.refresh_tokens` hook that the resolver
  calls for silent refresh.
- :func:`utcnow` and :func:`expiry_from_now` -- the time helpers every
  token record is built with.

Concrete providers are
:class:`~prodbeam.auth.github_device_flow.GitHubDeviceFlow` and
:class:`~prodbeam.auth.jira_oauth_flow.JiraOAuthClient`.

See Also:
    :mod:`prodbeam.auth.resolver` for provider dispatch.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from prodbeam.exceptions import AuthError
from prodbeam.models import OAuthTokens, Service

DEFAULT_TIMEOUT = 30.0
"""Bound on every outbound OAuth HTTP call, in seconds."""

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def expiry_from_now(now: datetime, seconds: int) -> datetime:
    """Convert a provider ``expires_in`` duration into an absolute timestamp.

    Anchored to *now* (local time at receipt), never to provider time.

    Raises:
        AuthError: If *seconds* is out of range for a timestamp.
    """
    try:
        return now + timedelta(seconds=seconds)
    except OverflowError as exc:
        raise AuthError(f"Token lifetime out of range: {seconds}") from exc


def int_field(data: dict[str, Any], key: str, default: int) -> int:
    """Read an integer field from a provider payload, falling back to *default*."""
    value = data.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class OAuthProvider(ABC):
    """Abstract base class for an OAuth provider client.

    Every concrete provider must:

    1. Return its :class:`~prodbeam.models.Service` from :attr:`service`.
    2. Implement :meth:`refresh_tokens`, exchanging a stored record's
       refresh token for a complete replacement record.

    Args:
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass
            :class:`httpx.MockTransport`).
        clock: Callable returning the current UTC time.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._clock = clock or utcnow

    @property
    @abstractmethod
    def service(self) -> Service:
        """Return the service this provider issues tokens for."""
        ...

    @abstractmethod
    async def refresh_tokens(self, tokens: OAuthTokens) -> OAuthTokens:
        """Exchange the record's refresh token for a fully rotated record.

        Args:
            tokens: The stored OAuth record (its access token may be expired).

        Returns:
            A new record with both tokens and both expiries replaced.

        Raises:
            AuthError: If the provider rejects the refresh or is unreachable.
        """
        ...

    def _now(self) -> datetime:
        return self._clock()

    def _client(self) -> httpx.AsyncClient:
        """Create an HTTP client; callers use it as an async context manager."""
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    async def _request_json(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        action: str,
        **kwargs: Any,
    ) -> tuple[httpx.Response, Any]:
        """Send a request and decode its JSON body.

        Transport failures and non-JSON bodies become :class:`AuthError`;
        HTTP status is left for the caller to interpret.

        Args:
            client: Open HTTP client.
            method: HTTP method.
            url: Absolute URL.
            action: Human-readable name used in error messages.
            **kwargs: Forwarded to :meth:`httpx.AsyncClient.request`.

        Returns:
            The response and its decoded JSON payload.
        """
        response = await self._send(client, method, url, action, **kwargs)
        return response, self._decode(response, action)

    @staticmethod
    async def _send(
        client: httpx.AsyncClient,
        method: str,
        url: str,
        action: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, turning transport failures into :class:`AuthError`."""
        try:
            return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise AuthError(f"{action} failed: {exc}") from exc

    @staticmethod
    def _decode(response: httpx.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError:
            raise AuthError(
                f"{action} failed with status {response.status_code}: "
                f"{response.text[:200]}"
            ) from None
