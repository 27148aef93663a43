"""GitHub OAuth Device Authorization Grant (:rfc:`8628`).

For a CLI the user authorizes in a browser, possibly on another device,
while prodbeam polls for the token.

Flow:
    1. POST to ``https://github.com/login/device/code`` to obtain
       ``device_code`` + ``user_code``.
    2. The caller prints "Open {verification_uri} and enter {user_code}".
    3. Poll ``https://github.com/login/oauth/access_token`` until the user
       authorizes, declines, or the code expires.
    4. The caller persists the resulting
       :class:`~prodbeam.models.GitHubOAuthTokens`.

Refresh uses the standard ``refresh_token`` grant. GitHub rotates both
tokens on every refresh.

See Also:
    :class:`prodbeam.auth.base.OAuthProvider` for the base interface.
    :mod:`prodbeam.commands.auth` for the interactive login wizard.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from prodbeam.auth.base import (
    DEFAULT_TIMEOUT,
    Clock,
    OAuthProvider,
    expiry_from_now,
    int_field,
)
from prodbeam.exceptions import (
    AuthError,
    AuthorizationDeniedError,
    ConfigError,
    DeviceCodeExpiredError,
)
from prodbeam.models import DeviceCodeResponse, GitHubOAuthTokens, OAuthTokens, Service

logger = logging.getLogger(__name__)

DEVICE_CODE_URL = "https://github.com/login/device/code"
ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"

DEFAULT_ACCESS_TOKEN_TTL = 28800  # 8 hours
DEFAULT_REFRESH_TOKEN_TTL = 15811200  # ~6 months
SLOW_DOWN_INCREMENT = 5

_EXPIRED_MESSAGE = "Device code expired. Please restart the authentication flow."


class GitHubDeviceFlow(OAuthProvider):
    """Device-flow client for a GitHub App.

    Args:
        client_id: The GitHub App's client id (no secret is needed).
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport.
        clock: Callable returning the current UTC time.
        sleep: Awaitable sleep used between polls (default
            :func:`asyncio.sleep`).
        monotonic: Monotonic clock used for the polling deadline (default
            :func:`time.monotonic`).

    Raises:
        ConfigError: If *client_id* is empty.
    """

    def __init__(
        self,
        client_id: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        monotonic: Optional[Callable[[], float]] = None,
    ) -> None:
        if not client_id:
            raise ConfigError("GitHub OAuth requires a client id")
        super().__init__(timeout=timeout, transport=transport, clock=clock)
        self._client_id = client_id
        self._sleep = sleep or asyncio.sleep
        self._monotonic = monotonic or time.monotonic

    @property
    def service(self) -> Service:
        return Service.GITHUB

    async def request_code(self, scopes: list[str]) -> DeviceCodeResponse:
        """Request a device code and user code.

        Args:
            scopes: Requested OAuth scopes (may be empty).

        Returns:
            The parsed :class:`~prodbeam.models.DeviceCodeResponse`.

        Raises:
            AuthError: On transport errors, a non-success status, or a
                response missing ``device_code`` / ``user_code``.
        """
        data: dict[str, str] = {"client_id": self._client_id}
        if scopes:
            data["scope"] = " ".join(scopes)

        async with self._client() as client:
            response, payload = await self._request_json(
                client, "POST", DEVICE_CODE_URL, "GitHub device code request", data=data
            )

        if not response.is_success:
            raise AuthError(
                f"GitHub device code request failed: {response.status_code} "
                f"{response.reason_phrase}"
            )
        if not isinstance(payload, dict) or "device_code" not in payload:
            raise AuthError("Device authorization response missing 'device_code'")
        if "user_code" not in payload:
            raise AuthError("Device authorization response missing 'user_code'")

        try:
            return DeviceCodeResponse(
                device_code=payload["device_code"],
                user_code=payload["user_code"],
                verification_uri=payload.get("verification_uri", ""),
                interval=int_field(payload, "interval", 5),
                expires_in=int_field(payload, "expires_in", 900),
            )
        except ValidationError as exc:
            raise AuthError(f"Invalid device authorization response: {exc}") from exc

    async def poll(self, device_code: str, interval: int, expires_in: int) -> GitHubOAuthTokens:
        """Poll the token endpoint until the user authorizes or the code expires.

        Implements :rfc:`8628` section 3.5: ``authorization_pending`` keeps
        polling, ``slow_down`` adds 5 seconds to the interval, and
        ``expired_token`` / ``access_denied`` end the flow. The overall
        deadline is ``expires_in`` seconds from the first call, even if the
        provider never reports ``expired_token``.

        Args:
            device_code: The code returned by :meth:`request_code`.
            interval: Minimum polling interval in seconds.
            expires_in: Lifetime of the device code in seconds.

        Returns:
            Freshly minted :class:`~prodbeam.models.GitHubOAuthTokens`.

        Raises:
            AuthorizationDeniedError: The user declined.
            DeviceCodeExpiredError: The code expired or the deadline passed.
            AuthError: Any other provider error or a transport failure.
        """
        deadline = self._monotonic() + expires_in
        poll_interval = max(interval, 1)

        data = {
            "client_id": self._client_id,
            "device_code": device_code,
            "grant_type": DEVICE_CODE_GRANT,
        }

        async with self._client() as client:
            while self._monotonic() < deadline:
                await self._sleep(poll_interval)
                if self._monotonic() >= deadline:
                    break

                _, payload = await self._request_json(
                    client, "POST", ACCESS_TOKEN_URL, "Token polling", data=data
                )
                if not isinstance(payload, dict):
                    raise AuthError("Token polling returned an unexpected response")

                error = payload.get("error")
                if not error:
                    logger.debug("Device flow authorized")
                    return self._build_tokens(payload)

                if error == "authorization_pending":
                    continue
                if error == "slow_down":
                    poll_interval += SLOW_DOWN_INCREMENT
                    logger.debug("Provider asked to slow down; interval now %ss", poll_interval)
                    continue
                if error == "expired_token":
                    raise DeviceCodeExpiredError(_EXPIRED_MESSAGE)
                if error == "access_denied":
                    raise AuthorizationDeniedError("User denied the authorization request.")
                raise AuthError(f"GitHub OAuth error: {error}")

        raise DeviceCodeExpiredError(_EXPIRED_MESSAGE)

    async def refresh(self, refresh_token: str) -> GitHubOAuthTokens:
        """Exchange a refresh token for a new token pair.

        Args:
            refresh_token: The stored refresh token (single use).

        Returns:
            New :class:`~prodbeam.models.GitHubOAuthTokens`; both tokens
            and both expiries are replaced.

        Raises:
            AuthError: If the provider returns an error or is unreachable.
        """
        data = {
            "client_id": self._client_id,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        async with self._client() as client:
            response, payload = await self._request_json(
                client, "POST", ACCESS_TOKEN_URL, "GitHub token refresh", data=data
            )

        if not isinstance(payload, dict):
            raise AuthError("GitHub token refresh returned an unexpected response")
        if payload.get("error"):
            raise AuthError(
                f"GitHub token refresh failed: {payload['error']} -- "
                f"{payload.get('error_description', '')}"
            )
        if not response.is_success:
            raise AuthError(f"GitHub token refresh failed: {response.status_code}")
        return self._build_tokens(payload)

    async def refresh_tokens(self, tokens: OAuthTokens) -> GitHubOAuthTokens:
        return await self.refresh(tokens.refresh_token)

    def _build_tokens(self, payload: dict[str, Any]) -> GitHubOAuthTokens:
        """Turn a token response into a record with absolute expiries."""
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        if not access_token or not isinstance(access_token, str):
            raise AuthError("Token response missing 'access_token' field")
        if not refresh_token or not isinstance(refresh_token, str):
            raise AuthError(
                "Token response missing 'refresh_token' field "
                "(the GitHub App must have user token expiration enabled)"
            )

        now = self._now()
        scope = str(payload.get("scope") or "")
        try:
            return GitHubOAuthTokens(
                access_token=access_token,
                refresh_token=refresh_token,
                access_token_expires_at=expiry_from_now(
                    now, int_field(payload, "expires_in", DEFAULT_ACCESS_TOKEN_TTL)
                ),
                refresh_token_expires_at=expiry_from_now(
                    now, int_field(payload, "refresh_token_expires_in", DEFAULT_REFRESH_TOKEN_TTL)
                ),
                scopes=[s.strip() for s in scope.split(",") if s.strip()],
            )
        except ValidationError as exc:
            raise AuthError(f"GitHub returned an invalid token response: {exc}") from exc
