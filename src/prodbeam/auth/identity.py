"""Identity checks used to confirm a new credential actually authenticates.

The login wizard calls these right after a token is minted or pasted and
shows the returned name to the user.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from prodbeam.auth.base import DEFAULT_TIMEOUT
from prodbeam.exceptions import AuthError, ConnectionError_

GITHUB_USER_URL = "https://api.github.com/user"


async def _get_json(
    url: str,
    headers: dict[str, str],
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport],
) -> Any:
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        try:
            response = await client.get(url, headers={"Accept": "application/json", **headers})
        except httpx.TransportError as exc:
            raise ConnectionError_(f"Could not reach {url}: {exc}") from exc

    if response.status_code in (401, 403):
        raise AuthError(f"Authentication failed: HTTP {response.status_code}")
    if not response.is_success:
        raise AuthError(f"Identity check failed: HTTP {response.status_code} {response.reason_phrase}")
    try:
        return response.json()
    except ValueError:
        raise AuthError("Identity check returned a non-JSON response") from None


async def fetch_github_login(
    token: str,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Return the GitHub login that *token* belongs to.

    Raises:
        AuthError: The token was rejected or the response had no login.
        ConnectionError_: GitHub could not be reached.
    """
    data = await _get_json(
        GITHUB_USER_URL,
        {"Authorization": f"Bearer {token}", "X-GitHub-Api-Version": "2022-11-28"},
        timeout,
        transport,
    )
    if not isinstance(data, dict) or not data.get("login"):
        raise AuthError("GitHub user response missing 'login'")
    return str(data["login"])


async def fetch_jira_display_name(
    base_url: str,
    auth_header: str,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Return the display name of the Jira user behind *auth_header*.

    Args:
        base_url: Site URL (PAT) or ``https://api.atlassian.com/ex/jira/{cloudId}``.
        auth_header: Full ``Authorization`` header value.

    Raises:
        AuthError: The credential was rejected.
        ConnectionError_: The site could not be reached.
    """
    data = await _get_json(
        f"{base_url.rstrip('/')}/rest/api/3/myself",
        {"Authorization": auth_header},
        timeout,
        transport,
    )
    if not isinstance(data, dict):
        raise AuthError("Jira user response was not an object")
    return str(data.get("displayName") or data.get("emailAddress") or "unknown user")
