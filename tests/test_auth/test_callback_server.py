"""Tests for the loopback OAuth callback listener.

These bind a real socket on ``127.0.0.1`` (port ``0``) and talk to it with
httpx, so they exercise the actual HTTP handling.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from prodbeam.auth.callback_server import (
    CallbackListener,
    error_page,
    wait_for_authorization_code,
)
from prodbeam.exceptions import (
    CallbackTimeoutError,
    OAuthCallbackError,
    OAuthProtocolError,
    OAuthStateMismatchError,
    PortInUseError,
)

STATE = "a" * 32


def _url(port: int, path: str) -> str:
    return f"http://127.0.0.1:{port}{path}"


async def _get(port: int, path: str) -> httpx.Response:
    async with httpx.AsyncClient(trust_env=False, timeout=5.0) as client:
        return await client.get(_url(port, path))


# -------------------------------------------------------------------------
# Successful callback
# -------------------------------------------------------------------------


class TestSuccess:
    @pytest.mark.asyncio
    async def test_returns_code(self) -> None:
        async with CallbackListener(0, STATE) as listener:
            waiter = asyncio.create_task(listener.wait_for_code(timeout=5))
            response = await _get(listener.port, f"/callback?code=auth-code&state={STATE}")
            code = await waiter

        assert code == "auth-code"
        assert response.status_code == 200
        assert "Authorization complete" in response.text
        assert response.headers["content-type"].startswith("text/html")

    @pytest.mark.asyncio
    async def test_other_paths_are_404_and_listener_keeps_waiting(self) -> None:
        async with CallbackListener(0, STATE) as listener:
            waiter = asyncio.create_task(listener.wait_for_code(timeout=5))
            not_found = await _get(listener.port, "/favicon.ico")
            assert not waiter.done()
            await _get(listener.port, f"/callback?code=late&state={STATE}")
            code = await waiter

        assert not_found.status_code == 404
        assert code == "late"

    @pytest.mark.asyncio
    async def test_port_reports_bound_port(self) -> None:
        async with CallbackListener(0, STATE) as listener:
            assert listener.port > 0

    @pytest.mark.asyncio
    async def test_listener_closed_after_code(self) -> None:
        async with CallbackListener(0, STATE) as listener:
            port = listener.port
            waiter = asyncio.create_task(listener.wait_for_code(timeout=5))
            await _get(port, f"/callback?code=c&state={STATE}")
            await waiter
            with pytest.raises(httpx.ConnectError):
                await _get(port, "/callback")


# -------------------------------------------------------------------------
# Failed callbacks
# -------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_provider_error(self) -> None:
        async with CallbackListener(0, STATE) as listener:
            waiter = asyncio.create_task(listener.wait_for_code(timeout=5))
            response = await _get(
                listener.port,
                f"/callback?error=access_denied&error_description=User+denied&state={STATE}",
            )
            with pytest.raises(OAuthCallbackError) as exc_info:
                await waiter

        assert exc_info.value.error == "access_denied"
        assert "access_denied" in str(exc_info.value)
        assert "User denied" in response.text

    @pytest.mark.asyncio
    async def test_state_mismatch(self) -> None:
        async with CallbackListener(0, STATE) as listener:
            waiter = asyncio.create_task(listener.wait_for_code(timeout=5))
            response = await _get(listener.port, "/callback?code=stolen&state=forged")
            with pytest.raises(OAuthStateMismatchError):
                await waiter

        assert "State mismatch" in response.text

    @pytest.mark.asyncio
    async def test_missing_state_is_mismatch(self) -> None:
        async with CallbackListener(0, STATE) as listener:
            waiter = asyncio.create_task(listener.wait_for_code(timeout=5))
            await _get(listener.port, "/callback?code=abc")
            with pytest.raises(OAuthStateMismatchError):
                await waiter

    @pytest.mark.asyncio
    async def test_non_ascii_state_is_mismatch(self) -> None:
        async with CallbackListener(0, STATE) as listener:
            waiter = asyncio.create_task(listener.wait_for_code(timeout=5))
            response = await _get(listener.port, "/callback?code=abc&state=%C3%A9t%C3%A9")
            with pytest.raises(OAuthStateMismatchError):
                await waiter

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_code(self) -> None:
        async with CallbackListener(0, STATE) as listener:
            waiter = asyncio.create_task(listener.wait_for_code(timeout=5))
            await _get(listener.port, f"/callback?state={STATE}")
            with pytest.raises(OAuthProtocolError, match="No authorization code"):
                await waiter

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        async with CallbackListener(0, STATE) as listener:
            port = listener.port
            with pytest.raises(CallbackTimeoutError):
                await listener.wait_for_code(timeout=0.05)
            with pytest.raises(httpx.ConnectError):
                await _get(port, "/callback")

    @pytest.mark.asyncio
    async def test_cancelled_wait_releases_port(self) -> None:
        listener = CallbackListener(0, STATE)
        await listener.start()
        port = listener.port
        waiter = asyncio.create_task(listener.wait_for_code(timeout=5))
        await asyncio.sleep(0.05)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        with pytest.raises(httpx.ConnectError):
            await _get(port, "/callback")
        async with CallbackListener(port, STATE) as rebound:
            assert rebound.port == port

    @pytest.mark.asyncio
    async def test_port_in_use(self) -> None:
        async with CallbackListener(0, STATE) as first:
            second = CallbackListener(first.port, STATE)
            with pytest.raises(PortInUseError) as exc_info:
                await second.start()
        assert exc_info.value.port == first.port

    def test_error_page_escapes_provider_text(self) -> None:
        page = error_page("<script>alert(1)</script>")
        assert "<script>" not in page
        assert "&lt;script&gt;" in page


# -------------------------------------------------------------------------
# One-shot helper
# -------------------------------------------------------------------------


class TestWaitForAuthorizationCode:
    @pytest.mark.asyncio
    async def test_calls_on_listening_with_port(self) -> None:
        requests: list[asyncio.Task[httpx.Response]] = []

        def on_listening(port: int) -> None:
            requests.append(
                asyncio.get_running_loop().create_task(
                    _get(port, f"/callback?code=from-helper&state={STATE}")
                )
            )

        code = await wait_for_authorization_code(0, STATE, timeout=5, on_listening=on_listening)

        assert code == "from-helper"
        assert (await requests[0]).status_code == 200

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        with pytest.raises(CallbackTimeoutError):
            await wait_for_authorization_code(0, STATE, timeout=0.05)
