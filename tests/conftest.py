"""Shared test fixtures for prodbeam.

Provides isolated config directories, synthetic environments, fixed
clocks, token records, and a CLI runner. These fixtures are discovered by
pytest and available to all test modules without explicit imports.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest

from prodbeam.auth.credential_store import CredentialStore
from prodbeam.models import GitHubOAuthTokens, JiraOAuthTokens
from prodbeam.output import OutputFormat, OutputManager, reset_output, set_output

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

_PRODBEAM_ENV_VARS = [
    "PRODBEAM_HOME",
    "GITHUB_TOKEN",
    "JIRA_HOST",
    "JIRA_EMAIL",
    "JIRA_API_TOKEN",
    "PRODBEAM_GITHUB_CLIENT_ID",
    "PRODBEAM_JIRA_CLIENT_ID",
    "PRODBEAM_JIRA_CLIENT_SECRET",
    "PRODBEAM_JIRA_CALLBACK_PORT",
]


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time; CliRunner swaps those streams per invocation.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point ``PRODBEAM_HOME`` at a temp dir and clear credential env vars.

    Returns:
        The config directory (not yet created).
    """
    for var in _PRODBEAM_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    config_dir = tmp_path / "prodbeam-home"
    monkeypatch.setenv("PRODBEAM_HOME", str(config_dir))
    monkeypatch.chdir(tmp_path)
    return config_dir


@pytest.fixture
def env(tmp_path: Path) -> dict[str, str]:
    """A synthetic environment whose config dir lives under tmp_path."""
    return {"PRODBEAM_HOME": str(tmp_path / "home")}


@pytest.fixture
def store(env: dict[str, str]) -> CredentialStore:
    return CredentialStore(env=env)


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """A clock frozen at :data:`NOW`."""
    return lambda: NOW


@pytest.fixture
def now() -> datetime:
    """The instant :func:`clock` is frozen at."""
    return NOW


# ---------------------------------------------------------------------------
# Token records
# ---------------------------------------------------------------------------


@pytest.fixture
def make_github_tokens() -> Callable[..., GitHubOAuthTokens]:
    """Factory for GitHub OAuth records relative to :data:`NOW`."""

    def _make(
        access_in: timedelta = timedelta(hours=8),
        refresh_in: timedelta = timedelta(days=180),
        access_token: str = "ghu_stored",
        refresh_token: str = "ghr_stored",
    ) -> GitHubOAuthTokens:
        return GitHubOAuthTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expires_at=NOW + access_in,
            refresh_token_expires_at=NOW + refresh_in,
            scopes=["repo", "read:org"],
        )

    return _make


@pytest.fixture
def make_jira_tokens() -> Callable[..., JiraOAuthTokens]:
    """Factory for Jira OAuth records relative to :data:`NOW`."""

    def _make(
        access_in: timedelta = timedelta(hours=1),
        refresh_in: timedelta = timedelta(days=90),
        access_token: str = "jira_access",
        refresh_token: str = "jira_refresh",
    ) -> JiraOAuthTokens:
        return JiraOAuthTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expires_at=NOW + access_in,
            refresh_token_expires_at=NOW + refresh_in,
            scopes=["read:jira-work", "offline_access"],
            cloud_id="cloud-123",
            cloud_url="https://api.atlassian.com/ex/jira/cloud-123",
        )

    return _make


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
