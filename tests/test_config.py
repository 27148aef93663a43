"""Tests for prodbeam.config: directory layout, env overrides, OAuth app settings."""

from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from prodbeam.config import (
    DEFAULT_GITHUB_CLIENT_ID,
    DEFAULT_JIRA_CALLBACK_PORT,
    DEFAULT_JIRA_CLIENT_ID,
    _atomic_write,
    credentials_path,
    ensure_config_dir,
    github_token_from_env,
    jira_credentials_from_env,
    load_app_config,
    resolve_config_dir,
)
from prodbeam.exceptions import ConfigError


# -------------------------------------------------------------------------
# Directory layout
# -------------------------------------------------------------------------


class TestConfigDir:
    def test_prodbeam_home_override(self, tmp_path: Path) -> None:
        env = {"PRODBEAM_HOME": str(tmp_path / "custom")}
        assert resolve_config_dir(env) == tmp_path / "custom"

    def test_defaults_to_home_dot_prodbeam(self) -> None:
        assert resolve_config_dir({}) == Path.home() / ".prodbeam"

    def test_resolve_does_not_create(self, tmp_path: Path) -> None:
        env = {"PRODBEAM_HOME": str(tmp_path / "lazy")}
        resolve_config_dir(env)
        assert not (tmp_path / "lazy").exists()

    def test_ensure_creates_owner_only(self, tmp_path: Path) -> None:
        env = {"PRODBEAM_HOME": str(tmp_path / "secure")}
        path = ensure_config_dir(env)
        assert path.is_dir()
        assert stat.S_IMODE(path.stat().st_mode) == 0o700

    def test_ensure_tightens_existing_dir(self, tmp_path: Path) -> None:
        existing = tmp_path / "loose"
        existing.mkdir(mode=0o755)
        os.chmod(existing, 0o755)
        ensure_config_dir({"PRODBEAM_HOME": str(existing)})
        assert stat.S_IMODE(existing.stat().st_mode) == 0o700

    def test_credentials_path(self, tmp_path: Path) -> None:
        env = {"PRODBEAM_HOME": str(tmp_path)}
        assert credentials_path(env) == tmp_path / "credentials.json"

    def test_reads_process_environment_by_default(self, isolated_config: Path) -> None:
        assert resolve_config_dir() == isolated_config


# -------------------------------------------------------------------------
# Atomic writes
# -------------------------------------------------------------------------


class TestAtomicWrite:
    def test_writes_content(self, tmp_path: Path) -> None:
        target = tmp_path / "out.json"
        _atomic_write(target, '{"a": 1}')
        assert target.read_text() == '{"a": 1}'

    def test_applies_mode(self, tmp_path: Path) -> None:
        target = tmp_path / "secret.json"
        _atomic_write(target, "{}", mode=0o600)
        assert stat.S_IMODE(target.stat().st_mode) == 0o600

    def test_replaces_existing_file(self, tmp_path: Path) -> None:
        target = tmp_path / "out.json"
        target.write_text("old")
        _atomic_write(target, "new")
        assert target.read_text() == "new"

    def test_leaves_no_temp_files(self, tmp_path: Path) -> None:
        target = tmp_path / "out.json"
        _atomic_write(target, "data")
        assert [p.name for p in tmp_path.iterdir()] == ["out.json"]


# -------------------------------------------------------------------------
# Environment overrides
# -------------------------------------------------------------------------


class TestEnvOverrides:
    def test_github_token(self) -> None:
        assert github_token_from_env({"GITHUB_TOKEN": "ghp_x"}) == "ghp_x"

    def test_empty_github_token_is_absent(self) -> None:
        assert github_token_from_env({"GITHUB_TOKEN": ""}) is None
        assert github_token_from_env({}) is None

    def test_jira_triple(self) -> None:
        cred = jira_credentials_from_env(
            {"JIRA_HOST": "acme.atlassian.net", "JIRA_EMAIL": "a@b.c", "JIRA_API_TOKEN": "tok"}
        )
        assert cred is not None
        assert cred.host == "acme.atlassian.net"
        assert cred.email == "a@b.c"
        assert cred.api_token == "tok"

    @pytest.mark.parametrize("missing", ["JIRA_HOST", "JIRA_EMAIL", "JIRA_API_TOKEN"])
    def test_partial_jira_triple_is_ignored(self, missing: str) -> None:
        env = {"JIRA_HOST": "acme.atlassian.net", "JIRA_EMAIL": "a@b.c", "JIRA_API_TOKEN": "tok"}
        env[missing] = ""
        assert jira_credentials_from_env(env) is None


# -------------------------------------------------------------------------
# OAuth app settings
# -------------------------------------------------------------------------


class TestLoadAppConfig:
    def test_defaults(self) -> None:
        config = load_app_config({})
        assert config.github_client_id == DEFAULT_GITHUB_CLIENT_ID
        assert config.jira_client_id == DEFAULT_JIRA_CLIENT_ID
        assert config.jira_client_secret is None
        assert config.jira_callback_port == DEFAULT_JIRA_CALLBACK_PORT
        assert config.jira_redirect_uri == "http://localhost:19274/callback"
        assert "offline_access" in config.jira_scopes
        assert "repo" in config.github_scopes

    def test_overrides(self) -> None:
        config = load_app_config(
            {
                "PRODBEAM_GITHUB_CLIENT_ID": "gh-id",
                "PRODBEAM_JIRA_CLIENT_ID": "jira-id",
                "PRODBEAM_JIRA_CLIENT_SECRET": "shh",
                "PRODBEAM_JIRA_CALLBACK_PORT": "8123",
            }
        )
        assert config.github_client_id == "gh-id"
        assert config.jira_client_id == "jira-id"
        assert config.jira_client_secret == "shh"
        assert config.jira_redirect_uri == "http://localhost:8123/callback"

    def test_non_numeric_port(self) -> None:
        with pytest.raises(ConfigError, match="must be an integer"):
            load_app_config({"PRODBEAM_JIRA_CALLBACK_PORT": "abc"})

    def test_out_of_range_port(self) -> None:
        with pytest.raises(ConfigError, match="out of range"):
            load_app_config({"PRODBEAM_JIRA_CALLBACK_PORT": "70000"})

    def test_scope_lists_are_copies(self) -> None:
        first = load_app_config({})
        first.github_scopes.append("admin:org")
        assert "admin:org" not in load_app_config({}).github_scopes
