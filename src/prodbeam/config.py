"""Configuration: config directory, environment overrides, OAuth app settings.

This module handles everything prodbeam reads from its surroundings:

* **Directory layout** -- ``$PRODBEAM_HOME`` or ``~/.prodbeam/``, created
  owner-only (``0o700``). See :func:`resolve_config_dir` and
  :func:`ensure_config_dir`.
* **Environment overrides** -- :func:`github_token_from_env` and
  :func:`jira_credentials_from_env` read the PAT override variables.
* **OAuth app registration** -- :func:`load_app_config` builds the
  :class:`~prodbeam.models.OAuthAppConfig` used by the login flows and by
  silent refresh.

Every function takes an optional ``env`` mapping instead of reading
``os.environ`` directly so that tests can supply a synthetic environment
without touching process state.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`).
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Optional

from prodbeam.exceptions import ConfigError
from prodbeam.models import JiraPATCredential, OAuthAppConfig

Environment = Mapping[str, str]

_DEFAULT_DIR_NAME = ".prodbeam"
_CREDENTIALS_FILENAME = "credentials.json"

ENV_HOME = "PRODBEAM_HOME"
ENV_GITHUB_TOKEN = "GITHUB_TOKEN"
ENV_JIRA_HOST = "JIRA_HOST"
ENV_JIRA_EMAIL = "JIRA_EMAIL"
ENV_JIRA_API_TOKEN = "JIRA_API_TOKEN"
ENV_GITHUB_CLIENT_ID = "PRODBEAM_GITHUB_CLIENT_ID"
ENV_JIRA_CLIENT_ID = "PRODBEAM_JIRA_CLIENT_ID"
ENV_JIRA_CLIENT_SECRET = "PRODBEAM_JIRA_CLIENT_SECRET"
ENV_JIRA_CALLBACK_PORT = "PRODBEAM_JIRA_CALLBACK_PORT"

# Public identifiers of the registered OAuth apps.
DEFAULT_GITHUB_CLIENT_ID = "Iv23liR2346KoRqEUAyK"
DEFAULT_JIRA_CLIENT_ID = "CpFTSfXTqJc5JYuMYxsf0KXgbCs8Aeg6"
DEFAULT_JIRA_CALLBACK_PORT = 19274

GITHUB_SCOPES = ["repo", "read:org", "read:user"]

JIRA_SCOPES = [
    # Classic scopes (Jira Platform)
    "read:jira-work",
    "read:jira-user",
    "offline_access",
    # Granular scopes -- Jira Platform
    "read:issue:jira",
    "read:issue-details:jira",
    "read:issue-status:jira",
    "read:issue-type:jira",
    "read:comment:jira",
    "read:user:jira",
    "read:email-address:jira",
    "read:label:jira",
    "read:project:jira",
    "read:project.component:jira",
    "read:project-type:jira",
    "read:jql:jira",
    "read:dashboard:jira",
    "read:deployment-info:jira",
    "read:dev-info:jira",
    # Granular scopes -- Jira Software
    "read:board-scope:jira-software",
    "read:sprint:jira-software",
    "read:epic:jira-software",
    "read:issue:jira-software",
    "read:deployment:jira-software",
]


def _environ(env: Optional[Environment]) -> Environment:
    return os.environ if env is None else env


# --- Directory layout ---


def resolve_config_dir(env: Optional[Environment] = None) -> Path:
    """Return the prodbeam config directory without creating it.

    Resolution order: ``$PRODBEAM_HOME``, then ``~/.prodbeam``.

    Args:
        env: Environment mapping (defaults to ``os.environ``).

    Returns:
        Absolute path to the configuration directory.
    """
    override = _environ(env).get(ENV_HOME, "")
    if override:
        return Path(override).expanduser()
    return Path.home() / _DEFAULT_DIR_NAME


def ensure_config_dir(env: Optional[Environment] = None) -> Path:
    """Return the config directory, creating it with ``0o700`` permissions.

    An existing directory is re-chmodded to ``0o700`` so that secrets
    written later are never reachable by other users.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    path = resolve_config_dir(env)
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    os.chmod(path, 0o700)
    return path


def credentials_path(env: Optional[Environment] = None) -> Path:
    """Path to ``credentials.json`` inside the config directory."""
    return resolve_config_dir(env) / _CREDENTIALS_FILENAME


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is
    given it is applied to the temp file before any content is written, so
    the secret is never readable with looser permissions.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Environment overrides ---


def github_token_from_env(env: Optional[Environment] = None) -> Optional[str]:
    """Return ``$GITHUB_TOKEN`` when set and non-empty."""
    return _environ(env).get(ENV_GITHUB_TOKEN) or None


def jira_credentials_from_env(env: Optional[Environment] = None) -> Optional[JiraPATCredential]:
    """Return the Jira PAT override, or ``None`` unless all three variables are set.

    ``JIRA_HOST``, ``JIRA_EMAIL`` and ``JIRA_API_TOKEN`` must all be present
    and non-empty; a partial set is ignored entirely.
    """
    values = _environ(env)
    host = values.get(ENV_JIRA_HOST, "")
    email = values.get(ENV_JIRA_EMAIL, "")
    api_token = values.get(ENV_JIRA_API_TOKEN, "")
    if not (host and email and api_token):
        return None
    return JiraPATCredential(host=host, email=email, api_token=api_token)


# --- OAuth app registration ---


def load_app_config(env: Optional[Environment] = None) -> OAuthAppConfig:
    """Build the OAuth application settings, applying environment overrides.

    Returns:
        The resolved :class:`~prodbeam.models.OAuthAppConfig`.

    Raises:
        ConfigError: If ``PRODBEAM_JIRA_CALLBACK_PORT`` is not a valid port.
    """
    values = _environ(env)

    port_raw = values.get(ENV_JIRA_CALLBACK_PORT, "")
    port = DEFAULT_JIRA_CALLBACK_PORT
    if port_raw:
        try:
            port = int(port_raw)
        except ValueError:
            raise ConfigError(
                f"{ENV_JIRA_CALLBACK_PORT} must be an integer, got {port_raw!r}"
            ) from None
        if not 0 < port < 65536:
            raise ConfigError(f"{ENV_JIRA_CALLBACK_PORT} out of range: {port}")

    return OAuthAppConfig(
        github_client_id=values.get(ENV_GITHUB_CLIENT_ID) or DEFAULT_GITHUB_CLIENT_ID,
        github_scopes=list(GITHUB_SCOPES),
        jira_client_id=values.get(ENV_JIRA_CLIENT_ID) or DEFAULT_JIRA_CLIENT_ID,
        jira_client_secret=values.get(ENV_JIRA_CLIENT_SECRET) or None,
        jira_scopes=list(JIRA_SCOPES),
        jira_callback_port=port,
    )
