"""Persistent credential store: one ``credentials.json`` holding every service.

The file lives in the prodbeam config directory
(``~/.prodbeam/credentials.json`` or ``$PRODBEAM_HOME/credentials.json``)
and maps service names to records::

    {
      "github": {"method": "oauth", "accessToken": "...", ...},
      "jira": {"method": "pat", "host": "acme.atlassian.net", ...}
    }

The ``method`` field selects the record shape (``"pat"`` or ``"oauth"``);
records without one were written by older releases and are read as PAT.

Every write re-reads the whole file, replaces one service's entry, and
writes the result atomically via :func:`~prodbeam.config._atomic_write`
with ``0o600`` permissions. Entries for other services are carried over
verbatim, including ones this version cannot parse.

Reads never raise: a missing, unreadable, or malformed file (or entry) is
reported as absent so that callers can fall through to other credential
sources.

See Also:
    :class:`~prodbeam.auth.resolver.CredentialResolver` -- reads and refreshes
    records; :mod:`prodbeam.auth.status` only reads them.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from prodbeam.config import Environment, _atomic_write, credentials_path, ensure_config_dir
from prodbeam.models import (
    CredentialRecord,
    GitHubOAuthTokens,
    GitHubPATCredential,
    JiraOAuthTokens,
    JiraPATCredential,
    OAuthTokens,
    PATCredential,
    Service,
)

logger = logging.getLogger(__name__)

_RECORD_TYPES: dict[tuple[Service, str], type[CredentialRecord]] = {
    (Service.GITHUB, "pat"): GitHubPATCredential,
    (Service.GITHUB, "oauth"): GitHubOAuthTokens,
    (Service.JIRA, "pat"): JiraPATCredential,
    (Service.JIRA, "oauth"): JiraOAuthTokens,
}


class CredentialStore:
    """Read/write per-service credential records in a single JSON file.

    Args:
        path: Explicit file path. Defaults to
            :func:`~prodbeam.config.credentials_path` for *env*.
        env: Environment mapping used to locate the config directory.

    Example::

        store = CredentialStore()
        store.write("github", GitHubPATCredential(token="ghp_x"))
        record = store.read("github")
        assert record.token == "ghp_x"
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        env: Optional[Environment] = None,
    ) -> None:
        self._env = env
        self._default_location = path is None
        self._path = credentials_path(env) if path is None else path

    @property
    def path(self) -> Path:
        """The filesystem path to the credentials file."""
        return self._path

    def read(self, service: Union[Service, str]) -> Optional[CredentialRecord]:
        """Load one service's record.

        Args:
            service: ``"github"`` or ``"jira"``.

        Returns:
            The typed record, or ``None`` if the file or entry is missing or
            cannot be parsed.
        """
        service = Service(service)
        raw = self._read_raw().get(service.value)
        if not isinstance(raw, dict):
            return None

        method = raw.get("method", "pat")
        record_type = _RECORD_TYPES.get((service, method))
        if record_type is None:
            logger.debug("Ignoring %s credential with unknown method %r", service.value, method)
            return None
        try:
            return record_type.model_validate(raw)
        except ValidationError as exc:
            logger.debug("Ignoring malformed %s credential: %s", service.value, exc.error_count())
            return None

    def read_oauth(self, service: Union[Service, str]) -> Optional[OAuthTokens]:
        """Return the service's record only if it is an OAuth record."""
        record = self.read(service)
        if isinstance(record, (GitHubOAuthTokens, JiraOAuthTokens)):
            return record
        return None

    def read_pat(self, service: Union[Service, str]) -> Optional[PATCredential]:
        """Return the service's record only if it is a PAT record."""
        record = self.read(service)
        if isinstance(record, (GitHubPATCredential, JiraPATCredential)):
            return record
        return None

    def write(self, service: Union[Service, str], record: CredentialRecord) -> None:
        """Upsert one service's record, preserving every other entry.

        Args:
            service: ``"github"`` or ``"jira"``.
            record: The record to persist.

        Raises:
            OSError: If the file cannot be written.
        """
        service = Service(service)
        data = self._read_raw()
        data[service.value] = record.model_dump(mode="json", by_alias=True)
        self._write_raw(data)
        logger.debug("Stored %s credential (method=%s)", service.value, record.method)

    def delete(self, service: Union[Service, str]) -> bool:
        """Remove one service's record, preserving the others.

        Returns:
            ``True`` if an entry was removed, ``False`` if none existed.
        """
        service = Service(service)
        data = self._read_raw()
        if service.value not in data:
            return False
        del data[service.value]
        self._write_raw(data)
        logger.debug("Deleted %s credential", service.value)
        return True

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _read_raw(self) -> dict[str, Any]:
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable credentials file %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring credentials file %s: not a JSON object", self._path)
            return {}
        return data

    def _write_raw(self, data: dict[str, Any]) -> None:
        if self._default_location:
            ensure_config_dir(self._env)
        else:
            self._path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        text = json.dumps(data, indent=2) + "\n"
        _atomic_write(self._path, text, mode=0o600)
