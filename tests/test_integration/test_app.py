"""Tests for the root Typer app: global flags and crash logging."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from prodbeam import __version__
from prodbeam.app import _write_crash_log, app


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestGlobalFlags:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.strip() == f"prodbeam {__version__}"


class TestCrashLog:
    def test_written_under_config_dir(self, isolated_config: Path) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError as exc:
            # The traceback is read from the exception being handled.
            log_path = Path(_write_crash_log(exc))

        assert log_path.parent == isolated_config / "logs"
        assert "RuntimeError: boom" in log_path.read_text()

