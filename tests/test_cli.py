"""Smoke tests for the CLI.

These tests verify CLI wiring without network access or external tools;
the build drivers are patched where a command would start real work.
"""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from tinylinux import __version__
from tinylinux.cli import app
from tinylinux.types import Architecture, ConfigUpdateResult, ConfigUpdateStatus

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point every path and the database at a temp directory."""
    monkeypatch.setenv("TINYLINUX_REPO_ROOT", str(tmp_path))
    monkeypatch.setenv("TINYLINUX_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("TINYLINUX_DB_URL", "sqlite:///:memory:")
    monkeypatch.delenv("SOURCE_DATE_EPOCH", raising=False)


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "tinylinux" in result.stdout
        assert "config-update" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_runs_build(self) -> None:
        """CLI with no args should run the full build."""
        with patch("tinylinux.cli._run_build") as mock_build:
            result = runner.invoke(app, [])
        assert result.exit_code == 0
        mock_build.assert_called_once_with(None)


class TestCLIBuild:
    """Test CLI build command."""

    def test_unknown_arch_exits_one(self) -> None:
        """An unsupported architecture should exit 1."""
        result = runner.invoke(app, ["build", "--arch", "mips"])
        assert result.exit_code == 1
        assert "Unsupported architecture" in result.stdout

    def test_build_failure_exits_one(self) -> None:
        """Stage failures should exit 1 with a message."""
        from tinylinux.runner import CommandError

        with patch(
            "tinylinux.pipeline.run_build",
            side_effect=CommandError("make failed", exit_code=2),
        ):
            result = runner.invoke(app, ["build", "-a", "x86_64"])
        assert result.exit_code == 1
        assert "Build failed" in result.stdout

    def test_arch_passed_through(self) -> None:
        """Repeated --arch options should reach the driver."""
        with patch("tinylinux.pipeline.run_build", return_value=[]) as mock_run:
            result = runner.invoke(app, ["build", "-a", "aarch64", "-a", "x86_64"])
        assert result.exit_code == 0
        assert mock_run.call_args.kwargs["architectures"] == ["aarch64", "x86_64"]


class TestCLIConfigUpdate:
    """Test CLI config-update command."""

    def test_tolerated_failure_exits_zero(self) -> None:
        """Tolerated failures should still exit 0."""
        results = [
            ConfigUpdateResult(
                arch=Architecture.X86_64,
                status=ConfigUpdateStatus.FAILED_TOLERATED,
                message="oldconfig failed",
                code="command_failed",
            )
        ]
        with patch("tinylinux.pipeline.run_config_update", return_value=results):
            result = runner.invoke(app, ["config-update", "--arch", "x86_64"])
        assert result.exit_code == 0
        assert "tolerated" in result.stdout

    def test_json_output(self) -> None:
        """--json should print per-architecture results."""
        results = [
            ConfigUpdateResult(
                arch=Architecture.AARCH64,
                status=ConfigUpdateStatus.SUCCEEDED,
                message="Updated",
            )
        ]
        with patch("tinylinux.pipeline.run_config_update", return_value=results):
            result = runner.invoke(app, ["config-update", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data == [
            {"arch": "aarch64", "status": "succeeded", "message": "Updated", "code": None}
        ]

    def test_unknown_arch_exits_one(self) -> None:
        """An unsupported architecture is a usage error."""
        result = runner.invoke(app, ["config-update", "--arch", "mips"])
        assert result.exit_code == 1


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command(self, tmp_path) -> None:
        """CLI config should show configuration sections."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Paths:" in result.stdout
        assert "Operational:" in result.stdout
        assert "Kernel:" in result.stdout
        assert "(wall clock)" in result.stdout

    def test_config_json(self, tmp_path) -> None:
        """CLI config --json should output valid JSON."""
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["repo_root"] == str(tmp_path)
        assert data["db_url"] == "sqlite:///:memory:"


class TestCLISources:
    """Test CLI sources command."""

    def test_empty(self) -> None:
        """No records should print a hint."""
        result = runner.invoke(app, ["sources"])
        assert result.exit_code == 0
        assert "No sources downloaded" in result.stdout

    def test_empty_json(self) -> None:
        """No records should print an empty JSON list."""
        result = runner.invoke(app, ["sources", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []
