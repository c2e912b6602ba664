"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


@pytest.fixture
def cli_env(tmp_path):
    """Environment pointing every store at a temporary directory."""
    env = dict(os.environ)
    env.update({
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'progress.db'}",
        "LOCAL_STORAGE_PATH": str(tmp_path / "local_storage.db"),
        "CONTENT_API_URL": "http://127.0.0.1:9",
        "PROGRESS_API_URL": "http://127.0.0.1:9",
        "COLUMNS": "200",
    })
    return env


def run_cli_command(command: str, env: dict | None = None, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        command: The command to run (after 'python -m helix.cli.main')
        env: Environment for the subprocess
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    full_command = f"{sys.executable} -m helix.cli.main {command}"

    result = subprocess.run(
        full_command,
        shell=True,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
        env=env,
    )

    return result.returncode, result.stdout, result.stderr


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "helix" in stdout.lower()
        assert "Commands" in stdout

    @pytest.mark.parametrize("command", ["play", "status", "drain", "migrate", "reset", "init-db"])
    def test_command_help(self, command):
        """Each command's help should work."""
        code, stdout, stderr = run_cli_command(f"{command} --help")

        assert code == 0, f"{command} help failed: {stderr}"


class TestCLIStore:
    """Test commands against a temporary store."""

    def test_init_db(self, cli_env):
        code, stdout, stderr = run_cli_command("init-db", cli_env)

        assert code == 0, f"init-db failed: {stderr}"
        assert "initialized" in stdout

    def test_status_without_progress(self, cli_env):
        """Status for an owner with no local state should explain, not crash."""
        code, stdout, stderr = run_cli_command("status --user user-1", cli_env)

        assert code == 0, f"Status failed: {stderr}"
        assert "No local progress" in stdout

    def test_drain_with_empty_queue(self, cli_env):
        code, stdout, stderr = run_cli_command("drain", cli_env)

        assert code == 0, f"Drain failed: {stderr}"
        assert "Wrote 0 updates" in stdout

    def test_reset_with_confirmation_flag(self, cli_env):
        code, stdout, stderr = run_cli_command("reset --user user-1 --yes", cli_env)

        assert code == 0, f"Reset failed: {stderr}"
        assert "Reset 0 stored stitches" in stdout

    def test_migrate_rejects_non_anonymous_source(self, cli_env):
        code, stdout, stderr = run_cli_command("migrate user-7 user-42", cli_env)

        assert code == 1
        assert "Migration failed" in stdout

    def test_migrate_empty_anonymous_owner(self, cli_env):
        code, stdout, stderr = run_cli_command("migrate anonymous-1-abc user-42", cli_env)

        assert code == 0, f"Migrate failed: {stderr}"
        assert "Migrated 0 stitches" in stdout
