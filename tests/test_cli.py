"""
Tests for the CLI module.

Tests the command-line interface using Click's testing utilities against
a real database in a temporary configuration directory.
"""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from contact_sync import __version__
from contact_sync.cli import DEFAULT_CONFIG_DIR, cli, get_config_dir, read_changes_file

JANE = {"firstName": "Jane", "lastName": "Doe", "email": "jane@example.com"}


@pytest.fixture(autouse=True)
def quiet_environment(monkeypatch):
    """Keep INFO logging off the console and ignore the caller's config."""
    monkeypatch.setenv("CONTACT_SYNC_LOG_LEVEL", "WARNING")
    monkeypatch.delenv("CONTACT_SYNC_DEBUG", raising=False)
    monkeypatch.delenv("CONTACT_SYNC_CONFIG_FILE", raising=False)
    monkeypatch.delenv("CONTACT_SYNC_CONFIG_DIR", raising=False)


@pytest.fixture
def runner():
    """Create a CLI runner."""
    return CliRunner()


@pytest.fixture
def invoke(runner, tmp_path):
    """Invoke the CLI with tmp_path as configuration directory."""

    def _invoke(*args):
        return runner.invoke(cli, ["--config-dir", str(tmp_path), *args])

    return _invoke


@pytest.fixture
def changes_file(tmp_path):
    """Write a list of changes to a JSON file and return its path."""

    def _write(changes, name="changes.json"):
        path = tmp_path / name
        path.write_text(json.dumps(changes))
        return str(path)

    return _write


def push_json(invoke, changes_file, changes, user="user-1"):
    """Push a batch with --json and return the decoded result."""
    result = invoke("push", changes_file(changes), "--user", user, "--json")
    return result, json.loads(result.output)


class TestHelperFunctions:
    """Tests for CLI helper functions."""

    def test_get_config_dir_with_custom_path(self, tmp_path):
        """Test get_config_dir returns custom path when provided."""
        assert get_config_dir(str(tmp_path)) == tmp_path.resolve()

    def test_get_config_dir_with_none_returns_default(self):
        """Test get_config_dir returns the default directory when None."""
        assert get_config_dir(None) == DEFAULT_CONFIG_DIR.resolve()

    def test_read_changes_file_list(self, changes_file):
        """Test a file holding a plain list."""
        path = changes_file([{"operation": "DELETE", "contactId": "c1"}])

        assert read_changes_file(Path(path)) == [
            {"operation": "DELETE", "contactId": "c1"}
        ]

    def test_read_changes_file_yaml_object(self, tmp_path):
        """Test a YAML file with a changes key."""
        path = tmp_path / "changes.yaml"
        path.write_text("changes:\n  - operation: DELETE\n    contactId: c1\n")

        assert read_changes_file(path) == [{"operation": "DELETE", "contactId": "c1"}]

    def test_read_changes_file_rejects_scalar(self, tmp_path):
        """Test that other content raises a ClickException."""
        import click

        path = tmp_path / "changes.yaml"
        path.write_text("just a string\n")

        with pytest.raises(click.ClickException, match="list of changes"):
            read_changes_file(path)


class TestCliGroup:
    """Tests for the main CLI group."""

    def test_cli_help(self, runner):
        """Test that CLI shows help."""
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "Offline contact sync and conflict resolution" in result.output
        for command in ("push", "queue", "sweep", "status", "resolve", "changes"):
            assert command in result.output

    def test_cli_version(self, runner):
        """Test that CLI shows version."""
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    @patch("contact_sync.cli.main.setup_logging")
    def test_cli_verbose_flag(self, mock_setup_logging, invoke):
        """Test that --verbose reaches logging setup."""
        result = invoke("--verbose", "status", "--user", "user-1")

        assert result.exit_code == 0
        assert mock_setup_logging.call_args.kwargs["verbose"] is True

    def test_invalid_config_falls_back_to_defaults(self, invoke, tmp_path):
        """Test that a broken config file only warns."""
        (tmp_path / "config.yaml").write_text("max_retries: zero\n")

        result = invoke("status", "--user", "user-1")

        assert result.exit_code == 0
        assert "Configuration error" in result.output
        assert "Pending changes: 0" in result.output

    def test_db_option_overrides_database(self, runner, tmp_path, changes_file):
        """Test that --db selects another database file."""
        db_path = tmp_path / "other" / "sync.db"

        result = runner.invoke(
            cli,
            [
                "--config-dir",
                str(tmp_path),
                "--db",
                str(db_path),
                "push",
                changes_file([{"operation": "CREATE", "contact": JANE}]),
                "--user",
                "user-1",
            ],
        )

        assert result.exit_code == 0
        assert db_path.exists()
        assert not (tmp_path / "contacts.db").exists()


class TestPushCommand:
    """Tests for the push command."""

    def test_push_success(self, invoke, changes_file, tmp_path):
        """Test a successful batch."""
        result = invoke(
            "push", changes_file([{"operation": "CREATE", "contact": JANE}]), "--user", "user-1"
        )

        assert result.exit_code == 0
        assert "CREATE" in result.output
        assert "Applied:   1" in result.output
        assert "Batch completed successfully." in result.output
        assert (tmp_path / "contacts.db").exists()

    def test_push_with_failures_exits_nonzero(self, invoke, changes_file):
        """Test that a failed change sets exit status 1."""
        result = invoke(
            "push",
            changes_file(
                [
                    {"operation": "CREATE", "contact": JANE},
                    {"operation": "DELETE", "contactId": "nope"},
                ]
            ),
            "--user",
            "user-1",
        )

        assert result.exit_code == 1
        assert "Contact not found" in result.output
        assert "Failed:    1" in result.output
        assert "Batch completed with errors." in result.output

    def test_push_json(self, invoke, changes_file):
        """Test JSON output."""
        result, data = push_json(
            invoke, changes_file, [{"operation": "CREATE", "contact": JANE}]
        )

        assert result.exit_code == 0
        assert data["success"] is True
        assert data["processed"] == 1
        assert data["results"][0]["status"] == "completed"
        assert data["results"][0]["contactId"]

    def test_push_malformed_file(self, invoke, tmp_path):
        """Test that a file without a list of changes is rejected."""
        path = tmp_path / "changes.json"
        path.write_text('{"operation": "CREATE"}')

        result = invoke("push", str(path), "--user", "user-1")

        assert result.exit_code == 1
        assert "list of changes" in result.output

    def test_push_requires_user(self, invoke, changes_file):
        """Test that --user is required."""
        result = invoke("push", changes_file([]))

        assert result.exit_code == 2
        assert "--user" in result.output


class TestQueueAndSweepCommands:
    """Tests for queue and sweep."""

    def test_queue_then_sweep(self, invoke, changes_file):
        """Test the queue and sweep round."""
        queued = invoke(
            "queue", changes_file([{"operation": "CREATE", "contact": JANE}]), "--user", "user-1"
        )

        assert queued.exit_code == 0
        assert "Queued 1 change(s)." in queued.output

        swept = invoke("sweep")

        assert swept.exit_code == 0
        assert "user-1: 1 processed: 1 completed" in swept.output

        again = invoke("sweep")

        assert "No pending changes to process." in again.output

    def test_sweep_single_user(self, invoke, changes_file):
        """Test sweeping one user only."""
        invoke("queue", changes_file([{"operation": "CREATE", "contact": JANE}]), "--user", "alice")
        invoke("queue", changes_file([{"operation": "CREATE", "contact": JANE}]), "--user", "bob")

        result = invoke("sweep", "--user", "alice")

        assert "alice: 1 processed" in result.output
        assert "bob" not in result.output

    def test_queue_invalid_change(self, invoke, changes_file):
        """Test that an invalid change queues nothing."""
        result = invoke(
            "queue",
            changes_file(
                [
                    {"operation": "CREATE", "contact": JANE},
                    {"operation": "DELETE"},
                ]
            ),
            "--user",
            "user-1",
        )

        assert result.exit_code == 1
        assert "Change #1: Contact ID is required for DELETE" in result.output

        status = invoke("status", "--user", "user-1")
        assert "Pending changes: 0" in status.output


class TestStatusCommand:
    """Tests for the status command."""

    def test_status_text(self, invoke, changes_file):
        """Test the human-readable report."""
        invoke(
            "queue", changes_file([{"operation": "DELETE", "contactId": "c1"}]), "--user", "user-1"
        )

        result = invoke("status", "--user", "user-1")

        assert result.exit_code == 0
        assert "=== Sync Status: user-1 ===" in result.output
        assert "Pending changes: 1" in result.output
        assert "DELETE" in result.output

    def test_status_json(self, invoke, changes_file):
        """Test the JSON report."""
        invoke(
            "queue", changes_file([{"operation": "DELETE", "contactId": "c1"}]), "--user", "user-1"
        )

        result = invoke("status", "--user", "user-1", "--json")

        data = json.loads(result.output)
        assert data["pendingChanges"] == 1
        assert data["items"][0]["entityId"] == "c1"
        assert data["conflicts"] == []
        assert data["counts"]["PENDING"] == 1


class TestResolveCommand:
    """Tests for the resolve command."""

    @pytest.fixture
    def conflict_id(self, invoke, changes_file, tmp_path):
        """Create a batch conflict and return its sync log id."""
        (tmp_path / "config.yaml").write_text("default_resolution: local\n")
        _, created = push_json(
            invoke, changes_file, [{"operation": "CREATE", "contact": JANE}]
        )
        contact_id = created["results"][0]["contactId"]

        _, updated = push_json(
            invoke,
            changes_file,
            [
                {
                    "operation": "UPDATE",
                    "contactId": contact_id,
                    "contact": {"firstName": "Janet"},
                }
            ],
        )
        assert updated["results"][0]["status"] == "conflict"
        return updated["results"][0]["syncLogId"]

    def test_resolve_with_strategy(self, invoke, conflict_id):
        """Test resolving with an explicit strategy."""
        result = invoke("resolve", conflict_id, "--user", "user-1", "--strategy", "server")

        assert result.exit_code == 0
        assert "Conflict resolved with 'server' strategy." in result.output
        assert "Contact: Jane Doe" in result.output

    def test_resolve_uses_configured_default(self, invoke, conflict_id):
        """Test that default_resolution applies without --strategy."""
        result = invoke("resolve", conflict_id, "--user", "user-1")

        assert result.exit_code == 0
        assert "'local' strategy" in result.output
        assert "Contact: Janet Doe" in result.output

    def test_resolve_twice(self, invoke, conflict_id):
        """Test that a resolved conflict cannot be resolved again."""
        invoke("resolve", conflict_id, "--user", "user-1", "-s", "merge")

        result = invoke("resolve", conflict_id, "--user", "user-1", "-s", "merge")

        assert result.exit_code == 1
        assert "No conflict data found" in result.output

    def test_resolve_unknown_entry(self, invoke):
        """Test an unknown sync log id."""
        result = invoke("resolve", "nope", "--user", "user-1")

        assert result.exit_code == 1
        assert "Error: Sync log nope not found" in result.output

    def test_resolve_invalid_strategy(self, invoke):
        """Test that click rejects unknown strategies."""
        result = invoke("resolve", "nope", "--user", "user-1", "--strategy", "newest")

        assert result.exit_code == 2


class TestChangesCommand:
    """Tests for the changes command."""

    def test_changes_json(self, invoke, changes_file):
        """Test the change feed as JSON."""
        push_json(invoke, changes_file, [{"operation": "CREATE", "contact": JANE}])

        result = invoke("changes", "--user", "user-1", "--since", "2000-01-01T00:00:00Z", "--json")

        data = json.loads(result.output)
        assert [c["operation"] for c in data["changes"]] == ["CREATE"]
        assert data["changes"][0]["contact"]["firstName"] == "Jane"

    def test_changes_text(self, invoke, changes_file):
        """Test the human-readable feed."""
        push_json(invoke, changes_file, [{"operation": "CREATE", "contact": JANE}])

        result = invoke("changes", "--user", "user-1", "--since", "2000-01-01T00:00:00Z")

        assert "=== 1 change(s) ===" in result.output
        assert "Jane Doe" in result.output

    def test_no_changes(self, invoke):
        """Test an empty feed."""
        result = invoke("changes", "--user", "user-1", "--since", "2999-01-01T00:00:00Z")

        assert result.exit_code == 0
        assert "No changes since the given time." in result.output

    def test_invalid_since(self, invoke):
        """Test that a bad timestamp is reported."""
        result = invoke("changes", "--user", "user-1", "--since", "last tuesday")

        assert result.exit_code == 1
        assert "Invalid timestamp" in result.output


class TestInitConfigCommand:
    """Tests for the init-config command."""

    def test_creates_config(self, invoke, tmp_path):
        """Test that the file is written."""
        result = invoke("init-config")

        assert result.exit_code == 0
        assert "Configuration file created successfully!" in result.output
        assert (tmp_path / "config.yaml").exists()

    def test_refuses_overwrite(self, invoke, tmp_path):
        """Test that an existing file is kept without --force."""
        (tmp_path / "config.yaml").write_text("max_retries: 2\n")

        result = invoke("init-config")

        assert result.exit_code == 1
        assert "already exists" in result.output
        assert (tmp_path / "config.yaml").read_text() == "max_retries: 2\n"

    def test_force_overwrites(self, invoke, tmp_path):
        """Test --force."""
        (tmp_path / "config.yaml").write_text("max_retries: 2\n")

        result = invoke("init-config", "--force")

        assert result.exit_code == 0
        assert "# max_retries: 3" in (tmp_path / "config.yaml").read_text()


class TestDaemonCommands:
    """Tests for the daemon command group."""

    def test_status_stopped(self, invoke):
        """Test status without a PID file."""
        result = invoke("daemon", "status")

        assert result.exit_code == 0
        assert "=== Sweep Daemon Status ===" in result.output
        assert "Stopped" in result.output

    def test_status_running(self, invoke, tmp_path):
        """Test status with a live PID."""
        (tmp_path / "sweep.pid").write_text(str(os.getpid()))

        result = invoke("daemon", "status")

        assert "Running" in result.output
        assert f"Process ID: {os.getpid()}" in result.output

    def test_status_stale_pid(self, invoke, tmp_path):
        """Test status with a PID file of a dead process."""
        (tmp_path / "sweep.pid").write_text("99999999")

        with patch(
            "contact_sync.daemon.scheduler.PIDFileManager.is_process_running",
            return_value=False,
        ):
            result = invoke("daemon", "status")

        assert "Stopped" in result.output
        assert "Stale PID file exists (PID: 99999999)" in result.output

    def test_stop_without_daemon(self, invoke):
        """Test stop when nothing is running."""
        result = invoke("daemon", "stop")

        assert result.exit_code == 0
        assert "No sweep daemon is currently running." in result.output

    def test_start_runs_bounded_sweeps(self, invoke, changes_file, tmp_path):
        """Test a foreground run limited to one cycle."""
        invoke("queue", changes_file([{"operation": "CREATE", "contact": JANE}]), "--user", "user-1")

        result = invoke("daemon", "start", "--interval", "1s", "--max-cycles", "1")

        assert result.exit_code == 0
        assert "Starting sweep daemon with 1s interval..." in result.output
        assert "Sweep daemon stopped gracefully." in result.output
        assert "1 completed" in result.output
        assert not (tmp_path / "sweep.pid").exists()

    def test_start_invalid_interval(self, invoke):
        """Test that a bad interval is rejected."""
        result = invoke("daemon", "start", "--interval", "often")

        assert result.exit_code == 1
        assert "Invalid interval format" in result.output

    def test_start_refuses_second_daemon(self, invoke, tmp_path):
        """Test that start fails while another daemon runs."""
        (tmp_path / "sweep.pid").write_text(str(os.getpid()))

        result = invoke("daemon", "start", "--max-cycles", "1")

        assert result.exit_code == 1
        assert "already running" in result.output
