"""
Tests for the daemon module.

Tests interval parsing, PID file management, sweep statistics and the
sweep scheduler loop.
"""

import os
import signal
import time
from unittest.mock import MagicMock, patch

import pytest

from contact_sync.daemon import (
    DEFAULT_PID_FILE,
    DaemonAlreadyRunningError,
    DaemonError,
    PIDFileError,
    PIDFileManager,
    SweepScheduler,
    SweepStats,
    parse_interval,
)
from contact_sync.sync.engine import SweepResult, SyncEngine
from contact_sync.utils.paths import DEFAULT_CONFIG_DIR


@pytest.fixture
def engine():
    """Create a mock engine whose sweeps find two users."""
    mock_engine = MagicMock(spec=SyncEngine)
    mock_engine.sweep_all.return_value = {
        "alice": SweepResult(processed=2, completed=2),
        "bob": SweepResult(processed=2, conflicts=1, retried=1),
    }
    return mock_engine


class TestParseInterval:
    """Tests for interval parsing functionality."""

    @pytest.mark.parametrize(
        "interval,expected",
        [
            ("30s", 30),
            ("5m", 300),
            ("1h", 3600),
            ("1d", 86400),
            ("2H", 7200),
            (" 10 m ", 600),
            ("3600", 3600),
            (90, 90),
        ],
    )
    def test_valid_intervals(self, interval, expected):
        """Test units, case, whitespace and plain numbers."""
        assert parse_interval(interval) == expected

    @pytest.mark.parametrize("interval", ["", "soon", "5w", "m5", "1.5h"])
    def test_invalid_format(self, interval):
        """Test that malformed strings raise ValueError."""
        with pytest.raises(ValueError, match="Invalid interval format"):
            parse_interval(interval)

    @pytest.mark.parametrize("interval", [1.5, None, True])
    def test_invalid_type(self, interval):
        """Test that other types raise ValueError."""
        with pytest.raises(ValueError, match="Invalid interval type"):
            parse_interval(interval)


class TestSweepStats:
    """Tests for SweepStats."""

    def test_record_accumulates(self):
        """Test that per-user results are added to the totals."""
        stats = SweepStats()

        stats.record({"alice": SweepResult(completed=2, failed=1)})
        stats.record({"bob": SweepResult(conflicts=1, retried=3)})

        assert stats.users_swept == 2
        assert stats.completed == 2
        assert stats.failed == 1
        assert stats.conflicts == 1
        assert stats.retried == 3

    def test_summary(self):
        """Test the summary text."""
        stats = SweepStats(cycle_count=2, users_swept=3, completed=4)

        assert stats.summary() == (
            "2 cycle(s), 3 user sweep(s): 4 completed, 0 in conflict, "
            "0 retried, 0 failed"
        )


class TestPIDFileManager:
    """Tests for PIDFileManager."""

    def test_default_path(self):
        """Test that the default PID file is in the config directory."""
        assert PIDFileManager().pid_file == DEFAULT_PID_FILE
        assert DEFAULT_PID_FILE == DEFAULT_CONFIG_DIR / "sweep.pid"

    def test_create_and_read(self, tmp_path):
        """Test that create writes the current PID."""
        manager = PIDFileManager(tmp_path / "run" / "sweep.pid")

        manager.create()

        assert manager.read() == os.getpid()

    def test_read_missing(self, tmp_path):
        """Test read() without a file."""
        assert PIDFileManager(tmp_path / "sweep.pid").read() is None

    def test_read_invalid(self, tmp_path):
        """Test that garbage content raises PIDFileError."""
        pid_file = tmp_path / "sweep.pid"
        pid_file.write_text("not-a-pid")

        with pytest.raises(PIDFileError, match="Invalid PID"):
            PIDFileManager(pid_file).read()

    def test_remove(self, tmp_path):
        """Test remove() with and without a file."""
        pid_file = tmp_path / "sweep.pid"
        pid_file.write_text("123")
        manager = PIDFileManager(pid_file)

        manager.remove()
        manager.remove()

        assert not pid_file.exists()

    def test_create_detects_running_daemon(self, tmp_path):
        """Test that a live PID blocks a second daemon."""
        pid_file = tmp_path / "sweep.pid"
        pid_file.write_text(str(os.getpid()))

        with pytest.raises(DaemonAlreadyRunningError, match="already running"):
            PIDFileManager(pid_file).create()

    def test_create_replaces_stale_file(self, tmp_path):
        """Test that a dead PID is replaced."""
        pid_file = tmp_path / "sweep.pid"
        pid_file.write_text("99999999")
        manager = PIDFileManager(pid_file)

        with patch.object(PIDFileManager, "is_process_running", return_value=False):
            manager.create()

        assert int(pid_file.read_text()) == os.getpid()

    def test_is_process_running(self):
        """Test liveness checks against the current process."""
        assert PIDFileManager.is_process_running(os.getpid()) is True

        with patch("os.kill", side_effect=ProcessLookupError):
            assert PIDFileManager.is_process_running(12345) is False

        with patch("os.kill", side_effect=PermissionError):
            assert PIDFileManager.is_process_running(1) is True


class TestSweepScheduler:
    """Tests for SweepScheduler."""

    def test_initial_state(self, engine, tmp_path):
        """Test constructor defaults."""
        scheduler = SweepScheduler(engine, pid_file=tmp_path / "sweep.pid")

        assert scheduler.interval == 300
        assert scheduler.run_immediately is True
        assert scheduler.pid_file == tmp_path / "sweep.pid"
        assert scheduler.is_running() is False

    def test_run_cycle_records_results(self, engine):
        """Test a successful sweep cycle."""
        scheduler = SweepScheduler(engine)

        assert scheduler.run_cycle() is True

        engine.sweep_all.assert_called_once_with()
        assert scheduler.stats.cycle_count == 1
        assert scheduler.stats.users_swept == 2
        assert scheduler.stats.completed == 2
        assert scheduler.stats.conflicts == 1
        assert scheduler.stats.retried == 1
        assert scheduler.stats.last_cycle_at is not None

    def test_run_cycle_survives_errors(self, engine):
        """Test that a raising sweep is counted, not propagated."""
        engine.sweep_all.side_effect = RuntimeError("database is locked")
        scheduler = SweepScheduler(engine)

        assert scheduler.run_cycle() is False
        assert scheduler.run_cycle() is False

        assert scheduler.stats.cycle_error_count == 2
        assert scheduler.stats.consecutive_errors == 2
        assert scheduler.stats.last_error == "database is locked"

    def test_successful_cycle_resets_error_streak(self, engine):
        """Test that a good cycle clears the error streak and message."""
        results = engine.sweep_all.return_value
        engine.sweep_all.side_effect = [RuntimeError("locked"), results]
        scheduler = SweepScheduler(engine)

        scheduler.run_cycle()
        scheduler.run_cycle()

        assert scheduler.stats.cycle_error_count == 1
        assert scheduler.stats.consecutive_errors == 0
        assert scheduler.stats.last_error is None

    def test_signal_handler_requests_shutdown(self, engine):
        """Test that SIGTERM stops the loop."""
        scheduler = SweepScheduler(engine)

        scheduler._signal_handler(signal.SIGTERM, None)

        assert scheduler.shutdown_requested is True

    def test_stop(self, engine):
        """Test stop()."""
        scheduler = SweepScheduler(engine)
        assert scheduler.shutdown_requested is False

        scheduler.stop()

        assert scheduler.shutdown_requested is True

    def test_wait_returns_early_once_stopped(self, engine):
        """Test that waiting ends at once when a stop is pending."""
        scheduler = SweepScheduler(engine)
        scheduler.stop()

        start = time.monotonic()
        result = scheduler._wait(10)

        assert result is False
        assert time.monotonic() - start < 2

    def test_run_with_max_cycles(self, engine, tmp_path):
        """Test a bounded run: PID file lifecycle and cycle count."""
        pid_file = tmp_path / "sweep.pid"
        scheduler = SweepScheduler(engine, interval=0, pid_file=pid_file, max_cycles=2)
        original_handler = signal.getsignal(signal.SIGTERM)

        scheduler.run()

        assert engine.sweep_all.call_count == 2
        assert scheduler.stats.cycle_count == 2
        assert not pid_file.exists()
        assert scheduler.is_running() is False
        assert signal.getsignal(signal.SIGTERM) == original_handler

    def test_run_without_initial_sweep(self, engine, tmp_path):
        """Test run_immediately=False waits an interval first."""
        scheduler = SweepScheduler(
            engine,
            interval=0,
            pid_file=tmp_path / "sweep.pid",
            run_immediately=False,
            max_cycles=1,
        )

        scheduler.run()

        assert engine.sweep_all.call_count == 1

    def test_run_refuses_second_daemon(self, engine, tmp_path):
        """Test that run() fails while another daemon holds the PID file."""
        pid_file = tmp_path / "sweep.pid"
        pid_file.write_text(str(os.getpid()))
        scheduler = SweepScheduler(engine, pid_file=pid_file, max_cycles=1)

        with pytest.raises(DaemonAlreadyRunningError):
            scheduler.run()

        engine.sweep_all.assert_not_called()

    def test_get_running_pid(self, tmp_path):
        """Test PID lookup for live, stale and missing files."""
        pid_file = tmp_path / "sweep.pid"
        assert SweepScheduler.get_running_pid(pid_file) is None

        pid_file.write_text(str(os.getpid()))
        assert SweepScheduler.get_running_pid(pid_file) == os.getpid()

        with patch.object(PIDFileManager, "is_process_running", return_value=False):
            assert SweepScheduler.get_running_pid(pid_file) is None

    def test_stop_running_daemon_sends_sigterm(self, tmp_path):
        """Test that stop sends SIGTERM to the recorded PID."""
        pid_file = tmp_path / "sweep.pid"
        pid_file.write_text("12345")

        with patch("os.kill") as mock_kill, patch.object(
            PIDFileManager, "is_process_running", return_value=True
        ):
            assert SweepScheduler.stop_running_daemon(pid_file) is True

        mock_kill.assert_called_once_with(12345, signal.SIGTERM)

    def test_stop_without_daemon(self, tmp_path):
        """Test stop when nothing is running."""
        assert SweepScheduler.stop_running_daemon(tmp_path / "sweep.pid") is False


class TestDaemonErrors:
    """Tests for daemon exception classes."""

    def test_hierarchy(self):
        """Test that daemon errors share a base class."""
        assert issubclass(PIDFileError, DaemonError)
        assert issubclass(DaemonAlreadyRunningError, DaemonError)
