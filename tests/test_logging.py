"""
Tests for the logging configuration module.

Tests level selection from the environment, handler setup, colored
console output and log file retention.
"""

import logging
import os
from datetime import datetime
from unittest.mock import patch

import pytest

from contact_sync.utils.logging import (
    CONSOLE_FORMAT,
    LOGGER_NAME,
    VERBOSE_FORMAT,
    ColoredFormatter,
    UserContextFilter,
    cleanup_old_logs,
    current_user,
    dated_log_name,
    default_log_dir,
    get_log_file_path,
    get_log_level_from_env,
    get_logger,
    setup_logging,
    user_context,
)


def make_record(level=logging.INFO, msg="Swept 3 entries"):
    """Build a log record for formatter tests."""
    return logging.LogRecord(
        name="contact_sync.sync.engine",
        level=level,
        pathname="engine.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestGetLogLevelFromEnv:
    """Tests for get_log_level_from_env function."""

    @pytest.mark.parametrize("value", ["1", "true", "YES"])
    def test_debug_flag(self, value):
        """Test that CONTACT_SYNC_DEBUG forces DEBUG."""
        with patch.dict(os.environ, {"CONTACT_SYNC_DEBUG": value}):
            assert get_log_level_from_env() == logging.DEBUG

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("warning", logging.WARNING),
            ("WARN", logging.WARNING),
            ("error", logging.ERROR),
            ("CRITICAL", logging.CRITICAL),
            ("chatty", logging.INFO),
        ],
    )
    def test_log_level_names(self, value, expected):
        """Test level names, the WARN alias and the INFO fallback."""
        with patch.dict(
            os.environ, {"CONTACT_SYNC_LOG_LEVEL": value, "CONTACT_SYNC_DEBUG": ""}
        ):
            assert get_log_level_from_env() == expected


class TestGetLogFilePath:
    """Tests for get_log_file_path function."""

    def test_custom_log_file_from_env(self, tmp_path):
        """Test that CONTACT_SYNC_LOG_FILE names the file."""
        target = tmp_path / "sync.log"
        with patch.dict(os.environ, {"CONTACT_SYNC_LOG_FILE": str(target)}):
            assert get_log_file_path() == target

    @pytest.mark.parametrize("value", ["none", "DISABLED", ""])
    def test_log_file_disabled(self, value):
        """Test the values that disable file logging."""
        with patch.dict(os.environ, {"CONTACT_SYNC_LOG_FILE": value}):
            assert get_log_file_path() is None

    def test_default_log_dir_follows_config_dir(self, tmp_path, monkeypatch):
        """Test that default logs live under the configuration directory."""
        monkeypatch.setenv("CONTACT_SYNC_CONFIG_DIR", str(tmp_path))
        monkeypatch.delenv("CONTACT_SYNC_LOG_FILE", raising=False)

        path = get_log_file_path()

        assert default_log_dir() == tmp_path.resolve() / "logs"
        assert path.parent == tmp_path.resolve() / "logs"
        assert path.name.startswith("contact_sync_")
        assert path.suffix == ".log"


class TestColoredFormatter:
    """Tests for ColoredFormatter."""

    def test_colors_disabled_when_not_a_tty(self):
        """Test that non-terminal output gets no colors."""
        with patch("sys.stderr") as mock_stderr:
            mock_stderr.isatty.return_value = False
            formatter = ColoredFormatter(CONSOLE_FORMAT)

        assert formatter.use_colors is False

    def test_no_color_env_respected(self):
        """Test the NO_COLOR convention."""
        with patch("sys.stderr") as mock_stderr, patch.dict(
            os.environ, {"NO_COLOR": "1"}
        ):
            mock_stderr.isatty.return_value = True
            formatter = ColoredFormatter(CONSOLE_FORMAT)

        assert formatter.use_colors is False

    def test_dumb_terminal(self):
        """Test that TERM=dumb disables colors."""
        with patch("sys.stderr") as mock_stderr, patch.dict(
            os.environ, {"TERM": "dumb", "NO_COLOR": ""}
        ):
            mock_stderr.isatty.return_value = True
            formatter = ColoredFormatter(CONSOLE_FORMAT)

        assert formatter.use_colors is False

    def test_colored_output_leaves_record_untouched(self):
        """Test that coloring works on a copy of the record."""
        formatter = ColoredFormatter(CONSOLE_FORMAT, use_colors=False)
        formatter.use_colors = True
        record = make_record(logging.WARNING)

        output = formatter.format(record)

        assert "\033[33m" in output
        assert record.levelname == "WARNING"
        assert record.msg == "Swept 3 entries"

    def test_plain_output(self):
        """Test formatting without colors."""
        formatter = ColoredFormatter(CONSOLE_FORMAT, use_colors=False)

        assert formatter.format(make_record()) == "INFO: Swept 3 entries"


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_returns_package_logger(self):
        """Test that the package logger is configured."""
        logger = setup_logging(level=logging.WARNING, enable_file_logging=False)

        assert logger.name == LOGGER_NAME
        assert logger.level == logging.WARNING
        assert logger.propagate is False
        assert len(logger.handlers) == 1

    def test_verbose_forces_debug(self):
        """Test that verbose mode uses DEBUG and the verbose format."""
        logger = setup_logging(
            level=logging.ERROR, verbose=True, enable_file_logging=False, use_colors=False
        )

        assert logger.level == logging.DEBUG
        assert logger.handlers[0].formatter._fmt == VERBOSE_FORMAT

    def test_repeated_setup_replaces_handlers(self):
        """Test that handlers do not accumulate."""
        setup_logging(enable_file_logging=False)
        logger = setup_logging(enable_file_logging=False)

        assert len(logger.handlers) == 1

    def test_file_logging_in_log_dir(self, tmp_path):
        """Test that a dated file is created in log_dir at DEBUG level."""
        logger = setup_logging(level=logging.INFO, log_dir=tmp_path / "logs")
        logger.debug("file only")

        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].level == logging.DEBUG
        files = list((tmp_path / "logs").glob("contact_sync_*.log"))
        assert len(files) == 1

    def test_explicit_log_file(self, tmp_path):
        """Test that log_file wins over log_dir."""
        target = tmp_path / "custom.log"

        logger = setup_logging(log_file=target, log_dir=tmp_path / "ignored")
        logger.info("hello")

        assert target.exists()
        assert not (tmp_path / "ignored").exists()


class TestCleanupOldLogs:
    """Tests for cleanup_old_logs function."""

    def test_keeps_most_recent(self, tmp_path):
        """Test that only keep_count files survive, newest first."""
        for day in range(5):
            path = tmp_path / f"contact_sync_2024010{day + 1}.log"
            path.write_text("log")
            os.utime(path, (1_700_000_000 + day, 1_700_000_000 + day))
        other = tmp_path / "unrelated.log"
        other.write_text("keep")

        deleted = cleanup_old_logs(tmp_path, keep_count=2)

        assert deleted == 3
        remaining = sorted(p.name for p in tmp_path.glob("contact_sync_*.log"))
        assert remaining == ["contact_sync_20240104.log", "contact_sync_20240105.log"]
        assert other.exists()

    def test_zero_disables_cleanup(self, tmp_path):
        """Test keep_count=0."""
        (tmp_path / "contact_sync_20240101.log").write_text("log")

        assert cleanup_old_logs(tmp_path, keep_count=0) == 0

    def test_missing_directory(self, tmp_path):
        """Test that a missing directory is not an error."""
        assert cleanup_old_logs(tmp_path / "nope") == 0


class TestUserContext:
    """Tests for per-user log tagging."""

    def test_context_sets_and_restores_user(self):
        """Test nesting and restoring of the current user."""
        assert current_user() is None

        with user_context("alice"):
            assert current_user() == "alice"
            with user_context("bob"):
                assert current_user() == "bob"
            assert current_user() == "alice"

        assert current_user() is None

    def test_filter_stamps_records(self):
        """Test that records get the active user or a placeholder."""
        user_filter = UserContextFilter()
        record = make_record()

        assert user_filter.filter(record) is True
        assert record.user_id == "-"

        with user_context("alice"):
            user_filter.filter(record)
        assert record.user_id == "alice"

    def test_file_log_shows_user(self, tmp_path):
        """Test that the file format includes the user id."""
        target = tmp_path / "sync.log"
        logger = setup_logging(level=logging.INFO, log_file=target, use_colors=False)

        with user_context("alice"):
            get_logger("sync.engine").info("Swept 2 entries")
        logger.info("Idle")
        for handler in logger.handlers:
            handler.flush()

        lines = target.read_text().splitlines()
        assert any("[user=alice] - Swept 2 entries" in line for line in lines)
        assert any("[user=-] - Idle" in line for line in lines)


class TestLoggerHelpers:
    """Tests for get_logger and dated_log_name."""

    def test_get_logger_prefixes_name(self):
        """Test that names are placed under the package logger."""
        assert get_logger("engine").name == "contact_sync.engine"
        assert get_logger("contact_sync.cli").name == "contact_sync.cli"
        assert get_logger("contact_sync").name == "contact_sync"
        assert get_logger("contact_syncer").name == "contact_sync.contact_syncer"

    def test_dated_log_name(self):
        """Test the dated file name."""
        assert dated_log_name(datetime(2024, 3, 9)) == "contact_sync_20240309.log"
