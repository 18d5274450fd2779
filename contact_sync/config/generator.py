"""Writes the commented config.yaml produced by ``contact-sync init-config``."""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """Return config.yaml text listing every setting, all commented out."""
    return """# Contact Sync Configuration
# ==========================
#
# Default options for contact-sync. CLI arguments override these values.
#
# To use this configuration:
#   1. Save as ~/.contact-sync/config.yaml (or custom location)
#   2. Uncomment and modify options as needed


# Storage
# -------

# SQLite database file. Relative paths are resolved against the
# configuration directory. Use ":memory:" for a throwaway database.
# Default: contacts.db
# database_path: contacts.db


# Sync Behavior
# -------------

# Failed attempts allowed for a queued change before it is marked FAILED
# (1 to 3)
# Default: 3
# max_retries: 3

# Check batch UPDATEs against the stored contact and park divergent
# edits in CONFLICT. Set to false to apply batch UPDATEs directly
# Default: true
# detect_conflicts_on_batch: true

# Refuse to resolve a conflict if the stored contact changed after the
# conflict was recorded
# Default: false
# verify_server_version: false

# Strategy used by "contact-sync resolve" when --strategy is not given
# Options:
#   - local: the client's version wins
#   - server: the stored version wins
#   - merge: field-level merge (newer side wins, tags and profiles unioned)
# Default: merge
# default_resolution: merge


# Logging Options
# ---------------

# Enable verbose output with detailed logging
# Default: false
# verbose: false

# Debug level logging
# Default: false
# debug: false

# Directory for log files
# Default: ~/.contact-sync/logs
# log_dir: logs

# Number of log files kept; 0 disables cleanup
# Default: 10
# log_retention_count: 10


# Sweep Daemon
# ------------

# Time between sweeps of queued changes ("30s", "5m", "1h", "1d")
# Default: 5m
# sweep_interval: 5m

# PID file of the running daemon
# Default: ~/.contact-sync/sweep.pid
# sweep_pid_file: sweep.pid
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Write the default template to config_path.

    The directory is created with mode 0700 and the file with 0600.

    Returns:
        (True, None) on success, otherwise (False, reason)
    """
    config_path = config_path.expanduser().resolve()

    if config_path.exists() and not overwrite:
        return (
            False,
            f"Configuration file already exists: {config_path}\n"
            "Use --force to overwrite.",
        )

    try:
        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")
        config_path.chmod(0o600)
    except OSError as e:
        reason = f"Failed to create configuration file: {e}"
        logger.error(reason)
        return (False, reason)

    logger.info(f"Wrote default configuration to {config_path}")
    return (True, None)
