"""
Path utilities for configuration directory resolution.

Provides consistent path resolution for the contact-sync configuration
directory, the default database and the default log directory.
"""

from __future__ import annotations

import os
from pathlib import Path

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".contact-sync"

# Environment variable for overriding config directory
CONFIG_DIR_ENV_VAR = "CONTACT_SYNC_CONFIG_DIR"

# Database file name inside the configuration directory
DEFAULT_DATABASE_NAME = "contacts.db"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. CONTACT_SYNC_CONFIG_DIR environment variable
        3. Default directory (~/.contact-sync)

    Args:
        config_dir: Optional explicit configuration directory path.
                   Can be a Path object or string.

    Returns:
        Resolved Path to the configuration directory (expanduser and resolve applied)
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def resolve_database_path(
    database_path: Path | str | None, config_dir: Path
) -> Path | str:
    """
    Resolve the SQLite database location.

    ':memory:' is passed through unchanged. Relative paths are taken
    relative to the configuration directory.

    Args:
        database_path: Configured path, or None for the default
        config_dir: Resolved configuration directory

    Returns:
        ':memory:' or an absolute Path
    """
    if database_path is None:
        return config_dir / DEFAULT_DATABASE_NAME
    if str(database_path) == ":memory:":
        return ":memory:"

    path = Path(database_path).expanduser()
    if not path.is_absolute():
        path = config_dir / path
    return path
