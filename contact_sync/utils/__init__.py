"""
contact_sync.utils - Utility module

Common utilities including path resolution, timestamps and logging
configuration.
"""

from contact_sync.utils.paths import (
    DEFAULT_CONFIG_DIR,
    resolve_config_dir,
    resolve_database_path,
)
from contact_sync.utils.timestamps import format_timestamp, parse_timestamp, utc_now

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "format_timestamp",
    "parse_timestamp",
    "resolve_config_dir",
    "resolve_database_path",
    "utc_now",
]
