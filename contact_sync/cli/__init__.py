"""CLI package for contact_sync."""

from contact_sync.cli.formatters import (
    show_changes,
    show_contact,
    show_status_report,
    show_sweep_results,
    show_sync_result,
)
from contact_sync.cli.main import cli, get_config_dir, read_changes_file
from contact_sync.utils import DEFAULT_CONFIG_DIR

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "cli",
    "get_config_dir",
    "read_changes_file",
    "show_changes",
    "show_contact",
    "show_status_report",
    "show_sweep_results",
    "show_sync_result",
]
