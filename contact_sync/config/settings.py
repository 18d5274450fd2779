"""
Typed runtime settings for the sync core.

SyncSettings is built from a validated configuration dictionary (see
ConfigLoader) with CLI overrides applied on top.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from contact_sync.config.loader import ConfigError, ConfigLoader
from contact_sync.sync.sync_log import MAX_RETRIES
from contact_sync.utils.paths import resolve_config_dir, resolve_database_path

DEFAULT_SWEEP_INTERVAL = "5m"
DEFAULT_LOG_RETENTION_COUNT = 10
DEFAULT_PID_FILE_NAME = "sweep.pid"


@dataclass
class SyncSettings:
    """
    Runtime settings for the engine, logging and the sweep daemon.

    Attributes:
        config_dir: Resolved configuration directory
        database_path: SQLite file path, or ':memory:'
        max_retries: Failed attempts before a PENDING entry is failed
        detect_conflicts_on_batch: Run the conflict detector on batch UPDATEs
        verify_server_version: Refuse stale conflict resolutions
        default_resolution: Strategy used when the CLI gets none
        verbose: Verbose console logging
        debug: Debug level logging
        log_dir: Directory for log files (None for the default)
        log_retention_count: Log files kept by cleanup (0 disables cleanup)
        sweep_interval: Interval between daemon sweeps ("30s", "5m", "1h")
        sweep_pid_file: PID file of the sweep daemon (None for the default)

    Usage:
        settings = SyncSettings.load(config_dir)
        engine = SyncEngine.from_settings(contacts, sync_log, settings)
    """

    config_dir: Path
    database_path: Path | str
    max_retries: int = MAX_RETRIES
    detect_conflicts_on_batch: bool = True
    verify_server_version: bool = False
    default_resolution: str = "merge"
    verbose: bool = False
    debug: bool = False
    log_dir: Path | None = None
    log_retention_count: int = DEFAULT_LOG_RETENTION_COUNT
    sweep_interval: str | int = DEFAULT_SWEEP_INTERVAL
    sweep_pid_file: Path | None = None

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], config_dir: Path | str | None = None
    ) -> SyncSettings:
        """
        Create settings from a validated configuration dictionary.

        Unknown keys are ignored. Relative paths are resolved against the
        configuration directory.

        Args:
            data: Configuration values (see ConfigLoader.validate)
            config_dir: Configuration directory; resolved if None

        Returns:
            SyncSettings instance
        """
        resolved_dir = resolve_config_dir(config_dir)
        known = {f.name for f in fields(cls)} - {"config_dir", "database_path"}
        values = {key: value for key, value in data.items() if key in known}

        for key in ("log_dir", "sweep_pid_file"):
            if values.get(key) is not None:
                path = Path(values[key]).expanduser()
                values[key] = path if path.is_absolute() else resolved_dir / path

        return cls(
            config_dir=resolved_dir,
            database_path=resolve_database_path(
                data.get("database_path"), resolved_dir
            ),
            **values,
        )

    @classmethod
    def load(
        cls,
        config_dir: Path | str | None = None,
        config_file: Path | str | None = None,
    ) -> SyncSettings:
        """
        Load and validate the YAML configuration, then build settings.

        Args:
            config_dir: Configuration directory; resolved if None
            config_file: Explicit configuration file, overriding
                config_dir/config.yaml

        Raises:
            ConfigError: If the configuration is unreadable or invalid
        """
        loader = ConfigLoader(config_dir=Path(config_dir) if config_dir else None)
        if config_file is not None:
            data = loader.load_from_file(config_file)
            if data:
                loader.validate(data)
        else:
            data = loader.load_and_validate()
        return cls.from_dict(data, loader.config_dir)

    @property
    def pid_file(self) -> Path:
        """PID file of the sweep daemon."""
        return self.sweep_pid_file or self.config_dir / DEFAULT_PID_FILE_NAME

    def with_overrides(self, **overrides: Any) -> SyncSettings:
        """
        Return a copy with non-None overrides applied.

        Raises:
            ConfigError: If an override names an unknown setting
        """
        known = {f.name for f in fields(self)}
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        for key, value in overrides.items():
            if key not in known:
                raise ConfigError(f"Unknown setting '{key}'")
            if value is not None:
                values[key] = value
        return SyncSettings(**values)
