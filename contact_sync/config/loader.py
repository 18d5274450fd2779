"""
Reads and checks config.yaml for the sync core.

A missing or empty file means "use the defaults". Keys this version does
not know are skipped so newer files keep working with older installs.
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional

import yaml

from contact_sync.daemon import parse_interval
from contact_sync.sync.sync_log import MAX_RETRIES
from contact_sync.utils.paths import resolve_config_dir

DEFAULT_CONFIG_FILE = "config.yaml"

VALID_RESOLUTIONS = ("local", "server", "merge")

logger = logging.getLogger(__name__)

VALID_KEYS: dict[str, tuple[type[Any], ...]] = {
    # Storage
    "database_path": (str,),
    # Sync behavior
    "max_retries": (int,),
    "detect_conflicts_on_batch": (bool,),
    "verify_server_version": (bool,),
    "default_resolution": (str,),
    # Logging
    "verbose": (bool,),
    "debug": (bool,),
    "log_dir": (str,),
    "log_retention_count": (int,),
    # Sweep daemon
    "sweep_interval": (str, int),
    "sweep_pid_file": (str,),
}


class ConfigError(Exception):
    """config.yaml is unreadable or holds an invalid value."""


def _check_resolution(value: str) -> None:
    if value not in VALID_RESOLUTIONS:
        raise ConfigError(
            f"Invalid default_resolution '{value}'. "
            f"Must be one of: {', '.join(VALID_RESOLUTIONS)}"
        )


def _check_max_retries(value: int) -> None:
    if not 1 <= value <= MAX_RETRIES:
        raise ConfigError(
            f"max_retries must be between 1 and {MAX_RETRIES}, got {value}"
        )


def _check_retention(value: int) -> None:
    if value < 0:
        raise ConfigError(f"log_retention_count must be >= 0, got {value}")


def _check_sweep_interval(value: Any) -> None:
    try:
        seconds = parse_interval(value)
    except ValueError as e:
        raise ConfigError(str(e)) from e
    if seconds < 1:
        raise ConfigError(f"sweep_interval must be at least 1 second, got '{value}'")


# Value checks run after the type check passes
VALUE_CHECKS: dict[str, Callable[[Any], None]] = {
    "default_resolution": _check_resolution,
    "max_retries": _check_max_retries,
    "log_retention_count": _check_retention,
    "sweep_interval": _check_sweep_interval,
}


def _check_type(key: str, value: Any) -> None:
    allowed = VALID_KEYS[key]
    # bool is an int subclass; only boolean keys accept it
    if isinstance(value, bool) and bool not in allowed:
        ok = False
    else:
        ok = isinstance(value, allowed)
    if not ok:
        expected = " or ".join(t.__name__ for t in allowed)
        raise ConfigError(
            f"Invalid type for '{key}': expected {expected}, "
            f"got {type(value).__name__}"
        )


class ConfigLoader:
    """
    Locates and parses the sync configuration file.

    Usage:
        settings_dict = ConfigLoader().load_and_validate()
        other = ConfigLoader().load_from_file("/etc/contact-sync.yaml")
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        config_file: str = DEFAULT_CONFIG_FILE,
    ):
        """
        Args:
            config_dir: Where config_file lives; resolved like every other
                command (flag, then $CONTACT_SYNC_CONFIG_DIR, then
                ~/.contact-sync)
            config_file: File name inside config_dir
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    @property
    def config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """Parse config_path; see load_from_file."""
        return self.load_from_file(self.config_path)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Parse one YAML file into a dict.

        Returns:
            The file's mapping; {} when the file is absent or blank

        Raises:
            ConfigError: On unreadable files, bad YAML, or a top level that
                is not a mapping
        """
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            logger.debug(f"No configuration file at {path}, using defaults")
            return {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file {path}: {e}") from e

        if data is None:
            logger.debug(f"Configuration file {path} is blank, using defaults")
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(data).__name__}"
            )

        logger.debug(f"Read {len(data)} setting(s) from {path}")
        return data

    def validate(self, config: dict[str, Any]) -> None:
        """
        Check every known key's type, then its value.

        Raises:
            ConfigError: On the first invalid entry
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            if key not in VALID_KEYS:
                logger.debug(f"Ignoring unknown configuration key '{key}'")
                continue
            _check_type(key, value)
            check = VALUE_CHECKS.get(key)
            if check is not None:
                check(value)

    def load_and_validate(self) -> dict[str, Any]:
        """Load config_path and validate whatever it holds."""
        config = self.load()
        self.validate(config)
        return config
