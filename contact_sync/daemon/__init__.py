"""
contact_sync.daemon - Background sweep daemon

Runs SyncEngine.sweep_all() on a fixed interval so queued offline changes
are applied without a client request. One daemon per PID file.
"""

import re
from typing import Union

# "<count><unit>" or a bare count of seconds
_INTERVAL_RE = re.compile(r"^(\d+)\s*([smhd]?)$")

_SECONDS_PER_UNIT = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_interval(interval: Union[str, int]) -> int:
    """
    Convert a sweep interval to seconds.

    "45s", "5m", "2h" and "1d" are accepted (case-insensitive, inner
    whitespace allowed), as are bare integers and digit strings.

    Raises:
        ValueError: For malformed strings, unknown units or non-int types
    """
    # bool is an int subclass
    if isinstance(interval, bool) or not isinstance(interval, (str, int)):
        raise ValueError(
            f"Invalid interval type: {type(interval).__name__}. Expected str or int."
        )
    if isinstance(interval, int):
        return interval

    match = _INTERVAL_RE.match(interval.strip().lower())
    if match is None:
        raise ValueError(
            f"Invalid interval format: '{interval}'. "
            "Use a number of seconds or a value like '30s', '5m', '1h', '1d'."
        )
    count, unit = match.groups()
    return int(count) * _SECONDS_PER_UNIT[unit]


from contact_sync.daemon.pidfile import (  # noqa: E402
    DEFAULT_PID_FILE,
    DaemonAlreadyRunningError,
    DaemonError,
    PIDFileError,
    PIDFileManager,
)
from contact_sync.daemon.scheduler import SweepScheduler, SweepStats  # noqa: E402

__all__ = [
    "DEFAULT_PID_FILE",
    "DaemonAlreadyRunningError",
    "DaemonError",
    "PIDFileError",
    "PIDFileManager",
    "SweepScheduler",
    "SweepStats",
    "parse_interval",
]
