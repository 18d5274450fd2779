"""PID file bookkeeping for the sweep daemon."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from contact_sync.utils.paths import DEFAULT_CONFIG_DIR

logger = logging.getLogger(__name__)

DEFAULT_PID_FILE = DEFAULT_CONFIG_DIR / "sweep.pid"


class DaemonError(Exception):
    """Base class for sweep daemon failures."""


class PIDFileError(DaemonError):
    """The PID file could not be read, written or removed."""


class DaemonAlreadyRunningError(DaemonError):
    """Another live process holds the PID file."""


class PIDFileManager:
    """
    Owns the file recording which process is sweeping.

    A file naming a dead process is treated as stale and replaced on
    create().
    """

    def __init__(self, pid_file: Path | None = None):
        self.pid_file = pid_file or DEFAULT_PID_FILE

    def create(self) -> None:
        """
        Record the current process.

        Raises:
            DaemonAlreadyRunningError: If the recorded process is alive
            PIDFileError: If the file cannot be written
        """
        holder = self.read()
        if holder is not None:
            if self.is_process_running(holder):
                raise DaemonAlreadyRunningError(
                    f"Sweep daemon already running with PID {holder}"
                )
            logger.warning(f"Replacing stale PID file left by process {holder}")

        pid = os.getpid()
        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            self.pid_file.write_text(f"{pid}\n")
        except OSError as e:
            raise PIDFileError(f"Failed to write PID file {self.pid_file}: {e}") from e
        logger.debug(f"PID {pid} written to {self.pid_file}")

    def read(self) -> int | None:
        """
        Return the recorded PID, or None when there is no file.

        Raises:
            PIDFileError: If the file is unreadable or not an integer
        """
        try:
            content = self.pid_file.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PIDFileError(f"Failed to read PID file {self.pid_file}: {e}") from e

        if not content.isdigit():
            raise PIDFileError(f"Invalid PID in file {self.pid_file}: {content!r}")
        return int(content)

    def remove(self) -> None:
        """Delete the file; a missing file is fine."""
        try:
            self.pid_file.unlink(missing_ok=True)
        except OSError as e:
            raise PIDFileError(f"Failed to remove PID file {self.pid_file}: {e}") from e

    @staticmethod
    def is_process_running(pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Alive but owned by another user
            return True
        return True

    def running_pid(self) -> int | None:
        """The recorded PID if that process is alive."""
        pid = self.read()
        if pid is None or not self.is_process_running(pid):
            return None
        return pid
