"""
Sweep scheduler.

SweepScheduler calls SyncEngine.sweep_all() every `interval` seconds,
keeps running totals in SweepStats, and stops cleanly on SIGTERM/SIGINT
or after max_cycles. A failing cycle is logged and counted; the loop
carries on with the next one.
"""

from __future__ import annotations

import logging
import os
import signal
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from contact_sync.daemon.pidfile import PIDFileManager

if TYPE_CHECKING:
    from contact_sync.sync.engine import SweepResult, SyncEngine

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGINT)


@dataclass
class SweepStats:
    """
    Totals since the scheduler started.

    Attributes:
        started_at: Scheduler start time
        cycle_count: Cycles attempted
        cycle_error_count: Cycles where sweep_all() raised
        consecutive_errors: Failed cycles since the last good one
        users_swept: Per-user sweeps across all cycles
        completed: Entries moved to COMPLETED
        failed: Entries moved to FAILED
        conflicts: Entries moved to CONFLICT
        retried: Attempts that left an entry PENDING
        last_cycle_at: Start of the latest cycle
        last_error: Message of the latest failed cycle, cleared on success
    """

    started_at: datetime = field(default_factory=datetime.now)
    cycle_count: int = 0
    cycle_error_count: int = 0
    consecutive_errors: int = 0
    users_swept: int = 0
    completed: int = 0
    failed: int = 0
    conflicts: int = 0
    retried: int = 0
    last_cycle_at: datetime | None = None
    last_error: str | None = None

    def record(self, results: dict[str, SweepResult]) -> None:
        """Fold one cycle's per-user results into the totals."""
        self.users_swept += len(results)
        for result in results.values():
            self.completed += result.completed
            self.failed += result.failed
            self.conflicts += result.conflicts
            self.retried += result.retried

    def record_error(self, error: Exception) -> None:
        self.cycle_error_count += 1
        self.consecutive_errors += 1
        self.last_error = str(error)

    def summary(self) -> str:
        return (
            f"{self.cycle_count} cycle(s), {self.users_swept} user sweep(s): "
            f"{self.completed} completed, {self.conflicts} in conflict, "
            f"{self.retried} retried, {self.failed} failed"
        )


class SweepScheduler:
    """
    Periodic driver for SyncEngine.sweep_all().

    Usage:
        scheduler = SweepScheduler(engine, interval=300)
        scheduler.run()   # blocks until SIGTERM/SIGINT
    """

    def __init__(
        self,
        engine: SyncEngine,
        interval: int = 300,
        pid_file: Path | None = None,
        run_immediately: bool = True,
        max_cycles: int | None = None,
    ):
        """
        Args:
            engine: Engine to sweep with
            interval: Seconds between cycles
            pid_file: PID file; defaults to sweep.pid in the config directory
            run_immediately: Sweep on start instead of waiting one interval
            max_cycles: Stop after this many cycles; None runs until signalled
        """
        self.engine = engine
        self.interval = interval
        self.run_immediately = run_immediately
        self.max_cycles = max_cycles
        self.stats = SweepStats()
        self._pid_manager = PIDFileManager(pid_file)
        self._stop_event = threading.Event()
        self._running = False
        self._previous_handlers: dict[int, object] = {}

    @property
    def pid_file(self) -> Path:
        return self._pid_manager.pid_file

    @property
    def shutdown_requested(self) -> bool:
        return self._stop_event.is_set()

    def _install_signal_handlers(self) -> None:
        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._signal_handler)

    def _restore_signal_handlers(self) -> None:
        while self._previous_handlers:
            signum, handler = self._previous_handlers.popitem()
            signal.signal(signum, handler)  # type: ignore[arg-type]

    def _signal_handler(self, signum: int, frame: object) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, stopping after this cycle")
        self._stop_event.set()

    def run_cycle(self) -> bool:
        """
        Sweep every user with PENDING entries once.

        Returns:
            False if sweep_all() raised
        """
        self.stats.cycle_count += 1
        self.stats.last_cycle_at = datetime.now()
        logger.info(f"Sweep cycle #{self.stats.cycle_count} starting")

        try:
            results = self.engine.sweep_all()
        except Exception as e:
            self.stats.record_error(e)
            logger.error(
                f"Sweep cycle #{self.stats.cycle_count} failed "
                f"({self.stats.consecutive_errors} in a row): {e}"
            )
            return False

        self.stats.record(results)
        self.stats.consecutive_errors = 0
        self.stats.last_error = None
        logger.info(f"Sweep cycle #{self.stats.cycle_count} swept {len(results)} user(s)")
        return True

    def _wait(self, seconds: float) -> bool:
        """Wait between cycles; False if a stop arrived meanwhile."""
        if seconds > 0:
            self._stop_event.wait(seconds)
        return not self._stop_event.is_set()

    def _more_cycles_allowed(self) -> bool:
        return self.max_cycles is None or self.stats.cycle_count < self.max_cycles

    def run(self) -> None:
        """
        Loop until stopped or max_cycles is reached.

        Raises:
            DaemonAlreadyRunningError: If another daemon holds the PID file
            PIDFileError: If the PID file cannot be written
        """
        self._pid_manager.create()
        logger.info(
            f"Sweep daemon started (PID {os.getpid()}, every {self.interval}s, "
            f"PID file {self.pid_file})"
        )

        self._stop_event.clear()
        self.stats = SweepStats()
        self._install_signal_handlers()
        self._running = True

        try:
            if self.run_immediately:
                self.run_cycle()
            while self._more_cycles_allowed() and self._wait(self.interval):
                self.run_cycle()
        finally:
            self._running = False
            self._restore_signal_handlers()
            self._pid_manager.remove()
            logger.info(f"Sweep daemon stopped: {self.stats.summary()}")

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        self._stop_event.set()

    def is_running(self) -> bool:
        return self._running

    @staticmethod
    def get_running_pid(pid_file: Path | None = None) -> int | None:
        """PID of a live daemon using pid_file, if any."""
        return PIDFileManager(pid_file).running_pid()

    @classmethod
    def stop_running_daemon(cls, pid_file: Path | None = None) -> bool:
        """
        Send SIGTERM to the daemon recorded in pid_file.

        Returns:
            False when no live daemon is recorded or signalling fails
        """
        pid = cls.get_running_pid(pid_file)
        if pid is None:
            logger.info("No running sweep daemon found")
            return False

        try:
            os.kill(pid, signal.SIGTERM)
        except (ProcessLookupError, PermissionError) as e:
            logger.error(f"Could not signal sweep daemon {pid}: {e}")
            return False

        logger.info(f"Sent SIGTERM to sweep daemon (PID {pid})")
        return True


__all__ = ["SweepScheduler", "SweepStats"]
