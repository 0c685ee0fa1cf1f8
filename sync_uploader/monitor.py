"""
Module for periodic progress reporting.
"""
import logging
import threading
import time
from typing import Callable, Optional

from .models import ControlWindow, TransferStats

logger = logging.getLogger(__name__)

MB = 1_000_000


class ProgressReporter:
    """Background thread logging throughput and in-flight state."""

    def __init__(self, stats: TransferStats, window: ControlWindow, interval: float = 1.0,
                 emit: Optional[Callable[[str], None]] = None):
        """Initialize the reporter.

        Args:
            stats: Counters maintained by the scheduler
            window: Admission window whose limits are reported
            interval: Seconds between two reports; 0 disables the thread
            emit: Sink for report lines, defaults to the module logger
        """
        self.stats = stats
        self.window = window
        self.interval = interval
        self._emit = emit or logger.info
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def format_report(self) -> str:
        stats = self.stats
        elapsed = time.monotonic() - stats.started_at
        return (
            f"Uploaded {stats.bytes_uploaded / MB:.2f} MB in {elapsed:.1f}s "
            f"({stats.throughput() / MB:.2f} MB/s). "
            f"In flight: {stats.in_flight_count} units, {stats.in_flight_bytes / MB:.2f} MB; "
            f"limits: {self.window.limit_concurrency:.1f} units, "
            f"{self.window.limit_queued_bytes / MB:.2f} MB"
        )

    def report(self) -> None:
        self._emit(self.format_report())

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.report()
            except Exception as e:
                logger.error(f"Error reporting progress: {e}")

    def start(self) -> None:
        if self.interval <= 0 or self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="progress-reporter", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the thread and emit a final report."""
        if self._thread is not None:
            self._stop_event.set()
            self._thread.join(timeout=5)
            self._thread = None
        self.report()
