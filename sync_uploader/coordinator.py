"""
Module for coordinating uploads under an adaptive admission window.
"""
import logging
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Iterable, Optional, Sequence

from .config import SyncConfig
from .models import ControlWindow, FileUnit, SyncSummary, TransferStats, UnitStatus
from .monitor import ProgressReporter
from .packer import Packer
from .remote import build_store
from .scanner import DirectoryCrawler
from .tracker import StateIndex
from .uploader import Endpoint, EndpointPool, UploadWorker, WriteOutcome

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    """Everything one run shares: settings, state, endpoints and the window."""
    config: SyncConfig
    state: StateIndex
    endpoints: EndpointPool
    window: ControlWindow

    @classmethod
    def from_config(cls, config: SyncConfig, stores: Optional[Sequence] = None,
                    state: Optional[StateIndex] = None) -> "SyncContext":
        """Build the context for a run.

        Args:
            config: Validated settings
            stores: Store clients in endpoint order; built from the config if None
            state: State index to use; opened from ``config.state_file`` if None,
                read-only for a dry run

        Returns:
            SyncContext ready to drive a scheduler
        """
        if stores is None:
            stores = [
                build_store(e, timeout=config.request_timeout, pool_size=config.max_concurrency,
                            dry_run=config.dry_run)
                for e in config.endpoints
            ]
        if len(stores) != len(config.endpoints):
            raise ValueError("Exactly one store per configured endpoint is required")
        if state is None:
            if config.dry_run:
                logger.info(f"Dry run: reading {config.state_file} without recording progress")
            state = StateIndex(config.state_file, fsync=config.state_fsync,
                               read_only=config.dry_run)

        return cls(
            config=config,
            state=state,
            endpoints=EndpointPool([Endpoint(e, s) for e, s in zip(config.endpoints, stores)]),
            window=ControlWindow(
                min_concurrency=config.min_concurrency,
                max_concurrency=config.max_concurrency,
                min_queued_bytes=config.min_queued_bytes,
                max_queued_bytes=config.max_queued_bytes,
            ),
        )


class UploadScheduler:
    """Admission-control loop feeding units to a pool of upload threads.

    The loop owns the window, the retry queue, the in-flight table and the
    counters; worker threads only upload and return an outcome.
    """

    def __init__(self, context: SyncContext, units: Iterable[FileUnit],
                 worker: Optional[UploadWorker] = None,
                 reporter: Optional[ProgressReporter] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize the scheduler.

        Args:
            context: Shared run context
            units: Primary sequence of units, usually the packer output
            worker: Upload worker, built from the context if None
            reporter: Progress reporter, built from the context if None
            clock: Monotonic time source for retry delays
            sleep: Blocking sleep used while waiting on a delayed retry
        """
        self.context = context
        self.config = context.config
        self.window = context.window
        self.units = units
        self.worker = worker or UploadWorker(context.endpoints, context.state,
                                             check_exists=self.config.check_exists)
        self.stats = TransferStats()
        self.reporter = reporter or ProgressReporter(self.stats, self.window,
                                                     interval=self.config.report_interval)
        self.retry_queue: Deque[FileUnit] = deque()
        self._in_flight: Dict[Future, FileUnit] = {}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._clock = clock
        self._sleep = sleep

    def retry_delay(self, attempts: int) -> float:
        """Exponential delay before the given retry, capped by ``retry_delay_max``."""
        if self.config.retry_delay <= 0:
            return 0.0
        return min(self.config.retry_delay_max, self.config.retry_delay * 2 ** (attempts - 1))

    def run(self) -> SyncSummary:
        """Upload the primary sequence, then drain retries until nothing is left.

        Returns:
            SyncSummary of the run
        """
        started = self._clock()
        self.reporter.start()
        try:
            with ThreadPoolExecutor(max_workers=self.window.max_concurrency,
                                    thread_name_prefix="upload") as executor:
                self._executor = executor
                self._drain_primary()
                self._drain_retries()
        finally:
            self._executor = None
            self.reporter.stop()

        stats = self.stats
        summary = SyncSummary(
            uploaded=stats.units_uploaded,
            already_present=stats.units_already_present,
            rejected=stats.units_rejected,
            abandoned=stats.units_abandoned,
            failed_attempts=stats.failed_attempts,
            bytes_uploaded=stats.bytes_uploaded,
            elapsed_seconds=self._clock() - started,
        )
        logger.info(
            f"Finished: {summary.uploaded} uploaded, {summary.already_present} already present, "
            f"{summary.rejected} rejected, {summary.abandoned} abandoned, "
            f"{summary.failed_attempts} failed attempts"
        )
        return summary

    def _drain_primary(self) -> None:
        units = iter(self.units)
        while True:
            self._wait_for_capacity()
            unit = next(units, None)
            if unit is None:
                return
            self._dispatch(unit)

    def _drain_retries(self) -> None:
        while self.retry_queue or self._in_flight:
            if not self.retry_queue:
                self._wait_for_any()
                continue

            delay = self.retry_queue[0].retry_at - self._clock()
            if delay > 0:
                if self._in_flight:
                    self._wait_for_any(timeout=delay)
                else:
                    self._sleep(delay)
                continue

            self._wait_for_capacity()
            self._dispatch(self.retry_queue.popleft())

    def _wait_for_capacity(self) -> None:
        while not self.window.admits(len(self._in_flight), self.stats.in_flight_bytes):
            self._wait_for_any()

    def _wait_for_any(self, timeout: Optional[float] = None) -> None:
        if not self._in_flight:
            return
        done, _ = wait(self._in_flight, timeout=timeout, return_when=FIRST_COMPLETED)
        for future in done:
            self._complete(future)

    def _dispatch(self, unit: FileUnit) -> None:
        unit.status = UnitStatus.ADMITTED
        future = self._executor.submit(self.worker.upload, unit)
        self._in_flight[future] = unit
        self.stats.in_flight_count = len(self._in_flight)
        self.stats.in_flight_bytes += unit.size
        self.stats.bytes_dispatched += unit.size
        logger.debug(f"Dispatched {unit.path} ({unit.size} bytes, attempt {unit.attempts + 1})")

    def _complete(self, future: Future) -> None:
        unit = self._in_flight.pop(future)
        self.stats.in_flight_count = len(self._in_flight)
        self.stats.in_flight_bytes -= unit.size

        try:
            outcome = future.result()
        except Exception as e:
            self._on_failure(unit, e)
        else:
            self._on_success(unit, outcome)

    def _on_success(self, unit: FileUnit, outcome: WriteOutcome) -> None:
        self.window.grow()
        if outcome is WriteOutcome.REJECTED:
            unit.status = UnitStatus.SKIPPED
            self.stats.units_rejected += 1
            return

        unit.status = UnitStatus.DONE
        if outcome is WriteOutcome.ALREADY_PRESENT:
            self.stats.units_already_present += 1
        else:
            self.stats.units_uploaded += 1
            self.stats.bytes_uploaded += unit.size

    def _on_failure(self, unit: FileUnit, error: Exception) -> None:
        self.window.shrink()
        self.stats.failed_attempts += 1
        unit.attempts += 1
        unit.status = UnitStatus.FAILED
        logger.error(f"Error uploading {unit.path} (attempt {unit.attempts}): {error}")

        if self.config.max_attempts and unit.attempts >= self.config.max_attempts:
            unit.status = UnitStatus.SKIPPED
            self.stats.units_abandoned += 1
            logger.error(f"Giving up on {unit.path} after {unit.attempts} attempts")
            return

        unit.retry_at = self._clock() + self.retry_delay(unit.attempts)
        self.retry_queue.append(unit)
        self.stats.retries_enqueued += 1


def run_sync(config: SyncConfig, stores: Optional[Sequence] = None) -> SyncSummary:
    """Crawl, pack and upload ``config.directory_path``.

    Args:
        config: Validated settings
        stores: Store clients in endpoint order; built from the config if None

    Returns:
        SyncSummary of the run
    """
    ignore_paths = list(config.ignore_paths) + [str(config.state_file.absolute())]
    context = SyncContext.from_config(config, stores=stores)
    try:
        crawler = DirectoryCrawler(context.state, ignore_paths=ignore_paths)
        packer = Packer(context.state, config.pack_files_smaller_than, config.pack_size)
        units = packer.pack(crawler.crawl(str(config.directory_path)))

        summary = UploadScheduler(context, units).run()

        logger.info(
            f"Crawled {crawler.files_seen} files: {crawler.files_skipped} already uploaded, "
            f"{crawler.dirs_failed} unreadable directories, {packer.packs_sealed} packs"
        )
        return summary
    finally:
        context.state.close()
