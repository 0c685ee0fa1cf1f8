"""
Module containing data models for the sync uploader.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional


class UnitStatus(Enum):
    """Lifecycle of a unit inside one run."""
    DISCOVERED = "discovered"
    ADMITTED = "admitted"
    UPLOADING = "uploading"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class FileUnit:
    """One thing to upload: a raw file or a sealed pack.

    Exactly one of ``local_path`` and ``builder`` is set. A raw file is
    streamed from ``local_path``; a pack calls ``builder`` to produce the
    archive bytes when the upload actually starts.
    """
    path: str
    size: int
    local_path: Optional[str] = None
    builder: Optional[Callable[[], bytes]] = None
    status: UnitStatus = UnitStatus.DISCOVERED
    attempts: int = 0
    retry_at: float = 0.0

    @property
    def is_pack(self) -> bool:
        return self.builder is not None

    def __post_init__(self):
        if (self.local_path is None) == (self.builder is None):
            raise ValueError(f"Unit {self.path} needs exactly one content source")
        if self.size < 0:
            raise ValueError(f"Unit {self.path} has a negative size")


@dataclass
class ControlWindow:
    """Dynamic admission limits, clamped to their configured range.

    ``grow`` and ``shrink`` are the only mutators; both keep the limits
    inside ``[min, max]``. The window starts at its ceilings.
    """
    min_concurrency: int = 2
    max_concurrency: int = 30
    min_queued_bytes: int = 1_000_000
    max_queued_bytes: int = 20_000_000
    growth_factor: float = 1.2
    shrink_factor: float = 1.1
    limit_concurrency: float = field(init=False)
    limit_queued_bytes: float = field(init=False)

    def __post_init__(self):
        if not 0 < self.min_concurrency <= self.max_concurrency:
            raise ValueError("Concurrency bounds must satisfy 0 < min <= max")
        if not 0 < self.min_queued_bytes <= self.max_queued_bytes:
            raise ValueError("Queued bytes bounds must satisfy 0 < min <= max")
        self.limit_concurrency = float(self.max_concurrency)
        self.limit_queued_bytes = float(self.max_queued_bytes)

    def _clamp(self, value: float, low: int, high: int) -> float:
        return float(min(high, max(low, value)))

    def grow(self) -> None:
        """Multiplicative increase after a successful unit."""
        self.limit_concurrency = self._clamp(
            self.limit_concurrency * self.growth_factor,
            self.min_concurrency, self.max_concurrency)
        self.limit_queued_bytes = self._clamp(
            self.limit_queued_bytes * self.growth_factor,
            self.min_queued_bytes, self.max_queued_bytes)

    def shrink(self) -> None:
        """Multiplicative decrease after a failed unit."""
        self.limit_concurrency = self._clamp(
            self.limit_concurrency / self.shrink_factor,
            self.min_concurrency, self.max_concurrency)
        self.limit_queued_bytes = self._clamp(
            self.limit_queued_bytes / self.shrink_factor,
            self.min_queued_bytes, self.max_queued_bytes)

    def admits(self, in_flight_count: int, in_flight_bytes: int) -> bool:
        """Check whether another unit may start.

        An empty pipeline always admits, so a unit larger than the byte
        budget still goes out on its own.

        Args:
            in_flight_count: Units currently uploading
            in_flight_bytes: Bytes of the units currently uploading

        Returns:
            True if the next unit may be dispatched
        """
        if in_flight_count == 0:
            return True
        return (in_flight_count < self.limit_concurrency and
                in_flight_bytes < self.limit_queued_bytes)


@dataclass
class TransferStats:
    """Counters owned by the scheduler loop and read by the reporter."""
    started_at: float = field(default_factory=time.monotonic)
    bytes_dispatched: int = 0
    bytes_uploaded: int = 0
    in_flight_count: int = 0
    in_flight_bytes: int = 0
    units_uploaded: int = 0
    units_already_present: int = 0
    units_rejected: int = 0
    units_abandoned: int = 0
    failed_attempts: int = 0
    retries_enqueued: int = 0

    def throughput(self, now: Optional[float] = None) -> float:
        """Average uploaded bytes per second since the run started."""
        elapsed = (now if now is not None else time.monotonic()) - self.started_at
        if elapsed <= 0:
            return 0.0
        return self.bytes_uploaded / elapsed


@dataclass
class SyncSummary:
    """Represents a summary of a finished run."""
    uploaded: int
    already_present: int
    rejected: int
    abandoned: int
    failed_attempts: int
    bytes_uploaded: int
    elapsed_seconds: float

    @property
    def completed(self) -> bool:
        return self.abandoned == 0
