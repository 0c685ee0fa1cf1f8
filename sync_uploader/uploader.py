"""
Module for uploading single units to a remote store.
"""
import logging
import posixpath
import random
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from .config import EndpointConfig
from .exceptions import DirectoryCreationError, NonFatalWriteRejection, UploadError
from .models import FileUnit, UnitStatus
from .tracker import StateIndex

logger = logging.getLogger(__name__)

ROOT_DIRECTORIES = {'', '.', '/'}


def is_root_directory(path: str) -> bool:
    if path in ROOT_DIRECTORIES:
        return True
    # drive roots such as C:\ or C:/
    return len(path) <= 3 and path[1:2] == ':' and path[2:] in ('', '\\', '/')


class DirectoryCreationCache:
    """Creates each remote directory at most once, ancestors first.

    The first caller for a path claims it and performs the creation; any
    concurrent caller for the same path waits on the shared future.
    """

    def __init__(self, store):
        self.store = store
        self._directories: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def ensure(self, path: str) -> None:
        """Make sure ``path`` and all of its ancestors exist remotely.

        Creation errors are logged and swallowed; a directory that truly
        cannot be used surfaces as a failed write afterwards.

        Args:
            path: Remote directory path
        """
        if is_root_directory(path):
            return

        with self._lock:
            future = self._directories.get(path)
            owner = future is None
            if owner:
                future = Future()
                self._directories[path] = future

        if not owner:
            future.result()
            return

        try:
            self.ensure(posixpath.dirname(path.rstrip('/')))
            try:
                self.store.create_directory(path)
                logger.debug(f"Created remote directory {path}")
            except Exception as e:
                error = DirectoryCreationError(f"Creating {path} on {self.store!r} failed: {e}")
                logger.warning(str(error))
        finally:
            future.set_result(None)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._directories


@dataclass
class Endpoint:
    """A configured remote store together with its directory cache."""
    config: EndpointConfig
    store: object
    directories: DirectoryCreationCache = field(init=False)

    def __post_init__(self):
        self.directories = DirectoryCreationCache(self.store)


class EndpointPool:
    """Selects an endpoint for a unit by its size."""

    def __init__(self, endpoints: Sequence[Endpoint], rng: Optional[random.Random] = None):
        if not endpoints:
            raise ValueError("At least one endpoint is required")
        self.endpoints: List[Endpoint] = list(endpoints)
        self._rng = rng or random.Random()

    def select(self, size: int) -> Endpoint:
        """Pick uniformly among the endpoints whose size range holds ``size``.

        Raises:
            UploadError: If no endpoint accepts the size
        """
        eligible = [e for e in self.endpoints if e.config.accepts(size)]
        if not eligible:
            raise UploadError(f"No endpoint accepts a unit of {size} bytes")
        return self._rng.choice(eligible)


class WriteOutcome(Enum):
    """Terminal, non-exceptional result of a unit's upload."""
    STORED = "stored"
    ALREADY_PRESENT = "already_present"
    REJECTED = "rejected"


def remote_path(unit: FileUnit) -> str:
    return posixpath.join('/', unit.path)


class UploadWorker:
    """Uploads one admitted unit; runs on a worker thread."""

    def __init__(self, endpoints: EndpointPool, state: StateIndex, check_exists: bool = True):
        """Initialize the worker.

        Args:
            endpoints: Pool of remote endpoints
            state: State index updated on success
            check_exists: Skip the transfer when the remote object already exists
        """
        self.endpoints = endpoints
        self.state = state
        self.check_exists = check_exists

    def upload(self, unit: FileUnit) -> WriteOutcome:
        """Upload a unit and record it as done on success.

        Args:
            unit: File or pack to upload

        Returns:
            WriteOutcome of the attempt

        Raises:
            Exception: Any transfer failure; the scheduler retries the unit
        """
        unit.status = UnitStatus.UPLOADING
        endpoint = self.endpoints.select(unit.size)
        store = endpoint.store
        path = remote_path(unit)

        if self.check_exists and store.exists(path):
            logger.debug(f"{path} already exists on endpoint {endpoint.config.index}")
            self.state.mark_done(unit.path)
            return WriteOutcome.ALREADY_PRESENT

        def report(fraction: float) -> None:
            logger.debug(f"{path}: {fraction:.0%}")

        if unit.is_pack:
            content = unit.builder()
            stored = self._write(endpoint, path, content, len(content), report)
        else:
            with open(unit.local_path, 'rb') as content:
                stored = self._write(endpoint, path, content, unit.size, report)

        if not stored:
            rejection = NonFatalWriteRejection(f"Endpoint {endpoint.config.index} did not store {path}")
            logger.warning(str(rejection))
            return WriteOutcome.REJECTED

        self.state.mark_done(unit.path)
        return WriteOutcome.STORED

    def _write(self, endpoint: Endpoint, path: str, content, length: int, report) -> bool:
        endpoint.directories.ensure(posixpath.dirname(path))
        return endpoint.store.put_file_contents(
            path, content, overwrite=True, content_length=length, on_progress=report)
