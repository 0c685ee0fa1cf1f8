"""
Module for crawling a directory tree into upload candidates.
"""
import logging
import os
import re
from typing import Iterable, Iterator, List, Optional, Set, Tuple

from .exceptions import CrawlSubtreeError
from .models import FileUnit
from .tracker import StateIndex

logger = logging.getLogger(__name__)

_DRIVE_PREFIX = re.compile(r'^[a-zA-Z]:')


def normalize_path(path: str) -> str:
    """Turn a local path into a platform-independent key.

    Backslashes become forward slashes and a drive letter prefix is dropped,
    so ``C:\\data\\a.txt`` and ``/data/a.txt`` map to the same remote path.

    Args:
        path: Local file system path

    Returns:
        Normalized path using ``/`` separators
    """
    return _DRIVE_PREFIX.sub('', path.replace('\\', '/'))


class DirectoryCrawler:
    """Depth-first, resumable, cycle-safe crawl of a directory tree."""

    def __init__(self, state: StateIndex, ignore_paths: Optional[Iterable[str]] = None):
        """Initialize the crawler.

        Args:
            state: State index consulted to skip already uploaded files
            ignore_paths: Absolute paths skipped together with their subtrees
        """
        self.state = state
        self.ignore_paths: Set[str] = {
            normalize_path(os.path.abspath(p)).rstrip('/') or '/' for p in (ignore_paths or ())
        }
        self.files_seen = 0
        self.files_skipped = 0
        self.files_pending = 0
        self.dirs_failed = 0

    def _is_ignored(self, path: str) -> bool:
        return normalize_path(path) in self.ignore_paths

    def _list_directory(self, directory: str) -> List[os.DirEntry]:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda entry: entry.name)

    def _open_directory(self, directory: str,
                        visited: Set[Tuple[int, int]]) -> Optional[Iterator[os.DirEntry]]:
        """Claim a directory for traversal and list it.

        Returns:
            Iterator over the entries, or None if the directory is ignored,
            already visited or unreadable
        """
        if self._is_ignored(directory):
            logger.debug(f"Ignoring {directory}")
            return None

        try:
            st = os.stat(directory)
            identity = (st.st_dev, st.st_ino)
            if identity in visited:
                logger.debug(f"Skipping already visited directory {directory}")
                return None
            visited.add(identity)
            return iter(self._list_directory(directory))
        except OSError as e:
            self.dirs_failed += 1
            error = CrawlSubtreeError(f"Cannot read directory {directory}: {e}")
            logger.warning(f"{error}; skipping subtree")
            return None

    def crawl(self, root: str) -> Iterator[FileUnit]:
        """Lazily yield upload candidates under ``root``.

        Files whose state resolves to done are skipped one by one; the rest
        of the traversal continues.

        Args:
            root: Directory to crawl

        Yields:
            FileUnit for every file still needing an upload
        """
        root = os.path.abspath(root)
        visited: Set[Tuple[int, int]] = set()
        stack = []

        entries = self._open_directory(root, visited)
        if entries is not None:
            stack.append(entries)

        while stack:
            entry = next(stack[-1], None)
            if entry is None:
                stack.pop()
                continue

            try:
                is_dir = entry.is_dir()
            except OSError as e:
                logger.warning(f"Cannot stat {entry.path}: {e}")
                continue

            if is_dir:
                entries = self._open_directory(entry.path, visited)
                if entries is not None:
                    stack.append(entries)
                continue

            unit = self._make_unit(entry)
            if unit is not None:
                yield unit

    def _make_unit(self, entry: os.DirEntry) -> Optional[FileUnit]:
        if self._is_ignored(entry.path):
            return None

        try:
            if not entry.is_file():
                logger.debug(f"Skipping special file {entry.path}")
                return None
            size = entry.stat().st_size
        except OSError as e:
            logger.warning(f"Cannot stat {entry.path}: {e}")
            return None

        self.files_seen += 1
        key = normalize_path(entry.path)
        state = self.state.resolve(key)
        if state.is_done:
            self.files_skipped += 1
            logger.debug(f"File already uploaded: {key}")
            return None
        if state.is_pending:
            self.files_pending += 1
            logger.debug(f"File {key} was pending under unfinished pack {state.pack}")

        return FileUnit(path=key, size=size, local_path=entry.path)
