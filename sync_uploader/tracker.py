"""
Module for tracking and persisting per-file upload state.

The index is an append-only JSON-lines journal. Each line records one
``key -> value`` assignment; the latest line for a key wins. Values are
either ``"done"`` or the name of the pack a file was absorbed into; a
``null`` value removes the key.
"""
import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)

DONE = "done"


@dataclass(frozen=True)
class FileState:
    """Resolved state of a key."""
    value: Optional[str]
    pack: Optional[str] = None

    @property
    def is_done(self) -> bool:
        return self.value == DONE

    @property
    def is_pending(self) -> bool:
        """The key was absorbed into a pack that never finished uploading."""
        return self.pack is not None and not self.is_done


class StateIndex:
    """Durable ``path -> status`` mapping shared by the crawler, packer and workers."""

    def __init__(self, state_file: Optional[Union[str, Path]] = None, fsync: bool = False,
                 compact_ratio: float = 2.0, read_only: bool = False):
        """Initialize the state index.

        Args:
            state_file: Path to the JSON-lines journal. If None, state lives in memory only.
            fsync: Whether to fsync the journal after every write.
            compact_ratio: Rewrite the journal on open when it holds this many
                lines per live key or more.
            read_only: Load the journal but keep every change in memory.
        """
        self.state_file = Path(state_file) if state_file else None
        self.fsync = fsync
        self.read_only = read_only
        self._entries: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._journal = None
        self._lines = 0

        if self.state_file and read_only:
            self._load_state()
        elif self.state_file:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            self._load_state()
            if self._entries and self._lines >= compact_ratio * len(self._entries):
                self.compact()
            torn = self._ends_mid_line()
            self._journal = open(self.state_file, 'a', encoding='utf-8')
            if torn:
                self._journal.write('\n')
                self._journal.flush()

    def _ends_mid_line(self) -> bool:
        """Check whether the journal ends with a partially written line."""
        if not self.state_file.exists() or self.state_file.stat().st_size == 0:
            return False
        with open(self.state_file, 'rb') as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) != b'\n'

    def _load_state(self) -> None:
        """Replay the journal into memory."""
        if not self.state_file.exists():
            return

        skipped = 0
        with open(self.state_file, 'r', encoding='utf-8') as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                    if record['value'] is None:
                        self._entries.pop(record['key'], None)
                    else:
                        self._entries[record['key']] = record['value']
                    self._lines += 1
                except (ValueError, KeyError, TypeError) as e:
                    skipped += 1
                    logger.warning(f"Ignoring corrupt state line {line_number} in {self.state_file}: {e}")

        logger.info(f"Loaded {len(self._entries)} state entries from {self.state_file}"
                    + (f" ({skipped} corrupt lines ignored)" if skipped else ""))

    def _append(self, key: str, value: Optional[str]) -> None:
        if not self._journal:
            return
        self._journal.write(json.dumps({'key': key, 'value': value}) + '\n')
        self._journal.flush()
        if self.fsync:
            os.fsync(self._journal.fileno())
        self._lines += 1

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, value: str) -> None:
        """Record a value for a key and persist it before returning.

        Args:
            key: Normalized file path or pack name
            value: ``"done"`` or a pack name
        """
        with self._lock:
            if self._entries.get(key) == value:
                return
            self._entries[key] = value
            self._append(key, value)

    def mark_done(self, key: str) -> None:
        self.put(key, DONE)

    def discard(self, key: str) -> None:
        """Forget a key so it resolves as never uploaded.

        Journaled as a ``null`` value; replay drops the key again.
        """
        with self._lock:
            if key not in self._entries:
                return
            del self._entries[key]
            self._append(key, None)

    def resolve(self, key: str) -> FileState:
        """Resolve a key, following at most one pack indirection.

        Args:
            key: Normalized file path

        Returns:
            FileState whose value is ``"done"`` if the file or its pack finished
        """
        with self._lock:
            value = self._entries.get(key)
            if value is None or value == DONE:
                return FileState(value)
            return FileState(self._entries.get(value), pack=value)

    def is_done(self, key: str) -> bool:
        return self.resolve(key).is_done

    def compact(self) -> None:
        """Rewrite the journal with one line per live key."""
        if not self.state_file or self.read_only:
            return

        with self._lock:
            tmp_file = self.state_file.with_name(self.state_file.name + '.tmp')
            with open(tmp_file, 'w', encoding='utf-8') as f:
                for key, value in self._entries.items():
                    f.write(json.dumps({'key': key, 'value': value}) + '\n')
                f.flush()
                os.fsync(f.fileno())

            if self._journal:
                self._journal.close()
            os.replace(tmp_file, self.state_file)
            if self._journal:
                self._journal = open(self.state_file, 'a', encoding='utf-8')
            self._lines = len(self._entries)

        logger.debug(f"Compacted {self.state_file} to {self._lines} entries")

    def close(self) -> None:
        with self._lock:
            if self._journal:
                self._journal.close()
                self._journal = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __enter__(self) -> "StateIndex":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
