"""
Zip archive building for packs.
"""
import io
import logging
import zipfile
from typing import Callable, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


class ZipArchiveBuilder:
    """Collects files and materializes them as one in-memory zip."""

    def __init__(self, compresslevel: int = 1):
        self._buffer = io.BytesIO()
        self._zip = zipfile.ZipFile(self._buffer, 'w', compression=zipfile.ZIP_DEFLATED,
                                    compresslevel=compresslevel, allowZip64=True)
        self.entries = 0

    def add_file(self, local_path: str, entry_name: str) -> None:
        self._zip.write(local_path, arcname=entry_name.lstrip('/'))
        self.entries += 1

    def finalize(self) -> bytes:
        """Close the archive and return its bytes."""
        self._zip.close()
        return self._buffer.getvalue()


def build_archive(members: Iterable[Tuple[str, str]], compresslevel: int = 1,
                  on_omitted: Optional[Callable[[str], None]] = None) -> bytes:
    """Build a zip from ``(local_path, entry_name)`` pairs.

    Members that vanished or became unreadable since they were discovered
    are left out and passed to ``on_omitted``.

    Args:
        members: Files to include with their entry names
        compresslevel: Deflate level, 1 favours speed
        on_omitted: Called with the entry name of every member left out

    Returns:
        The finished zip archive
    """
    builder = ZipArchiveBuilder(compresslevel=compresslevel)
    for local_path, entry_name in members:
        try:
            builder.add_file(local_path, entry_name)
        except OSError as e:
            logger.warning(f"Cannot read pack member {local_path}; leaving it out: {e}")
            if on_omitted is not None:
                on_omitted(entry_name)
    return builder.finalize()
