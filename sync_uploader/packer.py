"""
Module for grouping small files into size-bounded packs.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from .archive import build_archive
from .models import FileUnit
from .tracker import StateIndex

logger = logging.getLogger(__name__)


def pack_name(index: int) -> str:
    return f"pack.{index}.{uuid.uuid4().hex[:9]}.zip"


@dataclass
class Pack:
    """An open or sealed group of small files."""
    index: int
    name: str = ''
    files: List[Tuple[str, str]] = field(default_factory=list)
    size: int = 0

    def __post_init__(self):
        if not self.name:
            self.name = pack_name(self.index)

    def fits(self, size: int, limit: int) -> bool:
        return self.size + size <= limit

    def add(self, unit: FileUnit) -> None:
        self.files.append((unit.local_path, unit.path))
        self.size += unit.size

    def to_unit(self, on_omitted: Optional[Callable[[str], None]] = None) -> FileUnit:
        """Seal the pack into a unit whose archive is built on demand.

        Args:
            on_omitted: Called with the key of every member left out of the archive
        """
        members = tuple(self.files)
        return FileUnit(path=self.name, size=self.size,
                        builder=lambda: build_archive(members, on_omitted=on_omitted))

    def next_pack(self) -> "Pack":
        return Pack(self.index + 1)


class Packer:
    """Routes large files through and accumulates small ones into packs."""

    def __init__(self, state: StateIndex, pack_files_smaller_than: int, pack_size: int):
        """Initialize the packer.

        Args:
            state: State index recording pack membership
            pack_files_smaller_than: Files strictly smaller than this are packed
            pack_size: Maximum aggregate size of a pack
        """
        self.state = state
        self.pack_files_smaller_than = pack_files_smaller_than
        self.pack_size = pack_size
        self.packs_sealed = 0

    def _seal(self, pack: Pack) -> FileUnit:
        self.packs_sealed += 1
        logger.debug(f"Sealed {pack.name} with {len(pack.files)} files ({pack.size} bytes)")
        # an omitted member must not resolve through the pack once it is done
        return pack.to_unit(on_omitted=self.state.discard)

    def pack(self, units: Iterable[FileUnit]) -> Iterator[FileUnit]:
        """Turn a stream of files into a stream of files and packs.

        Membership is written to the state index as soon as a file joins a
        pack, before the pack is emitted.

        Args:
            units: Candidate files in crawl order

        Yields:
            Unpacked large files and sealed packs
        """
        pack = Pack(0)

        for unit in units:
            if unit.size >= self.pack_files_smaller_than:
                yield unit
                continue

            if unit.size > self.pack_size:
                logger.debug(f"{unit.path} ({unit.size} bytes) exceeds the pack size; uploading it unpacked")
                yield unit
                continue

            if not pack.fits(unit.size, self.pack_size) and pack.files:
                yield self._seal(pack)
                pack = pack.next_pack()

            pack.add(unit)
            self.state.put(unit.path, pack.name)

        if pack.files:
            yield self._seal(pack)
