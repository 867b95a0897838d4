"""
Seekable stream over a single compressed archive entry.

ZIP entry decompression streams can only be read forward from the start of
the entry. SeekableEntryStream emulates random access on top of that: a seek
to a new position closes the decompression stream, reopens it from the start
of the entry and reads and discards bytes up to the target offset.

The cost is O(offset) per repositioning, which is acceptable for the way
entries are consumed during an upload: the HTTP layer seeks to the end to
learn the body length, seeks back to the start, then reads the entry once.
"""

from __future__ import annotations

import io
import logging
import zipfile
from typing import BinaryIO

from portalsync.archive.base import (
    COPY_CHUNK_SIZE,
    ArchiveIOError,
    InvalidSeek,
)

logger = logging.getLogger(__name__)


class SeekableEntryStream(io.RawIOBase):
    """
    Binary, seekable, read-only view of one entry in an open ZIP file.

    The logical offset may be positioned beyond the end of the entry; reads
    from there return no data. Seeking before the start raises InvalidSeek
    and leaves the offset unchanged.

    Attributes:
        size: Uncompressed size of the entry, from the ZIP directory.
    """

    def __init__(self, zip_file: zipfile.ZipFile, info: zipfile.ZipInfo) -> None:
        """
        Open the entry for reading, positioned at offset 0.

        Args:
            zip_file: Open ZipFile containing the entry.
            info: Directory record of the entry to read.
        """
        super().__init__()
        self._zip_file = zip_file
        self._info = info
        self._stream = zip_file.open(info)
        self._offset = 0

    @property
    def name(self) -> str:
        """Entry name within the archive."""
        return self._info.filename

    @property
    def size(self) -> int:
        """Declared uncompressed size of the entry."""
        return self._info.file_size

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        self._check_open()
        return self._offset

    def readinto(self, buffer) -> int:  # type: ignore[no-untyped-def]
        """Read up to len(buffer) bytes at the current offset."""
        self._check_open()

        remaining = self.size - self._offset
        if remaining <= 0 or len(buffer) == 0:
            return 0

        data = self._stream.read(min(len(buffer), remaining))
        n = len(data)
        buffer[:n] = data
        self._offset += n

        logger.debug(f"Entry read: {self.name} {n} bytes, new offset {self._offset}")
        return n

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """
        Move the logical offset.

        Args:
            offset: Offset relative to whence.
            whence: io.SEEK_SET, io.SEEK_CUR or io.SEEK_END. SEEK_END is
                relative to the declared uncompressed size.

        Returns:
            The new absolute offset.

        Raises:
            InvalidSeek: If whence is unknown or the target is negative.
            ArchiveIOError: If the entry ends before the target. The offset
                is left unchanged.
        """
        self._check_open()

        if whence == io.SEEK_SET:
            target = offset
        elif whence == io.SEEK_CUR:
            target = self._offset + offset
        elif whence == io.SEEK_END:
            target = self.size + offset
        else:
            raise InvalidSeek(f"invalid whence: {whence}", path=self.name)

        logger.debug(
            f"Entry seek: {self.name} current {self._offset}, "
            f"offset {offset}, whence {whence}, target {target}"
        )

        if target < 0:
            raise InvalidSeek("negative position", path=self.name)

        if target == self._offset:
            return self._offset

        # Position on a fresh stream first, so a failed seek leaves the
        # current stream and offset untouched.
        stream = self._zip_file.open(self._info)
        try:
            self._discard(stream, min(target, self.size))
        except BaseException:
            stream.close()
            raise

        self._stream.close()
        self._stream = stream
        self._offset = target

        return target

    def close(self) -> None:
        stream = getattr(self, "_stream", None)
        if not self.closed and stream is not None:
            stream.close()
        super().close()

    def _discard(self, stream: BinaryIO, count: int) -> None:
        """Read and drop count bytes from a fresh decompression stream."""
        remaining = count
        while remaining > 0:
            chunk = stream.read(min(remaining, COPY_CHUNK_SIZE))
            if not chunk:
                raise ArchiveIOError(
                    f"entry ended after {count - remaining} of {count} bytes",
                    path=self.name,
                )
            remaining -= len(chunk)

    def _check_open(self) -> None:
        if self.closed:
            raise ValueError(f"I/O operation on closed entry stream: {self.name}")
