"""
Archive writer for portal captures.

Creates a ZIP archive holding the content item index (``data.json``) and
one entry per media blob. The writer owns an open file handle and ZIP
directory; it must be closed for the archive to be valid, so use it as a
context manager:

    with ArchiveWriter(path, overwrite=False) as writer:
        writer.add_content_items(index_bytes)
        writer.add_blob("images/logo.png", stream, modified)
"""

from __future__ import annotations

import logging
import zipfile
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from portalsync.archive.base import (
    COPY_CHUNK_SIZE,
    INDEX_ENTRY_NAME,
    ArchiveError,
    ArchiveExistsError,
    ArchiveIOError,
    DuplicateEntryError,
)

logger = logging.getLogger(__name__)


class ArchiveWriter:
    """
    Writes a portal archive.

    Entry names are unique within an archive: a second content item index,
    a repeated blob name, or a blob named like the index is rejected with
    DuplicateEntryError.

    Attributes:
        path: Path of the archive being written.
        entry_names: Names of the entries written so far, in order.
    """

    def __init__(self, path: Path | str, overwrite: bool = False) -> None:
        """
        Create the archive file.

        Args:
            path: Archive path to create.
            overwrite: Truncate an existing file instead of failing.

        Raises:
            ArchiveExistsError: If the file exists and overwrite is False.
            ArchiveError: If the file cannot be created.
        """
        self.path = Path(path)
        self.entry_names: list[str] = []
        self._closed = False

        mode = "wb" if overwrite else "xb"
        try:
            self._file: BinaryIO = open(self.path, mode)  # noqa: SIM115
        except FileExistsError as e:
            raise ArchiveExistsError(
                "file exists. Use --force to overwrite existing file",
                path=str(self.path),
            ) from e
        except OSError as e:
            raise ArchiveError(f"cannot create archive: {e}", path=str(self.path)) from e

        self._zip = zipfile.ZipFile(self._file, "w", compression=zipfile.ZIP_DEFLATED)

    @classmethod
    def open(cls, path: Path | str, overwrite: bool = False) -> ArchiveWriter:
        """Create a writer for path (alias of the constructor)."""
        return cls(path, overwrite=overwrite)

    def __enter__(self) -> ArchiveWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        self.close()

    def add_content_items(self, data: bytes) -> None:
        """
        Write the serialized content item index as ``data.json``.

        Args:
            data: UTF-8 JSON array of content items.

        Raises:
            DuplicateEntryError: If the index was already written.
        """
        self._check_new_entry(INDEX_ENTRY_NAME)

        info = zipfile.ZipInfo(
            INDEX_ENTRY_NAME,
            date_time=_zip_timestamp(datetime.now()),
        )
        info.compress_type = zipfile.ZIP_DEFLATED

        try:
            self._zip.writestr(info, data)
        except OSError as e:
            raise ArchiveIOError(f"writing index: {e}", path=str(self.path)) from e

        self.entry_names.append(INDEX_ENTRY_NAME)
        logger.debug(f"Wrote content items to archive, {len(data)} bytes")

    def add_blob(
        self,
        name: str,
        stream: BinaryIO,
        modified: datetime | None = None,
    ) -> int:
        """
        Stream a blob into a new archive entry.

        Args:
            name: Blob name, used as the entry name.
            stream: Readable binary stream with the blob content.
            modified: Blob modification time (defaults to now).

        Returns:
            Number of bytes written.

        Raises:
            DuplicateEntryError: If the name is already used in this archive.
            ArchiveIOError: If reading the stream or writing the entry fails.
        """
        if name == INDEX_ENTRY_NAME:
            raise DuplicateEntryError(
                f"blob name collides with reserved index entry {INDEX_ENTRY_NAME}",
                path=str(self.path),
            )
        self._check_new_entry(name)

        info = zipfile.ZipInfo(name, date_time=_zip_timestamp(modified or datetime.now()))
        info.compress_type = zipfile.ZIP_DEFLATED

        written = 0
        try:
            with self._zip.open(info, "w", force_zip64=True) as entry:
                while chunk := stream.read(COPY_CHUNK_SIZE):
                    entry.write(chunk)
                    written += len(chunk)
        except Exception as e:
            # The truncated entry data stays in the file but is left out of
            # the central directory, so readers never see it.
            self._forget_entry(info)
            raise ArchiveIOError(
                f"writing blob {name} after {written} bytes: {e}",
                path=str(self.path),
            ) from e

        self.entry_names.append(name)
        logger.debug(f"Wrote {name} to archive, {written} bytes")
        return written

    def close(self) -> None:
        """
        Finalize the ZIP directory and close the file.

        Errors are propagated: an archive that fails to finalize is corrupt.
        Calling close() more than once is allowed.
        """
        if self._closed:
            return
        self._closed = True

        try:
            self._zip.close()
        finally:
            self._file.close()

        logger.debug(f"Closed archive {self.path} with {len(self.entry_names)} entries")

    def _check_new_entry(self, name: str) -> None:
        if self._closed:
            raise ArchiveError("archive is closed", path=str(self.path))
        if name in self.entry_names:
            raise DuplicateEntryError(f"duplicate entry: {name}", path=str(self.path))

    def _forget_entry(self, info: zipfile.ZipInfo) -> None:
        if info in self._zip.filelist:
            self._zip.filelist.remove(info)
        if self._zip.NameToInfo.get(info.filename) is info:
            del self._zip.NameToInfo[info.filename]


def _zip_timestamp(moment: datetime) -> tuple[int, int, int, int, int, int]:
    """ZIP date_time tuple for moment; ZIP cannot store years before 1980."""
    if moment.year < 1980:
        return (1980, 1, 1, 0, 0, 0)
    return (moment.year, moment.month, moment.day, moment.hour, moment.minute, moment.second)


