"""
Archive reader for portal restores.

Walks the entries of a portal archive in storage order and dispatches each
one to a registered handler: the content item index (``data.json``) to the
index handler, every other entry to the blob handler.

A failing handler never aborts processing. The failure is logged and
counted, and the reader moves on to the next entry. Callers that need to
know exactly what was written should record it in their own handlers.

Usage:
    with ArchiveReader(path) as reader:
        result = (
            reader.with_index_handler(handle_index)
            .with_blob_handler(handle_blob)
            .process()
        )
"""

from __future__ import annotations

import logging
import zipfile
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from portalsync.archive.base import (
    INDEX_ENTRY_NAME,
    ArchiveError,
    ArchiveNotFoundError,
    CorruptArchiveError,
)
from portalsync.archive.entry_stream import SeekableEntryStream

logger = logging.getLogger(__name__)

IndexHandler = Callable[[SeekableEntryStream], None]
BlobHandler = Callable[[str, SeekableEntryStream], None]


@dataclass
class ArchiveEntry:
    """Directory information for one archive entry."""

    name: str
    size: int
    compressed_size: int
    modified: datetime

    @property
    def is_index(self) -> bool:
        return self.name == INDEX_ENTRY_NAME


@dataclass
class ProcessResult:
    """
    Outcome of ArchiveReader.process().

    Attributes:
        ok: Entries whose handler completed.
        failed: Entries whose handler raised.
        skipped: Entries with no registered handler.
        errors: Entry name to error message for failed entries.
    """

    ok: int = 0
    failed: int = 0
    skipped: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.ok + self.failed + self.skipped


class ArchiveReader:
    """
    Reads a portal archive and dispatches its entries to handlers.

    Attributes:
        path: Path of the archive being read.
    """

    def __init__(self, path: Path | str) -> None:
        """
        Open an archive for reading.

        Args:
            path: Path of an existing archive.

        Raises:
            ArchiveNotFoundError: If the file does not exist.
            CorruptArchiveError: If the file is not a valid ZIP archive.
        """
        self.path = Path(path)
        self._index_handler: IndexHandler | None = None
        self._blob_handler: BlobHandler | None = None

        try:
            self._zip: zipfile.ZipFile | None = zipfile.ZipFile(self.path, "r")
        except FileNotFoundError as e:
            raise ArchiveNotFoundError("archive not found", path=str(self.path)) from e
        except zipfile.BadZipFile as e:
            raise CorruptArchiveError(f"not a valid archive: {e}", path=str(self.path)) from e
        except OSError as e:
            raise ArchiveError(f"cannot open archive: {e}", path=str(self.path)) from e

    def __enter__(self) -> ArchiveReader:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        self.close()

    def with_index_handler(self, handler: IndexHandler) -> ArchiveReader:
        """Register the callback invoked for the ``data.json`` entry."""
        self._index_handler = handler
        return self

    def with_blob_handler(self, handler: BlobHandler) -> ArchiveReader:
        """Register the callback invoked for every blob entry."""
        self._blob_handler = handler
        return self

    def entries(self) -> list[ArchiveEntry]:
        """List the archive entries in storage order."""
        return [
            ArchiveEntry(
                name=info.filename,
                size=info.file_size,
                compressed_size=info.compress_size,
                modified=datetime(*info.date_time),
            )
            for info in self._require_open().infolist()
            if not info.is_dir()
        ]

    def process(self) -> ProcessResult:
        """
        Dispatch every entry to its handler.

        Returns:
            ProcessResult with per-entry counts. Handler failures are
            reported here and in the log, never raised.
        """
        zf = self._require_open()
        result = ProcessResult()

        for info in zf.infolist():
            if info.is_dir():
                continue

            name = info.filename
            is_index = name == INDEX_ENTRY_NAME

            if is_index and self._index_handler is None:
                result.skipped += 1
                continue
            if not is_index and self._blob_handler is None:
                result.skipped += 1
                continue

            try:
                with SeekableEntryStream(zf, info) as stream:
                    if is_index:
                        assert self._index_handler is not None
                        self._index_handler(stream)
                    else:
                        assert self._blob_handler is not None
                        self._blob_handler(name, stream)
            except Exception as e:
                logger.error(f"Handling entry {name}: {e}")
                result.failed += 1
                result.errors[name] = str(e)
                continue

            result.ok += 1

        logger.info(
            f"Processed {result.ok} archive entries, "
            f"{result.skipped} skipped, {result.failed} errors"
        )
        return result

    def close(self) -> None:
        """Release the archive; safe to call more than once."""
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def _require_open(self) -> zipfile.ZipFile:
        if self._zip is None:
            raise ArchiveError("archive is closed", path=str(self.path))
        return self._zip
