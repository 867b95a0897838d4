"""
Portable portal archives.

An archive is a ZIP file with one content item index entry (``data.json``,
a JSON array of content items) and one entry per media blob, named after the
blob.

Usage:
    from portalsync.archive import ArchiveReader, ArchiveWriter

    with ArchiveWriter(path, overwrite=True) as writer:
        writer.add_content_items(index_bytes)
        writer.add_blob(name, stream, modified)

    with ArchiveReader(path) as reader:
        reader.with_blob_handler(handle_blob).process()
"""

from portalsync.archive.base import (
    INDEX_ENTRY_NAME,
    ArchiveError,
    ArchiveExistsError,
    ArchiveIOError,
    ArchiveNotFoundError,
    CorruptArchiveError,
    DuplicateEntryError,
    IndexFormatError,
    InvalidSeek,
)
from portalsync.archive.entry_stream import SeekableEntryStream
from portalsync.archive.reader import ArchiveEntry, ArchiveReader, ProcessResult
from portalsync.archive.writer import ArchiveWriter

__all__ = [
    "INDEX_ENTRY_NAME",
    "ArchiveReader",
    "ArchiveWriter",
    "ArchiveEntry",
    "ProcessResult",
    "SeekableEntryStream",
    # Errors
    "ArchiveError",
    "ArchiveExistsError",
    "ArchiveIOError",
    "ArchiveNotFoundError",
    "CorruptArchiveError",
    "DuplicateEntryError",
    "IndexFormatError",
    "InvalidSeek",
]
