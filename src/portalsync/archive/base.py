"""
Shared constants and error classes for portal archives.

A portal archive is a ZIP file holding one content item index entry
(``data.json``) and one entry per media blob, named after the blob.
"""

from __future__ import annotations

# Reserved name of the content item index entry
INDEX_ENTRY_NAME = "data.json"

# Chunk size used when streaming blob content in and out of archives
COPY_CHUNK_SIZE = 64 * 1024


# -----------------------------------------------------------------------------
# Error Classes
# -----------------------------------------------------------------------------


class ArchiveError(Exception):
    """Base exception for archive errors."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.message = message
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class ArchiveExistsError(ArchiveError):
    """Raised when creating an archive over an existing file without overwrite."""

    pass


class ArchiveNotFoundError(ArchiveError):
    """Raised when an archive to be read does not exist."""

    pass


class CorruptArchiveError(ArchiveError):
    """Raised when a file is not a readable ZIP archive."""

    pass


class DuplicateEntryError(ArchiveError):
    """
    Raised when an entry name is written twice.

    This covers a second content item index and blobs named like the index.
    """

    pass


class ArchiveIOError(ArchiveError):
    """Raised when streaming content into an archive entry fails."""

    pass


class IndexFormatError(ArchiveError):
    """Raised when the content item index is missing or not a JSON array."""

    pass


class InvalidSeek(ArchiveError):
    """
    Raised when seeking an entry stream to a position before its start,
    or with an unknown whence value.
    """

    pass
