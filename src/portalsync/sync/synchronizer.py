"""
Capture and apply of developer portal content.

The Synchronizer moves a portal's content between a remote instance and an
archive file:

    capture:  content types -> content items -> blobs -> ArchiveWriter
    apply:    ArchiveReader -> upsert items / upload blobs -> reconcile
    reconcile: list remote again, delete everything the archive did not write

Per-item failures (one content item, one blob) are logged and counted and
never abort a run. Fatal conditions (the archive cannot be created or read,
the content item index is malformed, a reconciliation listing fails, or both
reconciliation sweeps have failed deletions) raise.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import BinaryIO

from portalsync.archive import (
    ArchiveReader,
    ArchiveWriter,
    IndexFormatError,
)
from portalsync.remote.base import BlobClient, ContentClient, ContentItem
from portalsync.sync.results import (
    ApplyResult,
    CaptureResult,
    ReconcileResult,
    ResetResult,
    StageCounts,
)

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Base exception for synchronization errors."""

    pass


class ReconciliationError(SyncError):
    """
    Raised when a reconciliation listing fails or both sweeps have failures.

    Attributes:
        result: Partial reconciliation result, with both sweeps' counters.
    """

    def __init__(self, result: ReconcileResult) -> None:
        self.result = result
        errors = [e for e in (result.content_error, result.blob_error) if e]
        super().__init__("deleting: " + " AND ".join(errors))


class Synchronizer:
    """
    Moves portal content between a remote instance and archive files.

    Usage:
        sync = Synchronizer(content_client, blob_client)
        sync.capture(Path("portal.zip"))
        sync.apply(Path("portal.zip"), delete_extra=True)
    """

    def __init__(self, content_client: ContentClient, blob_client: BlobClient) -> None:
        self.content_client = content_client
        self.blob_client = blob_client

    # -------------------------------------------------------------------------
    # Capture
    # -------------------------------------------------------------------------

    def capture(self, path: Path, overwrite: bool = False) -> CaptureResult:
        """
        Write the remote portal's content items and blobs to a new archive.

        Args:
            path: Archive file to create.
            overwrite: Replace an existing file instead of failing.

        Returns:
            CaptureResult with per-stage counters.

        Raises:
            ArchiveExistsError: If path exists and overwrite is False.
            ArchiveError: If the archive cannot be written or finalized.
        """
        result = CaptureResult(path=Path(path))

        with ArchiveWriter(path, overwrite=overwrite) as writer:
            items = self._collect_content_items(result.content_items)
            writer.add_content_items(json.dumps(items).encode("utf-8"))
            logger.info(f"Content items: {result.content_items.summary()}")

            self._capture_blobs(writer, result.blobs)
            logger.info(f"Media blobs: {result.blobs.summary()}")

        return result

    def _collect_content_items(self, counts: StageCounts) -> list[ContentItem]:
        content_types = self.content_client.list_content_types()
        logger.info(f"Processing {len(content_types)} content types")

        items: list[ContentItem] = []
        for content_type in content_types:
            try:
                type_items = self.content_client.list_content_items(content_type)
            except Exception as e:
                logger.error(f"Listing content items of {content_type}: {e}")
                counts.failed += 1
                continue

            logger.debug(f"{len(type_items)} {content_type} items found")
            items.extend(type_items)
            counts.ok += len(type_items)

        return items

    def _capture_blobs(self, writer: ArchiveWriter, counts: StageCounts) -> None:
        for name in self.blob_client.iter_blob_names():
            logger.debug(f"Downloading media blob {name}")
            try:
                with self.blob_client.download_blob(name) as blob:
                    writer.add_blob(name, blob.stream, modified=blob.last_modified)
            except Exception as e:
                logger.error(f"Downloading media blob {name}: {e}")
                counts.failed += 1
                continue
            counts.ok += 1

    # -------------------------------------------------------------------------
    # Apply
    # -------------------------------------------------------------------------

    def apply(self, path: Path, delete_extra: bool = True) -> ApplyResult:
        """
        Write an archive's content items and blobs to the remote portal.

        Args:
            path: Archive file to read.
            delete_extra: Delete remote items and blobs the archive did not
                write (reconciliation).

        Returns:
            ApplyResult with per-stage counters, the written id and name
            sets, and the reconciliation result if it ran.

        Raises:
            ArchiveNotFoundError: If path does not exist.
            CorruptArchiveError: If path is not a readable archive.
            IndexFormatError: If data.json is missing or malformed. Blobs
                already uploaded stay; reconciliation does not run.
            ReconciliationError: If a reconciliation sweep fails.
        """
        result = ApplyResult(path=Path(path))
        index_errors: list[IndexFormatError] = []
        seen_index = False

        def handle_index(stream: BinaryIO) -> None:
            nonlocal seen_index
            seen_index = True
            try:
                self._apply_content_items(stream, result)
            except IndexFormatError as e:
                index_errors.append(e)
                raise

        def handle_blob(name: str, stream: BinaryIO) -> None:
            self._apply_blob(name, stream, result)

        with ArchiveReader(path) as reader:
            reader.with_index_handler(handle_index).with_blob_handler(handle_blob)
            processed = reader.process()

        result.skipped = processed.skipped
        logger.info(f"Content items: {result.content_items.summary()}")
        logger.info(f"Media blobs: {result.blobs.summary()}")

        if index_errors:
            raise index_errors[0]
        if not seen_index:
            raise IndexFormatError("archive has no data.json entry", path=str(path))

        if not delete_extra:
            logger.info("Not deleting extra content")
            return result

        result.reconcile = self.reconcile(result.written_ids, result.written_names)
        return result

    def _apply_content_items(self, stream: BinaryIO, result: ApplyResult) -> None:
        try:
            items = json.loads(stream.read().decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise IndexFormatError(f"data.json is not valid JSON: {e}") from e

        if not isinstance(items, list):
            raise IndexFormatError(
                f"data.json must hold a JSON array, not {type(items).__name__}"
            )

        logger.info(f"Processing {len(items)} content items")
        counts = result.content_items

        for position, item in enumerate(items):
            if not isinstance(item, dict) or not isinstance(item.get("id"), str):
                logger.error(f"Content item at position {position} has no string id, skipping")
                counts.failed += 1
                continue

            fields = dict(item)
            item_id = fields.pop("id")
            try:
                self.content_client.upsert_content_item(item_id, fields)
            except Exception as e:
                logger.error(f"Uploading content item {item_id}: {e}")
                counts.failed += 1
                continue

            logger.debug(f"Uploaded item {item_id}")
            result.written_ids.add(item_id)
            counts.ok += 1

    def _apply_blob(self, name: str, stream: BinaryIO, result: ApplyResult) -> None:
        logger.debug(f"Uploading media blob {name}")
        try:
            self.blob_client.upload_blob(name, stream)
        except Exception:
            result.blobs.failed += 1
            raise

        result.written_names.add(name)
        result.blobs.ok += 1

    # -------------------------------------------------------------------------
    # Reconcile
    # -------------------------------------------------------------------------

    def reconcile(self, written_ids: set[str], written_names: set[str]) -> ReconcileResult:
        """
        Delete remote content items and blobs not in the written sets.

        The remote is listed afresh; both sweeps always run, each deletion
        independently of the others. Failed deletions are counted; they only
        fail the run when both sweeps have them.

        Raises:
            ReconciliationError: If either sweep's listing fails, or if both
                sweeps had failures. Carries the partial result.
        """
        result = ReconcileResult()
        content_listing_error = self._delete_extra_content_items(
            written_ids, result.content_items
        )
        blob_listing_error = self._delete_extra_blobs(written_names, result.blobs)

        result.content_error = content_listing_error
        if result.content_error is None and result.content_items.failed:
            result.content_error = (
                f"{result.content_items.failed} content items could not be deleted"
            )
        result.blob_error = blob_listing_error
        if result.blob_error is None and result.blobs.failed:
            result.blob_error = f"{result.blobs.failed} media blobs could not be deleted"

        if content_listing_error or blob_listing_error:
            raise ReconciliationError(result)
        if result.content_error and result.blob_error:
            raise ReconciliationError(result)
        return result

    def _delete_extra_content_items(
        self, written_ids: set[str], counts: StageCounts
    ) -> str | None:
        try:
            remote_ids = self.content_client.list_content_ids()
        except Exception as e:
            logger.error(f"Listing content items: {e}")
            return f"listing content items: {e}"

        logger.debug(f"Found {len(remote_ids)} content items on portal")

        for item_id in sorted(remote_ids - written_ids):
            try:
                self.content_client.delete_content_item(item_id)
            except Exception as e:
                logger.error(f"Deleting {item_id}: {e}")
                counts.failed += 1
                continue
            counts.ok += 1

        logger.info(f"Deleted {counts.ok} extra content items, {counts.failed} errors")
        return None

    def _delete_extra_blobs(self, written_names: set[str], counts: StageCounts) -> str | None:
        try:
            remote_names = set(self.blob_client.iter_blob_names())
        except Exception as e:
            logger.error(f"Listing media blobs: {e}")
            return f"listing media blobs: {e}"

        logger.debug(f"Found {len(remote_names)} blobs in container")

        for name in sorted(remote_names - written_names):
            logger.debug(f"Deleting blob: {name}")
            try:
                self.blob_client.delete_blob(name)
            except Exception as e:
                logger.error(f"Deleting blob {name}: {e}")
                counts.failed += 1
                continue
            counts.ok += 1

        logger.info(f"Deleted {counts.ok} extra media blobs, {counts.failed} errors")
        return None

    # -------------------------------------------------------------------------
    # Reset
    # -------------------------------------------------------------------------

    def reset(self) -> ResetResult:
        """
        Delete every content item and blob on the remote portal.

        Raises:
            RemoteError: If the remote content cannot be listed.
        """
        result = ResetResult()

        for item_id in sorted(self.content_client.list_content_ids()):
            try:
                self.content_client.delete_content_item(item_id)
            except Exception as e:
                logger.error(f"Deleting {item_id}: {e}")
                result.content_items.failed += 1
                continue
            result.content_items.ok += 1
        logger.info(f"Content items deleted: {result.content_items.summary()}")

        for name in list(self.blob_client.iter_blob_names()):
            try:
                self.blob_client.delete_blob(name)
            except Exception as e:
                logger.error(f"Deleting blob {name}: {e}")
                result.blobs.failed += 1
                continue
            result.blobs.ok += 1
        logger.info(f"Media blobs deleted: {result.blobs.summary()}")

        return result
