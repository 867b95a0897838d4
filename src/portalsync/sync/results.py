"""
Result values returned by the synchronizer.

Every stage reports explicit counters instead of raising for per-item
failures; fatal conditions are exceptions (see synchronizer.py).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class StageCounts:
    """Successes and failures of one stage."""

    ok: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.ok + self.failed

    def summary(self) -> str:
        return f"{self.ok} ok, {self.failed} errors"


@dataclass
class CaptureResult:
    """Result of capturing a remote portal into an archive."""

    path: Path
    content_items: StageCounts = field(default_factory=StageCounts)
    blobs: StageCounts = field(default_factory=StageCounts)

    @property
    def failed(self) -> int:
        return self.content_items.failed + self.blobs.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "content_items": asdict(self.content_items),
            "blobs": asdict(self.blobs),
        }


@dataclass
class ReconcileResult:
    """
    Result of deleting remote content not present in an archive.

    Attributes:
        content_items: Deletions of content items.
        blobs: Deletions of blobs.
        content_error: What went wrong in the content sweep (a failed listing
            or failed deletions), if anything did.
        blob_error: What went wrong in the blob sweep, if anything did.
    """

    content_items: StageCounts = field(default_factory=StageCounts)
    blobs: StageCounts = field(default_factory=StageCounts)
    content_error: str | None = None
    blob_error: str | None = None

    @property
    def success(self) -> bool:
        return self.content_error is None and self.blob_error is None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ApplyResult:
    """
    Result of applying an archive to a remote portal.

    Attributes:
        content_items: Content item upserts.
        blobs: Blob uploads.
        skipped: Archive entries without a handler.
        written_ids: Ids of content items written successfully.
        written_names: Names of blobs uploaded successfully.
        reconcile: Reconciliation result, or None when deletes were suppressed.
    """

    path: Path
    content_items: StageCounts = field(default_factory=StageCounts)
    blobs: StageCounts = field(default_factory=StageCounts)
    skipped: int = 0
    written_ids: set[str] = field(default_factory=set)
    written_names: set[str] = field(default_factory=set)
    reconcile: ReconcileResult | None = None

    @property
    def failed(self) -> int:
        return self.content_items.failed + self.blobs.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "content_items": asdict(self.content_items),
            "blobs": asdict(self.blobs),
            "skipped": self.skipped,
            "reconcile": self.reconcile.to_dict() if self.reconcile else None,
        }


@dataclass
class ResetResult:
    """Result of deleting all portal content."""

    content_items: StageCounts = field(default_factory=StageCounts)
    blobs: StageCounts = field(default_factory=StageCounts)

    @property
    def failed(self) -> int:
        return self.content_items.failed + self.blobs.failed
