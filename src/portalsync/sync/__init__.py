"""
Capture and apply of developer portal content.

The Synchronizer drives the archive reader and writer together with the
remote content and blob clients.
"""

from portalsync.sync.results import (
    ApplyResult,
    CaptureResult,
    ReconcileResult,
    ResetResult,
    StageCounts,
)
from portalsync.sync.synchronizer import (
    ReconciliationError,
    SyncError,
    Synchronizer,
)

__all__ = [
    "Synchronizer",
    # Results
    "StageCounts",
    "CaptureResult",
    "ApplyResult",
    "ReconcileResult",
    "ResetResult",
    # Errors
    "SyncError",
    "ReconciliationError",
]
