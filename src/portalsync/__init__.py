"""
portalsync - Azure API Management developer portal backup and restore

Captures a developer portal's content items and media blobs into a single
ZIP archive, and applies such an archive back onto a portal, deleting
whatever the archive does not contain.

Key Features:
    - Portable archives: one data.json index plus one entry per media blob
    - Per-item failure tolerance with "N ok, M errors" summaries
    - Exact-set restore (reconciliation), optionally suppressed
    - Portal status, publish, endpoint and SAS token helpers

Design Principles:
    - Streaming: blobs never need to fit in memory
    - Explicit: every run returns its counters, no hidden global state
    - Safe: a malformed archive index never triggers deletes
"""

__version__ = "0.1.0"
__author__ = ""
__email__ = ""

from portalsync.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
