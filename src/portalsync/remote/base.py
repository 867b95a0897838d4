"""
Remote client interfaces for developer portal content.

This module defines what the synchronizer needs from the remote side: a
content client for the portal's structured content items and a blob client
for its media container. Concrete implementations talk to the Azure API
Management REST API and Azure Blob Storage; tests substitute in-memory
fakes.

Design Principles:
    - Every remote failure raises a RemoteError subclass
    - Clients do not retry; callers decide what a failure means
    - All requests are logged at debug level for troubleshooting
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO

import requests

logger = logging.getLogger(__name__)

# Default timeout for remote HTTP calls, in seconds
DEFAULT_TIMEOUT = 30

ContentItem = dict[str, Any]


# -----------------------------------------------------------------------------
# Error Classes
# -----------------------------------------------------------------------------


class RemoteError(Exception):
    """Base exception for remote API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(RemoteError):
    """
    Raised when the remote API rejects our credentials.

    This includes invalid client secrets, expired tokens and permission denials.
    """

    pass


class RemoteNotFoundError(RemoteError):
    """Raised when a remote resource does not exist."""

    pass


class RemoteConnectionError(RemoteError):
    """
    Raised when the remote API cannot be reached.

    This includes network errors, DNS failures and timeouts.
    """

    pass


class RemoteStatusError(RemoteError):
    """Raised for any other non-success HTTP status."""

    pass


def check_response(response: requests.Response, what: str) -> None:
    """
    Map a non-2xx response to the matching RemoteError.

    Args:
        response: Response to check.
        what: Short description of the request, for error messages.

    Raises:
        AuthenticationError: For 401 and 403.
        RemoteNotFoundError: For 404.
        RemoteStatusError: For any other status of 300 or above.
    """
    status = response.status_code
    if status < 300:
        return

    reason = f"{status} {response.reason or ''}".strip()
    if status in (401, 403):
        raise AuthenticationError(f"{what}: status {reason} received", status)
    if status == 404:
        raise RemoteNotFoundError(f"{what}: status {reason} received", status)
    raise RemoteStatusError(f"{what}: status {reason} received", status)


class HttpClient:
    """
    Small wrapper around a requests session shared by the REST clients.

    Subclasses decorate requests (authorization headers, api-version) in
    _prepare() and call _request() for every API call.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout

    def _prepare(self, headers: dict[str, str], params: dict[str, Any]) -> None:
        """Hook for subclasses to add headers and query parameters."""
        pass

    def _request(
        self,
        method: str,
        url: str,
        what: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        """
        Send a request and check its status.

        Raises:
            RemoteConnectionError: If the request cannot be sent.
            RemoteError: If the response status is not 2xx.
        """
        params = dict(params or {})
        headers = dict(headers or {})
        self._prepare(headers, params)

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.exceptions.RequestException as e:
            logger.debug(f"{method} {url} failed: {e}")
            raise RemoteConnectionError(f"{what}: {e}") from e

        logger.debug(f"{method} {url}: {response.status_code}")
        check_response(response, what)
        return response


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------


@dataclass
class BlobPage:
    """
    One page of a blob container listing.

    Attributes:
        names: Blob names on this page, in listing order.
        next_marker: Continuation marker; empty when the listing is complete.
    """

    names: list[str] = field(default_factory=list)
    next_marker: str = ""

    @property
    def is_last(self) -> bool:
        return not self.next_marker


@dataclass
class DownloadedBlob:
    """An open blob download: caller must close the stream."""

    name: str
    stream: BinaryIO
    last_modified: datetime | None = None
    size: int | None = None

    def close(self) -> None:
        self.stream.close()

    def __enter__(self) -> DownloadedBlob:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        self.close()


# -----------------------------------------------------------------------------
# Client Interfaces
# -----------------------------------------------------------------------------


class ContentClient(ABC):
    """Structured content items of a developer portal, keyed by id."""

    @abstractmethod
    def list_content_types(self) -> list[str]:
        """Return the content type names used by the portal."""
        pass

    @abstractmethod
    def list_content_items(self, content_type: str) -> list[ContentItem]:
        """Return every content item of one type, in remote listing order."""
        pass

    @abstractmethod
    def upsert_content_item(self, item_id: str, fields: ContentItem) -> None:
        """Create or replace the item with the given id."""
        pass

    @abstractmethod
    def delete_content_item(self, item_id: str) -> None:
        """Delete the item with the given id."""
        pass

    def iter_content_items(self) -> Iterator[ContentItem]:
        """Yield all content items, ordered by type then listing order."""
        for content_type in self.list_content_types():
            yield from self.list_content_items(content_type)

    def list_content_ids(self) -> set[str]:
        """Return the ids of every content item on the portal."""
        return {str(item["id"]) for item in self.iter_content_items() if "id" in item}


class BlobClient(ABC):
    """Media blobs of a developer portal, keyed by name."""

    @abstractmethod
    def list_blobs(self, marker: str | None = None) -> BlobPage:
        """Return one page of blob names starting at marker."""
        pass

    @abstractmethod
    def download_blob(self, name: str) -> DownloadedBlob:
        """Open a download of the named blob."""
        pass

    @abstractmethod
    def upload_blob(self, name: str, stream: BinaryIO) -> None:
        """Create or replace the named blob with the stream content."""
        pass

    @abstractmethod
    def delete_blob(self, name: str) -> None:
        """Delete the named blob."""
        pass

    def iter_blob_names(self) -> Iterator[str]:
        """Yield every blob name, following continuation markers to the end."""
        marker: str | None = None
        while True:
            page = self.list_blobs(marker)
            yield from page.names
            if page.is_last:
                return
            marker = page.next_marker
