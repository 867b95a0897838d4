"""
Developer portal media in Azure Blob Storage.

The portal keeps uploaded media in one blob container. The management API
hands out a container SAS URL for it, and the azure-storage-blob
ContainerClient built from that URL does the listing, transfers and deletes.
Azure SDK exceptions are translated to the RemoteError hierarchy so callers
never depend on azure.core.
"""

from __future__ import annotations

import io
import logging
import mimetypes
from collections.abc import Iterator
from typing import BinaryIO
from urllib.parse import urlsplit, urlunsplit

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import ContainerClient, ContentSettings

from portalsync.remote.base import (
    AuthenticationError,
    BlobClient,
    BlobPage,
    DownloadedBlob,
    RemoteConnectionError,
    RemoteError,
    RemoteNotFoundError,
    RemoteStatusError,
)

logger = logging.getLogger(__name__)

DEFAULT_BLOB_CONTENT_TYPE = "application/octet-stream"

# Names per listing page; None lets the service decide (up to 5000)
DEFAULT_PAGE_SIZE: int | None = None


def translate_error(error: AzureError, what: str) -> RemoteError:
    """
    Map an Azure SDK exception to the matching RemoteError.

    Args:
        error: Exception raised by the SDK.
        what: Short description of the operation, for error messages.

    Returns:
        The RemoteError to raise in its place.
    """
    if isinstance(error, (ServiceRequestError, ServiceResponseError)):
        return RemoteConnectionError(f"{what}: {error.message}")

    status = getattr(error, "status_code", None)
    if status is None:
        message = f"{what}: {error.message}"
    else:
        reason = f"{status} {getattr(error, 'reason', None) or ''}".strip()
        message = f"{what}: status {reason} received"

    if isinstance(error, ClientAuthenticationError) or status in (401, 403):
        return AuthenticationError(message, status)
    if isinstance(error, ResourceNotFoundError) or status == 404:
        return RemoteNotFoundError(message, status)
    if isinstance(error, HttpResponseError):
        return RemoteStatusError(message, status)
    return RemoteError(message, status)


class BlobDownloadStream(io.RawIOBase):
    """
    Readable stream over the chunks of one blob download.

    SDK errors raised while fetching later chunks surface as RemoteError.
    """

    def __init__(self, name: str, chunks: Iterator[bytes]) -> None:
        super().__init__()
        self.name = name
        self._chunks = chunks
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[no-untyped-def]
        if len(buffer) == 0:
            return 0

        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
            except AzureError as e:
                raise translate_error(e, f"Downloading blob {self.name}") from e

        n = min(len(buffer), len(self._pending))
        buffer[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n

    def close(self) -> None:
        self._pending = b""
        super().close()


class BlobContainerClient(BlobClient):
    """
    Blobs of one container, addressed through a container SAS URL.

    Attributes:
        container_url: Container URL without the SAS query string.
        container: The azure-storage-blob ContainerClient in use.
    """

    def __init__(
        self,
        container_sas_url: str,
        container: ContainerClient | None = None,
        timeout: float = 30.0,
        page_size: int | None = DEFAULT_PAGE_SIZE,
    ) -> None:
        """
        Create a client for the container.

        Args:
            container_sas_url: Container URL carrying a SAS token.
            container: Preconfigured ContainerClient; built from the URL when
                omitted.
            timeout: Connection and read timeout, in seconds.
            page_size: Names requested per listing page.
        """
        parts = urlsplit(container_sas_url)
        self.container_url = urlunsplit(
            (parts.scheme, parts.netloc, parts.path.rstrip("/"), "", "")
        )
        self.page_size = page_size
        self.container = container or ContainerClient.from_container_url(
            container_sas_url,
            connection_timeout=timeout,
            read_timeout=timeout,
        )

    def list_blobs(self, marker: str | None = None) -> BlobPage:
        what = "Listing blobs"
        try:
            pages = self.container.list_blobs(results_per_page=self.page_size).by_page(
                continuation_token=marker or None
            )
            names = [blob.name for blob in next(pages, [])]
        except AzureError as e:
            raise translate_error(e, what) from e

        next_marker = pages.continuation_token or ""
        logger.debug(f"{what}: {len(names)} names, more: {bool(next_marker)}")
        return BlobPage(names=names, next_marker=next_marker)

    def download_blob(self, name: str) -> DownloadedBlob:
        try:
            downloader = self.container.download_blob(name)
        except AzureError as e:
            raise translate_error(e, f"Downloading blob {name}") from e

        logger.debug(f"Downloading blob {name}: {downloader.size} bytes")
        return DownloadedBlob(
            name=name,
            stream=BlobDownloadStream(name, downloader.chunks()),
            last_modified=downloader.properties.last_modified,
            size=downloader.size,
        )

    def upload_blob(self, name: str, stream: BinaryIO) -> None:
        content_type = mimetypes.guess_type(name)[0] or DEFAULT_BLOB_CONTENT_TYPE
        try:
            self.container.upload_blob(
                name,
                stream,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type),
            )
        except AzureError as e:
            raise translate_error(e, f"Uploading blob {name}") from e
        logger.debug(f"Uploaded blob {name} as {content_type}")

    def delete_blob(self, name: str) -> None:
        try:
            self.container.delete_blob(name)
        except AzureError as e:
            raise translate_error(e, f"Deleting blob {name}") from e
        logger.debug(f"Deleted blob {name}")
