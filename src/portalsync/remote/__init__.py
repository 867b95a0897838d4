"""
Remote clients for developer portal content.

The abstract ContentClient and BlobClient are what the synchronizer depends
on; the concrete clients talk to Azure API Management, its developer portal
and the portal's media blob container.
"""

from portalsync.remote.base import (
    AuthenticationError,
    BlobClient,
    BlobPage,
    ContentClient,
    ContentItem,
    DownloadedBlob,
    RemoteConnectionError,
    RemoteError,
    RemoteNotFoundError,
    RemoteStatusError,
)
from portalsync.remote.blob import BlobContainerClient
from portalsync.remote.content import PortalContentClient
from portalsync.remote.management import ManagementClient, PortalEndpoints
from portalsync.remote.portal import (
    PortalClient,
    PortalStatus,
    PublishTimeoutError,
)

__all__ = [
    # Interfaces
    "ContentClient",
    "BlobClient",
    "ContentItem",
    "BlobPage",
    "DownloadedBlob",
    # Clients
    "ManagementClient",
    "PortalEndpoints",
    "PortalContentClient",
    "BlobContainerClient",
    "PortalClient",
    "PortalStatus",
    # Errors
    "RemoteError",
    "AuthenticationError",
    "RemoteNotFoundError",
    "RemoteConnectionError",
    "RemoteStatusError",
    "PublishTimeoutError",
]
