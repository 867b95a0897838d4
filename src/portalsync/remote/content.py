"""
Developer portal content items over the API Management REST API.

The portal's structured content (pages, layouts, styles, navigation, ...)
is exposed by the instance management API as content types, each holding
content items. Requests are authorized with the Administrator
SharedAccessSignature token.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from portalsync.config.settings import DEFAULT_API_VERSION
from portalsync.remote.base import (
    ContentClient,
    ContentItem,
    HttpClient,
    RemoteStatusError,
)

logger = logging.getLogger(__name__)

# The management API ignores the ARM path of the instance but requires its shape
PLACEHOLDER_INSTANCE_PATH = (
    "/subscriptions/00000/resourceGroups/00000"
    "/providers/Microsoft.ApiManagement/service/00000"
)

CONTENT_TYPE_PREFIX = "/contentTypes/"


class PortalContentClient(HttpClient, ContentClient):
    """
    Content items of one developer portal.

    Item ids are absolute resource paths such as
    /contentTypes/page/contentItems/abc, appended to the base URL as-is.
    """

    def __init__(
        self,
        management_url: str,
        sas_token: str,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        api_version: str = DEFAULT_API_VERSION,
    ) -> None:
        super().__init__(session=session, timeout=timeout)
        self.base_url = management_url.rstrip("/") + PLACEHOLDER_INSTANCE_PATH
        self._sas_token = sas_token
        self.api_version = api_version

    def _prepare(self, headers: dict[str, str], params: dict[str, Any]) -> None:
        headers["Authorization"] = f"SharedAccessSignature {self._sas_token}"
        params.setdefault("api-version", self.api_version)

    def list_content_types(self) -> list[str]:
        response = self._request(
            "GET", f"{self.base_url}/contentTypes", "Listing content types"
        )

        content_types = []
        for entry in response.json().get("value") or []:
            type_id = str(entry.get("id", ""))
            if type_id.startswith(CONTENT_TYPE_PREFIX):
                type_id = type_id[len(CONTENT_TYPE_PREFIX):]
            if type_id:
                content_types.append(type_id)

        logger.debug(f"Found {len(content_types)} content types")
        return content_types

    def list_content_items(self, content_type: str) -> list[ContentItem]:
        response = self._request(
            "GET",
            f"{self.base_url}/contentTypes/{content_type}/contentItems",
            f"Listing content items of {content_type}",
        )
        items: list[ContentItem] = response.json().get("value") or []
        return items

    def upsert_content_item(self, item_id: str, fields: ContentItem) -> None:
        self._request(
            "PUT",
            f"{self.base_url}{item_id}",
            f"Writing content item {item_id}",
            json=fields,
        )

    def delete_content_item(self, item_id: str) -> None:
        self._request(
            "DELETE", f"{self.base_url}{item_id}", f"Deleting content item {item_id}"
        )

    def get_media_container_url(self) -> str:
        """Return the SAS URL of the blob container holding portal media."""
        response = self._request(
            "POST",
            f"{self.base_url}/portalSettings/mediaContent/listSecrets",
            "Getting blob storage URL",
        )
        url = response.json().get("containerSasUrl")
        if not url:
            raise RemoteStatusError("Media content secrets have no containerSasUrl")
        return str(url)
