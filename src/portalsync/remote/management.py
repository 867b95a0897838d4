"""
Azure Resource Manager client for API Management instances.

Resolves everything needed to talk to a developer portal:

    1. An OAuth access token for the service principal (client credentials).
    2. The instance's developer portal and management API URLs, honouring
       custom hostname configurations.
    3. A SharedAccessSignature token for the instance's Administrator user,
       used by the content, blob and portal clients.

Usage:
    client = ManagementClient(settings, client_secret)
    endpoints = client.build_endpoints()
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import requests

from portalsync.config.settings import Settings
from portalsync.remote.base import (
    AuthenticationError,
    HttpClient,
    RemoteConnectionError,
    RemoteStatusError,
    check_response,
)
from portalsync.remote.content import PortalContentClient

logger = logging.getLogger(__name__)

# Validity of SharedAccessSignature tokens we request
SAS_TOKEN_VALIDITY = timedelta(minutes=30)

# Administrator is always user 1 on an API Management instance
ADMIN_USER_ID = "1"


@dataclass
class PortalEndpoints:
    """
    Developer portal endpoints for one API Management instance.

    Attributes:
        portal_url: Public developer portal URL.
        management_url: Instance management API (data plane) URL.
        blob_storage_url: Container SAS URL of the portal media storage.
        sas_token: SharedAccessSignature token for the management API.
    """

    portal_url: str
    management_url: str
    sas_token: str
    blob_storage_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ManagementClient(HttpClient):
    """
    Client for the Azure Resource Manager API Management endpoints.

    Requests carry a bearer token for the service principal and the
    configured api-version query parameter.
    """

    def __init__(
        self,
        settings: Settings,
        client_secret: str,
        session: requests.Session | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            settings: Settings with the azure section filled in.
            client_secret: Service principal client secret.
            session: Optional requests session (for testing).
        """
        super().__init__(session=session, timeout=settings.http.timeout)
        self.azure = settings.azure
        self._client_secret = client_secret
        self._access_token: str | None = None

    @property
    def instance_url(self) -> str:
        """Resource Manager URL of the API Management instance."""
        return (
            f"{self.azure.management_endpoint}"
            f"/subscriptions/{self.azure.subscription_id}"
            f"/resourceGroups/{self.azure.resource_group}"
            f"/providers/Microsoft.ApiManagement/service/{self.azure.service_name}"
        )

    def _prepare(self, headers: dict[str, str], params: dict[str, Any]) -> None:
        headers["Authorization"] = f"Bearer {self.get_access_token()}"
        params.setdefault("api-version", self.azure.api_version)

    def get_access_token(self) -> str:
        """
        Acquire (once) an OAuth token for the management endpoint.

        Raises:
            AuthenticationError: If the token endpoint rejects the credentials.
            RemoteConnectionError: If the token endpoint cannot be reached.
        """
        if self._access_token is not None:
            return self._access_token

        url = f"{self.azure.login_endpoint}/{self.azure.tenant_id}/oauth2/token"
        data = {
            "grant_type": "client_credentials",
            "client_id": self.azure.client_id,
            "client_secret": self._client_secret,
            "resource": self.azure.management_endpoint.rstrip("/") + "/",
        }

        try:
            response = self.session.post(url, data=data, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise RemoteConnectionError(f"Requesting access token: {e}") from e

        if response.status_code in (400, 401):
            raise AuthenticationError(
                "Azure AD rejected the service principal credentials. "
                "Check tenant, client id and client secret.",
                response.status_code,
            )
        check_response(response, "Requesting access token")

        token = response.json().get("access_token")
        if not token:
            raise AuthenticationError("Azure AD returned no access token")

        self._access_token = token
        logger.debug("Acquired management access token")
        return token

    def get_instance_urls(self) -> tuple[str, str]:
        """
        Return the developer portal URL and management API URL.

        Custom hostnames of type DeveloperPortal and Management replace the
        default URLs.
        """
        logger.info("Querying instance")
        response = self._request("GET", self.instance_url, "Querying instance")
        properties = response.json().get("properties", {})

        portal_url = properties.get("developerPortalUrl", "")
        management_url = properties.get("managementApiUrl", "")

        for entry in properties.get("hostnameConfigurations") or []:
            hostname = entry.get("hostName") or entry.get("hostname")
            if not hostname:
                continue
            if entry.get("type") == "DeveloperPortal":
                portal_url = f"https://{hostname}"
            elif entry.get("type") == "Management":
                management_url = f"https://{hostname}"

        if not portal_url or not management_url:
            raise RemoteStatusError(
                "Instance has no developer portal or management API URL"
            )

        logger.debug(f"Dev portal URL: {portal_url}, Management API URL: {management_url}")
        return portal_url, management_url

    def get_sas_token(self, validity: timedelta = SAS_TOKEN_VALIDITY) -> str:
        """Request a SharedAccessSignature token for the Administrator user."""
        expiry = datetime.now(UTC) + validity
        body = {
            "properties": {
                "keyType": "primary",
                "expiry": expiry.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            }
        }

        response = self._request(
            "POST",
            f"{self.instance_url}/users/{ADMIN_USER_ID}/token",
            "Requesting SAS token",
            json=body,
        )
        token = response.json().get("value")
        if not token:
            raise RemoteStatusError("SAS token response has no value")

        logger.debug("Acquired management API SAS token")
        return token

    def get_blob_storage_url(self, management_url: str, sas_token: str) -> str:
        """Return the container SAS URL of the portal media storage."""
        content = PortalContentClient(
            management_url,
            sas_token,
            session=self.session,
            timeout=self.timeout,
            api_version=self.azure.api_version,
        )
        return content.get_media_container_url()

    def build_endpoints(self) -> PortalEndpoints:
        """Resolve portal, management and media storage URLs and a SAS token."""
        portal_url, management_url = self.get_instance_urls()
        sas_token = self.get_sas_token()
        return PortalEndpoints(
            portal_url=portal_url,
            management_url=management_url,
            sas_token=sas_token,
            blob_storage_url=self.get_blob_storage_url(management_url, sas_token),
        )
