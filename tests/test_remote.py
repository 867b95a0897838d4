"""
Tests for the remote REST clients.

HTTP traffic goes through a mocked requests session and blob traffic through a
mocked azure-storage-blob ContainerClient. The tests check request shapes
(method, URL, headers, parameters, bodies) and how responses and failures
are mapped.
"""

import unittest
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import requests
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)

from portalsync.config.settings import Settings
from portalsync.remote.base import (
    AuthenticationError,
    HttpClient,
    RemoteConnectionError,
    RemoteNotFoundError,
    RemoteStatusError,
    check_response,
)
from portalsync.remote.blob import BlobContainerClient
from portalsync.remote.content import PLACEHOLDER_INSTANCE_PATH, PortalContentClient
from portalsync.remote.management import ManagementClient
from portalsync.remote.portal import (
    PortalClient,
    PublishTimeoutError,
    parse_publish_date,
)

MGMT_URL = "https://contoso.management.azure-api.net"
CONTENT_BASE = MGMT_URL + PLACEHOLDER_INSTANCE_PATH
CONTAINER_SAS_URL = "https://store.blob.core.windows.net/content?sv=2019&sig=abc"


def make_response(
    status_code: int = 200,
    json_data: object = None,
    content: bytes = b"",
    headers: dict | None = None,
) -> MagicMock:
    """Create a mock requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.reason = {200: "OK", 201: "Created", 404: "Not Found"}.get(status_code, "Error")
    response.json.return_value = json_data
    response.content = content
    response.headers = headers or {}
    return response


def sent(session: MagicMock, call: int = -1) -> tuple:
    """Return (method, url, kwargs) of one session.request call."""
    args, kwargs = session.request.call_args_list[call]
    return args[0], args[1], kwargs


class TestCheckResponse(unittest.TestCase):
    """Tests for check_response status mapping."""

    def test_success(self) -> None:
        """Test 2xx responses pass."""
        check_response(make_response(200), "Test")
        check_response(make_response(201), "Test")

    def test_authentication(self) -> None:
        """Test 401 and 403 map to AuthenticationError."""
        for status in (401, 403):
            with self.assertRaises(AuthenticationError) as ctx:
                check_response(make_response(status), "Test")
            self.assertEqual(ctx.exception.status_code, status)

    def test_not_found(self) -> None:
        """Test 404 maps to RemoteNotFoundError."""
        with self.assertRaises(RemoteNotFoundError):
            check_response(make_response(404), "Test")

    def test_other_status(self) -> None:
        """Test other statuses map to RemoteStatusError with context."""
        with self.assertRaises(RemoteStatusError) as ctx:
            check_response(make_response(500), "Deleting blob x")
        self.assertIn("Deleting blob x", str(ctx.exception))
        self.assertIn("500", str(ctx.exception))


class TestHttpClient(unittest.TestCase):
    """Tests for the shared HttpClient."""

    def test_connection_error(self) -> None:
        """Test transport errors become RemoteConnectionError."""
        session = MagicMock()
        session.request.side_effect = requests.exceptions.ConnectionError("refused")
        client = HttpClient(session=session, timeout=5)

        with self.assertRaises(RemoteConnectionError) as ctx:
            client._request("GET", "https://example.com", "Fetching")
        self.assertIn("Fetching", str(ctx.exception))

    def test_timeout_passed(self) -> None:
        """Test the client timeout is passed on every request."""
        session = MagicMock()
        session.request.return_value = make_response(200)
        HttpClient(session=session, timeout=7)._request("GET", "https://example.com", "Fetching")

        _, _, kwargs = sent(session)
        self.assertEqual(kwargs["timeout"], 7)


class TestManagementClient(unittest.TestCase):
    """Tests for ManagementClient."""

    def setUp(self) -> None:
        """Set up settings and a mocked session with a valid token."""
        self.settings = Settings()
        self.settings.azure.subscription_id = "sub-1"
        self.settings.azure.tenant_id = "tenant-1"
        self.settings.azure.client_id = "client-1"
        self.settings.azure.resource_group = "rg-1"
        self.settings.azure.service_name = "contoso"
        self.session = MagicMock()
        self.session.post.return_value = make_response(200, {"access_token": "aad-token"})
        self.client = ManagementClient(self.settings, "secret", session=self.session)

    def test_instance_url(self) -> None:
        """Test the Resource Manager path of the instance."""
        self.assertEqual(
            self.client.instance_url,
            "https://management.azure.com/subscriptions/sub-1/resourceGroups/rg-1"
            "/providers/Microsoft.ApiManagement/service/contoso",
        )

    def test_access_token_request(self) -> None:
        """Test client credentials token request."""
        token = self.client.get_access_token()

        self.assertEqual(token, "aad-token")
        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], "https://login.microsoftonline.com/tenant-1/oauth2/token")
        self.assertEqual(kwargs["data"]["grant_type"], "client_credentials")
        self.assertEqual(kwargs["data"]["client_id"], "client-1")
        self.assertEqual(kwargs["data"]["client_secret"], "secret")
        self.assertEqual(kwargs["data"]["resource"], "https://management.azure.com/")

    def test_access_token_cached(self) -> None:
        """Test the token is requested once."""
        self.client.get_access_token()
        self.client.get_access_token()
        self.assertEqual(self.session.post.call_count, 1)

    def test_access_token_rejected(self) -> None:
        """Test rejected credentials raise AuthenticationError."""
        self.session.post.return_value = make_response(401, {"error": "invalid_client"})

        with self.assertRaises(AuthenticationError):
            self.client.get_access_token()

    def test_instance_urls(self) -> None:
        """Test default portal and management URLs."""
        self.session.request.return_value = make_response(200, {
            "properties": {
                "developerPortalUrl": "https://contoso.developer.azure-api.net",
                "managementApiUrl": MGMT_URL,
            }
        })

        portal, mgmt = self.client.get_instance_urls()

        self.assertEqual(portal, "https://contoso.developer.azure-api.net")
        self.assertEqual(mgmt, MGMT_URL)
        method, url, kwargs = sent(self.session)
        self.assertEqual(method, "GET")
        self.assertEqual(url, self.client.instance_url)
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer aad-token")
        self.assertEqual(kwargs["params"]["api-version"], "2019-12-01")

    def test_instance_urls_custom_hostnames(self) -> None:
        """Test custom hostnames override the default URLs."""
        self.session.request.return_value = make_response(200, {
            "properties": {
                "developerPortalUrl": "https://contoso.developer.azure-api.net",
                "managementApiUrl": MGMT_URL,
                "hostnameConfigurations": [
                    {"type": "Proxy", "hostName": "api.contoso.com"},
                    {"type": "DeveloperPortal", "hostName": "developer.contoso.com"},
                    {"type": "Management", "hostName": "mgmt.contoso.com"},
                ],
            }
        })

        portal, mgmt = self.client.get_instance_urls()

        self.assertEqual(portal, "https://developer.contoso.com")
        self.assertEqual(mgmt, "https://mgmt.contoso.com")

    def test_sas_token(self) -> None:
        """Test SAS token request for the Administrator user."""
        self.session.request.return_value = make_response(200, {"value": "uid=1&ex=x&sn=y"})

        token = self.client.get_sas_token()

        self.assertEqual(token, "uid=1&ex=x&sn=y")
        method, url, kwargs = sent(self.session)
        self.assertEqual(method, "POST")
        self.assertEqual(url, self.client.instance_url + "/users/1/token")
        self.assertEqual(kwargs["json"]["properties"]["keyType"], "primary")
        self.assertTrue(kwargs["json"]["properties"]["expiry"].endswith("Z"))

    def test_build_endpoints(self) -> None:
        """Test endpoints combine instance URLs, SAS token and media URL."""
        self.session.request.side_effect = [
            make_response(200, {
                "properties": {
                    "developerPortalUrl": "https://contoso.developer.azure-api.net",
                    "managementApiUrl": MGMT_URL,
                }
            }),
            make_response(200, {"value": "sas"}),
            make_response(200, {"containerSasUrl": CONTAINER_SAS_URL}),
        ]

        endpoints = self.client.build_endpoints()

        self.assertEqual(endpoints.portal_url, "https://contoso.developer.azure-api.net")
        self.assertEqual(endpoints.management_url, MGMT_URL)
        self.assertEqual(endpoints.sas_token, "sas")
        self.assertEqual(endpoints.blob_storage_url, CONTAINER_SAS_URL)

        method, url, kwargs = sent(self.session)
        self.assertEqual(method, "POST")
        self.assertEqual(url, CONTENT_BASE + "/portalSettings/mediaContent/listSecrets")
        self.assertEqual(kwargs["headers"]["Authorization"], "SharedAccessSignature sas")


class TestPortalContentClient(unittest.TestCase):
    """Tests for PortalContentClient."""

    def setUp(self) -> None:
        """Set up a client with a mocked session."""
        self.session = MagicMock()
        self.client = PortalContentClient(MGMT_URL, "sas", session=self.session)

    def test_list_content_types(self) -> None:
        """Test content type ids are stripped of their prefix."""
        self.session.request.return_value = make_response(200, {
            "value": [{"id": "/contentTypes/page"}, {"id": "/contentTypes/layout"}]
        })

        self.assertEqual(self.client.list_content_types(), ["page", "layout"])
        method, url, kwargs = sent(self.session)
        self.assertEqual(url, CONTENT_BASE + "/contentTypes")
        self.assertEqual(kwargs["headers"]["Authorization"], "SharedAccessSignature sas")
        self.assertEqual(kwargs["params"]["api-version"], "2019-12-01")

    def test_list_content_items(self) -> None:
        """Test items of one content type."""
        items = [{"id": "/contentTypes/page/contentItems/a", "title": "A"}]
        self.session.request.return_value = make_response(200, {"value": items})

        self.assertEqual(self.client.list_content_items("page"), items)
        _, url, _ = sent(self.session)
        self.assertEqual(url, CONTENT_BASE + "/contentTypes/page/contentItems")

    def test_list_content_ids(self) -> None:
        """Test the id inventory across all content types."""
        self.session.request.side_effect = [
            make_response(200, {"value": [{"id": "/contentTypes/page"}]}),
            make_response(200, {"value": [
                {"id": "/contentTypes/page/contentItems/a"},
                {"id": "/contentTypes/page/contentItems/b"},
            ]}),
        ]

        self.assertEqual(
            self.client.list_content_ids(),
            {"/contentTypes/page/contentItems/a", "/contentTypes/page/contentItems/b"},
        )

    def test_upsert(self) -> None:
        """Test items are PUT at their absolute id path."""
        self.session.request.return_value = make_response(200)

        self.client.upsert_content_item("/contentTypes/page/contentItems/a", {"title": "A"})

        method, url, kwargs = sent(self.session)
        self.assertEqual(method, "PUT")
        self.assertEqual(url, CONTENT_BASE + "/contentTypes/page/contentItems/a")
        self.assertEqual(kwargs["json"], {"title": "A"})

    def test_delete_not_found(self) -> None:
        """Test a 404 on delete raises RemoteNotFoundError."""
        self.session.request.return_value = make_response(404)

        with self.assertRaises(RemoteNotFoundError):
            self.client.delete_content_item("/contentTypes/page/contentItems/a")
        method, _, _ = sent(self.session)
        self.assertEqual(method, "DELETE")

    def test_media_container_url_missing(self) -> None:
        """Test a listSecrets response without a URL is an error."""
        self.session.request.return_value = make_response(200, {})

        with self.assertRaises(RemoteStatusError):
            self.client.get_media_container_url()


class FakeBlobPager:
    """Stands in for the SDK page iterator returned by by_page()."""

    def __init__(self, names: list[str], next_token: str | None) -> None:
        self._pages = iter([[SimpleNamespace(name=name) for name in names]])
        self._next_token = next_token
        self.continuation_token = None

    def __iter__(self) -> "FakeBlobPager":
        return self

    def __next__(self) -> list:
        page = next(self._pages)
        self.continuation_token = self._next_token
        return page


def azure_status_error(error_class: type, status: int, reason: str) -> Exception:
    """Build an SDK response error carrying a status, without a transport."""
    error = error_class(message=reason)
    error.status_code = status
    error.reason = reason
    return error


class TestBlobContainerClient(unittest.TestCase):
    """Tests for BlobContainerClient on top of a mocked ContainerClient."""

    def setUp(self) -> None:
        """Set up a client with a mocked container."""
        self.container = MagicMock()
        self.client = BlobContainerClient(CONTAINER_SAS_URL, container=self.container)

    def test_container_url(self) -> None:
        """Test the SAS query is split from the container URL."""
        self.assertEqual(self.client.container_url, "https://store.blob.core.windows.net/content")

    def test_builds_container_from_sas_url(self) -> None:
        """Test the SDK client is created from the full SAS URL."""
        with patch("portalsync.remote.blob.ContainerClient.from_container_url") as factory:
            client = BlobContainerClient(CONTAINER_SAS_URL, timeout=12)

        factory.assert_called_once_with(
            CONTAINER_SAS_URL, connection_timeout=12, read_timeout=12
        )
        self.assertIs(client.container, factory.return_value)

    def test_list_blobs_page(self) -> None:
        """Test one page gives names and the continuation token."""
        self.container.list_blobs.return_value.by_page.return_value = FakeBlobPager(
            ["images/logo.png", "fonts/main.woff"], "2!token"
        )

        page = self.client.list_blobs()

        self.assertEqual(page.names, ["images/logo.png", "fonts/main.woff"])
        self.assertEqual(page.next_marker, "2!token")
        self.assertFalse(page.is_last)
        self.container.list_blobs.return_value.by_page.assert_called_once_with(
            continuation_token=None
        )

    def test_list_blobs_last_page(self) -> None:
        """Test a missing continuation token ends the listing."""
        self.container.list_blobs.return_value.by_page.return_value = FakeBlobPager(
            ["z.txt"], None
        )

        page = self.client.list_blobs("2!token")

        self.assertEqual(page.names, ["z.txt"])
        self.assertTrue(page.is_last)
        self.container.list_blobs.return_value.by_page.assert_called_once_with(
            continuation_token="2!token"
        )

    def test_iter_blob_names_pages(self) -> None:
        """Test listing follows the continuation token across pages."""
        by_page = self.container.list_blobs.return_value.by_page
        by_page.side_effect = [
            FakeBlobPager(["images/logo.png", "fonts/main.woff"], "2!token"),
            FakeBlobPager(["z.txt"], None),
        ]

        names = list(self.client.iter_blob_names())

        self.assertEqual(names, ["images/logo.png", "fonts/main.woff", "z.txt"])
        self.assertEqual(by_page.call_args_list[1].kwargs["continuation_token"], "2!token")

    def test_list_blobs_auth_failure(self) -> None:
        """Test a rejected SAS token maps to AuthenticationError."""
        self.container.list_blobs.return_value.by_page.side_effect = azure_status_error(
            ClientAuthenticationError, 403, "Forbidden"
        )

        with self.assertRaises(AuthenticationError) as ctx:
            self.client.list_blobs()

        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(str(ctx.exception), "Listing blobs: status 403 Forbidden received")

    def test_upload(self) -> None:
        """Test uploads overwrite and carry a guessed content type."""
        stream = MagicMock()

        self.client.upload_blob("images/my logo.png", stream)

        args, kwargs = self.container.upload_blob.call_args
        self.assertEqual(args, ("images/my logo.png", stream))
        self.assertTrue(kwargs["overwrite"])
        self.assertEqual(kwargs["content_settings"].content_type, "image/png")

    def test_upload_unknown_type(self) -> None:
        """Test names without a known extension upload as octet-stream."""
        self.client.upload_blob("blob-without-extension", MagicMock())

        settings = self.container.upload_blob.call_args.kwargs["content_settings"]
        self.assertEqual(settings.content_type, "application/octet-stream")

    def test_upload_server_error(self) -> None:
        """Test a 500 answer maps to RemoteStatusError."""
        self.container.upload_blob.side_effect = azure_status_error(
            HttpResponseError, 500, "Server Error"
        )

        with self.assertRaises(RemoteStatusError) as ctx:
            self.client.upload_blob("a.png", MagicMock())

        self.assertEqual(ctx.exception.status_code, 500)

    def test_download(self) -> None:
        """Test downloads stream the chunks and read the blob properties."""
        modified = datetime(2021, 3, 3, 10, 20, 30, tzinfo=UTC)
        downloader = MagicMock()
        downloader.size = 5
        downloader.properties.last_modified = modified
        downloader.chunks.return_value = iter([b"he", b"", b"llo"])
        self.container.download_blob.return_value = downloader

        with self.client.download_blob("a.png") as blob:
            self.assertEqual(blob.stream.read(), b"hello")
            self.assertEqual(blob.last_modified, modified)
            self.assertEqual(blob.size, 5)

        self.assertTrue(blob.stream.closed)
        self.container.download_blob.assert_called_once_with("a.png")

    def test_download_missing(self) -> None:
        """Test a missing blob maps to RemoteNotFoundError."""
        self.container.download_blob.side_effect = azure_status_error(
            ResourceNotFoundError, 404, "The specified blob does not exist."
        )

        with self.assertRaises(RemoteNotFoundError):
            self.client.download_blob("gone.png")

    def test_download_connection_lost(self) -> None:
        """Test a transport failure while reading maps to RemoteConnectionError."""

        def chunks():
            yield b"partial"
            raise ServiceResponseError("connection reset")

        downloader = MagicMock()
        downloader.chunks.return_value = chunks()
        self.container.download_blob.return_value = downloader

        blob = self.client.download_blob("a.png")
        self.assertEqual(blob.stream.read(7), b"partial")
        with self.assertRaises(RemoteConnectionError) as ctx:
            blob.stream.read(7)

        self.assertIn("Downloading blob a.png: connection reset", str(ctx.exception))

    def test_delete(self) -> None:
        """Test deletes go to the named blob."""
        self.client.delete_blob("a.png")

        self.container.delete_blob.assert_called_once_with("a.png")

    def test_delete_connection_failure(self) -> None:
        """Test an unreachable service maps to RemoteConnectionError."""
        self.container.delete_blob.side_effect = ServiceRequestError("name resolution failed")

        with self.assertRaises(RemoteConnectionError):
            self.client.delete_blob("a.png")


class TestPortalClient(unittest.TestCase):
    """Tests for PortalClient status and publish."""

    PORTAL_URL = "https://contoso.developer.azure-api.net"

    def setUp(self) -> None:
        """Set up a client with a mocked session."""
        self.session = MagicMock()
        self.client = PortalClient(self.PORTAL_URL, "sas", session=self.session)

    def status_response(self, version: str = "202103031020") -> MagicMock:
        return make_response(
            200,
            {"Status": 1, "PortalVersion": version, "CodeVersion": "c1", "Version": "v1"},
            headers={"Content-Type": "application/json; charset=utf-8"},
        )

    def test_parse_publish_date(self) -> None:
        """Test PortalVersion parsing to minute resolution."""
        self.assertEqual(
            parse_publish_date("20210303102055"),
            datetime(2021, 3, 3, 10, 20, tzinfo=UTC),
        )
        self.assertIsNone(parse_publish_date(""))
        with self.assertRaises(ValueError):
            parse_publish_date("2021xx03102055")

    def test_is_deployed(self) -> None:
        """Test 200 means deployed and 404 not deployed."""
        self.session.request.return_value = make_response(200)
        self.assertTrue(self.client.is_deployed())

        self.session.request.return_value = make_response(404)
        self.assertFalse(self.client.is_deployed())

        self.session.request.return_value = make_response(500)
        with self.assertRaises(RemoteStatusError):
            self.client.is_deployed()

    def test_get_status(self) -> None:
        """Test status fields are read from the status endpoint."""
        self.session.request.return_value = self.status_response()

        status = self.client.get_status()

        self.assertEqual(status.published_at, datetime(2021, 3, 3, 10, 20, tzinfo=UTC))
        self.assertEqual(status.code_version, "c1")
        self.assertEqual(status.version, "v1")
        _, url, _ = sent(self.session)
        self.assertEqual(url, self.PORTAL_URL + "/internal-status-0123456789abcdef")

    @patch("portalsync.remote.portal.time")
    def test_get_status_retries_html(self, mock_time: MagicMock) -> None:
        """Test non-JSON status responses are retried."""
        html = make_response(200, headers={"Content-Type": "text/html"})
        self.session.request.side_effect = [html, html, self.status_response()]

        status = self.client.get_status()

        self.assertEqual(status.version, "v1")
        self.assertEqual(mock_time.sleep.call_count, 2)

    @patch("portalsync.remote.portal.time")
    def test_get_status_gives_up(self, mock_time: MagicMock) -> None:
        """Test three non-JSON responses raise."""
        html = make_response(200, headers={"Content-Type": "text/html"})
        self.session.request.side_effect = [html, html, html]

        with self.assertRaises(RemoteStatusError):
            self.client.get_status()

    @patch("portalsync.remote.portal.time")
    def test_publish_without_wait(self, mock_time: MagicMock) -> None:
        """Test publish posts with the SAS token and returns."""
        self.session.request.side_effect = [self.status_response(), make_response(200)]

        self.client.publish()

        method, url, kwargs = sent(self.session)
        self.assertEqual(method, "POST")
        self.assertEqual(url, self.PORTAL_URL + "/publish")
        self.assertEqual(kwargs["headers"]["Authorization"], "SharedAccessSignature sas")
        mock_time.sleep.assert_not_called()

    @patch("portalsync.remote.portal.time")
    def test_publish_wait(self, mock_time: MagicMock) -> None:
        """Test waiting until the portal version changes."""
        mock_time.monotonic.return_value = 0
        self.session.request.side_effect = [
            self.status_response("202103031020"),
            make_response(200),
            make_response(200),
            self.status_response("202103031020"),
            self.status_response("202103031045"),
        ]

        self.client.publish(wait=True)

        self.assertEqual(mock_time.sleep.call_count, 1)

    @patch("portalsync.remote.portal.time")
    def test_publish_wait_timeout(self, mock_time: MagicMock) -> None:
        """Test waiting past the timeout raises PublishTimeoutError."""
        mock_time.monotonic.side_effect = [0, 1000]
        self.session.request.side_effect = [
            self.status_response(),
            make_response(200),
            make_response(200),
            self.status_response(),
        ]

        with self.assertRaises(PublishTimeoutError):
            self.client.publish(wait=True, timeout=300)


if __name__ == "__main__":
    unittest.main()
