"""
Developer portal status and publishing.

The portal itself (not the management API) reports whether it is deployed
and which published version it serves, and accepts publish requests
authorized with the Administrator SharedAccessSignature token.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import requests

from portalsync.remote.base import (
    HttpClient,
    RemoteError,
    RemoteNotFoundError,
    RemoteStatusError,
)

logger = logging.getLogger(__name__)

STATUS_PATH = "/internal-status-0123456789abcdef"

# The portal sometimes answers the status endpoint with an HTML debug page
STATUS_ATTEMPTS = 3
STATUS_RETRY_DELAY = 5

PUBLISH_POLL_INTERVAL = 5
DEFAULT_PUBLISH_TIMEOUT = 300


class PublishTimeoutError(RemoteError):
    """Raised when a publish does not complete within the wait timeout."""

    pass


@dataclass
class PortalStatus:
    """
    Developer portal status.

    Attributes:
        status: Raw status code reported by the portal.
        published_at: Time of the last publish (minute resolution, UTC),
            or None if the portal was never published.
        code_version: Portal code version.
        version: Portal version.
    """

    status: int = 0
    published_at: datetime | None = None
    code_version: str = ""
    version: str = ""

    def to_dict(self, is_deployed: bool | None = None) -> dict[str, Any]:
        result: dict[str, Any] = {
            "portal_version": self.published_at.isoformat() if self.published_at else "",
            "code_version": self.code_version,
            "version": self.version,
        }
        if is_deployed is not None:
            result = {"is_deployed": is_deployed, **result}
        return result


def parse_publish_date(value: str) -> datetime | None:
    """
    Parse a PortalVersion string (YYYYMMDDHHMM...) into a UTC datetime.

    Returns None for strings too short to hold a date.

    Raises:
        ValueError: If the leading twelve characters are not a valid date.
    """
    if len(value) < 12:
        return None
    return datetime.strptime(value[:12], "%Y%m%d%H%M").replace(tzinfo=UTC)


class PortalClient(HttpClient):
    """Status and publish operations on one developer portal."""

    def __init__(
        self,
        portal_url: str,
        sas_token: str,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(session=session, timeout=timeout)
        self.portal_url = portal_url.rstrip("/")
        self._sas_token = sas_token

    def is_deployed(self) -> bool:
        """Return True if the portal answers 200, False if it answers 404."""
        try:
            self._request("GET", self.portal_url, "Checking portal deployment")
        except RemoteNotFoundError:
            return False
        return True

    def get_status(self) -> PortalStatus:
        """
        Read the portal status, retrying while the portal answers non-JSON.

        Raises:
            RemoteStatusError: If every attempt returned a non-JSON response
                or the version string cannot be parsed.
        """
        for attempt in range(STATUS_ATTEMPTS):
            response = self._request(
                "GET", f"{self.portal_url}{STATUS_PATH}", "Getting portal status"
            )
            content_type = response.headers.get("Content-Type", "")
            if content_type.startswith("application/json"):
                break

            logger.warning(f"Dev portal returned '{content_type}' response, ignoring")
            if attempt < STATUS_ATTEMPTS - 1:
                time.sleep(STATUS_RETRY_DELAY)
        else:
            raise RemoteStatusError("Portal status: too many bad responses received, giving up")

        data = response.json()
        try:
            published_at = parse_publish_date(str(data.get("PortalVersion") or ""))
        except ValueError as e:
            raise RemoteStatusError(f"Portal status: bad PortalVersion: {e}") from e

        status = PortalStatus(
            status=int(data.get("Status") or 0),
            published_at=published_at,
            code_version=str(data.get("CodeVersion") or ""),
            version=str(data.get("Version") or ""),
        )
        logger.debug(f"Portal status: {status}")
        return status

    def publish(self, wait: bool = False, timeout: float = DEFAULT_PUBLISH_TIMEOUT) -> None:
        """
        Publish the portal.

        The publish date has minute resolution, so a publish less than a
        minute after the previous one is delayed until that minute has passed.

        Args:
            wait: Poll until the portal is deployed and its version changed.
            timeout: Maximum seconds to wait when wait is True.

        Raises:
            PublishTimeoutError: If waiting exceeds timeout.
        """
        before = self.get_status()

        if before.published_at is not None:
            wait_until = before.published_at + timedelta(minutes=1)
            delay = (wait_until - datetime.now(UTC)).total_seconds()
            if delay > 0:
                logger.info(f"Waiting for {int(delay)}s before publishing portal")
                time.sleep(delay)

        self._request(
            "POST",
            f"{self.portal_url}/publish",
            "Publishing portal",
            headers={"Authorization": f"SharedAccessSignature {self._sas_token}"},
        )

        if not wait:
            logger.info("Developer portal publish triggered")
            return

        logger.info(f"Waiting (max {int(timeout)}s) for publish to complete")
        deadline = time.monotonic() + timeout

        while not self.is_deployed():
            logger.debug("Devportal not yet deployed..")
            self._sleep_until_next_poll(deadline)

        while self.get_status().published_at == before.published_at:
            logger.debug("Devportal not yet published..")
            self._sleep_until_next_poll(deadline)

        logger.info("Developer portal published")

    def _sleep_until_next_poll(self, deadline: float) -> None:
        if time.monotonic() + PUBLISH_POLL_INTERVAL > deadline:
            raise PublishTimeoutError("Publish timed out")
        time.sleep(PUBLISH_POLL_INTERVAL)
