"""Tasmota settings snapshot fetcher.

Downloads the binary settings dump a Tasmota device serves at ``/dl``.  The
body is treated as opaque bytes whatever content type the device declares.
"""

from __future__ import annotations

import logging
import re

import httpx

from tasmotascope.backups.errors import DeviceUnreachable

logger = logging.getLogger("tasmotascope.backups.fetcher")

SNAPSHOT_PATH = "/dl"
FETCH_TIMEOUT_SECONDS = 10.0

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def snapshot_url(address: str) -> str:
    """Return the plain-HTTP snapshot URL for a device address.

    Any ``http://`` or ``https://`` prefix is stripped; devices are always
    contacted over plain HTTP.
    """
    return f"http://{_SCHEME_RE.sub('', address.strip())}{SNAPSHOT_PATH}"


class SnapshotFetcher:
    """Fetch raw settings snapshots from devices.

    Stateless; one instance can serve any number of concurrent fetches.
    No retries: a failed fetch aborts the calling backup.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = FETCH_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the fetcher.

        Args:
            http_client: Optional pre-configured httpx client (for testing).
            timeout:     Overall request timeout in seconds.
        """
        self._http_client = http_client
        self._timeout = timeout

    async def fetch(self, address: str) -> bytes:
        """Download the current snapshot from the device at ``address``.

        Raises:
            DeviceUnreachable: On non-2xx status, connection error, or timeout.
        """
        url = snapshot_url(address)
        logger.debug("Fetching snapshot from %s", url)

        try:
            if self._http_client:
                response = await self._http_client.get(url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(url)
        except httpx.TimeoutException as exc:
            raise DeviceUnreachable(address, reason="timeout") from exc
        except httpx.HTTPError as exc:
            raise DeviceUnreachable(address, reason=str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            raise DeviceUnreachable(
                address, status_code=response.status_code, reason=response.reason_phrase
            )

        logger.debug("Fetched %d bytes from %s", len(response.content), address)
        return response.content
