"""
HTTP client for the remote log read API.

Routes (all GET, relative to ``base_url``):

    /api/v1/streams/{schema_key}/count          -> {"count": n}
    /api/v1/streams/{schema_key}/entries        -> {"entries": [...]}  (?start=&end=)
    /api/v1/streams/{schema_key}/entries/{i}    -> {"entry": ...}
    /api/v1/streams/{schema_key}/latest         -> {"entry": ... | null}

Entries come back either as ``0x`` hex strings (binary schema payloads) or as
already-decoded item lists. Both are normalized to bytes here; the codec picks
the matching decode strategy.
"""

import logging
from typing import Any

import httpx

from streamsync.codec.codec import entry_to_bytes
from streamsync.core.config import Settings
from streamsync.errors import RemoteLogError, RemoteNotFoundError, TransientNetworkError
from streamsync.remote.base import check_range

logger = logging.getLogger(__name__)


class HttpRemoteLog:
    """
    Async client for one stream of the remote log.

    Example:
        async with HttpRemoteLog("https://streams.example.net", "earthquakes") as log:
            total = await log.count()
            entries = await log.fetch_range(0, total - 1)
    """

    def __init__(
        self,
        base_url: str,
        schema_key: str,
        publisher: str | None = None,
        timeout: float = 30.0,
        page_size: int = 100,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Base URL of the read API
            schema_key: Stream identifier
            publisher: Restrict reads to one publisher's entries
            timeout: Request timeout in seconds
            page_size: Maximum entries per range request
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.base_url = base_url.rstrip("/")
        self.schema_key = schema_key
        self.publisher = publisher
        self.timeout = timeout
        self.page_size = page_size
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "HttpRemoteLog":
        return cls(
            base_url=settings.remote_url,
            schema_key=settings.schema_key,
            publisher=settings.publisher,
            timeout=settings.request_timeout_seconds,
            page_size=settings.page_size,
            **kwargs,
        )

    async def __aenter__(self) -> "HttpRemoteLog":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self) -> None:
        """Initialize the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RemoteLogError("Client not connected. Use 'async with' or call connect()")
        return self._client

    async def _get(self, path: str, **params: Any) -> dict:
        """GET a stream route, mapping failures onto the error taxonomy."""
        client = self._get_client()
        if self.publisher:
            params["publisher"] = self.publisher
        url = f"/api/v1/streams/{self.schema_key}{path}"

        try:
            response = await client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Request to {url} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Failed to reach {self.base_url}: {e}") from e

        if response.status_code == 404:
            raise RemoteNotFoundError(f"Not found: {url}")
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientNetworkError(
                f"Remote log unavailable: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise RemoteLogError(
                f"Remote log rejected request: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransientNetworkError(f"Malformed response from {url}: {e}") from e
        if not isinstance(data, dict):
            raise TransientNetworkError(f"Malformed response from {url}: expected object")
        return data

    async def count(self) -> int:
        data = await self._get("/count")
        total = data.get("count")
        # Counts above 2**53 may be sent as strings
        try:
            total = int(total)
        except (TypeError, ValueError) as e:
            raise TransientNetworkError(f"Malformed count: {data.get('count')!r}") from e
        if total < 0:
            raise TransientNetworkError(f"Negative count: {total}")
        return total

    async def fetch_range(self, start: int, end: int) -> list[bytes]:
        check_range(start, end)
        entries: list[bytes] = []
        page_start = start
        while page_start <= end:
            page_end = min(end, page_start + self.page_size - 1)
            data = await self._get("/entries", start=page_start, end=page_end)
            page = data.get("entries")
            expected = page_end - page_start + 1
            if not isinstance(page, list) or len(page) != expected:
                got = len(page) if isinstance(page, list) else "no"
                raise TransientNetworkError(
                    f"Incomplete range {page_start}..{page_end}: expected {expected} entries, got {got}"
                )
            entries.extend(entry_to_bytes(e) for e in page)
            page_start = page_end + 1
        logger.debug(f"Fetched {len(entries)} entries for range {start}..{end}")
        return entries

    async def fetch_latest(self) -> bytes | None:
        data = await self._get("/latest")
        entry = data.get("entry")
        return None if entry is None else entry_to_bytes(entry)

    async def fetch_by_index(self, index: int) -> bytes:
        if index < 0:
            raise ValueError(f"Index must be >= 0, got {index}")
        data = await self._get(f"/entries/{index}")
        entry = data.get("entry")
        if entry is None:
            raise RemoteNotFoundError(f"No entry at index {index}")
        return entry_to_bytes(entry)
