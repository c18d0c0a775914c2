"""
In-memory remote log.

Backs the demo command and tests. Supports appending (acting as the external
producer) and injecting transient failures into the read path.
"""

import asyncio
import logging
from collections.abc import Iterable

from streamsync.errors import RemoteNotFoundError, TransientNetworkError
from streamsync.remote.base import check_range

logger = logging.getLogger(__name__)


class InMemoryRemoteLog:
    """Append-only list of payloads exposed through the RemoteLog protocol."""

    def __init__(self, entries: Iterable[bytes] = (), latency: float = 0.0):
        """
        Args:
            entries: Initial payloads, index 0 first
            latency: Simulated per-call delay in seconds
        """
        self._entries: list[bytes] = list(entries)
        self._latency = latency
        self._failures_remaining = 0
        self._failure_message = "injected failure"
        self.calls: list[tuple] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> tuple[bytes, ...]:
        """Current contents, bypassing latency and failure injection."""
        return tuple(self._entries)

    # -- producer side --

    def append(self, payload: bytes) -> int:
        """Append a payload; returns its index."""
        self._entries.append(payload)
        return len(self._entries) - 1

    def extend(self, payloads: Iterable[bytes]) -> None:
        for payload in payloads:
            self.append(payload)

    def fail_next(self, times: int = 1, message: str = "injected failure") -> None:
        """Make the next ``times`` read calls raise TransientNetworkError."""
        self._failures_remaining = times
        self._failure_message = message

    # -- read side --

    async def _enter(self, call: tuple) -> None:
        self.calls.append(call)
        if self._latency:
            await asyncio.sleep(self._latency)
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            raise TransientNetworkError(f"{self._failure_message} during {call[0]}")

    async def count(self) -> int:
        await self._enter(("count",))
        return len(self._entries)

    async def fetch_range(self, start: int, end: int) -> list[bytes]:
        check_range(start, end)
        await self._enter(("fetch_range", start, end))
        if end >= len(self._entries):
            raise RemoteNotFoundError(f"Range {start}..{end} beyond head {len(self._entries)}")
        return self._entries[start:end + 1]

    async def fetch_latest(self) -> bytes | None:
        await self._enter(("fetch_latest",))
        return self._entries[-1] if self._entries else None

    async def fetch_by_index(self, index: int) -> bytes:
        await self._enter(("fetch_by_index", index))
        if not 0 <= index < len(self._entries):
            raise RemoteNotFoundError(f"No entry at index {index}")
        return self._entries[index]
