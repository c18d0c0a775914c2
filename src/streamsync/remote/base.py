"""
Remote log protocol.

The remote log is append-only and addressed by insertion index. All calls are
pull-style and safe to retry. The log may grow between ``count()`` and a later
fetch; callers derive the end of a range from a fresh ``count()``.
"""

from abc import abstractmethod
from typing import Protocol, runtime_checkable


@runtime_checkable
class RemoteLog(Protocol):
    """Read-only client for one stream of the remote log."""

    @abstractmethod
    async def count(self) -> int:
        """Total number of entries currently in the log."""
        ...

    @abstractmethod
    async def fetch_range(self, start: int, end: int) -> list[bytes]:
        """Entries ``start..end`` inclusive, in index order."""
        ...

    @abstractmethod
    async def fetch_latest(self) -> bytes | None:
        """Most recently appended entry, or None for an empty log."""
        ...

    @abstractmethod
    async def fetch_by_index(self, index: int) -> bytes:
        """Entry at ``index``."""
        ...


def check_range(start: int, end: int) -> None:
    """Validate an inclusive index range."""
    if start < 0:
        raise ValueError(f"Range start must be >= 0, got {start}")
    if end < start:
        raise ValueError(f"Range end {end} is before start {start}")
