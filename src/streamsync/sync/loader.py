"""
Bulk loader: full initial read of the remote log.

Reads ``count()`` and then every index, either as paged ranges or one index at
a time. Decode failures skip single entries; fetch failures abort the whole
load so that the cursor is never set past entries that were not read.
"""

import logging
from dataclasses import dataclass

from streamsync.codec.codec import RecordCodec
from streamsync.core.filter import RecordFilter, apply_filter
from streamsync.core.types import Record
from streamsync.errors import TransientNetworkError
from streamsync.remote.base import RemoteLog
from streamsync.sync.merge import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadResult:
    """Records from a completed bulk load, filtered and sorted newest first."""
    records: tuple[Record, ...]
    remote_total: int
    skipped: int = 0
    rejected: int = 0


class BulkLoader:
    """Loads every entry of the remote log."""

    def __init__(
        self,
        remote: RemoteLog,
        codec: RecordCodec,
        record_filter: RecordFilter,
        mode: str = "range",
    ):
        if mode not in ("range", "index"):
            raise ValueError(f"Unknown bulk load mode: {mode!r}")
        self.remote = remote
        self.codec = codec
        self.record_filter = record_filter
        self.mode = mode

    async def load(self) -> LoadResult:
        """
        Read, decode, filter and sort the whole log.

        Raises:
            RemoteLogError: If count or any fetch fails, or a range comes back short
        """
        total = await self.remote.count()
        if total == 0:
            logger.info("Remote log is empty; waiting for the producer to publish")
            return LoadResult(records=(), remote_total=0)

        logger.info(f"Bulk loading {total} entries ({self.mode} mode)")
        if self.mode == "range":
            payloads = await self.remote.fetch_range(0, total - 1)
        else:
            payloads = [await self.remote.fetch_by_index(i) for i in range(total)]
        if len(payloads) != total:
            raise TransientNetworkError(f"Bulk load expected {total} entries, got {len(payloads)}")

        decoded, failures = self.codec.decode_many(payloads, first_index=0)
        accepted = apply_filter(self.record_filter, decoded)
        store = RecordStore(accepted)

        logger.info(
            f"Bulk load complete: {len(store)} records kept of {total} "
            f"({len(failures)} undecodable, {len(decoded) - len(accepted)} filtered out)"
        )
        return LoadResult(
            records=store.records,
            remote_total=total,
            skipped=len(failures),
            rejected=len(decoded) - len(accepted),
        )
