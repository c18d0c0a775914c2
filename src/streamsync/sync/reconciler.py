"""
Catch-up reconciler.

Pulls the gap between the local cursor and the remote head:

    remote_total = count()
    if remote_total <= cursor: nothing to do
    entries = fetch_range(cursor, remote_total - 1)
    decode (skip failures) -> filter -> merge
    cursor = remote_total

The cursor moves only after the whole range was fetched. Any fetch failure
raises CursorStallError with the cursor untouched, so the next trigger retries
the same range instead of a truncated one.
"""

import logging
from dataclasses import dataclass

from streamsync.codec.codec import RecordCodec
from streamsync.core.filter import RecordFilter, apply_filter
from streamsync.core.types import Record
from streamsync.errors import CursorStallError, RemoteLogError, TransientNetworkError
from streamsync.remote.base import RemoteLog
from streamsync.sync.merge import RecordStore, merge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one catch-up pass."""
    cursor: int
    store: RecordStore
    added: tuple[Record, ...] = ()
    fetched: int = 0
    skipped: int = 0


class CatchUpReconciler:
    """Repairs gaps left by missed or undecodable push notifications."""

    def __init__(self, remote: RemoteLog, codec: RecordCodec, record_filter: RecordFilter):
        self.remote = remote
        self.codec = codec
        self.record_filter = record_filter

    async def reconcile(self, cursor: int, store: RecordStore) -> ReconcileResult:
        """
        Fetch and merge every entry past ``cursor``.

        Args:
            cursor: Number of remote entries already ingested
            store: Current store

        Returns:
            ReconcileResult with the advanced cursor and merged store

        Raises:
            CursorStallError: If count or the range fetch fails
        """
        try:
            remote_total = await self.remote.count()
        except RemoteLogError as e:
            raise CursorStallError(cursor, None, e) from e

        if remote_total < cursor:
            logger.warning(f"Remote head {remote_total} is behind local cursor {cursor}; ignoring")
        if remote_total <= cursor:
            return ReconcileResult(cursor=cursor, store=store)

        try:
            payloads = await self.remote.fetch_range(cursor, remote_total - 1)
        except RemoteLogError as e:
            raise CursorStallError(cursor, remote_total, e) from e

        expected = remote_total - cursor
        if len(payloads) != expected:
            short = TransientNetworkError(f"expected {expected} entries, got {len(payloads)}")
            raise CursorStallError(cursor, remote_total, short)

        decoded, failures = self.codec.decode_many(payloads, first_index=cursor)
        result = merge(store, apply_filter(self.record_filter, decoded))

        logger.info(
            f"Catch-up {cursor}..{remote_total - 1}: {len(result.added)} new, "
            f"{len(failures)} undecodable"
        )
        return ReconcileResult(
            cursor=remote_total,
            store=result.store,
            added=result.added,
            fetched=len(payloads),
            skipped=len(failures),
        )
