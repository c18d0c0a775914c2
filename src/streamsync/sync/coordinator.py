"""
Reconciliation coordinator.

Owns the single authoritative record store and the remote cursor, and wires
the three ingestion paths into it:

- bulk load at start (``start_fetch_all``)
- push notifications, via PushSubscriptionManager
- catch-up passes on subscribe, reconnect, staleness and decode failure

All store writes go through ``merge`` on the event loop thread, so readers
always see a complete store. Catch-ups are serialized; triggers that arrive
while one is running are coalesced into a single follow-up pass.
"""

import asyncio
import dataclasses
import inspect
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from streamsync.codec.codec import RecordCodec
from streamsync.core.config import Settings
from streamsync.core.filter import RecordFilter, ThresholdFilter
from streamsync.core.types import Record
from streamsync.errors import CursorStallError, RemoteLogError
from streamsync.push.channel import BundleDirective, BundleKind, PushChannel
from streamsync.push.manager import PushSubscriptionManager, SessionState
from streamsync.remote.base import RemoteLog
from streamsync.sync.loader import BulkLoader
from streamsync.sync.merge import RecordStore, merge
from streamsync.sync.reconciler import CatchUpReconciler

logger = logging.getLogger(__name__)

StoreReplacedCallback = Callable[[list[Record]], Any]
NewRecordCallback = Callable[[Record], Any]

_UNSET: Any = object()


@dataclass(frozen=True)
class ConsumerCallbacks:
    """Consumer hooks. Replaced as a whole, never mutated."""
    on_store_replaced: StoreReplacedCallback | None = None
    on_new_record: NewRecordCallback | None = None


class ReconciliationCoordinator:
    """
    Keeps a de-duplicated, newest-first view of a remote append-only log.

    Example:
        async with ReconciliationCoordinator.from_settings(settings, remote, channel) as sync:
            sync.set_callbacks(on_new_record=notify)
            ...
    """

    def __init__(
        self,
        remote: RemoteLog,
        channel: PushChannel,
        codec: RecordCodec,
        record_filter: RecordFilter,
        event_name: str,
        schema_key: str,
        publisher: str | None = None,
        bundle_kind: BundleKind = BundleKind.LATEST,
        bulk_load_mode: str = "range",
        subscribe_timeout: float = 10.0,
        channel_error_retry: float = 3.0,
        subscribe_retry: float = 5.0,
        stale_after: float = 60.0,
        staleness_check_interval: float = 0.0,
        on_store_replaced: StoreReplacedCallback | None = None,
        on_new_record: NewRecordCallback | None = None,
    ):
        """
        Args:
            remote: Pull API over the remote log
            channel: Push channel for new-entry notifications
            codec: Payload decoder
            record_filter: Domain filter shared by every ingestion path
            event_name: Push event announcing a new entry
            schema_key: Stream identifier used in bundle directives
            publisher: Optional publisher identifier
            bundle_kind: Read bundled with each notification
            bulk_load_mode: "range" or "index"
            subscribe_timeout: Window for one subscribe attempt (seconds)
            channel_error_retry: Reconnect delay after a channel error (seconds)
            subscribe_retry: Reconnect delay after a failed subscribe (seconds)
            stale_after: Silence after which the channel is treated as stale (seconds)
            staleness_check_interval: Watchdog period; 0 disables the watchdog
            on_store_replaced: Called with the full sorted list after each change
            on_new_record: Called once per genuinely new record, after the initial load
        """
        self.remote = remote
        self.codec = codec
        self.record_filter = record_filter
        self.schema_key = schema_key
        self.publisher = publisher
        self.bundle_kind = BundleKind(bundle_kind)
        self.stale_after = stale_after
        self.staleness_check_interval = staleness_check_interval

        self._store = RecordStore.empty()
        self._cursor = 0
        self._callbacks = ConsumerCallbacks(on_store_replaced, on_new_record)
        self._loader = BulkLoader(remote, codec, record_filter, mode=bulk_load_mode)
        self._reconciler = CatchUpReconciler(remote, codec, record_filter)
        self._manager = PushSubscriptionManager(
            channel=channel,
            event_name=event_name,
            directive_provider=self._directive,
            codec=codec,
            record_filter=record_filter,
            ingest=self._ingest,
            request_catch_up=self.request_catch_up,
            on_active=self._on_subscription_active,
            channel_error_retry=channel_error_retry,
            subscribe_retry=subscribe_retry,
            subscribe_timeout=subscribe_timeout,
        )

        self._catch_up_lock = asyncio.Lock()
        self._catch_up_task: asyncio.Task | None = None
        self._catch_up_pending = False
        self._watchdog: asyncio.Task | None = None
        self._loaded = False
        self._started = False
        self._closed = False
        self._visible = True
        self._started_at: float | None = None

        self._catch_ups = 0
        self._stalls = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        remote: RemoteLog,
        channel: PushChannel,
        codec: RecordCodec | None = None,
        record_filter: RecordFilter | None = None,
        **callbacks: Any,
    ) -> "ReconciliationCoordinator":
        """Build a coordinator from Settings; codec and filter default from settings too."""
        return cls(
            remote=remote,
            channel=channel,
            codec=codec or RecordCodec.from_settings(settings),
            record_filter=record_filter or ThresholdFilter.from_settings(settings),
            event_name=settings.event_name,
            schema_key=settings.schema_key,
            publisher=settings.publisher,
            bundle_kind=BundleKind(settings.bundle_directive),
            bulk_load_mode=settings.bulk_load_mode,
            subscribe_timeout=settings.subscribe_timeout_seconds,
            channel_error_retry=settings.channel_error_retry_seconds,
            subscribe_retry=settings.subscribe_retry_seconds,
            stale_after=settings.stale_after_seconds,
            staleness_check_interval=settings.staleness_check_interval_seconds,
            **callbacks,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def records(self) -> list[Record]:
        """Copy of the current view, newest first."""
        return self._store.snapshot()

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def state(self) -> SessionState:
        return self._manager.state

    @property
    def manager(self) -> PushSubscriptionManager:
        return self._manager

    @property
    def last_event_at(self) -> float | None:
        return self._manager.last_event_at

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def staleness(self, now: float | None = None) -> float:
        """Seconds since the last notification (or since start if none arrived)."""
        reference = self._manager.last_event_at or self._started_at
        if reference is None:
            return 0.0
        return max(0.0, (now if now is not None else time.time()) - reference)

    def get_stats(self) -> dict[str, Any]:
        return {
            "records": len(self._store),
            "cursor": self._cursor,
            "loaded": self._loaded,
            "catch_ups": self._catch_ups,
            "stalls": self._stalls,
            "push": self._manager.get_stats(),
        }

    def set_callbacks(
        self,
        on_store_replaced: StoreReplacedCallback | None = _UNSET,
        on_new_record: NewRecordCallback | None = _UNSET,
    ) -> None:
        """Replace consumer hooks. Pass None to clear one; omit to keep it."""
        changes = {}
        if on_store_replaced is not _UNSET:
            changes["on_store_replaced"] = on_store_replaced
        if on_new_record is not _UNSET:
            changes["on_new_record"] = on_new_record
        self._callbacks = dataclasses.replace(self._callbacks, **changes)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> list[Record]:
        """
        Bulk load, then open the push subscription.

        The first successful subscribe triggers a catch-up covering anything
        appended between the load and the subscription.

        Returns:
            The loaded records, newest first
        """
        if self._started:
            raise RuntimeError("Coordinator already started")
        self._started = True
        self._started_at = time.time()

        records = await self.start_fetch_all()
        if self._closed:
            return records

        await self._manager.start()
        if self.staleness_check_interval > 0:
            self._watchdog = asyncio.create_task(self._watch_staleness())
        return records

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        current = asyncio.current_task()
        tasks = [
            t for t in (self._watchdog, self._catch_up_task)
            if t is not None and not t.done() and t is not current
        ]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._manager.close()
        logger.info(f"Coordinator closed with {len(self._store)} records at cursor {self._cursor}")

    async def __aenter__(self) -> "ReconciliationCoordinator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Ingestion paths
    # ------------------------------------------------------------------

    async def start_fetch_all(self) -> list[Record]:
        """
        Read the entire remote log into the store.

        Never raises for remote failures: the error is logged, the cursor
        stays where it was, and the current view is returned.
        """
        async with self._catch_up_lock:
            try:
                result = await self._loader.load()
            except RemoteLogError as e:
                logger.error(f"Bulk load failed, cursor stays at {self._cursor}: {e}")
                return self._store.snapshot()

            merged = merge(self._store, result.records)
            self._store = merged.store
            self._cursor = max(self._cursor, result.remote_total)
            announce = self._loaded
            self._loaded = True

        self._emit(merged.added, replaced=True, announce=announce)
        return self._store.snapshot()

    def request_catch_up(self, reason: str = "requested") -> None:
        """Schedule a catch-up pass; coalesces with one already running."""
        if self._closed:
            return
        if self._catch_up_task is not None and not self._catch_up_task.done():
            self._catch_up_pending = True
            logger.debug(f"Catch-up already running; queued follow-up ({reason})")
            return
        self._catch_up_task = asyncio.create_task(self._run_catch_ups(reason))

    async def _run_catch_ups(self, reason: str) -> None:
        while True:
            self._catch_up_pending = False
            await self.catch_up(reason)
            if not self._catch_up_pending or self._closed:
                return
            reason = "coalesced trigger"

    async def catch_up(self, reason: str = "manual") -> tuple[Record, ...]:
        """
        Fetch every entry past the cursor and merge it.

        Returns:
            Records that were genuinely new, newest first. Empty on a stall.
        """
        async with self._catch_up_lock:
            self._catch_ups += 1
            logger.debug(f"Catch-up from cursor {self._cursor} ({reason})")
            try:
                result = await self._reconciler.reconcile(self._cursor, self._store)
            except CursorStallError as e:
                self._stalls += 1
                logger.warning(f"Catch-up ({reason}) stalled: {e}")
                return ()

            # Notifications may have landed while the fetch was in flight
            merged = merge(self._store, result.added)
            self._store = merged.store
            self._cursor = max(self._cursor, result.cursor)
            announce = self._loaded
            self._loaded = True

        self._emit(merged.added, replaced=merged.changed, announce=announce)
        await self._advance_pinned_subscription()
        return merged.added

    async def _advance_pinned_subscription(self) -> None:
        """Resubscribe an AT_INDEX subscription whose index the cursor has passed."""
        if self.bundle_kind is not BundleKind.AT_INDEX or self._closed:
            return
        session = self._manager.session
        if session is None or session.directive is None:
            return
        if session.directive.index < self._cursor:
            logger.info(f"Moving pinned subscription from index {session.directive.index} to {self._cursor}")
            await self._manager.resubscribe()

    def _ingest(self, records: list[Record], source: str) -> None:
        """
        Merge records delivered by a push notification.

        The subscription opens only after the bulk load has returned, so pushed
        records are live and announced even if that load failed. Snapshot
        bundles carry history and stay silent until a load has succeeded.
        """
        if self._closed:
            return
        result = merge(self._store, records)
        if not result.changed:
            logger.debug(f"Push {source} carried {len(records)} known records")
            return
        self._store = result.store
        logger.info(f"Push {source} added {len(result.added)} records")
        self._emit(result.added, replaced=True, announce=self._loaded or source != "snapshot")

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _directive(self) -> BundleDirective:
        if self.bundle_kind is BundleKind.AT_INDEX:
            return BundleDirective.at_index(self.schema_key, self._cursor, self.publisher)
        return BundleDirective(self.bundle_kind, self.schema_key, self.publisher)

    def _on_subscription_active(self, reconnected: bool) -> None:
        self.request_catch_up("reconnected" if reconnected else "subscribed")

    def set_visible(self, visible: bool) -> None:
        """Pause or resume the staleness watchdog with the consumer's visibility."""
        self._visible = visible

    def on_foreground_resumed_after(self, idle_seconds: float) -> bool:
        """
        Notify that the consumer returned after ``idle_seconds`` in the background.

        Returns:
            True if a catch-up was requested
        """
        self._visible = True
        if idle_seconds > self.stale_after or self.staleness() > self.stale_after:
            self.request_catch_up(f"resumed after {idle_seconds:.0f}s idle")
            return True
        return False

    async def _watch_staleness(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.staleness_check_interval)
            if self._visible and self.staleness() > self.stale_after:
                self.request_catch_up("push channel stale")

    # ------------------------------------------------------------------
    # Consumer notification
    # ------------------------------------------------------------------

    def _emit(self, added: tuple[Record, ...], replaced: bool, announce: bool) -> None:
        callbacks = self._callbacks
        if replaced and callbacks.on_store_replaced is not None:
            self._invoke(callbacks.on_store_replaced, self._store.snapshot())
        if announce and callbacks.on_new_record is not None:
            for record in reversed(added):
                self._invoke(callbacks.on_new_record, record)

    @staticmethod
    def _invoke(callback: Callable[[Any], Any], arg: Any) -> None:
        try:
            result = callback(arg)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                task.add_done_callback(_log_callback_failure)
        except Exception:
            logger.exception("Consumer callback failed")


def _log_callback_failure(task: asyncio.Future) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Consumer callback failed", exc_info=task.exception())
