"""
Push subscription manager.

Owns the live notification channel as a small state machine:

    IDLE ──start──▶ CONNECTING ──ack──▶ ACTIVE
                        │  ▲              │
          subscribe fail│  │timer fires   │channel error
                        ▼  │              ▼
                      DEGRADED ◀──────────┘

    any state ──close──▶ CLOSED

Every connect attempt gets a new generation number. Callbacks are bound to
the generation they were created for and become no-ops once it is superseded
(by a reconnect, a resubscribe or close), so late events from an old
connection can never reach the store.
"""

import asyncio
import functools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from streamsync.codec.codec import RecordCodec
from streamsync.core.filter import RecordFilter, apply_filter
from streamsync.core.types import Record
from streamsync.errors import SubscriptionError
from streamsync.push.channel import BundleDirective, BundleKind, Notification, PushChannel, Subscription

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Push subscription states."""
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    DEGRADED = "degraded"
    CLOSED = "closed"


@dataclass
class SubscriptionSession:
    """Transient per-attempt state. Recreated on every (re)connect."""
    generation: int
    directive: BundleDirective | None = None
    handle: Subscription | None = None
    last_event_at: float | None = None
    reconnect_task: asyncio.Task | None = None
    started_at: float = field(default_factory=time.time)


StateListener = Callable[[SessionState, SessionState], Any]
IngestCallback = Callable[[list[Record], str], Any]
CatchUpRequest = Callable[[str], Any]
ActiveCallback = Callable[[bool], Any]


class PushSubscriptionManager:
    """
    Keeps one live subscription open and feeds its notifications to the store.

    Notifications are queued by the channel callback and processed one at a
    time by a worker task, in arrival order.
    """

    def __init__(
        self,
        channel: PushChannel,
        event_name: str,
        directive_provider: Callable[[], BundleDirective],
        codec: RecordCodec,
        record_filter: RecordFilter,
        ingest: IngestCallback,
        request_catch_up: CatchUpRequest,
        on_active: ActiveCallback | None = None,
        channel_error_retry: float = 3.0,
        subscribe_retry: float = 5.0,
        subscribe_timeout: float = 10.0,
    ):
        """
        Args:
            channel: Push channel to subscribe on
            event_name: Event to subscribe to
            directive_provider: Returns the bundle directive for a new subscription
            codec: Decoder for bundled payloads
            record_filter: Domain filter applied before ingesting
            ingest: Receives (accepted records, source) for merging
            request_catch_up: Asks the owner for a catch-up pass
            on_active: Called with ``reconnected`` each time a subscription is acknowledged
            channel_error_retry: Reconnect delay after a channel error (seconds)
            subscribe_retry: Reconnect delay after a failed subscribe (seconds)
            subscribe_timeout: Window for a subscribe attempt to succeed or fail
        """
        self.channel = channel
        self.event_name = event_name
        self.codec = codec
        self.record_filter = record_filter
        self.channel_error_retry = channel_error_retry
        self.subscribe_retry = subscribe_retry
        self.subscribe_timeout = subscribe_timeout

        self._directive_provider = directive_provider
        self._ingest = ingest
        self._request_catch_up = request_catch_up
        self._on_active = on_active

        self._state = SessionState.IDLE
        self._generation = 0
        self._session: SubscriptionSession | None = None
        self._queue: asyncio.Queue[tuple[int, Notification]] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._connect_task: asyncio.Task | None = None
        self._listeners: list[StateListener] = []
        self._last_event_at: float | None = None
        self._next_index: int | None = None
        self._has_been_active = False

        self._notifications = 0
        self._reconnects = 0
        self._failures = 0
        self._catch_up_fallbacks = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def session(self) -> SubscriptionSession | None:
        return self._session

    @property
    def last_event_at(self) -> float | None:
        """Wall-clock time of the last processed notification, across sessions."""
        return self._last_event_at

    def add_state_listener(self, listener: StateListener) -> None:
        """Observe transitions as ``listener(old, new)``."""
        self._listeners.append(listener)

    def get_stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "generation": self._generation,
            "notifications": self._notifications,
            "reconnects": self._reconnects,
            "failures": self._failures,
            "catch_up_fallbacks": self._catch_up_fallbacks,
            "last_event_at": self._last_event_at,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Begin subscribing. Returns without waiting for the acknowledgement."""
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Cannot start manager in state {self._state.value}")
        self._worker = asyncio.create_task(self._drain())
        self._begin_attempt()

    async def resubscribe(self) -> None:
        """
        Replace the live subscription with a fresh one.

        Needed after every ingestion when the bundle directive is pinned to an
        index, since a directive cannot change on a live subscription.
        """
        if self._state is not SessionState.ACTIVE:
            return
        handle = self._session.handle if self._session else None
        self._generation += 1
        if handle is not None:
            self._session.handle = None
            await self._release(handle)
        if self._state is SessionState.ACTIVE:
            self._begin_attempt()

    async def close(self) -> None:
        """Tear down: cancel timers, release the handle, supersede the generation."""
        if self._state is SessionState.CLOSED:
            return
        self._generation += 1
        self._transition(SessionState.CLOSED)

        session = self._session
        current = asyncio.current_task()
        tasks = [
            t for t in (
                session.reconnect_task if session else None,
                self._connect_task,
                self._worker,
            )
            if t is not None and not t.done() and t is not current
        ]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        if session and session.handle is not None:
            handle, session.handle = session.handle, None
            await self._release(handle)
        logger.info(f"Push subscription to {self.event_name} closed")

    # ------------------------------------------------------------------
    # Connecting
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        logger.info(f"Push subscription {old_state.value} -> {new_state.value}")
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception:
                logger.exception("State listener failed")

    def _directive(self) -> BundleDirective:
        directive = self._directive_provider()
        if (
            directive.kind is BundleKind.AT_INDEX
            and self._next_index is not None
            and self._next_index > directive.index
        ):
            directive = BundleDirective.at_index(directive.schema_key, self._next_index, directive.publisher)
        return directive

    def _begin_attempt(self) -> None:
        self._generation += 1
        generation = self._generation
        self._session = SubscriptionSession(generation=generation)
        self._transition(SessionState.CONNECTING)
        self._connect_task = asyncio.create_task(self._connect(generation))

    async def _connect(self, generation: int) -> None:
        directive = self._directive()
        try:
            handle = await asyncio.wait_for(
                self.channel.subscribe(
                    self.event_name,
                    directive,
                    functools.partial(self._on_data, generation),
                    functools.partial(self._on_error, generation),
                ),
                timeout=self.subscribe_timeout,
            )
        except asyncio.TimeoutError:
            error: Exception = SubscriptionError(
                f"Subscribe to {self.event_name} timed out after {self.subscribe_timeout}s"
            )
        except Exception as e:
            error = e
        else:
            if generation != self._generation or self._state is SessionState.CLOSED:
                # Superseded while the subscribe was in flight
                await self._release(handle)
                return
            self._session.handle = handle
            self._session.directive = directive
            reconnected = self._has_been_active
            self._has_been_active = True
            self._transition(SessionState.ACTIVE)
            if self._on_active is not None:
                self._on_active(reconnected)
            return

        if generation == self._generation and self._state is SessionState.CONNECTING:
            logger.warning(f"Subscribe to {self.event_name} failed: {error}")
            self._degrade(generation, self.subscribe_retry)

    def _degrade(self, generation: int, delay: float) -> None:
        """Move to DEGRADED, release the handle and schedule one reconnect."""
        if generation != self._generation:
            return
        if self._state not in (SessionState.CONNECTING, SessionState.ACTIVE):
            return

        self._failures += 1
        self._transition(SessionState.DEGRADED)
        session = self._session
        handle, session.handle = session.handle, None
        logger.warning(f"Reconnecting to {self.event_name} in {delay:.1f}s")
        session.reconnect_task = asyncio.create_task(
            self._reconnect_after(generation, delay, handle)
        )

    async def _reconnect_after(
        self,
        generation: int,
        delay: float,
        stale_handle: Subscription | None,
    ) -> None:
        if stale_handle is not None:
            await self._release(stale_handle)
        await asyncio.sleep(delay)
        if generation != self._generation or self._state is not SessionState.DEGRADED:
            return
        self._reconnects += 1
        self._begin_attempt()

    async def _release(self, handle: Subscription) -> None:
        try:
            await handle.unsubscribe()
        except Exception as e:
            logger.warning(f"Failed to release subscription cleanly: {e}")

    # ------------------------------------------------------------------
    # Channel callbacks
    # ------------------------------------------------------------------

    def _on_data(self, generation: int, notification: Notification) -> None:
        if generation != self._generation or self._state is SessionState.CLOSED:
            logger.debug(f"Dropping notification from superseded generation {generation}")
            return
        self._queue.put_nowait((generation, notification))

    def _on_error(self, generation: int, error: Exception) -> None:
        if generation != self._generation or self._state is SessionState.CLOSED:
            return
        logger.warning(f"Push channel error: {error}")
        self._degrade(generation, self.channel_error_retry)

    # ------------------------------------------------------------------
    # Notification processing
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        while True:
            generation, notification = await self._queue.get()
            try:
                if generation == self._generation and self._state is SessionState.ACTIVE:
                    await self._process(notification)
            except Exception:
                logger.exception("Failed to process notification")
            finally:
                self._queue.task_done()

    async def _process(self, notification: Notification) -> None:
        """Decode, filter and ingest one bundled payload; fall back to catch-up."""
        self._notifications += 1
        self._last_event_at = notification.received_at
        if self._session is not None:
            self._session.last_event_at = notification.received_at

        if notification.entries is None:
            self._fallback("notification carried no bundled payload")
            return

        records, failures = self.codec.decode_many(notification.entries)
        accepted = apply_filter(self.record_filter, records)
        source = "snapshot" if notification.is_snapshot else notification.directive.kind.value
        if accepted:
            self._ingest(accepted, source)

        if failures:
            self._fallback(f"{len(failures)} bundled entries could not be decoded")
            return
        if not records and not notification.is_snapshot:
            self._fallback("bundled payload was empty")
            return

        if notification.directive.requires_resubscribe and records:
            self._next_index = notification.directive.index + 1
            await self.resubscribe()

    def _fallback(self, reason: str) -> None:
        self._catch_up_fallbacks += 1
        logger.info(f"Falling back to catch-up: {reason}")
        self._request_catch_up(reason)

    async def join(self) -> None:
        """Wait until every queued notification has been processed."""
        await self._queue.join()
