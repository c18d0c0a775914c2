"""
In-memory push channel.

Pairs with InMemoryRemoteLog: ``publish`` builds each subscriber's bundled
payload from the log according to that subscriber's directive. Supports
dropping notifications, channel errors, and failing or hanging subscribes.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass

from streamsync.errors import SubscriptionError
from streamsync.push.channel import (
    BundleDirective,
    BundleKind,
    DataCallback,
    ErrorCallback,
    Notification,
)
from streamsync.remote.memory import InMemoryRemoteLog

logger = logging.getLogger(__name__)


@dataclass
class InMemorySubscription:
    """Subscription registered on an InMemoryPushChannel."""
    channel: "InMemoryPushChannel"
    subscription_id: str
    event_name: str
    directive: BundleDirective
    on_data: DataCallback
    on_error: ErrorCallback
    closed: bool = False

    async def unsubscribe(self) -> None:
        if not self.closed:
            self.closed = True
            self.channel._subscriptions.pop(self.subscription_id, None)


class InMemoryPushChannel:
    """Loopback push channel for the demo and tests."""

    def __init__(self, remote: InMemoryRemoteLog | None = None):
        self.remote = remote
        self._subscriptions: dict[str, InMemorySubscription] = {}
        self._ids = itertools.count(1)
        self._fail_remaining = 0
        self._hang_remaining = 0
        self.subscribe_calls = 0
        self.directives: list[BundleDirective] = []

    @property
    def subscriptions(self) -> list[InMemorySubscription]:
        """Currently live subscriptions."""
        return list(self._subscriptions.values())

    def fail_next_subscribe(self, times: int = 1) -> None:
        """Reject the next ``times`` subscribe attempts."""
        self._fail_remaining = times

    def hang_next_subscribe(self, times: int = 1) -> None:
        """Never answer the next ``times`` subscribe attempts."""
        self._hang_remaining = times

    async def subscribe(
        self,
        event_name: str,
        directive: BundleDirective,
        on_data: DataCallback,
        on_error: ErrorCallback,
    ) -> InMemorySubscription:
        self.subscribe_calls += 1
        self.directives.append(directive)
        await asyncio.sleep(0)

        if self._hang_remaining > 0:
            self._hang_remaining -= 1
            await asyncio.Event().wait()
        if self._fail_remaining > 0:
            self._fail_remaining -= 1
            raise SubscriptionError("Subscription rejected (injected)")

        subscription = InMemorySubscription(
            channel=self,
            subscription_id=f"mem-{next(self._ids)}",
            event_name=event_name,
            directive=directive,
            on_data=on_data,
            on_error=on_error,
        )
        self._subscriptions[subscription.subscription_id] = subscription
        return subscription

    def publish(self, event_name: str) -> int:
        """
        Notify subscribers of ``event_name`` with their bundled reads.

        Returns:
            Number of subscribers notified
        """
        targets = [s for s in self.subscriptions if s.event_name == event_name]
        for sub in targets:
            sub.on_data(Notification(
                event_name=event_name,
                directive=sub.directive,
                entries=self._bundle(sub.directive),
                subscription_id=sub.subscription_id,
            ))
        return len(targets)

    def publish_raw(self, event_name: str, entries: tuple[bytes, ...] | None) -> int:
        """Notify subscribers with an arbitrary bundled payload."""
        targets = [s for s in self.subscriptions if s.event_name == event_name]
        for sub in targets:
            sub.on_data(Notification(event_name, sub.directive, entries, sub.subscription_id))
        return len(targets)

    def emit_error(self, error: Exception | None = None) -> int:
        """Report a transport error to every live subscription."""
        targets = self.subscriptions
        for sub in targets:
            sub.on_error(error or SubscriptionError("Push channel error (injected)"))
        return len(targets)

    def _bundle(self, directive: BundleDirective) -> tuple[bytes, ...] | None:
        if self.remote is None:
            return None
        entries = self.remote.entries
        if directive.kind is BundleKind.SNAPSHOT:
            return entries
        if directive.kind is BundleKind.LATEST:
            return entries[-1:] or None
        if directive.index is not None and directive.index < len(entries):
            return (entries[directive.index],)
        return None
