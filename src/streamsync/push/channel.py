"""
Push channel protocol and message types.

A subscription carries a bundle directive that is fixed for its lifetime:
every notification arrives together with the result of that one read. The
stateless LATEST directive is preferred; AT_INDEX can only be moved forward by
resubscribing.
"""

from __future__ import annotations

import time
from abc import abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from streamsync.codec.codec import entry_to_bytes


class BundleKind(str, Enum):
    """Read bundled with each notification."""
    LATEST = "latest"        # single most recent entry
    SNAPSHOT = "snapshot"    # every entry in the stream
    AT_INDEX = "at_index"    # entry at a fixed index


@dataclass(frozen=True)
class BundleDirective:
    """Bundled read requested at subscribe time."""
    kind: BundleKind
    schema_key: str
    publisher: str | None = None
    index: int | None = None

    def __post_init__(self) -> None:
        if self.kind is BundleKind.AT_INDEX:
            if self.index is None or self.index < 0:
                raise ValueError("AT_INDEX directive needs a non-negative index")
        elif self.index is not None:
            raise ValueError(f"{self.kind.value} directive does not take an index")

    @classmethod
    def latest(cls, schema_key: str, publisher: str | None = None) -> BundleDirective:
        return cls(BundleKind.LATEST, schema_key, publisher)

    @classmethod
    def snapshot(cls, schema_key: str, publisher: str | None = None) -> BundleDirective:
        return cls(BundleKind.SNAPSHOT, schema_key, publisher)

    @classmethod
    def at_index(cls, schema_key: str, index: int, publisher: str | None = None) -> BundleDirective:
        return cls(BundleKind.AT_INDEX, schema_key, publisher, index)

    @property
    def requires_resubscribe(self) -> bool:
        return self.kind is BundleKind.AT_INDEX

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "schema_key": self.schema_key}
        if self.publisher:
            data["publisher"] = self.publisher
        if self.index is not None:
            data["index"] = self.index
        return data


@dataclass(frozen=True)
class Notification:
    """
    One delivered push event.

    ``entries`` is None when the event carried no bundled payload. For
    SNAPSHOT bundles it holds every entry; otherwise at most one.
    """
    event_name: str
    directive: BundleDirective
    entries: tuple[bytes, ...] | None
    subscription_id: str | None = None
    received_at: float = field(default_factory=time.time)

    @property
    def is_snapshot(self) -> bool:
        return self.directive.kind is BundleKind.SNAPSHOT

    @classmethod
    def from_wire(
        cls,
        event_name: str,
        directive: BundleDirective,
        payload: Any,
        subscription_id: str | None = None,
    ) -> Notification:
        """
        Build a notification from a wire payload.

        The payload shape follows the directive: a list of entries for
        SNAPSHOT, a single entry otherwise. A SNAPSHOT payload that is not a
        list is kept as a single opaque entry so that it fails decoding and
        triggers a catch-up.
        """
        if payload is None:
            entries = None
        elif directive.kind is BundleKind.SNAPSHOT and isinstance(payload, list):
            entries = tuple(entry_to_bytes(e) for e in payload)
        else:
            entries = (entry_to_bytes(payload),)
        return cls(event_name, directive, entries, subscription_id)


DataCallback = Callable[[Notification], None]
ErrorCallback = Callable[[Exception], None]


@runtime_checkable
class Subscription(Protocol):
    """Handle to one live subscription."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Release the subscription. Safe to call more than once."""
        ...


@runtime_checkable
class PushChannel(Protocol):
    """Unreliable low-latency notification channel."""

    @abstractmethod
    async def subscribe(
        self,
        event_name: str,
        directive: BundleDirective,
        on_data: DataCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        """
        Subscribe to ``event_name``.

        Returns once the subscription is acknowledged.

        Raises:
            SubscriptionError: If the channel rejects or cannot open the subscription
        """
        ...
