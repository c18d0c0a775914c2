"""Push channel protocol, transports and the subscription state machine."""

from streamsync.push.channel import (
    BundleDirective,
    BundleKind,
    Notification,
    PushChannel,
    Subscription,
)
from streamsync.push.manager import PushSubscriptionManager, SessionState, SubscriptionSession
from streamsync.push.memory import InMemoryPushChannel
from streamsync.push.websocket import WebSocketPushChannel

__all__ = [
    "BundleDirective",
    "BundleKind",
    "InMemoryPushChannel",
    "Notification",
    "PushChannel",
    "PushSubscriptionManager",
    "SessionState",
    "Subscription",
    "SubscriptionSession",
    "WebSocketPushChannel",
]
