"""
streamsync - client-side reconciliation for append-only remote logs.

Keeps a de-duplicated, newest-first view of a remote log that is fed by an
unreliable push channel and repaired through a pull API.

Quick Start:
    from streamsync import ReconciliationCoordinator, get_settings
    from streamsync.push import WebSocketPushChannel
    from streamsync.remote import HttpRemoteLog

    settings = get_settings()
    async with HttpRemoteLog.from_settings(settings) as remote:
        channel = WebSocketPushChannel(settings.push_url)
        async with ReconciliationCoordinator.from_settings(settings, remote, channel) as sync:
            print(sync.records[:10])
"""

__version__ = "0.3.0"

from streamsync.codec import DecodeStrategy, RecordCodec, RecordSchema
from streamsync.core import Record, Settings, Severity, ThresholdFilter, get_settings
from streamsync.errors import (
    CursorStallError,
    DecodeError,
    RemoteLogError,
    RemoteNotFoundError,
    StreamSyncError,
    SubscriptionError,
    TransientNetworkError,
)
from streamsync.sync import RecordStore, ReconciliationCoordinator, merge

__all__ = [
    "__version__",
    "CursorStallError",
    "DecodeError",
    "DecodeStrategy",
    "Record",
    "RecordCodec",
    "RecordSchema",
    "RecordStore",
    "ReconciliationCoordinator",
    "RemoteLogError",
    "RemoteNotFoundError",
    "Settings",
    "Severity",
    "StreamSyncError",
    "SubscriptionError",
    "ThresholdFilter",
    "TransientNetworkError",
    "get_settings",
    "merge",
]
