"""Pull-side clients for the remote log."""

from streamsync.remote.base import RemoteLog, check_range
from streamsync.remote.http import HttpRemoteLog
from streamsync.remote.memory import InMemoryRemoteLog

__all__ = [
    "HttpRemoteLog",
    "InMemoryRemoteLog",
    "RemoteLog",
    "check_range",
]
