"""
streamsync CLI.

Command-line interface for following a remote log.

Usage:
    streamsync snapshot --limit 20
    streamsync watch --duration 300
    streamsync demo --count 12 --drop-every 4
    streamsync config --show
"""

from streamsync.cli.main import app

__all__ = ["app"]
