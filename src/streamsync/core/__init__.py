"""Core types, configuration, filtering and classification for streamsync."""

from streamsync.core.config import (
    EARTHQUAKE_SCHEMA,
    Settings,
    get_settings,
    load_settings_from_yaml,
    reset_settings,
)
from streamsync.core.filter import AcceptAll, RecordFilter, ThresholdFilter, apply_filter
from streamsync.core.severity import Severity, classify_magnitude, severity_color, should_notify
from streamsync.core.types import Record

__all__ = [
    "EARTHQUAKE_SCHEMA",
    "AcceptAll",
    "Record",
    "RecordFilter",
    "Settings",
    "Severity",
    "ThresholdFilter",
    "apply_filter",
    "classify_magnitude",
    "get_settings",
    "load_settings_from_yaml",
    "reset_settings",
    "severity_color",
    "should_notify",
]
