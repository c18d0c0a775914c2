"""
Domain filter applied at every ingestion path.

The bulk loader, the push notification handler and the catch-up reconciler
all call the same ``accepts``; a record is either visible through every path
or through none.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from streamsync.core.config import Settings
from streamsync.core.types import Record


class RecordFilter(Protocol):
    def accepts(self, record: Record) -> bool: ...


@dataclass(frozen=True)
class ThresholdFilter:
    """Accept records whose numeric attribute is at least ``minimum``."""
    attribute: str
    minimum: float

    @classmethod
    def from_settings(cls, settings: Settings) -> "ThresholdFilter":
        return cls(attribute=settings.filter_attribute, minimum=settings.filter_minimum)

    def accepts(self, record: Record) -> bool:
        value = record.scalar(self.attribute)
        return value is not None and value >= self.minimum


class AcceptAll:
    """Filter that keeps everything."""

    def accepts(self, record: Record) -> bool:
        return True


def apply_filter(record_filter: RecordFilter, records: Iterable[Record]) -> list[Record]:
    """Keep the records the filter accepts, preserving order."""
    return [r for r in records if record_filter.accepts(r)]
