"""
Core data types for streamsync.

A Record is one entry of the remote log after decoding. Records are
write-once: an incoming record whose id is already known is a duplicate,
never an update.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class Record(BaseModel):
    """
    Immutable decoded log entry.

    Bi-temporal note:
    - timestamp: when the event happened at the origin (ms since epoch)
    - the remote log index (insertion order) is tracked by the cursor, not here

    ``attributes`` is a read-only view; store snapshots hand the same records
    to every consumer.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Natural key assigned by the origin system")
    timestamp: int = Field(..., description="Origin event time in milliseconds")
    attributes: Mapping[str, Any] = Field(
        default_factory=dict,
        description="Domain payload (filterable scalars and display fields)",
    )

    @field_validator("attributes")
    @classmethod
    def freeze_attributes(cls, v: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(v))

    @field_serializer("attributes")
    def serialize_attributes(self, v: Mapping[str, Any]) -> dict[str, Any]:
        return dict(v)

    def scalar(self, name: str) -> float | None:
        """Numeric attribute value, or None if missing or non-numeric."""
        value = self.attributes.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    @property
    def occurred_at(self) -> datetime:
        """Event time as an aware UTC datetime."""
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)

    def label(self) -> str:
        """Short human-readable description used by logs and the CLI."""
        place = self.attributes.get("location")
        return f"{self.id} ({place})" if place else self.id
