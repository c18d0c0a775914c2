"""
Record codec with explicit decode strategies.

Both strategies share one contract: ``bytes -> Record``, raising
:class:`DecodeError` on failure, with schema scales applied. Either can be
primary; the codec tries them in the configured order.

- ``SCHEMA``: binary ABI-style payload, decoded against the typed schema.
- ``DECODED_ITEMS``: JSON list of already-decoded parameters
  (``[{"name": ..., "type": ..., "value": ...}, ...]``, optionally nested one
  level), matched by position against the schema. This is what a read API
  returns when it has a schema registry of its own and decodes server-side.
"""

import json
import logging
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

from pydantic import ValidationError

from streamsync.codec.schema import RecordSchema, SchemaError
from streamsync.core.config import Settings
from streamsync.core.types import Record
from streamsync.errors import DecodeError

logger = logging.getLogger(__name__)


class DecodeStrategy(str, Enum):
    """Tagged decode strategies."""
    SCHEMA = "schema"
    DECODED_ITEMS = "decoded_items"


DEFAULT_STRATEGIES = (DecodeStrategy.SCHEMA, DecodeStrategy.DECODED_ITEMS)


def entry_to_bytes(entry: Any) -> bytes:
    """
    Normalize one wire entry to an opaque payload.

    Hex strings become their raw bytes; anything else (decoded item lists) is
    re-serialized as JSON. A string that is not valid hex is passed through as
    UTF-8 so that it fails decoding for that single record only.
    """
    if isinstance(entry, str):
        text = entry[2:] if entry.startswith("0x") else entry
        try:
            return bytes.fromhex(text)
        except ValueError:
            return entry.encode("utf-8")
    return json.dumps(entry).encode("utf-8")


class RecordCodec:
    """
    Decodes remote log payloads into Records.

    Example:
        codec = RecordCodec(schema)
        record = codec.decode(payload)
        records, failures = codec.decode_many(payloads)
    """

    def __init__(
        self,
        schema: RecordSchema,
        strategies: Iterable[DecodeStrategy | str] = DEFAULT_STRATEGIES,
    ):
        self.schema = schema
        self.strategies = tuple(DecodeStrategy(s) for s in strategies)
        if not self.strategies:
            raise ValueError("RecordCodec needs at least one decode strategy")

        self._decoders: dict[DecodeStrategy, Callable[[bytes], list[Any]]] = {
            DecodeStrategy.SCHEMA: self._decode_schema,
            DecodeStrategy.DECODED_ITEMS: self._decode_items,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "RecordCodec":
        """Build a codec from the configured schema, scales and strategy order."""
        schema = RecordSchema.parse(
            settings.record_schema,
            scales=settings.field_scales,
            id_field=settings.id_field,
            timestamp_field=settings.timestamp_field,
        )
        return cls(schema, settings.codec_strategies)

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(self, payload: bytes) -> Record:
        """
        Decode a payload, falling back through the configured strategies.

        Raises:
            DecodeError: If every strategy fails
        """
        causes: dict[str, str] = {}
        for strategy in self.strategies:
            try:
                values = self._decoders[strategy](payload)
                return self._build_record(values)
            except (SchemaError, DecodeError, ValueError) as e:
                causes[strategy.value] = str(e)
                logger.debug(f"Decode strategy {strategy.value} failed: {e}")

        raise DecodeError(
            f"Payload of {len(payload)} bytes failed all decode strategies",
            causes=causes,
        )

    def decode_many(
        self,
        payloads: Iterable[bytes],
        first_index: int | None = None,
    ) -> tuple[list[Record], list[DecodeError]]:
        """
        Decode a batch, skipping entries that fail.

        Args:
            payloads: Raw entries
            first_index: Remote log index of the first entry, for log messages

        Returns:
            (decoded records, one DecodeError per skipped entry)
        """
        records: list[Record] = []
        failures: list[DecodeError] = []
        for offset, payload in enumerate(payloads):
            try:
                records.append(self.decode(payload))
            except DecodeError as e:
                where = f"index {first_index + offset}" if first_index is not None else f"offset {offset}"
                logger.warning(f"Skipping undecodable entry at {where}: {e} {e.causes}")
                failures.append(e)
        return records, failures

    def _decode_schema(self, payload: bytes) -> list[Any]:
        return self.schema.decode_values(payload)

    def _decode_items(self, payload: bytes) -> list[Any]:
        try:
            items = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecodeError(f"Not a decoded-items document: {e}") from e

        # Some read APIs wrap each row in an extra list
        if isinstance(items, list) and len(items) == 1 and isinstance(items[0], list):
            items = items[0]
        if not isinstance(items, list):
            raise DecodeError(f"Decoded items must be a list, got {type(items).__name__}")
        if len(items) != len(self.schema.fields):
            raise DecodeError(f"Expected {len(self.schema.fields)} decoded items, got {len(items)}")

        values = []
        for spec, item in zip(self.schema.fields, items):
            if isinstance(item, dict):
                name = item.get("name")
                if name is not None and name != spec.name:
                    raise DecodeError(f"Item {name!r} found where {spec.name!r} was expected")
                if "value" not in item:
                    raise DecodeError(f"Item {spec.name!r} has no value")
                item = item["value"]
            values.append(spec.coerce(item))
        return values

    def _build_record(self, values: list[Any]) -> Record:
        attributes = {}
        for spec, raw in zip(self.schema.fields, values):
            if spec.name in (self.schema.id_field, self.schema.timestamp_field):
                continue
            attributes[spec.name] = spec.to_attribute(raw)

        try:
            return Record(
                id=str(values[self.schema.position(self.schema.id_field)]),
                timestamp=int(values[self.schema.position(self.schema.timestamp_field)]),
                attributes=attributes,
            )
        except ValidationError as e:
            raise DecodeError(f"Decoded values do not form a record: {e}") from e

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, record: Record) -> bytes:
        """Encode a record with the binary schema layout."""
        return self.schema.encode_values(self._wire_values(record))

    def encode_items(self, record: Record) -> bytes:
        """Encode a record as a decoded-items JSON document."""
        items = [
            {"name": spec.name, "type": spec.abi_type, "value": _json_safe(value)}
            for spec, value in zip(self.schema.fields, self._wire_values(record))
        ]
        return json.dumps(items).encode("utf-8")

    def _wire_values(self, record: Record) -> list[Any]:
        values = []
        for spec in self.schema.fields:
            if spec.name == self.schema.id_field:
                value = record.id
            elif spec.name == self.schema.timestamp_field:
                value = record.timestamp
            elif spec.name in record.attributes:
                value = record.attributes[spec.name]
            else:
                raise SchemaError(f"Record {record.id} has no value for field {spec.name!r}")
            values.append(spec.to_wire(value))
        return values


def _json_safe(value: Any) -> Any:
    if isinstance(value, bytes):
        return "0x" + value.hex()
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) > 2 ** 53:
        return str(value)
    return value
