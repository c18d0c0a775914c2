"""Record schemas and the two-strategy record codec."""

from streamsync.codec.codec import DEFAULT_STRATEGIES, DecodeStrategy, RecordCodec, entry_to_bytes
from streamsync.codec.schema import FieldSpec, RecordSchema, SchemaError

__all__ = [
    "DEFAULT_STRATEGIES",
    "DecodeStrategy",
    "FieldSpec",
    "RecordCodec",
    "RecordSchema",
    "SchemaError",
    "entry_to_bytes",
]
