"""
Typed record schemas and their ABI-style binary layout.

A schema string lists typed fields, e.g.::

    string earthquakeId, string location, uint16 magnitude, uint64 timestamp

Payloads use the contract-ABI tuple layout: one 32-byte head word per field,
static values inline, dynamic values (string, bytes) as an offset into a tail
of length-prefixed, right-padded chunks. Fixed-point fields carry an integer
on the wire and a scale used to recover the real value.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

WORD = 32

_TYPE_RE = re.compile(r"^(uint|int)(\d{0,3})$|^bytes(\d{1,2})$|^(bool|address|string|bytes)$")


class SchemaError(ValueError):
    """Schema string or value does not fit the declared types."""


@dataclass(frozen=True)
class FieldSpec:
    """One typed field of a record schema."""
    name: str
    abi_type: str
    scale: int = 1

    @property
    def dynamic(self) -> bool:
        return self.abi_type in ("string", "bytes")

    @property
    def bits(self) -> int:
        """Bit width for integer types."""
        digits = self.abi_type.lstrip("uint")
        return int(digits) if digits else 256

    @property
    def is_integer(self) -> bool:
        return self.abi_type.startswith(("uint", "int"))

    def to_attribute(self, raw: Any) -> Any:
        """Apply the fixed-point scale to a wire value."""
        if self.scale != 1 and self.is_integer:
            return raw / self.scale
        return raw

    def to_wire(self, value: Any) -> Any:
        """Inverse of :meth:`to_attribute`."""
        if self.scale != 1 and self.is_integer:
            return int(round(float(value) * self.scale))
        return value

    def coerce(self, raw: Any) -> Any:
        """
        Coerce a loosely typed value (e.g. from JSON) to this field's type.

        Integers may arrive as decimal strings since 64-bit values are not
        JSON-safe in every producer.
        """
        if self.is_integer:
            if isinstance(raw, bool):
                raise SchemaError(f"{self.name}: expected integer, got bool")
            if isinstance(raw, float):
                if not raw.is_integer():
                    raise SchemaError(f"{self.name}: expected integer, got {raw}")
                raw = int(raw)
            try:
                value = int(raw)
            except (TypeError, ValueError) as e:
                raise SchemaError(f"{self.name}: expected integer, got {raw!r}") from e
            _check_int_range(self, value)
            return value
        if self.abi_type == "bool":
            if not isinstance(raw, bool):
                raise SchemaError(f"{self.name}: expected bool, got {raw!r}")
            return raw
        if self.abi_type == "string":
            if not isinstance(raw, str):
                raise SchemaError(f"{self.name}: expected string, got {type(raw).__name__}")
            return raw
        if self.abi_type == "address":
            return _normalize_address(self, raw)
        # bytes / bytesN as hex strings
        if isinstance(raw, (bytes, bytearray)):
            return bytes(raw)
        if not isinstance(raw, str):
            raise SchemaError(f"{self.name}: expected hex bytes, got {type(raw).__name__}")
        try:
            return bytes.fromhex(raw[2:] if raw.startswith("0x") else raw)
        except ValueError as e:
            raise SchemaError(f"{self.name}: invalid hex {raw!r}") from e


@dataclass(frozen=True)
class RecordSchema:
    """
    Ordered field list plus the roles of the id and timestamp fields.

    Example:
        schema = RecordSchema.parse(
            "string id, uint16 magnitude, uint64 timestamp",
            scales={"magnitude": 10},
            id_field="id",
        )
    """
    fields: tuple[FieldSpec, ...]
    id_field: str
    timestamp_field: str
    _index: dict[str, int] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not self.fields:
            raise SchemaError("Schema must declare at least one field")
        names = [f.name for f in self.fields]
        if len(set(names)) != len(names):
            raise SchemaError(f"Duplicate field names in schema: {names}")
        for role in (self.id_field, self.timestamp_field):
            if role not in names:
                raise SchemaError(f"Field {role!r} is not declared in the schema")
        if not self.spec_for(self.timestamp_field).is_integer:
            raise SchemaError(f"Timestamp field {self.timestamp_field!r} must be an integer type")
        self._index.update({name: i for i, name in enumerate(names)})

    @classmethod
    def parse(
        cls,
        schema: str,
        scales: dict[str, int] | None = None,
        id_field: str = "id",
        timestamp_field: str = "timestamp",
    ) -> RecordSchema:
        """Parse a comma-separated ``type name`` schema string."""
        scales = scales or {}
        specs = []
        for part in schema.split(","):
            tokens = part.split()
            if not tokens:
                continue
            if len(tokens) != 2:
                raise SchemaError(f"Expected 'type name', got {part.strip()!r}")
            abi_type, name = tokens
            _validate_type(abi_type)
            specs.append(FieldSpec(name=name, abi_type=abi_type, scale=scales.get(name, 1)))
        unknown = set(scales) - {s.name for s in specs}
        if unknown:
            raise SchemaError(f"Scales given for undeclared fields: {sorted(unknown)}")
        return cls(fields=tuple(specs), id_field=id_field, timestamp_field=timestamp_field)

    @property
    def names(self) -> list[str]:
        return [f.name for f in self.fields]

    def spec_for(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def position(self, name: str) -> int:
        return self._index[name]

    # ------------------------------------------------------------------
    # Binary layout
    # ------------------------------------------------------------------

    def encode_values(self, values: list[Any]) -> bytes:
        """Encode wire values in schema order."""
        if len(values) != len(self.fields):
            raise SchemaError(f"Expected {len(self.fields)} values, got {len(values)}")

        head = bytearray()
        tail = bytearray()
        head_size = WORD * len(self.fields)

        for spec, value in zip(self.fields, values):
            if spec.dynamic:
                raw = value.encode("utf-8") if spec.abi_type == "string" else bytes(value)
                head += (head_size + len(tail)).to_bytes(WORD, "big")
                tail += len(raw).to_bytes(WORD, "big")
                tail += raw + b"\x00" * (-len(raw) % WORD)
            else:
                head += _encode_static(spec, value)

        return bytes(head + tail)

    def decode_values(self, data: bytes) -> list[Any]:
        """
        Decode a payload into wire values in schema order.

        Raises:
            SchemaError: If the payload is truncated, misaligned or out of range
        """
        head_size = WORD * len(self.fields)
        if len(data) < head_size:
            raise SchemaError(f"Payload too short: {len(data)} bytes, head needs {head_size}")
        if len(data) % WORD:
            raise SchemaError(f"Payload length {len(data)} is not a multiple of {WORD}")

        values = []
        for i, spec in enumerate(self.fields):
            word = data[i * WORD:(i + 1) * WORD]
            if not spec.dynamic:
                values.append(_decode_static(spec, word))
                continue

            offset = int.from_bytes(word, "big")
            if offset < head_size or offset + WORD > len(data):
                raise SchemaError(f"{spec.name}: offset {offset} outside payload")
            length = int.from_bytes(data[offset:offset + WORD], "big")
            start = offset + WORD
            if start + length > len(data):
                raise SchemaError(f"{spec.name}: length {length} overruns payload")
            raw = data[start:start + length]
            if spec.abi_type == "string":
                try:
                    values.append(raw.decode("utf-8"))
                except UnicodeDecodeError as e:
                    raise SchemaError(f"{spec.name}: invalid UTF-8") from e
            else:
                values.append(raw)

        return values


def _validate_type(abi_type: str) -> None:
    match = _TYPE_RE.match(abi_type)
    if not match:
        raise SchemaError(f"Unsupported field type: {abi_type!r}")
    int_bits = match.group(2)
    if match.group(1) and int_bits:
        bits = int(int_bits)
        if bits == 0 or bits > 256 or bits % 8:
            raise SchemaError(f"Invalid integer width in {abi_type!r}")
    fixed_bytes = match.group(3)
    if fixed_bytes and not 1 <= int(fixed_bytes) <= 32:
        raise SchemaError(f"Invalid fixed bytes width in {abi_type!r}")


def _check_int_range(spec: FieldSpec, value: int) -> None:
    bits = spec.bits
    if spec.abi_type.startswith("uint"):
        low, high = 0, 2 ** bits - 1
    else:
        low, high = -(2 ** (bits - 1)), 2 ** (bits - 1) - 1
    if not low <= value <= high:
        raise SchemaError(f"{spec.name}: {value} out of range for {spec.abi_type}")


def _normalize_address(spec: FieldSpec, raw: Any) -> str:
    if not isinstance(raw, str) or not re.fullmatch(r"0x[0-9a-fA-F]{40}", raw):
        raise SchemaError(f"{spec.name}: invalid address {raw!r}")
    return raw.lower()


def _encode_static(spec: FieldSpec, value: Any) -> bytes:
    if spec.is_integer:
        value = spec.coerce(value)
        return value.to_bytes(WORD, "big", signed=spec.abi_type.startswith("int"))
    if spec.abi_type == "bool":
        return int(bool(value)).to_bytes(WORD, "big")
    if spec.abi_type == "address":
        return bytes(12) + bytes.fromhex(_normalize_address(spec, value)[2:])
    # bytesN
    width = int(spec.abi_type[5:])
    raw = spec.coerce(value)
    if len(raw) != width:
        raise SchemaError(f"{spec.name}: expected {width} bytes, got {len(raw)}")
    return raw + bytes(WORD - width)


def _decode_static(spec: FieldSpec, word: bytes) -> Any:
    if spec.is_integer:
        value = int.from_bytes(word, "big", signed=spec.abi_type.startswith("int"))
        _check_int_range(spec, value)
        return value
    if spec.abi_type == "bool":
        value = int.from_bytes(word, "big")
        if value not in (0, 1):
            raise SchemaError(f"{spec.name}: invalid bool word")
        return bool(value)
    if spec.abi_type == "address":
        if any(word[:12]):
            raise SchemaError(f"{spec.name}: dirty address padding")
        return "0x" + word[12:].hex()
    width = int(spec.abi_type[5:])
    if any(word[width:]):
        raise SchemaError(f"{spec.name}: dirty bytes{width} padding")
    return word[:width]
