#!/usr/bin/env python3
"""
wire_reader.py - Cursor-based reader for the protobuf wire format

Reads primitive wire values (varint, 32-bit, 64-bit, length-delimited) from
one immutable buffer through a single cursor. The reader has no schema
knowledge; typed interpretation of the raw values lives in SCALAR_READERS,
which the schema layer binds to field descriptors once, up front.

Wire Format:
    tag      = varint((field_number << 3) | wire_type)
    varint   = base-128, little-endian groups, MSB continuation bit
    fixed32  = 4 bytes little-endian
    fixed64  = 8 bytes little-endian
    length   = varint(length) + payload

Usage:
    from wire_reader import WireReader

    reader = WireReader(payload)
    field_number, wire_type = reader.read_tag()
    value = reader.read_varint()
"""

import struct
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, Tuple


MAX_VARINT_BYTES = 10


class WireType(IntEnum):
    """Wire type codes (low 3 bits of a tag)."""
    VARINT = 0
    FIXED64 = 1
    LENGTH_DELIMITED = 2
    START_GROUP = 3
    END_GROUP = 4
    FIXED32 = 5


class WireError(ValueError):
    """Base class for wire-level decode errors."""

    def __init__(self, message: str, offset: int):
        super().__init__(message)
        self.offset = offset


class OutOfBounds(WireError):
    """A read or skip would consume bytes past the end of the buffer."""


class MalformedVarint(OutOfBounds):
    """Varint continues past the 10-byte maximum."""


class UnsupportedWireType(WireError):
    """Group (3/4) or reserved (6/7) wire types."""


class BoundaryMismatch(WireError):
    """Cursor does not land on a message or packed block end."""


class RecursionLimit(WireError):
    """Nested messages go deeper than the decoder's max_depth."""


class WireReader:
    """
    Sequential access to one buffer through a single shared cursor.

    Nested messages are decoded in place: callers pass the same reader down
    and compare position() against the nested end offset, so every offset
    reported is absolute within the original buffer.
    """

    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.pos = 0

    def __len__(self) -> int:
        return len(self.data)

    def position(self) -> int:
        return self.pos

    def remaining(self) -> int:
        return len(self.data) - self.pos

    def _take(self, size: int, what: str) -> bytes:
        if size < 0 or self.pos + size > len(self.data):
            raise OutOfBounds(
                f"{what}: need {size} bytes at offset {self.pos}, "
                f"{self.remaining()} remaining",
                self.pos,
            )
        out = self.data[self.pos:self.pos + size]
        self.pos += size
        return out

    def read_varint(self) -> int:
        """Decode an unsigned base-128 varint (up to 64 significant bits kept)."""
        start = self.pos
        result = 0
        shift = 0
        for _ in range(MAX_VARINT_BYTES):
            if self.pos >= len(self.data):
                raise OutOfBounds(f"truncated varint starting at offset {start}", start)
            b = self.data[self.pos]
            self.pos += 1
            result |= (b & 0x7F) << shift
            if not (b & 0x80):
                return result & 0xFFFFFFFFFFFFFFFF
            shift += 7
        raise MalformedVarint(f"varint longer than {MAX_VARINT_BYTES} bytes at offset {start}", start)

    def read_tag(self) -> Tuple[int, int]:
        """Return (field_number, wire_type)."""
        tag = self.read_varint()
        return tag >> 3, tag & 0x07

    def read_fixed32(self) -> bytes:
        return self._take(4, "fixed32")

    def read_fixed64(self) -> bytes:
        return self._take(8, "fixed64")

    def read_length_delimited(self) -> Tuple[int, bytes]:
        """Read a varint length, then that many bytes."""
        length = self.read_varint()
        return length, self._take(length, "length-delimited")

    def read_length(self) -> int:
        """
        Read only the length prefix of a length-delimited value.

        Leaves the cursor at the first payload byte. Fails if the payload
        would run past the end of the buffer.
        """
        length = self.read_varint()
        if length > self.remaining():
            raise OutOfBounds(
                f"length {length} at offset {self.pos} exceeds "
                f"{self.remaining()} remaining bytes",
                self.pos,
            )
        return length

    def skip(self, wire_type: int) -> None:
        """Advance past one value of the given wire type."""
        if wire_type == WireType.VARINT:
            self.read_varint()
        elif wire_type == WireType.FIXED64:
            self._take(8, "fixed64")
        elif wire_type == WireType.LENGTH_DELIMITED:
            length = self.read_varint()
            self._take(length, "length-delimited")
        elif wire_type == WireType.FIXED32:
            self._take(4, "fixed32")
        else:
            raise UnsupportedWireType(f"unsupported wire type {wire_type} at offset {self.pos}", self.pos)


# =============================================================================
# Scalar kinds
# =============================================================================

class ScalarKind(Enum):
    """Closed set of protobuf scalar types.

    Value is (type name, wire type of a single element).
    """
    DOUBLE = ('double', WireType.FIXED64)
    FLOAT = ('float', WireType.FIXED32)
    INT32 = ('int32', WireType.VARINT)
    INT64 = ('int64', WireType.VARINT)
    UINT32 = ('uint32', WireType.VARINT)
    UINT64 = ('uint64', WireType.VARINT)
    SINT32 = ('sint32', WireType.VARINT)
    SINT64 = ('sint64', WireType.VARINT)
    FIXED32 = ('fixed32', WireType.FIXED32)
    FIXED64 = ('fixed64', WireType.FIXED64)
    SFIXED32 = ('sfixed32', WireType.FIXED32)
    SFIXED64 = ('sfixed64', WireType.FIXED64)
    BOOL = ('bool', WireType.VARINT)
    STRING = ('string', WireType.LENGTH_DELIMITED)
    BYTES = ('bytes', WireType.LENGTH_DELIMITED)

    @property
    def type_name(self) -> str:
        return self.value[0]

    @property
    def wire_type(self) -> WireType:
        return self.value[1]

    @property
    def packable(self) -> bool:
        return self.wire_type != WireType.LENGTH_DELIMITED

    @classmethod
    def from_name(cls, name: str) -> 'ScalarKind':
        """Look up a kind by its proto type name; raises KeyError."""
        return _KIND_BY_NAME[name]


_KIND_BY_NAME = {kind.type_name: kind for kind in ScalarKind}


def _to_signed(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    if value & (1 << (bits - 1)):
        value -= 1 << bits
    return value


def zigzag_decode(value: int) -> int:
    return (value >> 1) ^ -(value & 1)


def read_int32(reader: WireReader) -> int:
    return _to_signed(reader.read_varint(), 32)


def read_int64(reader: WireReader) -> int:
    return _to_signed(reader.read_varint(), 64)


def read_uint32(reader: WireReader) -> int:
    return reader.read_varint() & 0xFFFFFFFF


def read_uint64(reader: WireReader) -> int:
    return reader.read_varint()


def read_sint32(reader: WireReader) -> int:
    return zigzag_decode(reader.read_varint() & 0xFFFFFFFF)


def read_sint64(reader: WireReader) -> int:
    return zigzag_decode(reader.read_varint())


def read_bool(reader: WireReader) -> bool:
    return reader.read_varint() != 0


def read_string(reader: WireReader) -> str:
    _, raw = reader.read_length_delimited()
    return raw.decode('utf-8', errors='replace')


def read_bytes(reader: WireReader) -> bytes:
    _, raw = reader.read_length_delimited()
    return raw


def _fixed(fmt: str, size: int) -> Callable[[WireReader], Any]:
    def read(reader: WireReader) -> Any:
        raw = reader.read_fixed32() if size == 4 else reader.read_fixed64()
        return struct.unpack(fmt, raw)[0]
    return read


# Enums are decoded like int32
read_enum = read_int32


SCALAR_READERS: Dict[ScalarKind, Callable[[WireReader], Any]] = {
    ScalarKind.DOUBLE: _fixed('<d', 8),
    ScalarKind.FLOAT: _fixed('<f', 4),
    ScalarKind.INT32: read_int32,
    ScalarKind.INT64: read_int64,
    ScalarKind.UINT32: read_uint32,
    ScalarKind.UINT64: read_uint64,
    ScalarKind.SINT32: read_sint32,
    ScalarKind.SINT64: read_sint64,
    ScalarKind.FIXED32: _fixed('<I', 4),
    ScalarKind.FIXED64: _fixed('<Q', 8),
    ScalarKind.SFIXED32: _fixed('<i', 4),
    ScalarKind.SFIXED64: _fixed('<q', 8),
    ScalarKind.BOOL: read_bool,
    ScalarKind.STRING: read_string,
    ScalarKind.BYTES: read_bytes,
}
