#!/usr/bin/env python3
"""
wire_writer.py - Protobuf wire format encoder

Inverse of wire_reader.WireReader. Used to build payloads for the inspector
self-test and the test suite.

Usage:
    from wire_writer import WireWriter
    from wire_reader import ScalarKind

    w = WireWriter()
    w.write_field(1, ScalarKind.STRING, "Al")
    w.write_field(2, ScalarKind.INT32, 7)
    payload = w.getvalue()      # 0a 02 41 6c 10 07
"""

import struct
from typing import Any, Iterable

from wire_reader import ScalarKind, WireType


def encode_varint(value: int) -> bytes:
    """Encode an unsigned varint; negative values use 64-bit two's complement."""
    if value < 0:
        value &= 0xFFFFFFFFFFFFFFFF
    out = bytearray()
    while True:
        b = value & 0x7F
        value >>= 7
        if value:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


def zigzag_encode(value: int, bits: int = 64) -> int:
    return ((value << 1) ^ (value >> (bits - 1))) & ((1 << bits) - 1)


def encode_scalar(kind: ScalarKind, value: Any) -> bytes:
    """Encode one scalar value without a tag."""
    if kind in (ScalarKind.INT32, ScalarKind.INT64, ScalarKind.UINT32, ScalarKind.UINT64):
        return encode_varint(int(value))
    if kind == ScalarKind.SINT32:
        return encode_varint(zigzag_encode(int(value), 32))
    if kind == ScalarKind.SINT64:
        return encode_varint(zigzag_encode(int(value), 64))
    if kind == ScalarKind.BOOL:
        return encode_varint(1 if value else 0)
    if kind == ScalarKind.FIXED32:
        return struct.pack('<I', value)
    if kind == ScalarKind.SFIXED32:
        return struct.pack('<i', value)
    if kind == ScalarKind.FLOAT:
        return struct.pack('<f', value)
    if kind == ScalarKind.FIXED64:
        return struct.pack('<Q', value)
    if kind == ScalarKind.SFIXED64:
        return struct.pack('<q', value)
    if kind == ScalarKind.DOUBLE:
        return struct.pack('<d', value)
    if kind == ScalarKind.STRING:
        raw = value.encode('utf-8')
        return encode_varint(len(raw)) + raw
    if kind == ScalarKind.BYTES:
        return encode_varint(len(value)) + bytes(value)
    raise ValueError(f"Unsupported scalar kind: {kind}")


class WireWriter:
    """Accumulates tagged fields into a byte buffer."""

    def __init__(self):
        self._buf = bytearray()

    def __len__(self) -> int:
        return len(self._buf)

    def getvalue(self) -> bytes:
        return bytes(self._buf)

    def write_raw(self, data: bytes) -> 'WireWriter':
        self._buf += data
        return self

    def write_varint(self, value: int) -> 'WireWriter':
        self._buf += encode_varint(value)
        return self

    def write_tag(self, field_number: int, wire_type: int) -> 'WireWriter':
        return self.write_varint((field_number << 3) | int(wire_type))

    def write_fixed32(self, raw: bytes) -> 'WireWriter':
        if len(raw) != 4:
            raise ValueError(f"fixed32 needs 4 bytes, got {len(raw)}")
        return self.write_raw(raw)

    def write_fixed64(self, raw: bytes) -> 'WireWriter':
        if len(raw) != 8:
            raise ValueError(f"fixed64 needs 8 bytes, got {len(raw)}")
        return self.write_raw(raw)

    def write_length_delimited(self, payload: bytes) -> 'WireWriter':
        self.write_varint(len(payload))
        return self.write_raw(payload)

    def write_field(self, field_number: int, kind: ScalarKind, value: Any) -> 'WireWriter':
        """Write tag + scalar value."""
        self.write_tag(field_number, kind.wire_type)
        return self.write_raw(encode_scalar(kind, value))

    def write_repeated(self, field_number: int, kind: ScalarKind,
                       values: Iterable[Any]) -> 'WireWriter':
        """Write each element as its own tagged occurrence (unpacked)."""
        for value in values:
            self.write_field(field_number, kind, value)
        return self

    def write_packed(self, field_number: int, kind: ScalarKind,
                     values: Iterable[Any]) -> 'WireWriter':
        """Write all elements inside one length-delimited block."""
        if not kind.packable:
            raise ValueError(f"{kind.type_name} cannot be packed")
        body = b''.join(encode_scalar(kind, v) for v in values)
        self.write_tag(field_number, WireType.LENGTH_DELIMITED)
        return self.write_length_delimited(body)

    def write_message(self, field_number: int, sub: 'WireWriter') -> 'WireWriter':
        """Write a nested message built in another writer."""
        self.write_tag(field_number, WireType.LENGTH_DELIMITED)
        return self.write_length_delimited(sub.getvalue())
