#!/usr/bin/env python3
"""
region_decoder.py - Protobuf decoder that records the byte span of every field

Decodes a buffer against a bound MessageType and produces two things in one
pass:

    value    - dict tree mirroring the message (lists for repeated fields)
    regions  - flat list of ByteRegion, one per field occurrence, with
               absolute [start, end) offsets, dotted/bracketed path and depth

Regions are listed in pre-order depth-first order: a nested message's region
precedes the regions of its own fields.

Offsets stay absolute because nested messages are decoded in place with the
one shared WireReader cursor; the buffer is never sliced.

Failure policy:
    - Truncated reads, group wire types, boundary overruns and nesting past
      max_depth abort the whole decode with DecodeFailure. No partial
      result is returned.
    - Map fields and fields whose type has no reader are skipped locally: the
      value becomes a placeholder and a warning is added to the result.

Usage:
    from proto_schema import parse_proto
    from region_decoder import decode_with_regions

    schema = parse_proto(source)
    result = decode_with_regions(schema.lookup_type("Person"), payload)
    for region in result.regions:
        print(region.start, region.end, region.path)
"""

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from proto_schema import MessageType
from wire_reader import BoundaryMismatch, RecursionLimit, WireError, WireReader, WireType


@dataclass(frozen=True)
class Placeholder:
    """Stand-in value for data that was skipped rather than decoded."""
    label: str

    def __str__(self) -> str:
        return self.label


UNKNOWN_FIELD = Placeholder("Unknown Field")
SKIPPED = Placeholder("[Skipped]")
MAP_SKIPPED = Placeholder("[Map Skipped]")

# Same default as the protobuf runtimes' recursion limit
DEFAULT_MAX_DEPTH = 100


@dataclass(frozen=True)
class ByteRegion:
    """One decoded field occurrence and the bytes [start, end) that encode it."""
    start: int
    end: int
    path: str
    field_name: str
    type_label: str
    wire_type: int
    depth: int
    value: Any = field(default=None, compare=False)

    @property
    def size(self) -> int:
        return self.end - self.start

    def contains(self, index: int) -> bool:
        return self.start <= index < self.end

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': self.start,
            'end': self.end,
            'path': self.path,
            'field_name': self.field_name,
            'type': self.type_label,
            'wire_type': self.wire_type,
            'depth': self.depth,
            'value': to_jsonable(self.value),
        }


class DecodeFailure(ValueError):
    """
    Fatal decode error.

    Attributes:
        type_name: message type being decoded when the error occurred
        offset: absolute buffer offset of the failing read
        field_number: field being processed, if a tag had been read
        reason: error class name (OutOfBounds, BoundaryMismatch, ...)
    """

    def __init__(self, type_name: str, offset: int, reason: str,
                 detail: str = '', field_number: Optional[int] = None):
        self.type_name = type_name
        self.offset = offset
        self.reason = reason
        self.field_number = field_number
        where = f" (field {field_number})" if field_number is not None else ""
        msg = f"Failed to decode {type_name} at offset {offset}{where}: {reason}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


@dataclass
class RegionDecodeResult:
    """Result of a successful region decode."""
    value: Dict[str, Any]
    regions: List[ByteRegion]
    warnings: List[str] = field(default_factory=list)


def _child_path(base: str, name: str) -> str:
    return f"{base}.{name}" if base else name


class RegionDecoder:
    """
    Region-tracking decoder for one root message type.

    The root type must come from a bound ProtoSchema (parse_proto,
    schema_from_dict or load_schema all bind). The decoder keeps no state
    between decode() calls.

    max_depth caps message nesting below the root; a payload nested deeper
    fails with reason RecursionLimit.
    """

    def __init__(self, root_type: MessageType, max_depth: int = DEFAULT_MAX_DEPTH):
        self.root_type = root_type
        self.max_depth = max_depth

    def decode(self, buffer: bytes) -> RegionDecodeResult:
        """
        Decode the whole buffer as one root message.

        Raises:
            DecodeFailure on any truncated read, boundary overrun or
            nesting deeper than max_depth
        """
        reader = WireReader(buffer)
        result = RegionDecodeResult(value={}, regions=[])
        self._decode_message(reader, self.root_type, len(reader), result.value, '', 0, result)
        return result

    def _decode_message(self, reader: WireReader, msg_type: MessageType, end: int,
                        target: Dict[str, Any], base_path: str, depth: int,
                        out: RegionDecodeResult) -> None:
        field_number = None
        try:
            while reader.pos < end:
                field_number = None
                start = reader.pos
                field_number, wire_type = reader.read_tag()
                self._check_end(reader, end, "tag")
                fd = msg_type.field_by_id(field_number)

                if fd is None:
                    field_name = f"unknown_{field_number}"
                    path = _child_path(base_path, field_name)
                    reader.skip(wire_type)
                    value = UNKNOWN_FIELD

                elif fd.is_map:
                    field_name = fd.name
                    path = _child_path(base_path, field_name)
                    reader.skip(wire_type)
                    value = MAP_SKIPPED
                    target[field_name] = value
                    out.warnings.append(f"{path}: map field not decoded (offset {start})")

                elif fd.repeated and fd.packed and wire_type == WireType.LENGTH_DELIMITED:
                    self._decode_packed(reader, fd, end, target, base_path, depth, start, out)
                    continue

                elif wire_type == WireType.LENGTH_DELIMITED and fd.message_type is not None:
                    field_name = fd.name
                    if depth + 1 > self.max_depth:
                        raise RecursionLimit(
                            f"{fd.message_type.full_name} nested deeper than "
                            f"max_depth {self.max_depth}",
                            start,
                        )
                    length = reader.read_length()
                    msg_end = reader.pos + length
                    if msg_end > end:
                        raise BoundaryMismatch(
                            f"nested {fd.message_type.full_name} ends at {msg_end}, "
                            f"past enclosing end {end}",
                            reader.pos,
                        )
                    value = {}
                    path = self._store(target, fd, base_path, value)
                    # Reserve the slot so the parent precedes its children
                    slot = len(out.regions)
                    out.regions.append(None)
                    self._decode_message(reader, fd.message_type, msg_end, value,
                                         path, depth + 1, out)
                    out.regions[slot] = ByteRegion(
                        start=start, end=reader.pos, path=path, field_name=field_name,
                        type_label=fd.type_name, wire_type=wire_type, depth=depth,
                        value=value,
                    )
                    continue

                else:
                    field_name = fd.name
                    if fd.read is not None:
                        value = fd.read(reader)
                    else:
                        reader.skip(wire_type)
                        value = SKIPPED
                        out.warnings.append(
                            f"{_child_path(base_path, field_name)}: unsupported type "
                            f"'{fd.type_name}' skipped (offset {start})"
                        )
                    path = self._store(target, fd, base_path, value)

                self._check_end(reader, end, field_name)
                out.regions.append(ByteRegion(
                    start=start, end=reader.pos, path=path, field_name=field_name,
                    type_label=fd.type_name if fd is not None else 'unknown',
                    wire_type=wire_type, depth=depth, value=value,
                ))
        except WireError as e:
            raise DecodeFailure(
                type_name=msg_type.full_name,
                offset=e.offset,
                reason=type(e).__name__,
                detail=str(e),
                field_number=field_number,
            ) from e

    def _decode_packed(self, reader: WireReader, fd, end: int, target: Dict[str, Any],
                       base_path: str, depth: int, start: int,
                       out: RegionDecodeResult) -> None:
        """Decode one packed block into the field's list and emit a single region."""
        length = reader.read_length()
        packed_end = reader.pos + length
        if packed_end > end:
            raise BoundaryMismatch(
                f"packed {fd.name} ends at {packed_end}, past enclosing end {end}",
                reader.pos,
            )
        seq = target.setdefault(fd.name, [])
        while reader.pos < packed_end:
            seq.append(fd.read(reader))
        if reader.pos != packed_end:
            raise BoundaryMismatch(
                f"packed {fd.name} elements end at {reader.pos}, block ends at {packed_end}",
                reader.pos,
            )
        out.regions.append(ByteRegion(
            start=start, end=reader.pos, path=_child_path(base_path, fd.name),
            field_name=fd.name, type_label=f"packed {fd.type_name}",
            wire_type=WireType.LENGTH_DELIMITED, depth=depth, value=list(seq),
        ))

    @staticmethod
    def _store(target: Dict[str, Any], fd, base_path: str, value: Any) -> str:
        """Assign or append value; return its path."""
        path = _child_path(base_path, fd.name)
        if fd.repeated:
            seq = target.setdefault(fd.name, [])
            path = f"{path}[{len(seq)}]"
            seq.append(value)
        else:
            target[fd.name] = value
        return path

    @staticmethod
    def _check_end(reader: WireReader, end: int, what: str) -> None:
        if reader.pos > end:
            raise BoundaryMismatch(
                f"{what} overruns message end {end} (cursor at {reader.pos})",
                reader.pos,
            )


def decode_with_regions(root_type: MessageType, buffer: bytes,
                        max_depth: int = DEFAULT_MAX_DEPTH) -> RegionDecodeResult:
    """Decode buffer as root_type, recording a ByteRegion per field."""
    return RegionDecoder(root_type, max_depth).decode(buffer)


def to_jsonable(value: Any) -> Any:
    """Convert a decoded value tree into JSON-serializable data."""
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode('ascii')
    if isinstance(value, Placeholder):
        return value.label
    return value
