#!/usr/bin/env python3
"""
inspect_proto.py - Map protobuf payload bytes to schema fields

Decodes a binary protobuf payload against a schema and reports, for every
field occurrence, the exact byte range it occupies. Can also answer point
queries: which field owns byte N, and which bytes encode path P.

Usage:
    inspect_proto.py <schema> <payload.bin> [options]
    inspect_proto.py person.proto --hex "0a 02 41 6c 10 07" --type Person
    inspect_proto.py person.proto payload.bin --at 0x12
    inspect_proto.py person.proto payload.bin --path "phones[1].number"
    inspect_proto.py person.yaml --list-types

Output: Markdown report (default) or JSON (--json)
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from proto_schema import SchemaError, load_schema, parse_proto
from region_decoder import (
    DEFAULT_MAX_DEPTH, ByteRegion, DecodeFailure, RegionDecodeResult,
    decode_with_regions, to_jsonable,
)
from region_index import find_region_by_byte, find_regions_by_path
from wire_reader import ScalarKind, WireType
from wire_writer import WireWriter


VALUE_PREVIEW_CHARS = 40
HEX_ROW_BYTES = 16


def log_info(msg: str) -> None:
    print(f"[INFO] {msg}", file=sys.stderr)


def log_warn(msg: str) -> None:
    print(f"[WARN] {msg}", file=sys.stderr)


def log_error(msg: str) -> None:
    print(f"[ERROR] {msg}", file=sys.stderr)


def parse_hex(text: str) -> bytes:
    """Parse hex like '0a 02 41', '0x0a0x02' or '0A:02'."""
    clean = text.replace('0x', '').replace('0X', '')
    for sep in (' ', ':', ',', '\n', '\t'):
        clean = clean.replace(sep, '')
    return bytes.fromhex(clean)


def wire_type_name(wire_type: int) -> str:
    try:
        return WireType(wire_type).name.lower()
    except ValueError:
        return str(wire_type)


def preview(value, limit: int = VALUE_PREVIEW_CHARS) -> str:
    """Short single-line rendering of a value for tables."""
    text = json.dumps(to_jsonable(value), ensure_ascii=False)
    if len(text) > limit:
        text = text[:limit - 3] + '...'
    return text.replace('|', '\\|')


def hex_dump(data: bytes, base: int = 0) -> List[str]:
    lines = []
    for i in range(0, len(data), HEX_ROW_BYTES):
        chunk = data[i:i + HEX_ROW_BYTES]
        hex_part = ' '.join(f'{b:02x}' for b in chunk)
        ascii_part = ''.join(chr(b) if 32 <= b <= 126 else '.' for b in chunk)
        lines.append(f"  {base + i:04x}: {hex_part:<{HEX_ROW_BYTES * 3}} |{ascii_part}|")
    return lines


def format_region(region: ByteRegion, payload: bytes) -> str:
    """Describe one region and dump the bytes it covers."""
    lines = [
        f"Path:      {region.path}",
        f"Field:     {region.field_name}",
        f"Type:      {region.type_label}",
        f"Wire type: {region.wire_type} ({wire_type_name(region.wire_type)})",
        f"Bytes:     [{region.start}, {region.end}) - {region.size} bytes",
        f"Depth:     {region.depth}",
        f"Value:     {preview(region.value, 200)}",
        "",
    ]
    lines.extend(hex_dump(payload[region.start:region.end], region.start))
    return '\n'.join(lines)


def generate_report(type_name: str, payload: bytes, result: RegionDecodeResult) -> str:
    """Generate the Markdown region report."""
    regions = result.regions
    max_depth = max((r.depth for r in regions), default=0)

    lines = [
        "# Protobuf Region Report",
        "",
        f"**Generated:** {datetime.now().strftime('%Y-%m-%d %H:%M')}",
        f"**Message Type:** `{type_name}`",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Payload bytes | {len(payload)} |",
        f"| Regions | {len(regions)} |",
        f"| Max depth | {max_depth} |",
        f"| Unknown fields | {sum(1 for r in regions if r.type_label == 'unknown')} |",
        f"| Warnings | {len(result.warnings)} |",
        "",
        "---",
        "",
        "## Regions",
        "",
        "| Start | End | Size | Depth | Path | Type | Wire | Value |",
        "|-------|-----|------|-------|------|------|------|-------|",
    ]
    for r in regions:
        lines.append(
            f"| {r.start} | {r.end} | {r.size} | {r.depth} | `{r.path}` | "
            f"{r.type_label} | {wire_type_name(r.wire_type)} | {preview(r.value)} |"
        )

    if result.warnings:
        lines.extend(["", "## Warnings", ""])
        for w in result.warnings:
            lines.append(f"- {w}")

    lines.extend([
        "",
        "---",
        "",
        "## Decoded Value",
        "",
        "```json",
        json.dumps(to_jsonable(result.value), indent=2, ensure_ascii=False),
        "```",
        "",
    ])
    return '\n'.join(lines)


SELF_TEST_PROTO = '''
syntax = "proto3";
package example;

message Person {
  string name = 1;
  int32 id = 2;
  string email = 3;

  enum PhoneType {
    MOBILE = 0;
    HOME = 1;
    WORK = 2;
  }

  message PhoneNumber {
    string number = 1;
    PhoneType type = 2;
  }

  repeated PhoneNumber phones = 4;
  repeated int32 scores = 5;
}
'''


def run_self_test() -> bool:
    """Run self-test."""
    print("Running self-test...")

    schema = parse_proto(SELF_TEST_PROTO)
    assert schema.message_type_names() == ['example.Person', 'example.Person.PhoneNumber'], \
        f"Unexpected types: {schema.message_type_names()}"
    person = schema.lookup_type('Person')
    assert person.field_by_id(5).packed, "proto3 repeated int32 should default to packed"

    print("  Schema parsing: OK")

    phone = WireWriter()
    phone.write_field(1, ScalarKind.STRING, "555-1234")
    phone.write_field(2, ScalarKind.INT32, 1)
    w = WireWriter()
    w.write_field(1, ScalarKind.STRING, "Al")
    w.write_field(2, ScalarKind.INT32, 7)
    w.write_message(4, phone)
    w.write_packed(5, ScalarKind.INT32, [3, -1, 300])
    w.write_field(99, ScalarKind.UINT32, 5)
    payload = w.getvalue()

    result = decode_with_regions(person, payload)
    assert result.value['name'] == 'Al', f"name: {result.value.get('name')}"
    assert result.value['id'] == 7, f"id: {result.value.get('id')}"
    assert result.value['phones'][0] == {'number': '555-1234', 'type': 1}
    assert result.value['scores'] == [3, -1, 300]

    paths = [r.path for r in result.regions]
    assert paths == ['name', 'id', 'phones[0]', 'phones[0].number', 'phones[0].type',
                     'scores', 'unknown_99'], f"Unexpected paths: {paths}"
    assert (result.regions[0].start, result.regions[0].end) == (0, 4)

    print("  Region decoding: OK")

    hit = find_region_by_byte(result.regions, 8)
    assert hit is not None and hit.path == 'phones[0].number', f"byte 8 -> {hit}"
    assert len(find_regions_by_path(result.regions, 'scores')) == 1

    print("  Region queries: OK")

    try:
        decode_with_regions(person, payload[:-1])
    except DecodeFailure:
        pass
    else:
        raise AssertionError("Truncated payload should fail")

    print("  Failure handling: OK")

    report = generate_report(person.full_name, payload, result)
    assert "Protobuf Region Report" in report, "Report should have title"
    assert "phones[0].number" in report, "Report should list nested paths"

    print("  Report generation: OK")

    print("[PASS] Self-test completed")
    return True


def load_payload(args) -> Optional[bytes]:
    if args.hex is not None:
        return parse_hex(args.hex)
    if args.payload is not None:
        return args.payload.read_bytes()
    return None


def main():
    parser = argparse.ArgumentParser(
        description="Decode a protobuf payload and map every field to its bytes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s person.proto payload.bin
  %(prog)s person.proto --hex "0a 02 41 6c 10 07" --type Person
  %(prog)s person.proto payload.bin --at 0x12
  %(prog)s person.proto payload.bin --path "phones[1].number" --json
  %(prog)s person.yaml --list-types
  %(prog)s --self-test
        """,
    )
    parser.add_argument(
        'schema',
        type=Path,
        nargs='?',
        help="Schema file (.proto, .yaml, .yml or .json)"
    )
    parser.add_argument(
        'payload',
        type=Path,
        nargs='?',
        help="Binary payload file"
    )
    parser.add_argument(
        '-t', '--type',
        help="Root message type (default: first message in the schema)"
    )
    parser.add_argument(
        '-x', '--hex',
        help="Payload as a hex string instead of a file"
    )
    parser.add_argument(
        '--list-types',
        action='store_true',
        help="List message types and exit"
    )
    parser.add_argument(
        '--at',
        type=lambda s: int(s, 0),
        metavar='OFFSET',
        help="Show the most specific field containing this byte offset"
    )
    parser.add_argument(
        '--path',
        help="Show the byte regions for this field path"
    )
    parser.add_argument(
        '--max-depth',
        type=int,
        default=DEFAULT_MAX_DEPTH,
        help=f"Maximum message nesting depth (default: {DEFAULT_MAX_DEPTH})"
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help="Output JSON instead of Markdown"
    )
    parser.add_argument(
        '-o', '--output',
        type=Path,
        help="Output file (default: stdout)"
    )
    parser.add_argument(
        '--self-test',
        action='store_true',
        help="Run self-test"
    )

    args = parser.parse_args()

    if args.self_test:
        success = run_self_test()
        sys.exit(0 if success else 1)

    if args.schema is None:
        parser.error("schema required (unless using --self-test)")

    try:
        schema = load_schema(args.schema)
    except (OSError, SchemaError) as e:
        log_error(f"Error loading schema: {e}")
        sys.exit(1)

    type_names = schema.message_type_names()
    if args.list_types:
        print('\n'.join(type_names))
        return

    if not type_names:
        log_error(f"No message types in {args.schema}")
        sys.exit(1)

    try:
        payload = load_payload(args)
    except (OSError, ValueError) as e:
        log_error(f"Error loading payload: {e}")
        sys.exit(1)
    if payload is None:
        parser.error("payload file or --hex required")

    try:
        root = schema.lookup_type(args.type or type_names[0])
    except SchemaError as e:
        log_error(str(e))
        sys.exit(1)

    log_info(f"Decoding {len(payload)} bytes as {root.full_name}")
    try:
        result = decode_with_regions(root, payload, args.max_depth)
    except DecodeFailure as e:
        log_error(str(e))
        sys.exit(1)

    for warning in result.warnings:
        log_warn(warning)

    if args.at is not None:
        region = find_region_by_byte(result.regions, args.at)
        if region is None:
            log_warn(f"No field covers byte {args.at}")
            sys.exit(1)
        if args.json:
            output = json.dumps(region.to_dict(), indent=2)
        else:
            output = format_region(region, payload)
    elif args.path is not None:
        matches = find_regions_by_path(result.regions, args.path)
        if not matches:
            log_warn(f"No field at path '{args.path}'")
            sys.exit(1)
        if args.json:
            output = json.dumps([r.to_dict() for r in matches], indent=2)
        else:
            output = '\n\n'.join(format_region(r, payload) for r in matches)
    elif args.json:
        output = json.dumps({
            'type': root.full_name,
            'size': len(payload),
            'value': to_jsonable(result.value),
            'regions': [r.to_dict() for r in result.regions],
            'warnings': result.warnings,
        }, indent=2)
    else:
        output = generate_report(root.full_name, payload, result)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(output)
        log_info(f"Report written to {args.output}")
    else:
        print(output)


if __name__ == "__main__":
    main()
