"""
test_hypothesis.py - Property-based testing with Hypothesis

Checks the decoder's structural guarantees over generated messages and
arbitrary bytes:
- Encode/decode round trip preserves scalars and repeated order
- Every region has start < end
- Nested regions are contained in their parent's region
- Point lookup returns the smallest containing region
- Arbitrary bytes either decode or raise DecodeFailure, nothing else

Run with:
    pytest tests/test_hypothesis.py -v
    HYPOTHESIS_PROFILE=ci pytest tests/test_hypothesis.py
"""

import sys
from pathlib import Path

import pytest
from hypothesis import given, settings, assume, HealthCheck
from hypothesis import strategies as st

sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

from proto_schema import parse_proto
from region_decoder import DecodeFailure, UNKNOWN_FIELD, decode_with_regions
from region_index import find_region_by_byte
from wire_reader import ScalarKind
from wire_writer import WireWriter, encode_varint


# =============================================================================
# Test Schema
# =============================================================================

CONTACTS_PROTO = '''
syntax = "proto3";
package book;

message Contact {
  string name = 1;
  int32 id = 2;
  sint64 balance = 3;
  bool active = 4;
  double score = 5;
  bytes avatar = 6;
  repeated int32 lucky = 7;
  repeated Phone phones = 8;
  repeated string labels = 9;
  Contact referrer = 10;
}

message Phone {
  string number = 1;
  Kind kind = 2;
  fixed32 ext = 3;
}

enum Kind {
  MOBILE = 0;
  HOME = 1;
  WORK = 2;
}
'''

SCHEMA = parse_proto(CONTACTS_PROTO)
CONTACT = SCHEMA.lookup_type('Contact')


# =============================================================================
# Strategies for generating test data
# =============================================================================

int32_values = st.integers(min_value=-2**31, max_value=2**31 - 1)
sint64_values = st.integers(min_value=-2**63, max_value=2**63 - 1)
fixed32_values = st.integers(min_value=0, max_value=2**32 - 1)
finite_doubles = st.floats(allow_nan=False, allow_infinity=False)
short_text = st.text(max_size=12)

phone_values = st.fixed_dictionaries({
    'number': short_text,
    'kind': st.integers(min_value=0, max_value=2),
    'ext': fixed32_values,
})


def contact_values(max_depth: int = 2):
    base = {
        'name': short_text,
        'id': int32_values,
        'balance': sint64_values,
        'active': st.booleans(),
        'score': finite_doubles,
        'avatar': st.binary(max_size=8),
        'lucky': st.lists(int32_values, max_size=5),
        'phones': st.lists(phone_values, max_size=3),
        'labels': st.lists(short_text, max_size=3),
    }
    if max_depth > 0:
        base['referrer'] = st.none() | contact_values(max_depth - 1)
    return st.fixed_dictionaries(base)


def encode_phone(phone: dict) -> WireWriter:
    w = WireWriter()
    w.write_field(1, ScalarKind.STRING, phone['number'])
    w.write_field(2, ScalarKind.INT32, phone['kind'])
    w.write_field(3, ScalarKind.FIXED32, phone['ext'])
    return w


def encode_contact(contact: dict) -> WireWriter:
    """Encode every field explicitly (no default-value elision)."""
    w = WireWriter()
    w.write_field(1, ScalarKind.STRING, contact['name'])
    w.write_field(2, ScalarKind.INT32, contact['id'])
    w.write_field(3, ScalarKind.SINT64, contact['balance'])
    w.write_field(4, ScalarKind.BOOL, contact['active'])
    w.write_field(5, ScalarKind.DOUBLE, contact['score'])
    w.write_field(6, ScalarKind.BYTES, contact['avatar'])
    if contact['lucky']:
        w.write_packed(7, ScalarKind.INT32, contact['lucky'])
    for phone in contact['phones']:
        w.write_message(8, encode_phone(phone))
    w.write_repeated(9, ScalarKind.STRING, contact['labels'])
    if contact.get('referrer') is not None:
        w.write_message(10, encode_contact(contact['referrer']))
    return w


def expected_value(contact: dict) -> dict:
    """The value tree the decoder should produce for an encoded contact."""
    out = {k: v for k, v in contact.items() if k != 'referrer'}
    for key in ('lucky', 'phones', 'labels'):
        if not out[key]:
            del out[key]
    if contact.get('referrer') is not None:
        out['referrer'] = expected_value(contact['referrer'])
    return out


def is_ancestor(a: str, b: str) -> bool:
    return b.startswith(a + '.')


# =============================================================================
# Property Tests: Roundtrip
# =============================================================================

class TestRoundtrip:
    """Decoding an encoding reproduces the original values."""

    @given(contact_values())
    @settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])
    def test_roundtrip_preserves_values(self, contact):
        payload = encode_contact(contact).getvalue()
        result = decode_with_regions(CONTACT, payload)
        assert result.value == expected_value(contact)
        assert result.warnings == []

    @given(st.lists(int32_values, min_size=1, max_size=50))
    def test_packed_block_is_one_region(self, values):
        w = WireWriter().write_packed(7, ScalarKind.INT32, values)
        payload = w.getvalue()
        result = decode_with_regions(CONTACT, payload)

        assert result.value == {'lucky': values}
        assert len(result.regions) == 1
        region = result.regions[0]
        assert region.type_label == 'packed int32'
        assert (region.start, region.end) == (0, len(payload))
        assert region.value == values

    @given(st.integers(min_value=11, max_value=2**29 - 1),
           st.integers(min_value=0, max_value=2**64 - 1))
    def test_unknown_varint_field(self, field_number, value):
        payload = encode_varint(field_number << 3) + encode_varint(value)
        result = decode_with_regions(CONTACT, payload)
        assert result.value == {}
        assert len(result.regions) == 1
        region = result.regions[0]
        assert region.path == f'unknown_{field_number}'
        assert region.value is UNKNOWN_FIELD
        assert (region.start, region.end) == (0, len(payload))


# =============================================================================
# Property Tests: Region structure
# =============================================================================

class TestRegionInvariants:
    """Structural guarantees of the region list."""

    @given(contact_values())
    @settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])
    def test_regions_non_empty_and_contained(self, contact):
        payload = encode_contact(contact).getvalue()
        regions = decode_with_regions(CONTACT, payload).regions

        for r in regions:
            assert 0 <= r.start < r.end <= len(payload)
        for a in regions:
            for b in regions:
                if is_ancestor(a.path, b.path):
                    assert a.start <= b.start and b.end <= a.end
                    assert b.depth > a.depth

    @given(contact_values())
    @settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
    def test_top_level_regions_tile_buffer(self, contact):
        payload = encode_contact(contact).getvalue()
        top = [r for r in decode_with_regions(CONTACT, payload).regions if r.depth == 0]
        position = 0
        for r in top:
            assert r.start == position
            position = r.end
        assert position == len(payload)

    @given(contact_values(), st.data())
    @settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
    def test_point_lookup_is_smallest_container(self, contact, data):
        payload = encode_contact(contact).getvalue()
        assume(payload)
        regions = decode_with_regions(CONTACT, payload).regions
        index = data.draw(st.integers(min_value=0, max_value=len(payload) - 1))

        hit = find_region_by_byte(regions, index)
        containing = [r for r in regions if r.start <= index < r.end]
        assert hit is not None
        assert hit.start <= index < hit.end
        assert hit.size == min(r.size for r in containing)


# =============================================================================
# Property Tests: Decoder safety
# =============================================================================

class TestDecoderSafety:
    """Arbitrary input never escapes as anything but DecodeFailure."""

    @given(st.binary(max_size=256))
    @settings(max_examples=1000, suppress_health_check=[HealthCheck.too_slow])
    def test_random_bytes(self, data):
        try:
            result = decode_with_regions(CONTACT, data)
        except DecodeFailure as e:
            assert 0 <= e.offset <= len(data)
            return
        for r in result.regions:
            assert r.start < r.end <= len(data)
        assert sum(r.size for r in result.regions if r.depth == 0) == len(data)

    @given(contact_values(max_depth=1), st.data())
    @settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])
    def test_truncation_is_fatal_or_clean(self, contact, data):
        payload = encode_contact(contact).getvalue()
        assume(len(payload) > 1)
        cut = data.draw(st.integers(min_value=1, max_value=len(payload) - 1))
        truncated = payload[:cut]
        top_ends = {r.end for r in decode_with_regions(CONTACT, payload).regions if r.depth == 0}
        if cut in top_ends:
            # cut on a field boundary: still a valid, shorter message
            decode_with_regions(CONTACT, truncated)
        else:
            with pytest.raises(DecodeFailure):
                decode_with_regions(CONTACT, truncated)
