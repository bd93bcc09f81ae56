"""
pytest configuration and fixtures for region decoder tests.

Provides reusable fixtures for:
- Example schemas (.proto source and bound message types)
- Payload builders
- Hypothesis property-based testing configuration
"""

import os
import sys
from pathlib import Path

import pytest
from hypothesis import settings, Verbosity, Phase

# Add project paths
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

from proto_schema import parse_proto
from wire_reader import ScalarKind
from wire_writer import WireWriter


# Default profile: balanced speed and coverage
settings.register_profile(
    "default",
    max_examples=100,
    deadline=None,
)

# CI profile: more thorough testing
settings.register_profile(
    "ci",
    max_examples=500,
    deadline=None,
    suppress_health_check=[],
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)

# Dev profile: fast iteration
settings.register_profile(
    "dev",
    max_examples=10,
    deadline=None,
)

# Debug profile: verbose output
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)

settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))


PERSON_PROTO = '''
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
  map<string, int32> tags = 6;
  Address address = 7;
  repeated string aliases = 8;
  Timestamp seen = 9;
}

message Address {
  string street = 1;
  Location location = 2;
}

message Location {
  double lat = 1;
  double lon = 2;
  sint32 floor = 3;
}
'''


@pytest.fixture(scope="session")
def person_schema():
    """Bound schema for the Person example (Timestamp deliberately unresolved)."""
    return parse_proto(PERSON_PROTO)


@pytest.fixture
def person_type(person_schema):
    return person_schema.lookup_type("Person")


@pytest.fixture
def writer():
    """Fresh WireWriter."""
    return WireWriter()


@pytest.fixture
def phone_payload():
    """Factory: encoded PhoneNumber message body."""
    def build(number: str, phone_type: int) -> WireWriter:
        w = WireWriter()
        w.write_field(1, ScalarKind.STRING, number)
        w.write_field(2, ScalarKind.INT32, phone_type)
        return w
    return build


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
