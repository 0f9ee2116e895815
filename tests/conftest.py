"""
pytest configuration and fixtures for the binformat tools.

Provides reusable fixtures for:
- Format documents from schemas/
- Compiled codecs for those documents
- Hypothesis property-based testing configuration
"""

import os
import sys
from pathlib import Path

import pytest
from hypothesis import Phase, Verbosity, settings

# Add tools to path
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

from generate_codec import Codec
from schema_parser import load_schema

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"

# Configure Hypothesis profiles

# Default profile: balanced speed and coverage
settings.register_profile(
    "default",
    max_examples=100,
    deadline=None,  # codec compilation in a test body can be slow
)

# CI profile: more thorough testing
settings.register_profile(
    "ci",
    max_examples=500,
    deadline=None,
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


COUNTED_FLAGS_YAML = """
meta:
  endian: le
items:
  - id: version
    type: u16
  - id: count
    type: u8
  - id: flag
    type: bool?
    if: count > 0
    advance_if_false: true
  - id: items
    type: u32[]
    repeat: Count(count)
"""


@pytest.fixture
def schemas_dir():
    return SCHEMAS_DIR


@pytest.fixture
def counted_flags_yaml():
    """version u16, count u8, flag bool if count > 0 (advancing), items u32 x count."""
    return COUNTED_FLAGS_YAML


@pytest.fixture(scope="session")
def counted_flags_codec():
    return Codec.from_text(COUNTED_FLAGS_YAML)


@pytest.fixture(scope="session")
def realm_schema():
    return load_schema(SCHEMAS_DIR / "realm_save.yaml")


@pytest.fixture(scope="session")
def realm_codec(realm_schema):
    return Codec(realm_schema)
