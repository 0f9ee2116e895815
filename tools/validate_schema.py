#!/usr/bin/env python3
"""
validate_schema.py - Validate a format file and run its test vectors

Usage:
    python tools/validate_schema.py save.yaml
    python tools/validate_schema.py save.yaml --verbose
    python tools/validate_schema.py save.yaml --json

A test vector names a payload and the record it must decode to:

    test_vectors:
      - name: three_items
        description: flag present, three entries
        payload: "02 00 03 01 05 00 00 00 06 00 00 00 07 00 00 00"
        expected: {version: 2, count: 3, flag: true, items: [5, 6, 7]}
      - name: truncated
        payload: "02"
        expect_error: true

Each passing decode is re-encoded and must reproduce the consumed bytes
exactly.
"""

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple

import yaml

sys.path.insert(0, str(Path(__file__).parent))
from generate_codec import Codec
from log_setup import setup_logging
from schema_errors import SchemaError
from schema_parser import parse_schema

logger = logging.getLogger(__name__)


@dataclass
class TestResult:
    """Result of a single test vector."""
    __test__ = False

    name: str
    passed: bool = False
    description: str = ""
    payload_hex: str = ""
    expected: Dict[str, Any] = field(default_factory=dict)
    actual: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'passed': self.passed,
            'description': self.description,
            'payload': self.payload_hex,
            'expected': self.expected,
            'actual': self.actual,
            'errors': self.errors,
        }


@dataclass
class ValidationResult:
    """Result of format file validation."""
    schema_valid: bool
    schema_errors: List[str] = field(default_factory=list)
    test_results: List[TestResult] = field(default_factory=list)

    @property
    def tests_passed(self) -> int:
        return sum(1 for t in self.test_results if t.passed)

    @property
    def tests_failed(self) -> int:
        return self.total_tests - self.tests_passed

    @property
    def total_tests(self) -> int:
        return len(self.test_results)

    @property
    def all_passed(self) -> bool:
        return self.schema_valid and self.tests_failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schema_valid': self.schema_valid,
            'schema_errors': self.schema_errors,
            'tests_passed': self.tests_passed,
            'tests_failed': self.tests_failed,
            'total_tests': self.total_tests,
            'all_passed': self.all_passed,
            'test_results': [t.to_dict() for t in self.test_results],
        }


def parse_payload(payload: Any) -> bytes:
    """Accept bytes, a list of byte values or a hex string (spaces, commas and 0x allowed)."""
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, list):
        return bytes(payload)
    if isinstance(payload, str):
        clean = payload.replace(' ', '').replace(',', '').replace('0x', '')
        return bytes.fromhex(clean)
    raise ValueError(f"Cannot parse payload: {payload!r}")


def values_match(expected: Any, actual: Any, tolerance: float = 1e-6) -> Tuple[bool, str]:
    """Compare an expected value from YAML with a decoded one; floats within tolerance."""
    if expected is None or actual is None:
        if expected is actual:
            return True, ""
        return False, f"expected {expected}, got {actual}"

    if isinstance(expected, bool) or isinstance(actual, bool):
        if expected is not actual:
            return False, f"expected {expected}, got {actual}"
        return True, ""

    if isinstance(expected, (int, float)) and isinstance(actual, (int, float)):
        if isinstance(expected, float) or isinstance(actual, float):
            ok = abs(expected - actual) <= tolerance
        else:
            ok = expected == actual
        return (True, "") if ok else (False, f"expected {expected}, got {actual}")

    if isinstance(expected, Mapping) and isinstance(actual, Mapping):
        for key in expected:
            if key not in actual:
                return False, f"missing key '{key}'"
            ok, msg = values_match(expected[key], actual[key], tolerance)
            if not ok:
                return False, f"{key}: {msg}"
        return True, ""

    if isinstance(expected, list) and isinstance(actual, list):
        if len(expected) != len(actual):
            return False, f"list length mismatch: expected {len(expected)}, got {len(actual)}"
        for i, (e, a) in enumerate(zip(expected, actual)):
            ok, msg = values_match(e, a, tolerance)
            if not ok:
                return False, f"[{i}]: {msg}"
        return True, ""

    return False, f"type mismatch: expected {type(expected).__name__}, got {type(actual).__name__}"


def run_test_vector(codec: Codec, tv: Mapping[str, Any]) -> TestResult:
    """Decode a test vector, compare the record and check the re-encoding."""
    result = TestResult(
        name=str(tv.get('name', 'unnamed')),
        description=tv.get('description', ''),
        expected=tv.get('expected') or {},
    )

    try:
        payload = parse_payload(tv.get('payload', ''))
        result.payload_hex = payload.hex().upper()
    except ValueError as e:
        result.errors.append(f"Failed to parse payload: {e}")
        return result

    decoded = codec.decode(payload)
    if tv.get('expect_error'):
        if decoded.success:
            result.errors.append("decode succeeded but an error was expected")
        result.passed = not result.errors
        return result

    if not decoded.success:
        result.errors.extend(decoded.errors)
        return result
    result.actual = codec.to_dict(decoded.value)

    for name, expected_value in result.expected.items():
        if name not in result.actual:
            result.errors.append(f"Missing field in output: '{name}'")
            continue
        ok, msg = values_match(expected_value, result.actual[name])
        if not ok:
            result.errors.append(f"{name}: {msg}")

    encoded = codec.encode(decoded.value)
    if not encoded.success:
        result.errors.extend(f"re-encode: {e}" for e in encoded.errors)
    elif encoded.payload != payload[:decoded.bytes_consumed]:
        result.errors.append(
            f"re-encode mismatch: got {encoded.payload.hex().upper()}, "
            f"expected {payload[:decoded.bytes_consumed].hex().upper()}")

    result.passed = not result.errors
    return result


def validate_schema(document: Any, root_name: str = 'Root') -> ValidationResult:
    """Validate a parsed YAML document and run all its test vectors."""
    result = ValidationResult(schema_valid=True)

    try:
        schema = parse_schema(document)
        codec = Codec(schema, root_name)
    except SchemaError as e:
        result.schema_valid = False
        result.schema_errors.append(str(e))
        return result

    for tv in schema.test_vectors:
        if not isinstance(tv, Mapping):
            result.test_results.append(
                TestResult(name='unnamed', errors=[f"test vector must be a mapping, got {tv!r}"]))
            continue
        test_result = run_test_vector(codec, tv)
        logger.debug("Test vector %s: %s", test_result.name, 'pass' if test_result.passed else 'fail')
        result.test_results.append(test_result)

    return result


def print_results(result: ValidationResult, verbose: bool = False):
    """Print validation results to console."""
    if not result.schema_valid:
        print("Schema: INVALID")
        for error in result.schema_errors:
            print(f"  - {error}")
        return
    print("Schema: VALID")

    if result.total_tests == 0:
        print("\nNo test vectors found in schema.")
        return

    print(f"\nTest Vectors: {result.tests_passed}/{result.total_tests} passed")
    print("-" * 50)

    for tr in result.test_results:
        print(f"{'PASS' if tr.passed else 'FAIL'} {tr.name}")
        if verbose or not tr.passed:
            if tr.description:
                print(f"    Description: {tr.description}")
            if tr.payload_hex:
                print(f"    Payload: {tr.payload_hex}")
            for error in tr.errors:
                print(f"    ERROR: {error}")
            if verbose and tr.passed:
                print(f"    Actual: {tr.actual}")

    print("-" * 50)
    if result.all_passed:
        print(f"PASSED: All {result.total_tests} tests passed")
    else:
        print(f"FAILED: {result.tests_failed} of {result.total_tests} tests failed")


def main():
    parser = argparse.ArgumentParser(
        description='Validate a binary format file and run its test vectors'
    )
    parser.add_argument('schema', help='Path to format YAML file')
    parser.add_argument('--root-name', default='Root', help='Class name of the top-level record')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Show detailed output for all tests')
    parser.add_argument('--json', action='store_true',
                        help='Output results as JSON')
    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        with open(args.schema, encoding='utf-8') as f:
            document = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        print(f"Error loading schema: {e}", file=sys.stderr)
        sys.exit(1)

    result = validate_schema(document, args.root_name)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print(f"Validating: {args.schema}")
        print("=" * 50)
        print_results(result, args.verbose)

    sys.exit(0 if result.all_passed else 1)


if __name__ == '__main__':
    main()
