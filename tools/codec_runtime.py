"""
codec_runtime.py - Helpers imported by generated codec modules.

Streams are binary file-like objects read with ``read(n)``; sinks are
binary file-like objects written with ``write(data)``. One decode or encode
pass owns its stream for the duration of the pass.
"""

import math
import operator
import struct
from typing import Any, BinaryIO

from schema_errors import (
    CountMismatchError, DecodeError, EncodeError, ExpressionEvaluationError,
    InvalidValueError, SinkFailureError, TruncatedError,
)

__all__ = [
    'read', 'skip', 'write', 'pack', 'flag', 'unpack_f32', 'expect', 'elements', 'lookup',
    'as_count', 'NaN32',
    'DecodeError', 'EncodeError', 'TruncatedError', 'ExpressionEvaluationError',
    'SinkFailureError', 'CountMismatchError', 'InvalidValueError',
]


BYTE_ORDERS = {'<': 'little', '>': 'big'}


class NaN32(float):
    """An f32 NaN that remembers its bit pattern so re-encoding reproduces it."""

    def __new__(cls, bits: int):
        value = super().__new__(cls, 'nan')
        value.bits = bits
        return value

    def __reduce__(self):
        return (NaN32, (self.bits,))


def read(stream: BinaryIO, size: int, path: str) -> bytes:
    """Read exactly ``size`` bytes or fail with TruncatedError."""
    try:
        data = stream.read(size)
    except OSError as e:
        raise DecodeError(f"read failed: {e}", path) from e
    if data is None or len(data) < size:
        raise TruncatedError(path, size, len(data or b''))
    return data


def skip(stream: BinaryIO, size: int, path: str) -> None:
    """Consume placeholder bytes without interpreting them."""
    read(stream, size, path)


def write(sink: BinaryIO, data: bytes, path: str) -> None:
    try:
        written = sink.write(data)
    except (OSError, ValueError) as e:
        raise SinkFailureError(path, str(e)) from e
    if written is not None and written != len(data):
        raise SinkFailureError(path, f"short write: {written} of {len(data)} bytes")


def pack(packer: struct.Struct, value: Any, path: str) -> bytes:
    if isinstance(value, NaN32) and packer.format.endswith('f'):
        return value.bits.to_bytes(4, BYTE_ORDERS[packer.format[0]])
    try:
        return packer.pack(value)
    except (struct.error, OverflowError) as e:
        raise InvalidValueError(path, value, str(e)) from e


def unpack_f32(packer: struct.Struct, data: bytes) -> float:
    """Unpack an f32, keeping the exact bits of NaN values."""
    value = packer.unpack(data)[0]
    if math.isnan(value):
        return NaN32(int.from_bytes(data, BYTE_ORDERS[packer.format[0]]))
    return value


def flag(value: Any, path: str) -> bytes:
    """Canonical byte for a bool field; only booleans and 0/1 are accepted."""
    if not isinstance(value, int) or value not in (0, 1):
        raise InvalidValueError(path, value, "expected a boolean")
    return b'\x01' if value else b'\x00'


def expect(value: Any, cls: type, path: str) -> Any:
    """Check a nested record value before delegating to its encoder."""
    if not isinstance(value, cls):
        raise InvalidValueError(path, value, f"expected {cls.__name__}")
    return value


def elements(value: Any, path: str) -> list:
    if not isinstance(value, (list, tuple)):
        raise InvalidValueError(path, value, "repeated field must be a list")
    return list(value)


def lookup(context: Any, name: str) -> Any:
    """Resolve a bare expression name against the root context."""
    if context is None or name not in getattr(context, '__dataclass_fields__', {}):
        raise NameError(f"'{name}' is not a field decoded before this one or a context field")
    return getattr(context, name)


def as_count(value: Any) -> int:
    """Validate a repetition count."""
    count = operator.index(value)
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")
    return count
