"""
schema_errors.py - Error taxonomy for schema compilation and generated codecs.

Schema problems surface while loading a format file and are fatal. Codec
problems surface while decoding or encoding one record and abort that pass;
no partially decoded record is ever returned.
"""

from typing import Any, Optional


class SchemaError(Exception):
    """Base class for problems with a format document."""


class MalformedSchemaError(SchemaError):
    """Format document is structurally invalid."""

    def __init__(self, message: str, path: str = ''):
        self.message = message
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class CodecError(Exception):
    """Base class for failures inside a decode or encode pass."""

    def __init__(self, message: str, path: str = ''):
        self.message = message
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class DecodeError(CodecError):
    pass


class TruncatedError(DecodeError):
    """Stream ran out before a field's bytes were available."""

    def __init__(self, path: str, needed: int, available: int):
        self.needed = needed
        self.available = available
        super().__init__(
            f"buffer too short: need {needed} bytes, got {available}", path)


class ExpressionEvaluationError(DecodeError):
    """A condition or count expression could not be evaluated."""

    def __init__(self, path: str, expression: str,
                 cause: Optional[BaseException] = None):
        self.expression = expression
        self.cause = cause
        detail = f": {cause}" if cause is not None else ''
        super().__init__(f"cannot evaluate '{expression}'{detail}", path)


class EncodeError(CodecError):
    pass


class SinkFailureError(EncodeError):
    """Write destination rejected or truncated a write."""

    def __init__(self, path: str, reason: str):
        self.reason = reason
        super().__init__(f"write failed: {reason}", path)


class CountMismatchError(EncodeError):
    """Repeated field length disagrees with its count expression."""

    def __init__(self, path: str, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"count expression gives {expected} elements but {actual} are stored",
            path)


class InvalidValueError(EncodeError):
    """Stored value cannot be represented by the field's primitive type."""

    def __init__(self, path: str, value: Any, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"cannot encode {value!r}: {reason}", path)
