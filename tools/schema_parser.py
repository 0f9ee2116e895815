#!/usr/bin/env python3
"""
schema_parser.py - Format document parser and schema model.

A format document describes one binary record layout:

    meta:
      endian: le            # le | be, default le
    types:
      Header:
        - id: magic
          type: u32
    items:
      - id: version
        type: u16
      - id: count
        type: u8
      - id: flag
        type: bool?
        if: count > 0
        advance_if_false: true
      - id: entries
        type: u32[]
        repeat: Count(count)

Parsing is all-or-nothing: any structural problem raises
MalformedSchemaError and no Schema is produced.

Usage:
    from schema_parser import load_schema

    schema = load_schema('save.yaml')
    for field in schema.items:
        print(field.id, field.shape)
"""

import keyword
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

import yaml

from schema_errors import MalformedSchemaError, SchemaError
from schema_expressions import parse_expression

logger = logging.getLogger(__name__)


class Endianness(Enum):
    LITTLE = 'le'
    BIG = 'be'

    @property
    def struct_prefix(self) -> str:
        return '<' if self is Endianness.LITTLE else '>'


ENDIAN_NAMES = {
    'le': Endianness.LITTLE, 'little': Endianness.LITTLE,
    'be': Endianness.BIG, 'big': Endianness.BIG,
}


class PrimitiveType(Enum):
    """Closed set of scalar kinds. Value is (canonical name, size, struct char)."""
    U8 = ('u8', 1, 'B')
    U16 = ('u16', 2, 'H')
    U32 = ('u32', 4, 'I')
    U64 = ('u64', 8, 'Q')
    I8 = ('i8', 1, 'b')
    I16 = ('i16', 2, 'h')
    I32 = ('i32', 4, 'i')
    I64 = ('i64', 8, 'q')
    F32 = ('f32', 4, 'f')
    F64 = ('f64', 8, 'd')
    BOOL = ('bool', 1, 'B')

    @property
    def type_name(self) -> str:
        return self.value[0]

    @property
    def size(self) -> int:
        return self.value[1]

    @property
    def format_char(self) -> str:
        return self.value[2]

    @property
    def is_float(self) -> bool:
        return self in (PrimitiveType.F32, PrimitiveType.F64)

    @property
    def python_type(self) -> str:
        if self is PrimitiveType.BOOL:
            return 'bool'
        return 'float' if self.is_float else 'int'


# Canonical names plus the aliases accepted for each kind
TYPE_MAP = {
    'u8': PrimitiveType.U8, 'uint8': PrimitiveType.U8,
    'u16': PrimitiveType.U16, 'uint16': PrimitiveType.U16,
    'u32': PrimitiveType.U32, 'uint32': PrimitiveType.U32,
    'u64': PrimitiveType.U64, 'uint64': PrimitiveType.U64,
    'i8': PrimitiveType.I8, 's8': PrimitiveType.I8, 'int8': PrimitiveType.I8,
    'i16': PrimitiveType.I16, 's16': PrimitiveType.I16, 'int16': PrimitiveType.I16,
    'i32': PrimitiveType.I32, 's32': PrimitiveType.I32, 'int32': PrimitiveType.I32,
    'i64': PrimitiveType.I64, 's64': PrimitiveType.I64, 'int64': PrimitiveType.I64,
    'f32': PrimitiveType.F32, 'float': PrimitiveType.F32,
    'f64': PrimitiveType.F64, 'double': PrimitiveType.F64,
    'bool': PrimitiveType.BOOL,
}

# Names the generated module defines or relies on; not usable as type names
RESERVED_TYPE_NAMES = frozenset({
    'struct', 'dataclass', 'List', 'Optional', 'annotations',
    'int', 'float', 'bool', 'bytes', 'str', 'range', 'len', 'min', 'max', 'abs',
    'Exception',
})

# Method names of generated record classes
RESERVED_FIELD_IDS = frozenset({'decode', 'encode'})

FIELD_KEYS = frozenset({'id', 'type', 'if', 'repeat', 'advance_if_false'})
TOP_LEVEL_KEYS = frozenset({'meta', 'types', 'items', 'test_vectors'})
META_KEYS = frozenset({'endian'})

DataType = Union[PrimitiveType, str]


@dataclass(frozen=True)
class Condition:
    expression: str
    advance_if_false: bool = False


@dataclass(frozen=True)
class Repetition:
    expression: str
    kind: str = 'Count'


# Field shapes: resolved once at parse time, never re-inspected per decode

@dataclass(frozen=True)
class PrimitiveShape:
    primitive: PrimitiveType


@dataclass(frozen=True)
class CompositeShape:
    type_name: str


@dataclass(frozen=True)
class ConditionalShape:
    inner: 'FieldShape'
    condition: Condition


@dataclass(frozen=True)
class RepeatedShape:
    inner: 'FieldShape'
    repetition: Repetition


FieldShape = Union[PrimitiveShape, CompositeShape, ConditionalShape, RepeatedShape]


@dataclass(frozen=True)
class Field:
    id: str
    data_type: DataType
    condition: Optional[Condition] = None
    repetition: Optional[Repetition] = None

    @property
    def is_primitive(self) -> bool:
        return isinstance(self.data_type, PrimitiveType)

    @property
    def is_plain(self) -> bool:
        """Unconditional, non-repeated field."""
        return self.condition is None and self.repetition is None

    @property
    def shape(self) -> FieldShape:
        if self.is_primitive:
            shape = PrimitiveShape(self.data_type)
        else:
            shape = CompositeShape(self.data_type)
        if self.condition is not None:
            shape = ConditionalShape(shape, self.condition)
        if self.repetition is not None:
            shape = RepeatedShape(shape, self.repetition)
        return shape


@dataclass(frozen=True)
class CompositeType:
    name: str
    fields: Tuple[Field, ...]


@dataclass(frozen=True)
class Schema:
    endianness: Endianness
    types: Mapping[str, CompositeType]
    items: Tuple[Field, ...]
    test_vectors: Tuple[Mapping[str, Any], ...] = ()

    def get_type(self, name: str) -> CompositeType:
        try:
            return self.types[name]
        except KeyError:
            raise SchemaError(f"Type not declared: {name}") from None

    def iter_fields(self) -> Iterator[Tuple[str, Field]]:
        """Every field of every type, root items last."""
        for type_name, composite in self.types.items():
            for fld in composite.fields:
                yield type_name, fld
        for fld in self.items:
            yield '', fld


def is_identifier(name: Any) -> bool:
    return isinstance(name, str) and name.isidentifier() and not keyword.iskeyword(name)


def parse_meta(meta: Any, path: str = 'meta') -> Endianness:
    """Parse the meta entry to find the endianness, defaulting to little endian."""
    if meta is None:
        return Endianness.LITTLE
    if not isinstance(meta, dict):
        raise MalformedSchemaError("must be a mapping", path)

    unknown = set(meta) - META_KEYS
    if unknown:
        raise MalformedSchemaError(f"unknown keys: {', '.join(sorted(map(str, unknown)))}", path)

    endian = meta.get('endian', 'le')
    if endian not in ENDIAN_NAMES:
        raise MalformedSchemaError(f"endian must be 'le' or 'be', got {endian!r}", f"{path}.endian")
    return ENDIAN_NAMES[endian]


def parse_repetition(value: Any, path: str) -> Repetition:
    """Parse a repeat entry such as ``Count(header.count)``."""
    if not isinstance(value, str):
        raise MalformedSchemaError("repeat must be a string like Count(<expr>)", path)

    match = re.match(r'^\s*(\w+)\s*\((.*)\)\s*$', value, re.DOTALL)
    if not match:
        raise MalformedSchemaError(f"cannot parse repetition '{value}'", path)

    kind, expression = match.groups()
    if kind != 'Count':
        raise MalformedSchemaError(f"unknown repetition kind '{kind}'", path)

    return Repetition(expression=parse_expression(expression, path), kind=kind)


def split_type_markers(type_str: str) -> Tuple[str, bool, bool]:
    """
    Strip repeated/nullable markers from a type string.

    Returns: (base_type, repeated_marker, nullable_marker)

    Accepted spellings: ``T[]`` / ``Vec<T>`` for repeated fields and
    ``T?`` / ``Option<T>`` for conditional fields, nullable inside repeated.
    """
    base = type_str.strip()
    repeated = nullable = False

    match = re.match(r'^Vec\s*<(.+)>$', base)
    if match:
        base, repeated = match.group(1).strip(), True
    elif base.endswith('[]'):
        base, repeated = base[:-2].strip(), True

    match = re.match(r'^Option\s*<(.+)>$', base)
    if match:
        base, nullable = match.group(1).strip(), True
    elif base.endswith('?'):
        base, nullable = base[:-1].strip(), True

    return base, repeated, nullable


def parse_field(item: Any, path: str) -> Field:
    """Parse an individual field descriptor."""
    if not isinstance(item, dict):
        raise MalformedSchemaError("field descriptor must be a mapping", path)

    unknown = set(item) - FIELD_KEYS
    if unknown:
        raise MalformedSchemaError(f"unknown keys: {', '.join(sorted(map(str, unknown)))}", path)

    for key in ('id', 'type'):
        if key not in item:
            raise MalformedSchemaError(f"missing required '{key}'", path)

    field_id = item['id']
    if not is_identifier(field_id) or field_id.startswith('_'):
        raise MalformedSchemaError(f"invalid field id {field_id!r}", f"{path}.id")
    if field_id in RESERVED_FIELD_IDS:
        raise MalformedSchemaError(f"field id '{field_id}' is reserved", f"{path}.id")
    path = f"{path}({field_id})"

    type_str = item['type']
    if not isinstance(type_str, str) or not type_str.strip():
        raise MalformedSchemaError("type must be a non-empty string", f"{path}.type")
    base, repeated_marker, nullable_marker = split_type_markers(type_str)

    data_type: DataType
    if base in TYPE_MAP:
        data_type = TYPE_MAP[base]
    elif is_identifier(base):
        data_type = base
    else:
        raise MalformedSchemaError(f"invalid type {type_str!r}", f"{path}.type")

    condition = None
    advance_if_false = item.get('advance_if_false', False)
    if not isinstance(advance_if_false, bool):
        raise MalformedSchemaError("advance_if_false must be a boolean", f"{path}.advance_if_false")

    if 'if' in item:
        expression = parse_expression(item['if'], f"{path}.if")
        condition = Condition(expression=expression, advance_if_false=advance_if_false)
    elif 'advance_if_false' in item:
        logger.warning("%s: advance_if_false has no effect without 'if'", path)

    repetition = None
    if 'repeat' in item:
        repetition = parse_repetition(item['repeat'], f"{path}.repeat")

    if repeated_marker and repetition is None:
        raise MalformedSchemaError(f"type {type_str!r} marks a repeated field but 'repeat' is missing", path)
    if nullable_marker and condition is None:
        raise MalformedSchemaError(f"type {type_str!r} marks a conditional field but 'if' is missing", path)

    return Field(id=field_id, data_type=data_type, condition=condition, repetition=repetition)


def parse_sequence(items: Any, path: str) -> Tuple[Field, ...]:
    """Parse a sequence of field descriptors, preserving document order."""
    if not isinstance(items, list):
        raise MalformedSchemaError("must be a sequence of field descriptors", path)

    fields = []
    seen = set()
    for i, item in enumerate(items):
        fld = parse_field(item, f"{path}[{i}]")
        if fld.id in seen:
            raise MalformedSchemaError(f"duplicate field id '{fld.id}'", f"{path}[{i}]")
        seen.add(fld.id)
        fields.append(fld)
    return tuple(fields)


def parse_defined_types(types: Any, path: str = 'types') -> Dict[str, CompositeType]:
    """Parse the user-defined composite types."""
    if types is None:
        return {}
    if not isinstance(types, dict):
        raise MalformedSchemaError("must be a mapping of type name to fields", path)

    defined = {}
    for name, fields in types.items():
        if not is_identifier(name) or name.startswith('_'):
            raise MalformedSchemaError(f"invalid type name {name!r}", path)
        if name in TYPE_MAP or name in RESERVED_TYPE_NAMES:
            raise MalformedSchemaError(f"type name '{name}' is reserved", path)
        defined[name] = CompositeType(name=name, fields=parse_sequence(fields, f"{path}.{name}"))
    return defined


def check_references(types: Mapping[str, CompositeType], items: Tuple[Field, ...]) -> None:
    """Every composite data_type must name a declared type."""
    owners = [(f"types.{name}", t.fields) for name, t in types.items()]
    owners.append(('items', items))

    for path, fields in owners:
        for fld in fields:
            if not fld.is_primitive and fld.data_type not in types:
                raise MalformedSchemaError(
                    f"field '{fld.id}' references undeclared type '{fld.data_type}'", path)


def parse_schema(document: Any) -> Schema:
    """Parse the entire format document, returning a Schema if it is valid."""
    if not isinstance(document, dict):
        raise MalformedSchemaError("format document must be a mapping")

    unknown = set(document) - TOP_LEVEL_KEYS
    if unknown:
        raise MalformedSchemaError(f"unknown top-level keys: {', '.join(sorted(map(str, unknown)))}")

    if 'items' not in document:
        raise MalformedSchemaError("missing required 'items'")

    endianness = parse_meta(document.get('meta'))
    types = parse_defined_types(document.get('types'))
    items = parse_sequence(document['items'], 'items')
    check_references(types, items)

    test_vectors = document.get('test_vectors') or []
    if not isinstance(test_vectors, list):
        raise MalformedSchemaError("must be a sequence", 'test_vectors')

    logger.debug("Parsed schema: %s endian, %d types, %d root fields",
                 endianness.value, len(types), len(items))

    return Schema(endianness=endianness, types=types, items=items,
                  test_vectors=tuple(test_vectors))


def parse_schema_text(text: str) -> Schema:
    """Parse a YAML format document from a string."""
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedSchemaError(f"not valid YAML: {e}")
    return parse_schema(document)


def load_schema(path: Union[str, Path]) -> Schema:
    """Load and parse a YAML format file."""
    try:
        text = Path(path).read_text(encoding='utf-8')
    except OSError as e:
        raise MalformedSchemaError(f"cannot read format file: {e}", str(path))
    return parse_schema_text(text)
