#!/usr/bin/env python3
"""
generate_codec.py - Generate a Python codec module from a binary format file

Usage:
    python tools/generate_codec.py save.yaml -o save_codec.py
    python tools/generate_codec.py save.yaml --root-name Save

Generates one module containing:
    - <Root>Context   frozen snapshot of the root's leading primitive fields
    - one dataclass per declared type, with decode/encode
    - <Root>          the top-level record, with decode/encode

Generated calling conventions:
    record = Root.decode(stream)
    record.encode(sink)
    nested = Header.decode(stream, context)
    nested.encode(sink, context)

The same generator backs the in-process Codec facade:

    codec = Codec.from_file('save.yaml')
    result = codec.decode(payload)
    if result.success:
        print(codec.to_dict(result.value))
"""

import argparse
import dataclasses
import io
import itertools
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, BinaryIO, Dict, List, Mapping, Optional, Sequence, Union

sys.path.insert(0, str(Path(__file__).parent))
from codec_statements import INDENT, Method, compose_statement, field_locals, indent
from log_setup import setup_logging
from schema_context import context_boundary, context_fields, padding_width, type_order
from schema_errors import DecodeError, EncodeError, MalformedSchemaError, SchemaError
from schema_expressions import referenced_names
from schema_parser import (
    RESERVED_TYPE_NAMES, TYPE_MAP, Field, PrimitiveType, Schema, is_identifier,
    load_schema, parse_schema_text,
)

logger = logging.getLogger(__name__)

_module_ids = itertools.count(1)


class CodecGenerator:
    """
    Emit the Python source of a codec module for a parsed schema.

    Per field, primitive/composite dispatch produces the base read
    expression and write template; the statement composer adds the
    conditional and repetition layers around them.
    """

    def __init__(self, schema: Schema, root_name: str = 'Root'):
        if not is_identifier(root_name) or root_name.startswith('_'):
            raise MalformedSchemaError(f"invalid root name {root_name!r}")
        if root_name in schema.types or root_name in TYPE_MAP or root_name in RESERVED_TYPE_NAMES:
            raise MalformedSchemaError(f"root name '{root_name}' clashes with a type name")

        self.schema = schema
        self.types = schema.types
        self.root_name = root_name
        self.context_name = f"{root_name}Context"
        if self.context_name in schema.types:
            raise MalformedSchemaError(f"type name '{self.context_name}' is reserved for the root context")

        self.boundary = context_boundary(schema.items)
        self._packers: Dict[PrimitiveType, str] = {}

        # Fixed widths are needed for every advance_if_false field; fail early
        self.paddings: Dict[str, Optional[int]] = {}
        for owner, fld in schema.iter_fields():
            path = self.field_path(owner, fld)
            self.paddings[path] = padding_width(fld, self.types, path)

    def field_path(self, owner: str, fld: Field) -> str:
        return f"{owner or self.root_name}.{fld.id}"

    def packer(self, primitive: PrimitiveType) -> str:
        """Name of the module-level struct.Struct for a primitive."""
        if primitive not in self._packers:
            self._packers[primitive] = f"_{primitive.type_name.upper()}"
        return self._packers[primitive]

    def annotation(self, fld: Field) -> str:
        if fld.is_primitive:
            hint = fld.data_type.python_type
        else:
            hint = fld.data_type
        if fld.condition is not None:
            hint = f"Optional[{hint}]"
        if fld.repetition is not None:
            hint = f"List[{hint}]"
        return hint

    def base_read(self, fld: Field, path: str) -> str:
        """Expression decoding one value of the field's data type."""
        if not fld.is_primitive:
            return f"{fld.data_type}.decode(_stream, _root)"
        primitive = fld.data_type
        if primitive is PrimitiveType.BOOL:
            return f"_rt.read(_stream, 1, {path!r})[0] != 0"
        if primitive is PrimitiveType.F32:
            return f"_rt.unpack_f32({self.packer(primitive)}, _rt.read(_stream, 4, {path!r}))"
        return f"{self.packer(primitive)}.unpack(_rt.read(_stream, {primitive.size}, {path!r}))[0]"

    def base_write(self, fld: Field, path: str) -> str:
        """Statement template writing one ``{value}`` of the field's data type."""
        if not fld.is_primitive:
            return f"_rt.expect({{value}}, {fld.data_type}, {path!r}).encode(_sink, _root)"
        primitive = fld.data_type
        if primitive is PrimitiveType.BOOL:
            return f"_rt.write(_sink, _rt.flag({{value}}, {path!r}), {path!r})"
        return f"_rt.write(_sink, _rt.pack({self.packer(primitive)}, {{value}}, {path!r}), {path!r})"

    def context_statement(self) -> str:
        args = ', '.join(f"{f.id}={field_locals(f.id).value}" for f in context_fields(self.schema))
        return f"_root = {self.context_name}({args})"

    def check_names(self, fld: Field, scope: Mapping[str, str], path: str) -> None:
        """Warn about expression names that cannot be in scope when the field is decoded."""
        visible = set(scope) | {f.id for f in context_fields(self.schema)}
        for rule in (fld.condition, fld.repetition):
            if rule is None:
                continue
            unknown = referenced_names(rule.expression) - visible
            if unknown:
                logger.warning("%s: '%s' refers to %s, not decoded before this field",
                               path, rule.expression, ', '.join(sorted(unknown)))

    def decode_method(self, owner: str, fields: Sequence[Field], is_root: bool) -> List[str]:
        body = []
        if is_root and self.boundary == 0:
            body.append(self.context_statement())

        scope: Dict[str, str] = {}
        for i, fld in enumerate(fields):
            path = self.field_path(owner, fld)
            self.check_names(fld, scope, path)
            body.extend(compose_statement(
                Method.READ, self.base_read(fld, path), fld, dict(scope),
                self.paddings[path], path))
            scope[fld.id] = field_locals(fld.id).value
            if is_root and i + 1 == self.boundary:
                body.append(self.context_statement())

        args = ', '.join(f"{f.id}={field_locals(f.id).value}" for f in fields)
        body.append(f"return _cls({args})")

        params = '_cls, _stream' if is_root else '_cls, _stream, _root'
        return ['@classmethod', f'def decode({params}):'] + indent(body)

    def encode_method(self, owner: str, fields: Sequence[Field], is_root: bool) -> List[str]:
        body = []
        if is_root and self.boundary == 0:
            body.append(self.context_statement())

        scope: Dict[str, str] = {}
        for i, fld in enumerate(fields):
            path = self.field_path(owner, fld)
            body.append(f"{field_locals(fld.id).value} = _self.{fld.id}")
            body.extend(compose_statement(
                Method.WRITE, self.base_write(fld, path), fld, dict(scope),
                self.paddings[path], path))
            scope[fld.id] = field_locals(fld.id).value
            if is_root and i + 1 == self.boundary:
                body.append(self.context_statement())

        if not body:
            body.append('pass')

        params = '_self, _sink' if is_root else '_self, _sink, _root'
        return [f'def encode({params}):'] + indent(body)

    def record_class(self, name: str, fields: Sequence[Field], is_root: bool) -> List[str]:
        owner = '' if is_root else name
        lines = ['@dataclass', f'class {name}:']
        lines.extend(f'{INDENT}{f.id}: {self.annotation(f)}' for f in fields)
        if fields:
            lines.append('')
        lines.extend(indent(self.decode_method(owner, fields, is_root)))
        lines.append('')
        lines.extend(indent(self.encode_method(owner, fields, is_root)))
        return lines

    def context_class(self) -> List[str]:
        lines = [
            '@dataclass(frozen=True)',
            f'class {self.context_name}:',
            f'{INDENT}"""Leading primitive fields of {self.root_name}, shared with nested records."""',
        ]
        lines.extend(f'{INDENT}{f.id}: {self.annotation(f)}' for f in context_fields(self.schema))
        return lines

    def generate(self) -> str:
        """Generate the codec module source."""
        blocks = [self.context_class()]
        for name in type_order(self.schema):
            logger.debug("Generating record %s", name)
            blocks.append(self.record_class(name, self.schema.get_type(name).fields, is_root=False))
        logger.debug("Generating root record %s (context fields: %d)", self.root_name, self.boundary)
        blocks.append(self.record_class(self.root_name, self.schema.items, is_root=True))

        lines = [
            '"""',
            f'{self.root_name} codec, generated by generate_codec.py',
            '',
            f'Byte order: {self.schema.endianness.name.lower()} endian',
            'DO NOT EDIT - regenerate from the format file',
            '"""',
            '',
            'from __future__ import annotations',
            '',
            'import struct',
            'from dataclasses import dataclass',
            'from typing import List, Optional',
            '',
            'import codec_runtime as _rt',
            '',
        ]
        prefix = self.schema.endianness.struct_prefix
        for primitive, name in self._packers.items():
            lines.append(f"{name} = struct.Struct('{prefix}{primitive.format_char}')")
        for block in blocks:
            lines.extend(['', ''])
            lines.extend(block)
        lines.append('')
        return '\n'.join(lines)


@dataclass
class CompiledCodec:
    """Classes of an executed codec module."""
    source: str
    module: ModuleType
    root: type
    context: type
    types: Dict[str, type]


def compile_codec(schema: Schema, root_name: str = 'Root') -> CompiledCodec:
    """Generate the codec source for a schema and execute it as a module."""
    source = CodecGenerator(schema, root_name).generate()

    module_name = f"_binformat_codec_{root_name.lower()}_{next(_module_ids)}"
    module = ModuleType(module_name)
    module.__file__ = f"<{module_name}>"
    # @dataclass resolves string annotations through sys.modules while the
    # classes are built; nothing needs the entry afterwards
    sys.modules[module_name] = module
    try:
        exec(compile(source, module.__file__, 'exec'), module.__dict__)
    finally:
        del sys.modules[module_name]

    logger.debug("Compiled codec module %s", module_name)
    return CompiledCodec(
        source=source,
        module=module,
        root=getattr(module, root_name),
        context=getattr(module, f"{root_name}Context"),
        types={name: getattr(module, name) for name in schema.types},
    )


@dataclass
class DecodeResult:
    """Result of decoding a payload."""
    value: Any = None
    bytes_consumed: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


@dataclass
class EncodeResult:
    """Result of encoding a record to a payload."""
    payload: bytes = b''
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


class Codec:
    """
    Decode and encode payloads for one schema.

    Failures are reported in the result's ``errors`` list; a failed pass
    never carries a partial value.
    """

    def __init__(self, schema: Schema, root_name: str = 'Root'):
        self.schema = schema
        self.compiled = compile_codec(schema, root_name)

    @classmethod
    def from_file(cls, path: Union[str, Path], root_name: str = 'Root') -> 'Codec':
        return cls(load_schema(path), root_name)

    @classmethod
    def from_text(cls, text: str, root_name: str = 'Root') -> 'Codec':
        return cls(parse_schema_text(text), root_name)

    @property
    def root(self) -> type:
        return self.compiled.root

    def decode(self, payload: bytes) -> DecodeResult:
        stream = io.BytesIO(payload)
        try:
            value = decode_record(self.root, stream)
        except DecodeError as e:
            logger.debug("Decode failed: %s", e)
            return DecodeResult(bytes_consumed=stream.tell(), errors=[str(e)])

        result = DecodeResult(value=value, bytes_consumed=stream.tell())
        trailing = len(payload) - result.bytes_consumed
        if trailing:
            result.warnings.append(f"{trailing} trailing bytes not consumed")
            logger.warning("%d trailing bytes after %s record", trailing, self.root.__name__)
        return result

    def encode(self, value: Any) -> EncodeResult:
        """Encode a root record instance or a mapping accepted by from_dict."""
        try:
            if not isinstance(value, self.root):
                value = self.from_dict(value)
            sink = io.BytesIO()
            encode_record(value, sink)
        except (EncodeError, ValueError) as e:
            logger.debug("Encode failed: %s", e)
            return EncodeResult(errors=[str(e)])
        return EncodeResult(payload=sink.getvalue())

    def to_dict(self, value: Any) -> Dict[str, Any]:
        return dataclasses.asdict(value)

    def from_dict(self, data: Mapping[str, Any]) -> Any:
        """Build a root record from plain data such as parsed JSON."""
        try:
            return self._build(self.root, self.schema.items, data, self.root.__name__)
        except RecursionError as e:
            raise ValueError(f"{self.root.__name__}: records nested too deeply") from e

    def _build(self, cls: type, fields: Sequence[Field], data: Any, path: str) -> Any:
        if isinstance(data, cls):
            return data
        if not isinstance(data, Mapping):
            raise ValueError(f"{path}: expected a mapping, got {type(data).__name__}")

        unknown = set(data) - {f.id for f in fields}
        if unknown:
            raise ValueError(f"{path}: unknown fields: {', '.join(sorted(map(str, unknown)))}")

        values = {}
        for fld in fields:
            fpath = f"{path}.{fld.id}"
            if fld.id in data:
                values[fld.id] = self._convert(fld, data[fld.id], fpath)
            elif fld.condition is not None and fld.repetition is None:
                values[fld.id] = None
            else:
                raise ValueError(f"{fpath}: missing field")
        return cls(**values)

    def _convert(self, fld: Field, value: Any, path: str) -> Any:
        if fld.repetition is None:
            return self._convert_one(fld, value, path)
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"{path}: expected a list, got {type(value).__name__}")
        return [self._convert_one(fld, v, f"{path}[{i}]") for i, v in enumerate(value)]

    def _convert_one(self, fld: Field, value: Any, path: str) -> Any:
        if value is None and fld.condition is not None:
            return None
        if fld.is_primitive:
            return value
        nested = self.schema.types[fld.data_type]
        return self._build(self.compiled.types[fld.data_type], nested.fields, value, path)


def decode_record(cls: type, stream: BinaryIO) -> Any:
    """Decode one root record, reporting nesting the interpreter cannot follow as a DecodeError."""
    try:
        return cls.decode(stream)
    except RecursionError as e:
        raise DecodeError("records nested too deeply to decode", cls.__name__) from e


def encode_record(record: Any, sink: BinaryIO) -> None:
    """Encode one root record, reporting nesting the interpreter cannot follow as an EncodeError."""
    try:
        record.encode(sink)
    except RecursionError as e:
        raise EncodeError("records nested too deeply to encode", type(record).__name__) from e


def decode_payload(schema: Schema, payload: bytes, root_name: str = 'Root') -> Any:
    """Convenience function to decode a payload; raises DecodeError on failure."""
    return decode_record(compile_codec(schema, root_name).root, io.BytesIO(payload))


def encode_payload(schema: Schema, value: Any, root_name: str = 'Root') -> bytes:
    """Convenience function to encode a record or mapping; raises on failure."""
    codec = Codec(schema, root_name)
    if not isinstance(value, codec.root):
        value = codec.from_dict(value)
    sink = io.BytesIO()
    encode_record(value, sink)
    return sink.getvalue()


def main():
    parser = argparse.ArgumentParser(description='Generate a Python codec module from a binary format file')
    parser.add_argument('schema', help='Path to format YAML file')
    parser.add_argument('-o', '--output', help='Output file (default: <schema>_codec.py next to the schema)')
    parser.add_argument('--root-name', default='Root', help='Class name of the top-level record')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        schema = load_schema(args.schema)
        source = CodecGenerator(schema, args.root_name).generate()
    except SchemaError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    schema_path = Path(args.schema)
    output = Path(args.output) if args.output else schema_path.with_name(f"{schema_path.stem}_codec.py")
    output.write_text(source, encoding='utf-8')
    print(f"Generated: {output}")


if __name__ == '__main__':
    main()
