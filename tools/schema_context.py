"""
schema_context.py - Root context resolution and type classification.

The root context is the leading run of plain primitive fields of the root
record. It is built once per decode/encode pass right after those fields
and handed, read-only, to every nested type and every expression.
"""

from typing import Mapping, Optional, Sequence, Set, Tuple

from schema_errors import MalformedSchemaError
from schema_parser import CompositeType, DataType, Field, PrimitiveType, Schema


def is_context_field(field: Field) -> bool:
    return field.is_primitive and field.is_plain


def context_boundary(items: Sequence[Field]) -> int:
    """
    Index k such that items[0..k] is the maximal run of unconditional,
    non-repeated, primitive fields.

    Does not apply to nested types; they always receive the root's context.
    """
    k = 0
    for field in items:
        if not is_context_field(field):
            break
        k += 1
    return k


def context_fields(schema: Schema) -> Tuple[Field, ...]:
    return tuple(schema.items[:context_boundary(schema.items)])


def byte_width(data_type: DataType, types: Mapping[str, CompositeType],
               _visiting: Optional[Set[str]] = None) -> Optional[int]:
    """
    Fixed encoded width of a type in bytes, or None when it varies.

    A composite is fixed when all its fields are: plain fields contribute
    their type width, conditional fields only when they advance on false,
    repeated fields never. Self-referencing types are variable.
    """
    if isinstance(data_type, PrimitiveType):
        return data_type.size

    visiting = set() if _visiting is None else _visiting
    if data_type in visiting:
        return None
    if data_type not in types:
        raise MalformedSchemaError(f"undeclared type '{data_type}'")

    visiting.add(data_type)
    try:
        total = 0
        for field in types[data_type].fields:
            width = field_width(field, types, visiting)
            if width is None:
                return None
            total += width
        return total
    finally:
        visiting.discard(data_type)


def field_width(field: Field, types: Mapping[str, CompositeType],
                _visiting: Optional[Set[str]] = None) -> Optional[int]:
    """Bytes a field occupies on the wire when that is independent of the data."""
    if field.repetition is not None:
        return None
    if field.condition is not None and not field.condition.advance_if_false:
        return None
    return byte_width(field.data_type, types, _visiting)


def padding_width(field: Field, types: Mapping[str, CompositeType], path: str = '') -> Optional[int]:
    """
    Placeholder width reserved by an absent advance_if_false field.

    Returns None for fields that reserve nothing. Raises when the field asks
    to advance over a type whose width is not fixed.
    """
    if field.condition is None or not field.condition.advance_if_false:
        return None
    width = byte_width(field.data_type, types)
    if width is None:
        raise MalformedSchemaError(
            f"field '{field.id}' uses advance_if_false but type "
            f"'{field.data_type}' has no fixed width", path)
    return width


def type_order(schema: Schema) -> Tuple[str, ...]:
    """
    Composite type names with dependencies before dependents where possible.

    Cycles are allowed; members of a cycle keep declaration order.
    """
    ordered = []
    done = set()
    active = set()

    def visit(name: str) -> None:
        if name in done or name in active:
            return
        active.add(name)
        deps = [f.data_type for f in schema.types[name].fields if not f.is_primitive]
        for dep in dict.fromkeys(deps):
            visit(dep)
        active.discard(name)
        done.add(name)
        ordered.append(name)

    for name in schema.types:
        visit(name)
    return tuple(ordered)
