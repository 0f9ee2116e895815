"""
codec_statements.py - Compose the read and write statements for one field.

The base statement comes from primitive/composite dispatch in the codec
generator. This module applies at most one conditional layer and then at
most one repetition layer, the same way for both directions, and returns
Python source lines ready to be placed in a decode or encode body.

Generated locals per field ``x``:
    _f_x   field value
    _e_x   current element of a repeated field
    _c_x   evaluated condition
    _n_x   evaluated count
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Mapping, Optional

from schema_expressions import RUNTIME_ALIAS, rewrite_expression
from schema_parser import Condition, Field, Repetition

INDENT = '    '


class Method(Enum):
    READ = 'read'
    WRITE = 'write'


@dataclass(frozen=True)
class FieldLocals:
    value: str
    element: str
    condition: str
    count: str


def field_locals(field_id: str) -> FieldLocals:
    return FieldLocals(
        value=f'_f_{field_id}',
        element=f'_e_{field_id}',
        condition=f'_c_{field_id}',
        count=f'_n_{field_id}',
    )


def indent(lines: List[str], depth: int = 1) -> List[str]:
    return [INDENT * depth + line for line in lines]


def _evaluate(target: str, wrapper: str, source: str, scope: Mapping[str, str],
              path: str, method: Method) -> List[str]:
    """Assign an expression result to ``target``, mapping failures to codec errors."""
    expression = rewrite_expression(source, scope)
    if method is Method.READ:
        failure = (f"raise {RUNTIME_ALIAS}.ExpressionEvaluationError("
                   f"{path!r}, {source!r}, _exc) from _exc")
    else:
        message = f"cannot evaluate {source!r}: "
        failure = (f"raise {RUNTIME_ALIAS}.EncodeError("
                   f"{message!r} + str(_exc), {path!r}) from _exc")
    return [
        'try:',
        f'{INDENT}{target} = {wrapper}({expression})',
        'except Exception as _exc:',
        f'{INDENT}{failure}',
    ]


def conditional_read(condition: Condition, read: List[str], target: str, names: FieldLocals,
                     scope: Mapping[str, str], padding: Optional[int], path: str) -> List[str]:
    """Evaluate the condition; read when true, otherwise skip placeholder bytes if asked."""
    lines = _evaluate(names.condition, 'bool', condition.expression, scope, path, Method.READ)
    lines.append(f'if {names.condition}:')
    lines.extend(indent(read))
    lines.append('else:')
    if condition.advance_if_false and padding:
        lines.append(f'{INDENT}{RUNTIME_ALIAS}.skip(_stream, {padding}, {path!r})')
    lines.append(f'{INDENT}{target} = None')
    return lines


def conditional_write(condition: Condition, write: List[str], source: str,
                      padding: Optional[int], path: str) -> List[str]:
    """Write a present value; an absent one writes zero placeholder bytes if asked."""
    lines = [f'if {source} is not None:']
    lines.extend(indent(write))
    if condition.advance_if_false and padding:
        lines.append('else:')
        lines.append(f'{INDENT}{RUNTIME_ALIAS}.write(_sink, bytes({padding}), {path!r})')
    return lines


def repeated_read(repetition: Repetition, element_read: List[str], names: FieldLocals,
                  scope: Mapping[str, str], path: str) -> List[str]:
    """Decode exactly the evaluated number of elements; any failure fails the field."""
    lines = _evaluate(names.count, f'{RUNTIME_ALIAS}.as_count', repetition.expression,
                      scope, path, Method.READ)
    lines.append(f'{names.value} = []')
    lines.append(f'for _ in range({names.count}):')
    lines.extend(indent(element_read))
    lines.append(f'{INDENT}{names.value}.append({names.element})')
    return lines


def repeated_write(repetition: Repetition, element_write: List[str], names: FieldLocals,
                   scope: Mapping[str, str], path: str) -> List[str]:
    """Write every stored element after checking the count expression agrees."""
    lines = [f'{names.value} = {RUNTIME_ALIAS}.elements({names.value}, {path!r})']
    lines.extend(_evaluate(names.count, f'{RUNTIME_ALIAS}.as_count', repetition.expression,
                           scope, path, Method.WRITE))
    lines.append(f'if {names.count} != len({names.value}):')
    lines.append(f'{INDENT}raise {RUNTIME_ALIAS}.CountMismatchError('
                 f'{path!r}, {names.count}, len({names.value}))')
    lines.append(f'for {names.element} in {names.value}:')
    lines.extend(indent(element_write))
    return lines


def compose_statement(method: Method, base: str, field: Field, scope: Mapping[str, str],
                      padding: Optional[int] = None, path: str = '') -> List[str]:
    """
    Create the final statement for a field with its conditional and
    repetition code.

    Args:
        method: READ or WRITE
        base: READ - expression producing one value;
              WRITE - statement template writing ``{value}``
        field: field being composed
        scope: field ids visible to expressions mapped to their locals
        padding: placeholder width for advance_if_false fields
        path: field path used in error messages

    READ statements leave the decoded value in ``_f_<id>``; WRITE
    statements read the stored value from ``_f_<id>``.
    """
    names = field_locals(field.id)
    repeated = field.repetition is not None
    # the innermost statement targets the element when repeated
    target = names.element if repeated else names.value

    if method is Method.READ:
        statement = [f'{target} = {base}']
        if field.condition is not None:
            statement = conditional_read(field.condition, statement, target, names,
                                         scope, padding, path)
        if repeated:
            statement = repeated_read(field.repetition, statement, names, scope, path)
        return statement

    statement = [base.format(value=target)]
    if field.condition is not None:
        statement = conditional_write(field.condition, statement, target, padding, path)
    if repeated:
        statement = repeated_write(field.repetition, statement, names, scope, path)
    return statement
