"""
schema_expressions.py - Condition and count expressions.

Expressions in a format file use Python syntax with a few C-style spellings
accepted for convenience (``&&``, ``||``, ``!``, ``true``, ``false``).
They are checked structurally when the schema is loaded; whether the names
they use are in scope is only known while decoding.

Scope rules at evaluation time:
    - bare names refer to fields already decoded in the same record,
      then to fields of the root context
    - ``_root.name`` always refers to the root context
"""

import ast
import re
from typing import Mapping, Set

from schema_errors import MalformedSchemaError

ROOT_CONTEXT = '_root'
RUNTIME_ALIAS = '_rt'

CALLABLES = frozenset({'len', 'min', 'max', 'abs', 'int', 'bool'})

_ALLOWED_NODES = (
    ast.Expression, ast.Load,
    ast.BoolOp, ast.BinOp, ast.UnaryOp, ast.Compare, ast.IfExp,
    ast.Name, ast.Constant, ast.Attribute, ast.Subscript, ast.Slice,
    ast.Call, ast.Tuple, ast.List,
    ast.And, ast.Or, ast.Not, ast.Invert, ast.UAdd, ast.USub,
    ast.Add, ast.Sub, ast.Mult, ast.Div, ast.FloorDiv, ast.Mod, ast.Pow,
    ast.LShift, ast.RShift, ast.BitOr, ast.BitAnd, ast.BitXor,
    ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE,
    ast.In, ast.NotIn, ast.Is, ast.IsNot,
)


def translate_c_style(text: str) -> str:
    """Rewrite C-style boolean spellings into Python."""
    expr = text
    expr = re.sub(r'&&', ' and ', expr)
    expr = re.sub(r'\|\|', ' or ', expr)
    expr = re.sub(r'!(?!=)', ' not ', expr)
    expr = re.sub(r'\btrue\b', 'True', expr)
    expr = re.sub(r'\bfalse\b', 'False', expr)
    return re.sub(r'\s+', ' ', expr).strip()


class _StructureChecker(ast.NodeVisitor):

    def __init__(self, text: str, path: str):
        self.text = text
        self.path = path

    def fail(self, reason: str) -> None:
        raise MalformedSchemaError(f"{reason} in expression '{self.text}'", self.path)

    def generic_visit(self, node: ast.AST) -> None:
        if not isinstance(node, _ALLOWED_NODES):
            self.fail(f"unsupported syntax {type(node).__name__}")
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith('_'):
            self.fail(f"reserved name '{node.id}'")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith('_'):
            self.fail(f"private attribute '{node.attr}'")
        if isinstance(node.value, ast.Name) and node.value.id == ROOT_CONTEXT:
            return
        self.visit(node.value)

    def visit_Call(self, node: ast.Call) -> None:
        if not isinstance(node.func, ast.Name) or node.func.id not in CALLABLES:
            self.fail("only calls to " + ', '.join(sorted(CALLABLES)) + " are allowed")
        if node.keywords:
            self.fail("keyword arguments are not allowed")
        for arg in node.args:
            self.visit(arg)


def parse_expression(text: str, path: str = '') -> str:
    """
    Validate an expression and return its normalized Python source.

    Raises MalformedSchemaError for anything that does not parse or uses
    syntax outside the supported subset.
    """
    if isinstance(text, (bool, int)):
        text = str(text)
    if not isinstance(text, str) or not text.strip():
        raise MalformedSchemaError("expression must be a non-empty string", path)

    source = translate_c_style(text)
    try:
        tree = ast.parse(source, mode='eval')
    except SyntaxError as e:
        raise MalformedSchemaError(f"unparsable expression '{text}': {e.msg}", path)

    _StructureChecker(text, path).visit(tree)
    return source


class _ScopeRewriter(ast.NodeTransformer):

    def __init__(self, local_names: Mapping[str, str]):
        self.local_names = local_names

    def visit_Call(self, node: ast.Call) -> ast.AST:
        node.args = [self.visit(arg) for arg in node.args]
        return node

    def visit_Attribute(self, node: ast.Attribute) -> ast.AST:
        if isinstance(node.value, ast.Name) and node.value.id == ROOT_CONTEXT:
            return node
        node.value = self.visit(node.value)
        return node

    def visit_Name(self, node: ast.Name) -> ast.AST:
        if node.id in self.local_names:
            return ast.copy_location(
                ast.Name(id=self.local_names[node.id], ctx=ast.Load()), node)
        lookup = ast.Call(
            func=ast.Attribute(value=ast.Name(id=RUNTIME_ALIAS, ctx=ast.Load()),
                               attr='lookup', ctx=ast.Load()),
            args=[ast.Name(id=ROOT_CONTEXT, ctx=ast.Load()), ast.Constant(value=node.id)],
            keywords=[],
        )
        return ast.copy_location(lookup, node)


def rewrite_expression(source: str, local_names: Mapping[str, str]) -> str:
    """
    Bind the names of an expression for generated code.

    Names present in ``local_names`` become references to the mapped local
    variables; every other bare name becomes a runtime context lookup.
    """
    tree = ast.parse(source, mode='eval')
    tree = _ScopeRewriter(local_names).visit(tree)
    ast.fix_missing_locations(tree)
    return ast.unparse(tree)


def referenced_names(source: str) -> Set[str]:
    """Field names an expression reads, bare or through _root."""
    names = set()

    class Collector(ast.NodeVisitor):
        def visit_Call(self, node):
            for arg in node.args:
                self.visit(arg)

        def visit_Attribute(self, node):
            if isinstance(node.value, ast.Name) and node.value.id == ROOT_CONTEXT:
                names.add(node.attr)
                return
            self.visit(node.value)

        def visit_Name(self, node):
            names.add(node.id)

    Collector().visit(ast.parse(source, mode='eval'))
    return names
