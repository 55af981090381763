"""Syntax trees for payoff script lines and the parser that produces them.

One script line is an assignment such as ``call = Pay(Max(S - K, 0), 01Jan2027)``.
The line is read with Python's own :mod:`ast` parser and only a restricted
subset of expression nodes is accepted, mirroring the safe payoff expression
evaluator of the option pricer. The accepted subset is converted into a small
language-neutral tree of :class:`SyntaxNode` objects that the compiler lowers
into payoffs.
"""
from __future__ import annotations

import ast
import enum
import re
from dataclasses import dataclass


class ExpressionKind(enum.Enum):
    NUMBER = "Number"
    IDENTIFIER = "Identifier"
    UNARY_PLUS = "UnaryPlus"
    UNARY_MINUS = "UnaryMinus"
    PLUS = "Plus"
    MINUS = "Minus"
    MULT = "Mult"
    DIVISION = "Division"
    IF_THEN_ELSE = "IfThenElse"
    MIN = "Min"
    MAX = "Max"
    LOGICAL = "Logical"
    PAY = "Pay"
    PAY_WITH_DATE = "PayWithDate"
    CACHE = "Cache"
    PAYOFF_AT = "PayoffAt"
    PAYOFF_AT_WITH_DATE = "PayoffAtWithDate"
    ASSIGNMENT = "Assignment"


@dataclass(frozen=True)
class SyntaxNode:
    """A node of a parsed script line: a kind, child expressions and raw leaf tokens."""

    kind: ExpressionKind
    children: tuple[SyntaxNode, ...] = ()
    leaves: tuple[str, ...] = ()

    def __str__(self) -> str:
        parts = list(self.leaves) + [str(child) for child in self.children]
        return f"{self.kind.value}({', '.join(parts)})"


@dataclass(frozen=True)
class ParseResult:
    """Outcome of parsing one line; ``status`` is 0 on success."""

    tree: SyntaxNode | None
    status: int
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == 0


# Bare date literals (01Jan2027) are not Python tokens; quote them before parsing.
_DATE_LITERAL = re.compile(r"(?<![\w\"'.])(\d{2}[A-Za-z]{3}\d{4})(?![\w\"'])")

_BINARY_KINDS = {
    ast.Add: ExpressionKind.PLUS,
    ast.Sub: ExpressionKind.MINUS,
    ast.Mult: ExpressionKind.MULT,
    ast.Div: ExpressionKind.DIVISION,
}

_COMPARISON_SYMBOLS = {
    ast.Eq: "==",
    ast.NotEq: "!=",
    ast.Lt: "<",
    ast.LtE: "<=",
    ast.Gt: ">",
    ast.GtE: ">=",
}

_BOOLEAN_SYMBOLS = {ast.And: "&&", ast.Or: "||"}

_FUNCTIONS = {
    "Min": ExpressionKind.MIN,
    "Max": ExpressionKind.MAX,
    "IfThenElse": ExpressionKind.IF_THEN_ELSE,
    "Cache": ExpressionKind.CACHE,
}

# functions whose last argument is a time literal stored as a leaf
_TIMED_FUNCTIONS = {
    "Pay": (ExpressionKind.PAY, ExpressionKind.PAY_WITH_DATE),
    "PayoffAt": (ExpressionKind.PAYOFF_AT, ExpressionKind.PAYOFF_AT_WITH_DATE),
}


TOO_DEEP = "expression nested too deeply"


def _preprocess(line: str) -> str:
    line = line.strip().replace("&&", " and ").replace("||", " or ")
    return _DATE_LITERAL.sub(r'"\1"', line)


class _TreeBuilder(ast.NodeVisitor):
    """Convert an allowed subset of Python expressions into :class:`SyntaxNode` trees."""

    allowed_nodes = (
        ast.Expression,
        ast.BinOp,
        ast.UnaryOp,
        ast.BoolOp,
        ast.Compare,
        ast.IfExp,
        ast.Call,
        ast.Name,
        ast.Constant,
    )

    def __init__(self, source: str) -> None:
        self.source = source

    def visit(self, node):  # type: ignore[override]
        if not isinstance(node, self.allowed_nodes):
            raise ValueError(f"Disallowed expression component: {type(node).__name__}")
        return super().visit(node)

    def _text(self, node: ast.AST) -> str:
        segment = ast.get_source_segment(self.source, node)
        return segment if segment is not None else ast.unparse(node)

    def visit_Constant(self, node: ast.Constant) -> SyntaxNode:
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise ValueError(f"Unexpected literal {self._text(node)}")
        return SyntaxNode(ExpressionKind.NUMBER, leaves=(self._text(node),))

    def visit_Name(self, node: ast.Name) -> SyntaxNode:
        return SyntaxNode(ExpressionKind.IDENTIFIER, leaves=(node.id,))

    def visit_UnaryOp(self, node: ast.UnaryOp) -> SyntaxNode:
        if isinstance(node.op, ast.UAdd):
            kind = ExpressionKind.UNARY_PLUS
        elif isinstance(node.op, ast.USub):
            kind = ExpressionKind.UNARY_MINUS
        else:
            raise ValueError(f"Unsupported unary operator {type(node.op).__name__}")
        return SyntaxNode(kind, children=(self.visit(node.operand),))

    def visit_BinOp(self, node: ast.BinOp) -> SyntaxNode:
        kind = _BINARY_KINDS.get(type(node.op))
        if kind is None:
            raise ValueError(f"Unsupported binary operator {type(node.op).__name__}")
        return SyntaxNode(kind, children=(self.visit(node.left), self.visit(node.right)))

    def visit_Compare(self, node: ast.Compare) -> SyntaxNode:
        if len(node.ops) != 1:
            raise ValueError("Chained comparisons are not supported")
        symbol = _COMPARISON_SYMBOLS.get(type(node.ops[0]))
        if symbol is None:
            raise ValueError(f"Unsupported comparison {type(node.ops[0]).__name__}")
        return SyntaxNode(
            ExpressionKind.LOGICAL,
            children=(self.visit(node.left), self.visit(node.comparators[0])),
            leaves=(symbol,),
        )

    def visit_BoolOp(self, node: ast.BoolOp) -> SyntaxNode:
        symbol = _BOOLEAN_SYMBOLS[type(node.op)]
        tree = self.visit(node.values[0])
        for value in node.values[1:]:
            tree = SyntaxNode(ExpressionKind.LOGICAL, children=(tree, self.visit(value)), leaves=(symbol,))
        return tree

    def visit_IfExp(self, node: ast.IfExp) -> SyntaxNode:
        return SyntaxNode(
            ExpressionKind.IF_THEN_ELSE,
            children=(self.visit(node.test), self.visit(node.body), self.visit(node.orelse)),
        )

    def visit_Call(self, node: ast.Call) -> SyntaxNode:
        if not isinstance(node.func, ast.Name):
            raise ValueError("Only simple calls to payoff functions are permitted")
        if node.keywords:
            raise ValueError(f"Keyword arguments are not supported in {node.func.id}")
        name = node.func.id
        if name in _FUNCTIONS:
            return SyntaxNode(_FUNCTIONS[name], children=tuple(self.visit(arg) for arg in node.args))
        if name in _TIMED_FUNCTIONS:
            number_kind, date_kind = _TIMED_FUNCTIONS[name]
            if len(node.args) < 2:
                return SyntaxNode(number_kind, children=tuple(self.visit(arg) for arg in node.args))
            *operands, when = node.args
            children = tuple(self.visit(arg) for arg in operands)
            if isinstance(when, ast.Constant) and isinstance(when.value, str):
                return SyntaxNode(date_kind, children=children, leaves=(when.value,))
            return SyntaxNode(number_kind, children=children, leaves=(self._text(when),))
        raise ValueError(f"Unknown function {name!r}")


def parse_line(line: str) -> ParseResult:
    """Parse one script line into an assignment tree.

    Never raises: malformed input yields a non-zero status and an error message.
    A blank line parses successfully into no tree at all.
    """
    source = _preprocess(line)
    try:
        module = ast.parse(source, mode="exec")
    except SyntaxError as exc:
        return ParseResult(None, 1, f"syntax error: {exc.msg}")
    except (RecursionError, MemoryError):
        return ParseResult(None, 1, TOO_DEEP)

    if not module.body:
        return ParseResult(None, 0)
    if len(module.body) != 1:
        return ParseResult(None, 1, "one statement per line expected")

    statement = module.body[0]
    builder = _TreeBuilder(source)
    try:
        if isinstance(statement, ast.Assign):
            if len(statement.targets) != 1 or not isinstance(statement.targets[0], ast.Name):
                return ParseResult(None, 1, "assignment to a single name expected")
            tree = SyntaxNode(
                ExpressionKind.ASSIGNMENT,
                children=(builder.visit(statement.value),),
                leaves=(statement.targets[0].id,),
            )
        elif isinstance(statement, ast.Expr):
            tree = builder.visit(statement.value)
        else:
            return ParseResult(None, 1, f"Disallowed statement: {type(statement).__name__}")
    except ValueError as exc:
        return ParseResult(None, 1, str(exc))
    except (RecursionError, MemoryError):
        return ParseResult(None, 1, TOO_DEEP)
    return ParseResult(tree, 0)
