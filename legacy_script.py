"""Flat, regex-based reader for scripts that start with the line ``NonRecursive``.

The grammar has no nesting: each operand is a number or a name already in
the symbol table. Matched lines are lowered to the same syntax trees the
primary parser produces, so compilation and binding are shared.
"""
from __future__ import annotations

import re

from script_compiler import ExpressionCompiler, parse_number
from script_syntax import ExpressionKind, SyntaxNode

SENTINEL = "NonRecursive"

GRAMMAR_HELP = (
    "we implement the following non-recursive grammar",
    "",
    "line  =  var '=' expr",
    "var   =  [a-zA-Z][a-zA-Z0-9]*           { RegEx }",
    "expr  =  operator | function | payoff   { apply from left to right }",
    "",
    "operator   =  operator1 | operator2",
    "operator1  =  ['+' | '-'] payoff",
    "operator2  =  payoff ['+' | '-' | '*' |",
    "                      '==' | '!=' | '<=' |'<' | '>=' | '>' | '&&' | '||' ] payoff",
    "",
    "function   =  function3 | function2 | function1",
    "function3  =  fname3 '(' payoff ',' payoff ',' payoff ')'",
    "function2  =  fname2 '(' payoff ',' payoff ')'",
    "function1  =  fname1 '(' payoff ')'",
    "",
    "fname3     =  'IfThenElse'",
    "fname2     =  'Min' | 'Max' | 'Pay'",
    "fname1     =  'Cache'",
    "",
    "payoff  =  number | string              { try double conversion and lookup in map }",
)

_ASSIGNMENT = re.compile(r"([a-zA-Z][a-zA-Z0-9]*)(=)(.+)")
_OPERATOR1 = re.compile(r"(\+|-)(.+)")
_OPERATOR2 = re.compile(r"(.+)(\+|-|\*|==|!=|<=|<|>=|>|&&|\|\|)(.+)")
_FUNCTION3 = re.compile(r"([a-zA-Z]+)\((.+),(.+),(.+)\)")
_FUNCTION2 = re.compile(r"([a-zA-Z]+)\((.+),(.+)\)")
_FUNCTION1 = re.compile(r"([a-zA-Z]+)\((.+)\)")
_WHITESPACE = re.compile(r"\s+")

_OPERATOR2_KINDS = {
    "+": ExpressionKind.PLUS,
    "-": ExpressionKind.MINUS,
    "*": ExpressionKind.MULT,
}

_FUNCTION_KINDS = {
    1: {"Cache": ExpressionKind.CACHE},
    2: {"Min": ExpressionKind.MIN, "Max": ExpressionKind.MAX},
    3: {"IfThenElse": ExpressionKind.IF_THEN_ELSE},
}

_ARITY_NAMES = {1: "unary", 2: "binary", 3: "ternary"}


def operand(text: str) -> SyntaxNode:
    """A number if ``text`` converts to one, else a name to look up."""
    if parse_number(text) is not None:
        return SyntaxNode(ExpressionKind.NUMBER, leaves=(text,))
    return SyntaxNode(ExpressionKind.IDENTIFIER, leaves=(text,))


class LegacyFrontEnd:
    """Read ``var = expr`` lines with the flat grammar in :data:`GRAMMAR_HELP`."""

    def __init__(self, compiler: ExpressionCompiler) -> None:
        self.compiler = compiler
        self.log = compiler.log

    def read(self, line: str, k: int) -> tuple[str, SyntaxNode] | None:
        """Return ``(target, expression)`` for line ``k`` or ``None`` after logging why not.

        Raises :class:`~script_compiler.CompileError` when resolving the
        settlement operand of ``Pay`` fails.
        """
        text = _WHITESPACE.sub("", line)
        match = _ASSIGNMENT.fullmatch(text)
        if match is None:
            self.log.error(k, f"'{text}' is no valid assignment")
            return None
        target, expr = match.group(1), match.group(3)
        tree = self._expression(expr, k)
        if tree is None:
            self.log.error(k, f"'{expr}' is no valid expression")
            return None
        return target, tree

    def _expression(self, expr: str, k: int) -> SyntaxNode | None:
        match = _OPERATOR1.fullmatch(expr)
        if match:
            kind = ExpressionKind.UNARY_PLUS if match.group(1) == "+" else ExpressionKind.UNARY_MINUS
            return SyntaxNode(kind, children=(operand(match.group(2)),))

        match = _OPERATOR2.fullmatch(expr)
        if match:
            left, op, right = match.groups()
            children = (operand(left), operand(right))
            if op in _OPERATOR2_KINDS:
                return SyntaxNode(_OPERATOR2_KINDS[op], children=children)
            return SyntaxNode(ExpressionKind.LOGICAL, children=children, leaves=(op,))

        for pattern in (_FUNCTION3, _FUNCTION2, _FUNCTION1):
            match = pattern.fullmatch(expr)
            if match:
                return self._function(match.group(1), match.groups()[1:], k)

        return operand(expr)

    def _function(self, name: str, args: tuple[str, ...], k: int) -> SyntaxNode | None:
        arity = len(args)
        if arity == 2 and name == "Pay":
            return self._pay(args[0], args[1], k)
        kind = _FUNCTION_KINDS[arity].get(name)
        if kind is None:
            self.log.error(k, f"'{name}' is no valid {_ARITY_NAMES[arity]} function name")
            return None
        return SyntaxNode(kind, children=tuple(operand(arg) for arg in args))

    def _pay(self, amount: str, when: str, k: int) -> SyntaxNode:
        # a settlement operand that is not a number settles at its own observation time
        if parse_number(when) is None:
            settlement = self.compiler.compile(operand(when), k)
            when = repr(settlement.observation_time)
        return SyntaxNode(ExpressionKind.PAY, children=(operand(amount),), leaves=(when,))
