"""Lowering of script syntax trees into payoff graphs.

The compiler owns nothing but references: names resolve to the payoff objects
already stored in the :class:`SymbolTable`, so a name used twice shares one
node. Every failure is written to the :class:`DiagnosticLog` before a
:class:`CompileError` is raised; the caller decides whether to carry on with
the next line.
"""
from __future__ import annotations

import datetime
import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator

import payoffs as po
from script_syntax import ExpressionKind, SyntaxNode

logger = logging.getLogger(__name__)


class ScriptError(ValueError):
    """A script could not be turned into a usable payoff."""


class CompileError(ScriptError):
    """A single line could not be compiled; details are in the diagnostic log."""


class UnknownExpressionError(ScriptError):
    """The parser produced a tree kind the compiler does not know."""


@dataclass(frozen=True)
class ScriptSettings:
    """Inputs that steer compilation of a script."""

    evaluation_date: datetime.date = field(default_factory=datetime.date.today)
    overwrite: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.evaluation_date, datetime.date):
            raise ValueError("evaluation_date must be a datetime.date")
        if isinstance(self.evaluation_date, datetime.datetime):
            object.__setattr__(self, "evaluation_date", self.evaluation_date.date())


_MONTHS = {
    name: number
    for number, name in enumerate(
        ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"),
        start=1,
    )
}


def parse_number(text: str) -> float | None:
    try:
        return float(text)
    except (TypeError, ValueError):
        return None


def parse_date(text: str, evaluation_date: datetime.date) -> float | None:
    """Convert a ``DDMMMYYYY`` literal into a year fraction from ``evaluation_date``.

    The year fraction is the plain day difference over 365. Returns ``None``
    for anything that is not exactly such a literal or names no real day.
    """
    if len(text) != 9:
        return None
    day, month, year = text[0:2], text[2:5], text[5:9]
    if not (day.isdigit() and year.isdigit()) or month not in _MONTHS:
        return None
    try:
        target = datetime.date(int(year), _MONTHS[month], int(day))
    except ValueError:
        return None
    return (target - evaluation_date).days / 365.0


class DiagnosticCategory(enum.Enum):
    INSERT = "Insert"
    REPLACE = "Replace"
    ERROR = "Error"
    INFO = "Info"


@dataclass(frozen=True)
class Diagnostic:
    line: int
    category: DiagnosticCategory
    message: str

    def __str__(self) -> str:
        return f"{self.category.value} line {self.line}: {self.message}"


class DiagnosticLog:
    """Append-only record of what happened to each script line."""

    def __init__(self) -> None:
        self._entries: list[Diagnostic] = []

    def append(self, line: int, category: DiagnosticCategory, message: str) -> Diagnostic:
        entry = Diagnostic(line, category, message)
        self._entries.append(entry)
        return entry

    def error(self, line: int, message: str) -> Diagnostic:
        return self.append(line, DiagnosticCategory.ERROR, message)

    def info(self, line: int, message: str) -> Diagnostic:
        return self.append(line, DiagnosticCategory.INFO, message)

    @property
    def entries(self) -> tuple[Diagnostic, ...]:
        return tuple(self._entries)

    def errors(self) -> list[Diagnostic]:
        return [entry for entry in self._entries if entry.category is DiagnosticCategory.ERROR]

    def messages(self) -> list[str]:
        return [str(entry) for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._entries)


class SymbolTable:
    """Named payoffs, kept in the order they were last inserted or replaced."""

    def __init__(self) -> None:
        self._payoffs: dict[str, po.Payoff] = {}

    def bind(self, name: str, payoff: po.Payoff, overwrite: bool) -> DiagnosticCategory | None:
        """Store ``payoff`` under ``name``.

        Returns the kind of change made, or ``None`` when ``name`` exists and
        ``overwrite`` is off; the old binding is kept in that case.
        """
        if name not in self._payoffs:
            self._payoffs[name] = payoff
            return DiagnosticCategory.INSERT
        if not overwrite:
            return None
        # re-insert so iteration order reflects the latest change
        del self._payoffs[name]
        self._payoffs[name] = payoff
        return DiagnosticCategory.REPLACE

    def lookup(self, name: str) -> po.Payoff | None:
        return self._payoffs.get(name)

    def find(self, names: Iterable[str]) -> list[po.Payoff]:
        found = []
        for name in names:
            if name not in self._payoffs:
                raise KeyError(f"payoff {name!r} not found")
            found.append(self._payoffs[name])
        return found

    def last(self) -> po.Payoff:
        return next(reversed(self._payoffs.values()))

    def as_dict(self) -> dict[str, po.Payoff]:
        return dict(self._payoffs)

    def __contains__(self, name: object) -> bool:
        return name in self._payoffs

    def __len__(self) -> int:
        return len(self._payoffs)

    def __iter__(self) -> Iterator[str]:
        return iter(self._payoffs)


# kind -> (expected children, expected leaves)
SHAPES = {
    ExpressionKind.NUMBER: (0, 1),
    ExpressionKind.IDENTIFIER: (0, 1),
    ExpressionKind.UNARY_PLUS: (1, 0),
    ExpressionKind.UNARY_MINUS: (1, 0),
    ExpressionKind.PLUS: (2, 0),
    ExpressionKind.MINUS: (2, 0),
    ExpressionKind.MULT: (2, 0),
    ExpressionKind.DIVISION: (2, 0),
    ExpressionKind.IF_THEN_ELSE: (3, 0),
    ExpressionKind.MIN: (2, 0),
    ExpressionKind.MAX: (2, 0),
    ExpressionKind.LOGICAL: (2, 1),
    ExpressionKind.PAY: (1, 1),
    ExpressionKind.PAY_WITH_DATE: (1, 1),
    ExpressionKind.CACHE: (1, 0),
    ExpressionKind.PAYOFF_AT: (1, 1),
    ExpressionKind.PAYOFF_AT_WITH_DATE: (1, 1),
    ExpressionKind.ASSIGNMENT: (1, 1),
}


class ExpressionCompiler:
    """Turn one :class:`SyntaxNode` expression into a payoff."""

    def __init__(self, table: SymbolTable, log: DiagnosticLog, settings: ScriptSettings) -> None:
        self.table = table
        self.log = log
        self.settings = settings

    def _fail(self, line: int, message: str) -> CompileError:
        self.log.error(line, message)
        return CompileError(f"Cannot interpret payoff in line {line}: {message}")

    def check_shape(self, tree: SyntaxNode | None, children: int, leaves: int, line: int) -> bool:
        """Log and return ``False`` unless ``tree`` has the given arity."""
        if tree is None:
            self.log.error(line, "Empty expression tree.")
            return False
        if len(tree.children) != children:
            self.log.error(line, f"{children} child expressions expected, but {len(tree.children)} found.")
            return False
        if len(tree.leaves) != leaves:
            self.log.error(line, f"{leaves} leafs expected, but {len(tree.leaves)} found.")
            return False
        return True

    def _number(self, text: str, line: int) -> float:
        value = parse_number(text)
        if value is None:
            raise self._fail(line, f"cannot convert {text} to number.")
        return value

    def _date(self, text: str, line: int) -> float:
        value = parse_date(text, self.settings.evaluation_date)
        if value is None:
            raise self._fail(line, f"cannot convert {text} to date.")
        return value

    def compile(self, tree: SyntaxNode | None, line: int) -> po.Payoff:
        try:
            return self._compile(tree, line)
        except RecursionError:
            raise self._fail(line, "expression nested too deeply") from None

    def _compile(self, tree: SyntaxNode | None, line: int) -> po.Payoff:
        if tree is None:
            raise self._fail(line, "Empty expression tree.")
        kind = tree.kind
        if kind not in SHAPES or kind is ExpressionKind.ASSIGNMENT:
            self.log.error(line, "unknown expression type.")
            logger.warning("Unknown expression kind %r in line %d", kind, line)
            raise UnknownExpressionError(f"Cannot interpret expression kind {kind!r} in line {line}")
        if not self.check_shape(tree, *SHAPES[kind], line):
            raise CompileError(f"Cannot interpret payoff in line {line}: unexpected shape of {kind.value}")

        K = ExpressionKind
        if kind is K.NUMBER:
            amount = self._number(tree.leaves[0], line)
            self.log.info(line, f"'{tree.leaves[0]}' is fixed amount")
            return po.FixedAmount(amount)
        if kind is K.IDENTIFIER:
            name = tree.leaves[0]
            payoff = self.table.lookup(name)
            if payoff is None:
                raise self._fail(line, f"'{name}' is no payoff")
            self.log.info(line, f"'{name}' is in map")
            return payoff
        if kind is K.UNARY_PLUS:
            return self._compile(tree.children[0], line)
        if kind is K.UNARY_MINUS:
            return po.Axpy(-1.0, self._compile(tree.children[0], line))
        if kind in (K.PAY, K.PAY_WITH_DATE, K.PAYOFF_AT, K.PAYOFF_AT_WITH_DATE):
            if kind in (K.PAY, K.PAYOFF_AT):
                when = self._number(tree.leaves[0], line)
            else:
                when = self._date(tree.leaves[0], line)
            underlying = self._compile(tree.children[0], line)
            if kind in (K.PAY, K.PAY_WITH_DATE):
                return po.Pay(underlying, when)
            return underlying.at_time(when)
        if kind is K.CACHE:
            return po.Cache(self._compile(tree.children[0], line))

        operands = [self._compile(child, line) for child in tree.children]
        if kind is K.PLUS:
            return po.Axpy(1.0, operands[0], operands[1])
        if kind is K.MINUS:
            return po.Axpy(-1.0, operands[1], operands[0])
        if kind is K.MULT:
            return po.Mult(*operands)
        if kind is K.DIVISION:
            return po.Division(*operands)
        if kind is K.IF_THEN_ELSE:
            return po.IfThenElse(*operands)
        if kind is K.MIN:
            return po.Min(*operands)
        if kind is K.MAX:
            return po.Max(*operands)
        # only LOGICAL is left
        op = tree.leaves[0]
        if op not in po.Logical.operators:
            raise self._fail(line, f"'{op}' is no valid logical operator")
        return po.Logical(operands[0], operands[1], op)
