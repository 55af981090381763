"""Compile a payoff script into named payoffs and a single result payoff.

Example::

    script = PayoffScript(
        ["S", "K"],
        [Asset(1.0, "S"), FixedAmount(100.0)],
        [
            "call = Pay(Max(S - K, 0), 1.0)",
            "put = Pay(Max(K - S, 0), 1.0)",
            "payoff = call - put",
        ],
    )
    script.npv(simulation, ["call", "put", "payoff"])

Each line either binds a name or leaves a trace in :attr:`PayoffScript.diagnostics`
explaining why it did not; a broken line never stops the lines after it.
"""
from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Sequence

import monte_carlo_valuation
import payoffs as po
from legacy_script import GRAMMAR_HELP, SENTINEL, LegacyFrontEnd
from script_compiler import (
    CompileError,
    Diagnostic,
    DiagnosticLog,
    ExpressionCompiler,
    ScriptError,
    ScriptSettings,
    SymbolTable,
)
from script_syntax import TOO_DEEP, ExpressionKind, ParseResult, SyntaxNode, parse_line

logger = logging.getLogger(__name__)

RESULT_NAME = "payoff"


class ParserFrontEnd:
    """Read lines through :func:`script_syntax.parse_line` or a compatible parser."""

    def __init__(
        self,
        compiler: ExpressionCompiler,
        expressions: list[str],
        parser: Callable[[str], ParseResult] = parse_line,
    ) -> None:
        self.compiler = compiler
        self.log = compiler.log
        self.expressions = expressions
        self.parser = parser

    def read(self, line: str, k: int) -> tuple[str, SyntaxNode] | None:
        result = self.parser(line)
        if result.tree is not None:
            try:
                self.expressions.append(f"L{k}:{result.tree}")
            except RecursionError:
                self.log.error(k, TOO_DEEP)
                return None
        if not result.ok:
            self.log.error(k, result.error)
            return None
        tree = result.tree
        if tree is None:
            self.log.error(k, "Empty expression tree.")
            return None
        if tree.kind is not ExpressionKind.ASSIGNMENT:
            self.log.error(k, "Assignment expected.")
            return None
        if not self.compiler.check_shape(tree, 1, 1, k):
            return None
        return tree.leaves[0], tree.children[0]


class PayoffScript(po.Payoff):
    """Named payoffs built from seed payoffs and script lines.

    Args:
        keys: Names of the seed payoffs.
        payoffs: Seed payoffs, one per key.
        script: Script lines. A first line equal to ``NonRecursive`` selects
            the flat legacy grammar for the remaining lines.
        overwrite: Whether a line (or a repeated seed key) may rebind an
            existing name.
        evaluation_date: Reference date for ``DDMMMYYYY`` literals; defaults
            to today.

    Raises:
        ScriptError: If keys and payoffs differ in length, a seed key repeats
            while ``overwrite`` is off, no payoff is defined at all, or the
            parser hands over an expression kind the compiler does not know.
    """

    def __init__(
        self,
        keys: Sequence[str],
        payoffs: Sequence[po.Payoff],
        script: Sequence[str],
        overwrite: bool = True,
        *,
        evaluation_date: datetime.date | None = None,
        parser: Callable[[str], ParseResult] = parse_line,
    ) -> None:
        if evaluation_date is None:
            self.settings = ScriptSettings(overwrite=overwrite)
        else:
            self.settings = ScriptSettings(evaluation_date=evaluation_date, overwrite=overwrite)
        if len(keys) != len(payoffs):
            raise self._fatal(f"{len(keys)} keys but {len(payoffs)} payoffs given")

        self._table = SymbolTable()
        self._log = DiagnosticLog()
        self._expressions: list[str] = []
        self._compiler = ExpressionCompiler(self._table, self._log, self.settings)

        for key, payoff in zip(keys, payoffs):
            if self._table.bind(key, payoff, overwrite) is None:
                raise self._fatal(f"seed payoff {key!r} defined twice and overwrite not allowed")

        lines = list(script)
        if lines and lines[0] == SENTINEL:
            self._read_legacy(lines)
        else:
            self._read_lines(lines, ParserFrontEnd(self._compiler, self._expressions, parser))

        if not len(self._table):
            raise self._fatal("no payoffs stored")
        result = self._table.lookup(RESULT_NAME)
        self._result = result if result is not None else self._table.last()
        super().__init__(self._result.observation_time)

    @staticmethod
    def _fatal(message: str) -> ScriptError:
        logger.warning("Payoff script rejected: %s", message)
        return ScriptError(message)

    def _read_legacy(self, lines: list[str]) -> None:
        self._log.info(0, f"'{SENTINEL}' selects the non-recursive grammar")
        if len(lines) == 1:
            for text in GRAMMAR_HELP:
                self._log.info(0, text)
            return
        front_end = LegacyFrontEnd(self._compiler)
        self._read_lines(lines, front_end, start=1)

    def _read_lines(self, lines: list[str], front_end: Any, start: int = 0) -> None:
        for k in range(start, len(lines)):
            line = lines[k]
            try:
                intent = front_end.read(line, k)
                if intent is None:
                    continue
                target, expression = intent
                payoff = self._compiler.compile(expression, k)
            except CompileError as exc:
                logger.debug("Skipping line %d: %s", k, exc)
                self._log.info(k, "line skipped, no payoff bound")
                continue
            if not target:
                self._log.error(k, "Non-empty identifier expected.")
                continue
            self._bind(target, payoff, k, line)

    def _bind(self, name: str, payoff: po.Payoff, k: int, line: str) -> None:
        change = self._table.bind(name, payoff, self.settings.overwrite)
        if change is None:
            self._log.error(k, f"Cannot replace '{name}' in line '{line}'")
            return
        self._log.append(k, change, f"'{line}'")
        logger.debug("%s %r from line %d", change.value, name, k)

    # Payoff interface, delegated to the result payoff

    def at(self, path: Any) -> float:
        return self._result.at(path)

    def at_time(self, t: float) -> po.Payoff:
        return self._result.at_time(t)

    def observation_times(self, names: Sequence[str] | None = None) -> set[float] | list[float]:
        """Times needed to simulate the result.

        With ``names``, the ascending union of the times the named payoffs need.
        """
        if names is None:
            return self._result.observation_times()
        times: set[float] = set()
        for payoff in self._table.find(names):
            times |= payoff.observation_times()
        return sorted(times)

    # inspectors

    @property
    def result(self) -> po.Payoff:
        return self._result

    @property
    def payoffs(self) -> dict[str, po.Payoff]:
        return self._table.as_dict()

    @property
    def expressions(self) -> list[str]:
        return list(self._expressions)

    @property
    def diagnostics(self) -> tuple[Diagnostic, ...]:
        return self._log.entries

    @property
    def script_log(self) -> list[str]:
        return self._log.messages()

    def errors(self) -> list[Diagnostic]:
        return self._log.errors()

    def npv(self, simulation: Any, names: Sequence[str], workers: int | None = None) -> list[float]:
        """Average discounted value of each named payoff over the simulated paths."""
        return monte_carlo_valuation.expectations(simulation, self._table.find(names), workers=workers)
