"""Composable payoff nodes evaluated on simulated paths.

A payoff knows when it is observed and how to compute an amount from a path.
Paths are duck-typed: they provide ``asset(t, alias)`` and ``numeraire(t)``.
Nodes never change after construction, so a single node can be shared by
many script names and read concurrently by many worker threads.
"""
from __future__ import annotations

import math
import threading
import weakref
from typing import Any, Callable


class Payoff:
    """Base class of all payoff nodes."""

    def __init__(self, observation_time: float = 0.0) -> None:
        self._observation_time = float(observation_time)

    @property
    def observation_time(self) -> float:
        return self._observation_time

    def at(self, path: Any) -> float:
        raise NotImplementedError

    def discounted_at(self, path: Any) -> float:
        """Value on ``path`` expressed in units of the numeraire."""
        return self.at(path) / path.numeraire(self.observation_time)

    def at_time(self, t: float) -> Payoff:
        """Return a copy of this payoff observed at ``t``."""
        raise NotImplementedError

    def observation_times(self) -> set[float]:
        return {self.observation_time}


def _latest(*payoffs: Payoff) -> float:
    return max(p.observation_time for p in payoffs)


def _union(*payoffs: Payoff) -> set[float]:
    times: set[float] = set()
    for p in payoffs:
        times |= p.observation_times()
    return times


def _reference(path: Any) -> Callable[[], Any]:
    try:
        return weakref.ref(path)
    except TypeError:
        return lambda: path


class FixedAmount(Payoff):
    def __init__(self, amount: float) -> None:
        super().__init__(0.0)
        self.amount = float(amount)

    def at(self, path: Any) -> float:
        return self.amount

    def at_time(self, t: float) -> Payoff:
        return self

    def __repr__(self) -> str:
        return f"FixedAmount({self.amount!r})"


class Asset(Payoff):
    """Simulated value of the asset ``alias`` at ``time``."""

    def __init__(self, time: float, alias: str) -> None:
        super().__init__(time)
        self.alias = alias

    def at(self, path: Any) -> float:
        return path.asset(self.observation_time, self.alias)

    def at_time(self, t: float) -> Payoff:
        return Asset(t, self.alias)

    def __repr__(self) -> str:
        return f"Asset({self.observation_time!r}, {self.alias!r})"


class Axpy(Payoff):
    """``a * x + y``; ``y`` may be omitted."""

    def __init__(self, a: float, x: Payoff, y: Payoff | None = None) -> None:
        super().__init__(_latest(x, y) if y is not None else x.observation_time)
        self.a = float(a)
        self.x = x
        self.y = y

    def at(self, path: Any) -> float:
        value = self.a * self.x.at(path)
        if self.y is not None:
            value += self.y.at(path)
        return value

    def at_time(self, t: float) -> Payoff:
        return Axpy(self.a, self.x.at_time(t), self.y.at_time(t) if self.y is not None else None)

    def observation_times(self) -> set[float]:
        if self.y is None:
            return self.x.observation_times()
        return _union(self.x, self.y)


class _Binary(Payoff):
    def __init__(self, x: Payoff, y: Payoff) -> None:
        super().__init__(_latest(x, y))
        self.x = x
        self.y = y

    def at_time(self, t: float) -> Payoff:
        return type(self)(self.x.at_time(t), self.y.at_time(t))

    def observation_times(self) -> set[float]:
        return _union(self.x, self.y)


class Mult(_Binary):
    def at(self, path: Any) -> float:
        return self.x.at(path) * self.y.at(path)


class Division(_Binary):
    """Quotient of two payoffs; a zero denominator gives a signed infinity or nan."""

    def at(self, path: Any) -> float:
        numerator, denominator = self.x.at(path), self.y.at(path)
        if denominator != 0.0:
            return numerator / denominator
        if numerator == 0.0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)


class Min(_Binary):
    def at(self, path: Any) -> float:
        return min(self.x.at(path), self.y.at(path))


class Max(_Binary):
    def at(self, path: Any) -> float:
        return max(self.x.at(path), self.y.at(path))


class IfThenElse(Payoff):
    """Pick ``then`` where ``condition`` is strictly positive, else ``otherwise``."""

    def __init__(self, condition: Payoff, then: Payoff, otherwise: Payoff) -> None:
        super().__init__(_latest(condition, then, otherwise))
        self.condition = condition
        self.then = then
        self.otherwise = otherwise

    def at(self, path: Any) -> float:
        if self.condition.at(path) > 0.0:
            return self.then.at(path)
        return self.otherwise.at(path)

    def at_time(self, t: float) -> Payoff:
        return IfThenElse(self.condition.at_time(t), self.then.at_time(t), self.otherwise.at_time(t))

    def observation_times(self) -> set[float]:
        return _union(self.condition, self.then, self.otherwise)


_LOGICAL_OPERATORS = {
    "==": lambda x, y: x == y,
    "!=": lambda x, y: x != y,
    "<": lambda x, y: x < y,
    "<=": lambda x, y: x <= y,
    ">": lambda x, y: x > y,
    ">=": lambda x, y: x >= y,
    "&&": lambda x, y: x != 0.0 and y != 0.0,
    "||": lambda x, y: x != 0.0 or y != 0.0,
}


class Logical(Payoff):
    """Compare two payoffs; the value is 1.0 when the relation holds and 0.0 otherwise."""

    operators = tuple(_LOGICAL_OPERATORS)

    def __init__(self, x: Payoff, y: Payoff, op: str) -> None:
        if op not in _LOGICAL_OPERATORS:
            raise ValueError(f"Unsupported logical operator {op!r}")
        super().__init__(_latest(x, y))
        self.x = x
        self.y = y
        self.op = op
        self._relation = _LOGICAL_OPERATORS[op]

    def at(self, path: Any) -> float:
        return 1.0 if self._relation(self.x.at(path), self.y.at(path)) else 0.0

    def at_time(self, t: float) -> Payoff:
        return Logical(self.x.at_time(t), self.y.at_time(t), self.op)

    def observation_times(self) -> set[float]:
        return _union(self.x, self.y)


class Pay(Payoff):
    """Settle the value of ``x`` at ``pay_time``; only discounting changes."""

    def __init__(self, x: Payoff, pay_time: float) -> None:
        super().__init__(pay_time)
        self.x = x

    def at(self, path: Any) -> float:
        return self.x.at(path)

    def at_time(self, t: float) -> Payoff:
        return Pay(self.x.at_time(t), self.observation_time)

    def observation_times(self) -> set[float]:
        return self.x.observation_times() | {self.observation_time}


class Cache(Payoff):
    """Evaluate ``x`` once per path.

    The memo lives in thread-local storage and holds a weak reference to the
    last path seen, so a finished path can be freed and identity checks cannot
    be fooled by a recycled ``id``. Paths that refuse weak references are held
    strongly instead.
    """

    def __init__(self, x: Payoff) -> None:
        super().__init__(x.observation_time)
        self.x = x
        self._memo = threading.local()

    def at(self, path: Any) -> float:
        memo = self._memo
        ref = getattr(memo, "path", None)
        if ref is None or ref() is not path:
            memo.value = self.x.at(path)
            memo.path = _reference(path)
        return memo.value

    def at_time(self, t: float) -> Payoff:
        return Cache(self.x.at_time(t))

    def observation_times(self) -> set[float]:
        return self.x.observation_times()
