"""Deterministic paths and simulations for tests."""
from __future__ import annotations

import math

from payoffs import Payoff


class FlatPath:
    """Every asset sits at ``level`` at all times."""

    def __init__(self, level: float = 100.0, rate: float = 0.0) -> None:
        self.level = level
        self.rate = rate

    def asset(self, t: float, alias: str) -> float:
        return self.level

    def numeraire(self, t: float) -> float:
        return math.exp(self.rate * t)


class ClockPath(FlatPath):
    """Asset value grows linearly in time: ``slope * t``."""

    def __init__(self, slope: float = 100.0) -> None:
        super().__init__()
        self.slope = slope

    def asset(self, t: float, alias: str) -> float:
        return self.slope * t


class ListSimulation:
    def __init__(self, paths: list) -> None:
        self.paths = paths
        self.n_paths = len(paths)

    def path(self, n: int):
        return self.paths[n]


class CountingPayoff(Payoff):
    """Returns the path level and counts how often it was asked."""

    def __init__(self) -> None:
        super().__init__(0.0)
        self.calls = 0

    def at(self, path) -> float:
        self.calls += 1
        return path.level

    def at_time(self, t: float) -> Payoff:
        return self
