"""Monte Carlo valuation of payoffs over simulated paths.

:func:`expectations` averages the discounted value of each payoff over all
paths of a simulation. Any object with an ``n_paths`` count and a
``path(index)`` accessor can serve as simulation; :class:`GbmSimulation`
provides risk-neutral geometric Brownian motion paths for a single asset.
"""
from __future__ import annotations

import bisect
import logging
import math
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from payoffs import Payoff

logger = logging.getLogger(__name__)


def _partial_sums(simulation: Any, payoffs: Sequence[Payoff], indices: range) -> list[float]:
    sums = [0.0] * len(payoffs)
    for n in indices:
        path = simulation.path(n)
        for k, payoff in enumerate(payoffs):
            sums[k] += payoff.discounted_at(path)
    return sums


def _chunks(n_paths: int, workers: int) -> list[range]:
    size, extra = divmod(n_paths, workers)
    chunks = []
    start = 0
    for w in range(workers):
        stop = start + size + (1 if w < extra else 0)
        if stop > start:
            chunks.append(range(start, stop))
        start = stop
    return chunks


def expectations(
    simulation: Any,
    payoffs: Sequence[Payoff],
    *,
    workers: int | None = None,
) -> list[float]:
    """Estimate the expected discounted value of each payoff.

    With ``workers`` above one the paths are split into contiguous blocks that
    are summed on a thread pool; the block sums are added in block order so a
    given simulation always produces the same numbers.
    """
    n_paths = int(simulation.n_paths)
    if n_paths <= 0:
        raise ValueError("simulation must provide at least one path")
    if workers is not None and workers <= 0:
        raise ValueError("workers must be positive")

    logger.debug("Valuing %d payoffs over %d paths (workers=%s)", len(payoffs), n_paths, workers)
    if workers is None or workers == 1:
        totals = _partial_sums(simulation, payoffs, range(n_paths))
    else:
        chunks = _chunks(n_paths, workers)
        with ThreadPoolExecutor(max_workers=len(chunks)) as pool:
            partials = list(pool.map(lambda chunk: _partial_sums(simulation, payoffs, chunk), chunks))
        totals = [0.0] * len(payoffs)
        for sums in partials:
            for k, value in enumerate(sums):
                totals[k] += value

    return [total / n_paths for total in totals]


@dataclass(frozen=True)
class MarketSpec:
    """Market inputs for a single-asset Black-Scholes simulation."""

    spot: float
    rate: float
    volatility: float
    dividend_yield: float = 0.0
    alias: str = "S"

    def __post_init__(self) -> None:
        if self.spot <= 0:
            raise ValueError("spot must be positive")
        if self.volatility < 0:
            raise ValueError("volatility cannot be negative")
        if not self.alias:
            raise ValueError("alias must not be empty")


class GbmPath:
    """Asset values on a time grid; between grid points the last known value holds."""

    def __init__(self, spec: MarketSpec, times: Sequence[float], values: Sequence[float]) -> None:
        self.spec = spec
        self.times = times
        self.values = values

    def asset(self, t: float, alias: str) -> float:
        if alias != self.spec.alias:
            raise KeyError(f"unknown asset {alias!r}")
        index = bisect.bisect_right(self.times, t) - 1
        return self.values[max(index, 0)]

    def numeraire(self, t: float) -> float:
        return math.exp(self.spec.rate * t)


class GbmSimulation:
    """Risk-neutral geometric Brownian motion paths observed at ``times``.

    Path ``n`` is drawn from its own random stream, so any path can be
    regenerated on its own and from any thread.
    """

    def __init__(
        self,
        spec: MarketSpec,
        times: Iterable[float],
        paths: int,
        seed: int | None = None,
    ) -> None:
        if paths <= 0:
            raise ValueError("paths must be positive")
        self.spec = spec
        self.times = sorted({0.0} | {float(t) for t in times if t > 0.0})
        self.n_paths = paths
        self.seed = seed if seed is not None else random.randrange(2**32)

    def path(self, n: int) -> GbmPath:
        if not 0 <= n < self.n_paths:
            raise IndexError(f"path {n} out of range")
        spec = self.spec
        rng = random.Random(f"{self.seed}:{n}")
        drift = spec.rate - spec.dividend_yield - 0.5 * spec.volatility * spec.volatility

        values = [spec.spot]
        for t0, t1 in zip(self.times, self.times[1:]):
            dt = t1 - t0
            z = rng.gauss(0.0, 1.0)
            values.append(values[-1] * math.exp(drift * dt + spec.volatility * math.sqrt(dt) * z))
        return GbmPath(spec, self.times, values)
