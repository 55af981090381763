import math

import pytest

import payoffs as po
from fake_paths import FlatPath, ListSimulation
from monte_carlo_valuation import GbmSimulation, MarketSpec, _chunks, expectations
from payoff_script import PayoffScript


def black_scholes_call(spot, strike, rate, volatility, maturity):
    d1 = (math.log(spot / strike) + (rate + 0.5 * volatility**2) * maturity) / (volatility * math.sqrt(maturity))
    d2 = d1 - volatility * math.sqrt(maturity)
    cdf = lambda x: 0.5 * (1.0 + math.erf(x / math.sqrt(2.0)))
    return spot * cdf(d1) - strike * math.exp(-rate * maturity) * cdf(d2)


def call_script(maturity=1.0):
    return PayoffScript(
        ["S", "K"],
        [po.Asset(maturity, "S"), po.FixedAmount(100.0)],
        ["payoff = Pay(Max(S - K, 0), 1.0)", "forward = Pay(S - K, 1.0)"],
    )


def test_average_over_paths():
    simulation = ListSimulation([FlatPath(1.0), FlatPath(2.0), FlatPath(6.0)])
    assert expectations(simulation, [po.Asset(0.0, "S")]) == [3.0]


def test_chunks_cover_all_paths():
    assert [len(c) for c in _chunks(10, 3)] == [4, 3, 3]
    assert [list(c) for c in _chunks(2, 4)] == [[0], [1]]
    assert sum(len(c) for c in _chunks(1001, 8)) == 1001


def test_parallel_matches_sequential():
    script = call_script()
    spec = MarketSpec(spot=100.0, rate=0.05, volatility=0.2)
    simulation = GbmSimulation(spec, times=script.observation_times(["payoff", "forward"]), paths=400, seed=11)
    sequential = script.npv(simulation, ["payoff", "forward"])
    parallel = script.npv(simulation, ["payoff", "forward"], workers=4)
    assert parallel == pytest.approx(sequential, rel=1e-9, abs=1e-9)
    assert script.npv(simulation, ["payoff", "forward"], workers=4) == parallel


def test_parallel_cache_memoises_per_path():
    script = PayoffScript(
        ["S"],
        [po.Asset(1.0, "S")],
        ["c = Cache(S * 2)", "payoff = c + c"],
    )
    simulation = GbmSimulation(MarketSpec(spot=50.0, rate=0.0, volatility=0.3), times=[1.0], paths=300, seed=3)
    assert script.npv(simulation, ["payoff"], workers=3) == pytest.approx(script.npv(simulation, ["payoff"]), rel=1e-9)


def test_call_price_close_to_black_scholes():
    script = call_script()
    spec = MarketSpec(spot=100.0, rate=0.05, volatility=0.2)
    simulation = GbmSimulation(spec, times=script.observation_times(), paths=20000, seed=2024)
    (price,) = script.npv(simulation, ["payoff"], workers=2)
    assert price == pytest.approx(black_scholes_call(100.0, 100.0, 0.05, 0.2, 1.0), abs=0.6)


def test_forward_is_martingale():
    script = call_script()
    spec = MarketSpec(spot=100.0, rate=0.05, volatility=0.2)
    simulation = GbmSimulation(spec, times=[1.0], paths=20000, seed=5)
    (forward,) = script.npv(simulation, ["forward"])
    assert forward == pytest.approx(100.0 - 100.0 * math.exp(-0.05), abs=0.6)


def test_zero_paths_and_bad_workers():
    with pytest.raises(ValueError):
        expectations(ListSimulation([]), [po.FixedAmount(1.0)])
    with pytest.raises(ValueError):
        expectations(ListSimulation([FlatPath()]), [po.FixedAmount(1.0)], workers=0)


def test_gbm_paths_are_reproducible():
    spec = MarketSpec(spot=100.0, rate=0.01, volatility=0.25)
    simulation = GbmSimulation(spec, times=[0.5, 1.0, -1.0], paths=10, seed=42)
    assert simulation.times == [0.0, 0.5, 1.0]
    first = simulation.path(7)
    again = GbmSimulation(spec, times=[1.0, 0.5], paths=10, seed=42).path(7)
    assert first.values == again.values
    assert first.values != simulation.path(6).values
    assert first.asset(0.0, "S") == 100.0
    assert first.asset(0.75, "S") == first.asset(0.5, "S")
    assert first.asset(5.0, "S") == first.values[-1]
    assert first.numeraire(2.0) == pytest.approx(math.exp(0.02))


def test_gbm_rejects_bad_inputs():
    spec = MarketSpec(spot=100.0, rate=0.0, volatility=0.1)
    with pytest.raises(ValueError):
        GbmSimulation(spec, times=[1.0], paths=0)
    with pytest.raises(IndexError):
        GbmSimulation(spec, times=[1.0], paths=2).path(2)
    with pytest.raises(KeyError):
        GbmSimulation(spec, times=[1.0], paths=2).path(0).asset(1.0, "X")
    with pytest.raises(ValueError):
        MarketSpec(spot=-1.0, rate=0.0, volatility=0.1)
    with pytest.raises(ValueError):
        MarketSpec(spot=1.0, rate=0.0, volatility=-0.1)


def test_neighbouring_seeds_do_not_share_streams():
    spec = MarketSpec(spot=100.0, rate=0.0, volatility=0.2)
    shifted = GbmSimulation(spec, times=[1.0], paths=1_000_004, seed=0).path(1_000_003)
    other = GbmSimulation(spec, times=[1.0], paths=1, seed=1).path(0)
    assert shifted.values != other.values
    assert GbmSimulation(spec, times=[1.0], paths=2, seed=0).path(1).values != other.values
