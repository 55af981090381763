import datetime
import math
import logging

import pytest

import payoffs as po
from fake_paths import ClockPath, CountingPayoff, FlatPath, ListSimulation
from payoff_script import PayoffScript
from script_compiler import DiagnosticCategory, ScriptError, UnknownExpressionError
from script_syntax import ExpressionKind as K
from script_syntax import TOO_DEEP, ParseResult, SyntaxNode, parse_line

TODAY = datetime.date(2020, 1, 1)


def compile_lines(*lines, keys=(), payoffs=(), **kwargs):
    return PayoffScript(list(keys), list(payoffs), list(lines), evaluation_date=TODAY, **kwargs)


@pytest.mark.parametrize("literal", ["5", "-2.5", "1e3", "0", "0.125"])
def test_literal_script_evaluates_to_literal(literal):
    script = compile_lines(f"x = {literal}")
    for path in (FlatPath(1.0), FlatPath(500.0, rate=0.1), ClockPath()):
        assert script.payoffs["x"].at(path) == float(literal)
        assert script.at(path) == float(literal)


def test_fixed_payoff_expectation_is_exact():
    script = compile_lines("payoff = 5")
    simulation = ListSimulation([FlatPath(100.0, rate=0.03)] * 4)
    assert script.npv(simulation, ["payoff"]) == [5.0]


def test_name_resolution_shares_node():
    script = compile_lines("a = 3", "b = a")
    assert script.payoffs["b"] is script.payoffs["a"]
    assert script.payoffs["b"].observation_time == script.payoffs["a"].observation_time


def test_overwrite_disabled_keeps_old_binding():
    script = compile_lines("a = 1", "a = 2", overwrite=False)
    assert script.payoffs["a"].at(FlatPath()) == 1.0
    errors = script.errors()
    assert len(errors) == 1
    assert errors[0].line == 1
    assert "a = 2" in errors[0].message


def test_overwrite_enabled_replaces():
    script = compile_lines("a = 1", "a = 2")
    assert script.payoffs["a"].at(FlatPath()) == 2.0
    categories = [d.category for d in script.diagnostics if d.category is not DiagnosticCategory.INFO]
    assert categories == [DiagnosticCategory.INSERT, DiagnosticCategory.REPLACE]
    assert script.script_log[-1] == "Replace line 1: 'a = 2'"


def test_unknown_identifier_is_one_error_and_no_binding():
    script = compile_lines("y = 1", "x = undefinedName")
    errors = script.errors()
    assert len(errors) == 1
    assert "undefinedName" in errors[0].message
    assert errors[0].line == 1
    assert "x" not in script.payoffs


def test_result_prefers_payoff_name():
    script = compile_lines("a = 1", "b = 2", "payoff = 3", "c = 4")
    assert script.result is script.payoffs["payoff"]
    assert script.at(FlatPath()) == 3.0


def test_result_falls_back_to_latest_binding():
    assert compile_lines("a = 1", "b = 2").result.at(FlatPath()) == 2.0
    replaced = compile_lines("a = 1", "b = 2", "a = 5")
    assert replaced.result is replaced.payoffs["a"]


def test_result_observation_time_becomes_script_time():
    script = compile_lines("payoff = Pay(1, 2.0)")
    assert script.observation_time == 2.0


def test_empty_script_without_seeds_is_fatal():
    with pytest.raises(ScriptError):
        compile_lines()


def test_only_failing_lines_is_fatal():
    with pytest.raises(ScriptError, match="no payoffs"):
        compile_lines("x = missing")


def test_seed_validation():
    with pytest.raises(ScriptError):
        PayoffScript(["a", "b"], [po.FixedAmount(1.0)], [])
    with pytest.raises(ScriptError):
        PayoffScript(["a", "a"], [po.FixedAmount(1.0), po.FixedAmount(2.0)], [], overwrite=False)
    script = PayoffScript(["a", "a"], [po.FixedAmount(1.0), po.FixedAmount(2.0)], [])
    assert script.at(FlatPath()) == 2.0


def test_seeds_only():
    seed = po.FixedAmount(4.0)
    script = PayoffScript(["k"], [seed], [])
    assert script.result is seed
    assert script.script_log == []


@pytest.mark.parametrize(
    "line, token",
    [
        ("x = Pay(1, 32Zzz2020)", "32Zzz2020"),
        ('x = Pay(1, "1Jan2020")', "1Jan2020"),
        ("x = PayoffAt(1, 01Foo2020)", "01Foo2020"),
    ],
)
def test_malformed_dates_are_diagnosed(line, token):
    script = compile_lines("a = 1", line)
    errors = script.errors()
    assert len(errors) == 1
    assert token in errors[0].message
    assert "x" not in script.payoffs


def test_dates_relative_to_evaluation_date():
    script = compile_lines("x = Pay(2, 01Jan2021)")
    assert script.payoffs["x"].observation_time == 366 / 365.0


def test_payoff_at_samples_seed_at_other_time():
    script = compile_lines("y = PayoffAt(S, 0.5)", keys=["S"], payoffs=[po.Asset(1.0, "S")])
    assert script.payoffs["y"].observation_time == 0.5
    assert script.payoffs["y"].at(ClockPath(slope=100.0)) == 50.0


def test_parser_failures_are_recorded():
    script = compile_lines("x = = 1", "1 + 2", "", "a = 1", "b = Min(a)")
    messages = script.script_log
    errors = script.errors()
    assert [e.line for e in errors] == [0, 1, 2, 4]
    assert errors[0].message.startswith("syntax error")
    assert str(errors[1]) == "Error line 1: Assignment expected."
    assert str(errors[2]) == "Error line 2: Empty expression tree."
    assert str(errors[3]) == "Error line 4: 2 child expressions expected, but 1 found."
    assert "Insert line 3: 'a = 1'" in messages
    assert set(script.payoffs) == {"a"}


def test_expression_trace():
    script = compile_lines("x = 1", "bad = = 2", "1 + x")
    assert script.expressions == ["L0:Assignment(x, Number(1))", "L2:Plus(Number(1), Identifier(x))"]


def test_operators_end_to_end():
    script = compile_lines(
        "a = 6 / 4",
        "b = 3 > 2",
        "c = 1 && 0",
        "d = 2 if a > 1 else 3",
        "e = IfThenElse(c, 10, 20)",
        "f = Max(a - 2, 0) * -2",
    )
    path = FlatPath()
    values = {name: payoff.at(path) for name, payoff in script.payoffs.items()}
    assert values == {"a": 1.5, "b": 1.0, "c": 0.0, "d": 2.0, "e": 20.0, "f": -0.0}


def test_cache_shared_across_names():
    counting = CountingPayoff()
    script = compile_lines("c = Cache(n)", "d = c + c", "payoff = d * c", keys=["n"], payoffs=[counting])
    assert script.at(FlatPath(3.0)) == 18.0
    assert counting.calls == 1


def test_script_can_seed_another_script():
    inner = compile_lines("payoff = 4")
    outer = PayoffScript(["inner"], [inner], ["x = inner * 2"])
    assert outer.at(FlatPath()) == 8.0


def test_observation_times():
    script = compile_lines("p = Pay(S, 2.0)", "q = 1", keys=["S"], payoffs=[po.Asset(1.0, "S")])
    assert script.observation_times(["p", "q"]) == [0.0, 1.0, 2.0]
    assert script.observation_times(["q", "p"]) == [0.0, 1.0, 2.0]
    assert script.observation_times() == {0.0}
    with pytest.raises(KeyError):
        script.observation_times(["missing"])


def test_npv_discounts_and_rejects_unknown_names():
    script = compile_lines("x = Pay(10, 1.0)", "y = 10")
    simulation = ListSimulation([FlatPath(rate=0.05), FlatPath(rate=0.05)])
    x, y = script.npv(simulation, ["x", "y"])
    assert x == pytest.approx(10.0 * 0.951229424500714)
    assert y == 10.0
    with pytest.raises(KeyError):
        script.npv(simulation, ["x", "z"])


def test_custom_parser_unknown_kind_is_fatal(caplog):
    nested = SyntaxNode(K.ASSIGNMENT, children=(SyntaxNode(K.NUMBER, leaves=("1",)),), leaves=("y",))

    def parser(line):
        return ParseResult(SyntaxNode(K.ASSIGNMENT, children=(nested,), leaves=("x",)), 0)

    with caplog.at_level(logging.WARNING):
        with pytest.raises(UnknownExpressionError):
            PayoffScript(["a"], [po.FixedAmount(1.0)], ["x = y = 1"], parser=parser)
    assert "Unknown expression kind" in caplog.text


def test_empty_target_rejected():
    def parser(line):
        tree = SyntaxNode(K.ASSIGNMENT, children=(SyntaxNode(K.NUMBER, leaves=("1",)),), leaves=("",))
        return ParseResult(tree, 0)

    script = PayoffScript(["a"], [po.FixedAmount(1.0)], ["= 1"], parser=parser)
    assert str(script.errors()[0]) == "Error line 0: Non-empty identifier expected."
    assert set(script.payoffs) == {"a"}


def test_overly_long_line_is_skipped():
    script = compile_lines("x = " + " + ".join(["1"] * 600), "y = 2")
    assert "x" not in script.payoffs
    assert script.payoffs["y"].at(FlatPath()) == 2.0
    errors = script.errors()
    assert len(errors) == 1
    assert errors[0].line == 0


def test_deep_tree_from_custom_parser_is_skipped():
    deep = SyntaxNode(K.NUMBER, leaves=("1",))
    for _ in range(5000):
        deep = SyntaxNode(K.UNARY_MINUS, children=(deep,))

    def parser(line):
        if line == "x = deep":
            return ParseResult(SyntaxNode(K.ASSIGNMENT, children=(deep,), leaves=("x",)), 0)
        return parse_line(line)

    script = compile_lines("x = deep", "y = 2", parser=parser)
    assert set(script.payoffs) == {"y"}
    assert [str(e) for e in script.errors()] == [f"Error line 0: {TOO_DEEP}"]


def test_division_by_zero_follows_ieee():
    seeds = dict(keys=["S"], payoffs=[po.Asset(1.0, "S")])
    script = compile_lines("payoff = 1 / (S - 100)", "flat = (S - 100) / (S - 100)", "neg = -1 / (S - 100)", **seeds)
    simulation = ListSimulation([FlatPath(100.0), FlatPath(101.0)])
    assert script.npv(simulation, ["payoff"]) == [math.inf]
    assert script.npv(simulation, ["neg"]) == [-math.inf]
    assert math.isnan(script.payoffs["flat"].at(FlatPath(100.0)))
    assert script.payoffs["flat"].at(FlatPath(101.0)) == 1.0
