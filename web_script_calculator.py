"""Simple Flask web UI for pricing payoff scripts by Monte Carlo simulation."""
from __future__ import annotations

from flask import Flask, render_template_string, request, url_for

from monte_carlo_valuation import GbmSimulation, MarketSpec, expectations
from payoff_script import PayoffScript
from payoffs import Asset, FixedAmount
from script_compiler import ScriptError

app = Flask(__name__)

DEFAULT_FORM = {
    "spot": 100.0,
    "rate": 0.05,
    "dividend_yield": 0.0,
    "volatility": 0.2,
    "maturity": 1.0,
    "simulations": 10000,
    "strike": 100.0,
    "seed": "",
    "workers": 1,
    "script": "call = Pay(Max(S - K, 0), 1.0)\npayoff = call",
}

PAGE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Payoff Script Calculator</title>
    <style>
        body { font-family: Arial, sans-serif; margin: 2rem auto; max-width: 900px; }
        h1 { margin-bottom: 0.2rem; }
        .note { color: #444; margin-top: 0; }
        form { display: grid; grid-template-columns: repeat(2, minmax(0, 1fr)); gap: 1rem 1.5rem; }
        label { font-weight: bold; display: block; margin-bottom: 0.4rem; }
        input, textarea { width: 100%; padding: 0.4rem; font-size: 1rem; }
        textarea { min-height: 8rem; font-family: monospace; }
        .full { grid-column: span 2; }
        .result { background: #f5f5f5; padding: 1rem; border-radius: 8px; margin-top: 1rem; }
        .error { color: #b00020; font-weight: bold; }
        button { padding: 0.7rem 1.2rem; font-size: 1rem; cursor: pointer; }
        code { background: #eee; padding: 0 0.2rem; }
        pre { white-space: pre-wrap; margin: 0; }
    </style>
</head>
<body>
    <h1>Payoff Script Calculator</h1>
    <p class="note">Describe a payoff line by line and value it on simulated Black-Scholes paths.</p>

    {% if error %}
        <div class="result error">{{ error }}</div>
    {% endif %}

    {% if price %}
        <div class="result">Estimated value: <strong>{{ price }}</strong></div>
    {% endif %}

    <form method="post" action="{{ url_for('index') }}">
        <div>
            <label for="spot">Spot (S0)</label>
            <input id="spot" name="spot" type="number" step="any" value="{{ form_values.spot }}" required>
        </div>
        <div>
            <label for="rate">Risk-free rate (r)</label>
            <input id="rate" name="rate" type="number" step="any" value="{{ form_values.rate }}" required>
        </div>
        <div>
            <label for="dividend_yield">Dividend yield (q)</label>
            <input id="dividend_yield" name="dividend_yield" type="number" step="any" value="{{ form_values.dividend_yield }}" required>
        </div>
        <div>
            <label for="volatility">Volatility (σ)</label>
            <input id="volatility" name="volatility" type="number" step="any" value="{{ form_values.volatility }}" required>
        </div>
        <div>
            <label for="maturity">Maturity of S (years)</label>
            <input id="maturity" name="maturity" type="number" step="any" value="{{ form_values.maturity }}" required>
        </div>
        <div>
            <label for="strike">Strike (K)</label>
            <input id="strike" name="strike" type="number" step="any" value="{{ form_values.strike }}" required>
        </div>
        <div>
            <label for="simulations">Simulations</label>
            <input id="simulations" name="simulations" type="number" step="1" min="1" value="{{ form_values.simulations }}" required>
        </div>
        <div>
            <label for="workers">Worker threads</label>
            <input id="workers" name="workers" type="number" step="1" min="1" value="{{ form_values.workers }}" required>
        </div>
        <div class="full">
            <label for="script">Payoff script</label>
            <textarea id="script" name="script" required>{{ form_values.script }}</textarea>
            <p class="note">One assignment per line. <code>S</code> is the asset at maturity and <code>K</code> the strike. The value shown is that of <code>payoff</code>, or of the last assigned name. Example: <code>payoff = Pay(Max(S - K, 0), 01Jan2027)</code></p>
        </div>
        <div>
            <label for="seed">Random seed (optional)</label>
            <input id="seed" name="seed" type="number" step="1" value="{{ form_values.seed }}">
        </div>
        <div class="full">
            <button type="submit">Calculate</button>
        </div>
    </form>

    {% if script_log %}
        <div class="result">
            <strong>Script log:</strong>
            <pre>{% for message in script_log %}{{ message }}
{% endfor %}</pre>
        </div>
    {% endif %}

    {% if expressions %}
        <div class="result">
            <strong>Parsed expressions:</strong>
            <pre>{% for expression in expressions %}{{ expression }}
{% endfor %}</pre>
        </div>
    {% endif %}

    <div class="result">
        <strong>Tips:</strong>
        <ul>
            <li>Arithmetic: <code>+ - * /</code>, comparisons <code>== != &lt; &lt;= &gt; &gt;=</code>, <code>&amp;&amp;</code>, <code>||</code>.</li>
            <li>Functions: <code>Min</code>, <code>Max</code>, <code>IfThenElse</code>, <code>Cache</code>, <code>Pay(x, t)</code>, <code>PayoffAt(x, t)</code> with <code>t</code> in years or as a date like <code>01Jan2027</code>.</li>
            <li>A first line <code>NonRecursive</code> switches to the flat legacy grammar.</li>
        </ul>
    </div>
</body>
</html>
"""


def _to_float(value: str, *, field: str) -> float:
    try:
        return float(value)
    except ValueError as exc:  # pragma: no cover - interactive helper
        raise ValueError(f"{field} must be numeric") from exc


@app.route("/", methods=["GET", "POST"])
def index():
    form_values = DEFAULT_FORM.copy()
    error: str | None = None
    price: str | None = None
    script_log: list[str] = []
    expressions: list[str] = []

    if request.method == "POST":
        try:
            form_values.update({
                "spot": _to_float(request.form.get("spot", ""), field="Spot"),
                "rate": _to_float(request.form.get("rate", ""), field="Rate"),
                "dividend_yield": _to_float(request.form.get("dividend_yield", ""), field="Dividend yield"),
                "volatility": _to_float(request.form.get("volatility", ""), field="Volatility"),
                "maturity": _to_float(request.form.get("maturity", ""), field="Maturity"),
                "strike": _to_float(request.form.get("strike", ""), field="Strike"),
                "simulations": int(_to_float(request.form.get("simulations", ""), field="Simulations")),
                "workers": int(_to_float(request.form.get("workers", "1"), field="Workers")),
                "script": request.form.get("script", DEFAULT_FORM["script"]),
                "seed": request.form.get("seed", ""),
            })

            seed_value = int(form_values["seed"]) if str(form_values["seed"]).strip() else None
            spec = MarketSpec(
                spot=float(form_values["spot"]),
                rate=float(form_values["rate"]),
                volatility=float(form_values["volatility"]),
                dividend_yield=float(form_values["dividend_yield"]),
            )
            try:
                script = PayoffScript(
                    ["S", "K"],
                    [Asset(float(form_values["maturity"]), spec.alias), FixedAmount(float(form_values["strike"]))],
                    str(form_values["script"]).splitlines(),
                )
            except ScriptError as exc:
                raise ValueError(f"Script rejected: {exc}") from exc
            script_log = script.script_log
            expressions = script.expressions

            simulation = GbmSimulation(
                spec,
                times=script.observation_times(),
                paths=int(form_values["simulations"]),
                seed=seed_value,
            )
            (value,) = expectations(simulation, [script], workers=int(form_values["workers"]))
            price = f"{value:.4f}"
        except Exception as exc:  # pragma: no cover - interactive handler
            error = str(exc)

    return render_template_string(
        PAGE,
        form_values=form_values,
        error=error,
        price=price,
        script_log=script_log,
        expressions=expressions,
    )


def create_app() -> Flask:
    """Factory for unit tests or external servers."""
    return app


if __name__ == "__main__":  # pragma: no cover - manual run helper
    app.run(debug=True)
