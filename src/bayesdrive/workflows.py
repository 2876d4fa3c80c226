import argparse
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import matplotlib.pyplot as plt
import pandas as pd

from bayesdrive.checks import counterfactual, posterior_predictive, prior_predictive_lines
from bayesdrive.config import DrivingSimulationConfig, SamplingConfig, SimulationConfig
from bayesdrive.dag import adjustment_sets, implied_conditional_independencies, parse_dag, test_independencies
from bayesdrive.data.loader import load_csv, prepare
from bayesdrive.data.sim_generator import simulate_driving, simulate_height_weight
from bayesdrive.errors import BayesDriveError
from bayesdrive.logging_config import setup_logging
from bayesdrive.model.formula import parse_formula
from bayesdrive.model.quap import QuapFit, quap
from bayesdrive.plotting import (
    plot_coeftab,
    plot_dag,
    plot_posterior_regression,
    plot_ppc,
    plot_precis,
    plot_prior_lines,
    plot_samples_density,
    save_figure,
)
from bayesdrive.summary import HPDI, coeftab, format_table

logger = logging.getLogger(__name__)

DRIVING_DAG = """
age -> experience -> reaction_time
age -> reaction_time
phone_use -> reaction_time
reaction_time -> braking_distance
speed -> braking_distance
"""


@dataclass
class AnalysisResult:
    name: str
    fit: QuapFit
    table: pd.DataFrame
    figures: Dict[str, plt.Figure] = field(default_factory=dict)
    extras: Dict[str, object] = field(default_factory=dict)


def height_weight_analysis(
    cfg: Optional[SimulationConfig] = None,
    sampling: Optional[SamplingConfig] = None,
    df: Optional[pd.DataFrame] = None,
) -> AnalysisResult:
    cfg = cfg or SimulationConfig()
    sampling = sampling or SamplingConfig()
    df = simulate_height_weight(cfg) if df is None else df.copy()
    df["height_c"] = df["height"] - df["height"].mean()

    spec = parse_formula(
        "weight ~ a + b*height_c",
        {"a": "normal(50, 10)", "b": "lognormal(0, 1)", "sigma": "uniform(0, 50)"},
        name="height_weight",
    )
    x_range = (float(df["height_c"].min()), float(df["height_c"].max()))
    x, lines, outside = prior_predictive_lines(
        spec, "height_c", x_range=x_range, n=100, seed=sampling.seed, bounds=(0.0, 150.0)
    )

    fit = quap(spec, df)
    table = fit.precis(prob=sampling.prob)
    lo, hi = table.loc["b"].iloc[2], table.loc["b"].iloc[3]
    samples = fit.extract_samples(sampling.samples, seed=sampling.seed)
    extras = {
        "b_hpdi": HPDI(samples["b"], prob=sampling.prob),
        "true": {"a": cfg.intercept_kg, "b": cfg.slope_kg_per_cm, "sigma": cfg.sigma_kg},
        "slope_recovered": bool(lo <= cfg.slope_kg_per_cm <= hi),
        "prior_lines_outside": outside,
    }
    figures = {
        "prior_lines": plot_prior_lines(x, lines, bounds=(0.0, 150.0), xlabel="height (centred, cm)", ylabel="weight (kg)"),
        "posterior": plot_posterior_regression(fit, "height_c", prob=sampling.prob, seed=sampling.seed),
        "precis": plot_precis(fit, prob=sampling.prob),
        "slope_density": plot_samples_density(samples["b"], prob=sampling.prob, label="b (kg per cm)"),
    }
    return AnalysisResult("height", fit, table, figures, extras)


def driving_reaction_analysis(
    df: Optional[pd.DataFrame] = None,
    cfg: Optional[DrivingSimulationConfig] = None,
    sampling: Optional[SamplingConfig] = None,
) -> AnalysisResult:
    sampling = sampling or SamplingConfig()
    raw = simulate_driving(cfg or DrivingSimulationConfig()) if df is None else df
    dag = parse_dag(DRIVING_DAG)
    sets = adjustment_sets(dag, "experience", "reaction_time")
    # phone use enters the partial-correlation checks by its category code
    coded = raw.assign(phone_use=raw["phone_use"].astype("category").cat.codes)
    independencies = test_independencies(dag, coded)

    data, summary = prepare(raw, ["age", "experience", "reaction_time"], ["phone_use"])
    priors = {"a": "normal(0, 0.5)", "bE": "normal(0, 0.5)", "bA": "normal(0, 0.5)", "sigma": "exponential(1)"}
    adjusted = parse_formula("reaction_time_s ~ a[phone_use] + bE*experience_s + bA*age_s", priors, name="adjusted")
    naive_priors = {k: v for k, v in priors.items() if k != "bA"}
    naive = parse_formula("reaction_time_s ~ a[phone_use] + bE*experience_s", naive_priors, name="naive")

    fit = quap(adjusted, data, summary=summary)
    naive_fit = quap(naive, data, summary=summary)
    table = fit.precis(prob=sampling.prob)
    extras = {
        "dag": dag,
        "adjustment_sets": sets,
        "implied_independencies": [str(i) for i in implied_conditional_independencies(dag)],
        "independency_tests": independencies,
        "coeftab": coeftab({"naive": naive_fit, "adjusted": fit}),
        "counterfactual": counterfactual(fit, "experience_s", [-2, -1, 0, 1, 2], seed=sampling.seed),
        "phone_levels": summary.levels["phone_use"],
    }
    figures = {
        "dag": plot_dag(dag, highlight={"experience": "lightblue", "reaction_time": "lightgreen"}),
        "coeftab": plot_coeftab({"naive": naive_fit, "adjusted": fit}, params=["bE", "bA"]),
        "precis": plot_precis(fit, prob=sampling.prob),
    }
    return AnalysisResult("driving", fit, table, figures, extras)


def braking_analysis(
    df: Optional[pd.DataFrame] = None,
    cfg: Optional[DrivingSimulationConfig] = None,
    sampling: Optional[SamplingConfig] = None,
) -> AnalysisResult:
    sampling = sampling or SamplingConfig()
    raw = simulate_driving(cfg or DrivingSimulationConfig()) if df is None else df
    data, summary = prepare(raw, ["reaction_time", "speed", "braking_distance"])
    spec = parse_formula(
        "braking_distance_s ~ a + bR*reaction_time_s + bS*speed_s + bS2*speed_s^2",
        {
            "a": "normal(0, 0.2)",
            "bR": "normal(0, 0.5)",
            "bS": "normal(0, 0.5)",
            "bS2": "normal(0, 0.25)",
            "sigma": "exponential(1)",
        },
        name="braking",
    )
    x, lines, outside = prior_predictive_lines(spec, "speed_s", n=100, seed=sampling.seed, bounds=(-3.0, 3.0))
    fit = quap(spec, data, summary=summary)
    ppc, coverage = posterior_predictive(fit, n=1000, prob=sampling.prob, seed=sampling.seed)
    extras = {"ppc": ppc, "coverage": coverage, "prior_lines_outside": outside}
    figures = {
        "prior_lines": plot_prior_lines(x, lines, bounds=(-3.0, 3.0), xlabel="speed (std)", ylabel="braking distance (std)"),
        "ppc": plot_ppc(ppc),
        "posterior": plot_posterior_regression(fit, "speed_s", prob=sampling.prob, seed=sampling.seed),
    }
    return AnalysisResult("braking", fit, fit.precis(prob=sampling.prob), figures, extras)


ANALYSES: Dict[str, Callable[..., AnalysisResult]] = {
    "height": height_weight_analysis,
    "driving": driving_reaction_analysis,
    "braking": braking_analysis,
}


def run_analysis(name: str, df: Optional[pd.DataFrame] = None, seed: Optional[int] = None) -> AnalysisResult:
    if name not in ANALYSES:
        raise KeyError(f"Unknown analysis {name!r}; choose from {sorted(ANALYSES)}")
    sampling = SamplingConfig(seed=seed)
    if name == "height":
        return height_weight_analysis(SimulationConfig(seed=seed), sampling, df=df)
    return ANALYSES[name](df, DrivingSimulationConfig(seed=seed), sampling)


def report(result: AnalysisResult) -> str:
    lines = [f"== {result.name}", result.fit.spec.describe(), "", format_table(result.table)]
    for key, value in result.extras.items():
        if isinstance(value, pd.DataFrame):
            lines += ["", f"-- {key}", format_table(value)]
        elif key != "dag":
            lines.append(f"{key}: {value}")
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(description="Run a scripted Bayesian analysis.")
    parser.add_argument("--analysis", choices=sorted(ANALYSES) + ["all"], default="all")
    parser.add_argument("--data", default=None, help="CSV to analyse instead of simulated data")
    parser.add_argument("--out-dir", default="outputs", help="Directory for figures")
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()
    setup_logging()

    names = sorted(ANALYSES) if args.analysis == "all" else [args.analysis]
    try:
        df = load_csv(args.data) if args.data else None
        results = [run_analysis(name, df=df, seed=args.seed) for name in names]
    except (BayesDriveError, FileNotFoundError, KeyError, ValueError) as exc:
        logger.error("Analysis failed: %s", exc)
        raise SystemExit(1)
    for name, result in zip(names, results):
        print(report(result))
        print()
        for fig_name, fig in result.figures.items():
            save_figure(fig, os.path.join(args.out_dir, f"{name}_{fig_name}.png"))


if __name__ == "__main__":
    main()
