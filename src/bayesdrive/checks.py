import logging
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from bayesdrive.errors import FormulaError
from bayesdrive.model.formula import ModelSpec
from bayesdrive.model.quap import QuapFit, encode_index_columns, extract_prior, link_samples, resolve_levels
from bayesdrive.summary import PI

logger = logging.getLogger(__name__)


def prior_predictive(
    spec: ModelSpec,
    df: pd.DataFrame,
    n: int = 1000,
    seed: Optional[int] = None,
    levels: Optional[Mapping[str, Sequence[str]]] = None,
    observations: bool = False,
) -> np.ndarray:
    """Prior draws of mu (or of simulated outcomes) for each row of ``df``; shape (n, rows)."""
    rng = np.random.default_rng(seed)
    levels = resolve_levels(spec, df, levels)
    samples = extract_prior(spec, n, seed=rng.integers(2 ** 32), levels=levels)
    mu = link_samples(spec, samples, encode_index_columns(spec, df, levels), levels)
    if not observations:
        return mu
    return rng.normal(mu, samples[spec.sigma].to_numpy()[:, None])


def _grid_frame(spec: ModelSpec, predictor: str, x: np.ndarray, held: Optional[Mapping[str, float]]) -> pd.DataFrame:
    if predictor not in spec.predictors():
        raise FormulaError(f"{predictor!r} is not a predictor of {spec.formula}")
    frame = {c: np.zeros_like(x) for c in spec.predictors()}
    for col in spec.index_columns():
        frame[col] = np.zeros(x.shape[0], dtype=int)
    for col, value in (held or {}).items():
        frame[col] = np.full(x.shape[0], value)
    frame[predictor] = x
    return pd.DataFrame(frame)


def prior_predictive_lines(
    spec: ModelSpec,
    predictor: str,
    x_range: Tuple[float, float] = (-2.0, 2.0),
    n: int = 100,
    points: int = 30,
    seed: Optional[int] = None,
    bounds: Optional[Tuple[float, float]] = None,
    levels: Optional[Mapping[str, Sequence[str]]] = None,
) -> Tuple[np.ndarray, np.ndarray, Optional[float]]:
    levels = dict(levels or {})
    for col in spec.index_columns():
        levels.setdefault(col, ["0"])
    x = np.linspace(x_range[0], x_range[1], points)
    samples = extract_prior(spec, n, seed=seed, levels=levels)
    lines = link_samples(spec, samples, _grid_frame(spec, predictor, x, None), levels)
    outside = None
    if bounds is not None:
        lower, upper = bounds
        outside = float(np.mean(((lines < lower) | (lines > upper)).any(axis=1)))
        logger.info("%.0f%% of prior lines leave [%g, %g]", 100 * outside, lower, upper)
    return x, lines, outside


def posterior_predictive(
    fit: QuapFit,
    n: int = 1000,
    prob: float = 0.89,
    seed: Optional[int] = None,
) -> Tuple[pd.DataFrame, float]:
    rng = np.random.default_rng(seed)
    samples = fit.extract_samples(n, seed=rng.integers(2 ** 32))
    mu = fit.link(samples=samples)
    sims = fit.sim(samples=samples, seed=rng.integers(2 ** 32))
    mu_pi = PI(mu, prob=prob)
    sim_pi = PI(sims, prob=prob)
    observed = fit.data[fit.spec.outcome].to_numpy(dtype=float)
    table = pd.DataFrame(
        {
            "observed": observed,
            "mu_mean": mu.mean(axis=0),
            "mu_lower": mu_pi[0],
            "mu_upper": mu_pi[1],
            "pred_lower": sim_pi[0],
            "pred_upper": sim_pi[1],
        }
    )
    table["residual"] = table["observed"] - table["mu_mean"]
    coverage = float(np.mean((observed >= sim_pi[0]) & (observed <= sim_pi[1])))
    logger.info("Posterior predictive coverage %.3f at %.0f%% intervals", coverage, 100 * prob)
    return table, coverage


def counterfactual(
    fit: QuapFit,
    predictor: str,
    values: Sequence[float],
    held: Optional[Mapping[str, float]] = None,
    n: int = 1000,
    prob: float = 0.89,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    x = np.asarray(values, dtype=float)
    grid = _grid_frame(fit.spec, predictor, x, held)
    samples = fit.extract_samples(n, seed=rng.integers(2 ** 32))
    mu = fit.link(grid, samples=samples)
    sims = fit.sim(grid, samples=samples, seed=rng.integers(2 ** 32))
    mu_pi = PI(mu, prob=prob)
    sim_pi = PI(sims, prob=prob)
    return pd.DataFrame(
        {
            predictor: x,
            "mu_mean": mu.mean(axis=0),
            "mu_lower": mu_pi[0],
            "mu_upper": mu_pi[1],
            "pred_lower": sim_pi[0],
            "pred_upper": sim_pi[1],
        }
    )
