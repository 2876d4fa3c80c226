import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
import torch

from bayesdrive.config import QuapConfig
from bayesdrive.data.loader import DataSummary, drop_incomplete, encode_levels, index_codes
from bayesdrive.errors import ConvergenceError, FormulaError
from bayesdrive.model.formula import ModelSpec
from bayesdrive.model.linear_gaussian import (
    DTYPE,
    LinearGaussianModel,
    data_tensors,
    flatten,
    linear_predictor,
    log_posterior_flat,
    negative_log_posterior,
    unflatten,
)
from bayesdrive.model.priors import REAL
from bayesdrive.summary import precis

logger = logging.getLogger(__name__)

MAX_REDRAWS = 100


def _is_coded(values: pd.Series, n_levels: int) -> bool:
    return (
        pd.api.types.is_integer_dtype(values)
        and len(values) > 0
        and values.min() >= 0
        and values.max() < n_levels
    )


def resolve_levels(
    spec: ModelSpec, df: pd.DataFrame, levels: Optional[Mapping[str, Sequence[str]]] = None
) -> Dict[str, List[str]]:
    """Levels for every index column, taken from ``levels`` or the sorted distinct values."""
    resolved = {}
    for col in spec.index_columns():
        if levels and col in levels:
            resolved[col] = [str(x) for x in levels[col]]
        else:
            _, resolved[col] = index_codes(df[col])
    return resolved


def encode_index_columns(spec: ModelSpec, df: pd.DataFrame, levels: Mapping[str, Sequence[str]]) -> pd.DataFrame:
    # integers inside 0..K-1 are codes already; anything else is looked up by level label
    out = df.copy()
    for col in spec.index_columns():
        if col not in out.columns or _is_coded(out[col], len(levels[col])):
            continue
        try:
            out[col] = encode_levels(out[col], levels[col])
        except ValueError as exc:
            raise FormulaError(str(exc)) from exc
    return out


def _labels(spec: ModelSpec, levels: Mapping[str, Sequence[str]]) -> List[str]:
    return [label for label, _, _ in spec.layout(levels)]


def _starting_values(spec: ModelSpec, df: pd.DataFrame) -> Dict[str, float]:
    y = df[spec.outcome].astype(float)
    init = {}
    intercepts = [t for t in spec.terms if t.is_intercept]
    if intercepts and spec.priors[intercepts[0].param].support == REAL:
        init[intercepts[0].param] = float(y.mean())
    sd = float(y.std(ddof=1)) if len(y) > 1 else float("nan")
    if np.isfinite(sd) and sd > 0:
        in_support = spec.priors[spec.sigma].in_support(torch.tensor(sd, dtype=DTYPE))
        if bool(in_support):
            init[spec.sigma] = sd
    return init


def find_mode(model: LinearGaussianModel, data: Mapping[str, torch.Tensor], cfg: QuapConfig) -> float:
    optimizer = torch.optim.LBFGS(
        model.parameters(),
        lr=cfg.learning_rate,
        max_iter=cfg.max_iter,
        tolerance_grad=cfg.tolerance,
        tolerance_change=cfg.tolerance,
        history_size=cfg.history_size,
        line_search_fn="strong_wolfe",
    )

    def closure():
        optimizer.zero_grad()
        loss, _ = negative_log_posterior(model, data)
        loss.backward()
        return loss

    previous = float("inf")
    loss = previous
    passes = max(cfg.passes, 2)
    for attempt in range(passes):
        optimizer.step(closure)
        with torch.no_grad():
            loss, terms = negative_log_posterior(model, data)
        loss = float(loss)
        if not np.isfinite(loss):
            raise ConvergenceError(f"Log posterior is not finite at the optimizer's solution ({loss})")
        logger.debug(
            "Pass %d: -log posterior %.6f (log lik %.4f, log prior %.4f)",
            attempt + 1, loss, float(terms["log_likelihood"]), float(terms["log_prior"]),
        )
        if abs(previous - loss) <= 1e-10 * (1.0 + abs(loss)):
            break
        previous = loss
    else:
        logger.warning("Optimizer still moving after %d passes; mode may be inaccurate", passes)
    return loss


@dataclass
class QuapFit:
    spec: ModelSpec
    coef: pd.Series
    vcov: pd.DataFrame
    levels: Dict[str, List[str]]
    data: pd.DataFrame
    log_posterior: float
    summary: Optional[DataSummary] = None
    _chol: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def nobs(self) -> int:
        return len(self.data)

    @property
    def labels(self) -> List[str]:
        return list(self.coef.index)

    def __str__(self) -> str:
        return f"{self.spec.describe()}\n\nQuadratic approximation, {self.nobs} observations"

    def _cholesky(self) -> np.ndarray:
        if self._chol is None:
            self._chol = np.linalg.cholesky(self.vcov.to_numpy())
        return self._chol

    def _support_ok(self, draws: np.ndarray) -> np.ndarray:
        ok = np.ones(draws.shape[0], dtype=bool)
        theta = torch.as_tensor(draws, dtype=DTYPE)
        values = unflatten(self.spec, theta, self.levels)
        for name in self.spec.parameters():
            inside = self.spec.priors[name].in_support(values[name]).numpy()
            ok &= inside if inside.ndim == 1 else inside.all(axis=-1)
        return ok

    def extract_samples(self, n: int = 10000, seed: Optional[int] = None) -> pd.DataFrame:
        """Draws from the Gaussian approximation, redrawing any that fall outside a prior's support."""
        rng = np.random.default_rng(seed)
        mean = self.coef.to_numpy()
        chol = self._cholesky()
        draws = mean + rng.standard_normal((n, mean.size)) @ chol.T
        bad = ~self._support_ok(draws)
        if bad.any():
            logger.info("Redrawing %d samples outside parameter support", int(bad.sum()))
        for _ in range(MAX_REDRAWS):
            if not bad.any():
                break
            draws[bad] = mean + rng.standard_normal((int(bad.sum()), mean.size)) @ chol.T
            bad = ~self._support_ok(draws)
        else:
            if bad.any():
                raise ConvergenceError("Gaussian approximation puts too much mass outside the parameter support")
        return pd.DataFrame(draws, columns=self.labels)

    def _model_data(self, data: Optional[pd.DataFrame]) -> pd.DataFrame:
        if data is None:
            return self.data
        return encode_index_columns(self.spec, data, self.levels)

    def link(
        self,
        data: Optional[pd.DataFrame] = None,
        n: int = 1000,
        seed: Optional[int] = None,
        samples: Optional[pd.DataFrame] = None,
    ) -> np.ndarray:
        """Posterior draws of mu for each row; shape (n, rows)."""
        if samples is None:
            samples = self.extract_samples(n, seed=seed)
        return link_samples(self.spec, samples, self._model_data(data), self.levels)

    def sim(
        self,
        data: Optional[pd.DataFrame] = None,
        n: int = 1000,
        seed: Optional[int] = None,
        samples: Optional[pd.DataFrame] = None,
    ) -> np.ndarray:
        """Posterior predictive draws of the outcome; shape (n, rows)."""
        rng = np.random.default_rng(seed)
        if samples is None:
            samples = self.extract_samples(n, seed=rng.integers(2 ** 32))
        mu = link_samples(self.spec, samples, self._model_data(data), self.levels)
        sigma = samples[self.spec.sigma].to_numpy()[:, None]
        return rng.normal(mu, sigma)

    def precis(self, prob: float = 0.89) -> pd.DataFrame:
        return precis(self, prob=prob)


def link_samples(
    spec: ModelSpec, samples: pd.DataFrame, data: pd.DataFrame, levels: Mapping[str, Sequence[str]]
) -> np.ndarray:
    labels = [label for label, _, _ in spec.layout(levels)]
    missing = [label for label in labels if label not in samples.columns]
    if missing:
        raise FormulaError(f"Samples lack parameters: {missing}")
    theta = torch.as_tensor(samples[labels].to_numpy(dtype="float64"))
    values = unflatten(spec, theta, levels)
    tensors = data_tensors(spec, data, require_outcome=False)
    with torch.no_grad():
        return linear_predictor(spec, values, tensors).numpy()


def extract_prior(
    spec: ModelSpec,
    n: int = 1000,
    seed: Optional[int] = None,
    levels: Optional[Mapping[str, Sequence[str]]] = None,
) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    levels = levels or {}
    columns = {}
    for label, name, _ in spec.layout(levels):
        columns[label] = spec.priors[name].sample(rng, n)
    return pd.DataFrame(columns)


def quap(
    spec: ModelSpec,
    df: pd.DataFrame,
    cfg: Optional[QuapConfig] = None,
    levels: Optional[Mapping[str, Sequence[str]]] = None,
    summary: Optional[DataSummary] = None,
) -> QuapFit:
    cfg = cfg or QuapConfig()
    missing = [c for c in spec.columns() if c not in df.columns]
    if missing:
        raise FormulaError(f"Columns used by the model are missing from the data: {missing}")
    if levels is None and summary is not None:
        levels = summary.levels
    df = drop_incomplete(df, spec.columns())
    if df.empty:
        raise FormulaError("No complete rows to fit")
    levels = resolve_levels(spec, df, levels)
    df = encode_index_columns(spec, df, levels)
    data = data_tensors(spec, df)

    logger.info("Fitting %s on %d rows", spec.formula, len(df))
    model = LinearGaussianModel(spec, levels, init=_starting_values(spec, df))
    find_mode(model, data, cfg)

    with torch.no_grad():
        mode = flatten(spec, model.constrained()).clone()

    def objective(theta):
        return -log_posterior_flat(spec, theta, data, levels)

    hessian = torch.autograd.functional.hessian(objective, mode)
    if cfg.hessian_jitter:
        hessian = hessian + cfg.hessian_jitter * torch.eye(mode.numel(), dtype=DTYPE)
    if not torch.isfinite(hessian).all():
        raise ConvergenceError("Hessian at the mode is not finite")
    chol, info = torch.linalg.cholesky_ex(hessian)
    if int(info) != 0:
        raise ConvergenceError(
            "Hessian at the mode is not positive definite; the posterior may be improper "
            "or a parameter is not identified by the data"
        )
    vcov = torch.cholesky_inverse(chol)
    vcov = 0.5 * (vcov + vcov.T)

    labels = _labels(spec, levels)
    with torch.no_grad():
        log_post = float(log_posterior_flat(spec, mode, data, levels))
    fit = QuapFit(
        spec=spec,
        coef=pd.Series(mode.numpy(), index=labels, name="mean"),
        vcov=pd.DataFrame(vcov.numpy(), index=labels, columns=labels),
        levels=levels,
        data=df,
        log_posterior=log_post,
        summary=summary,
    )
    logger.info("Quadratic approximation done: log posterior at mode %.3f", log_post)
    return fit
