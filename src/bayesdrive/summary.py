from __future__ import annotations

import math
from typing import Dict, Mapping, Union

import numpy as np
import pandas as pd
import torch


def normal_quantile(p: float) -> float:
    if not 0.0 < p < 1.0:
        raise ValueError(f"Probability must be in (0, 1), got {p}")
    normal = torch.distributions.Normal(torch.tensor(0.0, dtype=torch.float64), 1.0)
    return float(normal.icdf(torch.tensor(p, dtype=torch.float64)))


def _check_prob(prob: float) -> None:
    if not 0.0 < prob < 1.0:
        raise ValueError(f"Interval probability must be in (0, 1), got {prob}")


def interval_labels(prob: float):
    tail = (1.0 - prob) / 2.0 * 100.0
    return f"{tail:.1f}%", f"{100.0 - tail:.1f}%"


def PI(samples, prob: float = 0.89, axis: int = 0) -> np.ndarray:
    """Central percentile interval; returns [lower, upper] stacked along the first axis."""
    _check_prob(prob)
    x = np.asarray(samples, dtype=float)
    tail = (1.0 - prob) / 2.0
    return np.nanquantile(x, [tail, 1.0 - tail], axis=axis)


def _hpdi_1d(x: np.ndarray, prob: float) -> np.ndarray:
    x = np.sort(x[~np.isnan(x)])
    n = x.shape[0]
    if n == 0:
        return np.array([np.nan, np.nan])
    width = max(int(math.ceil(prob * n)), 1)
    if width >= n:
        return np.array([x[0], x[-1]])
    spans = x[width - 1:] - x[: n - width + 1]
    start = int(np.argmin(spans))
    return np.array([x[start], x[start + width - 1]])


def HPDI(samples, prob: float = 0.89, axis: int = 0) -> np.ndarray:
    """Narrowest interval containing ``prob`` of the samples; [lower, upper] on the first axis, like PI."""
    _check_prob(prob)
    x = np.asarray(samples, dtype=float)
    if x.ndim == 1:
        return _hpdi_1d(x, prob)
    return np.moveaxis(np.apply_along_axis(_hpdi_1d, axis, x, prob), axis, 0)


def _precis_from_fit(fit, prob: float) -> pd.DataFrame:
    lo_label, hi_label = interval_labels(prob)
    z = normal_quantile(0.5 + prob / 2.0)
    mean = fit.coef
    sd = pd.Series(np.sqrt(np.diag(fit.vcov.to_numpy())), index=mean.index)
    return pd.DataFrame({"mean": mean, "sd": sd, lo_label: mean - z * sd, hi_label: mean + z * sd})


def _precis_from_samples(samples: pd.DataFrame, prob: float) -> pd.DataFrame:
    lo_label, hi_label = interval_labels(prob)
    numeric = samples.select_dtypes(include=[np.number])
    bounds = PI(numeric.to_numpy(), prob=prob, axis=0)
    return pd.DataFrame(
        {
            "mean": numeric.mean(),
            "sd": numeric.std(ddof=1),
            lo_label: bounds[0],
            hi_label: bounds[1],
        },
        index=numeric.columns,
    )


def precis(obj, prob: float = 0.89) -> pd.DataFrame:
    _check_prob(prob)
    if hasattr(obj, "coef") and hasattr(obj, "vcov"):
        return _precis_from_fit(obj, prob)
    if isinstance(obj, pd.Series):
        obj = obj.to_frame()
    if isinstance(obj, Mapping):
        obj = pd.DataFrame({k: np.asarray(v) for k, v in obj.items()})
    if not isinstance(obj, pd.DataFrame):
        raise TypeError(f"Cannot summarise object of type {type(obj).__name__}")
    return _precis_from_samples(obj, prob)


def coeftab(fits: Mapping[str, object]) -> pd.DataFrame:
    columns: Dict[str, pd.Series] = {name: fit.coef for name, fit in fits.items()}
    table = pd.DataFrame(columns)
    order = []
    for series in columns.values():
        order.extend(p for p in series.index if p not in order)
    return table.reindex(order)


def format_table(table: Union[pd.DataFrame, pd.Series], digits: int = 2) -> str:
    return table.to_string(float_format=lambda v: f"{v:.{digits}f}")
