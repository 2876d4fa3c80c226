from typing import Dict, Mapping, Optional, Sequence, Tuple

import pandas as pd
import torch
import torch.nn as nn

from bayesdrive.errors import FormulaError
from bayesdrive.model.formula import ModelSpec

DTYPE = torch.float64


def data_tensors(spec: ModelSpec, df: pd.DataFrame, require_outcome: bool = True) -> Dict[str, torch.Tensor]:
    needed = spec.columns() if require_outcome else [c for c in spec.columns() if c != spec.outcome]
    missing = [c for c in needed if c not in df.columns]
    if missing:
        raise FormulaError(f"Columns used by the model are missing from the data: {missing}")
    index_cols = set(spec.index_columns())
    data = {}
    for col in needed:
        if col in index_cols:
            data[col] = torch.as_tensor(df[col].to_numpy(dtype="int64"))
        else:
            try:
                data[col] = torch.as_tensor(df[col].to_numpy(dtype="float64"))
            except (TypeError, ValueError):
                raise FormulaError(f"Column {col!r} is not numeric; use it as an index variable") from None
    data["__rows__"] = torch.zeros(len(df), dtype=DTYPE)
    return data


def linear_predictor(spec: ModelSpec, values: Mapping[str, torch.Tensor], data: Mapping[str, torch.Tensor]) -> torch.Tensor:
    mu = data["__rows__"]
    for term in spec.terms:
        value = values[term.param]
        if term.index is None:
            coef = value[..., None]
        else:
            coef = value[..., data[term.index]]
        if term.column is None:
            mu = mu + coef
        else:
            mu = mu + coef * data[term.column] ** term.power
    return mu


def log_prior(spec: ModelSpec, values: Mapping[str, torch.Tensor]) -> torch.Tensor:
    total = torch.zeros((), dtype=DTYPE)
    for name in spec.parameters():
        total = total + spec.priors[name].log_prob(values[name]).sum()
    return total


def log_likelihood(spec: ModelSpec, values: Mapping[str, torch.Tensor], data: Mapping[str, torch.Tensor]) -> torch.Tensor:
    mu = linear_predictor(spec, values, data)
    sigma = values[spec.sigma]
    return torch.distributions.Normal(mu, sigma, validate_args=False).log_prob(data[spec.outcome]).sum()


class LinearGaussianModel(nn.Module):
    """Parameters of a linear Gaussian model held on the unconstrained scale."""

    def __init__(self, spec: ModelSpec, levels: Mapping[str, Sequence[str]], init: Optional[Mapping[str, float]] = None):
        super().__init__()
        self.spec = spec
        self.levels = {k: list(v) for k, v in levels.items()}
        self.names = spec.parameters()
        init = dict(init or {})
        raw = []
        for term in spec.terms:
            size = () if term.index is None else (len(self.levels[term.index]),)
            raw.append(self._raw_parameter(term.param, size, init))
        raw.append(self._raw_parameter(spec.sigma, (), init))
        self.raw = nn.ParameterList(raw)

    def _raw_parameter(self, name: str, size: Tuple[int, ...], init: Mapping[str, float]) -> nn.Parameter:
        prior = self.spec.priors[name]
        start = init.get(name, prior.init_value())
        value = torch.full(size, float(start), dtype=DTYPE)
        return nn.Parameter(prior.to_unconstrained(value))

    def constrained(self) -> Dict[str, torch.Tensor]:
        return {
            name: self.spec.priors[name].from_unconstrained(raw)
            for name, raw in zip(self.names, self.raw)
        }

    def forward(self, data: Mapping[str, torch.Tensor]) -> torch.Tensor:
        return linear_predictor(self.spec, self.constrained(), data)


def negative_log_posterior(model: LinearGaussianModel, data: Mapping[str, torch.Tensor]) -> Tuple[torch.Tensor, dict]:
    values = model.constrained()
    ll = log_likelihood(model.spec, values, data)
    lp = log_prior(model.spec, values)
    loss = -(ll + lp)
    terms = {"log_likelihood": ll.detach(), "log_prior": lp.detach()}
    return loss, terms


def unflatten(spec: ModelSpec, theta: torch.Tensor, levels: Mapping[str, Sequence[str]]) -> Dict[str, torch.Tensor]:
    values = {}
    pos = 0
    for term in spec.terms:
        if term.index is None:
            values[term.param] = theta[..., pos]
            pos += 1
        else:
            k = len(levels[term.index])
            values[term.param] = theta[..., pos:pos + k]
            pos += k
    values[spec.sigma] = theta[..., pos]
    return values


def flatten(spec: ModelSpec, values: Mapping[str, torch.Tensor]) -> torch.Tensor:
    return torch.cat([values[name].reshape(-1) for name in spec.parameters()])


def log_posterior_flat(
    spec: ModelSpec, theta: torch.Tensor, data: Mapping[str, torch.Tensor], levels: Mapping[str, Sequence[str]]
) -> torch.Tensor:
    values = unflatten(spec, theta, levels)
    return log_likelihood(spec, values, data) + log_prior(spec, values)
