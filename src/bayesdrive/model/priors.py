import re
from dataclasses import dataclass, fields
from typing import Dict, Type

import numpy as np
import torch
import torch.distributions as D

from bayesdrive.errors import FormulaError

REAL = "real"
POSITIVE = "positive"
INTERVAL = "interval"


def _fmt(x: float) -> str:
    short = format(x, "g")
    return short if float(short) == x else repr(float(x))


@dataclass(frozen=True)
class Prior:
    """Base class: a prior over one scalar parameter."""

    kind = ""
    aliases = ()
    support = REAL

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not np.isfinite(value):
                raise FormulaError(f"{self.kind}: {f.name} must be finite, got {value}")

    def __str__(self) -> str:
        args = ", ".join(_fmt(getattr(self, f.name)) for f in fields(self))
        return f"{self.kind}({args})"

    def distribution(self) -> D.Distribution:
        raise NotImplementedError

    def sample(self, rng: np.random.Generator, n: int) -> np.ndarray:
        raise NotImplementedError

    def init_value(self) -> float:
        raise NotImplementedError

    def in_support(self, value: torch.Tensor) -> torch.Tensor:
        return torch.isfinite(value)

    def log_prob(self, value: torch.Tensor) -> torch.Tensor:
        value = torch.as_tensor(value, dtype=torch.float64)
        inside = self.in_support(value)
        # evaluate on a safe value so gradients stay finite outside the support
        safe = torch.where(inside, value, torch.full_like(value, self.init_value()))
        lp = self.distribution().log_prob(safe)
        return torch.where(inside, lp, torch.full_like(lp, -float("inf")))

    def to_unconstrained(self, value: torch.Tensor) -> torch.Tensor:
        return value

    def from_unconstrained(self, u: torch.Tensor) -> torch.Tensor:
        return u


def _positive_scale(kind: str, name: str, value: float) -> None:
    if value <= 0:
        raise FormulaError(f"{kind}: {name} must be positive, got {value}")


class _PositiveSupport:
    support = POSITIVE

    def in_support(self, value):
        return torch.isfinite(value) & (value > 0)

    def to_unconstrained(self, value):
        return torch.log(value)

    def from_unconstrained(self, u):
        return torch.exp(u)


@dataclass(frozen=True)
class Normal(Prior):
    mu: float
    sigma: float
    kind = "normal"
    aliases = ("dnorm", "norm", "gaussian")

    def __post_init__(self):
        super().__post_init__()
        _positive_scale(self.kind, "sigma", self.sigma)

    def distribution(self):
        return D.Normal(torch.tensor(self.mu, dtype=torch.float64), torch.tensor(self.sigma, dtype=torch.float64))

    def sample(self, rng, n):
        return rng.normal(self.mu, self.sigma, n)

    def init_value(self):
        return self.mu


@dataclass(frozen=True)
class LogNormal(_PositiveSupport, Prior):
    mu: float
    sigma: float
    kind = "lognormal"
    aliases = ("dlnorm", "lnorm")

    def __post_init__(self):
        super().__post_init__()
        _positive_scale(self.kind, "sigma", self.sigma)

    def distribution(self):
        return D.LogNormal(
            torch.tensor(self.mu, dtype=torch.float64),
            torch.tensor(self.sigma, dtype=torch.float64),
            validate_args=False,
        )

    def sample(self, rng, n):
        return rng.lognormal(self.mu, self.sigma, n)

    def init_value(self):
        return float(np.exp(self.mu))


@dataclass(frozen=True)
class Exponential(_PositiveSupport, Prior):
    rate: float
    kind = "exponential"
    aliases = ("dexp", "exp")

    def __post_init__(self):
        super().__post_init__()
        _positive_scale(self.kind, "rate", self.rate)

    def distribution(self):
        return D.Exponential(torch.tensor(self.rate, dtype=torch.float64), validate_args=False)

    def sample(self, rng, n):
        return rng.exponential(1.0 / self.rate, n)

    def init_value(self):
        return 1.0 / self.rate


@dataclass(frozen=True)
class HalfNormal(_PositiveSupport, Prior):
    sigma: float
    kind = "halfnormal"
    aliases = ("dhalfnorm",)

    def __post_init__(self):
        super().__post_init__()
        _positive_scale(self.kind, "sigma", self.sigma)

    def distribution(self):
        return D.HalfNormal(torch.tensor(self.sigma, dtype=torch.float64), validate_args=False)

    def sample(self, rng, n):
        return np.abs(rng.normal(0.0, self.sigma, n))

    def init_value(self):
        return self.sigma


@dataclass(frozen=True)
class Uniform(Prior):
    lower: float
    upper: float
    kind = "uniform"
    aliases = ("dunif", "unif")

    def __post_init__(self):
        super().__post_init__()
        if self.upper <= self.lower:
            raise FormulaError(f"uniform: upper ({self.upper}) must exceed lower ({self.lower})")

    @property
    def support(self):
        return POSITIVE if self.lower >= 0 else INTERVAL

    def distribution(self):
        return D.Uniform(
            torch.tensor(self.lower, dtype=torch.float64),
            torch.tensor(self.upper, dtype=torch.float64),
            validate_args=False,
        )

    def in_support(self, value):
        return torch.isfinite(value) & (value > self.lower) & (value < self.upper)

    def sample(self, rng, n):
        return rng.uniform(self.lower, self.upper, n)

    def init_value(self):
        return 0.5 * (self.lower + self.upper)

    def to_unconstrained(self, value):
        p = (value - self.lower) / (self.upper - self.lower)
        return torch.log(p) - torch.log1p(-p)

    def from_unconstrained(self, u):
        return self.lower + (self.upper - self.lower) * torch.sigmoid(u)


PRIORS: Dict[str, Type[Prior]] = {}
for _cls in (Normal, LogNormal, Exponential, HalfNormal, Uniform):
    PRIORS[_cls.kind] = _cls
    for _alias in _cls.aliases:
        PRIORS[_alias] = _cls

_CALL = re.compile(r"^\s*([A-Za-z_]+)\s*\((.*)\)\s*$")


def parse_prior(text: str) -> Prior:
    """Parse ``"normal(0, 0.5)"`` (or R-style ``"dnorm(0, 0.5)"``) into a Prior."""
    match = _CALL.match(text)
    if not match:
        raise FormulaError(f"Cannot parse prior {text!r}; expected name(arg, ...)")
    name, body = match.group(1).lower(), match.group(2)
    cls = PRIORS.get(name)
    if cls is None:
        raise FormulaError(f"Unknown prior {name!r}; choose from {sorted(PRIORS)}")
    raw = [a.strip() for a in body.split(",")] if body.strip() else []
    expected = len(fields(cls))
    if len(raw) != expected:
        raise FormulaError(f"{cls.kind} takes {expected} arguments, got {len(raw)} in {text!r}")
    try:
        args = [float(a) for a in raw]
    except ValueError:
        raise FormulaError(f"Non-numeric prior argument in {text!r}") from None
    return cls(*args)
