"""Tests for prior parsing, support and transforms."""

from __future__ import annotations

import math

import numpy as np
import pytest
import torch

from bayesdrive.errors import FormulaError
from bayesdrive.model.priors import (
    POSITIVE,
    REAL,
    Exponential,
    LogNormal,
    Normal,
    Uniform,
    parse_prior,
)


def test_parse_prior_names_and_aliases():
    assert parse_prior("normal(0, 0.5)") == Normal(0.0, 0.5)
    assert parse_prior("dnorm(178,20)") == Normal(178.0, 20.0)
    assert parse_prior(" dexp( 1 ) ") == Exponential(1.0)
    assert parse_prior("dlnorm(0, 1)") == LogNormal(0.0, 1.0)
    assert parse_prior("Uniform(0, 50)") == Uniform(0.0, 50.0)


def test_prior_text_round_trip():
    for text in ["normal(0, 0.2)", "lognormal(0, 1)", "exponential(1)", "uniform(0, 50)", "halfnormal(2.5)"]:
        prior = parse_prior(text)
        assert parse_prior(str(prior)) == prior
    odd = Normal(0.123456789, 1.0)
    assert parse_prior(str(odd)) == odd


@pytest.mark.parametrize(
    "text",
    ["normal(0)", "normal 0, 1", "cauchy(0, 1)", "normal(0, -1)", "exponential(0)", "uniform(5, 1)", "normal(a, 1)"],
)
def test_parse_prior_rejects_bad_input(text):
    with pytest.raises(FormulaError):
        parse_prior(text)


def test_support_labels():
    assert Normal(0, 1).support == REAL
    assert Exponential(1).support == POSITIVE
    assert Uniform(0, 10).support == POSITIVE
    assert Uniform(-1, 1).support != POSITIVE


def test_log_prob_outside_support_is_minus_inf():
    lp = Exponential(1.0).log_prob(torch.tensor([-1.0, 0.5], dtype=torch.float64))
    assert math.isinf(float(lp[0])) and float(lp[0]) < 0
    assert float(lp[1]) == pytest.approx(-0.5)

    lp = Uniform(0.0, 10.0).log_prob(torch.tensor([11.0, 5.0], dtype=torch.float64))
    assert float(lp[0]) == -math.inf
    assert float(lp[1]) == pytest.approx(-math.log(10.0))


def test_unconstrained_transform_round_trip():
    value = torch.tensor([0.5, 3.0, 9.9], dtype=torch.float64)
    for prior in (Uniform(0.0, 10.0), Exponential(2.0), Normal(0.0, 1.0)):
        back = prior.from_unconstrained(prior.to_unconstrained(value))
        assert torch.allclose(back, value)


def test_sample_respects_support():
    rng = np.random.default_rng(0)
    assert (Exponential(1.0).sample(rng, 1000) > 0).all()
    draws = Uniform(2.0, 3.0).sample(rng, 1000)
    assert draws.min() >= 2.0 and draws.max() <= 3.0
    assert Normal(5.0, 0.1).sample(rng, 5000).mean() == pytest.approx(5.0, abs=0.01)
