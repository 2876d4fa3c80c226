"""
Grid approximation baseline for the intercept-only Gaussian model
y ~ normal(mu, sigma). Brute force, but exact up to grid resolution, so it is
the reference the quadratic approximation is checked against.
"""
from typing import Optional

import numpy as np
import pandas as pd
import torch

from bayesdrive.model.priors import Prior


def grid_posterior(
    y,
    mu_prior: Prior,
    sigma_prior: Prior,
    mu_grid: np.ndarray,
    sigma_grid: np.ndarray,
) -> pd.DataFrame:
    """Normalised posterior probability at every (mu, sigma) grid point."""
    y_t = torch.as_tensor(np.asarray(y, dtype=float))
    mu = torch.as_tensor(np.asarray(mu_grid, dtype=float))
    sigma = torch.as_tensor(np.asarray(sigma_grid, dtype=float))
    mm, ss = torch.meshgrid(mu, sigma, indexing="ij")
    mm, ss = mm.reshape(-1), ss.reshape(-1)

    valid = sigma_prior.in_support(ss)
    safe_sigma = torch.where(valid, ss, torch.ones_like(ss))
    loglik = torch.distributions.Normal(mm[:, None], safe_sigma[:, None]).log_prob(y_t[None, :]).sum(dim=1)
    log_post = loglik + mu_prior.log_prob(mm) + sigma_prior.log_prob(ss)
    log_post = torch.where(valid, log_post, torch.full_like(log_post, -float("inf")))

    prob = torch.exp(log_post - log_post.max())
    prob = prob / prob.sum()
    return pd.DataFrame({"mu": mm.numpy(), "sigma": ss.numpy(), "prob": prob.numpy()})


def sample_grid(grid: pd.DataFrame, n: int = 10000, seed: Optional[int] = None) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    rows = rng.choice(len(grid), size=n, replace=True, p=grid["prob"].to_numpy())
    return grid.iloc[rows][["mu", "sigma"]].reset_index(drop=True)


def grid_summary(grid: pd.DataFrame) -> pd.DataFrame:
    p = grid["prob"].to_numpy()
    rows = {}
    for name in ("mu", "sigma"):
        x = grid[name].to_numpy()
        mean = float(np.sum(p * x))
        rows[name] = {"mean": mean, "sd": float(np.sqrt(np.sum(p * (x - mean) ** 2)))}
    return pd.DataFrame(rows).T
