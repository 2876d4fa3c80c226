"""
Pytest fixtures: seeded toy and driving datasets, and a non-interactive
matplotlib backend so figure tests run headless.
"""

from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pytest

from bayesdrive.config import DrivingSimulationConfig, SimulationConfig
from bayesdrive.data.sim_generator import simulate_driving, simulate_height_weight


@pytest.fixture(autouse=True)
def _close_figures():
    yield
    plt.close("all")


@pytest.fixture
def height_cfg():
    return SimulationConfig(samples=300, seed=11)


@pytest.fixture
def height_df(height_cfg):
    df = simulate_height_weight(height_cfg)
    df["height_c"] = df["height"] - df["height"].mean()
    return df


@pytest.fixture
def driving_df():
    return simulate_driving(DrivingSimulationConfig(samples=400, seed=5))
