"""End-to-end tests of the scripted analyses."""

from __future__ import annotations

import numpy as np
import pytest

from bayesdrive import workflows
from bayesdrive.config import DrivingSimulationConfig, SamplingConfig, SimulationConfig


def test_height_analysis_recovers_slope():
    result = workflows.height_weight_analysis(SimulationConfig(samples=300, seed=21), SamplingConfig(seed=0))
    assert result.name == "height"
    assert result.fit.coef["b"] == pytest.approx(0.5, abs=0.15)
    assert result.extras["true"]["b"] == 0.5
    assert isinstance(result.extras["slope_recovered"], bool)
    assert 0.0 <= result.extras["prior_lines_outside"] <= 1.0
    assert set(result.figures) == {"prior_lines", "posterior", "precis", "slope_density"}
    lo, hi = result.extras["b_hpdi"]
    assert lo < result.fit.coef["b"] < hi


def test_driving_analysis_adjusts_for_age(driving_df):
    result = workflows.driving_reaction_analysis(driving_df, sampling=SamplingConfig(seed=0))
    assert result.extras["adjustment_sets"] == [("age",)]
    assert result.fit.coef["bE"] < 0
    assert result.fit.coef["bA"] > 0
    tab = result.extras["coeftab"]
    assert np.isnan(tab.loc["bA", "naive"])
    assert not np.isnan(tab.loc["bA", "adjusted"])
    assert result.extras["phone_levels"] == ["handheld", "handsfree", "none"]
    assert "age _||_ phone_use" in result.extras["implied_independencies"]
    cf = result.extras["counterfactual"]
    assert cf["mu_mean"].iloc[0] > cf["mu_mean"].iloc[-1]


def test_braking_analysis_checks():
    result = workflows.braking_analysis(cfg=DrivingSimulationConfig(samples=300, seed=4), sampling=SamplingConfig(seed=1))
    assert 0.75 < result.extras["coverage"] < 0.99
    assert result.fit.coef["bS"] > 0
    assert len(result.extras["ppc"]) == 300
    assert set(result.figures) == {"prior_lines", "ppc", "posterior"}


def test_run_analysis_and_report():
    result = workflows.run_analysis("height", seed=3)
    text = workflows.report(result)
    assert text.startswith("== height")
    assert "weight ~ normal(mu, sigma)" in text
    with pytest.raises(KeyError):
        workflows.run_analysis("weather")


def test_cli_saves_figures(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(
        "sys.argv", ["bayesdrive-analysis", "--analysis", "height", "--out-dir", str(tmp_path), "--seed", "5"]
    )
    workflows.main()
    assert "== height" in capsys.readouterr().out
    saved = sorted(p.name for p in tmp_path.iterdir())
    assert saved == [
        "height_posterior.png",
        "height_precis.png",
        "height_prior_lines.png",
        "height_slope_density.png",
    ]


def test_cli_exits_when_data_lacks_columns(tmp_path, monkeypatch, driving_df):
    data_path = tmp_path / "driving.csv"
    driving_df.to_csv(data_path, index=False)
    monkeypatch.setattr(
        "sys.argv",
        ["bayesdrive-analysis", "--analysis", "height", "--data", str(data_path), "--out-dir", str(tmp_path / "figs")],
    )
    with pytest.raises(SystemExit) as exc:
        workflows.main()
    assert exc.value.code == 1
    assert not (tmp_path / "figs").exists()


def test_cli_exits_on_missing_data_file(tmp_path, monkeypatch):
    monkeypatch.setattr("sys.argv", ["bayesdrive-analysis", "--data", str(tmp_path / "nope.csv")])
    with pytest.raises(SystemExit) as exc:
        workflows.main()
    assert exc.value.code == 1
