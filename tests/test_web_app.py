"""Tests for the FastAPI service."""

from __future__ import annotations

import numpy as np
import pytest
from fastapi.testclient import TestClient

from bayesdrive.data.loader import prepare
from bayesdrive.inference import save_fit
from bayesdrive.model.formula import parse_formula
from bayesdrive.model.quap import quap
from bayesdrive.web.app import app, fit_cache


@pytest.fixture
def client():
    fit_cache.clear()
    return TestClient(app)


@pytest.fixture
def height_csv(height_df):
    return height_df[["height", "weight"]].to_csv(index=False).encode()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_fit_endpoint(client, height_csv):
    resp = client.post(
        "/api/fit",
        files={"file": ("height.csv", height_csv, "text/csv")},
        data={
            "formula": "weight ~ a + b*height_s",
            "priors": "a=normal(50, 10); b=normal(0, 10); sigma=uniform(0, 50)",
            "standardize": "height",
        },
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["nobs"] == 300
    params = [row["parameter"] for row in body["precis"]]
    assert params == ["a", "b", "sigma"]
    b = body["precis"][1]
    assert b["5.5%"] < b["mean"] < b["94.5%"]
    assert b["mean"] > 0


def test_fit_endpoint_precis_from_samples(client, height_csv):
    form = {
        "formula": "weight ~ a + b*height_s",
        "priors": "a=normal(50, 10); b=normal(0, 10); sigma=uniform(0, 50)",
        "standardize": "height",
    }
    analytic = client.post("/api/fit", files={"file": ("height.csv", height_csv, "text/csv")}, data=form)
    sampled = client.post(
        "/api/fit",
        files={"file": ("height.csv", height_csv, "text/csv")},
        data={**form, "samples": "4000", "seed": "3"},
    )
    assert sampled.status_code == 200, sampled.text
    assert sampled.json()["samples"] == 4000
    rows = {row["parameter"]: row for row in sampled.json()["precis"]}
    exact = {row["parameter"]: row for row in analytic.json()["precis"]}
    assert rows["b"]["mean"] == pytest.approx(exact["b"]["mean"], abs=5 * exact["b"]["sd"] / np.sqrt(4000))
    assert rows["sigma"]["sd"] == pytest.approx(exact["sigma"]["sd"], rel=0.1)


def test_fit_endpoint_rejects_unreadable_csv(client):
    resp = client.post(
        "/api/fit",
        files={"file": ("empty.csv", b"", "text/csv")},
        data={"formula": "y ~ a", "priors": "a=normal(0,1); sigma=exponential(1)"},
    )
    assert resp.status_code == 400


def test_fit_endpoint_rejects_bad_formula(client, height_csv):
    resp = client.post(
        "/api/fit",
        files={"file": ("height.csv", height_csv, "text/csv")},
        data={"formula": "weight ~ a + b*", "priors": "a=normal(50, 10); sigma=exponential(1)"},
    )
    assert resp.status_code == 422
    resp = client.post(
        "/api/fit",
        files={"file": ("height.csv", height_csv, "text/csv")},
        data={"formula": "weight ~ a + b*age", "priors": "a=normal(50,10); b=normal(0,1); sigma=exponential(1)"},
    )
    assert resp.status_code == 422


def test_dag_endpoint(client):
    resp = client.post("/api/dag", json={"dag": "Z -> X; Z -> Y; X -> Y", "exposure": "X", "outcome": "Y"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["adjustment_sets"] == [["Z"]]
    assert {"path": ["X", "Z", "Y"], "backdoor": True, "open": True} in body["paths"]
    assert body["implied_independencies"] == []


def test_dag_endpoint_rejects_cycles(client):
    resp = client.post("/api/dag", json={"dag": "A -> B; B -> A"})
    assert resp.status_code == 422


def test_predict_endpoint(client, tmp_path, driving_df):
    data, summary = prepare(driving_df, ["speed", "braking_distance"])
    spec = parse_formula(
        "braking_distance_s ~ a + b*speed_s",
        {"a": "normal(0, 0.2)", "b": "normal(0, 0.5)", "sigma": "exponential(1)"},
    )
    path = save_fit(quap(spec, data, summary=summary), str(tmp_path / "braking.pt"))
    resp = client.post(
        "/api/predict",
        json={"model_path": path, "rows": [{"speed": 40}, {"speed": 90}], "samples": 500, "seed": 0},
    )
    assert resp.status_code == 200, resp.text
    preds = resp.json()["predictions"]
    assert len(preds) == 2
    assert preds[1]["braking_distance_mean"] > preds[0]["braking_distance_mean"]
    assert path in fit_cache


def test_predict_endpoint_missing_model(client, tmp_path):
    resp = client.post("/api/predict", json={"model_path": str(tmp_path / "nope.pt"), "rows": [{"speed": 50}]})
    assert resp.status_code == 404
