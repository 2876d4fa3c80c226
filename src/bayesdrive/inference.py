import argparse
import logging
import os
from typing import List, Optional

import numpy as np
import pandas as pd
import torch

from bayesdrive.config import QuapConfig, SamplingConfig
from bayesdrive.data.loader import DataSummary, load_csv, prepare
from bayesdrive.errors import BayesDriveError
from bayesdrive.logging_config import setup_logging
from bayesdrive.model.formula import ModelSpec, parse_formula, parse_priors
from bayesdrive.model.quap import QuapFit, quap
from bayesdrive.summary import PI, format_table

logger = logging.getLogger(__name__)


def save_fit(fit: QuapFit, path: str) -> str:
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    columns = list(fit.data.columns)
    numeric = fit.data.select_dtypes(include=[np.number])
    torch.save(
        {
            "spec": fit.spec.to_dict(),
            "labels": fit.labels,
            "coef": torch.as_tensor(fit.coef.to_numpy()),
            "vcov": torch.as_tensor(fit.vcov.to_numpy()),
            "levels": fit.levels,
            "log_posterior": fit.log_posterior,
            "summary": fit.summary.to_dict() if fit.summary is not None else None,
            "data_columns": list(numeric.columns),
            "data": torch.as_tensor(numeric.to_numpy(dtype="float64")),
            "integer_columns": [c for c in columns if pd.api.types.is_integer_dtype(fit.data[c])],
        },
        path,
    )
    logger.info("Saved fit to %s", path)
    return path


def load_fit(path: str) -> QuapFit:
    ckpt = torch.load(path, map_location="cpu")
    spec = ModelSpec.from_dict(ckpt["spec"])
    labels = list(ckpt["labels"])
    data = pd.DataFrame(ckpt["data"].numpy(), columns=ckpt["data_columns"])
    for col in ckpt["integer_columns"]:
        if col in data.columns:
            data[col] = data[col].astype("int64")
    return QuapFit(
        spec=spec,
        coef=pd.Series(ckpt["coef"].numpy(), index=labels, name="mean"),
        vcov=pd.DataFrame(ckpt["vcov"].numpy(), index=labels, columns=labels),
        levels={k: list(v) for k, v in ckpt["levels"].items()},
        data=data,
        log_posterior=float(ckpt["log_posterior"]),
        summary=DataSummary.from_dict(ckpt["summary"]) if ckpt["summary"] else None,
    )


def predict(
    fit: QuapFit,
    rows: pd.DataFrame,
    n: int = 1000,
    prob: float = 0.89,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    model_rows = fit.summary.apply(rows) if fit.summary is not None else rows.copy()
    samples = fit.extract_samples(n, seed=rng.integers(2 ** 32))
    mu = fit.link(model_rows, samples=samples)
    sims = fit.sim(model_rows, samples=samples, seed=rng.integers(2 ** 32))
    mu_pi = PI(mu, prob=prob)
    sim_pi = PI(sims, prob=prob)
    out = rows.copy().reset_index(drop=True)
    out["mu_mean"] = mu.mean(axis=0)
    out["mu_lower"] = mu_pi[0]
    out["mu_upper"] = mu_pi[1]
    out["pred_lower"] = sim_pi[0]
    out["pred_upper"] = sim_pi[1]

    summary = fit.summary
    outcome = fit.spec.outcome
    if summary is not None and outcome.endswith(summary.suffix):
        base = outcome[: -len(summary.suffix)]
        scaler = summary.scalers.get(base)
        if scaler is not None:
            out[f"{base}_mean"] = scaler.inverse(out["mu_mean"])
            out[f"{base}_lower"] = scaler.inverse(out["pred_lower"])
            out[f"{base}_upper"] = scaler.inverse(out["pred_upper"])
    return out


def fit_csv(
    path: str,
    formula: str,
    priors: List[str],
    standardize_cols: Optional[List[str]] = None,
    index_cols: Optional[List[str]] = None,
    cfg: Optional[QuapConfig] = None,
) -> QuapFit:
    df = load_csv(path)
    df, summary = prepare(df, standardize_cols or [], index_cols or [])
    spec = parse_formula(formula, parse_priors("\n".join(priors)))
    return quap(spec, df, cfg=cfg, summary=summary)


def main():
    parser = argparse.ArgumentParser(description="Fit a linear Gaussian model by quadratic approximation.")
    parser.add_argument("--data", required=True, help="CSV dataset path")
    parser.add_argument("--formula", required=True, help='e.g. "weight_s ~ a + b*height_s"')
    parser.add_argument("--prior", action="append", default=[], help="name=dist(args), repeatable")
    parser.add_argument("--standardize", nargs="*", default=[], help="Columns to standardize (adds <col>_s)")
    parser.add_argument("--index", nargs="*", default=[], help="Categorical columns to code as 0..K-1")
    parser.add_argument("--samples", type=int, default=10000, help="Posterior draws")
    parser.add_argument("--prob", type=float, default=0.89, help="Interval probability")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--out", default=None, help="Save the fit to this checkpoint path")
    parser.add_argument("--samples-out", default=None, help="Write posterior draws to this CSV")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    sampling = SamplingConfig(samples=args.samples, prob=args.prob, seed=args.seed)
    try:
        fit = fit_csv(args.data, args.formula, args.prior, args.standardize, args.index)
    except (BayesDriveError, FileNotFoundError, KeyError, ValueError) as exc:
        logger.error("Fit failed: %s", exc)
        raise SystemExit(1)

    print(fit.spec.describe())
    print()
    print(format_table(fit.precis(prob=sampling.prob)))

    if args.out:
        save_fit(fit, args.out)
    if args.samples_out:
        draws = fit.extract_samples(sampling.samples, seed=sampling.seed)
        out_dir = os.path.dirname(args.samples_out)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        draws.to_csv(args.samples_out, index=False)
        logger.info("Saved %d posterior draws to %s", len(draws), args.samples_out)


def predict_main():
    parser = argparse.ArgumentParser(description="Predict outcomes for new rows from a saved fit.")
    parser.add_argument("--model", required=True, help="Path to a saved fit")
    parser.add_argument("--rows", required=True, help="CSV of new rows on the raw scale")
    parser.add_argument("--samples", type=int, default=1000)
    parser.add_argument("--prob", type=float, default=0.89)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--out", required=True, help="CSV output path")
    args = parser.parse_args()
    setup_logging()

    try:
        fit = load_fit(args.model)
        rows = load_csv(args.rows)
        table = predict(fit, rows, n=args.samples, prob=args.prob, seed=args.seed)
    except (BayesDriveError, FileNotFoundError, KeyError, ValueError) as exc:
        logger.error("Prediction failed: %s", exc)
        raise SystemExit(1)
    out_dir = os.path.dirname(args.out)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    table.to_csv(args.out, index=False)
    logger.info("Saved predictions to %s", args.out)


if __name__ == "__main__":
    main()
