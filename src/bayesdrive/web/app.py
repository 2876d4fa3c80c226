import io
import json
import logging
from typing import Dict, List, Optional

import pandas as pd
from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bayesdrive.dag import adjustment_sets, implied_conditional_independencies, parse_dag
from bayesdrive.data.loader import prepare
from bayesdrive.errors import BayesDriveError, DagError
from bayesdrive.inference import load_fit, predict
from bayesdrive.model.formula import parse_formula, parse_priors
from bayesdrive.model.quap import QuapFit, quap
from bayesdrive.summary import precis

logger = logging.getLogger(__name__)

app = FastAPI(title="BayesDrive Web")

fit_cache: Dict[str, QuapFit] = {}


class DagRequest(BaseModel):
    dag: str
    exposure: Optional[str] = None
    outcome: Optional[str] = None
    latent: List[str] = []


class PredictRequest(BaseModel):
    model_path: str
    rows: List[Dict[str, object]]
    samples: int = 1000
    prob: float = 0.89
    seed: Optional[int] = None


def _get_fit(model_path: str) -> QuapFit:
    if model_path not in fit_cache:
        logger.info("Loading saved fit %s", model_path)
        fit_cache[model_path] = load_fit(model_path)
    return fit_cache[model_path]


def _split(text: str) -> List[str]:
    return [c.strip() for c in text.replace(";", ",").split(",") if c.strip()]


def _records(df: pd.DataFrame) -> List[dict]:
    return [{"parameter": str(idx), **{k: float(v) for k, v in row.items()}} for idx, row in df.iterrows()]


@app.post("/api/fit")
async def fit(
    file: UploadFile = File(...),
    formula: str = Form(...),
    priors: str = Form(...),
    standardize: str = Form(""),
    index: str = Form(""),
    prob: float = Form(0.89),
    samples: int = Form(0),
    seed: Optional[int] = Form(None),
):
    try:
        content = await file.read()
        df = pd.read_csv(io.BytesIO(content))
    except Exception as exc:
        raise HTTPException(status_code=400, detail=f"Failed to read CSV: {exc}")
    if df.empty:
        raise HTTPException(status_code=400, detail="CSV contains no rows")

    try:
        data, summary = prepare(df, _split(standardize), _split(index))
        spec = parse_formula(formula, parse_priors(priors))
        result = quap(spec, data, summary=summary)
        if samples > 0:
            table = precis(result.extract_samples(samples, seed=seed), prob=prob)
        else:
            table = result.precis(prob=prob)
    except KeyError as exc:
        raise HTTPException(status_code=422, detail=f"Unknown column: {exc}")
    except (BayesDriveError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    return JSONResponse(
        {
            "model": result.spec.describe(),
            "nobs": result.nobs,
            "samples": samples,
            "levels": result.levels,
            "precis": _records(table),
        }
    )


@app.post("/api/dag")
async def dag_query(request: DagRequest):
    try:
        dag = parse_dag(request.dag, latent=request.latent)
        body = {
            "nodes": dag.nodes,
            "edges": [list(e) for e in dag.edges],
            "implied_independencies": [str(i) for i in implied_conditional_independencies(dag)],
        }
        if request.exposure and request.outcome:
            body["adjustment_sets"] = [list(s) for s in adjustment_sets(dag, request.exposure, request.outcome)]
            body["paths"] = [
                {"path": list(p.nodes), "backdoor": p.backdoor, "open": p.open}
                for p in dag.paths(request.exposure, request.outcome)
            ]
    except DagError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return body


@app.post("/api/predict")
async def predict_rows(request: PredictRequest):
    try:
        fitted = _get_fit(request.model_path)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail=f"No saved fit at {request.model_path}")
    if not request.rows:
        raise HTTPException(status_code=400, detail="No rows to predict")
    try:
        table = predict(fitted, pd.DataFrame(request.rows), n=request.samples, prob=request.prob, seed=request.seed)
    except (BayesDriveError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return JSONResponse({"predictions": json.loads(table.to_json(orient="records"))})


@app.get("/health")
async def health():
    return {"status": "ok"}
