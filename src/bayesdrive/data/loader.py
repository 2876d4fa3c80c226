import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass
class Standardizer:
    mean: float
    sd: float

    def transform(self, values):
        return (np.asarray(values, dtype=float) - self.mean) / self.sd

    def inverse(self, values):
        return np.asarray(values, dtype=float) * self.sd + self.mean


@dataclass
class DataSummary:
    scalers: Dict[str, Standardizer] = field(default_factory=dict)
    levels: Dict[str, List[str]] = field(default_factory=dict)
    suffix: str = "_s"

    def apply(self, df: pd.DataFrame) -> pd.DataFrame:
        out = df.copy()
        for col, scaler in self.scalers.items():
            if col in out.columns:
                out[col + self.suffix] = scaler.transform(out[col])
        for col, levels in self.levels.items():
            if col in out.columns:
                out[col] = encode_levels(out[col], levels)
        return out

    def to_dict(self) -> dict:
        return {
            "scalers": {k: [v.mean, v.sd] for k, v in self.scalers.items()},
            "levels": {k: list(v) for k, v in self.levels.items()},
            "suffix": self.suffix,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "DataSummary":
        return cls(
            scalers={k: Standardizer(float(m), float(s)) for k, (m, s) in payload.get("scalers", {}).items()},
            levels={k: [str(x) for x in v] for k, v in payload.get("levels", {}).items()},
            suffix=payload.get("suffix", "_s"),
        )


def load_csv(path: str, sep: Optional[str] = None) -> pd.DataFrame:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Dataset not found: {path}")
    # sep=None lets the python engine sniff ',' vs ';' (R-style exports use ';')
    df = pd.read_csv(path, sep=sep, engine="python" if sep is None else "c")
    if df.empty:
        raise ValueError(f"Dataset {path} contains no rows")
    logger.info("Loaded %s: %d rows, %d columns", path, df.shape[0], df.shape[1])
    return df


def standardize(values: pd.Series) -> Tuple[pd.Series, Standardizer]:
    x = pd.to_numeric(values, errors="raise").astype(float)
    mean = float(x.mean())
    sd = float(x.std(ddof=1))
    if not np.isfinite(sd) or sd == 0.0:
        raise ValueError(f"Cannot standardize column {values.name!r}: zero or undefined spread")
    scaler = Standardizer(mean, sd)
    return pd.Series(scaler.transform(x), index=values.index, name=values.name), scaler


def encode_levels(values: pd.Series, levels: Sequence[str]) -> pd.Series:
    lookup = {str(level): i for i, level in enumerate(levels)}
    as_text = values.astype(str)
    unknown = sorted(set(as_text) - set(lookup))
    if unknown:
        raise ValueError(f"Unknown levels for {values.name!r}: {unknown}")
    return as_text.map(lookup).astype(int)


def index_codes(values: pd.Series) -> Tuple[pd.Series, List[str]]:
    """Code a categorical column as 0..K-1 in sorted level order."""
    if isinstance(values.dtype, pd.CategoricalDtype):
        levels = [str(c) for c in values.cat.categories]
    else:
        distinct = values.dropna().unique()
        try:
            levels = [str(v) for v in sorted(distinct)]
        except TypeError:
            # mixed types have no common order
            levels = sorted(str(v) for v in distinct)
    return encode_levels(values, levels), levels


def drop_incomplete(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    columns = list(columns)
    complete = df.dropna(subset=columns)
    dropped = len(df) - len(complete)
    if dropped:
        logger.warning("Dropped %d incomplete rows (columns: %s)", dropped, ", ".join(columns))
    return complete.reset_index(drop=True)


def prepare(
    df: pd.DataFrame,
    standardize_cols: Sequence[str] = (),
    index_cols: Sequence[str] = (),
    suffix: str = "_s",
) -> Tuple[pd.DataFrame, DataSummary]:
    missing = [c for c in list(standardize_cols) + list(index_cols) if c not in df.columns]
    if missing:
        raise KeyError(f"Columns not in dataset: {missing}")
    out = drop_incomplete(df, list(standardize_cols) + list(index_cols))
    summary = DataSummary(suffix=suffix)
    for col in standardize_cols:
        out[col + suffix], summary.scalers[col] = standardize(out[col])
    for col in index_cols:
        out[col], summary.levels[col] = index_codes(out[col])
    return out, summary
