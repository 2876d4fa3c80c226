"""Tests for CSV loading, standardization and index coding."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from bayesdrive.data.loader import (
    DataSummary,
    drop_incomplete,
    index_codes,
    load_csv,
    prepare,
    standardize,
)


def test_standardize():
    s, scaler = standardize(pd.Series([1.0, 2.0, 3.0, 4.0], name="x"))
    assert s.mean() == pytest.approx(0.0)
    assert s.std(ddof=1) == pytest.approx(1.0)
    assert scaler.mean == pytest.approx(2.5)
    assert np.allclose(scaler.inverse(s), [1.0, 2.0, 3.0, 4.0])


def test_standardize_constant_column():
    with pytest.raises(ValueError, match="spread"):
        standardize(pd.Series([3.0, 3.0, 3.0], name="c"))


def test_index_codes_sorted_levels():
    codes, levels = index_codes(pd.Series(["m", "f", "m", "x"], name="sex"))
    assert levels == ["f", "m", "x"]
    assert list(codes) == [1, 0, 1, 2]


def test_index_codes_numeric_levels_sort_by_value():
    codes, levels = index_codes(pd.Series([1, 2, 10, 2, 1], name="cid"))
    assert levels == ["1", "2", "10"]
    assert list(codes) == [0, 1, 2, 1, 0]


def test_apply_recodes_integer_labels():
    df = pd.DataFrame({"cid": [1, 2, 3, 2]})
    data, summary = prepare(df, [], ["cid"])
    assert list(data["cid"]) == [0, 1, 2, 1]
    applied = summary.apply(pd.DataFrame({"cid": [3, 1]}))
    assert list(applied["cid"]) == [2, 0]


def test_prepare_and_apply_to_new_rows(driving_df):
    data, summary = prepare(driving_df, ["age", "speed"], ["phone_use"])
    assert {"age_s", "speed_s"} <= set(data.columns)
    assert data["age_s"].mean() == pytest.approx(0.0, abs=1e-9)
    assert summary.levels["phone_use"] == ["handheld", "handsfree", "none"]
    assert data["phone_use"].isin([0, 1, 2]).all()

    new = pd.DataFrame({"age": [summary.scalers["age"].mean], "speed": [80.0], "phone_use": ["handheld"]})
    applied = summary.apply(new)
    assert applied["age_s"].iloc[0] == pytest.approx(0.0)
    assert applied["phone_use"].iloc[0] == 0

    restored = DataSummary.from_dict(summary.to_dict())
    assert restored.levels == summary.levels
    assert restored.scalers["speed"].sd == pytest.approx(summary.scalers["speed"].sd)


def test_prepare_unknown_column(driving_df):
    with pytest.raises(KeyError):
        prepare(driving_df, ["wind"])


def test_apply_rejects_unknown_levels(driving_df):
    _, summary = prepare(driving_df, [], ["phone_use"])
    with pytest.raises(ValueError, match="Unknown levels"):
        summary.apply(pd.DataFrame({"phone_use": ["texting"]}))


def test_load_csv_sniffs_separator(tmp_path):
    path = tmp_path / "data.csv"
    path.write_text("a;b\n1;2\n3;4\n")
    df = load_csv(str(path))
    assert list(df.columns) == ["a", "b"]
    assert df["b"].sum() == 6


def test_load_csv_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_csv(str(tmp_path / "missing.csv"))
    empty = tmp_path / "empty.csv"
    empty.write_text("a,b\n")
    with pytest.raises(ValueError):
        load_csv(str(empty), sep=",")


def test_drop_incomplete():
    df = pd.DataFrame({"a": [1.0, np.nan, 3.0], "b": [1.0, 2.0, np.nan], "c": [np.nan] * 3})
    out = drop_incomplete(df, ["a"])
    assert len(out) == 2
    assert list(out.index) == [0, 1]
