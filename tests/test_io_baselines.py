# tests/test_io_baselines.py
from __future__ import annotations

import json

import numpy as np
import pandas as pd
import pytest

from housingflow import io as io_mod
from housingflow.baselines import median_baseline


def test_load_data_normalizes_columns_dates_and_zip(houses_csv, tmp_path):
    df = io_mod.load_data(houses_csv, snapshot_dir=tmp_path / "interim")

    assert "price" in df.columns  # header lower-cased
    assert pd.api.types.is_datetime64_any_dtype(df["date"])
    assert df.loc[0, "date"] == pd.Timestamp("2014-05-02")
    assert set(df["zipcode"]) == {"98001", "98004", "98103", "98115"}

    snap = json.loads((tmp_path / "interim" / "schema.snapshot.json").read_text())
    assert snap["num_rows"] == len(df)
    assert snap["target_column"] == "price"
    assert snap["data_hash_sha256"].startswith("sha256:")


def test_load_data_drops_missing_target_and_filters(tmp_path):
    path = tmp_path / "small.csv"
    pd.DataFrame({"price": [100.0, None, 300_000.0, 50.0], "zipcode": [98001, 98002, 98003, 98004]}).to_csv(
        path, index=False
    )
    cfg = {"data": {"filters": {"price": {"min": 1000}}}}
    df = io_mod.load_data(path, cfg=cfg)
    assert df["price"].tolist() == [300_000.0]
    assert df.index.tolist() == [0]


def test_load_data_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        io_mod.load_data(tmp_path / "missing.csv")
    path = tmp_path / "no_target.csv"
    pd.DataFrame({"sqft_living": [1000]}).to_csv(path, index=False)
    with pytest.raises(ValueError):
        io_mod.load_data(path)


def test_median_baseline_backs_off_to_global():
    train = pd.DataFrame({"zipcode": ["a", "a", "b", "b", "b"], "price": [1.0, 3.0, 10.0, 20.0, 30.0]})
    test = pd.DataFrame({"zipcode": ["b", "a", "z"], "price": [999.0, 999.0, 999.0]}, index=[7, 8, 9])
    pred = median_baseline(train, test, target="price")

    assert pred.index.tolist() == [7, 8, 9]
    assert pred.tolist() == [20.0, 2.0, 10.0]  # unseen 'z' -> global median


def test_median_baseline_two_keys_and_min_group_size():
    train = pd.DataFrame(
        {
            "zipcode": ["a", "a", "a", "b"],
            "year": [2014, 2014, 2015, 2015],
            "price": [1.0, 3.0, 5.0, 100.0],
        }
    )
    test = pd.DataFrame({"zipcode": ["a", "a", "b"], "year": [2014, 2015, 2014]})
    pred = median_baseline(train, test, target="price", group_keys=("zipcode", "year"), min_group_size=2)
    # (a, 2014) has 2 rows; (a, 2015) has 1 -> zip 'a' median; b has 1 row -> global
    np.testing.assert_allclose(pred.to_numpy(), [2.0, 3.0, 4.0])


def test_median_baseline_requires_target():
    with pytest.raises(KeyError):
        median_baseline(pd.DataFrame({"x": [1]}), pd.DataFrame({"x": [1]}), target="price")
