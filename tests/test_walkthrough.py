# tests/test_walkthrough.py
from __future__ import annotations

import json

import pandas as pd
import pytest
import yaml

from housingflow.errors import ConfigError
from housingflow.walkthrough import main, run
from housingflow.workflow import FittedWorkflow


def _write_cfg(tmp_path, csv_path, **overrides) -> str:
    cfg = {
        "paths": {
            "data_csv": str(csv_path),
            "out_dir": str(tmp_path / "outputs"),
            "interim_dir": str(tmp_path / "interim"),
        },
        "run": {"random_state": 327, "run_name": "test-run", "timestamped_outputs": True},
        "data": {"target": "price", "parse_dates": ["date"], "zip_columns": ["zipcode"]},
        "split": {"prop": 0.75},
        "cv": {"v": 3},
        "recipe": {
            "outcome": "price",
            "roles": {"id": "evaluative"},
            "steps": [
                {"kind": "log", "columns": ["price", "sqft_living"], "base": 10},
                {"kind": "indicator", "name": "has_basement", "column": "sqft_basement"},
                {"kind": "rm", "columns": ["sqft_basement"]},
                {"kind": "date", "column": "date", "features": ["year", "month"]},
                {"kind": "factor", "columns": ["waterfront"]},
                {"kind": "dummy", "columns": "all_nominal_predictors", "unseen": "zero"},
                {"kind": "zv"},
            ],
        },
        "model": {"penalty": "tune", "mixture": 1},
        "tune": {"levels": 3, "ranges": {"penalty": [-4, -2]}, "select": "one_se"},
        "eval": {"metrics": ["rmse", "rsq"], "plots": True},
    }
    for key, val in overrides.items():
        cfg[key] = {**cfg.get(key, {}), **val}
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(cfg))
    return str(path)


def test_run_writes_all_artifacts(houses_csv, tmp_path):
    cfg_path = _write_cfg(tmp_path, houses_csv)
    payload = run(cfg_path)

    out = tmp_path / "outputs"
    metrics = json.loads((out / "metrics" / "metrics.json").read_text())
    assert metrics["run_info"]["train_rows"] == 90
    assert metrics["run_info"]["test_rows"] == 30
    assert metrics["tuning"]["n_cells"] == 9
    assert metrics["tuning"]["selected"] == metrics["tuning"]["within_one_se"]
    assert set(metrics["test"]["model"]) == {"rmse", "rsq"}
    assert payload["test"] == metrics["test"]
    ols = metrics["ols"]["resampled"]
    assert set(ols) == {"rmse", "rsq"}
    assert ols["rmse"]["n"] == 3  # one fit per fold

    tuning = pd.read_csv(out / "metrics" / "tuning.csv")
    assert len(tuning) == 6  # 3 candidates x 2 metrics

    preds = pd.read_csv(out / "preds" / "test_preds.csv")
    assert list(preds.columns) == ["id", "price", ".pred", "pred_baseline"]
    assert len(preds) == 30

    fitted = FittedWorkflow.load(out / "models" / "workflow.pkl")
    assert fitted.outcome == "price"
    assert (out / "figures" / "pred_vs_actual_test.png").exists()
    assert (out / "figures" / "tuning_curve.png").exists()
    assert (out / "run" / "test-run" / "metrics" / "config.snapshot.yaml").exists()


def test_model_beats_zip_median_baseline(houses_csv, tmp_path):
    payload = run(_write_cfg(tmp_path, houses_csv))
    assert payload["test"]["model"]["rmse"] < payload["test"]["baseline"]["rmse"]


def test_bad_selection_rule(houses_csv, tmp_path):
    cfg_path = _write_cfg(tmp_path, houses_csv, tune={"select": "fastest"})
    with pytest.raises(ConfigError):
        run(cfg_path)


def test_main_prints_payload(houses_csv, tmp_path, capsys):
    main(["--config", _write_cfg(tmp_path, houses_csv, eval={"plots": False})])
    printed = capsys.readouterr().out
    assert '"selected"' in printed
