# tests/test_config.py
from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from housingflow.config import (
    cfg_get,
    grid_from_cfg,
    load_yaml,
    model_from_cfg,
    recipe_from_cfg,
    selector_from_cfg,
)
from housingflow.errors import ConfigError
from housingflow.selectors import AllOf, ByName, ByPattern
from housingflow.steps import StepDummy, StepIndicator, StepLog

REPO_ROOT = Path(__file__).resolve().parents[1]


def test_shipped_config_builds_every_object():
    cfg = load_yaml(REPO_ROOT / "configs" / "config.yaml")
    rec = recipe_from_cfg(cfg)
    assert rec.outcome == "price"
    assert [s.kind for s in rec.steps][:3] == ["log", "indicator", "mutate"]

    spec = model_from_cfg(cfg)
    assert spec.unresolved() == ["penalty"]

    grid = grid_from_cfg(cfg)
    assert list(grid.columns) == ["penalty"]
    assert len(grid) == int(cfg_get(cfg, "tune.levels"))


def test_cfg_get_dotted():
    cfg = {"cv": {"v": 5}, "split": None}
    assert cfg_get(cfg, "cv.v") == 5
    assert cfg_get(cfg, "cv.repeats", 1) == 1
    assert cfg_get(cfg, "split.prop", 0.75) == 0.75


def test_load_yaml_empty_and_missing(tmp_path):
    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    with pytest.raises(ConfigError):
        load_yaml(empty)
    with pytest.raises(FileNotFoundError):
        load_yaml(tmp_path / "nope.yaml")


def test_selector_forms():
    assert isinstance(selector_from_cfg("all_nominal_predictors"), AllOf)
    assert selector_from_cfg("zipcode") == ByName(("zipcode",))
    assert selector_from_cfg(["a", "b"]) == ByName(("a", "b"))
    assert isinstance(selector_from_cfg({"starts_with": "sqft_"}), ByPattern)
    with pytest.raises(ConfigError):
        selector_from_cfg({"ends_with": "x"})


def test_recipe_steps_from_cfg():
    cfg = {
        "recipe": {
            "outcome": "price",
            "roles": {"id": "EVALUATIVE"},
            "steps": [
                {"kind": "log", "columns": ["price"], "base": 10},
                {"kind": "indicator", "name": "has_basement", "column": "sqft_basement"},
                {"kind": "dummy", "columns": "all_nominal_predictors", "unseen": "zero"},
            ],
        }
    }
    rec = recipe_from_cfg(cfg)
    log, ind, dummy = rec.steps
    assert isinstance(log, StepLog) and log.base == 10.0
    assert isinstance(ind, StepIndicator) and ind.op == ">" and ind.value == 0
    assert isinstance(dummy, StepDummy) and dummy.unseen == "zero"
    assert rec.role_updates[0][1].value == "evaluative"


@pytest.mark.parametrize(
    "steps",
    [
        [{"kind": "winsorize", "columns": ["price"]}],
        [{"columns": ["price"]}],
        [{"kind": "log"}],
        [{"kind": "mutate", "name": "x"}],
        [{"kind": "log", "columns": ["price"], "bogus": 1}],
    ],
)
def test_bad_steps_raise_config_error(steps):
    with pytest.raises(ConfigError):
        recipe_from_cfg({"recipe": {"outcome": "price", "steps": steps}})


def test_model_and_grid_sections():
    cfg = {
        "model": {"penalty": "tune()", "mixture": 0.5},
        "tune": {"grid": {"penalty": [0.1, 0.01]}},
    }
    spec = model_from_cfg(cfg)
    assert spec.unresolved() == ["penalty"]
    assert spec.args["mixture"] == 0.5
    grid = grid_from_cfg(cfg)
    assert grid["penalty"].tolist() == [0.1, 0.01]

    ranged = grid_from_cfg({"tune": {"levels": 3, "ranges": {"penalty": [-2, 0]}}})
    np.testing.assert_allclose(ranged["penalty"].to_numpy(), [0.01, 0.1, 1.0])

    with pytest.raises(ConfigError):
        model_from_cfg({"model": {"family": "rand_forest"}})
