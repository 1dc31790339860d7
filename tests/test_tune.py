# tests/test_tune.py
from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from joblib import parallel_backend

from housingflow.errors import TuningFailedError, UnresolvedHyperparameterError
from housingflow.metrics import metric_set
from housingflow.modeling import linear_reg, tune
from housingflow.recipe import Recipe
from housingflow.selectors import Role, all_nominal_predictors
from housingflow.split import vfold_cv
from housingflow.tune import TuningResult, expand_grid, fit_resamples, grid_regular, tune_grid
from housingflow.workflow import Workflow


def _workflow(model=None) -> Workflow:
    rec = (
        Recipe(outcome="price")
        .update_role("id", Role.EVALUATIVE)
        .step_log(["price", "sqft_living"], base=10)
        .step_rm("date")
        .step_factor("waterfront")
        .step_dummy(all_nominal_predictors(), unseen="zero")
    )
    return Workflow(rec, model or linear_reg(penalty=tune(), mixture=1))


def test_grid_regular_is_log10_for_penalty():
    g = grid_regular(levels=3, penalty=(-3, -1))
    np.testing.assert_allclose(g["penalty"].to_numpy(), [1e-3, 1e-2, 1e-1])


def test_expand_grid_order():
    g = expand_grid(penalty=[0.1, 1.0], mixture=[0.0, 0.5, 1.0])
    assert len(g) == 6
    assert g.iloc[0].tolist() == [0.1, 0.0]
    assert g.iloc[1].tolist() == [0.1, 0.5]
    assert g.iloc[3].tolist() == [1.0, 0.0]


def test_three_penalties_five_folds_gives_fifteen_cells(houses):
    folds = vfold_cv(houses, v=5, seed=327)
    grid = expand_grid(penalty=[1e-4, 1e-3, 1e-2])
    res = tune_grid(_workflow(), folds, grid, metric_set("rmse"))

    assert res.n_cells == 15
    assert len(res.cells) == 15
    assert res.errors == []
    summary = res.collect_metrics()
    assert len(summary) == 3
    assert summary["n"].tolist() == [5, 5, 5]
    assert summary["penalty"].tolist() == [1e-4, 1e-3, 1e-2]
    assert (summary["std_err"] >= 0).all()


def test_cells_are_ordered_by_candidate_then_fold(houses):
    folds = vfold_cv(houses, v=3, seed=1)
    res = tune_grid(_workflow(), folds, {"penalty": [0.01, 0.001]}, metric_set("rmse", "rsq"))
    rmse_cells = res.collect_metrics(summarize=False).query("metric == 'rmse'")
    assert rmse_cells["candidate"].tolist() == [0, 0, 0, 1, 1, 1]
    assert rmse_cells["fold"].tolist() == folds.ids * 2


def test_select_best_returns_plain_params(houses):
    folds = vfold_cv(houses, v=5, seed=327)
    res = tune_grid(_workflow(), folds, grid_regular(levels=4, penalty=(-5, -1)))
    best = res.select_best("rmse")
    assert set(best) == {"penalty"}
    assert isinstance(best["penalty"], float)
    top = res.show_best("rmse", n=2)
    assert len(top) == 2
    assert top["mean"].iloc[0] <= top["mean"].iloc[1]
    assert best["penalty"] == pytest.approx(float(top["penalty"].iloc[0]))


def _handmade_result(values_by_candidate, penalties):
    grid = pd.DataFrame({"penalty": penalties})
    rows = []
    folds = [f"Fold{i}" for i in range(1, len(values_by_candidate[0]) + 1)]
    for ci, vals in enumerate(values_by_candidate):
        for fid, v in zip(folds, vals):
            rows.append({"penalty": penalties[ci], "candidate": ci, "fold": fid, "metric": "rmse", "value": v})
    return TuningResult(
        grid=grid,
        cells=pd.DataFrame(rows),
        errors=[],
        metrics=metric_set("rmse"),
        model=linear_reg(penalty=tune()),
        fold_ids=folds,
    )


def test_within_one_se_picks_simpler_candidate():
    res = _handmade_result(
        [
            [0.9, 1.1, 1.0, 0.8, 1.2],  # mean 1.00, se ~0.071
            [1.05] * 5,                 # within one SE of the best
            [1.5] * 5,                  # too far away
        ],
        [0.001, 0.01, 0.1],
    )
    assert res.select_best() == {"penalty": 0.001}
    assert res.select_within_one_se() == {"penalty": 0.01}


def test_ties_go_to_smallest_grid_index():
    res = _handmade_result([[1.0, 2.0], [1.0, 2.0]], [0.5, 0.05])
    assert res.select_best() == {"penalty": 0.5}
    assert res.show_best(n=1)["candidate"].iloc[0] == 0


def test_select_maximize_direction():
    res = _handmade_result([[0.3, 0.5], [0.7, 0.9]], [0.1, 0.2])
    assert res.select_best("rmse", direction="maximize") == {"penalty": 0.2}


def test_failed_cells_raise_with_partial_result(houses):
    folds = vfold_cv(houses, v=5, seed=2)
    grid = expand_grid(penalty=[0.001, -1.0])  # negative penalty cannot be built

    with pytest.raises(TuningFailedError) as excinfo:
        tune_grid(_workflow(), folds, grid)
    partial = excinfo.value.result
    assert isinstance(partial, TuningResult)
    assert len(partial.errors) == 5
    assert {e.candidate for e in partial.errors} == {1}
    assert partial.n_cells == 5
    assert partial.select_best() == {"penalty": 0.001}


def test_best_effort_warns_and_returns(houses):
    folds = vfold_cv(houses, v=3, seed=2)
    grid = expand_grid(penalty=[0.001, -1.0])
    with pytest.warns(RuntimeWarning):
        res = tune_grid(_workflow(), folds, grid, best_effort=True)
    assert res.n_cells == 3
    assert res.errors_frame()["error_type"].unique().tolist() == ["ValueError"]


def test_all_cells_failing_always_raises(houses):
    folds = vfold_cv(houses, v=3, seed=2)
    with pytest.raises(TuningFailedError):
        tune_grid(_workflow(), folds, expand_grid(penalty=[-1.0]), best_effort=True)


def test_grid_must_cover_tune_markers(houses):
    folds = vfold_cv(houses, v=3, seed=2)
    wf = _workflow(linear_reg(penalty=tune(), mixture=tune()))
    with pytest.raises(UnresolvedHyperparameterError):
        tune_grid(wf, folds, expand_grid(penalty=[0.01]))
    with pytest.raises(ValueError):
        tune_grid(_workflow(), folds, expand_grid(penalty=[0.01], alpha=[1.0]))


def test_tune_needs_data(houses):
    folds = vfold_cv(np.arange(len(houses)), v=3, seed=2)
    with pytest.raises(ValueError):
        tune_grid(_workflow(), folds, expand_grid(penalty=[0.01]))
    res = tune_grid(_workflow(), folds, expand_grid(penalty=[0.01]), data=houses)
    assert res.n_cells == 3


def test_parallel_matches_sequential(houses):
    folds = vfold_cv(houses, v=4, seed=9)
    grid = expand_grid(penalty=[0.01, 0.001])
    seq = tune_grid(_workflow(), folds, grid)
    with parallel_backend("threading"):
        par = tune_grid(_workflow(), folds, grid, n_jobs=2)
    pd.testing.assert_frame_equal(seq.cells, par.cells)


def test_fit_resamples_without_parameters(houses):
    folds = vfold_cv(houses, v=5, seed=327)
    res = fit_resamples(_workflow(linear_reg()), folds)
    summary = res.collect_metrics()
    assert summary["metric"].tolist() == ["rmse", "rsq"]
    assert summary["n"].tolist() == [5, 5]


def test_tune_grid_without_grid_runs_one_cell_per_fold(houses):
    folds = vfold_cv(houses, v=4, seed=327)
    res = tune_grid(_workflow(linear_reg()), folds, grid=None)
    assert len(res.grid) == 1
    assert res.n_cells == len(folds)
    assert res.errors == []
    assert res.select_best() == {}


def test_tune_grid_with_no_candidates_raises(houses):
    folds = vfold_cv(houses, v=3, seed=327)
    with pytest.raises(ValueError):
        tune_grid(_workflow(), folds, grid=pd.DataFrame({"penalty": []}))
