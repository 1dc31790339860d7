# tests/test_workflow.py
from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from sklearn.linear_model import ElasticNet, Lasso, LinearRegression, Ridge

from housingflow.errors import SchemaMismatchError, UnresolvedHyperparameterError
from housingflow.modeling import is_tune, linear_reg, tune
from housingflow.recipe import Recipe
from housingflow.selectors import Role, all_nominal_predictors
from housingflow.split import initial_split
from housingflow.workflow import FittedWorkflow, Workflow, last_fit


def _recipe() -> Recipe:
    return (
        Recipe(outcome="price")
        .update_role("id", Role.EVALUATIVE)
        .step_log(["price", "sqft_living"], base=10)
        .step_indicator("has_basement", "sqft_basement", ">", 0)
        .step_rm(["sqft_basement", "date"])
        .step_factor("waterfront")
        .step_dummy(all_nominal_predictors())
    )


@pytest.mark.parametrize(
    "penalty, mixture, expected",
    [
        (None, None, LinearRegression),
        (0.0, None, LinearRegression),
        (0.1, None, Lasso),
        (0.1, 1.0, Lasso),
        (0.1, 0.0, Ridge),
        (0.1, 0.5, ElasticNet),
    ],
)
def test_linear_reg_builds_matching_estimator(penalty, mixture, expected):
    est = linear_reg(penalty=penalty, mixture=mixture).build()
    assert type(est) is expected


def test_tune_marker_blocks_build_and_fit(houses):
    spec = linear_reg(penalty=tune(), mixture=1)
    assert spec.unresolved() == ["penalty"]
    assert is_tune(spec.args["penalty"])
    with pytest.raises(UnresolvedHyperparameterError):
        spec.build()
    with pytest.raises(UnresolvedHyperparameterError):
        Workflow(_recipe(), spec).fit(houses)


def test_finalize_replaces_marker(houses):
    wf = Workflow(_recipe(), linear_reg(penalty=tune(), mixture=1))
    final = wf.finalize({"penalty": 0.001, "unrelated": 3})
    assert final.model.args["penalty"] == 0.001
    assert final.model.unresolved() == []
    # original workflow is untouched
    assert wf.model.unresolved() == ["penalty"]


def test_simplicity_prefers_larger_penalty():
    spec = linear_reg(penalty=tune(), mixture=1)
    assert spec.simplicity_key({"penalty": 0.1}) < spec.simplicity_key({"penalty": 0.001})


def test_unknown_argument_and_engine():
    with pytest.raises(ValueError):
        linear_reg(engine="glmnet").build()
    with pytest.raises(ValueError):
        linear_reg(penalty=0.1, engine="lm").build()


def test_fit_predict_augment_evaluate(houses):
    split = initial_split(houses, prop=0.75, seed=327)
    train, test = split.training(houses), split.testing(houses)
    fitted = Workflow(_recipe(), linear_reg()).fit(train)

    pred = fitted.predict(test)
    assert pred.shape == (len(test),)
    assert np.all(np.isfinite(pred))

    aug = fitted.augment(test)
    assert list(aug.columns) == ["id", "price", ".pred"]
    np.testing.assert_allclose(aug[".pred"].to_numpy(), pred)
    np.testing.assert_allclose(aug["price"].to_numpy(), np.log10(test["price"].to_numpy()))

    scores = fitted.evaluate(test)
    assert list(scores.columns) == ["metric", "estimator", "value"]
    assert scores["metric"].tolist() == ["rmse", "rsq"]
    rsq = float(scores.loc[scores["metric"] == "rsq", "value"].iloc[0])
    assert 0.5 < rsq <= 1.0


def test_predict_without_outcome_column(houses):
    fitted = Workflow(_recipe(), linear_reg()).fit(houses)
    unlabeled = houses.drop(columns=["price"])
    assert len(fitted.predict(unlabeled)) == len(houses)
    with pytest.raises(SchemaMismatchError):
        fitted.evaluate(unlabeled)


def test_coefficients_have_intercept_and_predictors(houses):
    fitted = Workflow(_recipe(), linear_reg()).fit(houses)
    coefs = fitted.coefficients()
    assert coefs["term"].iloc[0] == "(Intercept)"
    assert coefs["term"].iloc[1:].tolist() == fitted.prepared.predictors


def test_save_and_load_roundtrip(houses, tmp_path):
    fitted = Workflow(_recipe(), linear_reg(penalty=0.001)).fit(houses)
    path = fitted.save(tmp_path / "models" / "workflow.pkl")
    loaded = FittedWorkflow.load(path)
    np.testing.assert_allclose(loaded.predict(houses), fitted.predict(houses))


def test_last_fit_scores_test_rows_only(houses):
    split = initial_split(houses, prop=0.8, seed=1)
    lf = last_fit(Workflow(_recipe(), linear_reg()), split, houses)
    assert len(lf.predictions) == len(split.test_idx)
    assert set(lf.predictions["id"]) == set(houses.iloc[split.test_idx]["id"])
    assert set(lf.metrics["metric"]) == {"rmse", "rsq"}


def test_non_numeric_predictor_is_type_error():
    df = pd.DataFrame({"price": [1.0, 2.0, 3.0, 4.0], "zipcode": ["a", "b", "a", "b"]})
    with pytest.raises(TypeError):
        Workflow(Recipe(outcome="price"), linear_reg()).fit(df)
