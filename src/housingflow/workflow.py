# src/housingflow/workflow.py
from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import numpy as np
import pandas as pd
from joblib import dump as joblib_dump
from joblib import load as joblib_load

from .errors import SchemaMismatchError
from .metrics import MetricSet, as_metric_set
from .modeling import ModelSpec, coefficients, describe_estimator
from .recipe import PreparedRecipe, Recipe
from .selectors import is_numeric
from .split import Split

__all__ = ["Workflow", "FittedWorkflow", "LastFit", "last_fit"]


def _design_matrix(baked: pd.DataFrame, predictors: list[str]) -> np.ndarray:
    non_numeric = [c for c in predictors if not is_numeric(baked[c])]
    if non_numeric:
        raise TypeError(
            f"Predictors {non_numeric} are not numeric after preprocessing. "
            "Add step_dummy() (or step_rm()) for categorical columns."
        )
    return baked[predictors].to_numpy(dtype=float)


# --------------------------------------------------------------------------- #
# Workflow (unfitted)
# --------------------------------------------------------------------------- #
class Workflow:
    """
    One Recipe bound to one ModelSpec.

    Fitting prepares the recipe on the given table and fits the model on the
    transformed predictors, so preprocessing cannot be skipped or mismatched
    between training and prediction.
    """

    def __init__(self, recipe: Recipe, model: ModelSpec):
        if not isinstance(recipe, Recipe):
            raise TypeError(f"recipe must be a Recipe, got {type(recipe).__name__}.")
        if not isinstance(model, ModelSpec):
            raise TypeError(f"model must be a ModelSpec, got {type(model).__name__}.")
        self.recipe = deepcopy(recipe)
        self.model = model

    def update_model(self, model: ModelSpec) -> "Workflow":
        return Workflow(self.recipe, model)

    def update_recipe(self, recipe: Recipe) -> "Workflow":
        return Workflow(recipe, self.model)

    def finalize(self, params: Mapping[str, Any]) -> "Workflow":
        """Copy of this workflow with hyperparameters set to `params` (e.g. from select_best)."""
        known = set(self.model.tunable())
        clean = {k: v for k, v in dict(params).items() if k in known}
        return Workflow(self.recipe, self.model.set_args(**clean))

    def fit(self, df: pd.DataFrame) -> "FittedWorkflow":
        # Build first: unresolved tune() markers fail before any data work.
        estimator = self.model.build()
        prepared = self.recipe.prepare(df)
        baked = prepared.training()
        X = _design_matrix(baked, prepared.predictors)
        y = baked[prepared.outcome].to_numpy(dtype=float)
        estimator.fit(X, y)
        return FittedWorkflow(workflow=self, prepared=prepared, estimator=estimator)

    def __repr__(self) -> str:
        return f"Workflow\n  model: {self.model!r}\n  {self.recipe!r}".replace("\n", "\n  ")


# --------------------------------------------------------------------------- #
# Fitted workflow
# --------------------------------------------------------------------------- #
class FittedWorkflow:
    def __init__(self, *, workflow: Workflow, prepared: PreparedRecipe, estimator: Any):
        self.workflow = workflow
        self.prepared = prepared
        self.estimator = estimator

    @property
    def outcome(self) -> str:
        return self.prepared.outcome

    def _bake(self, df: pd.DataFrame) -> pd.DataFrame:
        return self.prepared.apply(df)

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        """One prediction per row of `df`, on the (possibly transformed) outcome scale."""
        baked = self._bake(df)
        return np.asarray(self.estimator.predict(_design_matrix(baked, self.prepared.predictors)), dtype=float)

    def augment(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Prediction table aligned with `df`:
        evaluative columns, the actual outcome (when present) and '.pred'.
        """
        baked = self._bake(df)
        pred = self.estimator.predict(_design_matrix(baked, self.prepared.predictors))
        keep = list(self.prepared.evaluative)
        if self.outcome in baked.columns:
            keep.append(self.outcome)
        out = baked[keep].copy()
        out[".pred"] = np.asarray(pred, dtype=float)
        return out

    def evaluate(self, df: pd.DataFrame, metrics: Any = None) -> pd.DataFrame:
        """Metric table with columns ['metric', 'estimator', 'value']."""
        mset: MetricSet = as_metric_set(metrics)
        if self.outcome not in df.columns:
            raise SchemaMismatchError(f"evaluate: outcome column '{self.outcome}' not in dataframe.")
        aug = self.augment(df)
        values = mset.compute(aug[self.outcome].to_numpy(dtype=float), aug[".pred"].to_numpy(dtype=float))
        return pd.DataFrame(
            {"metric": list(values), "estimator": "standard", "value": list(values.values())}
        )

    def coefficients(self) -> pd.DataFrame:
        return coefficients(self.estimator, self.prepared.predictors)

    def describe(self) -> str:
        return describe_estimator(self.estimator)

    # ---- persistence ----------------------------------------------------- #
    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        joblib_dump(self, path)
        return path

    @staticmethod
    def load(path: str | Path) -> "FittedWorkflow":
        obj = joblib_load(Path(path))
        if not isinstance(obj, FittedWorkflow):
            raise TypeError(f"{path} does not hold a FittedWorkflow (got {type(obj).__name__}).")
        return obj

    def __repr__(self) -> str:
        return f"<FittedWorkflow {self.describe()} on {len(self.prepared.predictors)} predictors>"


# --------------------------------------------------------------------------- #
# Final fit on the training split, evaluated once on the test split
# --------------------------------------------------------------------------- #
@dataclass
class LastFit:
    fitted: FittedWorkflow
    metrics: pd.DataFrame
    predictions: pd.DataFrame
    split: Optional[Split] = None


def last_fit(workflow: Workflow, split: Split, df: pd.DataFrame, metrics: Any = None) -> LastFit:
    """Fit `workflow` on split.training(df) and evaluate it on split.testing(df)."""
    train = split.training(df)
    test = split.testing(df)
    fitted = workflow.fit(train)
    return LastFit(
        fitted=fitted,
        metrics=fitted.evaluate(test, metrics),
        predictions=fitted.augment(test),
        split=split,
    )
