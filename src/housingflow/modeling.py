# src/housingflow/modeling.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.base import RegressorMixin
from sklearn.linear_model import ElasticNet, Lasso, LinearRegression, Ridge

from .errors import UnresolvedHyperparameterError

__all__ = [
    "TUNE",
    "tune",
    "is_tune",
    "ModelSpec",
    "linear_reg",
    "describe_estimator",
    "coefficients",
]


# --------------------------------------------------------------------------- #
# "to be tuned" marker
# --------------------------------------------------------------------------- #
class _TuneMarker:
    _instance: Optional["_TuneMarker"] = None

    def __new__(cls):
        # one shared marker, also across deepcopy / pickling
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __reduce__(self):
        return (_TuneMarker, ())

    def __deepcopy__(self, memo):
        return self

    def __repr__(self) -> str:
        return "tune()"


TUNE = _TuneMarker()


def tune() -> _TuneMarker:
    """Placeholder for a hyperparameter whose value comes from tune_grid()."""
    return TUNE


def is_tune(v: Any) -> bool:
    return isinstance(v, _TuneMarker)


# --------------------------------------------------------------------------- #
# Family registry
# --------------------------------------------------------------------------- #
def _build_linear_reg(args: Mapping[str, Any], engine: str, engine_args: Mapping[str, Any]) -> RegressorMixin:
    """
    penalty None/0      -> LinearRegression (ordinary least squares)
    mixture 1 (default) -> Lasso(alpha=penalty)
    mixture 0           -> Ridge(alpha=penalty)
    otherwise           -> ElasticNet(alpha=penalty, l1_ratio=mixture)
    """
    penalty = args.get("penalty")
    mixture = args.get("mixture")

    if engine == "lm":
        if penalty not in (None, 0, 0.0):
            raise ValueError("Engine 'lm' does not support a penalty; use engine='sklearn'.")
        return LinearRegression(**_subset(engine_args, {"fit_intercept", "positive", "n_jobs"}))

    if engine != "sklearn":
        raise ValueError(f"Unknown engine {engine!r} for linear_reg. Choose 'sklearn' or 'lm'.")

    if penalty is None or float(penalty) == 0.0:
        return LinearRegression(**_subset(engine_args, {"fit_intercept", "positive", "n_jobs"}))

    penalty = float(penalty)
    if penalty < 0:
        raise ValueError(f"penalty must be >= 0, got {penalty}.")
    mixture = 1.0 if mixture is None else float(mixture)
    if not (0.0 <= mixture <= 1.0):
        raise ValueError(f"mixture must lie in [0, 1], got {mixture}.")

    iterative = {"fit_intercept", "max_iter", "tol", "selection", "random_state", "positive"}
    if mixture == 0.0:
        return Ridge(alpha=penalty, **_subset(engine_args, {"fit_intercept", "solver", "tol", "random_state", "positive"}))
    params = _subset(engine_args, iterative)
    params.setdefault("max_iter", 10_000)
    if mixture == 1.0:
        return Lasso(alpha=penalty, **params)
    return ElasticNet(alpha=penalty, l1_ratio=mixture, **params)


def _linear_reg_simplicity(params: Mapping[str, Any]) -> Tuple[float, float]:
    # Heavier penalty (then more L1) shrinks more terms: smaller key = simpler.
    penalty = params.get("penalty")
    mixture = params.get("mixture")
    return (
        -float(penalty or 0.0),
        -float(1.0 if mixture is None else mixture),
    )


_FAMILIES: Dict[str, Dict[str, Any]] = {
    "linear_reg": {
        "args": ("penalty", "mixture"),
        "modes": ("regression",),
        "build": _build_linear_reg,
        "simplicity": _linear_reg_simplicity,
    },
}


# --------------------------------------------------------------------------- #
# Model specification
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class ModelSpec:
    """
    Declarative model description: family, engine, mode and hyperparameters.

    Any hyperparameter may be `tune()`; such a spec cannot be built until the
    marker is replaced (see `set_args` / `Workflow.finalize`).
    """

    family: str = "linear_reg"
    engine: str = "sklearn"
    mode: str = "regression"
    args: Mapping[str, Any] = field(default_factory=dict)
    engine_args: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.family not in _FAMILIES:
            raise ValueError(f"Unknown model family {self.family!r}; known: {sorted(_FAMILIES)}.")
        fam = _FAMILIES[self.family]
        if self.mode not in fam["modes"]:
            raise ValueError(f"Mode {self.mode!r} not supported by {self.family}; use one of {fam['modes']}.")
        unknown = [k for k in self.args if k not in fam["args"]]
        if unknown:
            raise ValueError(f"Unknown argument(s) {unknown} for {self.family}; known: {fam['args']}.")

    # ---- updates (return new specs) -------------------------------------- #
    def set_args(self, **kwargs: Any) -> "ModelSpec":
        merged = dict(self.args)
        merged.update(kwargs)
        return replace(self, args=merged)

    def set_engine(self, engine: str, **engine_args: Any) -> "ModelSpec":
        return replace(self, engine=engine, engine_args=dict(engine_args))

    # ---- tuning helpers -------------------------------------------------- #
    def unresolved(self) -> List[str]:
        return [k for k, v in self.args.items() if is_tune(v)]

    def tunable(self) -> List[str]:
        return list(_FAMILIES[self.family]["args"])

    def simplicity_key(self, params: Mapping[str, Any]) -> Tuple:
        """Sort key over candidate parameters; smaller means a simpler model."""
        merged = {k: v for k, v in self.args.items() if not is_tune(v)}
        merged.update(params)
        return _FAMILIES[self.family]["simplicity"](merged)

    # ---- construction ---------------------------------------------------- #
    def build(self) -> RegressorMixin:
        pending = self.unresolved()
        if pending:
            raise UnresolvedHyperparameterError(
                f"{self.family}: hyperparameter(s) {pending} are still tune(); "
                "finalize the workflow with concrete values before fitting."
            )
        return _FAMILIES[self.family]["build"](dict(self.args), self.engine, dict(self.engine_args))

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.args.items())
        return f"{self.family}({args}) [engine={self.engine}, mode={self.mode}]"


def linear_reg(
    penalty: Any = None,
    mixture: Any = None,
    *,
    engine: str = "sklearn",
    **engine_args: Any,
) -> ModelSpec:
    """Linear regression spec; `penalty`/`mixture` may be numbers, None or tune()."""
    args: Dict[str, Any] = {}
    if penalty is not None:
        args["penalty"] = penalty
    if mixture is not None:
        args["mixture"] = mixture
    return ModelSpec(family="linear_reg", engine=engine, mode="regression", args=args, engine_args=engine_args)


# --------------------------------------------------------------------------- #
# Fitted-estimator helpers
# --------------------------------------------------------------------------- #
def describe_estimator(est: Any) -> str:
    """
    Return a short description, e.g.:
      - 'lasso [alpha=0.001]'
      - 'linearregression'
    """
    try:
        name = est.__class__.__name__.lower()
        alpha = getattr(est, "alpha", None)
        return f"{name} [alpha={alpha:g}]" if alpha is not None else name
    except Exception:
        return "unknown"


def coefficients(est: Any, feature_names: Sequence[str]) -> pd.DataFrame:
    """Intercept + one row per predictor: columns ['term', 'estimate']."""
    coef = np.ravel(np.asarray(getattr(est, "coef_")))
    if len(coef) != len(feature_names):
        raise ValueError(f"Estimator has {len(coef)} coefficients but {len(feature_names)} feature names.")
    intercept = float(np.ravel([getattr(est, "intercept_", 0.0)])[0])
    return pd.DataFrame(
        {
            "term": ["(Intercept)"] + list(feature_names),
            "estimate": [intercept] + [float(c) for c in coef],
        }
    )


# --------------------------------------------------------------------------- #
# Utilities
# --------------------------------------------------------------------------- #
def _subset(d: Mapping[str, Any], keys: set[str]) -> dict[str, Any]:
    """Return a shallow copy of d with only items whose key is in keys."""
    return {k: v for k, v in d.items() if k in keys}
