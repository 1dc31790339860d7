# src/housingflow/tune.py
"""
Grid search over workflow hyperparameters with K-fold resampling.

Every (candidate, fold) pair is an independent fit: the workflow is
finalized with the candidate's values, prepared and fitted on the fold's
analysis rows, and scored on its assessment rows. Failures are collected per
cell; the caller gets a TuningFailedError carrying the partial result unless
`best_effort=True`.
"""
from __future__ import annotations

import itertools
import math
import warnings
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .errors import TuningFailedError, UnresolvedHyperparameterError
from .metrics import Metric, MetricSet, as_metric_set, get_metric
from .modeling import ModelSpec
from .progress import Prog
from .split import FoldSet
from .workflow import Workflow

__all__ = [
    "expand_grid",
    "grid_regular",
    "CellError",
    "TuningResult",
    "tune_grid",
    "fit_resamples",
]

# Default ranges on the transformed scale (penalty is searched in log10 space).
_DEFAULT_RANGES: Dict[str, Tuple[float, float]] = {"penalty": (-10.0, 0.0), "mixture": (0.0, 1.0)}
_DEFAULT_TRANS: Dict[str, str] = {"penalty": "log10", "mixture": "identity"}


# --------------------------------------------------------------------------- #
# Grids
# --------------------------------------------------------------------------- #
def expand_grid(**values: Iterable[Any]) -> pd.DataFrame:
    """Cartesian product of candidate values; row order is the grid index."""
    names = list(values)
    combos = list(itertools.product(*(list(values[n]) for n in names)))
    return pd.DataFrame(combos, columns=names)


def grid_regular(levels: int = 5, **ranges: Union[Tuple[float, float], None]) -> pd.DataFrame:
    """
    Regular grid: `levels` evenly spaced values per parameter.

    Ranges are given on the transformed scale, e.g. grid_regular(penalty=(-4, 0),
    levels=5) gives penalties 1e-4, 1e-3, ..., 1. Passing None uses the default
    range for that parameter.
    """
    if int(levels) < 1:
        raise ValueError(f"levels must be >= 1, got {levels}.")
    if not ranges:
        raise ValueError("grid_regular needs at least one parameter range.")
    axes: Dict[str, List[float]] = {}
    for name, rng in ranges.items():
        lo, hi = rng if rng is not None else _DEFAULT_RANGES[name]
        pts = np.linspace(float(lo), float(hi), int(levels))
        if _DEFAULT_TRANS.get(name, "identity") == "log10":
            pts = 10.0 ** pts
        axes[name] = [float(p) for p in pts]
    return expand_grid(**axes)


def _as_grid(grid: Any) -> pd.DataFrame:
    if grid is None:
        return pd.DataFrame(index=[0])
    if isinstance(grid, pd.DataFrame):
        return grid.reset_index(drop=True)
    if isinstance(grid, Mapping):
        return expand_grid(**grid)
    return pd.DataFrame(list(grid)).reset_index(drop=True)


def _py(v: Any) -> Any:
    if isinstance(v, np.generic):
        return v.item()
    return v


# --------------------------------------------------------------------------- #
# Cells
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class CellError:
    candidate: int
    fold: str
    error_type: str
    message: str

    def as_dict(self) -> Dict[str, Any]:
        return {"candidate": self.candidate, "fold": self.fold, "error_type": self.error_type, "message": self.message}


def _run_cell(
    workflow: Workflow,
    params: Mapping[str, Any],
    analysis: pd.DataFrame,
    assessment: pd.DataFrame,
    mset: MetricSet,
) -> Dict[str, float]:
    fitted = workflow.finalize(params).fit(analysis)
    scored = fitted.evaluate(assessment, mset)
    return dict(zip(scored["metric"], scored["value"]))


def _safe_cell(ci: int, fold_id: str, *args) -> Tuple[int, str, Optional[Dict[str, float]], Optional[CellError]]:
    try:
        return ci, fold_id, _run_cell(*args), None
    except Exception as e:  # collected per cell, surfaced by tune_grid
        return ci, fold_id, None, CellError(ci, fold_id, type(e).__name__, str(e))


# --------------------------------------------------------------------------- #
# Result
# --------------------------------------------------------------------------- #
class TuningResult:
    """
    Per-cell metrics of a grid search plus the aggregation and selection helpers.

    cells   : one row per (candidate, fold, metric) with the value
    errors  : CellError per failed (candidate, fold)
    grid    : candidate table; row position = candidate index
    """

    def __init__(
        self,
        *,
        grid: pd.DataFrame,
        cells: pd.DataFrame,
        errors: Sequence[CellError],
        metrics: MetricSet,
        model: ModelSpec,
        fold_ids: Sequence[str],
    ):
        self.grid = grid
        self.cells = cells
        self.errors = list(errors)
        self.metrics = metrics
        self.model = model
        self.fold_ids = list(fold_ids)
        self.param_names = list(grid.columns)

    # ---- views ----------------------------------------------------------- #
    @property
    def n_cells(self) -> int:
        """Number of successfully scored (candidate, fold) pairs."""
        if self.cells.empty:
            return 0
        return int(self.cells[["candidate", "fold"]].drop_duplicates().shape[0])

    def params_of(self, candidate: int) -> Dict[str, Any]:
        row = self.grid.iloc[int(candidate)]
        return {k: _py(row[k]) for k in self.param_names}

    def errors_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [e.as_dict() for e in self.errors], columns=["candidate", "fold", "error_type", "message"]
        )

    def collect_metrics(self, summarize: bool = True) -> pd.DataFrame:
        """
        summarize=True : one row per (candidate, metric) with mean, n, std_err
        summarize=False: the raw per-fold cells
        """
        if not summarize:
            return self.cells.copy()
        cols = self.param_names + ["metric", "mean", "n", "std_err", ".config", "candidate"]
        if self.cells.empty:
            return pd.DataFrame(columns=cols)
        g = self.cells.groupby(["candidate", "metric"], sort=True)["value"]
        agg = g.agg(mean="mean", n="count", sd="std").reset_index()
        agg["std_err"] = agg["sd"] / np.sqrt(agg["n"])
        agg = agg.drop(columns=["sd"])
        agg = agg.merge(self._grid_with_config(), on="candidate", how="left")
        order = {m: i for i, m in enumerate(self.metrics.names)}
        agg["_m"] = agg["metric"].map(order)
        agg = agg.sort_values(["_m", "candidate"], kind="stable").drop(columns=["_m"])
        return agg[cols].reset_index(drop=True)

    def _grid_with_config(self) -> pd.DataFrame:
        g = self.grid.copy()
        width = len(str(len(g)))
        g["candidate"] = range(len(g))
        g[".config"] = [f"Model{str(i + 1).zfill(width)}" for i in range(len(g))]
        return g

    # ---- selection ------------------------------------------------------- #
    def _metric(self, metric: Union[None, str, Metric]) -> Metric:
        if metric is None:
            return self.metrics.primary
        m = get_metric(metric)
        if m.name not in self.metrics:
            raise ValueError(f"Metric '{m.name}' was not computed; available: {self.metrics.names}")
        return m

    def _ranked(self, metric: Union[None, str, Metric], direction: Optional[str]) -> Tuple[pd.DataFrame, str]:
        m = self._metric(metric)
        direction = direction or m.direction
        if direction not in {"minimize", "maximize"}:
            raise ValueError(f"direction must be 'minimize' or 'maximize', got {direction!r}.")
        summary = self.collect_metrics()
        summary = summary[(summary["metric"] == m.name) & summary["mean"].notna()].copy()
        if summary.empty:
            raise ValueError(f"No successful results for metric '{m.name}'.")
        # Optimal mean first, then smallest grid index.
        summary["_key"] = summary["mean"] if direction == "minimize" else -summary["mean"]
        summary = summary.sort_values(["_key", "candidate"], kind="stable").drop(columns=["_key"])
        return summary.reset_index(drop=True), direction

    def show_best(self, metric: Union[None, str, Metric] = None, n: int = 5, direction: Optional[str] = None) -> pd.DataFrame:
        ranked, _ = self._ranked(metric, direction)
        return ranked.head(int(n))

    def select_best(self, metric: Union[None, str, Metric] = None, direction: Optional[str] = None) -> Dict[str, Any]:
        ranked, _ = self._ranked(metric, direction)
        return self.params_of(int(ranked.loc[0, "candidate"]))

    def select_within_one_se(self, metric: Union[None, str, Metric] = None, direction: Optional[str] = None) -> Dict[str, Any]:
        """
        Simplest candidate whose mean is within one standard error of the best.

        Simplicity comes from the model family (for linear_reg: larger
        penalty, then larger mixture); ties fall back to grid order.
        """
        ranked, direction = self._ranked(metric, direction)
        best_mean = float(ranked.loc[0, "mean"])
        se = ranked.loc[0, "std_err"]
        se = 0.0 if se is None or (isinstance(se, float) and math.isnan(se)) else float(se)
        if direction == "minimize":
            ok = ranked[ranked["mean"] <= best_mean + se]
        else:
            ok = ranked[ranked["mean"] >= best_mean - se]
        candidates = [int(c) for c in ok["candidate"]]
        chosen = min(candidates, key=lambda c: (self.model.simplicity_key(self.params_of(c)), c))
        return self.params_of(chosen)

    def __repr__(self) -> str:
        return (
            f"<TuningResult candidates={len(self.grid)} folds={len(self.fold_ids)} "
            f"cells={self.n_cells} errors={len(self.errors)} metrics={self.metrics.names}>"
        )


# --------------------------------------------------------------------------- #
# Entry points
# --------------------------------------------------------------------------- #
def _check_grid(workflow: Workflow, grid: pd.DataFrame) -> None:
    pending = set(workflow.model.unresolved())
    given = set(grid.columns)
    missing = sorted(pending - given)
    if missing:
        raise UnresolvedHyperparameterError(
            f"Grid has no values for tune() parameter(s) {missing}; grid columns: {sorted(given)}."
        )
    unknown = sorted(given - set(workflow.model.tunable()))
    if unknown:
        raise ValueError(f"Grid column(s) {unknown} are not hyperparameters of {workflow.model.family}.")
    if grid.empty and len(grid.columns):
        raise ValueError("Grid has no candidates.")


def tune_grid(
    workflow: Workflow,
    folds: FoldSet,
    grid: Any = None,
    metrics: Any = None,
    *,
    data: Optional[pd.DataFrame] = None,
    n_jobs: Optional[int] = None,
    best_effort: bool = False,
    verbose: bool = False,
) -> TuningResult:
    """
    Fit and score every (candidate, fold) pair.

    Parameters
    ----------
    workflow : Workflow
        Typically with some model arguments set to tune().
    folds : FoldSet
        Resampling plan; rows are taken from `data` or, if None, `folds.data`.
    grid : DataFrame | mapping of lists | list of dicts | None
        Candidate values (row order = candidate index). None means one
        candidate with no parameters (plain resampling).
    metrics : MetricSet | list | None
        Defaults to (rmse, rsq); the first metric is the primary one.
    n_jobs : int, optional
        Run cells with joblib.Parallel. Each cell works on its own copy of the
        workflow; results are re-ordered by (candidate, fold).
    best_effort : bool
        If False (default) any failed cell raises TuningFailedError after the
        whole grid has run (partial result on `.result`). If True failures are
        only warned about.
    """
    df = data if data is not None else folds.data
    if df is None:
        raise ValueError("tune_grid needs the resampled table: pass data= or build folds with vfold_cv(df).")
    mset = as_metric_set(metrics)
    grid_df = _as_grid(grid)
    _check_grid(workflow, grid_df)

    fold_list = list(folds.splits())
    fold_order = {fid: i for i, (fid, _, _) in enumerate(fold_list)}
    # one dict per grid row, also when the grid has rows but no columns
    candidates = [{k: _py(grid_df[k].iloc[i]) for k in grid_df.columns} for i in range(len(grid_df))]

    jobs = []
    for ci, params in enumerate(candidates):
        for fid, analysis, assessment in fold_list:
            jobs.append(
                (ci, fid, workflow, params, df.iloc[analysis], df.iloc[assessment], mset)
            )
    if not jobs:
        raise ValueError("tune_grid: nothing to run (no candidates or no folds).")

    p = Prog(enabled=verbose, total=len(jobs), desc="Tuning")
    if n_jobs in (None, 1):
        results = []
        for job in jobs:
            results.append(_safe_cell(*job))
            p.step(f"candidate {job[0] + 1}/{len(candidates)} {job[1]}")
    else:
        results = Parallel(n_jobs=n_jobs)(delayed(_safe_cell)(*job) for job in jobs)
        for ci, fid, _, _ in results:
            p.step(f"candidate {ci + 1}/{len(candidates)} {fid}")
    p.close()

    results = sorted(results, key=lambda r: (r[0], fold_order[r[1]]))

    rows: List[Dict[str, Any]] = []
    errors: List[CellError] = []
    for ci, fid, values, err in results:
        if err is not None:
            errors.append(err)
            continue
        for name in mset.names:
            rows.append({**candidates[ci], "candidate": ci, "fold": fid, "metric": name, "value": values[name]})

    cell_cols = list(grid_df.columns) + ["candidate", "fold", "metric", "value"]
    cells = pd.DataFrame(rows, columns=cell_cols)

    result = TuningResult(
        grid=grid_df,
        cells=cells,
        errors=errors,
        metrics=mset,
        model=workflow.model,
        fold_ids=[fid for fid, _, _ in fold_list],
    )

    if errors:
        first = errors[0]
        msg = (
            f"{len(errors)} of {len(jobs)} tuning cells failed "
            f"(first: candidate {first.candidate}, {first.fold}: {first.error_type}: {first.message})"
        )
        if len(errors) == len(jobs):
            raise TuningFailedError("No successful model fits were completed; " + msg, result)
        if not best_effort:
            raise TuningFailedError(msg, result)
        warnings.warn(msg, RuntimeWarning, stacklevel=2)

    return result


def fit_resamples(
    workflow: Workflow,
    folds: FoldSet,
    metrics: Any = None,
    **kwargs: Any,
) -> TuningResult:
    """Resampled performance estimate for a workflow without tunable parameters."""
    return tune_grid(workflow, folds, None, metrics, **kwargs)
