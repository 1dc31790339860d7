# src/housingflow/plots.py
"""
housingflow.plots
=================

Figures for a walkthrough run:
    - pred_vs_actual_test.png   (test-set scatter with the y = x line)
    - tuning_curve.png          (mean CV metric +/- 1 SE against a hyperparameter)

Both are written with the non-GUI Agg backend.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import matplotlib

matplotlib.use("Agg")  # non-GUI backend for script usage

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
from matplotlib.ticker import StrMethodFormatter  # noqa: E402

from .metrics import RegressionMetrics  # noqa: E402

__all__ = ["plot_pred_vs_actual", "plot_tuning_curve"]


def _currency_formatter():
    # Format ticks as $xxx,xxx
    return StrMethodFormatter("${x:,.0f}")


def plot_pred_vs_actual(
    preds: pd.DataFrame,
    out_path: str | Path,
    *,
    truth: str = "price",
    estimate: str = ".pred",
    currency: bool = False,
    run_id: Optional[str] = None,
) -> Path:
    """
    Scatter of predictions against actual values.

    `preds` is typically FittedWorkflow.augment(test) / LastFit.predictions.
    Set currency=True when the outcome is on the dollar scale (no log step).
    """
    missing = {truth, estimate}.difference(preds.columns)
    if missing:
        raise ValueError(f"Predictions table is missing columns {sorted(missing)}.")
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    y_true = preds[truth].to_numpy(dtype=float)
    y_pred = preds[estimate].to_numpy(dtype=float)
    m = RegressionMetrics.from_arrays(y_true, y_pred)

    both = np.concatenate([y_true, y_pred])
    lo = float(np.percentile(both, 1))
    hi = float(np.percentile(both, 99))
    pad = 0.05 * (hi - lo if hi > lo else 1.0)
    lo, hi = lo - pad, hi + pad

    fig, ax = plt.subplots(figsize=(8, 6))
    ax.scatter(y_true, y_pred, alpha=0.3)
    ax.plot([lo, hi], [lo, hi], color="black", linewidth=1)
    ax.set_xlabel(f"Actual {truth}")
    ax.set_ylabel(f"Predicted {truth}")
    if currency:
        ax.xaxis.set_major_formatter(_currency_formatter())
        ax.yaxis.set_major_formatter(_currency_formatter())

    title = f"Predicted vs Actual (test)  |  MAE={m.mae:,.3g}, RMSE={m.rmse:,.3g}, R²={m.r2:.3f}"
    if run_id:
        title += f"  (run {run_id})"
    ax.set_title(title)

    fig.tight_layout()
    fig.savefig(out_path, dpi=150)
    plt.close(fig)
    print(f"[plots] Saved {out_path}")
    return out_path


def plot_tuning_curve(
    tuning_result,
    metric: Optional[str] = None,
    param: str = "penalty",
    out_path: str | Path = "tuning_curve.png",
    *,
    log_x: Optional[bool] = None,
) -> Path:
    """
    Mean resampled metric (with a +/- 1 standard error band) against one
    hyperparameter. Penalty axes default to a log scale.
    """
    metric = metric or tuning_result.metrics.primary.name
    summary = tuning_result.collect_metrics()
    if param not in summary.columns:
        raise ValueError(f"'{param}' is not a tuned parameter; grid columns: {tuning_result.param_names}")
    sub = summary[summary["metric"] == metric].sort_values(param)
    if sub.empty:
        raise ValueError(f"No results for metric '{metric}'.")
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    x = sub[param].to_numpy(dtype=float)
    y = sub["mean"].to_numpy(dtype=float)
    se = np.nan_to_num(sub["std_err"].to_numpy(dtype=float))

    fig, ax = plt.subplots(figsize=(8, 5))
    ax.plot(x, y, marker="o")
    ax.fill_between(x, y - se, y + se, alpha=0.2)
    if log_x if log_x is not None else param == "penalty":
        ax.set_xscale("log")
    ax.set_xlabel(param)
    ax.set_ylabel(f"{metric} (mean over folds)")
    ax.set_title(f"Tuning curve: {metric} vs {param}")

    fig.tight_layout()
    fig.savefig(out_path, dpi=150)
    plt.close(fig)
    print(f"[plots] Saved {out_path}")
    return out_path
