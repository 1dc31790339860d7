# src/housingflow/walkthrough.py
"""
End-to-end house-price walkthrough driven by configs/config.yaml.

    load CSV -> initial_split -> vfold_cv(training)
    -> recipe from config
    -> OLS workflow, resampled estimate
    -> LASSO workflow with penalty=tune() -> tune_grid
    -> select_best / select_within_one_se -> finalize -> last_fit
    -> metrics.json, tuning.csv, test_preds.csv, workflow.pkl (+ figures)

Run with:  python -m housingflow.walkthrough --config configs/config.yaml
"""
from __future__ import annotations

import argparse
import json
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

import pandas as pd

from . import io as io_mod
from .baselines import median_baseline
from .config import cfg_get, grid_from_cfg, load_yaml, model_from_cfg, recipe_from_cfg
from .errors import ConfigError
from .metrics import as_metric_set
from .modeling import linear_reg
from .progress import Prog, say
from .split import initial_split, vfold_cv
from .tune import fit_resamples, tune_grid
from .workflow import Workflow, last_fit

__all__ = ["run", "main"]


def _metric_dict(frame: pd.DataFrame) -> Dict[str, float]:
    """['metric', 'value'] rows -> {metric: value}."""
    return {str(m): float(v) for m, v in zip(frame["metric"], frame["value"])}


def _summary_dict(summary: pd.DataFrame) -> Dict[str, Dict[str, float]]:
    """collect_metrics() of a parameter-free result -> {metric: {mean, std_err, n}}."""
    return {
        str(r["metric"]): {"mean": float(r["mean"]), "std_err": float(r["std_err"]), "n": int(r["n"])}
        for _, r in summary.iterrows()
    }


def run(cfg_path: str = "configs/config.yaml") -> Dict[str, Any]:
    cfg = load_yaml(cfg_path)
    data_csv = cfg_get(cfg, "paths.data_csv")
    if not data_csv:
        raise ConfigError(f"'paths.data_csv' is missing in {cfg_path}. Add it to point at your CSV.")

    seed = int(cfg_get(cfg, "run.random_state", 0))
    timestamped = bool(cfg_get(cfg, "run.timestamped_outputs", True))
    verbose = bool(cfg_get(cfg, "run.verbose", False))
    make_plots = bool(cfg_get(cfg, "eval.plots", False))
    mset = as_metric_set(cfg_get(cfg, "eval.metrics", ["rmse", "rsq"]))

    # dirs + data + split + folds + recipe + OLS + tune + select + last fit + baseline + 4 artifacts
    total_steps = 14 + (1 if make_plots else 0) + (1 if timestamped else 0)
    p = Prog(enabled=True, total=total_steps, desc="Walkthrough")

    # Paths
    data_csv = Path(data_csv)
    out_dir = Path(cfg_get(cfg, "paths.out_dir", "outputs"))
    models_dir = out_dir / "models"
    metrics_dir = out_dir / "metrics"
    preds_dir = out_dir / "preds"
    figures_dir = out_dir / "figures"
    for q in (models_dir, metrics_dir, preds_dir):
        q.mkdir(parents=True, exist_ok=True)
    run_name = cfg_get(cfg, "run.run_name") or datetime.now().strftime("%Y-%m-%d_%H%M%S")
    p.step("Prepared output dirs")

    # Data + split
    df = io_mod.load_data(data_csv, cfg=cfg)
    p.step(f"Loaded CSV ({len(df)} rows)")

    split = initial_split(
        df,
        prop=float(cfg_get(cfg, "split.prop", 0.75)),
        seed=seed,
        strata=cfg_get(cfg, "split.strata"),
    )
    train = split.training(df)
    test = split.testing(df)
    p.step(f"Split {split!r}")

    folds = vfold_cv(
        train,
        v=int(cfg_get(cfg, "cv.v", 10)),
        seed=seed,
        repeats=int(cfg_get(cfg, "cv.repeats", 1)),
    )
    p.step(f"Folds {folds!r}")

    rec = recipe_from_cfg(cfg)
    prepared = rec.prepare(train)
    p.step(f"Recipe prepared ({len(prepared.predictors)} predictors)")

    # Ordinary least squares reference
    ols_wf = Workflow(rec, linear_reg(engine="lm"))
    ols_cv = fit_resamples(ols_wf, folds, mset)
    ols_fit = ols_wf.fit(train)
    p.step("OLS resampled")

    # Penalized model, tuned over the grid
    tune_wf = Workflow(rec, model_from_cfg(cfg))
    grid = grid_from_cfg(cfg)
    result = tune_grid(
        tune_wf,
        folds,
        grid,
        mset,
        n_jobs=cfg_get(cfg, "tune.n_jobs"),
        best_effort=bool(cfg_get(cfg, "tune.best_effort", False)),
        verbose=verbose,
    )
    p.step(f"Tuned {len(grid)} candidates x {len(folds)} folds")

    select_metric = cfg_get(cfg, "tune.metric", mset.primary.name)
    best = result.select_best(select_metric)
    one_se = result.select_within_one_se(select_metric)
    rule = str(cfg_get(cfg, "tune.select", "best"))
    if rule not in ("best", "one_se"):
        raise ConfigError(f"tune.select must be 'best' or 'one_se', got {rule!r}.")
    chosen = best if rule == "best" else one_se
    p.step(f"Selected {chosen} ({rule})")

    final = last_fit(tune_wf.finalize(chosen), split, df, mset)
    outcome = final.fitted.outcome
    p.step("Final fit + test evaluation")

    # Baseline on the model's outcome scale: push baseline dollars through the prepared recipe
    base_raw = median_baseline(
        train,
        test,
        target=outcome,
        group_keys=tuple(cfg_get(cfg, "eval.baseline_keys", ["zipcode"])),
    )
    base_frame = test.copy()
    base_frame[outcome] = base_raw.to_numpy()
    base_scaled = final.fitted.prepared.apply(base_frame)[outcome].to_numpy(dtype=float)
    baseline_metrics = mset.compute(final.predictions[outcome].to_numpy(dtype=float), base_scaled)
    p.step("Baseline computed")

    # Artifacts
    payload: Dict[str, Any] = {
        "run_info": {
            "run_id": run_name,
            "random_state": seed,
            "data_csv": str(data_csv),
            "data_hash": io_mod.dataset_fingerprint(data_csv),
            "train_rows": int(len(train)),
            "test_rows": int(len(test)),
            "folds": len(folds),
            "predictors": list(prepared.predictors),
        },
        "ols": {
            "resampled": _summary_dict(ols_cv.collect_metrics()),
            "train_description": ols_fit.describe(),
        },
        "tuning": {
            "model": repr(tune_wf.model),
            "n_candidates": int(len(grid)),
            "n_cells": result.n_cells,
            "errors": len(result.errors),
            "best": best,
            "within_one_se": one_se,
            "selected": chosen,
            "rule": rule,
        },
        "test": {
            "model": _metric_dict(final.metrics),
            "baseline": {k: float(v) for k, v in baseline_metrics.items()},
        },
    }

    io_mod.write_json(payload, metrics_dir / "metrics.json")
    p.step("Saved metrics.json")

    result.collect_metrics().to_csv(metrics_dir / "tuning.csv", index=False)
    p.step("Saved tuning.csv")

    preds_df = final.predictions.copy()
    preds_df["pred_baseline"] = base_scaled
    preds_df.to_csv(preds_dir / "test_preds.csv", index=False)
    p.step("Saved predictions CSV")

    final.fitted.save(models_dir / "workflow.pkl")
    final.fitted.coefficients().to_csv(models_dir / "coefficients.csv", index=False)
    p.step("Saved workflow + coefficients")

    if make_plots:
        from .plots import plot_pred_vs_actual, plot_tuning_curve

        plot_pred_vs_actual(final.predictions, figures_dir / "pred_vs_actual_test.png", truth=outcome, run_id=run_name)
        if "penalty" in result.param_names:
            plot_tuning_curve(result, select_metric, "penalty", figures_dir / "tuning_curve.png")
        p.step("Saved figures")

    if timestamped:
        run_dir = out_dir / "run" / run_name
        for sub in ("metrics", "preds", "models"):
            shutil.copytree(out_dir / sub, run_dir / sub, dirs_exist_ok=True)
        if bool(cfg_get(cfg, "run.save_config_snapshot", True)):
            shutil.copyfile(cfg_path, run_dir / "metrics" / "config.snapshot.yaml")
        p.step(f"Copied artifacts to run/{run_name}")

    p.close()
    say(f"[walkthrough] selected {chosen}; test {payload['test']['model']}")
    return payload


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Recipe / workflow / tuning walkthrough on a house-sales CSV."
    )
    parser.add_argument(
        "--config",
        default="configs/config.yaml",
        help="Path to the YAML config (default: configs/config.yaml).",
    )
    args = parser.parse_args(argv)
    payload = run(args.config)
    print(json.dumps(payload, indent=2))


if __name__ == "__main__":
    main()
