# src/housingflow/config.py
"""
YAML configuration for the walkthrough.

configs/config.yaml holds the sections paths / run / data / split / cv /
recipe / model / tune / eval. The helpers here read it and turn the
`recipe`, `model` and `tune` sections into library objects.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, List, Mapping, Optional

import pandas as pd
import yaml

from .errors import ConfigError
from .modeling import ModelSpec, linear_reg, tune
from .recipe import Recipe
from .selectors import (
    Selector,
    all_nominal_predictors,
    all_numeric_predictors,
    all_outcomes,
    all_predictors,
    as_selector,
    matches,
    starts_with,
)
from .steps import STEP_KINDS
from .tune import expand_grid, grid_regular

__all__ = [
    "load_yaml",
    "cfg_get",
    "selector_from_cfg",
    "recipe_from_cfg",
    "model_from_cfg",
    "grid_from_cfg",
]

_NAMED_SELECTORS = {
    "all_predictors": all_predictors,
    "all_outcomes": all_outcomes,
    "all_numeric_predictors": all_numeric_predictors,
    "all_nominal_predictors": all_nominal_predictors,
}

# Step kinds whose first positional argument is not a selector.
_POSITIONAL = {
    "indicator": ("name", "column"),
    "mutate": ("name", "expr"),
    "date": ("column",),
}


# ----------------------------- #
# Loading
# ----------------------------- #
def load_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p.resolve()}")
    data = yaml.safe_load(p.read_text())
    if data is None or not isinstance(data, dict) or not data:
        raise ConfigError(
            f"Config file is empty or invalid YAML: {p.resolve()}\n"
            "Please populate configs/config.yaml."
        )
    return data


def cfg_get(cfg: Optional[Mapping[str, Any]], dotted: str, default: Any = None) -> Any:
    """cfg_get(cfg, 'cv.v', 10) -> cfg['cv']['v'] if present, else default."""
    cur: Any = cfg
    for key in dotted.split("."):
        if isinstance(cur, Mapping) and key in cur:
            cur = cur[key]
        else:
            return default
    return cur


# ----------------------------- #
# Recipe
# ----------------------------- #
def selector_from_cfg(spec: Any) -> Selector:
    """
    Accepted forms:
      - 'all_nominal_predictors' (any named helper) or a single column name
      - [col_a, col_b]
      - {starts_with: 'sqft_'} / {matches: '^yr_'}
    """
    if isinstance(spec, str):
        fn = _NAMED_SELECTORS.get(spec)
        return fn() if fn is not None else as_selector(spec)
    if isinstance(spec, Mapping):
        if len(spec) != 1:
            raise ConfigError(f"Selector mapping must have exactly one key, got {dict(spec)}.")
        (key, val), = spec.items()
        if key == "starts_with":
            return starts_with(str(val))
        if key == "matches":
            return matches(str(val))
        raise ConfigError(f"Unknown selector form {key!r}; use 'starts_with' or 'matches'.")
    if isinstance(spec, (list, tuple)) and spec:
        return as_selector([str(s) for s in spec])
    raise ConfigError(f"Invalid selector in config: {spec!r}")


def _step_from_cfg(i: int, item: Mapping[str, Any]):
    if not isinstance(item, Mapping) or "kind" not in item:
        raise ConfigError(f"recipe.steps[{i}] must be a mapping with a 'kind' key, got {item!r}.")
    params = dict(item)
    kind = str(params.pop("kind"))
    if kind not in STEP_KINDS:
        raise ConfigError(f"recipe.steps[{i}]: unknown step kind {kind!r}; known: {sorted(STEP_KINDS)}.")
    cls = STEP_KINDS[kind]

    args: List[Any] = []
    if kind in _POSITIONAL:
        for name in _POSITIONAL[kind]:
            if name not in params:
                raise ConfigError(f"recipe.steps[{i}] ({kind}) missing '{name}'.")
            args.append(params.pop(name))
    elif "columns" in params:
        args.append(selector_from_cfg(params.pop("columns")))
    elif kind not in ("normalize", "zv"):
        raise ConfigError(f"recipe.steps[{i}] ({kind}) missing 'columns'.")

    try:
        return cls(*args, **params)
    except TypeError as e:
        raise ConfigError(f"recipe.steps[{i}] ({kind}): {e}") from e


def recipe_from_cfg(cfg: Mapping[str, Any]) -> Recipe:
    """
    Build a Recipe from cfg['recipe']:

      recipe:
        outcome: price
        roles: {id: evaluative}
        steps:
          - {kind: log, columns: [price, sqft_living], base: 10}
          - {kind: dummy, columns: all_nominal_predictors}
    """
    rcfg = cfg_get(cfg, "recipe", None)
    if not isinstance(rcfg, Mapping):
        raise ConfigError("Config is missing the 'recipe' section.")
    outcome = rcfg.get("outcome", cfg_get(cfg, "data.target"))
    if not outcome:
        raise ConfigError("recipe.outcome (or data.target) must name the outcome column.")

    rec = Recipe(outcome=str(outcome))
    for col, role in (rcfg.get("roles") or {}).items():
        try:
            rec.update_role(str(col), str(role).lower())
        except ValueError as e:
            raise ConfigError(f"recipe.roles.{col}: {e}") from e
    for i, item in enumerate(rcfg.get("steps") or []):
        rec.add_step(_step_from_cfg(i, item))
    return rec


# ----------------------------- #
# Model / grid
# ----------------------------- #
def _arg_from_cfg(v: Any) -> Any:
    # 'tune' (or 'tune()') in YAML stands for the tuning marker
    if isinstance(v, str) and v.strip() in ("tune", "tune()"):
        return tune()
    return v


def model_from_cfg(cfg: Mapping[str, Any], section: str = "model") -> ModelSpec:
    mcfg = cfg_get(cfg, section, {}) or {}
    family = mcfg.get("family", "linear_reg")
    if family != "linear_reg":
        raise ConfigError(f"{section}.family: unsupported model family {family!r}.")
    engine = mcfg.get("engine", "sklearn")
    engine_args = dict(mcfg.get("engine_args") or {})
    try:
        return linear_reg(
            penalty=_arg_from_cfg(mcfg.get("penalty")),
            mixture=_arg_from_cfg(mcfg.get("mixture")),
            engine=engine,
            **engine_args,
        )
    except ValueError as e:
        raise ConfigError(f"{section}: {e}") from e


def grid_from_cfg(cfg: Mapping[str, Any]) -> pd.DataFrame:
    """
    tune:
      grid: {penalty: [0.001, 0.01, 0.1]}          # explicit values
    or
      levels: 50
      ranges: {penalty: [-10, 0]}                  # log10 scale for penalty
    """
    tcfg = cfg_get(cfg, "tune", {}) or {}
    explicit = tcfg.get("grid")
    if explicit:
        if not isinstance(explicit, Mapping):
            raise ConfigError("tune.grid must map parameter names to value lists.")
        return expand_grid(**{k: list(v) for k, v in explicit.items()})
    ranges = tcfg.get("ranges") or {"penalty": None}
    try:
        return grid_regular(
            levels=int(tcfg.get("levels", 5)),
            **{k: (tuple(v) if v is not None else None) for k, v in ranges.items()},
        )
    except (KeyError, ValueError) as e:
        raise ConfigError(f"tune: {e}") from e
