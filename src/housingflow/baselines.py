# src/housingflow/baselines.py
from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

__all__ = ["median_baseline"]


def median_baseline(
    train: pd.DataFrame,
    test: pd.DataFrame,
    target: str = "price",
    group_keys: Sequence[str] = ("zipcode",),
    *,
    min_group_size: int = 1,
) -> pd.Series:
    """
    Leakage-safe baseline predictor: median(target) by `group_keys`, fit on TRAIN only.

    Mapping priority (strict backoffs):
        1) median over all of `group_keys` when group size >= min_group_size
        2) median over the first key only, then the first two, ... (shorter
           prefixes of `group_keys`, most specific first)
        3) global TRAIN median

    The function never looks at TEST targets and returns a Series aligned to TEST.index.

    Parameters
    ----------
    train : pd.DataFrame
        Training split; must contain `target`.
    test : pd.DataFrame
        Rows to predict.
    target : str, default "price"
        Target column name.
    group_keys : sequence of str, default ("zipcode",)
        Grouping columns; keys missing from either table are ignored.
    min_group_size : int, default 1
        Groups with fewer training rows fall back to the next level.

    Returns
    -------
    pd.Series
        Baseline predictions (float64), index-aligned to `test`.
    """
    if target not in train.columns:
        raise KeyError(f"Target column '{target}' not found in train dataframe.")

    keys = [k for k in group_keys if k in train.columns and k in test.columns]
    global_median = float(pd.to_numeric(train[target], errors="coerce").median(skipna=True))

    if not keys:
        return pd.Series(global_median, index=test.index, dtype="float64")

    def _group_median(cols: List[str]) -> Optional[pd.Series]:
        g = train.groupby(cols, dropna=False)[target]
        stats = pd.DataFrame({"med": pd.to_numeric(g.median(), errors="coerce"), "n": g.size()})
        stats = stats[stats["n"] >= int(min_group_size)]
        if stats.empty:
            return None
        return stats["med"]

    baseline = pd.Series(np.nan, index=test.index, dtype="float64")
    # Most specific level first: all keys, then shorter prefixes.
    for depth in range(len(keys), 0, -1):
        cols = keys[:depth]
        med = _group_median(cols)
        needs = baseline.isna()
        if med is None or not needs.any():
            continue
        fill = (
            test.loc[needs, cols]
            .merge(med.rename("m"), how="left", left_on=cols, right_index=True, sort=False)["m"]
            .astype("float64")
        )
        baseline.loc[needs] = fill.to_numpy()

    return baseline.fillna(global_median).astype("float64")
