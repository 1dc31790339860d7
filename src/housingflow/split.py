# src/housingflow/split.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.model_selection import KFold

from .errors import InvalidFoldCountError, InvalidFractionError, UnknownColumnError

__all__ = [
    "Split",
    "FoldSet",
    "initial_split",
    "kfold",
    "vfold_cv",
]


# --------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------
def _check_fraction(prop: float) -> float:
    try:
        prop = float(prop)
    except (TypeError, ValueError) as e:
        raise InvalidFractionError(f"Split proportion must be a number, got {prop!r}.") from e
    if not (0.0 < prop < 1.0):
        raise InvalidFractionError(
            f"Split proportion must lie strictly between 0 and 1, got {prop}."
        )
    return prop


def _strata_labels(s: pd.Series, n_breaks: int = 4) -> np.ndarray:
    """
    Stratum label per row.

    Numeric columns are cut into `n_breaks` quantile bins; anything else is
    used as-is (missing values form their own stratum).
    """
    if pd.api.types.is_numeric_dtype(s) and s.nunique(dropna=True) > n_breaks:
        binned = pd.qcut(s, q=n_breaks, labels=False, duplicates="drop")
        return binned.fillna(-1).to_numpy()
    return s.astype("string").fillna("<NA>").to_numpy()


def _as_positions(data: Union[pd.DataFrame, Sequence[int], np.ndarray]) -> np.ndarray:
    if isinstance(data, pd.DataFrame):
        return np.arange(len(data))
    return np.asarray(data, dtype=int)


# --------------------------------------------------------------------------------------
# Train / test split
# --------------------------------------------------------------------------------------
@dataclass(frozen=True)
class Split:
    """Positional train/test partition of one table."""

    train_idx: np.ndarray
    test_idx: np.ndarray
    prop: float
    seed: Optional[int] = None

    @property
    def n_rows(self) -> int:
        return int(len(self.train_idx) + len(self.test_idx))

    def training(self, df: pd.DataFrame) -> pd.DataFrame:
        return df.iloc[self.train_idx].copy()

    def testing(self, df: pd.DataFrame) -> pd.DataFrame:
        return df.iloc[self.test_idx].copy()

    def __repr__(self) -> str:
        return f"<Split train/test/total: {len(self.train_idx)}/{len(self.test_idx)}/{self.n_rows}>"


def initial_split(
    df: pd.DataFrame,
    prop: float = 0.75,
    *,
    seed: Optional[int] = None,
    strata: Optional[str] = None,
) -> Split:
    """
    Random train/test split of the rows of `df`.

    Row positions are permuted with `numpy.random.default_rng(seed)` and the
    first floor(n * prop) positions go to training, the rest to testing.
    Passing the same seed reproduces the identical assignment.

    If `strata` names a column, the split is drawn separately inside each
    stratum (numeric columns binned into quartiles) so that training and
    testing keep a similar distribution of that column.
    """
    prop = _check_fraction(prop)
    n = len(df)
    rng = np.random.default_rng(seed)

    if strata is None:
        perm = rng.permutation(n)
        n_train = int(np.floor(n * prop))
        train_idx, test_idx = perm[:n_train], perm[n_train:]
    else:
        if strata not in df.columns:
            raise UnknownColumnError(f"Strata column '{strata}' not found in dataframe.")
        labels = _strata_labels(df[strata])
        train_parts: List[np.ndarray] = []
        test_parts: List[np.ndarray] = []
        # Sorted stratum order keeps the draw reproducible for a fixed seed.
        for lab in sorted(pd.unique(labels), key=str):
            members = np.flatnonzero(labels == lab)
            members = members[rng.permutation(len(members))]
            k = int(np.floor(len(members) * prop))
            train_parts.append(members[:k])
            test_parts.append(members[k:])
        train_idx = np.concatenate(train_parts) if train_parts else np.array([], dtype=int)
        test_idx = np.concatenate(test_parts) if test_parts else np.array([], dtype=int)

    train_idx = np.asarray(train_idx, dtype=int)
    test_idx = np.asarray(test_idx, dtype=int)

    # Final sanity
    assert set(train_idx.tolist()).isdisjoint(test_idx.tolist()), "Partitions overlap."
    assert len(train_idx) + len(test_idx) == n, "Split does not cover all rows."

    return Split(train_idx=train_idx, test_idx=test_idx, prop=prop, seed=seed)


# --------------------------------------------------------------------------------------
# K-fold cross-validation
# --------------------------------------------------------------------------------------
def kfold(
    indices: Union[Sequence[int], np.ndarray],
    k: int,
    *,
    seed: Optional[int] = None,
) -> List[np.ndarray]:
    """
    Partition `indices` into k disjoint subsets whose sizes differ by at most 1.

    Uses scikit-learn's shuffled KFold; the returned subsets hold values from
    `indices` (not positions into it), in fold order.
    """
    idx = np.asarray(indices, dtype=int)
    if isinstance(k, bool) or int(k) != k:
        raise InvalidFoldCountError(f"Fold count must be an integer, got {k!r}.")
    k = int(k)
    if k < 2 or k > len(idx):
        raise InvalidFoldCountError(
            f"Fold count must satisfy 2 <= k <= {len(idx)} (number of rows), got k={k}."
        )

    splitter = KFold(n_splits=k, shuffle=True, random_state=seed)
    folds = [idx[test_pos] for _, test_pos in splitter.split(idx)]

    assert sum(len(f) for f in folds) == len(idx), "Folds do not cover all rows."
    return folds


@dataclass
class FoldSet:
    """
    K-fold (optionally repeated) resampling plan over a set of row positions.

    `folds[i]` is the assessment set of fold `ids[i]`; its analysis set is
    every other position of the same repeat.
    """

    indices: np.ndarray
    folds: List[np.ndarray]
    ids: List[str]
    repeat_of: List[int] = field(default_factory=list)
    seed: Optional[int] = None
    data: Optional[pd.DataFrame] = field(default=None, repr=False)

    def __len__(self) -> int:
        return len(self.folds)

    def splits(self) -> Iterator[Tuple[str, np.ndarray, np.ndarray]]:
        """Yield (fold_id, analysis_idx, assessment_idx) in fold order."""
        for i, assessment in enumerate(self.folds):
            analysis = self.indices[~np.isin(self.indices, assessment)]
            yield self.ids[i], analysis, assessment

    def __repr__(self) -> str:
        n_rep = len(set(self.repeat_of)) if self.repeat_of else 1
        v = len(self.folds) // max(n_rep, 1)
        return f"<FoldSet {v}-fold x {n_rep} over {len(self.indices)} rows>"


def vfold_cv(
    data: Union[pd.DataFrame, Sequence[int], np.ndarray],
    v: int = 10,
    *,
    seed: Optional[int] = None,
    repeats: int = 1,
) -> FoldSet:
    """
    V-fold cross-validation plan for a table (positions 0..n-1) or an index set.

    With `repeats > 1` the partition is redrawn that many times; fold ids read
    'Repeat1/Fold01' and so on. A single repeat uses `seed` directly, so
    `vfold_cv(idx, k, seed=s)` and `kfold(idx, k, seed=s)` agree.
    """
    idx = _as_positions(data)
    frame = data if isinstance(data, pd.DataFrame) else None
    if int(repeats) < 1:
        raise ValueError(f"repeats must be >= 1, got {repeats}.")
    repeats = int(repeats)

    if repeats == 1:
        folds = kfold(idx, v, seed=seed)
        width = len(str(len(folds)))
        ids = [f"Fold{str(i + 1).zfill(width)}" for i in range(len(folds))]
        return FoldSet(indices=idx, folds=folds, ids=ids, repeat_of=[1] * len(folds), seed=seed, data=frame)

    rng = np.random.default_rng(seed)
    folds: List[np.ndarray] = []
    ids: List[str] = []
    repeat_of: List[int] = []
    for r in range(1, repeats + 1):
        rep_seed = int(rng.integers(0, 2**31 - 1))
        rep_folds = kfold(idx, v, seed=rep_seed)
        width = len(str(len(rep_folds)))
        folds.extend(rep_folds)
        ids.extend(f"Repeat{r}/Fold{str(i + 1).zfill(width)}" for i in range(len(rep_folds)))
        repeat_of.extend([r] * len(rep_folds))
    return FoldSet(indices=idx, folds=folds, ids=ids, repeat_of=repeat_of, seed=seed, data=frame)
