# src/housingflow/steps.py
from __future__ import annotations

import math
import operator
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.impute import SimpleImputer
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from .errors import NonPositiveValueError, UnknownColumnError, UnseenLevelError
from .selectors import Role, Selector, all_predictors, as_selector

__all__ = [
    "Step",
    "StepLog",
    "StepIndicator",
    "StepFactor",
    "StepRelevel",
    "StepOther",
    "StepDummy",
    "StepRemove",
    "StepMutate",
    "StepDate",
    "StepImpute",
    "StepNormalize",
    "StepZeroVariance",
    "STEP_KINDS",
]


# --------------------------------------------------------------------------- #
# Level helpers (shared by the categorical steps)
# --------------------------------------------------------------------------- #
def _level_str(v: Any) -> Optional[str]:
    """Canonical string form of a categorical value; None for missing."""
    if v is None:
        return None
    try:
        if pd.isna(v):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(v, (float, np.floating)) and float(v).is_integer():
        return str(int(v))
    return str(v)


def _as_levels(s: pd.Series) -> pd.Series:
    return s.astype(object).map(_level_str).astype(object)


def _learned_levels(s: pd.Series) -> List[str]:
    """Levels in order: declared categories if categorical, else sorted unique values."""
    if isinstance(s.dtype, pd.CategoricalDtype):
        levels = [_level_str(c) for c in s.cat.categories]
        return [lev for lev in levels if lev is not None]
    return sorted({lev for lev in _as_levels(s) if lev is not None})


def _to_categorical(s: pd.Series, levels: Sequence[str]) -> pd.Series:
    return pd.Series(
        pd.Categorical(_as_levels(s), categories=list(levels)),
        index=s.index,
        name=s.name,
    )


# --------------------------------------------------------------------------- #
# Base class
# --------------------------------------------------------------------------- #
class Step:
    """
    One preprocessing operation with a two-phase contract.

    learn(df, roles)
        Resolve the selector against `df` and freeze any data-dependent
        parameters (attributes ending in '_'). May add or drop entries of the
        recipe's role map for columns it creates or removes.
    apply(df)
        Pure transformation using only the frozen parameters.

    Columns resolved at learn time but absent at apply time are skipped; the
    recipe only lets that happen for the outcome column.
    """

    kind = "step"
    requires_match = True

    def __init__(self, selector: Any = None, *, required: Optional[bool] = None):
        self.selector: Optional[Selector] = as_selector(selector) if selector is not None else None
        if required is not None:
            self.requires_match = bool(required)
        self.columns_: Optional[List[str]] = None

    # ---- lifecycle ------------------------------------------------------- #
    @property
    def trained(self) -> bool:
        return self.columns_ is not None

    def learn(self, df: pd.DataFrame, roles: MutableMapping[str, Role]) -> "Step":
        self.columns_ = self._resolve(df, roles)
        self._learn(df, roles)
        return self

    def apply(self, df: pd.DataFrame) -> pd.DataFrame:
        if not self.trained:
            raise RuntimeError(f"{self.kind}: apply() called before learn().")
        return self._apply(df.copy())

    # ---- hooks ----------------------------------------------------------- #
    def _learn(self, df: pd.DataFrame, roles: MutableMapping[str, Role]) -> None:
        pass

    def _apply(self, df: pd.DataFrame) -> pd.DataFrame:
        raise NotImplementedError

    # ---- helpers --------------------------------------------------------- #
    def _resolve(self, df: pd.DataFrame, roles: Mapping[str, Role]) -> List[str]:
        if self.selector is None:
            return []
        cols = self.selector.resolve(df, roles)
        if not cols and self.requires_match:
            raise UnknownColumnError(
                f"{self.kind}: selector [{self.selector!r}] matched no columns. "
                f"Available: {list(df.columns)}"
            )
        return cols

    def _present(self, df: pd.DataFrame) -> List[str]:
        return [c for c in (self.columns_ or []) if c in df.columns]

    def params(self) -> Dict[str, Any]:
        """Learned parameters (JSON-friendly)."""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "columns": list(self.columns_ or []), **self.params()}

    def __repr__(self) -> str:
        target = self.columns_ if self.trained else repr(self.selector)
        state = "trained" if self.trained else "untrained"
        return f"<{self.kind} on {target} [{state}]>"


# --------------------------------------------------------------------------- #
# Numeric transforms
# --------------------------------------------------------------------------- #
class StepLog(Step):
    """
    Logarithm of each selected column.

    Values (after adding `offset`) must be strictly positive, both on the
    preparation table and on every table the step is later applied to;
    otherwise NonPositiveValueError. Missing values propagate.
    """

    kind = "log"

    def __init__(self, selector: Any, *, base: float = math.e, offset: float = 0.0, **kw):
        super().__init__(selector, **kw)
        if base <= 0 or base == 1:
            raise ValueError(f"Log base must be positive and != 1, got {base}.")
        self.base = float(base)
        self.offset = float(offset)

    def _log(self, x: np.ndarray) -> np.ndarray:
        if self.base == 10.0:
            return np.log10(x)
        if self.base == 2.0:
            return np.log2(x)
        if self.base == math.e:
            return np.log(x)
        return np.log(x) / np.log(self.base)

    def _check_positive(self, df: pd.DataFrame, cols: Sequence[str]) -> None:
        for c in cols:
            vals = pd.to_numeric(df[c], errors="raise").to_numpy(dtype=float) + self.offset
            bad = vals <= 0
            if np.any(bad):
                raise NonPositiveValueError(
                    f"log: column '{c}' has {int(bad.sum())} value(s) <= 0 "
                    f"(after offset={self.offset}); first offending value: {vals[bad][0]}."
                )

    def _learn(self, df, roles):
        self._check_positive(df, self.columns_)

    def _apply(self, df):
        cols = self._present(df)
        self._check_positive(df, cols)
        for c in cols:
            df[c] = self._log(df[c].to_numpy(dtype=float) + self.offset)
        return df

    def params(self):
        return {"base": self.base, "offset": self.offset}


_OPS: Dict[str, Callable[[Any, Any], Any]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}


class StepIndicator(Step):
    """0/1 indicator `name = int(column <op> value)`, e.g. has_basement = sqft_basement > 0."""

    kind = "indicator"

    def __init__(self, name: str, column: str, op: str = ">", value: Any = 0, *, keep_source: bool = True, **kw):
        super().__init__(column, **kw)
        if op not in _OPS and op != "in":
            raise ValueError(f"Unknown comparison {op!r}; choose from {sorted(_OPS) + ['in']}.")
        self.name = name
        self.column = column
        self.op = op
        self.value = value
        self.keep_source = keep_source

    def _learn(self, df, roles):
        roles[self.name] = Role.PREDICTOR
        if not self.keep_source:
            roles.pop(self.column, None)

    def _apply(self, df):
        s = df[self.column]
        if self.op == "in":
            flag = s.isin(list(self.value))
        else:
            flag = _OPS[self.op](s, self.value)
        df[self.name] = flag.fillna(False).astype(int)
        if not self.keep_source:
            df = df.drop(columns=[self.column])
        return df

    def params(self):
        return {"name": self.name, "op": self.op, "value": self.value, "keep_source": self.keep_source}


class StepImpute(Step):
    """Fill missing values with train-only statistics (scikit-learn SimpleImputer)."""

    kind = "impute"

    def __init__(self, selector: Any, *, strategy: str = "median", fill_value: Any = None, **kw):
        super().__init__(selector, **kw)
        if strategy not in {"median", "mean", "most_frequent", "constant"}:
            raise ValueError(f"Unknown impute strategy {strategy!r}.")
        self.strategy = strategy
        self.fill_value = fill_value
        self.fill_values_: Dict[str, Any] = {}

    def _learn(self, df, roles):
        X = df[self.columns_]
        if self.strategy in {"most_frequent", "constant"}:
            X = X.astype(object).where(X.notna(), np.nan)
        imp = SimpleImputer(strategy=self.strategy, fill_value=self.fill_value, keep_empty_features=True)
        imp.fit(X)
        self.fill_values_ = {c: _py(v) for c, v in zip(self.columns_, imp.statistics_)}

    def _apply(self, df):
        for c in self._present(df):
            fv = self.fill_values_[c]
            s = df[c]
            if isinstance(s.dtype, pd.CategoricalDtype) and fv not in s.cat.categories:
                s = s.cat.add_categories([fv])
            df[c] = s.fillna(fv)
        return df

    def params(self):
        return {"strategy": self.strategy, "fill_values": dict(self.fill_values_)}


class StepNormalize(Step):
    """Centre and scale to unit variance, with scikit-learn StandardScaler parameters from the prep table."""

    kind = "normalize"

    def __init__(self, selector: Any = None, **kw):
        super().__init__(selector if selector is not None else all_predictors(), **kw)
        self.means_: Dict[str, float] = {}
        self.scales_: Dict[str, float] = {}

    def _learn(self, df, roles):
        if not self.columns_:
            return
        scaler = StandardScaler().fit(df[self.columns_].to_numpy(dtype=float))
        self.means_ = {c: float(m) for c, m in zip(self.columns_, scaler.mean_)}
        self.scales_ = {c: float(s) for c, s in zip(self.columns_, scaler.scale_)}

    def _apply(self, df):
        for c in self._present(df):
            df[c] = (df[c].to_numpy(dtype=float) - self.means_[c]) / self.scales_[c]
        return df

    def params(self):
        return {"means": dict(self.means_), "scales": dict(self.scales_)}


# --------------------------------------------------------------------------- #
# Categorical transforms
# --------------------------------------------------------------------------- #
class StepFactor(Step):
    """Treat numeric codes (zipcode, waterfront, ...) as categorical; levels sorted and frozen."""

    kind = "factor"

    def __init__(self, selector: Any, **kw):
        super().__init__(selector, **kw)
        self.levels_: Dict[str, List[str]] = {}

    def _learn(self, df, roles):
        self.levels_ = {c: _learned_levels(df[c]) for c in self.columns_}

    def _apply(self, df):
        for c in self._present(df):
            df[c] = _to_categorical(df[c], self.levels_[c])
        return df

    def params(self):
        return {"levels": {c: list(v) for c, v in self.levels_.items()}}


class StepRelevel(Step):
    """Make `ref_level` the first (reference) level; dummy encoding then drops it."""

    kind = "relevel"

    def __init__(self, selector: Any, ref_level: Any, **kw):
        super().__init__(selector, **kw)
        self.ref_level = _level_str(ref_level)
        self.levels_: Dict[str, List[str]] = {}

    def _learn(self, df, roles):
        for c in self.columns_:
            levels = _learned_levels(df[c])
            if self.ref_level not in levels:
                raise UnseenLevelError(
                    f"relevel: reference level '{self.ref_level}' not found in column '{c}' "
                    f"(levels: {levels[:10]}{'...' if len(levels) > 10 else ''})."
                )
            self.levels_[c] = [self.ref_level] + [lev for lev in levels if lev != self.ref_level]

    def _apply(self, df):
        for c in self._present(df):
            df[c] = _to_categorical(df[c], self.levels_[c])
        return df

    def params(self):
        return {"ref_level": self.ref_level, "levels": {c: list(v) for c, v in self.levels_.items()}}


class StepOther(Step):
    """
    Pool infrequent levels into a single `other` level.

    `threshold` < 1 is a proportion of prep-table rows, >= 1 a row count.
    Levels never seen at preparation also land in `other` on apply.
    """

    kind = "other"

    def __init__(self, selector: Any, *, threshold: float = 0.05, other: str = "other", **kw):
        super().__init__(selector, **kw)
        self.threshold = float(threshold)
        self.other = other
        self.keep_: Dict[str, List[str]] = {}

    def _learn(self, df, roles):
        n = max(len(df), 1)
        for c in self.columns_:
            counts = _as_levels(df[c]).dropna().value_counts()
            cut = self.threshold * n if self.threshold < 1 else self.threshold
            kept = set(counts[counts >= cut].index)
            self.keep_[c] = [lev for lev in _learned_levels(df[c]) if lev in kept]
            if self.other in self.keep_[c]:
                raise ValueError(
                    f"other: '{self.other}' is already a retained level of '{c}'; pass a different other=."
                )

    def _apply(self, df):
        for c in self._present(df):
            keep = self.keep_[c]
            vals = _as_levels(df[c])
            pooled = vals.where(vals.isna() | vals.isin(keep), self.other)
            df[c] = _to_categorical(pooled, keep + [self.other])
        return df

    def params(self):
        return {"threshold": self.threshold, "other": self.other, "keep": {c: list(v) for c, v in self.keep_.items()}}


class StepDummy(Step):
    """
    Indicator columns for categorical predictors, using levels frozen at prep.

    one_hot=False (default) drops the first level (the reference, see
    StepRelevel) and yields L-1 columns; one_hot=True yields L columns.
    Output columns are named '<column>_<level>' and replace the source column.
    Encoding is a per-column OneHotEncoder fitted on the frozen levels.

    unseen decides what happens when apply meets a level (or a missing value)
    not present at preparation:
      'error' -> UnseenLevelError (default)
      'zero'  -> all indicators of that row are 0
    """

    kind = "dummy"

    def __init__(self, selector: Any, *, one_hot: bool = False, unseen: str = "error", sep: str = "_", **kw):
        super().__init__(selector, **kw)
        if unseen not in {"error", "zero"}:
            raise ValueError(f"unseen must be 'error' or 'zero', got {unseen!r}.")
        self.one_hot = bool(one_hot)
        self.unseen = unseen
        self.sep = sep
        self.levels_: Dict[str, List[str]] = {}
        self.outputs_: Dict[str, List[str]] = {}
        self.encoders_: Dict[str, OneHotEncoder] = {}

    def _learn(self, df, roles):
        for c in self.columns_:
            levels = _learned_levels(df[c])
            encoded = levels if self.one_hot else levels[1:]
            self.levels_[c] = levels
            self.outputs_[c] = [f"{c}{self.sep}{lev}" for lev in encoded]
            if encoded:
                enc = OneHotEncoder(
                    categories=[np.array(levels, dtype=object)],
                    drop=None if self.one_hot else "first",
                    handle_unknown="error" if self.unseen == "error" else "ignore",
                    sparse_output=False,
                    dtype=np.int64,
                )
                self.encoders_[c] = enc.fit(np.array(levels, dtype=object).reshape(-1, 1))
            role = roles.pop(c, Role.PREDICTOR)
            for name in self.outputs_[c]:
                roles[name] = role

    def _apply(self, df):
        for c in self._present(df):
            levels = self.levels_[c]
            vals = _as_levels(df[c])
            known = vals.isin(levels).to_numpy()
            if not known.all() and self.unseen == "error":
                seen_bad = sorted({str(v) for v in vals[~known]})
                raise UnseenLevelError(
                    f"dummy: column '{c}' has {int((~known).sum())} row(s) with levels not seen "
                    f"at preparation: {seen_bad[:5]}{'...' if len(seen_bad) > 5 else ''}. "
                    "Use unseen='zero' to encode them as all-zero indicators."
                )
            # unseen and missing rows stay all-zero
            codes = np.zeros((len(df), len(self.outputs_[c])), dtype=np.int64)
            if known.any() and c in self.encoders_:
                codes[known] = self.encoders_[c].transform(
                    vals[known].to_numpy(dtype=object).reshape(-1, 1)
                )
            block = pd.DataFrame(codes, columns=self.outputs_[c], index=df.index)
            df = pd.concat([df.drop(columns=[c]), block], axis=1)
        return df

    def params(self):
        return {
            "one_hot": self.one_hot,
            "unseen": self.unseen,
            "levels": {c: list(v) for c, v in self.levels_.items()},
        }


# --------------------------------------------------------------------------- #
# Structural steps
# --------------------------------------------------------------------------- #
class StepRemove(Step):
    kind = "rm"

    def _learn(self, df, roles):
        for c in self.columns_:
            roles.pop(c, None)

    def _apply(self, df):
        return df.drop(columns=self._present(df))


class StepZeroVariance(Step):
    """Drop columns holding a single distinct value on the prep table."""

    kind = "zv"
    requires_match = False

    def __init__(self, selector: Any = None, **kw):
        super().__init__(selector if selector is not None else all_predictors(), **kw)
        self.removed_: List[str] = []

    def _learn(self, df, roles):
        self.removed_ = [c for c in self.columns_ if df[c].nunique(dropna=True) <= 1]
        for c in self.removed_:
            roles.pop(c, None)

    def _apply(self, df):
        return df.drop(columns=[c for c in self.removed_ if c in df.columns])

    def params(self):
        return {"removed": list(self.removed_)}


class StepMutate(Step):
    """
    Row-wise derived column `name = expr`.

    `expr` is evaluated with no builtins; the namespace holds NumPy as `np`
    and every column of the table. Expressions must be row-wise (no
    aggregates) so nothing is learned from the table.
    """

    kind = "mutate"
    requires_match = False

    def __init__(self, name: str, expr: str, **kw):
        super().__init__(None, **kw)
        if not name or not isinstance(name, str):
            raise ValueError(f"mutate: invalid column name {name!r}")
        if not expr or not isinstance(expr, str):
            raise ValueError(f"mutate: '{name}' missing a valid 'expr' string.")
        self.name = name
        self.expr = expr

    def _eval(self, df: pd.DataFrame) -> pd.Series:
        safe_globals: Dict[str, Any] = {"__builtins__": {}}
        safe_locals: Dict[str, Any] = {"np": np}
        for col in df.columns:
            safe_locals[col] = df[col]
        try:
            result = eval(self.expr, safe_globals, safe_locals)
        except NameError as e:
            raise UnknownColumnError(f"mutate: '{self.name}' references unknown column: {e}") from e

        if isinstance(result, (pd.Series, pd.Index)):
            return pd.Series(np.asarray(result), index=df.index)
        if np.isscalar(result):
            return pd.Series(np.repeat(result, len(df)), index=df.index)
        arr = np.asarray(result)
        if arr.shape[0] != len(df):
            raise ValueError(
                f"mutate: '{self.name}' produced length {arr.shape[0]} but expected {len(df)}."
            )
        return pd.Series(arr, index=df.index)

    def _learn(self, df, roles):
        self._eval(df)
        roles.setdefault(self.name, Role.PREDICTOR)

    def _apply(self, df):
        out = self._eval(df)
        if pd.api.types.is_bool_dtype(out):
            out = out.astype(int)
        df[self.name] = out
        return df

    def params(self):
        return {"name": self.name, "expr": self.expr}


_DATE_PARTS: Dict[str, Callable[[pd.Series], pd.Series]] = {
    "year": lambda s: s.dt.year,
    "month": lambda s: s.dt.month,
    "dow": lambda s: s.dt.dayofweek,
    "doy": lambda s: s.dt.dayofyear,
    "quarter": lambda s: s.dt.quarter,
}


class StepDate(Step):
    """Numeric date parts ('<column>_year', ...) from a datetime column."""

    kind = "date"

    def __init__(self, column: str, *, features: Sequence[str] = ("year", "month", "dow"), keep_original: bool = False, **kw):
        super().__init__(column, **kw)
        unknown = [f for f in features if f not in _DATE_PARTS]
        if unknown:
            raise ValueError(f"date: unknown features {unknown}; choose from {sorted(_DATE_PARTS)}.")
        self.column = column
        self.features = tuple(features)
        self.keep_original = keep_original

    def _learn(self, df, roles):
        pd.to_datetime(df[self.column], errors="raise")
        for f in self.features:
            roles[f"{self.column}_{f}"] = Role.PREDICTOR
        if not self.keep_original:
            roles.pop(self.column, None)

    def _apply(self, df):
        s = pd.to_datetime(df[self.column], errors="raise")
        for f in self.features:
            df[f"{self.column}_{f}"] = _DATE_PARTS[f](s).astype(float)
        if not self.keep_original:
            df = df.drop(columns=[self.column])
        return df

    def params(self):
        return {"features": list(self.features), "keep_original": self.keep_original}


# --------------------------------------------------------------------------- #
# Utilities
# --------------------------------------------------------------------------- #
def _py(v: Any) -> Any:
    """NumPy scalar -> Python scalar (for JSON-friendly params)."""
    if isinstance(v, np.generic):
        return v.item()
    return v


STEP_KINDS: Dict[str, type] = {
    cls.kind: cls
    for cls in (
        StepLog,
        StepIndicator,
        StepFactor,
        StepRelevel,
        StepOther,
        StepDummy,
        StepRemove,
        StepMutate,
        StepDate,
        StepImpute,
        StepNormalize,
        StepZeroVariance,
    )
}
