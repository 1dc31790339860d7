# src/housingflow/selectors.py
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Mapping, Sequence, Tuple, Union

import pandas as pd

from .errors import UnknownColumnError

__all__ = [
    "Role",
    "Selector",
    "ByName",
    "ByPattern",
    "ByRole",
    "ByType",
    "ByPredicate",
    "AnyOf",
    "AllOf",
    "Minus",
    "as_selector",
    "all_predictors",
    "all_outcomes",
    "all_numeric_predictors",
    "all_nominal_predictors",
    "starts_with",
    "matches",
]


class Role(str, Enum):
    """Role of a column inside a recipe."""

    OUTCOME = "outcome"
    PREDICTOR = "predictor"
    EVALUATIVE = "evaluative"   # carried through, never fitted on


def is_numeric(s: pd.Series) -> bool:
    return pd.api.types.is_numeric_dtype(s) and not pd.api.types.is_bool_dtype(s)


def is_nominal(s: pd.Series) -> bool:
    return (
        isinstance(s.dtype, pd.CategoricalDtype)
        or pd.api.types.is_object_dtype(s)
        or pd.api.types.is_string_dtype(s)
        or pd.api.types.is_bool_dtype(s)
    )


# --------------------------------------------------------------------------- #
# Selector variants
# --------------------------------------------------------------------------- #
class Selector:
    """
    Column selector, resolved once against a table and its role map.

    `resolve` returns matching column names in table order. Steps call it at
    preparation time and keep the resulting list; selectors are never
    re-evaluated on new data.
    """

    def resolve(self, df: pd.DataFrame, roles: Mapping[str, Role]) -> List[str]:
        keep = self._matches(df, roles)
        return [c for c in df.columns if c in keep]

    def _matches(self, df: pd.DataFrame, roles: Mapping[str, Role]) -> set:
        raise NotImplementedError

    def __or__(self, other: "Selector") -> "Selector":
        return AnyOf((self, as_selector(other)))

    def __sub__(self, other: "Selector") -> "Selector":
        return Minus(self, as_selector(other))

    def __and__(self, other: "Selector") -> "Selector":
        return AllOf(self, as_selector(other))


@dataclass(frozen=True)
class ByName(Selector):
    names: Tuple[str, ...]

    def _matches(self, df, roles):
        missing = [c for c in self.names if c not in df.columns]
        if missing:
            raise UnknownColumnError(f"Column(s) {missing} not found. Available: {list(df.columns)}")
        return set(self.names)

    def __repr__(self) -> str:
        return ", ".join(self.names)


@dataclass(frozen=True)
class ByPattern(Selector):
    pattern: str

    def _matches(self, df, roles):
        rx = re.compile(self.pattern)
        return {c for c in df.columns if rx.search(str(c))}

    def __repr__(self) -> str:
        return f"matches({self.pattern!r})"


@dataclass(frozen=True)
class ByRole(Selector):
    role: Role

    def _matches(self, df, roles):
        return {c for c in df.columns if roles.get(c) == self.role}

    def __repr__(self) -> str:
        return f"has_role({self.role.value!r})"


@dataclass(frozen=True)
class ByType(Selector):
    kind: str  # 'numeric' | 'nominal'

    def _matches(self, df, roles):
        if self.kind == "numeric":
            test = is_numeric
        elif self.kind == "nominal":
            test = is_nominal
        else:
            raise ValueError(f"Unknown column type {self.kind!r}; use 'numeric' or 'nominal'.")
        return {c for c in df.columns if test(df[c])}

    def __repr__(self) -> str:
        return f"all_{self.kind}()"


@dataclass(frozen=True)
class ByPredicate(Selector):
    func: Callable[[pd.Series], bool]

    def _matches(self, df, roles):
        return {c for c in df.columns if bool(self.func(df[c]))}

    def __repr__(self) -> str:
        return f"where({getattr(self.func, '__name__', 'predicate')})"


@dataclass(frozen=True)
class AnyOf(Selector):
    parts: Tuple[Selector, ...]

    def _matches(self, df, roles):
        out: set = set()
        for p in self.parts:
            out |= p._matches(df, roles)
        return out

    def __repr__(self) -> str:
        return " | ".join(repr(p) for p in self.parts)


@dataclass(frozen=True)
class AllOf(Selector):
    left: Selector
    right: Selector

    def _matches(self, df, roles):
        return self.left._matches(df, roles) & self.right._matches(df, roles)

    def __repr__(self) -> str:
        return f"{self.left!r} & {self.right!r}"


@dataclass(frozen=True)
class Minus(Selector):
    base: Selector
    drop: Selector

    def _matches(self, df, roles):
        return self.base._matches(df, roles) - self.drop._matches(df, roles)

    def __repr__(self) -> str:
        return f"{self.base!r} - {self.drop!r}"


# --------------------------------------------------------------------------- #
# Constructors
# --------------------------------------------------------------------------- #
def as_selector(x: Union[Selector, str, Sequence[str]]) -> Selector:
    """Coerce a column name or a list of names into a selector."""
    if isinstance(x, Selector):
        return x
    if isinstance(x, str):
        return ByName((x,))
    return ByName(tuple(x))


def all_predictors() -> Selector:
    return ByRole(Role.PREDICTOR)


def all_outcomes() -> Selector:
    return ByRole(Role.OUTCOME)


def all_numeric_predictors() -> Selector:
    return AllOf(ByType("numeric"), ByRole(Role.PREDICTOR))


def all_nominal_predictors() -> Selector:
    return AllOf(ByType("nominal"), ByRole(Role.PREDICTOR))


def starts_with(prefix: str) -> Selector:
    return ByPattern("^" + re.escape(prefix))


def matches(pattern: str) -> Selector:
    return ByPattern(pattern)

