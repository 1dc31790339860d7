# src/housingflow/recipe.py
from __future__ import annotations

from copy import deepcopy
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .errors import RoleConflictError, SchemaMismatchError, UnknownColumnError
from .selectors import Role, Selector, as_selector
from .steps import (
    Step,
    StepDate,
    StepDummy,
    StepFactor,
    StepImpute,
    StepIndicator,
    StepLog,
    StepMutate,
    StepNormalize,
    StepOther,
    StepRelevel,
    StepRemove,
    StepZeroVariance,
)

__all__ = ["Recipe", "PreparedRecipe"]


def _check_unique_columns(df: pd.DataFrame, where: str) -> None:
    dup = df.columns[df.columns.duplicated()].tolist()
    if dup:
        raise SchemaMismatchError(f"{where}: duplicated column names {sorted(set(map(str, dup)))}.")


# --------------------------------------------------------------------------- #
# Declared recipe (builder)
# --------------------------------------------------------------------------- #
class Recipe:
    """
    Ordered preprocessing steps plus role assignments, not yet fitted to data.

    Build it with the chainable `step_*` / `update_role` methods, then call
    `prepare(train_df)` to obtain a PreparedRecipe whose learned parameters
    come from `train_df` only. The declared recipe itself is never mutated by
    preparation and can be prepared again on other data (e.g. each CV fold).

    >>> rec = (
    ...     Recipe(outcome="price")
    ...     .update_role("id", Role.EVALUATIVE)
    ...     .step_log(["price", "sqft_living"], base=10)
    ...     .step_indicator("has_basement", "sqft_basement", ">", 0)
    ...     .step_factor("waterfront")
    ...     .step_dummy(all_nominal_predictors())
    ... )
    >>> prepped = rec.prepare(train_df)
    >>> baked_test = prepped.apply(test_df)
    """

    def __init__(self, outcome: Optional[str] = None):
        self.outcome = outcome
        self.role_updates: List[Tuple[Selector, Role]] = []
        self.steps: List[Step] = []

    # ---- building -------------------------------------------------------- #
    def update_role(self, selector: Any, role: Role | str) -> "Recipe":
        self.role_updates.append((as_selector(selector), Role(role)))
        return self

    def add_step(self, step: Step) -> "Recipe":
        if not isinstance(step, Step):
            raise TypeError(f"Expected a Step, got {type(step).__name__}.")
        self.steps.append(step)
        return self

    def step_log(self, selector: Any, **kw) -> "Recipe":
        return self.add_step(StepLog(selector, **kw))

    def step_indicator(self, name: str, column: str, op: str = ">", value: Any = 0, **kw) -> "Recipe":
        return self.add_step(StepIndicator(name, column, op, value, **kw))

    def step_factor(self, selector: Any, **kw) -> "Recipe":
        return self.add_step(StepFactor(selector, **kw))

    def step_relevel(self, selector: Any, ref_level: Any, **kw) -> "Recipe":
        return self.add_step(StepRelevel(selector, ref_level, **kw))

    def step_other(self, selector: Any, **kw) -> "Recipe":
        return self.add_step(StepOther(selector, **kw))

    def step_dummy(self, selector: Any, **kw) -> "Recipe":
        return self.add_step(StepDummy(selector, **kw))

    def step_rm(self, selector: Any, **kw) -> "Recipe":
        return self.add_step(StepRemove(selector, **kw))

    def step_mutate(self, name: str, expr: str, **kw) -> "Recipe":
        return self.add_step(StepMutate(name, expr, **kw))

    def step_date(self, column: str, **kw) -> "Recipe":
        return self.add_step(StepDate(column, **kw))

    def step_impute(self, selector: Any, **kw) -> "Recipe":
        return self.add_step(StepImpute(selector, **kw))

    def step_normalize(self, selector: Any = None, **kw) -> "Recipe":
        return self.add_step(StepNormalize(selector, **kw))

    def step_zv(self, selector: Any = None, **kw) -> "Recipe":
        return self.add_step(StepZeroVariance(selector, **kw))

    # ---- preparation ----------------------------------------------------- #
    def _initial_roles(self, df: pd.DataFrame) -> Dict[str, Role]:
        roles: Dict[str, Role] = {c: Role.PREDICTOR for c in df.columns}
        if self.outcome is not None:
            if self.outcome not in df.columns:
                raise UnknownColumnError(f"Outcome column '{self.outcome}' not found in dataframe.")
            roles[self.outcome] = Role.OUTCOME
        for sel, role in self.role_updates:
            cols = sel.resolve(df, roles)
            if not cols:
                raise UnknownColumnError(f"update_role: selector [{sel!r}] matched no columns.")
            for c in cols:
                roles[c] = role
        return roles

    @staticmethod
    def _single_outcome(roles: Mapping[str, Role], when: str) -> str:
        outcomes = [c for c, r in roles.items() if r == Role.OUTCOME]
        if len(outcomes) != 1:
            raise RoleConflictError(
                f"{when}: a recipe needs exactly one outcome column, found {len(outcomes)}: {outcomes}."
            )
        return outcomes[0]

    def prepare(self, df: pd.DataFrame) -> "PreparedRecipe":
        """Learn every step's parameters from `df`, in declared order."""
        _check_unique_columns(df, "prepare")
        roles = self._initial_roles(df)
        outcome = self._single_outcome(roles, "prepare")

        input_columns = list(df.columns)
        required = [c for c in input_columns if roles[c] != Role.OUTCOME]

        steps = deepcopy(self.steps)
        current = df.copy()
        for step in steps:
            step.learn(current, roles)
            current = step.apply(current)

        final_roles = {c: roles.get(c, Role.PREDICTOR) for c in current.columns}
        if self._single_outcome(final_roles, "prepare (after steps)") != outcome:
            raise RoleConflictError(f"Steps renamed or replaced the outcome column '{outcome}'.")

        return PreparedRecipe(
            steps=steps,
            roles=final_roles,
            outcome=outcome,
            input_columns=input_columns,
            required_columns=required,
            training=current,
        )

    def __repr__(self) -> str:
        lines = [f"Recipe(outcome={self.outcome!r})"]
        for sel, role in self.role_updates:
            lines.append(f"  role {role.value}: {sel!r}")
        for step in self.steps:
            lines.append(f"  {step!r}")
        return "\n".join(lines)


# --------------------------------------------------------------------------- #
# Prepared recipe (frozen parameters)
# --------------------------------------------------------------------------- #
class PreparedRecipe:
    """
    A recipe whose steps carry parameters learned from one reference table.

    `apply(df)` is a pure function of (this object, df): it never refits a
    step, so rows of the table it is applied to cannot influence the
    learned parameters.
    """

    def __init__(
        self,
        *,
        steps: Sequence[Step],
        roles: Mapping[str, Role],
        outcome: str,
        input_columns: Sequence[str],
        required_columns: Sequence[str],
        training: pd.DataFrame,
    ):
        self.steps = list(steps)
        self.roles = dict(roles)
        self.outcome = outcome
        self.input_columns = list(input_columns)
        self.required_columns = list(required_columns)
        self.output_columns = list(training.columns)
        self._training = training

    # ---- role views ------------------------------------------------------ #
    @property
    def predictors(self) -> List[str]:
        return [c for c in self.output_columns if self.roles[c] == Role.PREDICTOR]

    @property
    def evaluative(self) -> List[str]:
        return [c for c in self.output_columns if self.roles[c] == Role.EVALUATIVE]

    # ---- application ----------------------------------------------------- #
    def apply(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Transform `df` with the frozen steps.

        Every non-outcome column seen at preparation must be present
        (SchemaMismatchError otherwise); the outcome column is optional so
        that unlabeled tables can be scored. Extra input columns are dropped
        and the output columns follow the prepared order.
        """
        _check_unique_columns(df, "apply")
        missing = [c for c in self.required_columns if c not in df.columns]
        if missing:
            raise SchemaMismatchError(
                f"apply: input is missing {len(missing)} column(s) required by the prepared recipe: {missing}"
            )

        current = df[[c for c in self.input_columns if c in df.columns]].copy()
        for step in self.steps:
            current = step.apply(current)
        return current[[c for c in self.output_columns if c in current.columns]]

    def training(self) -> pd.DataFrame:
        """The reference table as transformed during preparation."""
        return self._training.copy()

    # ---- introspection --------------------------------------------------- #
    def summary(self) -> pd.DataFrame:
        rows = []
        for c in self.output_columns:
            s = self._training[c]
            rows.append(
                {
                    "variable": c,
                    "type": "numeric" if pd.api.types.is_numeric_dtype(s) else "nominal",
                    "role": self.roles[c].value,
                }
            )
        return pd.DataFrame(rows, columns=["variable", "type", "role"])

    def to_dict(self) -> Dict[str, Any]:
        """Learned state, sufficient to audit or rebuild the transformation."""
        return {
            "outcome": self.outcome,
            "input_columns": list(self.input_columns),
            "output_columns": list(self.output_columns),
            "roles": {c: r.value for c, r in self.roles.items()},
            "steps": [s.to_dict() for s in self.steps],
        }

    def __repr__(self) -> str:
        return (
            f"<PreparedRecipe outcome={self.outcome!r} predictors={len(self.predictors)} "
            f"steps={[s.kind for s in self.steps]}>"
        )
