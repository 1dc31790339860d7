# src/housingflow/metrics.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Sequence, Union

import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

__all__ = [
    "Metric",
    "MetricSet",
    "rmse",
    "rsq",
    "rsq_trad",
    "mae",
    "metric_set",
    "as_metric_set",
    "get_metric",
    "RegressionMetrics",
]


@dataclass(frozen=True)
class Metric:
    """A named regression metric and the direction in which it improves."""

    name: str
    func: Callable[[np.ndarray, np.ndarray], float]
    direction: str  # 'minimize' | 'maximize'

    def __call__(self, y_true, y_pred) -> float:
        y_true = np.asarray(y_true, dtype=float)
        y_pred = np.asarray(y_pred, dtype=float)
        if y_true.shape != y_pred.shape:
            raise ValueError(
                f"{self.name}: shape mismatch, truth={y_true.shape} estimate={y_pred.shape}"
            )
        return float(self.func(y_true, y_pred))

    def better(self, a: float, b: float) -> bool:
        """True if `a` is strictly better than `b`."""
        return a < b if self.direction == "minimize" else a > b


def _rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    # np.sqrt(MSE) works on all sklearn versions
    return np.sqrt(mean_squared_error(y_true, y_pred))


def _rsq(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Squared Pearson correlation; NaN when either side is constant."""
    if len(y_true) < 2 or np.std(y_true) == 0 or np.std(y_pred) == 0:
        return float("nan")
    return np.corrcoef(y_true, y_pred)[0, 1] ** 2


rmse = Metric("rmse", _rmse, "minimize")
rsq = Metric("rsq", _rsq, "maximize")
rsq_trad = Metric("rsq_trad", r2_score, "maximize")
mae = Metric("mae", mean_absolute_error, "minimize")

_REGISTRY: Dict[str, Metric] = {m.name: m for m in (rmse, rsq, rsq_trad, mae)}


def get_metric(m: Union[str, Metric]) -> Metric:
    if isinstance(m, Metric):
        return m
    try:
        return _REGISTRY[str(m).lower()]
    except KeyError:
        raise ValueError(f"Unknown metric {m!r}; known: {sorted(_REGISTRY)}") from None


class MetricSet:
    """Ordered collection of metrics; the first one is the primary metric."""

    def __init__(self, metrics: Sequence[Union[str, Metric]]):
        if not metrics:
            raise ValueError("A metric set needs at least one metric.")
        self.metrics: List[Metric] = [get_metric(m) for m in metrics]
        names = [m.name for m in self.metrics]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate metrics in set: {names}")

    @property
    def names(self) -> List[str]:
        return [m.name for m in self.metrics]

    @property
    def primary(self) -> Metric:
        return self.metrics[0]

    def __iter__(self):
        return iter(self.metrics)

    def __contains__(self, name: str) -> bool:
        return name in self.names

    def compute(self, y_true, y_pred) -> Dict[str, float]:
        return {m.name: m(y_true, y_pred) for m in self.metrics}

    def __repr__(self) -> str:
        return f"metric_set({', '.join(self.names)})"


def metric_set(*metrics: Union[str, Metric]) -> MetricSet:
    """metric_set(rmse, rsq) -> MetricSet; defaults to (rmse, rsq) when empty."""
    return MetricSet(list(metrics) or [rmse, rsq])


def as_metric_set(metrics: Union[None, str, Metric, MetricSet, Iterable[Union[str, Metric]]]) -> MetricSet:
    if metrics is None:
        return metric_set()
    if isinstance(metrics, MetricSet):
        return metrics
    if isinstance(metrics, (str, Metric)):
        return MetricSet([metrics])
    return MetricSet(list(metrics))


@dataclass
class RegressionMetrics:
    """
    Container for standard regression metrics.
    """
    mae: float
    rmse: float
    r2: float

    @classmethod
    def from_arrays(cls, y_true: np.ndarray, y_pred: np.ndarray) -> "RegressionMetrics":
        y_true = np.asarray(y_true, dtype=float)
        y_pred = np.asarray(y_pred, dtype=float)
        return cls(
            mae=float(mean_absolute_error(y_true, y_pred)),
            rmse=float(np.sqrt(mean_squared_error(y_true, y_pred))),
            r2=float(r2_score(y_true, y_pred)),
        )

    def as_dict(self) -> Dict[str, float]:
        return {"MAE": self.mae, "RMSE": self.rmse, "R2": self.r2}
