# tests/test_metrics.py
from __future__ import annotations

import math

import numpy as np
import pytest

from housingflow.metrics import RegressionMetrics, get_metric, mae, metric_set, rmse, rsq, rsq_trad


def test_rmse_and_mae_values():
    y = np.array([1.0, 2.0, 3.0, 4.0])
    p = np.array([1.0, 2.0, 3.0, 6.0])
    assert rmse(y, p) == pytest.approx(1.0)
    assert mae(y, p) == pytest.approx(0.5)


def test_rsq_is_squared_correlation_not_r2():
    y = np.array([1.0, 2.0, 3.0, 4.0])
    shifted = y + 10.0  # perfectly correlated, badly calibrated
    assert rsq(y, shifted) == pytest.approx(1.0)
    assert rsq_trad(y, shifted) < 0


def test_rsq_constant_prediction_is_nan():
    assert math.isnan(rsq([1.0, 2.0, 3.0], [2.0, 2.0, 2.0]))


def test_shape_mismatch_raises():
    with pytest.raises(ValueError):
        rmse([1.0, 2.0], [1.0])


def test_metric_set_defaults_and_directions():
    ms = metric_set()
    assert ms.names == ["rmse", "rsq"]
    assert ms.primary is rmse
    assert rmse.better(1.0, 2.0)
    assert rsq.better(0.9, 0.8)
    out = ms.compute([1.0, 2.0, 3.0], [1.0, 2.0, 3.0])
    assert out["rmse"] == pytest.approx(0.0)
    assert out["rsq"] == pytest.approx(1.0)


def test_metric_lookup_by_name():
    assert get_metric("RMSE") is rmse
    with pytest.raises(ValueError):
        get_metric("mape")
    with pytest.raises(ValueError):
        metric_set("rmse", "rmse")


def test_regression_metrics_container():
    m = RegressionMetrics.from_arrays([1.0, 2.0, 3.0], [1.0, 2.0, 4.0])
    d = m.as_dict()
    assert set(d) == {"MAE", "RMSE", "R2"}
    assert d["MAE"] == pytest.approx(1.0 / 3.0)
