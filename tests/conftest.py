# tests/conftest.py
from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Repo root = parent of the tests/ directory
REPO_ROOT = Path(__file__).resolve().parents[1]

SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


def make_houses(n: int = 120, seed: int = 327) -> pd.DataFrame:
    """Small King-County-like table: price grows with living area and waterfront."""
    rng = np.random.default_rng(seed)
    sqft_living = rng.integers(600, 4000, size=n)
    sqft_basement = np.where(rng.random(n) < 0.4, rng.integers(200, 900, size=n), 0)
    waterfront = (rng.random(n) < 0.1).astype(int)
    zipcode = rng.choice(["98001", "98004", "98103", "98115"], size=n)
    bedrooms = rng.integers(1, 6, size=n)
    noise = rng.normal(1.0, 0.05, size=n)
    price = (120.0 * sqft_living + 250_000.0 * waterfront + 40_000.0 * (zipcode == "98004")) * noise + 50_000.0
    return pd.DataFrame(
        {
            "id": np.arange(1000, 1000 + n),
            "date": pd.date_range("2014-05-02", periods=n, freq="3D"),
            "price": price,
            "bedrooms": bedrooms,
            "sqft_living": sqft_living,
            "sqft_basement": sqft_basement,
            "waterfront": waterfront,
            "zipcode": zipcode,
        }
    )


@pytest.fixture
def houses() -> pd.DataFrame:
    return make_houses()


@pytest.fixture
def houses_csv(tmp_path) -> Path:
    """The same table written the way kc_house_data.csv stores it (compact dates, upper-case header)."""
    df = make_houses()
    df["date"] = df["date"].dt.strftime("%Y%m%dT000000")
    df = df.rename(columns={"price": "Price"})
    path = tmp_path / "kc_house_data.csv"
    df.to_csv(path, index=False)
    return path
