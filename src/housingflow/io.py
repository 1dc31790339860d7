# src/housingflow/io.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

import hashlib
import json
import math

import numpy as np
import pandas as pd

from .config import cfg_get

__all__ = ["load_data", "write_json", "dataset_fingerprint"]


# ----------------------------- #
# Public API
# ----------------------------- #

def load_data(
    csv_path: str | Path,
    *,
    cfg: Optional[Mapping[str, Any]] = None,
    target_col: str = "price",
    parse_dates: Sequence[str] = ("date",),
    zip_columns: Sequence[str] = ("zipcode",),
    drop_na_target: bool = True,
    filters: Optional[Mapping[str, Mapping[str, Any]]] = None,
    snapshot_dir: Optional[str | Path] = None,
) -> pd.DataFrame:
    """
    Load a house-sales CSV (King County layout) with basic hygiene.

    - column names stripped and lower-cased
    - ZIP columns kept as 5-character strings (nominal, not numeric)
    - date columns parsed (the raw '20141013T000000' form included)
    - +/-inf -> NaN, rows with a missing target dropped
    - optional per-column min/max filters
    - optional schema snapshot JSON (written when `snapshot_dir` is set)

    Config keys (override the keyword defaults): data.target, data.parse_dates,
    data.zip_columns, data.drop_na_target, data.filters, paths.interim_dir.
    """
    csv_path = Path(csv_path)
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV not found: {csv_path.resolve()}")

    target_col = str(cfg_get(cfg, "data.target", target_col))
    parse_dates = tuple(cfg_get(cfg, "data.parse_dates", list(parse_dates)))
    zip_columns = tuple(cfg_get(cfg, "data.zip_columns", list(zip_columns)))
    drop_na_target = bool(cfg_get(cfg, "data.drop_na_target", drop_na_target))
    filters = cfg_get(cfg, "data.filters", filters) or {}
    snapshot_dir = cfg_get(cfg, "paths.interim_dir", snapshot_dir)

    df = pd.read_csv(csv_path, low_memory=False)
    df.columns = [c.strip().lower() for c in df.columns]

    for col in zip_columns:
        if col in df.columns:
            df[col] = _normalize_zip(df[col])

    for dcol in parse_dates:
        if dcol in df.columns:
            df[dcol] = _coerce_datetime_quiet(df[dcol])

    df = df.replace([np.inf, -np.inf], np.nan)

    if target_col not in df.columns:
        raise ValueError(f"Target column '{target_col}' not found in CSV. Columns: {list(df.columns)}")
    df[target_col] = pd.to_numeric(df[target_col], errors="coerce")
    if drop_na_target:
        df = df.dropna(subset=[target_col])

    if filters:
        df = _apply_filters(df, filters)

    if len(df) == 0:
        raise ValueError(
            "No rows remain after loading and cleaning. "
            "Check 'data.filters' in configs/config.yaml and the target column."
        )

    df = df.reset_index(drop=True)

    if snapshot_dir is not None:
        _write_schema_snapshot(
            df=df,
            out_path=Path(snapshot_dir) / "schema.snapshot.json",
            csv_path=csv_path,
            target_col=target_col,
        )
    return df


def write_json(obj: Any, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, default=_json_default))
    return path


def dataset_fingerprint(csv_path: str | Path) -> str:
    return _sha256_file(Path(csv_path))


# ----------------------------- #
# Helpers (internal)
# ----------------------------- #

def _normalize_zip(s: pd.Series) -> pd.Series:
    """ZIP codes as strings; 1-5 digit values zero-padded to 5 characters."""
    if pd.api.types.is_numeric_dtype(s):
        s = pd.to_numeric(s, errors="coerce").astype("Int64").astype("string")
    else:
        s = s.astype("string")
    s = (
        s.fillna("")
         .str.strip()
         .str.replace(r"\.0$", "", regex=True)
         .str.replace(r"[^\d]", "", regex=True)
    )
    s = s.where(~s.str.fullmatch(r"\d{1,5}"), s.str.zfill(5))
    return s.astype(object).where(s != "", None)


def _apply_filters(
    df: pd.DataFrame,
    filters: Mapping[str, Mapping[str, Any]],
) -> pd.DataFrame:
    """Apply per-column min/max filters."""
    out = df
    for col, spec in filters.items():
        if col not in out.columns:
            continue
        if "min" in spec:
            out = out[out[col] >= spec["min"]]
        if "max" in spec:
            out = out[out[col] <= spec["max"]]
    return out.copy()


def _write_schema_snapshot(
    *,
    df: pd.DataFrame,
    out_path: Path,
    csv_path: Path,
    target_col: str,
) -> None:
    """Column dtypes, null counts and numeric ranges, plus the source file hash."""
    cols_meta: Dict[str, Dict[str, Any]] = {}
    for col in df.columns:
        s = df[col]
        meta: Dict[str, Any] = {
            "dtype": str(s.dtype),
            "non_null": int(s.notna().sum()),
            "nulls": int(s.isna().sum()),
        }
        if pd.api.types.is_numeric_dtype(s) and not pd.api.types.is_bool_dtype(s):
            arr = s.to_numpy(dtype=float)
            arr = arr[np.isfinite(arr)]
            if arr.size:
                meta.update(
                    {
                        "min": _nanfloat(np.min(arr)),
                        "p50": _nanfloat(np.percentile(arr, 50)),
                        "max": _nanfloat(np.max(arr)),
                        "mean": _nanfloat(np.mean(arr)),
                    }
                )
        elif pd.api.types.is_datetime64_any_dtype(s):
            meta.update({"min": _ts_or_none(s.min()), "max": _ts_or_none(s.max())})
        else:
            meta["n_levels"] = int(s.nunique(dropna=True))
        cols_meta[col] = meta

    snapshot = {
        "source_csv": str(csv_path),
        "data_hash_sha256": _sha256_file(csv_path),
        "num_rows": int(len(df)),
        "num_columns": int(df.shape[1]),
        "target_column": target_col,
        "columns": cols_meta,
    }
    write_json(snapshot, out_path)


def _sha256_file(path: Path, chunk_size: int = 1 << 20) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            b = f.read(chunk_size)
            if not b:
                break
            h.update(b)
    return f"sha256:{h.hexdigest()}"


def _nanfloat(x: float) -> Optional[float]:
    if x is None or (isinstance(x, float) and (math.isnan(x) or math.isinf(x))):
        return None
    return float(x)


def _ts_or_none(ts: pd.Timestamp | None) -> Optional[str]:
    if ts is None or pd.isna(ts):
        return None
    return ts.isoformat()


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (np.floating,)):
        return float(obj)
    if isinstance(obj, (np.integer,)):
        return int(obj)
    return str(obj)


def _coerce_datetime_quiet(s: pd.Series) -> pd.Series:
    """Coerce to datetime; handles the compact '20141013T000000' form."""
    if pd.api.types.is_datetime64_any_dtype(s):
        return s
    txt = s.astype("string").str.strip()
    compact = txt.str.fullmatch(r"\d{8}T\d{6}").fillna(False)
    if compact.all():
        return pd.to_datetime(txt, format="%Y%m%dT%H%M%S", errors="coerce")
    return pd.to_datetime(txt, errors="coerce", format="mixed")
