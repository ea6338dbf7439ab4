from __future__ import annotations

import hashlib
from datetime import date
from pathlib import Path
from typing import Iterable

import numpy as np
import pandas as pd


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def sha256_file(path: Path, chunk_bytes: int = 1024 * 1024) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(chunk_bytes)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def require_columns(df: pd.DataFrame, cols: Iterable[str], *, label: str) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"{label} is missing required columns: {missing}")


def as_float_array(series: pd.Series) -> np.ndarray:
    """Nullable numeric column as float64 with NaN for missing."""
    return pd.to_numeric(series, errors="coerce").astype("Float64").to_numpy(dtype="float64", na_value=np.nan)


def write_columns_txt(columns: Iterable[str], out_path: Path) -> None:
    out_path.write_text("\n".join(columns) + "\n", encoding="utf-8")


def today_iso() -> str:
    return date.today().isoformat()
