from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import pandas as pd

from pv_seroreactivity.config import AnalysisConfig
from pv_seroreactivity.utils import as_float_array, require_columns


logger = logging.getLogger("pv_seroreactivity.transform")


def drop_excluded_columns(df: pd.DataFrame, exclude: Sequence[str]) -> pd.DataFrame:
    present = [c for c in exclude if c in df.columns]
    if present:
        logger.info("Dropping non-antigen columns: %s", present)
    return df.drop(columns=present)


def log10_nullable(values: pd.Series) -> pd.Series:
    """log10 of positive finite values; everything else becomes ``<NA>``."""
    raw = as_float_array(values)
    usable = np.isfinite(raw) & (raw > 0)
    out = np.full(raw.shape, np.nan, dtype="float64")
    out[usable] = np.log10(raw[usable])
    return pd.Series(out, index=values.index, name=values.name, dtype="float64").astype("Float64")


def log10_transform(df: pd.DataFrame, antigens: Sequence[str]) -> pd.DataFrame:
    require_columns(df, antigens, label="antibody measurements")
    logged = {a: log10_nullable(df[a]) for a in antigens}
    out = df.copy()
    for antigen, series in logged.items():
        out[antigen] = series

    n_before = int(df.loc[:, list(antigens)].notna().sum().sum())
    n_after = int(sum(int(s.notna().sum()) for s in logged.values()))
    logger.info("log10 transform: %d of %d measured values non-positive, set missing", n_before - n_after, n_before)
    return out


def derive_lifetime_exposure(df: pd.DataFrame, cfg: AnalysisConfig) -> pd.DataFrame:
    columns = cfg.columns
    age_years_col = columns.age_years or "age_years"
    require_columns(df, [age_years_col, columns.foi], label="cohort table")
    df = df.copy()
    # Float64 arithmetic keeps <NA> when either operand is missing.
    df[columns.lifetime_exposure] = df[age_years_col].astype("Float64") * df[columns.foi].astype("Float64")
    return df
