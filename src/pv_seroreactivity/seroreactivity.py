from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import pandas as pd

from pv_seroreactivity.errors import DataIntegrityError, UndefinedCutoffError
from pv_seroreactivity.utils import as_float_array, require_columns


logger = logging.getLogger("pv_seroreactivity.seroreactivity")


def compute_cutoff(values: pd.Series, antigen: str) -> float:
    """Half the smallest non-negative log10 level observed for one antigen."""
    observed = as_float_array(values)
    observed = observed[~np.isnan(observed)]
    non_negative = observed[observed >= 0]
    if non_negative.size == 0:
        raise UndefinedCutoffError(antigen, int(observed.size))
    return float(non_negative.min()) / 2.0


def compute_cutoffs(df: pd.DataFrame, antigens: Sequence[str]) -> pd.Series:
    require_columns(df, antigens, label="log10 antibody table")
    cutoffs = {a: compute_cutoff(df[a], a) for a in antigens}
    return pd.Series(cutoffs, name="cutoff", dtype="float64").rename_axis("antigen")


def impute_at_cutoff(df: pd.DataFrame, cutoffs: pd.Series, antigens: Sequence[str]) -> pd.DataFrame:
    """Replace missing log10 levels with the antigen's own cutoff."""
    out = df.copy()
    for a in antigens:
        out[a] = out[a].astype("Float64").fillna(float(cutoffs[a]))

    still_missing = [a for a in antigens if out[a].isna().any()]
    if still_missing:
        raise DataIntegrityError(f"Imputation left missing values in antigens: {still_missing[:10]}")
    return out


def classify_seroreactive(df: pd.DataFrame, cutoffs: pd.Series, antigens: Sequence[str]) -> pd.DataFrame:
    """Boolean frame (participant x antigen): level strictly above the cutoff."""
    reactive = {a: pd.Series(as_float_array(df[a]) > float(cutoffs[a]), index=df.index) for a in antigens}
    return pd.DataFrame(reactive, index=df.index, columns=list(antigens))


def summarize_antigens(
    log_df: pd.DataFrame,
    reactive: pd.DataFrame,
    cutoffs: pd.Series,
    antigens: Sequence[str],
) -> pd.DataFrame:
    """Per-antigen seroreactivity counts.

    ``log_df`` is the pre-imputation log10 table; its non-missing count is the
    denominator, so imputed cells (which sit at the cutoff) are never counted.
    """
    rows: list[dict] = []
    for a in antigens:
        n_non_missing = int(log_df[a].notna().sum())
        n_reactive = int(reactive[a].sum())
        rows.append(
            {
                "antigen": a,
                "cutoff": float(cutoffs[a]),
                "n_non_missing": n_non_missing,
                "n_seroreactive": n_reactive,
                "n_below": n_non_missing - n_reactive,
                "prop_seroreactive": float(n_reactive / n_non_missing) if n_non_missing else float("nan"),
            }
        )
    return pd.DataFrame.from_records(
        rows,
        columns=["antigen", "cutoff", "n_non_missing", "n_seroreactive", "n_below", "prop_seroreactive"],
    )


def summarize_participants(reactive: pd.DataFrame, ids: pd.Series, *, id_col: str, panel_size: int) -> pd.DataFrame:
    if panel_size <= 0:
        raise ValueError("panel_size must be positive")
    n_reactive = reactive.sum(axis=1).astype("int64")
    out = pd.DataFrame(
        {
            id_col: ids.to_numpy(),
            "n_seroreactive": n_reactive.to_numpy(),
            "n_antigens": panel_size,
            "prop_seroreactive": (n_reactive / panel_size).to_numpy(dtype="float64"),
        }
    )
    logger.info(
        "Participants reactive to a median of %.1f of %d antigens",
        float(np.median(out["n_seroreactive"])) if len(out) else float("nan"),
        panel_size,
    )
    return out
