"""
Per-antigen association tests.

Each antigen's log10 (cutoff-imputed) antibody level is tested against
three covariates, one test family each:

- ``age``: Spearman correlation with age in months
- ``exposure``: Spearman correlation with square-root force of infection
- ``infection``: two-sample Welch t-test involving the infection marker

Multiple-testing correction is applied independently within each family.
An antigen whose input is degenerate (too few observations, no variance)
gets an undefined row with a note instead of a statistic; the rest of the
family is unaffected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
import statsmodels.stats.multitest as smm
from scipy import stats

from pv_seroreactivity.config import AnalysisConfig, AssociationConfig
from pv_seroreactivity.utils import as_float_array, require_columns


logger = logging.getLogger("pv_seroreactivity.association")

FAMILIES = ("age", "exposure", "infection")

_CORRECTION_METHODS = {"bonferroni": "bonferroni", "fdr": "fdr_bh"}

RESULT_COLUMNS = [
    "antigen",
    "family",
    "statistic_name",
    "statistic",
    "n",
    "p_value",
    "p_adj",
    "significant",
    "note",
]


@dataclass(frozen=True)
class AssociationResult:
    statistic: float
    p_value: float
    n: int
    note: str | None = None

    @property
    def defined(self) -> bool:
        return not np.isnan(self.p_value)


def _undefined(n: int, note: str) -> AssociationResult:
    return AssociationResult(statistic=float("nan"), p_value=float("nan"), n=n, note=note)


def spearman_test(x: np.ndarray, y: np.ndarray, *, min_n: int = 3) -> AssociationResult:
    """Two-sided Spearman rank correlation over complete pairs."""
    x = np.asarray(x, dtype="float64")
    y = np.asarray(y, dtype="float64")
    keep = ~np.isnan(x) & ~np.isnan(y)
    x, y = x[keep], y[keep]
    n = int(keep.sum())
    if n < max(min_n, 3):
        return _undefined(n, f"fewer than {max(min_n, 3)} complete pairs")
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return _undefined(n, "constant input")
    rho, p = stats.spearmanr(x, y)
    return AssociationResult(statistic=float(rho), p_value=float(p), n=n)


def welch_t_test(a: np.ndarray, b: np.ndarray, *, min_per_group: int = 2) -> AssociationResult:
    """Two-sided two-sample t-test without the equal-variance assumption."""
    a = np.asarray(a, dtype="float64")
    b = np.asarray(b, dtype="float64")
    a = a[~np.isnan(a)]
    b = b[~np.isnan(b)]
    n = int(a.size + b.size)
    if a.size < min_per_group or b.size < min_per_group:
        return _undefined(n, f"fewer than {min_per_group} values in a group (n={a.size}, {b.size})")
    if np.var(a) == 0 and np.var(b) == 0:
        return _undefined(n, "zero variance in both groups")
    t, p = stats.ttest_ind(a, b, equal_var=False)
    return AssociationResult(statistic=float(t), p_value=float(p), n=n)


def infection_status_test(level: np.ndarray, marker: np.ndarray, cfg: AssociationConfig) -> AssociationResult:
    """Infection-status test in the configured mode.

    ``literal`` compares the antibody vector against the continuous marker
    vector as two samples. ``binary`` splits
    participants on ``marker > binary_threshold`` and compares antibody
    levels between the two groups.
    """
    level = np.asarray(level, dtype="float64")
    marker = np.asarray(marker, dtype="float64")
    if cfg.infection_mode == "literal":
        return welch_t_test(level, marker)
    if cfg.infection_mode == "binary":
        keep = ~np.isnan(level) & ~np.isnan(marker)
        infected = marker[keep] > cfg.binary_threshold
        return welch_t_test(level[keep][infected], level[keep][~infected])
    raise ValueError(f"Unknown infection test mode: {cfg.infection_mode}")


def apply_correction(pvals: Sequence[float] | np.ndarray, method: str = "bonferroni") -> np.ndarray:
    """Adjust one family of p-values; NaN entries stay NaN and are not counted."""
    if method not in _CORRECTION_METHODS:
        raise ValueError(f"Unsupported correction method: {method}")
    pvals_array = np.asarray(pvals, dtype="float64")
    out = np.full(pvals_array.shape, np.nan, dtype="float64")
    defined = ~np.isnan(pvals_array)
    if defined.any():
        out[defined] = smm.multipletests(pvals_array[defined], method=_CORRECTION_METHODS[method])[1]
    return out


def run_association_tests(df: pd.DataFrame, antigens: Sequence[str], cfg: AnalysisConfig) -> pd.DataFrame:
    columns = cfg.columns
    assoc = cfg.association
    require_columns(df, [columns.age_months, columns.foi_sqrt, columns.infection], label="analysis table")
    require_columns(df, antigens, label="analysis table")

    if assoc.infection_mode == "literal":
        logger.warning(
            "Infection-status t-test compares antibody levels against the continuous %s values "
            "(literal mode); no infected/uninfected grouping is derived. Treat these results as suspect.",
            columns.infection,
        )

    age = as_float_array(df[columns.age_months])
    exposure = as_float_array(df[columns.foi_sqrt])
    marker = as_float_array(df[columns.infection])

    rows: list[dict] = []
    for antigen in antigens:
        level = as_float_array(df[antigen])
        per_family = {
            "age": ("rho", spearman_test(age, level, min_n=assoc.min_n)),
            "exposure": ("rho", spearman_test(exposure, level, min_n=assoc.min_n)),
            "infection": ("t", infection_status_test(level, marker, assoc)),
        }
        for family in FAMILIES:
            stat_name, result = per_family[family]
            rows.append(
                {
                    "antigen": antigen,
                    "family": family,
                    "statistic_name": stat_name,
                    "statistic": result.statistic,
                    "n": result.n,
                    "p_value": result.p_value,
                    "note": result.note,
                }
            )

    results = pd.DataFrame.from_records(rows)
    results["p_adj"] = np.nan
    for family in FAMILIES:
        mask = results["family"] == family
        results.loc[mask, "p_adj"] = apply_correction(results.loc[mask, "p_value"].to_numpy(), assoc.correction)
        n_undefined = int(results.loc[mask, "p_value"].isna().sum())
        if n_undefined:
            logger.warning("%s family: %d of %d antigens have undefined test results", family, n_undefined, int(mask.sum()))

    results["significant"] = results["p_adj"] < assoc.alpha
    return results.loc[:, RESULT_COLUMNS]


def summarize_significance(results: pd.DataFrame, *, alpha: float) -> pd.DataFrame:
    rows: list[dict] = []
    for family in FAMILIES:
        fam = results[results["family"] == family]
        n_tests = int(len(fam))
        n_sig = int((fam["p_adj"] < alpha).sum())
        rows.append(
            {
                "family": family,
                "n_tests": n_tests,
                "n_defined": int(fam["p_value"].notna().sum()),
                "n_significant": n_sig,
                "pct_significant": float(100.0 * n_sig / n_tests) if n_tests else float("nan"),
            }
        )
    return pd.DataFrame.from_records(rows)
