from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import numpy as np
import pandas as pd

from pv_seroreactivity.config import AnalysisConfig, CohortFilter, ColumnNames
from pv_seroreactivity.errors import DataIntegrityError
from pv_seroreactivity.utils import as_float_array, require_columns


logger = logging.getLogger("pv_seroreactivity.assembly")

_FOI_MERGE = "_foi_merge"


@dataclass(frozen=True)
class CohortAccounting:
    n_epidemiology: int
    n_force_of_infection: int
    n_antibody: int
    kept_category: str
    n_cohort: int
    n_antibody_in_cohort: int
    n_cohort_without_foi: int


@dataclass(frozen=True)
class CohortAssembly:
    table: pd.DataFrame
    accounting: CohortAccounting


def read_table(path: Path, *, id_col: str) -> pd.DataFrame:
    df = pd.read_csv(path, low_memory=False, dtype={id_col: "string"})
    require_columns(df, [id_col], label=str(path))
    df[id_col] = df[id_col].astype("string").str.strip()
    return df


def _nullable(values: np.ndarray, index: pd.Index) -> pd.Series:
    # NaN -> <NA>
    return pd.Series(values, index=index, dtype="float64").astype("Float64")


def _check_unique_ids(df: pd.DataFrame, id_col: str, *, label: str) -> None:
    ids = df[id_col]
    n_missing = int(ids.isna().sum())
    if n_missing:
        raise DataIntegrityError(f"{label}: {n_missing} rows have no participant identifier ({id_col})")
    dups = ids[ids.duplicated(keep=False)]
    if not dups.empty:
        sample = sorted(dups.astype(str).unique().tolist())[:10]
        raise DataIntegrityError(f"{label}: duplicated participant identifiers in {id_col}: {sample}")


def join_force_of_infection(epi: pd.DataFrame, foi: pd.DataFrame, columns: ColumnNames) -> pd.DataFrame:
    """Left-join force-of-infection onto epidemiology by participant id.

    Epidemiology rows without an exposure record are kept with ``<NA>``
    exposure fields. The square-root column is derived when the
    force-of-infection table does not carry one.
    """
    id_col = columns.participant_id
    require_columns(epi, [id_col], label="epidemiology table")
    require_columns(foi, [id_col, columns.foi], label="force-of-infection table")
    _check_unique_ids(epi, id_col, label="epidemiology table")
    _check_unique_ids(foi, id_col, label="force-of-infection table")

    keep = [id_col, columns.foi]
    if columns.foi_sqrt in foi.columns:
        keep.append(columns.foi_sqrt)

    # FOI and its square root are replaced as a pair
    overlap = [c for c in (columns.foi, columns.foi_sqrt) if c in epi.columns]
    if overlap:
        logger.info("Replacing epidemiology columns %s with force-of-infection table values", overlap)
        epi = epi.drop(columns=overlap)

    out = epi.merge(foi.loc[:, keep], on=id_col, how="left", validate="one_to_one", indicator=_FOI_MERGE)

    out[columns.foi] = _nullable(as_float_array(out[columns.foi]), out.index)
    if columns.foi_sqrt in out.columns:
        out[columns.foi_sqrt] = _nullable(as_float_array(out[columns.foi_sqrt]), out.index)
    else:
        foi_values = as_float_array(out[columns.foi])
        sqrt_values = np.where(foi_values >= 0, np.sqrt(np.abs(foi_values)), np.nan)
        out[columns.foi_sqrt] = _nullable(sqrt_values, out.index)
    return out


def derive_age_fields(df: pd.DataFrame, cfg: AnalysisConfig) -> pd.DataFrame:
    columns = cfg.columns
    require_columns(df, [columns.age_days], label="epidemiology table")
    df = df.copy()

    age_days = as_float_array(df[columns.age_days])
    df[columns.age_days] = _nullable(age_days, df.index)
    df[columns.age_months] = _nullable(age_days / cfg.days_per_month, df.index)

    age_years_col = columns.age_years or "age_years"
    if columns.age_years and columns.age_years in df.columns:
        df[age_years_col] = _nullable(as_float_array(df[age_years_col]), df.index)
    else:
        df[age_years_col] = _nullable(age_days / cfg.days_per_year, df.index)
    return df


def filter_cohort(df: pd.DataFrame, cohort: CohortFilter) -> pd.DataFrame:
    require_columns(df, [cohort.column], label="epidemiology table")
    values = df[cohort.column].astype("string").str.strip()

    if cohort.allowed:
        unexpected = values[~values.isin(list(cohort.allowed)).fillna(False).astype(bool)]
        if not unexpected.empty:
            found = sorted(unexpected.fillna("<NA>").unique().tolist())
            raise DataIntegrityError(
                f"{cohort.column} has values outside the allowed categories {list(cohort.allowed)}: {found}"
            )

    mask = values.eq(cohort.keep).fillna(False).astype(bool)
    return df.loc[mask].copy()


def restrict_antibody(antibody: pd.DataFrame, ids: Iterable[str], *, id_col: str) -> pd.DataFrame:
    wanted = set(ids)
    return antibody.loc[antibody[id_col].isin(wanted)].copy()


def check_cohort_integrity(
    epi: pd.DataFrame,
    antibody: pd.DataFrame,
    *,
    id_col: str,
    expected_n: int | None,
) -> None:
    if len(epi) != len(antibody):
        raise DataIntegrityError(
            f"Cohort row counts disagree after filtering: epidemiology={len(epi)}, antibody={len(antibody)}"
        )
    epi_ids = set(epi[id_col].tolist())
    ab_ids = set(antibody[id_col].tolist())
    if epi_ids != ab_ids:
        only_epi = sorted(epi_ids - ab_ids)[:10]
        only_ab = sorted(ab_ids - epi_ids)[:10]
        raise DataIntegrityError(
            f"Cohort identifiers disagree: epidemiology-only={only_epi}, antibody-only={only_ab}"
        )
    if expected_n is not None and len(epi) != expected_n:
        raise DataIntegrityError(f"Cohort size {len(epi)} deviates from expected {expected_n}")


def assemble_cohort(
    epi: pd.DataFrame,
    antibody: pd.DataFrame,
    foi: pd.DataFrame,
    cfg: AnalysisConfig,
) -> CohortAssembly:
    id_col = cfg.columns.participant_id
    require_columns(antibody, [id_col], label="antibody table")
    _check_unique_ids(antibody, id_col, label="antibody table")

    joined = join_force_of_infection(epi, foi, cfg.columns)
    joined = derive_age_fields(joined, cfg)

    cohort = filter_cohort(joined, cfg.cohort)
    n_without_foi = int((cohort[_FOI_MERGE] == "left_only").sum())
    cohort = cohort.drop(columns=[_FOI_MERGE])

    ab = restrict_antibody(antibody, cohort[id_col], id_col=id_col)
    check_cohort_integrity(cohort, ab, id_col=id_col, expected_n=cfg.panel.expected_n_participants)

    collisions = sorted((set(cohort.columns) & set(ab.columns)) - {id_col})
    if collisions:
        raise ValueError(f"Antibody table columns collide with epidemiology columns: {collisions}")

    table = cohort.merge(ab, on=id_col, how="inner", validate="one_to_one")
    table = table.sort_values(id_col, kind="mergesort").reset_index(drop=True)

    accounting = CohortAccounting(
        n_epidemiology=int(len(epi)),
        n_force_of_infection=int(len(foi)),
        n_antibody=int(len(antibody)),
        kept_category=cfg.cohort.keep,
        n_cohort=int(len(cohort)),
        n_antibody_in_cohort=int(len(ab)),
        n_cohort_without_foi=n_without_foi,
    )
    logger.info(
        "Assembled cohort %s=%s: %d participants (%d without force-of-infection record)",
        cfg.cohort.column,
        cfg.cohort.keep,
        accounting.n_cohort,
        n_without_foi,
    )
    return CohortAssembly(table=table, accounting=accounting)
