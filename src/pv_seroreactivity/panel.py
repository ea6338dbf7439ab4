from __future__ import annotations

from pathlib import Path
from typing import Sequence

import pandas as pd

from pv_seroreactivity.config import PanelConfig
from pv_seroreactivity.errors import DataIntegrityError


def read_antigen_list(path: Path) -> tuple[str, ...]:
    lines = path.read_text(encoding="utf-8").splitlines()
    antigens = tuple(ln.strip() for ln in lines if ln.strip() and not ln.lstrip().startswith("#"))
    if len(set(antigens)) != len(antigens):
        raise ValueError(f"Antigen list {path} contains duplicated identifiers")
    return antigens


def resolve_antigen_panel(antibody: pd.DataFrame, panel: PanelConfig, *, id_col: str) -> tuple[str, ...]:
    """Return the antigen identifiers in antibody-table order.

    An explicit list file wins; otherwise every antibody column other than the
    participant id and the named exclusions is an antigen.
    """
    excluded = set(panel.exclude_columns)
    if panel.antigens_file is not None:
        antigens = read_antigen_list(panel.antigens_file)
        clash = sorted(set(antigens) & (excluded | {id_col}))
        if clash:
            raise ValueError(f"Antigen list names excluded or identifier columns: {clash}")
        missing = [a for a in antigens if a not in antibody.columns]
        if missing:
            raise DataIntegrityError(f"Antibody table is missing {len(missing)} listed antigens: {missing[:10]}")
    else:
        antigens = tuple(str(c) for c in antibody.columns if c != id_col and c not in excluded)

    if panel.expected_n_antigens is not None and len(antigens) != panel.expected_n_antigens:
        raise DataIntegrityError(
            f"Antigen panel has {len(antigens)} antigens; expected {panel.expected_n_antigens}"
        )
    if not antigens:
        raise DataIntegrityError("Antigen panel is empty")
    return antigens


def check_panel(df: pd.DataFrame, antigens: Sequence[str], *, stage: str) -> None:
    missing = [a for a in antigens if a not in df.columns]
    if missing:
        raise DataIntegrityError(f"{stage}: {len(missing)} antigen columns dropped: {missing[:10]}")
