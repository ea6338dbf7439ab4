"""Shared fixtures: a six-participant cohort with three antigens."""

from __future__ import annotations

import copy

import pandas as pd
import pytest

from pv_seroreactivity.config import AnalysisConfig


BASE_MAPPING = {
    "columns": {
        "participant_id": "Pv.code",
        "age_days": "age_days",
        "infection": "pvldr1",
        "cohort": "cohort",
        "foi": "molFOB",
        "foi_sqrt": "sqrt_molFOB",
    },
    "cohort": {"column": "cohort", "allowed": ["KEEP", "DROP"], "keep": "KEEP"},
    "panel": {"exclude_columns": ["plate"], "expected_n_antigens": 3, "expected_n_participants": 6},
    "association": {"alpha": 0.05, "correction": "bonferroni", "infection_test": {"mode": "literal"}},
}


def make_config(**sections) -> AnalysisConfig:
    """Build a config from the base mapping, replacing/merging top-level sections."""
    mapping = copy.deepcopy(BASE_MAPPING)
    for key, value in sections.items():
        if isinstance(value, dict) and isinstance(mapping.get(key), dict):
            mapping[key].update(value)
        else:
            mapping[key] = value
    return AnalysisConfig.from_mapping(mapping)


@pytest.fixture
def cfg() -> AnalysisConfig:
    return make_config()


@pytest.fixture
def epi() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "Pv.code": ["P01", "P02", "P03", "P04", "P05", "P06", "P07", "P08"],
            "age_days": [365, 730, 1095, 1460, 1825, 2190, 400, 500],
            "pvldr1": [0, 1, 0, 2, 0, 3, 1, 0],
            "cohort": ["KEEP", "KEEP", "KEEP", "KEEP", "KEEP", "KEEP", "DROP", "DROP"],
        }
    )


@pytest.fixture
def foi() -> pd.DataFrame:
    # P06 has no exposure record.
    return pd.DataFrame(
        {
            "Pv.code": ["P01", "P02", "P03", "P04", "P05", "P07"],
            "molFOB": [1.0, 4.0, 0.25, 9.0, 2.25, 1.0],
        }
    )


@pytest.fixture
def antibody() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "Pv.code": ["P01", "P02", "P03", "P04", "P05", "P06", "P07", "P08"],
            "plate": [1, 1, 1, 2, 2, 2, 3, 3],
            # log10: 1..6, increasing with age
            "AgA": [10.0, 100.0, 1000.0, 10000.0, 100000.0, 1000000.0, 5.0, 5.0],
            # log10: NA, 0.301, NA, 1.301, 2.301, -0.301
            "AgB": [0.0, 2.0, -1.0, 20.0, 200.0, 0.5, 3.0, 3.0],
            # log10: 0 everywhere
            "AgC": [1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0],
        }
    )
