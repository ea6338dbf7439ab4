from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import yaml


InfectionTestMode = Literal["literal", "binary"]

_SUPPORTED_CORRECTIONS = {"bonferroni", "fdr"}
_SUPPORTED_INFECTION_MODES = {"literal", "binary"}


def load_yaml(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected mapping at top-level of {path}, got {type(data)}")
    return data


@dataclass(frozen=True)
class InputPaths:
    epidemiology: Path
    antibody: Path
    force_of_infection: Path


@dataclass(frozen=True)
class ColumnNames:
    participant_id: str = "Pv.code"
    age_days: str = "age_days"
    age_years: str | None = None
    infection: str = "pvldr1"
    cohort: str = "cohort"
    foi: str = "molFOB"
    foi_sqrt: str = "sqrt_molFOB"
    age_months: str = "age_months"
    lifetime_exposure: str = "lifetime_exposure"


@dataclass(frozen=True)
class CohortFilter:
    column: str
    keep: str
    allowed: tuple[str, ...] = ()


@dataclass(frozen=True)
class PanelConfig:
    antigens_file: Path | None = None
    exclude_columns: tuple[str, ...] = ()
    expected_n_antigens: int | None = 342
    expected_n_participants: int | None = 183


@dataclass(frozen=True)
class AssociationConfig:
    alpha: float = 0.05
    correction: str = "bonferroni"
    min_n: int = 3
    infection_mode: InfectionTestMode = "literal"
    binary_threshold: float = 0.0


@dataclass(frozen=True)
class AnalysisConfig:
    inputs: InputPaths | None
    columns: ColumnNames
    cohort: CohortFilter
    panel: PanelConfig
    association: AssociationConfig
    days_per_month: float = 30.42
    days_per_year: float = 365.25
    out_dir: Path = Path("outputs")

    @classmethod
    def from_mapping(cls, cfg: dict) -> "AnalysisConfig":
        inputs_raw = cfg.get("inputs")
        inputs = None
        if inputs_raw:
            inputs = InputPaths(
                epidemiology=Path(inputs_raw["epidemiology"]),
                antibody=Path(inputs_raw["antibody"]),
                force_of_infection=Path(inputs_raw["force_of_infection"]),
            )

        columns_raw = cfg.get("columns") or {}
        unknown = sorted(set(columns_raw) - set(ColumnNames.__dataclass_fields__))
        if unknown:
            raise ValueError(f"Unknown keys under columns: {unknown}")
        columns = ColumnNames(**columns_raw)

        cohort_raw = cfg.get("cohort") or {}
        if "column" not in cohort_raw or "keep" not in cohort_raw:
            raise ValueError("cohort.column and cohort.keep are required")
        allowed = tuple(str(x) for x in cohort_raw.get("allowed", []) or [])
        keep = str(cohort_raw["keep"])
        if allowed and keep not in allowed:
            raise ValueError(f"cohort.keep={keep!r} is not one of cohort.allowed={list(allowed)}")
        cohort = CohortFilter(column=str(cohort_raw["column"]), keep=keep, allowed=allowed)

        panel_raw = cfg.get("panel") or {}
        antigens_file = panel_raw.get("antigens_file")
        panel = PanelConfig(
            antigens_file=Path(antigens_file) if antigens_file else None,
            exclude_columns=tuple(str(x) for x in panel_raw.get("exclude_columns", []) or []),
            expected_n_antigens=_optional_int(panel_raw.get("expected_n_antigens", 342)),
            expected_n_participants=_optional_int(panel_raw.get("expected_n_participants", 183)),
        )

        assoc_raw = cfg.get("association") or {}
        correction = str(assoc_raw.get("correction", "bonferroni")).strip().lower()
        if correction not in _SUPPORTED_CORRECTIONS:
            raise ValueError(f"Unsupported association.correction: {correction}")
        infection_raw = assoc_raw.get("infection_test") or {}
        mode = str(infection_raw.get("mode", "literal")).strip().lower()
        if mode not in _SUPPORTED_INFECTION_MODES:
            raise ValueError(f"Unsupported association.infection_test.mode: {mode}")
        alpha = float(assoc_raw.get("alpha", 0.05))
        if not (0.0 < alpha < 1.0):
            raise ValueError("association.alpha must be between 0 and 1 (exclusive)")
        association = AssociationConfig(
            alpha=alpha,
            correction=correction,
            min_n=int(assoc_raw.get("min_n", 3)),
            infection_mode=mode,  # type: ignore[arg-type]
            binary_threshold=float(infection_raw.get("binary_threshold", 0.0)),
        )

        constants = cfg.get("constants") or {}
        days_per_month = float(constants.get("days_per_month", 30.42))
        days_per_year = float(constants.get("days_per_year", 365.25))
        if days_per_month <= 0 or days_per_year <= 0:
            raise ValueError("constants.days_per_month and constants.days_per_year must be positive")

        outputs = cfg.get("outputs") or {}
        return cls(
            inputs=inputs,
            columns=columns,
            cohort=cohort,
            panel=panel,
            association=association,
            days_per_month=days_per_month,
            days_per_year=days_per_year,
            out_dir=Path(outputs.get("out_dir", "outputs")),
        )


def _optional_int(value: object) -> int | None:
    if value is None:
        return None
    return int(value)  # type: ignore[arg-type]


def load_config(path: Path) -> AnalysisConfig:
    return AnalysisConfig.from_mapping(load_yaml(path))
