from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from pv_seroreactivity.assembly import CohortAccounting, CohortAssembly, assemble_cohort, read_table
from pv_seroreactivity.association import FAMILIES, run_association_tests, summarize_significance
from pv_seroreactivity.config import AnalysisConfig, load_config
from pv_seroreactivity.figures import plot_seroreactivity
from pv_seroreactivity.manifests import build_signature, build_table_manifest
from pv_seroreactivity.panel import check_panel, resolve_antigen_panel
from pv_seroreactivity.report import build_report_docx, write_report_markdown
from pv_seroreactivity.seroreactivity import (
    classify_seroreactive,
    compute_cutoffs,
    impute_at_cutoff,
    summarize_antigens,
    summarize_participants,
)
from pv_seroreactivity.transform import derive_lifetime_exposure, drop_excluded_columns, log10_transform
from pv_seroreactivity.utils import ensure_dir, write_columns_txt


logger = logging.getLogger("pv_seroreactivity.pipeline")


@dataclass(frozen=True)
class OutputDirs:
    out_dir: Path
    tables_dir: Path
    audit_dir: Path
    figures_dir: Path
    report_dir: Path
    manifests_dir: Path


@dataclass(frozen=True)
class AnalysisResult:
    antigens: tuple[str, ...]
    accounting: CohortAccounting
    log_table: pd.DataFrame
    imputed_table: pd.DataFrame
    cutoffs: pd.Series
    reactive: pd.DataFrame
    antigen_summary: pd.DataFrame
    participant_summary: pd.DataFrame
    association_results: pd.DataFrame
    significance: pd.DataFrame


def ensure_output_dirs(out_dir: Path) -> OutputDirs:
    out_dir = ensure_dir(out_dir)
    return OutputDirs(
        out_dir=out_dir,
        tables_dir=ensure_dir(out_dir / "tables"),
        audit_dir=ensure_dir(out_dir / "audit"),
        figures_dir=ensure_dir(out_dir / "figures"),
        report_dir=ensure_dir(out_dir / "report"),
        manifests_dir=ensure_dir(out_dir / "manifests"),
    )


def prepare_cohort(
    epi: pd.DataFrame,
    antibody: pd.DataFrame,
    foi: pd.DataFrame,
    cfg: AnalysisConfig,
) -> tuple[tuple[str, ...], CohortAssembly]:
    """Resolve the antigen panel and assemble the one-row-per-participant cohort table."""
    antigens = resolve_antigen_panel(antibody, cfg.panel, id_col=cfg.columns.participant_id)
    antibody = drop_excluded_columns(antibody, cfg.panel.exclude_columns)
    check_panel(antibody, antigens, stage="exclusion")

    assembly = assemble_cohort(epi, antibody, foi, cfg)
    check_panel(assembly.table, antigens, stage="assembly")
    return antigens, assembly


def run_analysis(
    epi: pd.DataFrame,
    antibody: pd.DataFrame,
    foi: pd.DataFrame,
    cfg: AnalysisConfig,
) -> AnalysisResult:
    """Run every stage in memory; integrity errors propagate before anything is written."""
    id_col = cfg.columns.participant_id
    antigens, assembly = prepare_cohort(epi, antibody, foi, cfg)

    log_table = log10_transform(assembly.table, antigens)
    log_table = derive_lifetime_exposure(log_table, cfg)
    check_panel(log_table, antigens, stage="log10 transform")

    cutoffs = compute_cutoffs(log_table, antigens)
    imputed = impute_at_cutoff(log_table, cutoffs, antigens)
    check_panel(imputed, antigens, stage="imputation")
    reactive = classify_seroreactive(imputed, cutoffs, antigens)
    logger.info("Cutoffs computed and %d participant x %d antigen cells classified", len(reactive), len(antigens))

    antigen_summary = summarize_antigens(log_table, reactive, cutoffs, antigens)
    participant_summary = summarize_participants(
        reactive, imputed[id_col], id_col=id_col, panel_size=len(antigens)
    )

    association_results = run_association_tests(imputed, antigens, cfg)
    significance = summarize_significance(association_results, alpha=cfg.association.alpha)
    for row in significance.itertuples(index=False):
        logger.info(
            "%s: %d of %d antigens significant (%.1f%%)",
            row.family,
            row.n_significant,
            row.n_tests,
            row.pct_significant,
        )

    return AnalysisResult(
        antigens=antigens,
        accounting=assembly.accounting,
        log_table=log_table,
        imputed_table=imputed,
        cutoffs=cutoffs,
        reactive=reactive,
        antigen_summary=antigen_summary,
        participant_summary=participant_summary,
        association_results=association_results,
        significance=significance,
    )


def analysis_table_columns(cfg: AnalysisConfig) -> list[str]:
    c = cfg.columns
    return [
        c.participant_id,
        c.cohort,
        c.age_days,
        c.age_years or "age_years",
        c.age_months,
        c.infection,
        c.foi,
        c.foi_sqrt,
        c.lifetime_exposure,
    ]


def build_analysis_table(result: AnalysisResult, cfg: AnalysisConfig) -> pd.DataFrame:
    """Flat persisted table: one row per participant, log10 cutoff-imputed antigen levels."""
    df = result.imputed_table
    fields = [col for col in analysis_table_columns(cfg) if col in df.columns]
    out = df.loc[:, fields + list(result.antigens)]
    return out.sort_values(cfg.columns.participant_id, kind="mergesort").reset_index(drop=True)


def write_analysis_table(df: pd.DataFrame, path: Path) -> Path:
    df.to_csv(path, index=False, lineterminator="\n")
    return path


def read_analysis_table(path: Path, cfg: AnalysisConfig, antigens: tuple[str, ...] | list[str]) -> pd.DataFrame:
    id_col = cfg.columns.participant_id
    df = pd.read_csv(path, low_memory=False, dtype={id_col: "string", cfg.columns.cohort: "string"})
    numeric = [c for c in analysis_table_columns(cfg) if c in df.columns and c not in {id_col, cfg.columns.cohort}]
    for col in numeric + list(antigens):
        df[col] = pd.to_numeric(df[col], errors="coerce").astype("Float64")
    return df


def write_cohort_accounting(
    *,
    out_path: Path,
    accounting: CohortAccounting,
    antigens: tuple[str, ...],
    cfg: AnalysisConfig,
    log_table: pd.DataFrame | None = None,
) -> None:
    acc = accounting
    lines: list[str] = []
    lines.append("# Cohort accounting")
    lines.append("")
    lines.append(f"- Epidemiology rows: {acc.n_epidemiology}")
    lines.append(f"- Force-of-infection rows: {acc.n_force_of_infection}")
    lines.append(f"- Antibody rows: {acc.n_antibody}")
    lines.append(f"- Cohort filter: `{cfg.cohort.column}` == `{acc.kept_category}`")
    lines.append(f"- Epidemiology rows in cohort: {acc.n_cohort}")
    lines.append(f"- Antibody rows in cohort: {acc.n_antibody_in_cohort}")
    lines.append(f"- Cohort rows without force-of-infection record (kept, exposure missing): {acc.n_cohort_without_foi}")
    if cfg.panel.expected_n_participants is not None:
        lines.append(f"- Expected cohort size: {cfg.panel.expected_n_participants}")
    lines.append("")
    lines.append("## Antigen panel")
    lines.append("")
    lines.append(f"- Antigens: {len(antigens)}")
    if cfg.panel.exclude_columns:
        lines.append(f"- Excluded non-antigen columns: {', '.join(cfg.panel.exclude_columns)}")
    if log_table is not None:
        n_cells = len(log_table) * len(antigens)
        n_missing = int(log_table.loc[:, list(antigens)].isna().sum().sum())
        lines.append(f"- Cells missing after log10 (imputed at cutoff): {n_missing} of {n_cells}")
    out_path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def expected_table_rows(result: AnalysisResult, cfg: AnalysisConfig) -> dict[str, int]:
    n_participants = cfg.panel.expected_n_participants
    if n_participants is None:
        n_participants = result.accounting.n_cohort
    n_antigens = len(result.antigens)
    return {
        "analysis_table.csv": n_participants,
        "participant_seroreactivity.csv": n_participants,
        "antigen_seroreactivity.csv": n_antigens,
        "association_results.csv": n_antigens * len(FAMILIES),
        "significance_summary.csv": len(FAMILIES),
    }


def write_outputs(
    result: AnalysisResult,
    dirs: OutputDirs,
    cfg: AnalysisConfig,
    *,
    config_paths: list[Path] | None = None,
    with_report: bool = True,
) -> dict[str, Path]:
    paths: dict[str, Path] = {}

    table = build_analysis_table(result, cfg)
    paths["analysis_table"] = write_analysis_table(table, dirs.tables_dir / "analysis_table.csv")

    paths["antigen_seroreactivity"] = dirs.tables_dir / "antigen_seroreactivity.csv"
    result.antigen_summary.to_csv(paths["antigen_seroreactivity"], index=False, lineterminator="\n")
    paths["participant_seroreactivity"] = dirs.tables_dir / "participant_seroreactivity.csv"
    result.participant_summary.to_csv(paths["participant_seroreactivity"], index=False, lineterminator="\n")
    paths["association_results"] = dirs.tables_dir / "association_results.csv"
    result.association_results.to_csv(paths["association_results"], index=False, lineterminator="\n")
    paths["significance_summary"] = dirs.tables_dir / "significance_summary.csv"
    result.significance.to_csv(paths["significance_summary"], index=False, lineterminator="\n")

    write_columns_txt(result.antigens, dirs.audit_dir / "antigen_panel.txt")
    paths["cohort_accounting"] = dirs.audit_dir / "cohort_accounting.md"
    write_cohort_accounting(
        out_path=paths["cohort_accounting"],
        accounting=result.accounting,
        antigens=result.antigens,
        cfg=cfg,
        log_table=result.log_table,
    )

    if with_report:
        figs = plot_seroreactivity(
            result.antigen_summary,
            result.participant_summary,
            id_col=cfg.columns.participant_id,
            out_dir=dirs.figures_dir,
        )
        paths["report_md"] = write_report_markdown(
            out_path=dirs.report_dir / "seroreactivity_report.md",
            cfg=cfg,
            accounting=result.accounting,
            antigen_summary=result.antigen_summary,
            participant_summary=result.participant_summary,
            association_results=result.association_results,
            significance=result.significance,
            figure_paths=[figs.antigen_ranked, figs.participant_ranked],
        )
        paths["report_docx"] = build_report_docx(
            markdown_path=paths["report_md"],
            out_docx=dirs.report_dir / "seroreactivity_report.docx",
            figures=[
                (figs.antigen_ranked, "Figure 1. Proportion of participants seroreactive to each antigen, ranked."),
                (figs.participant_ranked, "Figure 2. Proportion of the antigen panel recognised by each participant, ranked."),
            ],
        )

    table_paths = sorted(p for p in dirs.tables_dir.glob("*.csv") if p.is_file())
    build_table_manifest(
        table_paths,
        dirs.manifests_dir / "table_manifest.json",
        expected_rows=expected_table_rows(result, cfg),
    )
    build_signature(
        out_path=dirs.manifests_dir / "build_signature.txt",
        config_paths=list(config_paths or []),
        table_paths=table_paths,
        analysis={
            "cohort": f"{cfg.cohort.column}={result.accounting.kept_category}",
            "n_participants": result.accounting.n_cohort,
            "n_antigens": len(result.antigens),
            "correction": cfg.association.correction,
            "alpha": cfg.association.alpha,
            "infection_mode": cfg.association.infection_mode,
        },
    )
    logger.info("Wrote outputs under %s", dirs.out_dir.as_posix())
    return paths


def read_inputs(cfg: AnalysisConfig) -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    if cfg.inputs is None:
        raise ValueError("Config is missing the inputs section")
    id_col = cfg.columns.participant_id
    epi = read_table(cfg.inputs.epidemiology, id_col=id_col)
    antibody = read_table(cfg.inputs.antibody, id_col=id_col)
    foi = read_table(cfg.inputs.force_of_infection, id_col=id_col)
    return epi, antibody, foi


def run_pipeline(config_path: Path, *, out_dir: Path | None = None, with_report: bool = True) -> AnalysisResult:
    cfg = load_config(config_path)
    epi, antibody, foi = read_inputs(cfg)
    result = run_analysis(epi, antibody, foi, cfg)
    dirs = ensure_output_dirs(out_dir if out_dir is not None else cfg.out_dir)
    write_outputs(result, dirs, cfg, config_paths=[config_path], with_report=with_report)
    return result


def check_inputs(config_path: Path, *, out_dir: Path | None = None) -> CohortAccounting:
    """Assemble the cohort and write only the audit files; no analysis is run."""
    cfg = load_config(config_path)
    epi, antibody, foi = read_inputs(cfg)
    antigens, assembly = prepare_cohort(epi, antibody, foi, cfg)

    audit_dir = ensure_dir((out_dir if out_dir is not None else cfg.out_dir) / "audit")
    write_columns_txt(antigens, audit_dir / "antigen_panel.txt")
    write_cohort_accounting(
        out_path=audit_dir / "cohort_accounting.md",
        accounting=assembly.accounting,
        antigens=antigens,
        cfg=cfg,
    )
    logger.info("Inputs passed integrity checks: %d participants, %d antigens", assembly.accounting.n_cohort, len(antigens))
    return assembly.accounting
