from __future__ import annotations

import re
from pathlib import Path

import pandas as pd
from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Inches

from pv_seroreactivity.assembly import CohortAccounting
from pv_seroreactivity.config import AnalysisConfig
from pv_seroreactivity.utils import today_iso


_FAMILY_LABELS = {
    "age": "Age in months (Spearman)",
    "exposure": "Square-root force of infection (Spearman)",
    "infection": "Infection status (Welch t-test)",
}

_SEPARATOR_ROW = re.compile(r"^\|?\s*:?-{3,}")


def _fmt_prop(value: float, digits: int = 1) -> str:
    if pd.isna(value):
        return "NA"
    return f"{100.0 * float(value):.{digits}f}%"


def _fmt_n_pct(n: int, denom: int, digits: int = 1) -> str:
    if denom <= 0:
        return f"{n} (NA)"
    return f"{n} ({100.0 * n / denom:.{digits}f}%)"


def _infection_caveat(cfg: AnalysisConfig) -> str:
    marker = cfg.columns.infection
    if cfg.association.infection_mode == "literal":
        return (
            f"The infection-status test compares each antigen's antibody levels against the continuous "
            f"`{marker}` values as two samples (literal mode). No infected/uninfected grouping is derived, "
            "so these p-values should be treated as suspect until the grouping is confirmed."
        )
    return (
        f"The infection-status test compares antibody levels between participants with "
        f"`{marker}` > {cfg.association.binary_threshold:g} and the remaining participants (binary mode)."
    )


def write_report_markdown(
    *,
    out_path: Path,
    cfg: AnalysisConfig,
    accounting: CohortAccounting,
    antigen_summary: pd.DataFrame,
    participant_summary: pd.DataFrame,
    association_results: pd.DataFrame,
    significance: pd.DataFrame,
    figure_paths: list[Path],
    top_n: int = 10,
) -> Path:
    id_col = cfg.columns.participant_id
    alpha = cfg.association.alpha
    n_antigens = int(len(antigen_summary))
    n_participants = int(len(participant_summary))

    lines: list[str] = []
    lines.append("# Seroreactivity and association report")
    lines.append("")
    lines.append(f"Generated {today_iso()}.")
    lines.append("")

    lines.append("## Cohort")
    lines.append("")
    lines.append(f"- Epidemiology records: {accounting.n_epidemiology}")
    lines.append(f"- Force-of-infection records: {accounting.n_force_of_infection}")
    lines.append(f"- Antibody records: {accounting.n_antibody}")
    lines.append(f"- Cohort `{cfg.cohort.column}` = `{accounting.kept_category}`: {accounting.n_cohort} participants")
    lines.append(f"- Cohort participants without a force-of-infection record: {accounting.n_cohort_without_foi}")
    lines.append(f"- Antigens in panel: {n_antigens}")
    lines.append("")

    lines.append("## Seroreactivity")
    lines.append("")
    lines.append(
        "Antibody levels are log10-transformed; non-positive measurements are missing. Each antigen's cutoff is "
        "half of its smallest non-negative log10 level. Missing levels are imputed at the cutoff and a participant "
        "is seroreactive to an antigen when the level is strictly above the cutoff."
    )
    lines.append("")
    props = antigen_summary["prop_seroreactive"]
    n_any = int((antigen_summary["n_seroreactive"] > 0).sum())
    lines.append(f"- Antigens with at least one seroreactive participant: {_fmt_n_pct(n_any, n_antigens)}")
    lines.append(f"- Median proportion seroreactive per antigen: {_fmt_prop(props.median())}")
    lines.append(
        f"- Range across antigens: {_fmt_prop(props.min())} to {_fmt_prop(props.max())}"
    )
    pprops = participant_summary["prop_seroreactive"]
    n_none = int((participant_summary["n_seroreactive"] == 0).sum())
    lines.append(f"- Participants seroreactive to no antigen: {_fmt_n_pct(n_none, n_participants)}")
    lines.append(f"- Median proportion of the panel per participant: {_fmt_prop(pprops.median())}")
    lines.append(f"- Range across participants: {_fmt_prop(pprops.min())} to {_fmt_prop(pprops.max())}")
    lines.append("")

    top_antigens = antigen_summary.sort_values(
        ["prop_seroreactive", "antigen"], ascending=[False, True], kind="mergesort"
    ).head(top_n)
    lines.append(f"### Most frequently recognised antigens (top {len(top_antigens)})")
    lines.append("")
    lines.append(
        top_antigens.loc[:, ["antigen", "cutoff", "n_seroreactive", "n_non_missing", "prop_seroreactive"]].to_markdown(
            index=False, floatfmt=".3f"
        )
    )
    lines.append("")

    top_participants = participant_summary.sort_values(
        ["prop_seroreactive", id_col], ascending=[False, True], kind="mergesort"
    ).head(top_n)
    lines.append(f"### Broadest responders (top {len(top_participants)})")
    lines.append("")
    lines.append(top_participants.to_markdown(index=False, floatfmt=".3f"))
    lines.append("")

    lines.append("## Association tests")
    lines.append("")
    lines.append(
        f"Each family holds one test per antigen; p-values are adjusted with {cfg.association.correction} "
        f"correction within the family and called significant when the adjusted p-value is below {alpha:g}."
    )
    lines.append("")
    lines.append(_infection_caveat(cfg))
    lines.append("")
    sig = significance.copy()
    sig["family"] = sig["family"].map(lambda f: _FAMILY_LABELS.get(f, f))
    lines.append(sig.to_markdown(index=False, floatfmt=".1f"))
    lines.append("")

    for family in significance["family"].tolist():
        fam = association_results[(association_results["family"] == family) & association_results["significant"]]
        if fam.empty:
            continue
        fam = fam.sort_values(["p_adj", "antigen"], kind="mergesort").head(top_n)
        lines.append(f"### {_FAMILY_LABELS.get(family, family)}: strongest associations")
        lines.append("")
        lines.append(
            fam.loc[:, ["antigen", "statistic_name", "statistic", "n", "p_value", "p_adj"]].to_markdown(
                index=False, floatfmt=".3g"
            )
        )
        lines.append("")

    if figure_paths:
        lines.append("## Figures")
        lines.append("")
        for path in figure_paths:
            lines.append(f"- `{path.name}`")
        lines.append("")

    out_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return out_path


def _add_pipe_table(doc: Document, rows: list[str]) -> None:
    cells = [[c.strip() for c in r.strip().strip("|").split("|")] for r in rows if not _SEPARATOR_ROW.match(r.strip())]
    if not cells:
        return
    table = doc.add_table(rows=0, cols=len(cells[0]))
    table.style = "Table Grid"
    for row in cells:
        row_cells = table.add_row().cells
        for j, value in enumerate(row[: len(row_cells)]):
            row_cells[j].text = value.replace("`", "")


def _add_markdown(doc: Document, markdown: str) -> None:
    """
    Minimal Markdown -> docx renderer supporting:
    - #/##/### headings
    - bullet lists (- )
    - pipe tables
    - paragraphs (blank-line separated)
    """

    def flush_paragraph(buffer: list[str]) -> None:
        if not buffer:
            return
        text = " ".join([ln.strip() for ln in buffer if ln.strip()])
        if text:
            doc.add_paragraph(text)
        buffer.clear()

    def flush_table(buffer: list[str]) -> None:
        if buffer:
            _add_pipe_table(doc, buffer)
            buffer.clear()

    buf: list[str] = []
    table_buf: list[str] = []
    for raw in markdown.splitlines():
        line = raw.rstrip("\n")
        if line.lstrip().startswith("|"):
            flush_paragraph(buf)
            table_buf.append(line)
            continue
        flush_table(table_buf)

        if not line.strip():
            flush_paragraph(buf)
            continue

        heading = re.match(r"^(#{1,3})\s+(.*)$", line)
        if heading:
            flush_paragraph(buf)
            doc.add_heading(heading.group(2).strip(), level=len(heading.group(1)))
            continue

        if line.startswith("- "):
            flush_paragraph(buf)
            doc.add_paragraph(line[2:].strip().replace("`", ""), style="List Bullet")
            continue

        buf.append(line.replace("**", "").replace("`", ""))

    flush_table(table_buf)
    flush_paragraph(buf)


def build_report_docx(*, markdown_path: Path, out_docx: Path, figures: list[tuple[Path, str]]) -> Path:
    doc = Document()
    _add_markdown(doc, markdown_path.read_text(encoding="utf-8"))

    if figures:
        doc.add_page_break()
        doc.add_heading("Figure previews", level=1)
        for image_path, legend in figures:
            doc.add_paragraph(legend, style="Intense Quote")
            if image_path.exists():
                doc.add_picture(str(image_path), width=Inches(6.5))
                doc.paragraphs[-1].alignment = WD_ALIGN_PARAGRAPH.CENTER

    out_docx.parent.mkdir(parents=True, exist_ok=True)
    doc.save(str(out_docx))
    return out_docx
