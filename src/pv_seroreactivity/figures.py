from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from pv_seroreactivity.utils import ensure_dir


@dataclass(frozen=True)
class FigurePaths:
    antigen_ranked: Path
    participant_ranked: Path


def _apply_journal_plot_style(plt: object) -> None:
    plt.rcParams.update(  # type: ignore[attr-defined]
        {
            "figure.facecolor": "white",
            "axes.facecolor": "white",
            "savefig.facecolor": "white",
            "savefig.transparent": False,
            "font.family": "sans-serif",
            "font.sans-serif": ["Arial", "Helvetica", "DejaVu Sans"],
            "font.size": 10,
            "axes.titlesize": 11,
            "axes.labelsize": 10,
            "xtick.labelsize": 9,
            "ytick.labelsize": 9,
            "axes.linewidth": 1.0,
            "axes.spines.top": False,
            "axes.spines.right": False,
            "xtick.direction": "out",
            "ytick.direction": "out",
            "svg.hashsalt": "pv_seroreactivity",
        }
    )


def _ranked_bar(
    values: pd.Series,
    labels: pd.Series,
    *,
    out_stem: Path,
    title: str,
    xlabel: str,
    show_labels: bool,
) -> Path:
    import matplotlib.pyplot as plt  # type: ignore

    _apply_journal_plot_style(plt)

    order = pd.DataFrame({"label": labels.astype(str).to_numpy(), "value": values.to_numpy(dtype="float64")})
    order = order.sort_values(["value", "label"], ascending=[False, True], kind="mergesort").reset_index(drop=True)

    n = len(order)
    fig, ax = plt.subplots(figsize=(max(6.0, min(24.0, 0.06 * n + 4.0)), 4.5))
    ax.bar(np.arange(n), order["value"].to_numpy(), width=0.85, color="#4C72B0", edgecolor="none")
    ax.set_xlim(-0.75, n - 0.25)
    ax.set_ylim(0.0, 1.0)
    ax.set_ylabel("Proportion seroreactive")
    ax.set_xlabel(xlabel)
    ax.set_title(title)
    if show_labels:
        ax.set_xticks(np.arange(n))
        ax.set_xticklabels(order["label"].tolist(), rotation=90, fontsize=5)
    else:
        ax.set_xticks([])
    fig.tight_layout()

    png_path = out_stem.with_suffix(".png")
    fig.savefig(png_path, dpi=300, bbox_inches="tight")
    fig.savefig(out_stem.with_suffix(".svg"), bbox_inches="tight", metadata={"Date": None})
    plt.close(fig)
    return png_path


def plot_seroreactivity(
    antigen_summary: pd.DataFrame,
    participant_summary: pd.DataFrame,
    *,
    id_col: str,
    out_dir: Path,
) -> FigurePaths:
    """Ranked bar charts of per-antigen and per-participant seroreactivity."""
    ensure_dir(out_dir)
    antigen_png = _ranked_bar(
        antigen_summary["prop_seroreactive"],
        antigen_summary["antigen"],
        out_stem=out_dir / "seroreactivity_by_antigen",
        title=f"Seroreactivity by antigen (n={len(antigen_summary)} antigens)",
        xlabel="Antigen (ranked)",
        show_labels=len(antigen_summary) <= 60,
    )
    participant_png = _ranked_bar(
        participant_summary["prop_seroreactive"],
        participant_summary[id_col],
        out_stem=out_dir / "seroreactivity_by_participant",
        title=f"Seroreactive breadth by participant (n={len(participant_summary)})",
        xlabel="Participant (ranked)",
        show_labels=len(participant_summary) <= 60,
    )
    return FigurePaths(antigen_ranked=antigen_png, participant_ranked=participant_png)
