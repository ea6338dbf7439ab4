#!/usr/bin/env python

from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from pv_seroreactivity.report import build_report_docx


def main() -> None:
    parser = argparse.ArgumentParser(description="Rebuild the seroreactivity .docx report from an edited Markdown report.")
    parser.add_argument(
        "--report-md",
        type=Path,
        default=Path("outputs/report/seroreactivity_report.md"),
    )
    parser.add_argument(
        "--out-docx",
        type=Path,
        default=Path("outputs/report/seroreactivity_report.docx"),
    )
    parser.add_argument(
        "--figures-dir",
        type=Path,
        default=Path("outputs/figures"),
    )
    args = parser.parse_args()

    build_report_docx(
        markdown_path=args.report_md,
        out_docx=args.out_docx,
        figures=[
            (
                args.figures_dir / "seroreactivity_by_antigen.png",
                "Figure 1. Proportion of participants seroreactive to each antigen, ranked.",
            ),
            (
                args.figures_dir / "seroreactivity_by_participant.png",
                "Figure 2. Proportion of the antigen panel recognised by each participant, ranked.",
            ),
        ],
    )


if __name__ == "__main__":
    main()
