from __future__ import annotations

import json
import logging
import platform
import sys
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from typing import Mapping

import pandas as pd

from pv_seroreactivity.errors import DataIntegrityError
from pv_seroreactivity.utils import sha256_file


logger = logging.getLogger("pv_seroreactivity.manifests")

_SIGNATURE_PACKAGES = [
    "pandas",
    "numpy",
    "scipy",
    "statsmodels",
    "matplotlib",
    "pyyaml",
    "python-docx",
    "tabulate",
]


def _read_output_table(path: Path) -> pd.DataFrame:
    return pd.read_csv(path, low_memory=False)


def build_table_manifest(
    table_paths: list[Path],
    out_path: Path,
    *,
    expected_rows: Mapping[str, int] | None = None,
) -> dict:
    """Hash and count every output table, and check row counts where one is expected.

    ``expected_rows`` maps a table file name to its expected row count. Each
    checked table records ``expected_n_rows`` and ``rows_match``. The manifest
    is written before a mismatch raises ``DataIntegrityError``, so it can be
    inspected.
    """
    expected_rows = dict(expected_rows or {})
    tables: dict[str, dict] = {}
    mismatched: list[str] = []
    for p in sorted(table_paths):
        if p.suffix.lower() != ".csv":
            continue
        df = _read_output_table(p)
        entry: dict[str, object] = {
            "sha256": sha256_file(p),
            "n_rows": int(df.shape[0]),
            "n_cols": int(df.shape[1]),
        }
        if p.name in expected_rows:
            entry["expected_n_rows"] = int(expected_rows[p.name])
            entry["rows_match"] = entry["n_rows"] == entry["expected_n_rows"]
            if not entry["rows_match"]:
                mismatched.append(f"{p.name} ({entry['n_rows']} rows, expected {entry['expected_n_rows']})")
        tables[p.name] = entry

    missing = sorted(set(expected_rows) - set(tables))
    out = {
        "generated_utc": datetime.now(timezone.utc).isoformat(),
        "tables": tables,
        "row_checks": {
            "n_checked": len(expected_rows) - len(missing),
            "mismatched": mismatched,
            "missing_tables": missing,
        },
    }
    out_path.write_text(json.dumps(out, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    if mismatched or missing:
        raise DataIntegrityError(
            f"Output table row counts failed: mismatched={mismatched}, missing={missing}; see {out_path.as_posix()}"
        )
    logger.info("Table manifest: %d tables, %d row counts checked", len(tables), len(expected_rows))
    return out


def build_signature(
    *,
    out_path: Path,
    config_paths: list[Path],
    table_paths: list[Path],
    analysis: Mapping[str, object] | None = None,
) -> None:
    lines: list[str] = []
    lines.append(f"generated_utc: {datetime.now(timezone.utc).isoformat()}")
    lines.append(f"python: {sys.version.split()[0]}")
    lines.append(f"platform: {platform.platform()}")
    lines.append("")
    for name in _SIGNATURE_PACKAGES:
        try:
            lines.append(f"{name}: {metadata.version(name)}")
        except metadata.PackageNotFoundError:
            lines.append(f"{name}: (not installed)")
    lines.append("")

    if analysis:
        for key, value in analysis.items():
            lines.append(f"analysis.{key}: {value}")
        lines.append("")

    for cfg in config_paths:
        lines.append(f"config: {cfg.as_posix()} sha256={sha256_file(cfg)}")
    lines.append("")

    for p in sorted(table_paths):
        if p.exists():
            lines.append(f"table: {p.name} sha256={sha256_file(p)}")

    out_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
