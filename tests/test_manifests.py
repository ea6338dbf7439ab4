from __future__ import annotations

import json
from pathlib import Path

import pandas as pd
import pytest

from pv_seroreactivity.errors import DataIntegrityError
from pv_seroreactivity.manifests import build_signature, build_table_manifest


@pytest.fixture
def tables(tmp_path: Path) -> list[Path]:
    tables_dir = tmp_path / "tables"
    tables_dir.mkdir()
    participants = tables_dir / "participant_seroreactivity.csv"
    pd.DataFrame({"Pv.code": ["P01", "P02", "P03"], "n_seroreactive": [1, 0, 2]}).to_csv(participants, index=False)
    antigens = tables_dir / "antigen_seroreactivity.csv"
    pd.DataFrame({"antigen": ["AgA", "AgB"], "cutoff": [0.5, 0.1]}).to_csv(antigens, index=False)
    return [participants, antigens]


class TestTableManifest:
    def test_records_hash_and_shape(self, tmp_path, tables):
        out = build_table_manifest(tables, tmp_path / "table_manifest.json")
        entry = out["tables"]["participant_seroreactivity.csv"]
        assert entry["n_rows"] == 3
        assert entry["n_cols"] == 2
        assert len(entry["sha256"]) == 64
        assert "expected_n_rows" not in entry

    def test_expected_rows_recorded(self, tmp_path, tables):
        out_path = tmp_path / "table_manifest.json"
        build_table_manifest(
            tables,
            out_path,
            expected_rows={"participant_seroreactivity.csv": 3, "antigen_seroreactivity.csv": 2},
        )
        manifest = json.loads(out_path.read_text(encoding="utf-8"))
        assert manifest["tables"]["antigen_seroreactivity.csv"]["rows_match"] is True
        assert manifest["row_checks"]["n_checked"] == 2
        assert manifest["row_checks"]["mismatched"] == []

    def test_row_mismatch_raises_after_writing(self, tmp_path, tables):
        out_path = tmp_path / "table_manifest.json"
        with pytest.raises(DataIntegrityError, match="participant_seroreactivity.csv"):
            build_table_manifest(tables, out_path, expected_rows={"participant_seroreactivity.csv": 183})
        manifest = json.loads(out_path.read_text(encoding="utf-8"))
        assert manifest["tables"]["participant_seroreactivity.csv"]["rows_match"] is False
        assert manifest["tables"]["participant_seroreactivity.csv"]["expected_n_rows"] == 183

    def test_expected_table_not_written(self, tmp_path, tables):
        with pytest.raises(DataIntegrityError, match="analysis_table.csv"):
            build_table_manifest(tables, tmp_path / "table_manifest.json", expected_rows={"analysis_table.csv": 3})


def test_signature_lists_libraries_and_analysis(tmp_path, tables):
    out_path = tmp_path / "build_signature.txt"
    build_signature(
        out_path=out_path,
        config_paths=[],
        table_paths=tables,
        analysis={"n_antigens": 2, "infection_mode": "literal"},
    )
    text = out_path.read_text(encoding="utf-8")
    for name in ["pandas", "statsmodels", "python-docx", "tabulate"]:
        assert f"\n{name}: " in text
    assert "analysis.n_antigens: 2" in text
    assert "analysis.infection_mode: literal" in text
    assert "table: antigen_seroreactivity.csv sha256=" in text
