from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from pv_seroreactivity.errors import DataIntegrityError
from pv_seroreactivity.panel import check_panel, read_antigen_list, resolve_antigen_panel
from pv_seroreactivity.transform import (
    derive_lifetime_exposure,
    drop_excluded_columns,
    log10_nullable,
    log10_transform,
)

from conftest import make_config


class TestLog10:
    def test_non_positive_becomes_missing(self):
        out = log10_nullable(pd.Series([0.0, 10.0, -5.0, 1.0, np.nan, np.inf]))
        assert out.dtype == "Float64"
        assert out.isna().tolist() == [True, False, True, False, True, True]
        assert float(out[1]) == pytest.approx(1.0)
        assert float(out[3]) == 0.0

    def test_every_positive_value_is_defined(self):
        raw = pd.Series([1e-6, 0.5, 3.0, 1e9])
        out = log10_nullable(raw)
        assert out.notna().all()
        np.testing.assert_allclose(out.to_numpy(dtype="float64"), np.log10(raw.to_numpy()))

    def test_transform_only_touches_antigens(self, antibody):
        out = log10_transform(antibody, ["AgA", "AgB", "AgC"])
        assert list(out.columns) == list(antibody.columns)
        assert out["plate"].tolist() == antibody["plate"].tolist()
        assert float(out.loc[2, "AgA"]) == pytest.approx(3.0)
        assert pd.isna(out.loc[0, "AgB"])
        assert float(out.loc[5, "AgB"]) == pytest.approx(np.log10(0.5))

    def test_numeric_strings_are_parsed(self):
        out = log10_nullable(pd.Series(["100", "n/a", "0"]))
        assert float(out[0]) == pytest.approx(2.0)
        assert out[1:].isna().all()


class TestExclusionsAndExposure:
    def test_drop_excluded_columns(self, antibody):
        out = drop_excluded_columns(antibody, ["plate", "not_there"])
        assert "plate" not in out.columns
        assert {"AgA", "AgB", "AgC"} <= set(out.columns)

    def test_lifetime_exposure_missing_propagates(self, cfg):
        df = pd.DataFrame(
            {
                "age_years": pd.array([2.0, None, 4.0], dtype="Float64"),
                "molFOB": pd.array([1.5, 2.0, None], dtype="Float64"),
            }
        )
        out = derive_lifetime_exposure(df, cfg)
        assert float(out.loc[0, "lifetime_exposure"]) == pytest.approx(3.0)
        assert pd.isna(out.loc[1, "lifetime_exposure"])
        assert pd.isna(out.loc[2, "lifetime_exposure"])

    def test_zero_exposure_is_not_missing(self, cfg):
        df = pd.DataFrame(
            {
                "age_years": pd.array([2.0], dtype="Float64"),
                "molFOB": pd.array([0.0], dtype="Float64"),
            }
        )
        out = derive_lifetime_exposure(df, cfg)
        assert float(out.loc[0, "lifetime_exposure"]) == 0.0


class TestAntigenPanel:
    def test_panel_from_columns(self, cfg, antibody):
        assert resolve_antigen_panel(antibody, cfg.panel, id_col="Pv.code") == ("AgA", "AgB", "AgC")

    def test_panel_size_checked(self, antibody):
        cfg = make_config(panel={"expected_n_antigens": 342})
        with pytest.raises(DataIntegrityError, match="expected 342"):
            resolve_antigen_panel(antibody, cfg.panel, id_col="Pv.code")

    def test_panel_from_file(self, tmp_path, antibody):
        path = tmp_path / "panel.txt"
        path.write_text("# antigens\nAgC\nAgA\n", encoding="utf-8")
        assert read_antigen_list(path) == ("AgC", "AgA")
        cfg = make_config(panel={"antigens_file": str(path), "expected_n_antigens": 2})
        assert resolve_antigen_panel(antibody, cfg.panel, id_col="Pv.code") == ("AgC", "AgA")

    def test_listed_antigen_missing_from_table(self, tmp_path, antibody):
        path = tmp_path / "panel.txt"
        path.write_text("AgA\nAgZ\n", encoding="utf-8")
        cfg = make_config(panel={"antigens_file": str(path), "expected_n_antigens": None})
        with pytest.raises(DataIntegrityError, match="AgZ"):
            resolve_antigen_panel(antibody, cfg.panel, id_col="Pv.code")

    def test_check_panel_names_stage(self, antibody):
        with pytest.raises(DataIntegrityError, match="imputation"):
            check_panel(antibody.drop(columns=["AgB"]), ["AgA", "AgB"], stage="imputation")
