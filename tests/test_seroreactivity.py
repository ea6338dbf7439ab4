from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from pv_seroreactivity.errors import DataIntegrityError, UndefinedCutoffError
from pv_seroreactivity.seroreactivity import (
    classify_seroreactive,
    compute_cutoff,
    compute_cutoffs,
    impute_at_cutoff,
    summarize_antigens,
    summarize_participants,
)
from pv_seroreactivity.transform import log10_transform


ANTIGENS = ["AgA", "AgB", "AgC"]


@pytest.fixture
def log_table(antibody) -> pd.DataFrame:
    cohort = antibody.iloc[:6].reset_index(drop=True)
    return log10_transform(cohort, ANTIGENS)


class TestCutoff:
    def test_half_minimum_non_negative(self):
        values = pd.Series(pd.array([-0.5, 0.4, None, 1.2, 0.8], dtype="Float64"))
        assert compute_cutoff(values, "Ag") == pytest.approx(0.2)

    def test_zero_is_a_valid_minimum(self):
        values = pd.Series(pd.array([0.0, 1.0], dtype="Float64"))
        assert compute_cutoff(values, "Ag") == 0.0

    def test_single_value(self):
        values = pd.Series(pd.array([1.0, None], dtype="Float64"))
        assert compute_cutoff(values, "Ag") == pytest.approx(0.5)

    def test_all_missing_raises(self):
        values = pd.Series(pd.array([None, None], dtype="Float64"))
        with pytest.raises(UndefinedCutoffError) as exc_info:
            compute_cutoff(values, "AgX")
        assert exc_info.value.antigen == "AgX"
        assert exc_info.value.n_non_missing == 0
        assert isinstance(exc_info.value, DataIntegrityError)

    def test_only_negative_values_raises(self):
        values = pd.Series(pd.array([-1.0, -0.2], dtype="Float64"))
        with pytest.raises(UndefinedCutoffError, match="2 non-missing"):
            compute_cutoff(values, "AgY")

    def test_cutoffs_are_per_antigen(self, log_table):
        cutoffs = compute_cutoffs(log_table, ANTIGENS)
        assert list(cutoffs.index) == ANTIGENS
        assert cutoffs["AgA"] == pytest.approx(0.5)
        assert cutoffs["AgB"] == pytest.approx(np.log10(2.0) / 2)
        assert cutoffs["AgC"] == 0.0


class TestImputeAndClassify:
    def test_imputed_table_has_no_missing(self, log_table):
        cutoffs = compute_cutoffs(log_table, ANTIGENS)
        imputed = impute_at_cutoff(log_table, cutoffs, ANTIGENS)
        assert not imputed.loc[:, ANTIGENS].isna().any().any()
        assert float(imputed.loc[0, "AgB"]) == pytest.approx(cutoffs["AgB"])
        assert float(imputed.loc[2, "AgB"]) == pytest.approx(cutoffs["AgB"])
        # observed values untouched
        assert float(imputed.loc[5, "AgB"]) == pytest.approx(np.log10(0.5))

    def test_strictly_above_cutoff(self, log_table):
        cutoffs = compute_cutoffs(log_table, ANTIGENS)
        imputed = impute_at_cutoff(log_table, cutoffs, ANTIGENS)
        reactive = classify_seroreactive(imputed, cutoffs, ANTIGENS)
        assert reactive["AgA"].all()
        assert reactive["AgB"].tolist() == [False, True, False, True, True, False]
        # every value equals the cutoff of 0
        assert not reactive["AgC"].any()

    def test_value_equal_to_cutoff_is_not_reactive(self):
        df = pd.DataFrame({"Ag": pd.array([0.5, 0.50001, 1.0], dtype="Float64")})
        reactive = classify_seroreactive(df, pd.Series({"Ag": 0.5}), ["Ag"])
        assert reactive["Ag"].tolist() == [False, True, True]


class TestSummaries:
    def test_antigen_summary_counts(self, log_table):
        cutoffs = compute_cutoffs(log_table, ANTIGENS)
        imputed = impute_at_cutoff(log_table, cutoffs, ANTIGENS)
        reactive = classify_seroreactive(imputed, cutoffs, ANTIGENS)
        summary = summarize_antigens(log_table, reactive, cutoffs, ANTIGENS).set_index("antigen")

        assert summary.loc["AgB", "n_non_missing"] == 4
        assert summary.loc["AgB", "n_seroreactive"] == 3
        assert summary.loc["AgB", "n_below"] == 1
        assert summary.loc["AgB", "prop_seroreactive"] == pytest.approx(0.75)
        assert summary.loc["AgA", "prop_seroreactive"] == 1.0
        assert summary.loc["AgC", "prop_seroreactive"] == 0.0

        assert (summary["n_seroreactive"] + summary["n_below"] == summary["n_non_missing"]).all()
        assert summary["prop_seroreactive"].between(0, 1).all()

    def test_participant_summary(self, log_table):
        cutoffs = compute_cutoffs(log_table, ANTIGENS)
        imputed = impute_at_cutoff(log_table, cutoffs, ANTIGENS)
        reactive = classify_seroreactive(imputed, cutoffs, ANTIGENS)
        summary = summarize_participants(reactive, imputed["Pv.code"], id_col="Pv.code", panel_size=3)

        assert summary["Pv.code"].tolist() == ["P01", "P02", "P03", "P04", "P05", "P06"]
        assert summary["n_seroreactive"].tolist() == [1, 2, 1, 2, 2, 1]
        np.testing.assert_allclose(summary["prop_seroreactive"], summary["n_seroreactive"] / 3)
        assert summary["prop_seroreactive"].between(0, 1).all()

    def test_participant_summary_rejects_empty_panel(self, log_table):
        with pytest.raises(ValueError):
            summarize_participants(pd.DataFrame(index=log_table.index), log_table["Pv.code"], id_col="Pv.code", panel_size=0)
