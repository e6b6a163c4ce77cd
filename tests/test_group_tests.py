"""
Tests for rank-sum testing and multiple testing correction.
"""

import numpy as np
import pytest

from commstats.core.errors import InsufficientGroups
from commstats.stats.group_tests import rank_sum_test
from commstats.stats.multiple_testing import fdr_correction


class TestRankSum:
    """Mann-Whitney U with rank-biserial effect size."""

    def test_complete_separation(self):
        res = rank_sum_test({"A": [1, 2, 3], "B": [4, 5, 6]})

        assert res.statistic == 0.0
        assert res.effect_size == pytest.approx(-1.0)
        assert res.p_value == pytest.approx(0.1)
        assert res.groups == ("A", "B")
        assert res.n == (3, 3)

    def test_swapping_groups_flips_effect(self):
        res = rank_sum_test({"B": [4, 5, 6], "A": [1, 2, 3]})
        assert res.effect_size == pytest.approx(1.0)

    def test_nan_dropped(self):
        res = rank_sum_test({"A": [1, np.nan, 2], "B": [3, 4]})
        assert res.n == (2, 2)

    @pytest.mark.parametrize("groups", [
        {"A": [1, 2]},
        {"A": [1], "B": [2], "C": [3]},
        {"A": [1, 2], "B": [np.nan]},
        {"A": [], "B": [1, 2]},
    ])
    def test_insufficient_groups(self, groups):
        with pytest.raises(InsufficientGroups):
            rank_sum_test(groups)

    def test_to_dict(self):
        d = rank_sum_test({"A": [1, 2, 3], "B": [4, 5, 6]}).to_dict()
        assert d["group_a"] == "A"
        assert d["n_b"] == 3
        assert set(d) == {"group_a", "group_b", "n_a", "n_b", "statistic", "p_value", "effect_size"}


class TestFdrCorrection:
    """Benjamini-Hochberg and friends."""

    def test_known_values_with_nan(self):
        adjusted = fdr_correction(np.array([0.01, np.nan, 0.04]))
        np.testing.assert_allclose(adjusted, [0.02, np.nan, 0.04])

    def test_adjusted_at_least_raw_and_order_preserved(self):
        rng = np.random.default_rng(42)
        p = rng.uniform(size=50)
        adjusted = fdr_correction(p)

        assert np.all(adjusted >= p - 1e-12)
        assert np.all(adjusted <= 1.0)
        order = np.argsort(p)
        assert np.all(np.diff(adjusted[order]) >= -1e-12)

    def test_bonferroni(self):
        adjusted = fdr_correction([0.01, 0.2, 0.6], method="bonferroni")
        np.testing.assert_allclose(adjusted, [0.03, 0.6, 1.0])

    def test_all_nan(self):
        assert np.all(np.isnan(fdr_correction([np.nan, np.nan])))

    def test_unknown_method(self):
        with pytest.raises(ValueError, match="Unknown correction method"):
            fdr_correction([0.1], method="holm")
