"""
Tests for size factor estimation.
"""

import numpy as np
import pandas as pd
import pytest

from commstats.core.errors import EmptySample
from commstats.stats.normalization import SizeFactorMethod, estimate_size_factors


class TestSizeFactors:
    """Median-of-ratios and poscounts."""

    def test_median_of_ratios(self):
        res = estimate_size_factors(np.array([[10, 20, 30], [20, 40, 60]]))

        np.testing.assert_allclose(res.factors, [1 / np.sqrt(2), np.sqrt(2)])
        assert res.method is SizeFactorMethod.RATIO
        assert res.n_reference_taxa == 3

    def test_only_complete_taxa_used(self):
        counts = np.array([[10, 0, 5], [20, 7, 10]])
        res = estimate_size_factors(counts)

        assert res.n_reference_taxa == 2
        assert res.factors[1] / res.factors[0] == pytest.approx(2.0)

    def test_poscounts_fallback(self):
        res = estimate_size_factors(np.array([[0, 4], [4, 0]]))

        assert res.method is SizeFactorMethod.POSCOUNTS
        np.testing.assert_allclose(res.factors, [1.0, 1.0])

    def test_poscounts_geometric_mean_one(self):
        rng = np.random.default_rng(1)
        counts = rng.poisson(20, size=(6, 10)) + 1
        # every taxon has at least one zero
        counts[np.arange(6), np.arange(6)] = 0
        counts[0, 6:] = 0

        res = estimate_size_factors(counts)

        assert res.method is SizeFactorMethod.POSCOUNTS
        assert np.all(res.factors > 0)
        assert np.exp(np.mean(np.log(res.factors))) == pytest.approx(1.0)

    def test_empty_sample(self):
        with pytest.raises(EmptySample) as excinfo:
            estimate_size_factors(np.array([[1, 2], [0, 0]]), sample_ids=pd.Index(["S1", "S2"]))
        assert excinfo.value.sample_ids == ["S2"]

    def test_to_series(self):
        res = estimate_size_factors(np.array([[10, 20], [20, 40]]))
        series = res.to_series(["a", "b"])
        assert series.name == "size_factor"
        assert series.index.tolist() == ["a", "b"]
