"""
Tests for NMDS and PCoA ordination.
"""

import threading

import numpy as np
import pandas as pd
import pytest
from scipy.spatial.distance import pdist, squareform
from scipy.stats import spearmanr

from commstats.core.errors import AnalysisCancelled
from commstats.core.notices import ConvergenceWarning, NoticeKind
from commstats.diversity.beta import DissimilarityMatrix
from commstats.diversity.ordination import interpret_stress, nmds, ordinate, pcoa


@pytest.fixture
def planar():
    """Dissimilarities that are exact Euclidean distances of 12 points in 2D."""
    rng = np.random.default_rng(42)
    points = rng.uniform(0, 10, size=(12, 2))
    ids = pd.Index([f"S{i:02d}" for i in range(12)])
    return DissimilarityMatrix(ids, squareform(pdist(points))), points


class TestNMDS:
    """Kruskal non-metric MDS."""

    def test_preserves_rank_order(self, planar):
        dm, _ = planar
        result = nmds(dm, dims=2, seed=1)

        embedded = pdist(result.coordinates.to_numpy())
        rho = spearmanr(embedded, dm.condensed()).correlation
        assert rho > 0.95
        assert result.stress < 0.2
        assert result.method == "NMDS"

    def test_columns_and_index(self, planar):
        dm, _ = planar
        result = ordinate(dm, method="nmds", dims=3, seed=1, n_init=2)

        assert result.coordinates.columns.tolist() == ["NMDS1", "NMDS2", "NMDS3"]
        assert result.coordinates.index.equals(dm.ids)

    def test_reproducible(self, planar):
        dm, _ = planar
        a = nmds(dm, seed=7, n_init=3)
        b = nmds(dm, seed=7, n_init=3)
        pd.testing.assert_frame_equal(a.coordinates, b.coordinates)
        assert a.stress == b.stress

    def test_n_jobs_invariant(self, planar):
        dm, _ = planar
        serial = nmds(dm, seed=7, n_init=4, n_jobs=1)
        threaded = nmds(dm, seed=7, n_init=4, n_jobs=2)
        pd.testing.assert_frame_equal(serial.coordinates, threaded.coordinates)

    def test_non_convergence_is_reported(self, planar):
        dm, _ = planar
        with pytest.warns(ConvergenceWarning):
            result = nmds(dm, max_iter=1, n_init=1, seed=1)

        assert not result.converged
        assert [n.kind for n in result.notices] == [NoticeKind.CONVERGENCE]
        assert np.all(np.isfinite(result.coordinates.to_numpy()))

    def test_all_zero_dissimilarities(self):
        dm = DissimilarityMatrix(pd.Index(["a", "b", "c"]), np.zeros((3, 3)))
        result = nmds(dm, dims=2)

        assert result.stress == 0.0
        np.testing.assert_array_equal(result.coordinates.to_numpy(), 0.0)

    @pytest.mark.parametrize("n, dims", [(2, 1), (4, 4), (4, 0)])
    def test_invalid_dims(self, n, dims):
        dm = DissimilarityMatrix(pd.Index(range(n)), np.ones((n, n)) - np.eye(n))
        with pytest.raises(ValueError):
            nmds(dm, dims=dims)

    def test_cancellation(self, planar):
        dm, _ = planar
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(AnalysisCancelled):
            nmds(dm, seed=1, cancel=cancel)


class TestPCoA:
    """Classical metric scaling."""

    def test_recovers_euclidean_configuration(self, planar):
        dm, _ = planar
        result = pcoa(dm, dims=2)

        np.testing.assert_allclose(pdist(result.coordinates.to_numpy()), dm.condensed(), atol=1e-8)
        assert result.proportion_explained.sum() == pytest.approx(1.0)
        assert result.proportion_explained.iloc[0] >= result.proportion_explained.iloc[1]
        assert result.coordinates.columns.tolist() == ["PCo1", "PCo2"]

    def test_via_ordinate(self, planar):
        dm, _ = planar
        result = ordinate(dm, method="PCoA", dims=2)
        assert result.method == "PCoA"
        assert result.stress == 0.0

    def test_unknown_method(self, planar):
        dm, _ = planar
        with pytest.raises(ValueError, match="Unknown ordination method"):
            ordinate(dm, method="tSNE")


@pytest.mark.parametrize("stress, label", [
    (0.01, "excellent"),
    (0.07, "good"),
    (0.15, "fair"),
    (0.3, "poor"),
])
def test_interpret_stress(stress, label):
    assert interpret_stress(stress) == label
