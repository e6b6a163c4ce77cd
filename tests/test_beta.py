"""
Tests for beta diversity dissimilarities.
"""

import numpy as np
import pandas as pd
import pytest

from commstats.core.dataset import build
from commstats.core.errors import EmptySample
from commstats.diversity.beta import DissimilarityMatrix, dissimilarity


def _dataset(rows, sample_ids=None):
    rows = np.asarray(rows)
    sample_ids = sample_ids or [f"S{i}" for i in range(rows.shape[0])]
    taxa = [f"T{j}" for j in range(rows.shape[1])]
    return build(
        pd.DataFrame(rows, index=sample_ids, columns=taxa),
        pd.DataFrame({"Genus": taxa}, index=taxa),
        pd.DataFrame(index=sample_ids),
    )


class TestDissimilarity:
    """Bray-Curtis and Jaccard."""

    def test_proportional_samples_bray_curtis_zero(self):
        dm = dissimilarity(_dataset([[1, 2, 3], [2, 4, 6], [0, 5, 1]]))
        assert dm.data[0, 1] == pytest.approx(0.0)
        assert dm.data[0, 2] > 0

    def test_disjoint_samples(self):
        dm = dissimilarity(_dataset([[4, 0], [0, 9]]))
        assert dm.data[0, 1] == pytest.approx(1.0)

    def test_jaccard_presence_absence(self):
        dm = dissimilarity(_dataset([[1, 1, 0], [5, 0, 2]]), metric="jaccard")
        assert dm.data[0, 1] == pytest.approx(2.0 / 3.0)
        assert dm.metric == "jaccard"

    def test_properties_on_community(self, community):
        dm = dissimilarity(community.rarefy(seed=1))

        np.testing.assert_allclose(dm.data, dm.data.T)
        np.testing.assert_array_equal(np.diag(dm.data), 0.0)
        assert dm.data.min() >= 0.0
        assert dm.data.max() <= 1.0
        assert dm.ids.equals(community.sample_ids)

    def test_metric_aliases(self, tiny):
        a = dissimilarity(tiny, metric="braycurtis")
        b = dissimilarity(tiny, metric="Bray_Curtis")
        np.testing.assert_array_equal(a.data, b.data)
        assert a.metric == "bray-curtis"

    def test_unknown_metric(self, tiny):
        with pytest.raises(ValueError, match="Unknown metric"):
            dissimilarity(tiny, metric="unifrac")

    @pytest.mark.parametrize("metric", ["bray-curtis", "jaccard"])
    def test_empty_sample(self, metric):
        with pytest.raises(EmptySample):
            dissimilarity(_dataset([[1, 2], [0, 0]]), metric=metric)


class TestDissimilarityMatrix:
    """Validation and views."""

    def test_rejects_asymmetric(self):
        with pytest.raises(ValueError, match="symmetric"):
            DissimilarityMatrix(pd.Index(["a", "b"]), np.array([[0.0, 0.2], [0.3, 0.0]]))

    def test_rejects_nonzero_diagonal(self):
        with pytest.raises(ValueError, match="diagonal"):
            DissimilarityMatrix(pd.Index(["a", "b"]), np.array([[0.1, 0.2], [0.2, 0.0]]))

    def test_rejects_negative(self):
        with pytest.raises(ValueError, match="non-negative"):
            DissimilarityMatrix(pd.Index(["a", "b"]), np.array([[0.0, -0.2], [-0.2, 0.0]]))

    def test_rejects_shape_mismatch(self):
        with pytest.raises(ValueError, match="does not match"):
            DissimilarityMatrix(pd.Index(["a", "b", "c"]), np.zeros((2, 2)))

    def test_read_only(self, tiny):
        dm = dissimilarity(tiny)
        with pytest.raises(ValueError):
            dm.data[0, 1] = 0.5

    def test_subset_and_condensed(self, tiny):
        dm = dissimilarity(tiny)
        sub = dm.subset(["S4", "S1"])

        assert sub.ids.tolist() == ["S4", "S1"]
        assert sub.data[0, 1] == dm.data[3, 0]
        assert dm.condensed().shape == (6,)

        with pytest.raises(KeyError):
            dm.subset(["S1", "S9"])

    def test_to_dataframe(self, tiny):
        df = dissimilarity(tiny).to_dataframe()
        assert df.index.tolist() == ["S1", "S2", "S3", "S4"]
        assert df.loc["S1", "S3"] == pytest.approx(0.5)
