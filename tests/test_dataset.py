"""
Tests for Dataset construction, validation and derivation.
"""

import numpy as np
import pandas as pd
import pytest

from commstats.core.dataset import Dataset, build
from commstats.core.errors import (
    CommStatsError,
    EmptySample,
    InvalidCount,
    SchemaMismatch,
)


def _tables():
    abundance = pd.DataFrame(
        [[10, 0, 3], [0, 12, 1]],
        index=["S1", "S2"],
        columns=["ASV1", "ASV2", "ASV3"],
    )
    taxonomy = pd.DataFrame(
        {"Phylum": ["Firmicutes", "Bacteroidota", "Firmicutes"],
         "Genus": ["Blautia", "Bacteroides", None]},
        index=["ASV1", "ASV2", "ASV3"],
    )
    samples = pd.DataFrame({"group": ["A", "B"]}, index=["S1", "S2"])
    return abundance, taxonomy, samples


class TestBuild:
    """Validation and alignment in build()."""

    def test_aligns_metadata_and_taxonomy_to_abundance_order(self):
        abundance, taxonomy, samples = _tables()
        ds = build(abundance, taxonomy.iloc[::-1], samples.iloc[::-1])

        assert ds.sample_metadata.index.tolist() == ["S1", "S2"]
        assert ds.taxonomy.index.tolist() == ["ASV1", "ASV2", "ASV3"]
        assert ds.sample_metadata.loc["S2", "group"] == "B"
        assert ds.ranks == ["Phylum", "Genus"]
        assert ds.shape == (2, 3)

    def test_sample_id_mismatch(self):
        abundance, taxonomy, samples = _tables()
        samples.index = ["S1", "S9"]
        with pytest.raises(SchemaMismatch, match="S9"):
            build(abundance, taxonomy, samples)

    def test_taxon_id_mismatch(self):
        abundance, taxonomy, samples = _tables()
        with pytest.raises(SchemaMismatch, match="taxon"):
            build(abundance, taxonomy.iloc[:2], samples)

    def test_duplicate_ids(self):
        abundance, taxonomy, samples = _tables()
        abundance.index = ["S1", "S1"]
        with pytest.raises(SchemaMismatch, match="duplicate"):
            build(abundance, taxonomy, samples)

    def test_empty_abundance(self):
        _, taxonomy, samples = _tables()
        with pytest.raises(SchemaMismatch, match="empty"):
            build(pd.DataFrame(), taxonomy, samples)

    @pytest.mark.parametrize("bad_value, pattern", [
        (-1, "negative"),
        (2.5, "non-integral"),
        (np.nan, "missing"),
        ("abc", "missing or non-numeric"),
    ])
    def test_invalid_counts(self, bad_value, pattern):
        abundance, taxonomy, samples = _tables()
        abundance = abundance.astype(object)
        abundance.iloc[1, 2] = bad_value
        with pytest.raises(InvalidCount, match=pattern):
            build(abundance, taxonomy, samples)

    def test_integral_floats_accepted(self):
        abundance, taxonomy, samples = _tables()
        ds = build(abundance.astype(float), taxonomy, samples)
        assert ds.data.dtype == np.int64
        assert ds.data[0, 0] == 10

    def test_errors_are_catchable_as_value_error(self):
        abundance, taxonomy, samples = _tables()
        abundance.iloc[0, 0] = -5
        with pytest.raises(ValueError):
            build(abundance, taxonomy, samples)
        with pytest.raises(CommStatsError):
            build(abundance, taxonomy, samples)

    def test_non_dataframe_input(self):
        _, taxonomy, samples = _tables()
        with pytest.raises(TypeError):
            build(np.zeros((2, 3)), taxonomy, samples)


class TestDataset:
    """Immutability and derived views."""

    def test_data_is_read_only(self, tiny):
        with pytest.raises(ValueError):
            tiny.data[0, 0] = 99

    def test_source_array_not_shared(self):
        data = np.array([[1, 2], [3, 4]])
        ids = pd.Index(["S1", "S2"])
        taxa = pd.Index(["T1", "T2"])
        ds = Dataset(
            data, ids, taxa,
            pd.DataFrame({"Genus": ["a", "b"]}, index=taxa),
            pd.DataFrame(index=ids),
        )
        data[0, 0] = 100
        assert ds.data[0, 0] == 1

    def test_constructor_checks_alignment(self):
        ids = pd.Index(["S1", "S2"])
        taxa = pd.Index(["T1", "T2"])
        with pytest.raises(ValueError, match="taxonomy.index"):
            Dataset(
                np.ones((2, 2), dtype=int), ids, taxa,
                pd.DataFrame({"Genus": ["a", "b"]}, index=["T2", "T1"]),
                pd.DataFrame(index=ids),
            )

    def test_copies_do_not_leak(self, tiny):
        md = tiny.sample_metadata
        md.loc["S1", "group"] = "Z"
        assert tiny.sample_metadata.loc["S1", "group"] == "A"

        counts = tiny.counts()
        counts.iloc[0, 0] = 0
        assert tiny.data[0, 0] == 10

    def test_sample_totals(self, tiny):
        totals = tiny.sample_totals
        assert totals.tolist() == [10, 10, 10, 10]
        assert totals.index.equals(tiny.sample_ids)

    def test_proportions_rows_sum_to_one(self, community):
        props = community.proportions()
        np.testing.assert_allclose(props.sum(axis=1), 1.0)

    def test_proportions_empty_sample(self):
        abundance, taxonomy, samples = _tables()
        abundance.iloc[1] = 0
        ds = build(abundance, taxonomy, samples)
        with pytest.raises(EmptySample) as excinfo:
            ds.proportions()
        assert excinfo.value.sample_ids == ["S2"]

    def test_select_samples(self, tiny):
        mask = tiny.sample_metadata["group"] == "B"
        subset = tiny.select_samples(mask)

        assert subset.sample_ids.tolist() == ["S3", "S4"]
        assert subset.sample_metadata.index.tolist() == ["S3", "S4"]
        assert subset.history == ("SelectSamples(n=2)",)
        assert tiny.n_samples == 4

    def test_select_samples_bad_mask(self, tiny):
        with pytest.raises(ValueError):
            tiny.select_samples([True, False])

    def test_repr_shows_history(self, tiny):
        assert "history=raw" in repr(tiny)
        derived = tiny.rarefy(depth=10, seed=1)
        assert "Rarefy(depth=10, seed=1)" in repr(derived)
