"""
Tests for taxonomic aggregation and top-N collapse.
"""

import numpy as np
import pandas as pd
import pytest

from commstats.core.dataset import build
from commstats.transforms import (
    OTHER,
    UNRESOLVED,
    AggregateRank,
    CollapseTopN,
    aggregate,
    collapse_to_top_n,
    is_unresolved,
)


@pytest.fixture
def lineage_dataset():
    """Five ASVs over three genera, two of them unresolved."""
    abundance = pd.DataFrame(
        [[1, 2, 3, 4, 5], [10, 0, 7, 0, 1]],
        index=["S1", "S2"],
        columns=["ASV1", "ASV2", "ASV3", "ASV4", "ASV5"],
    )
    taxonomy = pd.DataFrame(
        {
            "Phylum": ["Firmicutes", "Firmicutes", "Bacteroidota", "Firmicutes", "Proteobacteria"],
            "Genus": ["Blautia", "Blautia", "Bacteroides", "g__", None],
        },
        index=abundance.columns,
    )
    samples = pd.DataFrame({"group": ["A", "B"]}, index=["S1", "S2"])
    return build(abundance, taxonomy, samples)


@pytest.fixture
def tie_dataset():
    """Four genera with totals G1=10, G2=10, G3=5, G4=1."""
    abundance = pd.DataFrame(
        [[5, 5, 3, 1], [5, 5, 2, 0]],
        index=["S1", "S2"],
        columns=["t4", "t3", "t2", "t1"],
    )
    taxonomy = pd.DataFrame(
        {"Genus": ["G2", "G1", "G3", "G4"]},
        index=abundance.columns,
    )
    samples = pd.DataFrame({"group": ["A", "B"]}, index=["S1", "S2"])
    return build(abundance, taxonomy, samples)


class TestIsUnresolved:
    """Placeholder detection for rank labels."""

    @pytest.mark.parametrize("label", [None, np.nan, "", "  ", "g__", "s__", "Unassigned", "unknown", "NA"])
    def test_unresolved(self, label):
        assert is_unresolved(label)

    @pytest.mark.parametrize("label", ["Blautia", "g__Blautia", "Other", "uncultured bacterium"])
    def test_resolved(self, label):
        assert not is_unresolved(label)


class TestAggregate:
    """Summing taxa that share a label."""

    def test_groups_and_totals(self, lineage_dataset):
        genus = aggregate(lineage_dataset, "Genus")

        assert genus.taxon_ids.tolist() == ["Bacteroides", "Blautia", UNRESOLVED]
        np.testing.assert_array_equal(genus.data, [[3, 3, 9], [7, 10, 1]])
        pd.testing.assert_series_equal(genus.sample_totals, lineage_dataset.sample_totals)

    def test_consensus_higher_rank(self, lineage_dataset):
        genus = aggregate(lineage_dataset, "Genus")
        taxonomy = genus.taxonomy

        assert taxonomy.loc["Blautia", "Phylum"] == "Firmicutes"
        assert taxonomy.loc["Bacteroides", "Phylum"] == "Bacteroidota"
        assert taxonomy.loc[UNRESOLVED, "Phylum"] == UNRESOLVED
        assert list(taxonomy.columns) == ["Phylum", "Genus"]

    def test_broader_rank_drops_finer(self, lineage_dataset):
        phylum = aggregate(lineage_dataset, "Phylum")

        assert phylum.ranks == ["Phylum"]
        assert phylum.taxon_ids.tolist() == ["Bacteroidota", "Firmicutes", "Proteobacteria"]
        np.testing.assert_array_equal(phylum.data[:, 1], [7, 10])

    def test_unknown_rank(self, lineage_dataset):
        with pytest.raises(ValueError, match="Unknown rank"):
            aggregate(lineage_dataset, "Species")

    def test_history_and_metadata(self, lineage_dataset):
        genus = aggregate(lineage_dataset, "Genus")
        assert genus.history == ("AggregateRank(rank=Genus)",)
        assert genus.sample_ids.equals(lineage_dataset.sample_ids)

    def test_community_totals_preserved(self, community):
        genus = community.aggregate_to("Genus")
        assert genus.n_taxa == 7
        assert genus.taxon_ids[-1] == UNRESOLVED
        pd.testing.assert_series_equal(genus.sample_totals, community.sample_totals)


class TestCollapseTopN:
    """Top-N selection with an Other bucket."""

    def test_ties_broken_by_identifier(self, tie_dataset):
        top = collapse_to_top_n(tie_dataset, "Genus", 1)

        assert top.taxon_ids.tolist() == ["G1", OTHER]
        np.testing.assert_array_equal(top.data, [[5, 9], [5, 7]])

    def test_order_by_total(self, tie_dataset):
        top = collapse_to_top_n(tie_dataset, "Genus", 3)

        assert top.taxon_ids.tolist() == ["G1", "G2", "G3", OTHER]
        np.testing.assert_array_equal(top.data[:, -1], [1, 0])
        pd.testing.assert_series_equal(top.sample_totals, tie_dataset.sample_totals)

    def test_fewer_groups_than_n(self, tie_dataset):
        top = collapse_to_top_n(tie_dataset, "Genus", 10)

        assert top.taxon_ids.tolist() == ["G1", "G2", "G3", "G4"]
        assert top.history == ("CollapseTopN(rank=Genus, n=10)",)

    def test_other_taxonomy_row(self, tie_dataset):
        top = collapse_to_top_n(tie_dataset, "Genus", 2)
        assert top.taxonomy.loc[OTHER, "Genus"] == OTHER

    def test_invalid_n(self, tie_dataset):
        with pytest.raises(ValueError, match="at least 1"):
            collapse_to_top_n(tie_dataset, "Genus", 0)

    def test_via_dataset_method(self, tie_dataset):
        top = tie_dataset.aggregate_to("Genus", top_n=2)
        assert top.taxon_ids.tolist() == ["G1", "G2", OTHER]


class TestTransforms:
    """Transform wrappers."""

    def test_aggregate_rank_validate(self, lineage_dataset):
        with pytest.raises(ValueError, match="unknown rank"):
            AggregateRank("Family")(lineage_dataset)

    def test_collapse_validate(self, tie_dataset):
        with pytest.raises(ValueError, match="n must be at least 1"):
            CollapseTopN("Genus", 0)(tie_dataset)

    def test_collapse_call(self, tie_dataset):
        top = CollapseTopN("Genus", 1)(tie_dataset)
        assert top.n_taxa == 2
