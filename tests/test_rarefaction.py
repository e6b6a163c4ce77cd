"""
Tests for rarefaction.

Covers exact depth, dropped samples, reproducibility across worker counts,
and the recorded provenance of the transform.
"""

import numpy as np
import pandas as pd
import pytest

from commstats.core.dataset import build
from commstats.core.notices import DroppedSamples, NoticeKind
from commstats.diversity.alpha import estimate
from commstats.transforms import AggregateRank, Rarefy, rarefy, subsample_counts


class TestSubsampleCounts:
    """Single-sample hypergeometric draws."""

    def test_exact_depth_and_bounds(self):
        rng = np.random.default_rng(0)
        counts = np.array([50, 30, 0, 20, 100])
        for _ in range(20):
            sub = subsample_counts(counts, 60, rng)
            assert sub.sum() == 60
            assert np.all(sub <= counts)
            assert sub[2] == 0

    def test_full_depth_is_identity(self):
        counts = np.array([3, 0, 7])
        sub = subsample_counts(counts, 10, np.random.default_rng(0))
        np.testing.assert_array_equal(sub, counts)

    def test_depth_above_total(self):
        with pytest.raises(ValueError):
            subsample_counts(np.array([1, 2]), 4, np.random.default_rng(0))


class TestRarefy:
    """Dataset-level rarefaction."""

    def test_known_scenario(self, tiny):
        rarefied = rarefy(tiny, depth=10, seed=3)
        alpha = estimate(rarefied, measures=["Observed"])

        assert alpha["Observed"].tolist() == [1.0, 1.0, 2.0, 1.0]
        np.testing.assert_array_equal(rarefied.data, tiny.data)

    def test_default_depth_is_minimum_total(self, community):
        rarefied = rarefy(community, seed=1)
        depth = int(community.sample_totals.min())

        assert set(rarefied.sample_totals) == {depth}
        assert rarefied.n_samples == community.n_samples
        assert rarefied.n_taxa == community.n_taxa

    def test_shallow_samples_dropped_with_notice(self, community):
        totals = community.sample_totals.sort_values()
        depth = int(totals.iloc[2])
        shallow = totals.index[totals < depth].tolist()

        with pytest.warns(DroppedSamples):
            rarefied = rarefy(community, depth=depth, seed=1)

        assert rarefied.n_samples == community.n_samples - len(shallow)
        assert not set(shallow) & set(rarefied.sample_ids)
        assert rarefied.sample_metadata.index.equals(rarefied.sample_ids)

        dropped = [n for n in rarefied.notices if n.kind is NoticeKind.DROPPED_SAMPLE]
        assert sorted(n.entity for n in dropped) == sorted(shallow)

    def test_same_seed_same_output(self, community):
        a = rarefy(community, depth=100, seed=11)
        b = rarefy(community, depth=100, seed=11)
        np.testing.assert_array_equal(a.data, b.data)

    def test_different_seed_differs(self, community):
        a = rarefy(community, depth=100, seed=11)
        b = rarefy(community, depth=100, seed=12)
        assert not np.array_equal(a.data, b.data)

    def test_n_jobs_does_not_change_result(self, community):
        serial = rarefy(community, depth=100, seed=5, n_jobs=1)
        threaded = rarefy(community, depth=100, seed=5, n_jobs=4)
        np.testing.assert_array_equal(serial.data, threaded.data)

    def test_dropping_does_not_shift_other_samples(self, community):
        """Each sample's draw depends only on its own position."""
        depth = 100
        full = rarefy(community, depth=depth, seed=9)

        abundance = community.counts()
        abundance.iloc[0] = 0
        abundance.iloc[0, 0] = 5
        shallow = build(abundance, community.taxonomy, community.sample_metadata)
        with pytest.warns(DroppedSamples):
            partial = rarefy(shallow, depth=depth, seed=9)

        np.testing.assert_array_equal(partial.data, full.data[1:])

    def test_invalid_depth(self, tiny):
        with pytest.raises(ValueError, match="positive"):
            rarefy(tiny, depth=0)
        with pytest.raises(ValueError, match="exceeds every sample"):
            rarefy(tiny, depth=11)

    def test_input_unchanged(self, community):
        before = np.array(community.data)
        rarefy(community, depth=50, seed=1)
        np.testing.assert_array_equal(community.data, before)
        assert community.history == ()


class TestRarefyTransform:
    """Transform wrapper and history ordering."""

    def test_history_records_order(self, community):
        depth = int(community.sample_totals.min())
        rare_first = AggregateRank("Genus")(Rarefy(depth=depth, seed=1)(community))
        agg_first = Rarefy(depth=depth, seed=1)(AggregateRank("Genus")(community))

        assert rare_first.history == (f"Rarefy(depth={depth}, seed=1)", "AggregateRank(rank=Genus)")
        assert agg_first.history == ("AggregateRank(rank=Genus)", f"Rarefy(depth={depth}, seed=1)")
        assert rare_first.history != agg_first.history

    def test_validate_rejects_bad_depth(self, tiny):
        with pytest.raises(ValueError, match="depth must be positive"):
            Rarefy(depth=-5)(tiny)

    def test_repr(self):
        assert repr(Rarefy(depth=500, seed=2)) == "Rarefy(depth=500, seed=2)"

    def test_provenance_is_name_and_params_only(self, tiny):
        """Two instances with equal parameters leave identical records."""
        a, b = Rarefy(depth=10, seed=3), Rarefy(depth=10, seed=3)

        assert not hasattr(a, "timestamp")
        assert (a.name, a.params) == (b.name, b.params)
        assert a(tiny).history == b(tiny).history == ("Rarefy(depth=10, seed=3)",)


def test_rarefied_metadata_keeps_columns(community):
    rarefied = rarefy(community, seed=1)
    pd.testing.assert_frame_equal(rarefied.sample_metadata, community.sample_metadata)
