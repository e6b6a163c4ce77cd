"""
Alpha diversity: within-sample richness and evenness.

Measures:
    Observed  number of taxa with a nonzero count
    Chao1     S_obs + f1^2 / (2 f2), or S_obs + f1 (f1 - 1) / 2 when f2 = 0
    ACE       abundance-based coverage estimator (rare threshold 10)
    Shannon   -sum p_i ln p_i over nonzero p_i (natural log)
    Simpson   1 - sum p_i^2 (Gini-Simpson)

f1 and f2 are the number of singleton and doubleton taxa. Chao1 and ACE
extrapolate unseen richness from rare taxa and are only meaningful on raw
(unrarefied) integer counts. ``run_pipeline`` computes them on the raw
counts of the samples that survive rarefaction; Observed, Shannon and
Simpson are computed after rarefaction.

Group comparison:
    ``compare_groups`` tests each measure between two sample groups with the
    rank-sum test and adjusts p-values across measures with Benjamini-Hochberg.

References:
    - Chao (1984) Scand J Stat 11:265-270
    - Chao & Lee (1992) J Am Stat Assoc 87:210-217 (ACE)
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from commstats.core.dataset import Dataset
from commstats.core.errors import EmptySample, InsufficientGroups
from commstats.core.notices import Notice, NoticeKind
from commstats.stats.group_tests import rank_sum_test
from commstats.stats.multiple_testing import fdr_correction
from commstats.utils.parallel import run_tasks

logger = logging.getLogger(__name__)

__all__ = [
    "MEASURES",
    "observed",
    "chao1",
    "ace",
    "shannon",
    "simpson",
    "RAW_COUNT_MEASURES",
    "resolve_measures",
    "estimate",
    "compare_groups",
]

ACE_RARE_THRESHOLD = 10


def observed(counts: np.ndarray) -> float:
    return float(np.count_nonzero(counts))


def chao1(counts: np.ndarray) -> float:
    counts = np.asarray(counts)
    s_obs = np.count_nonzero(counts)
    f1 = np.sum(counts == 1)
    f2 = np.sum(counts == 2)
    if f2 > 0:
        return float(s_obs + f1 * f1 / (2.0 * f2))
    return float(s_obs + f1 * (f1 - 1) / 2.0)


def ace(counts: np.ndarray, rare_threshold: int = ACE_RARE_THRESHOLD) -> float:
    """
    Abundance-based coverage estimator.

    Returns NaN when every rare taxon is a singleton (coverage estimate of 0).
    """
    counts = np.asarray(counts)
    rare = counts[(counts > 0) & (counts <= rare_threshold)]
    s_abund = int(np.sum(counts > rare_threshold))
    s_rare = rare.size
    n_rare = int(rare.sum())
    if n_rare == 0:
        return float(s_abund)

    f1 = int(np.sum(rare == 1))
    coverage = 1.0 - f1 / n_rare
    if coverage == 0:
        return float("nan")

    # coverage > 0 implies n_rare >= 2
    freq = np.bincount(rare.astype(np.int64), minlength=rare_threshold + 1)
    i = np.arange(freq.size)
    gamma_sq = (s_rare / coverage) * np.sum(i * (i - 1) * freq) / (n_rare * (n_rare - 1)) - 1.0
    gamma_sq = max(gamma_sq, 0.0)
    return float(s_abund + s_rare / coverage + f1 / coverage * gamma_sq)


def shannon(counts: np.ndarray) -> float:
    counts = np.asarray(counts, dtype=np.float64)
    p = counts[counts > 0] / counts.sum()
    return float(-np.sum(p * np.log(p)))


def simpson(counts: np.ndarray) -> float:
    counts = np.asarray(counts, dtype=np.float64)
    p = counts / counts.sum()
    return float(1.0 - np.sum(p * p))


MEASURES = {
    "Observed": observed,
    "Chao1": chao1,
    "ACE": ace,
    "Shannon": shannon,
    "Simpson": simpson,
}

# Richness extrapolators that need unrarefied counts
RAW_COUNT_MEASURES = ("Chao1", "ACE")


def resolve_measures(measures: Optional[Iterable[str]]) -> list[str]:
    """Canonical measure names, in the order given; default all."""
    if measures is None:
        return list(MEASURES)
    if isinstance(measures, str):
        measures = [measures]
    lookup = {name.lower(): name for name in MEASURES}
    resolved = []
    for m in measures:
        key = str(m).lower()
        if key not in lookup:
            raise ValueError(f"Unknown alpha diversity measure {m!r}; available: {list(MEASURES)}")
        if lookup[key] not in resolved:
            resolved.append(lookup[key])
    if not resolved:
        raise ValueError("At least one alpha diversity measure is required")
    return resolved


def estimate(
    dataset: Dataset,
    measures: Optional[Iterable[str]] = None,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """
    Compute alpha diversity measures for every sample.

    Args:
        dataset: Input Dataset (usually rarefied for Observed/Shannon/Simpson)
        measures: Subset of MEASURES (case-insensitive); default all
        n_jobs: Worker threads, one task per sample

    Returns:
        DataFrame indexed by sample id, one column per measure

    Raises:
        EmptySample: If any sample has a total count of zero
        ValueError: If a measure name is unknown

    Examples:
        >>> alpha = estimate(rarefied, measures=["Observed", "Shannon"])
        >>> alpha.loc["S1", "Shannon"]
        2.31...
    """
    names = resolve_measures(measures)
    totals = dataset.data.sum(axis=1)
    empty = dataset.sample_ids[totals == 0]
    if len(empty) > 0:
        raise EmptySample(empty, context="alpha diversity")

    funcs = [MEASURES[name] for name in names]
    data = dataset.data
    rows = run_tasks(lambda i: [f(data[i]) for f in funcs], range(dataset.n_samples), n_jobs=n_jobs)
    table = pd.DataFrame(rows, index=dataset.sample_ids, columns=names, dtype=np.float64)

    notices = []
    if "ACE" in names:
        na = table.index[table["ACE"].isna()]
        if len(na) > 0:
            logger.warning(
                f"ACE not estimable (all rare taxa are singletons) for {len(na)} samples: "
                f"{list(na[:10])}"
            )
            notices = [
                Notice(NoticeKind.NON_ESTIMABLE_MEASURE, str(sid), "ACE undefined: every rare taxon is a singleton")
                for sid in na
            ]
    table.attrs["notices"] = notices
    return table


def compare_groups(
    alpha: pd.DataFrame,
    metadata: pd.DataFrame,
    group_column: str,
    groups: Optional[tuple[str, str]] = None,
    method: str = "BH",
) -> pd.DataFrame:
    """
    Rank-sum test of every alpha measure between two sample groups.

    Args:
        alpha: Output of ``estimate`` (samples × measures)
        metadata: Sample metadata containing ``group_column``
        group_column: Column holding group labels
        groups: (first, second) labels to compare; default the two observed
            levels in sorted order (an error if there are not exactly two)
        method: Multiple testing correction across measures

    Returns:
        DataFrame with one row per measure: measure, group_a, group_b, n_a,
        n_b, statistic, p_value, p_adjusted, effect_size, issue. A measure
        that cannot be tested (a group has no finite values) gets NaN
        statistics and an ``issue`` string instead of aborting the batch

    Raises:
        KeyError: If ``group_column`` is not in ``metadata``
        InsufficientGroups: If two groups cannot be formed
    """
    if group_column not in metadata.columns:
        raise KeyError(f"Group column {group_column!r} not in sample metadata")

    labels = metadata[group_column].reindex(alpha.index)
    present = labels.dropna()
    if groups is None:
        levels = sorted(present.astype(str).unique())
        if len(levels) != 2:
            raise InsufficientGroups(
                f"{group_column!r} has {len(levels)} levels {levels}; pass groups= to choose two"
            )
        groups = (levels[0], levels[1])
    groups = tuple(str(g) for g in groups)

    str_labels = labels.astype(str).where(labels.notna())
    rows = []
    for measure in alpha.columns:
        values = {g: alpha.loc[str_labels == g, measure].to_numpy() for g in groups}
        try:
            result = rank_sum_test(values)
        except InsufficientGroups as e:
            # Untestable measure: NaN row, left out of the correction
            logger.warning(f"Alpha measure {measure} not tested: {e}")
            n = [int(np.count_nonzero(~np.isnan(values[g].astype(np.float64)))) for g in groups]
            rows.append({
                "measure": measure, "group_a": groups[0], "group_b": groups[1],
                "n_a": n[0], "n_b": n[1], "statistic": np.nan, "p_value": np.nan,
                "effect_size": np.nan, "issue": str(e),
            })
            continue
        rows.append({"measure": measure, **result.to_dict(), "issue": None})

    table = pd.DataFrame(rows)
    table["p_adjusted"] = fdr_correction(table["p_value"].to_numpy(), method=method)
    return table[
        ["measure", "group_a", "group_b", "n_a", "n_b", "statistic", "p_value", "p_adjusted",
         "effect_size", "issue"]
    ]
