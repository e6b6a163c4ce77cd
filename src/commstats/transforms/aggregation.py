"""
Taxonomic aggregation: merge taxa that share a lineage label.

ASV-level tables are sparse and long; most reporting and many tests are done
at Genus or Family level. Aggregating to a rank sums the counts of every
taxon carrying the same label at that rank.

Unresolved labels:
    Classifiers often stop short of the finest rank. A label is treated as
    unresolved when it is missing, empty, a bare rank prefix ("g__"), or a
    placeholder such as "unassigned"/"unknown"/"NA". All unresolved taxa are
    pooled into one "Unresolved" group so no reads are lost.

Top-N collapse:
    ``collapse_to_top_n`` keeps the ``n`` most abundant groups (ties broken by
    identifier) and sums the remainder into "Other", the usual shape for
    stacked composition summaries.
"""

from __future__ import annotations

import logging
import re

import numpy as np
import pandas as pd

from commstats.core.dataset import Dataset
from commstats.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = [
    "UNRESOLVED",
    "OTHER",
    "is_unresolved",
    "aggregate",
    "collapse_to_top_n",
    "AggregateRank",
    "CollapseTopN",
]

UNRESOLVED = "Unresolved"
OTHER = "Other"

_PLACEHOLDERS = {"", "unresolved", "unassigned", "unknown", "unclassified", "na", "nan", "none"}
_PREFIX_ONLY = re.compile(r"^[a-z]__$", re.IGNORECASE)


def is_unresolved(label) -> bool:
    """True if a rank label carries no usable classification."""
    if label is None:
        return True
    if isinstance(label, float) and np.isnan(label):
        return True
    text = str(label).strip()
    return text.lower() in _PLACEHOLDERS or bool(_PREFIX_ONLY.match(text))


def _resolve_rank(dataset: Dataset, rank: str) -> int:
    ranks = dataset.ranks
    if rank not in ranks:
        raise ValueError(f"Unknown rank {rank!r}; available ranks: {ranks}")
    return ranks.index(rank)


def aggregate(dataset: Dataset, rank: str) -> Dataset:
    """
    Sum counts of taxa that share a label at ``rank``.

    Args:
        dataset: Input Dataset
        rank: One of ``dataset.ranks``

    Returns:
        New Dataset with one taxon per distinct label, sorted by label with
        "Unresolved" last. The taxonomy keeps ranks down to ``rank``; a
        broader-rank label is kept when every merged taxon agrees on it.

    Raises:
        ValueError: If ``rank`` is not a known rank

    Examples:
        >>> genus = aggregate(ds, "Genus")
        >>> genus.sample_totals.equals(ds.sample_totals)
        True
    """
    rank_pos = _resolve_rank(dataset, rank)
    kept_ranks = dataset.ranks[: rank_pos + 1]
    taxonomy = dataset.taxonomy[kept_ranks]

    labels = taxonomy[rank].map(lambda v: UNRESOLVED if is_unresolved(v) else str(v).strip())
    resolved = sorted(set(labels) - {UNRESOLVED})
    order = resolved + ([UNRESOLVED] if UNRESOLVED in set(labels) else [])

    counts = dataset.counts()
    counts.columns = labels.to_numpy()
    grouped = counts.T.groupby(level=0, sort=False).sum().T.reindex(columns=order)

    rows = []
    for label in order:
        members = taxonomy[labels.to_numpy() == label]
        row = {}
        for r in kept_ranks[:-1]:
            values = {str(v).strip() for v in members[r] if not is_unresolved(v)}
            has_missing = members[r].map(is_unresolved).any()
            row[r] = values.pop() if len(values) == 1 and not has_missing else UNRESOLVED
        row[rank] = label
        rows.append(row)
    new_taxonomy = pd.DataFrame(rows, index=pd.Index(order, name=dataset.taxon_ids.name), columns=kept_ranks)

    logger.info(
        f"Aggregated {dataset.n_taxa} taxa to {len(order)} groups at rank {rank}"
    )
    return dataset.derive(
        step=repr(AggregateRank(rank)),
        data=grouped.to_numpy(dtype=np.int64),
        taxon_ids=new_taxonomy.index,
        taxonomy=new_taxonomy,
    )


def collapse_to_top_n(dataset: Dataset, rank: str, n: int) -> Dataset:
    """
    Aggregate to ``rank`` and keep the ``n`` most abundant groups.

    Groups are ranked by total count across all samples (descending), ties
    broken by identifier (ascending). Remaining groups are summed into a
    single "Other" taxon appended last, so per-sample totals are unchanged.

    Args:
        dataset: Input Dataset
        rank: Rank to aggregate to
        n: Number of groups to keep (>= 1)

    Returns:
        New Dataset with ``n + 1`` taxa, or all groups if there are ``n`` or fewer

    Raises:
        ValueError: If ``n < 1`` or ``rank`` is unknown
    """
    if n < 1:
        raise ValueError(f"n must be at least 1, got {n}")

    grouped = aggregate(dataset, rank)
    step = repr(CollapseTopN(rank, n))
    if grouped.n_taxa <= n:
        return dataset.derive(
            step=step,
            data=grouped.data,
            taxon_ids=grouped.taxon_ids,
            taxonomy=grouped.taxonomy,
        )

    totals = grouped.data.sum(axis=0)
    id_rank = np.argsort(np.argsort(np.asarray(grouped.taxon_ids.astype(str))))
    # lexsort uses the last key as primary
    ranking = np.lexsort((id_rank, -totals))
    top_order = ranking[:n]
    rest = np.sort(ranking[n:])
    other_id = OTHER if OTHER not in set(grouped.taxon_ids[top_order]) else f"{OTHER} (collapsed)"

    data = np.column_stack([grouped.data[:, top_order], grouped.data[:, rest].sum(axis=1)])

    taxonomy = grouped.taxonomy
    other_row = pd.DataFrame(
        [[other_id] * len(taxonomy.columns)],
        columns=taxonomy.columns,
        index=pd.Index([other_id], name=taxonomy.index.name),
    )
    new_taxonomy = pd.concat([taxonomy.iloc[top_order], other_row])

    logger.info(
        f"Collapsed {grouped.n_taxa} {rank} groups to top {n} + {OTHER} ({len(rest)} merged)"
    )
    return dataset.derive(
        step=step,
        data=data,
        taxon_ids=new_taxonomy.index,
        taxonomy=new_taxonomy,
    )


class AggregateRank(Transform):
    """Transform wrapper around ``aggregate``."""

    def __init__(self, rank: str):
        super().__init__(name="AggregateRank", params={"rank": rank})
        self.rank = rank

    def validate(self, dataset: Dataset) -> list[str]:
        errors = super().validate(dataset)
        if self.rank not in dataset.ranks:
            errors.append(f"unknown rank {self.rank!r}")
        return errors

    def apply(self, dataset: Dataset) -> Dataset:
        return aggregate(dataset, self.rank)


class CollapseTopN(Transform):
    """Transform wrapper around ``collapse_to_top_n``."""

    def __init__(self, rank: str, n: int):
        super().__init__(name="CollapseTopN", params={"rank": rank, "n": n})
        self.rank = rank
        self.n = n

    def validate(self, dataset: Dataset) -> list[str]:
        errors = super().validate(dataset)
        if self.rank not in dataset.ranks:
            errors.append(f"unknown rank {self.rank!r}")
        if self.n < 1:
            errors.append(f"n must be at least 1, got {self.n}")
        return errors

    def apply(self, dataset: Dataset) -> Dataset:
        return collapse_to_top_n(dataset, self.rank, self.n)
