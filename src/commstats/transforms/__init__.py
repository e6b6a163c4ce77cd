"""
Dataset -> Dataset transformations.

- Rarefy / rarefy: subsample every sample to a common depth
- AggregateRank / aggregate: merge taxa sharing a label at one rank
- CollapseTopN / collapse_to_top_n: keep the N most abundant groups plus "Other"
"""

from commstats.transforms.aggregation import (
    OTHER,
    UNRESOLVED,
    AggregateRank,
    CollapseTopN,
    aggregate,
    collapse_to_top_n,
    is_unresolved,
)
from commstats.transforms.rarefaction import Rarefy, rarefy, subsample_counts

__all__ = [
    "Rarefy",
    "rarefy",
    "subsample_counts",
    "AggregateRank",
    "CollapseTopN",
    "aggregate",
    "collapse_to_top_n",
    "is_unresolved",
    "UNRESOLVED",
    "OTHER",
]
