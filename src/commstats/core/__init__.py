"""
Core data structures for community-abundance analysis.

1. Dataset: counts + taxonomy + sample metadata, consistency-checked and immutable
2. Notice / NoticeKind: non-fatal conditions carried alongside results
3. Transform: abstract base class for Dataset -> Dataset steps
4. Typed errors raised at validation and computation boundaries
"""

from commstats.core.dataset import Dataset, build
from commstats.core.errors import (
    AnalysisCancelled,
    CommStatsError,
    DegenerateDesign,
    EmptySample,
    InsufficientGroups,
    InvalidCount,
    SchemaMismatch,
)
from commstats.core.notices import Notice, NoticeKind, notices_to_frame
from commstats.core.transform import Transform

__all__ = [
    'Dataset',
    'build',
    'Notice',
    'NoticeKind',
    'notices_to_frame',
    'Transform',
    'CommStatsError',
    'SchemaMismatch',
    'InvalidCount',
    'EmptySample',
    'InsufficientGroups',
    'DegenerateDesign',
    'AnalysisCancelled',
]
