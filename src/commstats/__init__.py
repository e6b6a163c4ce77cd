"""
commstats - Statistical analysis of microbial community abundance tables

Rarefaction, taxonomic aggregation, alpha/beta diversity, NMDS/PCoA
ordination, PERMANOVA and negative-binomial differential abundance over a
validated samples × taxa count table.
"""

__version__ = "0.1.0"

from commstats.core.dataset import Dataset, build
from commstats.core.notices import Notice, NoticeKind
from commstats.core.transform import Transform

__all__ = [
    "Dataset",
    "build",
    "Notice",
    "NoticeKind",
    "Transform",
]
