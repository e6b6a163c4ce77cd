"""
Statistical testing for community composition.

Exports:
- Two-group rank-sum test for univariate summaries (alpha diversity)
- PERMANOVA on dissimilarity matrices
- Size factors and negative-binomial GLM differential abundance
- Multiple testing correction (FDR)
"""

from .differential import DifferentialAbundanceTable, TaxonResult, differential_abundance
from .group_tests import RankSumResult, rank_sum_test
from .multiple_testing import fdr_correction
from .normalization import SizeFactorMethod, SizeFactorResult, estimate_size_factors
from .permanova import PermanovaResult, permanova

__all__ = [
    "RankSumResult",
    "rank_sum_test",
    "PermanovaResult",
    "permanova",
    "fdr_correction",
    "SizeFactorMethod",
    "SizeFactorResult",
    "estimate_size_factors",
    "TaxonResult",
    "DifferentialAbundanceTable",
    "differential_abundance",
]
