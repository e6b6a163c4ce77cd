"""
Alpha and beta diversity, and ordination of beta dissimilarities.
"""

from commstats.diversity.alpha import MEASURES, compare_groups, estimate
from commstats.diversity.beta import METRICS, DissimilarityMatrix, dissimilarity
from commstats.diversity.ordination import OrdinationResult, interpret_stress, ordinate

__all__ = [
    "MEASURES",
    "estimate",
    "compare_groups",
    "METRICS",
    "DissimilarityMatrix",
    "dissimilarity",
    "OrdinationResult",
    "ordinate",
    "interpret_stress",
]
