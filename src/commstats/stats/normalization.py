"""
Library-size normalization for count data.

Sequencing depth differs between samples, so raw counts are not comparable.
Size factors rescale each sample so that a taxon with unchanged absolute
abundance has the same expected normalized count everywhere.

Median-of-ratios (Anders & Huber 2010):
    For every taxon present in all samples, compute its geometric mean
    across samples. A sample's size factor is the median, over those taxa,
    of count / geometric mean. Robust to a minority of taxa that truly
    change between groups.

Poscounts fallback:
    Microbiome tables are sparse and often no taxon is nonzero in every
    sample, leaving median-of-ratios undefined. The poscounts variant takes
    each taxon's geometric mean over its positive counts (divided by the
    total number of samples), uses only positive counts in the ratios, and
    rescales factors to a geometric mean of 1.

References:
    - Anders & Huber (2010) Genome Biology 11:R106
    - Love, Huber & Anders (2014) Genome Biology 15:550 (DESeq2, poscounts)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from commstats.core.errors import EmptySample

logger = logging.getLogger(__name__)

__all__ = ["SizeFactorMethod", "SizeFactorResult", "estimate_size_factors"]


class SizeFactorMethod(Enum):
    """Size factor estimator actually used."""

    RATIO = "ratio"
    POSCOUNTS = "poscounts"


@dataclass(frozen=True)
class SizeFactorResult:
    """Per-sample size factors.

    Attributes:
        factors: Size factor per sample (positive)
        method: Estimator used
        n_reference_taxa: Taxa that contributed to the ratios
    """

    factors: NDArray[np.float64]
    method: SizeFactorMethod
    n_reference_taxa: int

    def to_series(self, sample_ids) -> pd.Series:
        return pd.Series(self.factors, index=sample_ids, name="size_factor")


def _ratio_factors(counts: NDArray[np.float64], reference: NDArray[np.bool_]) -> NDArray[np.float64]:
    log_counts = np.log(counts[:, reference])
    log_geo = log_counts.mean(axis=0)
    return np.exp(np.median(log_counts - log_geo, axis=1))


def _poscounts_factors(counts: NDArray[np.float64]) -> tuple[NDArray[np.float64], int]:
    n_samples = counts.shape[0]
    positive = counts > 0
    with np.errstate(divide="ignore"):
        log_counts = np.where(positive, np.log(np.where(positive, counts, 1.0)), 0.0)
    log_geo = log_counts.sum(axis=0) / n_samples
    usable = positive.any(axis=0)

    factors = np.empty(n_samples)
    for j in range(n_samples):
        mask = usable & positive[j]
        factors[j] = np.exp(np.median(log_counts[j, mask] - log_geo[mask]))

    factors = factors / np.exp(np.mean(np.log(factors)))
    return factors, int(usable.sum())


def estimate_size_factors(
    counts: NDArray,
    sample_ids: Optional[pd.Index] = None,
) -> SizeFactorResult:
    """
    Estimate per-sample size factors.

    Uses median-of-ratios when at least one taxon is nonzero in every sample,
    otherwise falls back to poscounts.

    Args:
        counts: Count matrix (samples × taxa)
        sample_ids: Identifiers used in error messages

    Returns:
        SizeFactorResult

    Raises:
        EmptySample: If any sample has a total count of zero

    Examples:
        >>> counts = np.array([[10, 20, 30], [20, 40, 60]])
        >>> estimate_size_factors(counts).factors
        array([0.70710678, 1.41421356])
    """
    counts = np.asarray(counts, dtype=np.float64)
    if sample_ids is None:
        sample_ids = pd.RangeIndex(counts.shape[0])

    totals = counts.sum(axis=1)
    empty = pd.Index(sample_ids)[totals == 0]
    if len(empty) > 0:
        raise EmptySample(empty, context="size factor estimation")

    reference = np.all(counts > 0, axis=0)
    if reference.any():
        factors = _ratio_factors(counts, reference)
        return SizeFactorResult(factors, SizeFactorMethod.RATIO, int(reference.sum()))

    logger.warning(
        "No taxon is nonzero in every sample; size factors fall back to poscounts"
    )
    factors, n_ref = _poscounts_factors(counts)
    return SizeFactorResult(factors, SizeFactorMethod.POSCOUNTS, n_ref)
