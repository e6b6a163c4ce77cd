"""
Multiple testing correction.

Per-taxon and per-measure tests are corrected with Benjamini-Hochberg by
default. Untestable entries carry NaN p-values; they stay NaN and do not
count toward the number of hypotheses.
"""

from __future__ import annotations

from typing import Literal

import numpy as np
from numpy.typing import NDArray
from statsmodels.stats.multitest import multipletests

__all__ = ["fdr_correction"]

_METHOD_MAP = {"BH": "fdr_bh", "BY": "fdr_by", "bonferroni": "bonferroni"}


def fdr_correction(
    pvalues,
    method: Literal["BH", "BY", "bonferroni"] = "BH",
    alpha: float = 0.05,
) -> NDArray[np.float64]:
    """
    Apply multiple testing correction.

    Args:
        pvalues: Raw p-values; NaN marks untested entries
        method: Correction method:
            - "BH": Benjamini-Hochberg (controls FDR)
            - "BY": Benjamini-Yekutieli (controls FDR under dependence)
            - "bonferroni": Bonferroni (controls FWER)
        alpha: Significance threshold passed to statsmodels

    Returns:
        Adjusted p-values, NaN where the input was NaN

    Examples:
        >>> fdr_correction(np.array([0.01, np.nan, 0.04]))
        array([0.02, nan, 0.04])
    """
    if method not in _METHOD_MAP:
        raise ValueError(f"Unknown correction method {method!r}; use one of {list(_METHOD_MAP)}")

    pvalues = np.asarray(pvalues, dtype=np.float64)
    valid_mask = ~np.isnan(pvalues)
    adj_pvals = np.full_like(pvalues, np.nan)

    if not np.any(valid_mask):
        return adj_pvals

    _, adj_pvals[valid_mask], _, _ = multipletests(
        pvalues[valid_mask],
        alpha=alpha,
        method=_METHOD_MAP[method],
    )

    return adj_pvals
