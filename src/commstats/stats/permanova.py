"""
PERMANOVA: permutational multivariate analysis of variance.

Tests whether sample groups differ in community composition using only the
pairwise dissimilarity matrix (Anderson 2001). The pseudo-F statistic
partitions the sum of squared dissimilarities:

    SS_T = (1/N) sum_{i<j} d_ij²
    SS_W = sum_g (1/n_g) sum_{i<j in g} d_ij²
    SS_A = SS_T - SS_W
    F    = (SS_A / (a - 1)) / (SS_W / (N - a))

The null distribution is built by permuting group labels; the p-value is
(1 + #{F_perm >= F_obs}) / (1 + permutations), so it is never 0 and is
exactly 1 with zero permutations.

Permutation k is drawn from child k of ``SeedSequence(seed)``: the same seed
gives the same p-value for any ``n_jobs``, and increasing ``permutations``
only appends new draws.

References:
    - Anderson (2001) Austral Ecology 26:32-46
    - McArdle & Anderson (2001) Ecology 82:290-297
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Optional

import numpy as np
import pandas as pd
from joblib import effective_n_jobs

from commstats.core.errors import DegenerateDesign, SchemaMismatch
from commstats.diversity.beta import DissimilarityMatrix
from commstats.utils.parallel import check_cancelled, chunk_ranges, run_tasks, spawn_generators

logger = logging.getLogger(__name__)

__all__ = ["PermanovaResult", "permanova", "pseudo_f"]

_EPS = np.sqrt(np.finfo(np.float64).eps)


@dataclass(frozen=True)
class PermanovaResult:
    """Result of a PERMANOVA test.

    Attributes:
        pseudo_f: Observed pseudo-F statistic
        p_value: Permutation p-value in (0, 1]
        permutations: Number of label permutations drawn
        n_samples: Samples in the test
        n_groups: Distinct groups
    """

    pseudo_f: float
    p_value: float
    permutations: int
    n_samples: int
    n_groups: int
    method: str = "PERMANOVA"
    test_statistic_name: str = "pseudo-F"

    def to_dict(self) -> dict:
        return asdict(self)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([self.to_dict()])


def _align_grouping(matrix: DissimilarityMatrix, grouping) -> np.ndarray:
    if isinstance(grouping, pd.Series):
        if grouping.index.has_duplicates:
            raise SchemaMismatch("grouping index has duplicate sample ids")
        if set(grouping.index) != set(matrix.ids):
            missing = matrix.ids.difference(grouping.index).tolist()
            extra = grouping.index.difference(matrix.ids).tolist()
            raise SchemaMismatch(
                f"grouping ids do not match dissimilarity ids "
                f"(missing {missing[:5]}, unexpected {extra[:5]})"
            )
        labels = grouping.reindex(matrix.ids).to_numpy()
    else:
        labels = np.asarray(grouping, dtype=object)
        if labels.shape != (matrix.n,):
            raise SchemaMismatch(
                f"grouping length {labels.shape[0] if labels.ndim else 0} does not match "
                f"{matrix.n} samples"
            )

    if pd.isna(labels).any():
        raise DegenerateDesign("grouping contains missing labels")

    codes, _ = pd.factorize(labels)
    return codes


def pseudo_f(d2: np.ndarray, codes: np.ndarray, n_groups: int) -> float:
    """
    Pseudo-F for one labelling.

    Args:
        d2: Squared dissimilarities (N × N)
        codes: Integer group code per sample, 0..n_groups-1
        n_groups: Number of groups
    """
    n = d2.shape[0]
    onehot = np.zeros((n, n_groups))
    onehot[np.arange(n), codes] = 1.0
    sizes = onehot.sum(axis=0)

    ss_t = d2.sum() / (2.0 * n)
    within = ((d2 @ onehot) * onehot).sum(axis=0) / 2.0
    ss_w = float(np.sum(within / sizes))
    ss_a = ss_t - ss_w

    if ss_w <= 0:
        return np.inf if ss_a > 0 else np.nan
    return (ss_a / (n_groups - 1)) / (ss_w / (n - n_groups))


def permanova(
    matrix: DissimilarityMatrix,
    grouping,
    permutations: int = 999,
    seed: Optional[int] = None,
    n_jobs: int = 1,
    cancel: Optional[threading.Event] = None,
) -> PermanovaResult:
    """
    Permutation test for group differences in composition.

    Args:
        matrix: Dissimilarities between samples
        grouping: Series indexed by sample id, or sequence aligned with ``matrix.ids``
        permutations: Label permutations for the null distribution (>= 0)
        seed: Root seed
        n_jobs: Worker threads; permutations are split into contiguous chunks
        cancel: Optional event checked between permutations

    Returns:
        PermanovaResult

    Raises:
        SchemaMismatch: If grouping ids do not match the matrix
        DegenerateDesign: If fewer than 2 groups or no within-group degrees of freedom
        ValueError: If ``permutations`` is negative
        AnalysisCancelled: If ``cancel`` is set

    Examples:
        >>> res = permanova(bc, ds.sample_metadata["group"], permutations=999, seed=1)
        >>> res.p_value
        0.001
    """
    if permutations < 0:
        raise ValueError(f"permutations must be non-negative, got {permutations}")

    codes = _align_grouping(matrix, grouping)
    n = matrix.n
    n_groups = int(codes.max()) + 1 if codes.size else 0

    if n_groups < 2:
        raise DegenerateDesign(f"PERMANOVA needs at least 2 groups, got {n_groups}")
    if n <= n_groups:
        raise DegenerateDesign(
            f"PERMANOVA needs more samples ({n}) than groups ({n_groups})"
        )

    d2 = np.array(matrix.data) ** 2
    observed = pseudo_f(d2, codes, n_groups)

    if np.isnan(observed):
        logger.warning("All dissimilarities are zero; PERMANOVA pseudo-F undefined, p set to 1")
        return PermanovaResult(np.nan, 1.0, permutations, n, n_groups)

    if permutations == 0:
        return PermanovaResult(float(observed), 1.0, 0, n, n_groups)

    rngs = spawn_generators(seed, permutations)

    def run_chunk(chunk: range) -> np.ndarray:
        out = np.empty(len(chunk))
        for j, k in enumerate(chunk):
            check_cancelled(cancel, "PERMANOVA")
            out[j] = pseudo_f(d2, rngs[k].permutation(codes), n_groups)
        return out

    n_chunks = 1 if n_jobs == 1 else effective_n_jobs(n_jobs) * 4
    null = np.concatenate(run_tasks(run_chunk, chunk_ranges(permutations, n_chunks), n_jobs=n_jobs))

    if np.isinf(observed):
        exceed = int(np.sum(np.isinf(null)))
    else:
        exceed = int(np.sum(null >= observed - _EPS * max(abs(observed), 1.0)))
    p_value = (1.0 + exceed) / (1.0 + permutations)

    logger.info(
        f"PERMANOVA: pseudo-F={observed:.4f}, p={p_value:.4g} "
        f"({permutations} permutations, {n_groups} groups, {n} samples)"
    )
    return PermanovaResult(float(observed), p_value, permutations, n, n_groups)
