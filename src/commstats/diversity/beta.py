"""
Beta diversity: pairwise between-sample dissimilarity.

Bray-Curtis is computed on relative abundances, so two samples with the
same composition have dissimilarity exactly 0 regardless of sequencing
depth. Jaccard is computed on presence/absence.

Both metrics are delegated to ``scipy.spatial.distance.pdist``, which
returns the condensed upper triangle; ``squareform`` expands it to a
symmetric matrix with an exact zero diagonal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform

from commstats.core.dataset import Dataset
from commstats.core.errors import EmptySample

logger = logging.getLogger(__name__)

__all__ = ["METRICS", "DissimilarityMatrix", "dissimilarity"]

METRICS = ("bray-curtis", "jaccard")
_TOL = 1e-10


@dataclass(frozen=True, eq=False)
class DissimilarityMatrix:
    """Square, symmetric, zero-diagonal, non-negative dissimilarity matrix.

    Attributes:
        ids: Sample identifiers labelling rows and columns
        data: n × n array
        metric: Metric name
    """

    ids: pd.Index
    data: np.ndarray
    metric: str = "bray-curtis"

    def __post_init__(self):
        data = np.asarray(self.data, dtype=np.float64)
        n = len(self.ids)
        if data.shape != (n, n):
            raise ValueError(f"data shape {data.shape} does not match {n} ids")
        if not np.all(np.isfinite(data)):
            raise ValueError("dissimilarities must be finite")
        if np.any(data < 0):
            raise ValueError("dissimilarities must be non-negative")
        if not np.allclose(data, data.T, atol=_TOL):
            raise ValueError("dissimilarity matrix must be symmetric")
        if np.any(np.abs(np.diag(data)) > _TOL):
            raise ValueError("dissimilarity matrix must have a zero diagonal")
        data = data.copy()
        data.setflags(write=False)
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "ids", pd.Index(self.ids))

    @property
    def n(self) -> int:
        return len(self.ids)

    def condensed(self) -> np.ndarray:
        """Upper triangle as a flat vector (scipy condensed form)."""
        return squareform(self.data, checks=False)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(np.array(self.data), index=self.ids, columns=self.ids)

    def subset(self, ids) -> DissimilarityMatrix:
        """Restrict to ``ids`` in the given order."""
        pos = self.ids.get_indexer(ids)
        if np.any(pos < 0):
            missing = [i for i, p in zip(ids, pos) if p < 0]
            raise KeyError(f"ids not in matrix: {missing[:10]}")
        return DissimilarityMatrix(pd.Index(ids), self.data[np.ix_(pos, pos)], self.metric)


def dissimilarity(dataset: Dataset, metric: str = "bray-curtis") -> DissimilarityMatrix:
    """
    Pairwise dissimilarity between all samples.

    Args:
        dataset: Input Dataset (usually rarefied)
        metric: "bray-curtis" (relative abundances) or "jaccard" (presence/absence)

    Returns:
        DissimilarityMatrix over ``dataset.sample_ids``

    Raises:
        EmptySample: If any sample has a total count of zero
        ValueError: If ``metric`` is unknown

    Examples:
        >>> bc = dissimilarity(rarefied)
        >>> bc.to_dataframe().loc["S1", "S2"]
        0.42...
    """
    metric = metric.lower().replace("_", "-")
    if metric in ("braycurtis", "bray"):
        metric = "bray-curtis"
    if metric not in METRICS:
        raise ValueError(f"Unknown metric {metric!r}; available: {list(METRICS)}")

    if metric == "bray-curtis":
        props = dataset.proportions()
        condensed = pdist(props, metric="braycurtis")
    else:
        totals = dataset.data.sum(axis=1)
        empty = dataset.sample_ids[totals == 0]
        if len(empty) > 0:
            raise EmptySample(empty, context="jaccard dissimilarity")
        condensed = pdist(dataset.data > 0, metric="jaccard")

    logger.debug(f"Computed {metric} dissimilarity over {dataset.n_samples} samples")
    return DissimilarityMatrix(dataset.sample_ids, squareform(condensed), metric)
