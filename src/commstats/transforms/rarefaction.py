"""
Rarefaction: subsample every sample to a common read depth.

Diversity estimates depend on sequencing effort; a sample with ten times the
reads will show more taxa simply because rare taxa get sampled. Rarefying
draws exactly ``depth`` reads from each sample without replacement (a
multivariate hypergeometric draw from its counts), putting every sample on
the same footing before alpha and beta diversity.

Samples whose total is below ``depth`` cannot be rarefied and are dropped.
Dropping is reported (DroppedSamples warning + Notice per sample), never
silent and never fatal.

Reproducibility:
    Sample i draws from child i of ``SeedSequence(seed)``, so the output for a
    given seed is identical regardless of ``n_jobs``.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from commstats.core.dataset import Dataset
from commstats.core.notices import Notice, NoticeKind, emit
from commstats.core.transform import Transform
from commstats.utils.parallel import run_tasks, spawn_generators

logger = logging.getLogger(__name__)

__all__ = ["Rarefy", "rarefy", "subsample_counts"]


def subsample_counts(counts: np.ndarray, depth: int, rng: np.random.Generator) -> np.ndarray:
    """
    Draw ``depth`` reads without replacement from one sample's counts.

    Args:
        counts: Non-negative integer counts for one sample
        depth: Reads to keep (must not exceed ``counts.sum()``)
        rng: Generator for this sample

    Returns:
        Integer counts of the same length summing to exactly ``depth``
    """
    counts = np.asarray(counts, dtype=np.int64)
    total = int(counts.sum())
    if depth > total:
        raise ValueError(f"depth {depth} exceeds sample total {total}")
    if depth == total:
        return counts.copy()
    return rng.multivariate_hypergeometric(counts, depth).astype(np.int64)


def rarefy(
    dataset: Dataset,
    depth: Optional[int] = None,
    seed: Optional[int] = None,
    n_jobs: int = 1,
) -> Dataset:
    """
    Rarefy all samples to a common depth.

    Args:
        dataset: Input Dataset
        depth: Reads per sample after rarefaction (default: minimum sample total)
        seed: Root seed; the same seed gives identical output
        n_jobs: Worker threads for per-sample draws

    Returns:
        New Dataset. Samples with total < depth are removed and recorded as
        DROPPED_SAMPLE notices. All taxa are kept, even if now all-zero.

    Raises:
        ValueError: If depth <= 0 or no sample reaches depth

    Examples:
        >>> rarefied = rarefy(ds, depth=1000, seed=7)
        >>> set(rarefied.sample_totals) == {1000}
        True
    """
    totals = dataset.data.sum(axis=1)
    if depth is None:
        depth = int(totals.min())
        logger.info(f"Rarefaction depth defaulted to minimum sample total: {depth}")
    depth = int(depth)
    if depth <= 0:
        raise ValueError(f"rarefaction depth must be positive, got {depth}")

    keep = totals >= depth
    if not keep.any():
        raise ValueError(
            f"rarefaction depth {depth} exceeds every sample total (max {int(totals.max())})"
        )

    dropped = dataset.sample_ids[~keep]
    notices = [
        Notice(
            NoticeKind.DROPPED_SAMPLE,
            str(sid),
            f"total {int(total)} below rarefaction depth {depth}",
        )
        for sid, total in zip(dropped, totals[~keep])
    ]
    if notices:
        emit(
            notices,
            f"{len(notices)} of {dataset.n_samples} samples dropped below rarefaction "
            f"depth {depth}: {', '.join(n.entity for n in notices[:10])}",
        )

    # One generator per original sample position, so dropping samples or
    # changing n_jobs never shifts another sample's stream.
    rngs = spawn_generators(seed, dataset.n_samples)
    kept_idx = np.flatnonzero(keep)
    rows = run_tasks(
        lambda i: subsample_counts(dataset.data[i], depth, rngs[i]),
        kept_idx,
        n_jobs=n_jobs,
    )
    data = np.vstack(rows) if rows else np.zeros((0, dataset.n_taxa), dtype=np.int64)

    logger.info(
        f"Rarefied {len(kept_idx)} samples to depth {depth} ({len(dropped)} dropped)"
    )
    return dataset.derive(
        step=repr(Rarefy(depth=depth, seed=seed)),
        data=data,
        sample_ids=dataset.sample_ids[keep],
        sample_metadata=dataset.sample_metadata.loc[keep],
        notices=notices,
    )


class Rarefy(Transform):
    """Transform wrapper around ``rarefy``."""

    def __init__(self, depth: Optional[int] = None, seed: Optional[int] = None, n_jobs: int = 1):
        super().__init__(name="Rarefy", params={"depth": depth, "seed": seed})
        self.depth = depth
        self.seed = seed
        self.n_jobs = n_jobs

    def validate(self, dataset: Dataset) -> list[str]:
        errors = super().validate(dataset)
        if self.depth is not None and self.depth <= 0:
            errors.append(f"depth must be positive, got {self.depth}")
        return errors

    def apply(self, dataset: Dataset) -> Dataset:
        return rarefy(dataset, depth=self.depth, seed=self.seed, n_jobs=self.n_jobs)
