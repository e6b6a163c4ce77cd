"""
Seeding and task dispatch for independent units of work.

Randomized routines (rarefaction per sample, PERMANOVA per permutation,
NMDS per restart) draw from their own generator, spawned from a single
``SeedSequence``. Child k of ``SeedSequence(seed)`` does not depend on how
many children were spawned, so results are identical whether the work runs
serially or across threads, and adding permutations extends rather than
reshuffles the stream.

Dispatch goes through joblib with the threading backend: the per-task work
is numpy-heavy and releases the GIL, and threads avoid pickling the Dataset
for every task.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable, Optional

import numpy as np
from joblib import Parallel, delayed

from commstats.core.errors import AnalysisCancelled

logger = logging.getLogger(__name__)

__all__ = ["spawn_generators", "run_tasks", "check_cancelled", "chunk_ranges"]


def spawn_generators(seed: Optional[int], n: int) -> list[np.random.Generator]:
    """
    Independent generators for ``n`` tasks derived from one seed.

    Args:
        seed: Root seed (None = fresh OS entropy)
        n: Number of tasks

    Returns:
        List of ``n`` Generators; element k depends only on (seed, k)
    """
    children = np.random.SeedSequence(seed).spawn(n)
    return [np.random.default_rng(child) for child in children]


def chunk_ranges(n: int, n_chunks: int) -> list[range]:
    """Split ``range(n)`` into at most ``n_chunks`` contiguous ranges."""
    n_chunks = max(1, min(n_chunks, n))
    bounds = np.linspace(0, n, n_chunks + 1).astype(int)
    return [range(bounds[i], bounds[i + 1]) for i in range(n_chunks) if bounds[i] < bounds[i + 1]]


def run_tasks(
    func: Callable[..., Any],
    items: Iterable[Any],
    n_jobs: int = 1,
) -> list[Any]:
    """
    Apply ``func`` to every item, returning results in input order.

    Args:
        func: Callable taking one item
        items: Work items
        n_jobs: Worker threads (1 = run inline, -1 = all cores)
    """
    items = list(items)
    if n_jobs == 1 or len(items) <= 1:
        return [func(item) for item in items]
    logger.debug(f"Dispatching {len(items)} tasks to {n_jobs} workers")
    return Parallel(n_jobs=n_jobs, prefer="threads")(delayed(func)(item) for item in items)


def check_cancelled(cancel: Optional[threading.Event], what: str = "analysis") -> None:
    """Raise AnalysisCancelled if ``cancel`` is set."""
    if cancel is not None and cancel.is_set():
        raise AnalysisCancelled(f"{what} cancelled")
