"""
Ordination of a dissimilarity matrix into a low-dimensional embedding.

NMDS (non-metric multidimensional scaling):
    Finds coordinates whose Euclidean distances preserve the *rank order* of
    the input dissimilarities. Each iteration of the SMACOF majorization:

    1. Compute embedded distances d_ij from the current configuration
    2. Fit disparities d̂_ij by isotonic (monotone) regression of d on the
       input dissimilarities, rescaled so sum d̂² = n(n-1)/2
    3. Kruskal stress-1 = sqrt(sum (d - d̂)² / sum d²)
    4. Guttman transform: X <- B(X) X / n

    The surface is non-convex, so several seeded random starts are run and
    the lowest-stress solution is kept. The final configuration is centred
    and rotated to principal axes so NMDS1 carries the most spread.

    Stopping at ``max_iter`` without the stress change falling below ``tol``
    is reported (``converged=False``, ConvergenceWarning, Notice) rather
    than raised.

PCoA (principal coordinates analysis):
    Classical metric scaling: eigendecomposition of the double-centred
    -D²/2 matrix. Deterministic; stress is reported as 0.

Stress rule of thumb (Kruskal 1964; Clarke 1993):
    < 0.05 excellent, < 0.1 good, < 0.2 fair, otherwise poor.

References:
    - Kruskal (1964) Psychometrika 29:1-27, 115-129
    - de Leeuw (1977) SMACOF majorization
    - Gower (1966) Biometrika 53:325-338 (PCoA)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Literal, Optional

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from sklearn.isotonic import IsotonicRegression

from commstats.core.notices import Notice, NoticeKind, emit
from commstats.diversity.beta import DissimilarityMatrix
from commstats.utils.parallel import check_cancelled, run_tasks, spawn_generators

logger = logging.getLogger(__name__)

__all__ = ["OrdinationResult", "ordinate", "nmds", "pcoa", "interpret_stress"]


@dataclass(frozen=True, eq=False)
class OrdinationResult:
    """Per-sample coordinates from an ordination.

    Attributes:
        coordinates: DataFrame indexed by sample id, columns NMDS1..k or PCo1..k
        stress: Kruskal stress-1 of the kept solution (0 for PCoA)
        method: "NMDS" or "PCoA"
        converged: False if the kept NMDS run hit max_iter
        n_iter: Iterations used by the kept run
        notices: Non-fatal conditions (e.g. non-convergence)
        proportion_explained: PCoA only, share of positive eigenvalue mass per axis
    """

    coordinates: pd.DataFrame
    stress: float
    method: str
    converged: bool = True
    n_iter: int = 0
    notices: tuple[Notice, ...] = ()
    proportion_explained: Optional[pd.Series] = None

    @property
    def stress_quality(self) -> str:
        return interpret_stress(self.stress)

    def to_dataframe(self) -> pd.DataFrame:
        return self.coordinates.copy()


def interpret_stress(stress: float) -> str:
    """Conventional label for a Kruskal stress-1 value."""
    if stress < 0.05:
        return "excellent"
    if stress < 0.1:
        return "good"
    if stress < 0.2:
        return "fair"
    return "poor"


def _validate_dims(n: int, dims: int) -> None:
    if n < 3:
        raise ValueError(f"ordination needs at least 3 samples, got {n}")
    if not (1 <= dims < n):
        raise ValueError(f"dims must be in [1, {n - 1}] for {n} samples, got {dims}")


def _principal_axes(x: np.ndarray) -> np.ndarray:
    x = x - x.mean(axis=0)
    _, _, vt = np.linalg.svd(x, full_matrices=False)
    x = x @ vt.T
    # Fix the arbitrary sign of each axis
    signs = np.sign(x[np.argmax(np.abs(x), axis=0), np.arange(x.shape[1])])
    signs[signs == 0] = 1.0
    return x * signs


def _smacof_run(
    delta: np.ndarray,
    dims: int,
    rng: np.random.Generator,
    max_iter: int,
    tol: float,
    cancel: Optional[threading.Event],
) -> tuple[np.ndarray, float, int, bool]:
    """One nonmetric SMACOF run from a random start."""
    n = delta.shape[0]
    iu = np.triu_indices(n, k=1)
    delta_flat = delta[iu]
    target_ss = n * (n - 1) / 2.0

    x = rng.uniform(size=(n, dims))
    ir = IsotonicRegression(increasing=True)
    stress_prev = None
    stress = np.inf

    for it in range(1, max_iter + 1):
        check_cancelled(cancel, "NMDS")
        dis = squareform(pdist(x))
        dis_flat = dis[iu]

        dhat_flat = ir.fit_transform(delta_flat, dis_flat)
        dhat_ss = np.sum(dhat_flat ** 2)
        if dhat_ss > 0:
            dhat_flat = dhat_flat * np.sqrt(target_ss / dhat_ss)

        dis_ss = np.sum(dis_flat ** 2)
        stress = float(np.sqrt(np.sum((dis_flat - dhat_flat) ** 2) / dis_ss)) if dis_ss > 0 else 0.0

        if stress_prev is not None and abs(stress_prev - stress) < tol:
            return x, stress, it, True
        stress_prev = stress

        dhat = np.zeros_like(dis)
        dhat[iu] = dhat_flat
        dhat = dhat + dhat.T

        # Guttman transform
        with np.errstate(divide="ignore", invalid="ignore"):
            ratio = np.where(dis > 0, dhat / dis, 0.0)
        b = -ratio
        b[np.arange(n), np.arange(n)] = ratio.sum(axis=1)
        x = b @ x / n

    return x, stress, max_iter, False


def nmds(
    matrix: DissimilarityMatrix,
    dims: int = 2,
    max_iter: int = 300,
    n_init: int = 10,
    seed: Optional[int] = None,
    tol: float = 1e-4,
    n_jobs: int = 1,
    cancel: Optional[threading.Event] = None,
) -> OrdinationResult:
    """
    Kruskal non-metric MDS with seeded random restarts.

    Args:
        matrix: Input dissimilarities
        dims: Output dimensions
        max_iter: Iteration limit per restart
        n_init: Number of random restarts; lowest stress wins
        seed: Root seed; restart k uses child k of SeedSequence(seed)
        tol: Convergence threshold on the absolute stress change
        n_jobs: Worker threads, one task per restart
        cancel: Optional event checked every iteration

    Returns:
        OrdinationResult with columns NMDS1..dims

    Raises:
        ValueError: If fewer than 3 samples or dims out of range
        AnalysisCancelled: If ``cancel`` is set during the run
    """
    n = matrix.n
    _validate_dims(n, dims)
    if n_init < 1:
        raise ValueError(f"n_init must be at least 1, got {n_init}")
    if max_iter < 1:
        raise ValueError(f"max_iter must be at least 1, got {max_iter}")

    columns = [f"NMDS{k + 1}" for k in range(dims)]
    delta = np.array(matrix.data)

    if np.all(delta == 0):
        logger.warning("All dissimilarities are zero; NMDS places every sample at the origin")
        coords = pd.DataFrame(np.zeros((n, dims)), index=matrix.ids, columns=columns)
        return OrdinationResult(coords, stress=0.0, method="NMDS", converged=True, n_iter=0)

    rngs = spawn_generators(seed, n_init)
    runs = run_tasks(
        lambda k: _smacof_run(delta, dims, rngs[k], max_iter, tol, cancel),
        range(n_init),
        n_jobs=n_jobs,
    )
    best = min(range(n_init), key=lambda k: runs[k][1])
    x, stress, n_iter, converged = runs[best]

    logger.info(
        f"NMDS: best stress {stress:.4f} ({interpret_stress(stress)}) from restart "
        f"{best + 1}/{n_init}, {n_iter} iterations"
    )

    notices: tuple[Notice, ...] = ()
    if not converged:
        notice = Notice(
            NoticeKind.CONVERGENCE,
            "NMDS",
            f"no convergence after {max_iter} iterations; final stress {stress:.4f}",
        )
        notices = (notice,)
        emit(notices, f"NMDS did not converge after {max_iter} iterations (stress {stress:.4f})")

    coords = pd.DataFrame(_principal_axes(x), index=matrix.ids, columns=columns)
    return OrdinationResult(
        coordinates=coords,
        stress=stress,
        method="NMDS",
        converged=converged,
        n_iter=n_iter,
        notices=notices,
    )


def pcoa(matrix: DissimilarityMatrix, dims: int = 2) -> OrdinationResult:
    """
    Principal coordinates analysis (classical metric scaling).

    Negative eigenvalues (non-Euclidean dissimilarities such as Bray-Curtis)
    are discarded; if fewer than ``dims`` positive axes exist the remaining
    columns are zero.

    Returns:
        OrdinationResult with columns PCo1..dims and ``proportion_explained``
    """
    n = matrix.n
    _validate_dims(n, dims)

    d2 = np.array(matrix.data) ** 2
    j = np.eye(n) - np.ones((n, n)) / n
    b = -0.5 * j @ d2 @ j

    eigvals, eigvecs = np.linalg.eigh(b)
    order = np.argsort(eigvals)[::-1]
    eigvals = eigvals[order]
    eigvecs = eigvecs[:, order]

    scale = max(abs(eigvals[0]), 1.0)
    positive = eigvals > 1e-10 * scale
    n_pos = int(positive.sum())
    if n_pos < dims:
        logger.warning(f"PCoA: only {n_pos} positive eigenvalues for {dims} requested axes")

    coords = np.zeros((n, dims))
    k = min(dims, n_pos)
    coords[:, :k] = eigvecs[:, :k] * np.sqrt(eigvals[:k])

    columns = [f"PCo{i + 1}" for i in range(dims)]
    total = eigvals[positive].sum()
    explained = np.zeros(dims)
    if total > 0:
        explained[:k] = eigvals[:k] / total

    return OrdinationResult(
        coordinates=pd.DataFrame(coords, index=matrix.ids, columns=columns),
        stress=0.0,
        method="PCoA",
        converged=True,
        n_iter=0,
        proportion_explained=pd.Series(explained, index=columns, name="proportion_explained"),
    )


def ordinate(
    matrix: DissimilarityMatrix,
    method: Literal["NMDS", "PCoA"] = "NMDS",
    dims: int = 2,
    max_iter: int = 300,
    n_init: int = 10,
    seed: Optional[int] = None,
    tol: float = 1e-4,
    n_jobs: int = 1,
    cancel: Optional[threading.Event] = None,
) -> OrdinationResult:
    """
    Embed samples in ``dims`` dimensions.

    Args:
        matrix: Input dissimilarities
        method: "NMDS" (default) or "PCoA" (case-insensitive)
        dims, max_iter, n_init, seed, tol, n_jobs, cancel: See ``nmds``

    Examples:
        >>> result = ordinate(bc, method="NMDS", dims=2, seed=42)
        >>> result.coordinates.columns.tolist()
        ['NMDS1', 'NMDS2']
        >>> result.stress_quality
        'good'
    """
    key = method.upper()
    if key == "NMDS":
        return nmds(
            matrix, dims=dims, max_iter=max_iter, n_init=n_init,
            seed=seed, tol=tol, n_jobs=n_jobs, cancel=cancel,
        )
    if key in ("PCOA", "MDS"):
        return pcoa(matrix, dims=dims)
    raise ValueError(f"Unknown ordination method {method!r}; use 'NMDS' or 'PCoA'")
