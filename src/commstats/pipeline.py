"""
End-to-end analysis over one Dataset.

The order of operations is explicit and fixed:

    raw ──► rarefy ──► alpha diversity ──► rank-sum tests per measure
                  └──► dissimilarity ──► ordination
                                    └──► PERMANOVA
    raw ──► aggregate / top-N ──► negative-binomial differential abundance

Diversity uses rarefied counts so sampling effort is equal across samples.
The exception is Chao1 and ACE, which are computed on the raw counts of
the samples rarefaction kept. Samples with no group label are excluded
from the group tests and recorded as notices. Differential abundance uses raw counts and corrects depth through size
factors, so rarefaction is never applied before aggregation for that
branch. Each step receives its input explicitly; nothing is shared or
mutated between branches.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

import pandas as pd

from commstats.core.dataset import Dataset
from commstats.core.errors import DegenerateDesign, InsufficientGroups
from commstats.core.notices import Notice, NoticeKind
from commstats.diversity.alpha import RAW_COUNT_MEASURES, compare_groups, estimate, resolve_measures
from commstats.diversity.beta import DissimilarityMatrix, dissimilarity
from commstats.diversity.ordination import OrdinationResult, ordinate
from commstats.stats.differential import DifferentialAbundanceTable, differential_abundance
from commstats.stats.permanova import PermanovaResult, permanova
from commstats.utils.parallel import check_cancelled

if TYPE_CHECKING:
    from commstats.cli.config import AnalysisConfig

logger = logging.getLogger(__name__)

__all__ = ["PipelineResult", "run_pipeline"]


@dataclass
class PipelineResult:
    """Everything produced by ``run_pipeline``.

    Attributes:
        diversity_dataset: Dataset used for alpha/beta (rarefied unless disabled)
        alpha: Samples × measures
        alpha_tests: Rank-sum test per measure
        dissimilarity: Pairwise dissimilarity matrix
        ordination: Sample coordinates
        permanova: PERMANOVA result
        differential: Differential abundance table
        notices: All notices in the order they were raised
        skipped: Analyses skipped and why
    """

    diversity_dataset: Optional[Dataset] = None
    alpha: Optional[pd.DataFrame] = None
    alpha_tests: Optional[pd.DataFrame] = None
    dissimilarity: Optional[DissimilarityMatrix] = None
    ordination: Optional[OrdinationResult] = None
    permanova: Optional[PermanovaResult] = None
    differential: Optional[DifferentialAbundanceTable] = None
    notices: list[Notice] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)


def _group_labels(dataset: Dataset, group_column: Optional[str]) -> Optional[pd.Series]:
    if group_column is None:
        return None
    metadata = dataset.sample_metadata
    if group_column not in metadata.columns:
        raise KeyError(
            f"Group column {group_column!r} not in sample metadata; "
            f"available: {list(metadata.columns)}"
        )
    return metadata[group_column]


def _alpha_table(
    raw: Dataset,
    diversity_ds: Dataset,
    measures: Optional[list[str]],
    n_jobs: int,
) -> pd.DataFrame:
    """
    Alpha diversity over the samples of ``diversity_ds``.

    Chao1 and ACE come from the raw counts of those samples; the other
    measures come from ``diversity_ds`` itself.
    """
    names = resolve_measures(measures)
    raw_names = [m for m in names if m in RAW_COUNT_MEASURES]
    if diversity_ds is raw or not raw_names:
        return estimate(diversity_ds, measures=names, n_jobs=n_jobs)

    parts = []
    rarefied_names = [m for m in names if m not in RAW_COUNT_MEASURES]
    if rarefied_names:
        parts.append(estimate(diversity_ds, measures=rarefied_names, n_jobs=n_jobs))
    retained = raw.select_samples(raw.sample_ids.isin(diversity_ds.sample_ids))
    parts.append(estimate(retained, measures=raw_names, n_jobs=n_jobs))

    notices = [n for part in parts for n in part.attrs.get("notices", [])]
    table = pd.concat(parts, axis=1).reindex(index=diversity_ds.sample_ids, columns=names)
    table.attrs = {"notices": notices}
    return table


def run_pipeline(
    dataset: Dataset,
    config: AnalysisConfig,
    cancel: Optional[threading.Event] = None,
) -> PipelineResult:
    """
    Run the configured analyses on ``dataset``.

    Group comparisons that cannot be carried out (too few groups, degenerate
    design) are recorded in ``PipelineResult.skipped`` and logged; the other
    branches still run. Data errors (EmptySample) and cancellation propagate.

    Args:
        dataset: Validated input Dataset
        config: Analysis configuration
        cancel: Optional event; set it to abort at the next checkpoint

    Returns:
        PipelineResult
    """
    result = PipelineResult()
    n_jobs = config.n_jobs
    group_column = config.group_column
    _group_labels(dataset, group_column)

    logger.info(f"Starting analysis of {dataset!r}")

    if config.alpha.enabled or config.beta.enabled:
        diversity_ds = dataset
        if config.rarefaction.enabled:
            diversity_ds = dataset.rarefy(
                depth=config.rarefaction.depth,
                seed=config.rarefaction.seed,
                n_jobs=n_jobs,
            )
            result.notices.extend(diversity_ds.notices)
        result.diversity_dataset = diversity_ds
        labels = _group_labels(diversity_ds, group_column)

        if config.alpha.enabled:
            check_cancelled(cancel, "pipeline")
            result.alpha = _alpha_table(dataset, diversity_ds, config.alpha.measures, n_jobs)
            result.notices.extend(result.alpha.attrs.get("notices", []))
            if labels is not None:
                try:
                    result.alpha_tests = compare_groups(
                        result.alpha, diversity_ds.sample_metadata, group_column
                    )
                except (InsufficientGroups, DegenerateDesign) as e:
                    logger.warning(f"Skipping alpha diversity tests: {e}")
                    result.skipped["alpha_tests"] = str(e)

        if config.beta.enabled:
            check_cancelled(cancel, "pipeline")
            b = config.beta
            result.dissimilarity = dissimilarity(diversity_ds, metric=b.metric)
            if diversity_ds.n_samples >= 3:
                result.ordination = ordinate(
                    result.dissimilarity,
                    method=b.ordination,
                    dims=min(b.dims, diversity_ds.n_samples - 1),
                    max_iter=b.max_iter,
                    n_init=b.n_init,
                    seed=b.seed,
                    n_jobs=n_jobs,
                    cancel=cancel,
                )
                result.notices.extend(result.ordination.notices)
            else:
                result.skipped["ordination"] = f"needs at least 3 samples, got {diversity_ds.n_samples}"

            if labels is not None:
                tested = result.dissimilarity
                unlabelled = labels.index[labels.isna()]
                if len(unlabelled) > 0:
                    logger.warning(
                        f"Excluding {len(unlabelled)} samples without a {group_column!r} "
                        f"label from PERMANOVA"
                    )
                    result.notices.extend(
                        Notice(
                            NoticeKind.UNLABELLED_SAMPLE,
                            str(sid),
                            f"no {group_column!r} label; excluded from PERMANOVA",
                        )
                        for sid in unlabelled
                    )
                    tested = tested.subset(labels.index[labels.notna()])
                try:
                    result.permanova = permanova(
                        tested,
                        labels.dropna(),
                        permutations=b.permutations,
                        seed=b.seed,
                        n_jobs=n_jobs,
                        cancel=cancel,
                    )
                except (InsufficientGroups, DegenerateDesign) as e:
                    logger.warning(f"Skipping PERMANOVA: {e}")
                    result.skipped["permanova"] = str(e)

    if config.differential.enabled:
        check_cancelled(cancel, "pipeline")
        d = config.differential
        if group_column is None:
            result.skipped["differential"] = "no group_column configured"
        else:
            da_input = dataset
            if d.rank is not None:
                da_input = dataset.aggregate_to(d.rank, top_n=d.top_n)
            contrast = tuple(d.contrast) if d.contrast else None
            try:
                result.differential = differential_abundance(
                    da_input,
                    group_column,
                    contrast=contrast,
                    dispersion=d.dispersion,
                    n_jobs=n_jobs,
                    alpha=d.alpha,
                )
                result.notices.extend(result.differential.notices)
            except (InsufficientGroups, DegenerateDesign) as e:
                logger.warning(f"Skipping differential abundance: {e}")
                result.skipped["differential"] = str(e)

    logger.info(
        f"Analysis complete: {len(result.notices)} notices, "
        f"{len(result.skipped)} analyses skipped"
    )
    return result
