"""
Writers for analysis result tables.

All outputs are tab-separated text with a header row, readable from R,
Excel or pandas. Each result type maps to one file in the output directory:

    alpha_diversity.tsv          samples × measures
    alpha_tests.tsv              one row per measure (rank-sum test)
    dissimilarity.tsv            samples × samples
    ordination.tsv               samples × axes
    permanova.tsv                one row
    differential_abundance.tsv   one row per taxon
    notices.tsv                  kind, entity, message

Parent directories are created; existing files are overwritten.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from commstats.core.notices import Notice, notices_to_frame

logger = logging.getLogger(__name__)

__all__ = ['write_table', 'write_results']


def write_table(df: pd.DataFrame, path: Path, index: bool = True) -> Path:
    """
    Write one DataFrame as a TSV file.

    Raises:
        OSError: If the file cannot be written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        df.to_csv(path, sep='\t', index=index)
    except OSError as e:
        raise OSError(f"Failed to write {path}: {e}") from e
    logger.info(f"Wrote {df.shape[0]} rows to {path}")
    return path


def write_results(
    output_dir: Path,
    alpha: Optional[pd.DataFrame] = None,
    alpha_tests: Optional[pd.DataFrame] = None,
    dissimilarity=None,
    ordination=None,
    permanova=None,
    differential=None,
    notices: Iterable[Notice] = (),
) -> dict[str, Path]:
    """
    Write every available result table into ``output_dir``.

    Args:
        output_dir: Destination directory
        alpha: Output of ``diversity.alpha.estimate``
        alpha_tests: Output of ``diversity.alpha.compare_groups``
        dissimilarity: DissimilarityMatrix
        ordination: OrdinationResult
        permanova: PermanovaResult
        differential: DifferentialAbundanceTable
        notices: Notices gathered across the analysis

    Returns:
        Mapping of table name to written path
    """
    output_dir = Path(output_dir)
    written: dict[str, Path] = {}

    if alpha is not None:
        written["alpha_diversity"] = write_table(alpha, output_dir / "alpha_diversity.tsv")
    if alpha_tests is not None:
        written["alpha_tests"] = write_table(alpha_tests, output_dir / "alpha_tests.tsv", index=False)
    if dissimilarity is not None:
        written["dissimilarity"] = write_table(
            dissimilarity.to_dataframe(), output_dir / "dissimilarity.tsv"
        )
    if ordination is not None:
        written["ordination"] = write_table(ordination.to_dataframe(), output_dir / "ordination.tsv")
    if permanova is not None:
        written["permanova"] = write_table(permanova.to_dataframe(), output_dir / "permanova.tsv", index=False)
    if differential is not None:
        written["differential_abundance"] = write_table(
            differential.to_dataframe(), output_dir / "differential_abundance.tsv", index=False
        )

    written["notices"] = write_table(notices_to_frame(notices), output_dir / "notices.tsv", index=False)
    return written
