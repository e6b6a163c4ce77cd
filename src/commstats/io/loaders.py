"""
Loaders for the three input tables of a community profile.

Expected files:
    abundance   First column = sample ids (or taxon ids with
                orientation="taxa"), remaining columns = counts
    taxonomy    First column = taxon ids, then either one column per rank
                or a single lineage column ("Taxon", "taxonomy", ...)
    metadata    First column (or ``sample_id_column``) = sample ids

Delimiters are sniffed. Identifiers are read as strings so that ids like
"0012" survive. Count validation (non-negative integers) is left to
``commstats.core.dataset.build`` so the error types are the same whether
tables come from disk or memory.

Examples:
    >>> from commstats.io.loaders import load_dataset
    >>> ds = load_dataset("feature-table.tsv", "taxonomy.tsv", "metadata.tsv",
    ...                   orientation="taxa")
    >>> ds.ranks
    ['Domain', 'Phylum', 'Class', 'Order', 'Family', 'Genus', 'Species']
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal, Optional, Sequence

import pandas as pd

from commstats.core.dataset import Dataset, build
from commstats.io.formats import DEFAULT_RANKS, LINEAGE_COLUMNS, lineage_to_table, sniff_delimiter

logger = logging.getLogger(__name__)

__all__ = ['load_abundance', 'load_taxonomy', 'load_sample_metadata', 'load_dataset']


_BIOM_HEADER = "# Constructed from biom file"


def _read_table(path: Path, what: str, index_col=0) -> pd.DataFrame:
    if not isinstance(path, Path):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{what} file not found: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    with open(path, 'r', encoding='utf-8', errors='ignore') as f:
        first_line = f.readline()
    skiprows = 1 if first_line.startswith(_BIOM_HEADER) else 0

    sep = sniff_delimiter(path)
    try:
        df = pd.read_csv(
            path,
            sep=sep,
            index_col=index_col,
            skiprows=skiprows,
            converters={index_col: str},
        )
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"{what} file is empty: {path}") from e
    except pd.errors.ParserError as e:
        raise ValueError(f"Failed to parse {what} file {path}: {e}") from e

    df.index = df.index.astype(str)
    if df.empty:
        raise ValueError(f"{what} file contains no data: {path}")
    logger.info(f"Loaded {what}: {df.shape[0]} rows × {df.shape[1]} columns from {path}")
    return df


def load_abundance(
    path: Path,
    orientation: Literal["samples", "taxa"] = "samples",
) -> pd.DataFrame:
    """
    Load a count table as samples × taxa.

    Args:
        path: Delimited text file
        orientation: "samples" if rows are samples, "taxa" if rows are taxa
            (QIIME/BIOM-style feature tables, which are transposed on load).
            A leading "# Constructed from biom file" line is skipped.

    Returns:
        DataFrame with sample ids as index and taxon ids as columns

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the file is empty or malformed
    """
    if orientation not in ("samples", "taxa"):
        raise ValueError(f"orientation must be 'samples' or 'taxa', got {orientation!r}")

    df = _read_table(Path(path), "abundance")

    if orientation == "taxa":
        df = df.T
    df.columns = df.columns.astype(str)
    df.index = df.index.astype(str)
    df.index.name = "sample_id"
    df.columns.name = "taxon_id"
    return df


def load_taxonomy(
    path: Path,
    ranks: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Load a taxonomy table as taxa × ranks.

    A table with a single lineage column (named Taxon/taxonomy/lineage/
    classification, case-insensitive) is split on ';' into ``ranks``
    (default Domain..Species). Other non-rank columns such as "Confidence"
    are dropped in that case. Otherwise every column is a rank, in file order,
    unless ``ranks`` selects a subset.

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If requested ranks are missing
    """
    df = _read_table(Path(path), "taxonomy")
    df.index.name = "taxon_id"

    lineage_cols = [c for c in df.columns if str(c).strip().lower() in LINEAGE_COLUMNS]
    if lineage_cols:
        table = lineage_to_table(df[lineage_cols[0]], ranks or DEFAULT_RANKS)
        logger.info(f"Parsed lineage column {lineage_cols[0]!r} into {len(table.columns)} ranks")
        return table

    if ranks is not None:
        missing = [r for r in ranks if r not in df.columns]
        if missing:
            raise ValueError(f"Taxonomy file lacks rank columns {missing}; has {list(df.columns)}")
        df = df[list(ranks)]
    return df


def load_sample_metadata(
    path: Path,
    sample_id_column: Optional[str] = None,
) -> pd.DataFrame:
    """
    Load per-sample covariates indexed by sample id.

    Args:
        path: Delimited text file
        sample_id_column: Column holding sample ids (default: first column).
            A QIIME "#q2:types" directive row is dropped.
    """
    df = _read_table(Path(path), "metadata", index_col=sample_id_column or 0)
    if len(df.index) > 0 and df.index[0].startswith("#q2:types"):
        df = df.iloc[1:]
    df.index.name = "sample_id"
    return df


def load_dataset(
    abundance: Path,
    taxonomy: Path,
    metadata: Path,
    orientation: Literal["samples", "taxa"] = "samples",
    sample_id_column: Optional[str] = None,
    ranks: Optional[Sequence[str]] = None,
) -> Dataset:
    """
    Load and validate all three tables.

    Raises:
        FileNotFoundError: If any file is missing
        SchemaMismatch: If identifier sets disagree
        InvalidCount: If counts are not non-negative integers
    """
    return build(
        load_abundance(abundance, orientation=orientation),
        load_taxonomy(taxonomy, ranks=ranks),
        load_sample_metadata(metadata, sample_id_column=sample_id_column),
    )
