"""
Input format helpers: delimiter detection and lineage-string parsing.

Design philosophy: auto-detect what is unambiguous (delimiter, whether a
taxonomy table holds one lineage string or one column per rank), and
require explicit configuration for anything else.

Lineage strings:
    QIIME 2 and SILVA exports store the whole classification in one field,
    e.g. ``d__Bacteria; p__Firmicutes; c__Clostridia; o__Lachnospirales;
    f__Lachnospiraceae; g__Blautia; s__``. ``split_lineage`` strips the rank
    prefixes and returns one label per rank; a bare prefix (``s__``) becomes
    missing so it is treated as unresolved downstream.
"""

from __future__ import annotations

import csv
import re
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd

__all__ = [
    'DEFAULT_RANKS',
    'LINEAGE_COLUMNS',
    'sniff_delimiter',
    'split_lineage',
    'lineage_to_table',
]

DEFAULT_RANKS = ("Domain", "Phylum", "Class", "Order", "Family", "Genus", "Species")

LINEAGE_COLUMNS = ("taxonomy", "taxon", "lineage", "classification")

_PREFIX = re.compile(r"^\s*([a-zA-Z])__")
_PREFIX_RANKS = {"d": 0, "k": 0, "p": 1, "c": 2, "o": 3, "f": 4, "g": 5, "s": 6}


def sniff_delimiter(path: Path, sample_size: int = 8192) -> str:
    """
    Auto-detect delimiter from file content.

    Uses Python's csv.Sniffer with a first-line count fallback.

    Args:
        path: Path to data file
        sample_size: Bytes to sample for detection

    Returns:
        Detected delimiter character ('\t', ',' or ';')

    Raises:
        ValueError: If delimiter cannot be determined
    """
    with open(path, 'r', encoding='utf-8', errors='ignore') as f:
        sample = f.read(sample_size)

    try:
        # ';' is excluded: it separates ranks inside lineage strings
        dialect = csv.Sniffer().sniff(sample, delimiters='\t,')
        return dialect.delimiter
    except csv.Error:
        pass

    lines = [line for line in sample.split('\n') if not line.startswith("# Constructed from biom")]
    first_line = lines[0] if lines else ""
    counts = {
        '\t': first_line.count('\t'),
        ',': first_line.count(','),
        ';': first_line.count(';'),
    }

    if max(counts.values()) == 0:
        raise ValueError(
            f"Could not detect delimiter in {path}. "
            "Use a tab- or comma-separated file."
        )

    return max(counts, key=counts.get)


def split_lineage(lineage, n_ranks: int = len(DEFAULT_RANKS)) -> list[Optional[str]]:
    """
    Split one lineage string into per-rank labels.

    Prefixed lineages (``g__Blautia``) are placed by their prefix; unprefixed
    lineages are placed positionally. Missing ranks are None.

    Examples:
        >>> split_lineage("d__Bacteria; p__Firmicutes; g__Blautia")
        ['Bacteria', 'Firmicutes', None, None, None, 'Blautia', None]
        >>> split_lineage("Bacteria;Firmicutes", n_ranks=3)
        ['Bacteria', 'Firmicutes', None]
    """
    labels: list[Optional[str]] = [None] * n_ranks
    if lineage is None or (isinstance(lineage, float) and np.isnan(lineage)):
        return labels

    parts = [p.strip() for p in str(lineage).split(';')]
    for position, part in enumerate(parts):
        if not part:
            continue
        match = _PREFIX.match(part)
        if match and match.group(1).lower() in _PREFIX_RANKS:
            slot = _PREFIX_RANKS[match.group(1).lower()]
            value = part[match.end():].strip()
        else:
            slot = position
            value = part
        if slot < n_ranks and value:
            labels[slot] = value
    return labels


def lineage_to_table(
    lineages: pd.Series,
    ranks: Sequence[str] = DEFAULT_RANKS,
) -> pd.DataFrame:
    """
    Expand a Series of lineage strings into a taxa × ranks table.

    Args:
        lineages: Lineage string per taxon (index = taxon id)
        ranks: Rank names, broadest first

    Returns:
        DataFrame indexed like ``lineages`` with one column per rank
    """
    ranks = list(ranks)
    rows = [split_lineage(value, len(ranks)) for value in lineages]
    return pd.DataFrame(rows, index=lineages.index, columns=ranks)
