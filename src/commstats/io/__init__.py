"""
Input/output for community-abundance tables and analysis results.

Loaders:
    load_abundance, load_taxonomy, load_sample_metadata, load_dataset

Writers:
    write_table, write_results
"""

from commstats.io.formats import DEFAULT_RANKS, lineage_to_table, sniff_delimiter, split_lineage
from commstats.io.loaders import load_abundance, load_dataset, load_sample_metadata, load_taxonomy
from commstats.io.writers import write_results, write_table

__all__ = [
    'DEFAULT_RANKS',
    'sniff_delimiter',
    'split_lineage',
    'lineage_to_table',
    'load_abundance',
    'load_taxonomy',
    'load_sample_metadata',
    'load_dataset',
    'write_table',
    'write_results',
]
