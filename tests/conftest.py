"""
Pytest configuration and shared fixtures.

Provides a synthetic community generator and fixtures built from it. The
generator draws negative-binomial counts with per-sample library sizes and
plants a known fold change in a few taxa, so differential abundance tests
have a ground truth.
"""

import numpy as np
import pandas as pd
import pytest

from commstats.core.dataset import Dataset, build

RANKS = ["Domain", "Phylum", "Class", "Order", "Family", "Genus", "Species"]

PLANTED_TAXA = ["ASV000", "ASV001", "ASV002"]


def generate_synthetic_community(
    n_samples: int = 20,
    n_taxa: int = 30,
    n_genera: int = 6,
    fold_change: float = 8.0,
    dispersion: float = 0.1,
    seed: int = 42,
) -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """
    Generate abundance, taxonomy and metadata tables for a two-group study.

    Args:
        n_samples: Number of samples, alternating between groups "A" and "B"
        n_taxa: Number of ASVs
        n_genera: Number of distinct genera; the last ASV has no genus
        fold_change: Multiplier on the mean of PLANTED_TAXA in group "B"
        dispersion: Negative-binomial dispersion
        seed: Random seed for reproducibility

    Returns:
        (abundance, taxonomy, metadata) DataFrames

    Design:
        - Taxon means are log-normal (a few abundant, many rare taxa)
        - Library sizes vary four-fold between samples
        - Genera are assigned round-robin; phylum follows genus so
          aggregation consensus is well defined
    """
    rng = np.random.default_rng(seed)

    groups = np.array(["A" if i % 2 == 0 else "B" for i in range(n_samples)])
    sample_ids = [f"S{i:03d}" for i in range(n_samples)]
    taxon_ids = [f"ASV{i:03d}" for i in range(n_taxa)]

    base_means = np.exp(rng.normal(3.0, 1.0, size=n_taxa))
    library = rng.uniform(0.5, 2.0, size=n_samples)

    mu = library[:, None] * base_means[None, :]
    planted = np.isin(taxon_ids, PLANTED_TAXA)
    mu[np.ix_(groups == "B", planted)] *= fold_change

    r = 1.0 / dispersion
    counts = rng.negative_binomial(r, r / (r + mu))

    abundance = pd.DataFrame(counts, index=sample_ids, columns=taxon_ids)

    genera = [f"Genus{i % n_genera}" for i in range(n_taxa)]
    genera[-1] = None
    phyla = [
        None if g is None else ("Firmicutes" if int(g[5:]) % 2 == 0 else "Bacteroidota")
        for g in genera
    ]
    taxonomy = pd.DataFrame(
        {
            "Domain": ["Bacteria"] * n_taxa,
            "Phylum": phyla,
            "Class": [None] * n_taxa,
            "Order": [None] * n_taxa,
            "Family": [None] * n_taxa,
            "Genus": genera,
            "Species": [None] * n_taxa,
        },
        index=taxon_ids,
    )[RANKS]

    metadata = pd.DataFrame(
        {
            "group": groups,
            "batch": [f"b{i % 3}" for i in range(n_samples)],
        },
        index=sample_ids,
    )
    return abundance, taxonomy, metadata


@pytest.fixture
def community_tables():
    """Raw (abundance, taxonomy, metadata) tables, 20 samples x 30 taxa."""
    return generate_synthetic_community()


@pytest.fixture
def community(community_tables) -> Dataset:
    """Validated Dataset, 20 samples x 30 taxa, groups A/B."""
    return build(*community_tables)


@pytest.fixture
def tiny() -> Dataset:
    """Four samples with hand-checkable counts."""
    abundance = pd.DataFrame(
        [[10, 0, 0], [0, 10, 0], [5, 5, 0], [0, 0, 10]],
        index=["S1", "S2", "S3", "S4"],
        columns=["T1", "T2", "T3"],
    )
    taxonomy = pd.DataFrame(
        {"Phylum": ["Firmicutes", "Firmicutes", "Proteobacteria"],
         "Genus": ["Blautia", "Blautia", None]},
        index=["T1", "T2", "T3"],
    )
    metadata = pd.DataFrame({"group": ["A", "A", "B", "B"]}, index=["S1", "S2", "S3", "S4"])
    return build(abundance, taxonomy, metadata)


def write_community_files(directory, tables, orientation="samples"):
    """
    Write community tables as TSV files the way QIIME 2 exports them.

    Returns:
        Dict with paths to 'abundance', 'taxonomy' and 'metadata'
    """
    abundance, taxonomy, metadata = tables
    paths = {
        "abundance": directory / "feature-table.tsv",
        "taxonomy": directory / "taxonomy.tsv",
        "metadata": directory / "metadata.tsv",
    }

    table = (abundance.T if orientation == "taxa" else abundance).copy()
    table.index.name = "#OTU ID" if orientation == "taxa" else "sample_id"
    with open(paths["abundance"], "w") as f:
        if orientation == "taxa":
            f.write("# Constructed from biom file\n")
        table.to_csv(f, sep="\t")

    lineage = taxonomy.apply(
        lambda row: "; ".join(
            f"{rank[0].lower()}__{'' if pd.isna(value) else value}"
            for rank, value in row.items()
        ),
        axis=1,
    )
    pd.DataFrame(
        {"Taxon": lineage, "Confidence": 0.9},
        index=pd.Index(taxonomy.index, name="Feature ID"),
    ).to_csv(paths["taxonomy"], sep="\t")

    md = metadata.copy()
    md.index.name = "sample-id"
    md.to_csv(paths["metadata"], sep="\t")
    return paths
