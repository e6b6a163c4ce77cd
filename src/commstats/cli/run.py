"""
``commstats run``: load tables, analyze, write result tables.

Usage:
    commstats run \\
        --abundance feature-table.tsv --orientation taxa \\
        --taxonomy taxonomy.tsv \\
        --metadata metadata.tsv \\
        --group-column diet \\
        --output results/diet

    commstats run --config analysis.yaml --seed 7 --n-jobs 4

Every option except ``--config`` defaults to None so that a value coming
from the config file is only overridden when given on the command line.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import yaml

from commstats.cli._validators import _n_jobs, _non_negative_int, _positive_int, _probability


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the run subcommand."""
    parser = subparsers.add_parser(
        "run",
        help="Diversity, ordination, PERMANOVA and differential abundance",
        description=(
            "Rarefy counts and compute alpha/beta diversity, ordination and "
            "PERMANOVA; aggregate raw counts to a rank and test each taxon for "
            "differential abundance with a negative-binomial model."
        ),
    )

    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Path to YAML/JSON config file (optional, CLI args override config values)")

    # Input/output
    parser.add_argument("--abundance", "-a", type=Path, default=None,
                        help="Count table (TSV/CSV)")
    parser.add_argument("--taxonomy", "-t", type=Path, default=None,
                        help="Taxonomy table: one column per rank or a lineage column")
    parser.add_argument("--metadata", "-m", type=Path, default=None,
                        help="Sample metadata table")
    parser.add_argument("--orientation", choices=["samples", "taxa"], default=None,
                        help="Rows of the count table are samples (default) or taxa")
    parser.add_argument("--sample-id-column", default=None,
                        help="Metadata column holding sample ids (default: first column)")
    parser.add_argument("--group-column", "-g", default=None,
                        help="Metadata column defining the groups to compare")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Output directory (default: commstats_results)")

    # Execution
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for rarefaction, NMDS restarts and permutations (default: 42)")
    parser.add_argument("--n-jobs", type=_n_jobs, default=None,
                        help="Worker threads, -1 for all cores (default: 1)")

    # Rarefaction
    parser.add_argument("--depth", type=_positive_int, default=None,
                        help="Rarefaction depth (default: smallest sample total)")
    parser.add_argument("--no-rarefy", action="store_true",
                        help="Compute diversity on raw counts")

    # Beta diversity
    parser.add_argument("--metric", choices=["bray-curtis", "jaccard"], default=None,
                        help="Dissimilarity metric (default: bray-curtis)")
    parser.add_argument("--ordination", choices=["NMDS", "PCoA"], default=None,
                        help="Ordination method (default: NMDS)")
    parser.add_argument("--permutations", type=_non_negative_int, default=None,
                        help="PERMANOVA permutations (default: 999)")

    # Differential abundance
    parser.add_argument("--rank", default=None,
                        help="Taxonomic rank to aggregate to before testing (default: Genus)")
    parser.add_argument("--top-n", type=_positive_int, default=None,
                        help="Keep the N most abundant groups at --rank, pool the rest as 'Other'")
    parser.add_argument("--dispersion", choices=["gene", "shrunk"], default=None,
                        help="Per-taxon or trend-shrunk dispersion (default: gene)")
    parser.add_argument("--contrast", nargs=2, metavar=("TEST", "REFERENCE"), default=None,
                        help="Group levels to compare; fold changes are TEST over REFERENCE")
    parser.add_argument("--fdr", type=_probability, default=None,
                        help="FDR threshold for the 'significant' column (default: 0.05)")

    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")

    parser.set_defaults(func=run_analysis)


def run_analysis(args: argparse.Namespace) -> int:
    """Execute the run command."""
    from commstats.cli.config import (
        AnalysisConfig,
        load_config,
        merge_config_with_args,
        validate_config,
    )
    from commstats.core.errors import CommStatsError
    from commstats.io import load_dataset, write_results
    from commstats.pipeline import run_pipeline

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
    )
    logger = logging.getLogger(__name__)

    # Load and merge config file if provided
    try:
        raw = load_config(args.config) if args.config else {}
        config = AnalysisConfig.from_dict(raw)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    config = merge_config_with_args(config, args)

    errors = validate_config(config)
    for name in ("abundance", "taxonomy", "metadata"):
        if getattr(config.input, name) is None:
            errors.append(f"--{name} is required (via CLI or config file)")
    if errors:
        for message in errors:
            print(f"ERROR: {message}", file=sys.stderr)
        return 2

    print(f"\n{'='*70}")
    print("  Community Abundance Analysis")
    print(f"{'='*70}\n")

    try:
        dataset = load_dataset(
            config.input.abundance,
            config.input.taxonomy,
            config.input.metadata,
            orientation=config.input.orientation,
            sample_id_column=config.input.sample_id_column,
        )
        logger.info(f"Dataset: {dataset.n_samples} samples x {dataset.n_taxa} taxa")

        result = run_pipeline(dataset, config)
    except (CommStatsError, FileNotFoundError, KeyError, ValueError) as e:
        logger.error(f"Analysis failed: {e}")
        return 1

    written = write_results(
        config.output,
        alpha=result.alpha,
        alpha_tests=result.alpha_tests,
        dissimilarity=result.dissimilarity,
        ordination=result.ordination,
        permanova=result.permanova,
        differential=result.differential,
        notices=result.notices,
    )
    config_path = Path(config.output) / "config.yaml"
    with open(config_path, "w") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)

    if result.permanova is not None:
        p = result.permanova
        print(f"PERMANOVA: pseudo-F = {p.pseudo_f:.4f}, p = {p.p_value:.4f} ({p.permutations} permutations)")
    if result.differential is not None:
        n_sig = len(result.differential.significant_taxa())
        print(f"Differential abundance: {n_sig} taxa at FDR < {result.differential.fdr_threshold}")
    for name, reason in result.skipped.items():
        print(f"Skipped {name}: {reason}")

    print(f"\nResults written to {config.output}/")
    for name, path in written.items():
        print(f"  {name}: {path.name}")
    return 0
