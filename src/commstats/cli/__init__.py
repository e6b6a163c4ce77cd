"""
commstats CLI - command-line interface for community abundance statistics.

Commands:
    commstats run   - Diversity, ordination, PERMANOVA and differential abundance
"""

import argparse
import sys
from typing import List, Optional


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for commstats."""
    parser = argparse.ArgumentParser(
        prog="commstats",
        description="Statistical analysis of microbial community abundance tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run           Diversity, ordination, PERMANOVA and differential abundance

Examples:
  commstats run --abundance table.tsv --taxonomy taxonomy.tsv \\
      --metadata metadata.tsv --group-column diet --output results/
  commstats run --config analysis.yaml --n-jobs 4
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version="%(prog)s 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from commstats.cli import run
    run.register_parser(subparsers)

    parsed_args = parser.parse_args(args)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
