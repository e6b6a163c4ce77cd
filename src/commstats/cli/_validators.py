"""Argparse type validators for ``commstats`` option bounds.

Used as the ``type=`` argument in ``add_argument()`` so that values such as
``--permutations -5`` or ``--alpha 2.0`` fail at parse time with a clear
message.
"""

from __future__ import annotations

import argparse


def _positive_int(value: str) -> int:
    """argparse type for positive integers (> 0)."""
    ivalue = int(value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError(f"{value} is not a positive integer")
    return ivalue


def _non_negative_int(value: str) -> int:
    """argparse type for integers >= 0."""
    ivalue = int(value)
    if ivalue < 0:
        raise argparse.ArgumentTypeError(f"{value} is not a non-negative integer")
    return ivalue


def _n_jobs(value: str) -> int:
    """argparse type for worker counts: positive, or -1 for all cores."""
    ivalue = int(value)
    if ivalue == 0 or ivalue < -1:
        raise argparse.ArgumentTypeError(f"{value} is not a valid worker count (positive or -1)")
    return ivalue


def _probability(value: str) -> float:
    """argparse type for values in the open interval (0, 1)."""
    fvalue = float(value)
    if not (0 < fvalue < 1):
        raise argparse.ArgumentTypeError(
            f"{value} is not a valid probability (must be in (0, 1))"
        )
    return fvalue
