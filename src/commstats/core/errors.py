"""
Typed errors raised by the analysis engine.

Every error subclasses both CommStatsError (so callers can catch everything
the engine raises in one clause) and ValueError (so code written against
plain ValueError keeps working).

Construction-time errors (SchemaMismatch, InvalidCount) are fatal to the
Dataset being built. Computation errors (EmptySample, InsufficientGroups,
DegenerateDesign) are fatal to the one computation that raised them; the
Dataset stays usable.
"""

from __future__ import annotations

__all__ = [
    'CommStatsError',
    'SchemaMismatch',
    'InvalidCount',
    'EmptySample',
    'InsufficientGroups',
    'DegenerateDesign',
    'AnalysisCancelled',
]


class CommStatsError(Exception):
    """Base class for all commstats errors."""


class SchemaMismatch(CommStatsError, ValueError):
    """Identifier sets of the abundance, taxonomy or sample tables disagree."""


class InvalidCount(CommStatsError, ValueError):
    """An abundance cell is negative, non-integral or missing."""


class EmptySample(CommStatsError, ValueError):
    """A sample has a total count of zero where a composition is required."""

    def __init__(self, sample_ids, context: str = ""):
        self.sample_ids = list(sample_ids)
        shown = ", ".join(str(s) for s in self.sample_ids[:10])
        if len(self.sample_ids) > 10:
            shown += f", ... ({len(self.sample_ids)} total)"
        prefix = f"{context}: " if context else ""
        super().__init__(f"{prefix}samples with zero total count: {shown}")


class InsufficientGroups(CommStatsError, ValueError):
    """A two-group test received a number of groups other than two, or an empty group."""


class DegenerateDesign(CommStatsError, ValueError):
    """The grouping admits no valid test (too few groups or no residual degrees of freedom)."""


class AnalysisCancelled(CommStatsError, RuntimeError):
    """A long-running computation observed its cancellation event."""
