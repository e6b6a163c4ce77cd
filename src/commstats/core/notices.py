"""
Non-fatal conditions recorded alongside analysis results.

Statistical routines regularly meet conditions that should not abort the
computation but must not be hidden either: a sample too shallow for the
rarefaction depth, an ordination that stopped before converging, a taxon
whose counts never vary. Each such condition is captured twice:

    warnings.warn() -- user-facing (dropped samples, convergence, zero variance)
    Notice records  -- attached to the returned value for reporting

Operator-facing detail (fallbacks, retries) goes to logger.warning() in the
module that hit it and is not duplicated here.

Examples:
    >>> from commstats.core.notices import Notice, NoticeKind, notices_to_frame
    >>> n = Notice(NoticeKind.DROPPED_SAMPLE, "S7", "total 812 < depth 1000")
    >>> notices_to_frame([n])
                 kind entity                 message
    0  dropped_sample     S7  total 812 < depth 1000
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

import pandas as pd

__all__ = [
    'NoticeKind',
    'Notice',
    'CommStatsWarning',
    'DroppedSamples',
    'ConvergenceWarning',
    'ZeroVarianceTaxon',
    'emit',
    'notices_to_frame',
]


class NoticeKind(Enum):
    """Category of a recorded non-fatal condition."""

    DROPPED_SAMPLE = "dropped_sample"
    CONVERGENCE = "convergence"
    ZERO_VARIANCE_TAXON = "zero_variance_taxon"
    NON_ESTIMABLE_DISPERSION = "non_estimable_dispersion"
    NON_ESTIMABLE_MEASURE = "non_estimable_measure"
    FIT_FAILURE = "fit_failure"
    UNLABELLED_SAMPLE = "unlabelled_sample"


class CommStatsWarning(UserWarning):
    """Base category for user-facing warnings."""


class DroppedSamples(CommStatsWarning):
    """Samples were excluded because they could not meet a requested depth."""


class ConvergenceWarning(CommStatsWarning):
    """An iterative fit stopped at its iteration limit."""


class ZeroVarianceTaxon(CommStatsWarning):
    """A taxon has identical counts in every sample and cannot be tested."""


_WARNING_FOR_KIND = {
    NoticeKind.DROPPED_SAMPLE: DroppedSamples,
    NoticeKind.CONVERGENCE: ConvergenceWarning,
    NoticeKind.ZERO_VARIANCE_TAXON: ZeroVarianceTaxon,
}


@dataclass(frozen=True)
class Notice:
    """A single non-fatal condition.

    Attributes:
        kind: Category of the condition
        entity: Sample id, taxon id, or analysis name the notice concerns
        message: Human-readable detail
    """

    kind: NoticeKind
    entity: str
    message: str

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "entity": self.entity, "message": self.message}


def emit(notices: Iterable[Notice], summary: str, stacklevel: int = 3) -> None:
    """Issue one user-facing warning summarizing a batch of notices of the same kind."""
    notices = list(notices)
    if not notices:
        return
    category = _WARNING_FOR_KIND.get(notices[0].kind, CommStatsWarning)
    warnings.warn(summary, category, stacklevel=stacklevel)


def notices_to_frame(notices: Iterable[Notice]) -> pd.DataFrame:
    """Flatten notices into a DataFrame with columns kind, entity, message."""
    rows = [n.to_dict() for n in notices]
    return pd.DataFrame(rows, columns=["kind", "entity", "message"])
