"""
Base class for Dataset-to-Dataset transformations.

Rarefaction and taxonomic aggregation both take a Dataset and return a new
one. Wrapping them as Transform objects gives every step a name and a
parameter record, and that record goes into ``Dataset.history``. Two
datasets built in a different order therefore stay distinguishable:
``Rarefy(depth=1000) -> AggregateRank(rank=Genus)`` is not the same value
as ``AggregateRank(rank=Genus) -> Rarefy(depth=1000)``.

Examples:
    >>> from commstats.transforms import Rarefy, AggregateRank
    >>> steps = [Rarefy(depth=1000, seed=1), AggregateRank("Genus")]
    >>> result = dataset
    >>> for step in steps:
    ...     result = step(result)
    >>> result.history
    ('Rarefy(depth=1000, seed=1)', 'AggregateRank(rank=Genus)')
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from commstats.core.dataset import Dataset

__all__ = ['Transform']


class Transform(ABC):
    """
    Abstract base class for pure Dataset transformations.

    Subclasses implement ``apply`` and must never modify the input Dataset.
    Calling the instance runs ``validate`` first and raises ValueError with
    all collected problems if any were found.

    Attributes:
        name: Transformation name used in provenance (e.g. "Rarefy")
        params: Parameters recorded in ``Dataset.history``
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        self.name = name
        self.params = params

    @abstractmethod
    def apply(self, dataset: Dataset) -> Dataset:
        """
        Execute the transformation and return a new Dataset.

        Args:
            dataset: Input Dataset (unchanged)

        Returns:
            New Dataset with this step appended to its history
        """

    def validate(self, dataset: Dataset) -> list[str]:
        """
        Check preconditions before applying.

        Subclasses should call ``super().validate()`` and extend the list.

        Returns:
            List of error messages (empty list = valid)
        """
        errors: list[str] = []
        if dataset.n_samples == 0:
            errors.append("Dataset has no samples")
        if dataset.n_taxa == 0:
            errors.append("Dataset has no taxa")
        return errors

    def __call__(self, dataset: Dataset) -> Dataset:
        errors = self.validate(dataset)
        if errors:
            raise ValueError(f"{self.name} cannot be applied: " + "; ".join(errors))
        return self.apply(dataset)

    def __repr__(self) -> str:
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.name}({params_str})"
