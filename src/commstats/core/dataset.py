"""
Core data structure for community-abundance data.

Dataset unifies the three tables of an amplicon or metagenomic profiling
study (read counts, taxon classifications, sample covariates) into one
consistency-checked, immutable value.

Biological Context:
    A community profile is a count table:
    - Rows = samples (stool, soil, swab, ...)
    - Columns = taxa (ASVs, OTUs, or named lineages)
    - Values = read counts assigned to each taxon

    Counts are only meaningful next to their annotations: which lineage an
    ASV belongs to (Domain ... Species) and which group a sample was drawn
    from. Analyses that subsample reads or merge taxa must keep all three
    tables aligned, or group labels end up attached to the wrong samples.

Engineering Design:
    - Immutable: count storage is read-only; derivations return new instances
    - Validated: ``build`` rejects mismatched identifier sets and bad counts
    - Aligned: taxonomy rows follow abundance columns and metadata rows
      follow abundance rows, so positional indexing is always safe
    - Provenance: ``history`` records applied transforms in order and
      ``notices`` carries non-fatal conditions raised while deriving

Examples:
    >>> import pandas as pd
    >>> from commstats.core.dataset import build
    >>> abundance = pd.DataFrame(
    ...     [[10, 0, 3], [0, 12, 1]],
    ...     index=["S1", "S2"], columns=["ASV1", "ASV2", "ASV3"],
    ... )
    >>> taxonomy = pd.DataFrame(
    ...     {"Phylum": ["Firmicutes", "Bacteroidota", "Firmicutes"],
    ...      "Genus": ["Blautia", "Bacteroides", None]},
    ...     index=["ASV1", "ASV2", "ASV3"],
    ... )
    >>> samples = pd.DataFrame({"group": ["A", "B"]}, index=["S2", "S1"])
    >>> ds = build(abundance, taxonomy, samples)
    >>> ds.sample_metadata.index.tolist()
    ['S1', 'S2']
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import pandas as pd

from commstats.core.errors import EmptySample, InvalidCount, SchemaMismatch
from commstats.core.notices import Notice

__all__ = ['Dataset', 'build']


class Dataset:
    """
    Immutable container for counts + taxonomy + sample metadata.

    Attributes:
        data: Integer count matrix (samples × taxa), read-only
        sample_ids: Row identifiers
        taxon_ids: Column identifiers
        taxonomy: Rank labels, index equal to taxon_ids, columns ordered
            from broadest to finest rank
        sample_metadata: Sample covariates, index equal to sample_ids
        notices: Non-fatal conditions raised while deriving this dataset
        history: Descriptions of applied transforms, oldest first

    Shape Invariants:
        - data.shape == (len(sample_ids), len(taxon_ids))
        - taxonomy.index equals taxon_ids
        - sample_metadata.index equals sample_ids
        - all counts are non-negative integers

    Use ``build`` to construct from raw tables; the constructor assumes
    already-aligned inputs and only checks shapes.
    """

    def __init__(
        self,
        data: np.ndarray,
        sample_ids: pd.Index,
        taxon_ids: pd.Index,
        taxonomy: pd.DataFrame,
        sample_metadata: pd.DataFrame,
        notices: Sequence[Notice] = (),
        history: Sequence[str] = (),
    ):
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if not isinstance(sample_ids, pd.Index):
            raise TypeError(f"sample_ids must be pd.Index, got {type(sample_ids)}")
        if not isinstance(taxon_ids, pd.Index):
            raise TypeError(f"taxon_ids must be pd.Index, got {type(taxon_ids)}")
        if not isinstance(taxonomy, pd.DataFrame):
            raise TypeError(f"taxonomy must be pd.DataFrame, got {type(taxonomy)}")
        if not isinstance(sample_metadata, pd.DataFrame):
            raise TypeError(f"sample_metadata must be pd.DataFrame, got {type(sample_metadata)}")

        if data.ndim != 2:
            raise ValueError(f"data must be 2D, got shape {data.shape}")
        n_samples, n_taxa = data.shape
        if len(sample_ids) != n_samples:
            raise ValueError(
                f"sample_ids length ({len(sample_ids)}) must match data rows ({n_samples})"
            )
        if len(taxon_ids) != n_taxa:
            raise ValueError(
                f"taxon_ids length ({len(taxon_ids)}) must match data columns ({n_taxa})"
            )
        if not taxonomy.index.equals(taxon_ids):
            raise ValueError("taxonomy.index must match taxon_ids exactly")
        if not sample_metadata.index.equals(sample_ids):
            raise ValueError("sample_metadata.index must match sample_ids exactly")

        data = np.array(data, dtype=np.int64, copy=True)
        data.setflags(write=False)

        self._data = data
        self._sample_ids = sample_ids
        self._taxon_ids = taxon_ids
        self._taxonomy = taxonomy.copy()
        self._sample_metadata = sample_metadata.copy()
        self._notices = tuple(notices)
        self._history = tuple(history)

    @property
    def data(self) -> np.ndarray:
        """Count matrix (samples × taxa), read-only."""
        return self._data

    @property
    def sample_ids(self) -> pd.Index:
        return self._sample_ids

    @property
    def taxon_ids(self) -> pd.Index:
        return self._taxon_ids

    @property
    def taxonomy(self) -> pd.DataFrame:
        """Rank labels per taxon (copy)."""
        return self._taxonomy.copy()

    @property
    def sample_metadata(self) -> pd.DataFrame:
        """Covariates per sample (copy)."""
        return self._sample_metadata.copy()

    @property
    def ranks(self) -> list[str]:
        """Taxonomic ranks from broadest to finest."""
        return list(self._taxonomy.columns)

    @property
    def notices(self) -> tuple[Notice, ...]:
        return self._notices

    @property
    def history(self) -> tuple[str, ...]:
        return self._history

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_samples, n_taxa)."""
        return self._data.shape

    @property
    def n_samples(self) -> int:
        return self._data.shape[0]

    @property
    def n_taxa(self) -> int:
        return self._data.shape[1]

    @property
    def sample_totals(self) -> pd.Series:
        """Total reads per sample."""
        return pd.Series(self._data.sum(axis=1), index=self._sample_ids, name="total")

    def samples(self) -> pd.Index:
        """Sample identifiers in matrix order."""
        return self._sample_ids

    def taxa(self) -> pd.Index:
        """Taxon identifiers in matrix order."""
        return self._taxon_ids

    def counts(self) -> pd.DataFrame:
        """Counts as a writable DataFrame copy (samples × taxa)."""
        return pd.DataFrame(
            np.array(self._data), index=self._sample_ids, columns=self._taxon_ids
        )

    def proportions(self) -> np.ndarray:
        """
        Relative abundances (each row divided by its total).

        Raises:
            EmptySample: If any sample has a total of zero
        """
        totals = self._data.sum(axis=1)
        empty = self._sample_ids[totals == 0]
        if len(empty) > 0:
            raise EmptySample(empty, context="relative abundance")
        return self._data / totals[:, None].astype(float)

    def derive(
        self,
        step: str,
        data: Optional[np.ndarray] = None,
        sample_ids: Optional[pd.Index] = None,
        taxon_ids: Optional[pd.Index] = None,
        taxonomy: Optional[pd.DataFrame] = None,
        sample_metadata: Optional[pd.DataFrame] = None,
        notices: Sequence[Notice] = (),
    ) -> Dataset:
        """
        Return a new Dataset with some components replaced.

        Used by transforms. ``step`` is appended to the history and
        ``notices`` are appended to the inherited notices.
        """
        return Dataset(
            data=self._data if data is None else data,
            sample_ids=self._sample_ids if sample_ids is None else sample_ids,
            taxon_ids=self._taxon_ids if taxon_ids is None else taxon_ids,
            taxonomy=self._taxonomy if taxonomy is None else taxonomy,
            sample_metadata=self._sample_metadata if sample_metadata is None else sample_metadata,
            notices=self._notices + tuple(notices),
            history=self._history + (step,),
        )

    def select_samples(self, mask) -> Dataset:
        """
        Subset to the samples where ``mask`` is True.

        Args:
            mask: Boolean array or Series aligned with sample_ids

        Examples:
            >>> cases = ds.select_samples(ds.sample_metadata["group"] == "case")
        """
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (self.n_samples,):
            raise ValueError(
                f"mask length ({mask.shape[0] if mask.ndim else 0}) must match n_samples ({self.n_samples})"
            )
        return self.derive(
            step=f"SelectSamples(n={int(mask.sum())})",
            data=self._data[mask],
            sample_ids=self._sample_ids[mask],
            sample_metadata=self._sample_metadata.loc[mask],
        )

    def aggregate_to(self, rank: str, top_n: Optional[int] = None) -> Dataset:
        """
        Merge taxa that share a label at ``rank``.

        With ``top_n`` the most abundant ``top_n`` groups are kept and the rest
        are summed into "Other". See ``commstats.transforms.aggregation``.
        """
        from commstats.transforms.aggregation import aggregate, collapse_to_top_n

        if top_n is None:
            return aggregate(self, rank)
        return collapse_to_top_n(self, rank, top_n)

    def rarefy(
        self, depth: Optional[int] = None, seed: Optional[int] = None, n_jobs: int = 1
    ) -> Dataset:
        """
        Subsample every sample to ``depth`` reads without replacement.

        See ``commstats.transforms.rarefaction.rarefy``.
        """
        from commstats.transforms.rarefaction import rarefy

        return rarefy(self, depth=depth, seed=seed, n_jobs=n_jobs)

    def __repr__(self) -> str:
        steps = " -> ".join(self._history) if self._history else "raw"
        return (
            f"Dataset(n_samples={self.n_samples}, n_taxa={self.n_taxa}, "
            f"ranks={self.ranks}, history={steps})"
        )


def _check_unique(index: pd.Index, what: str) -> None:
    if index.has_duplicates:
        dups = index[index.duplicated()].unique().tolist()
        raise SchemaMismatch(f"duplicate {what} identifiers: {dups[:10]}")


def _describe_difference(left: pd.Index, right: pd.Index, left_name: str, right_name: str) -> str:
    only_left = left.difference(right).tolist()
    only_right = right.difference(left).tolist()
    parts = []
    if only_left:
        parts.append(f"{len(only_left)} only in {left_name} (e.g. {only_left[:5]})")
    if only_right:
        parts.append(f"{len(only_right)} only in {right_name} (e.g. {only_right[:5]})")
    return "; ".join(parts)


def _validate_counts(abundance: pd.DataFrame) -> np.ndarray:
    values = abundance.apply(pd.to_numeric, errors="coerce").to_numpy(dtype=float)

    bad = ~np.isfinite(values)
    if bad.any():
        r, c = np.argwhere(bad)[0]
        raise InvalidCount(
            f"{int(bad.sum())} missing or non-numeric counts "
            f"(first at sample {abundance.index[r]!r}, taxon {abundance.columns[c]!r})"
        )

    negative = values < 0
    if negative.any():
        r, c = np.argwhere(negative)[0]
        raise InvalidCount(
            f"{int(negative.sum())} negative counts "
            f"(first at sample {abundance.index[r]!r}, taxon {abundance.columns[c]!r}: {values[r, c]})"
        )

    fractional = values != np.floor(values)
    if fractional.any():
        r, c = np.argwhere(fractional)[0]
        raise InvalidCount(
            f"{int(fractional.sum())} non-integral counts "
            f"(first at sample {abundance.index[r]!r}, taxon {abundance.columns[c]!r}: {values[r, c]})"
        )

    return values.astype(np.int64)


def build(
    abundance: pd.DataFrame,
    taxonomy: pd.DataFrame,
    samples: pd.DataFrame,
) -> Dataset:
    """
    Validate and align the three input tables into a Dataset.

    Args:
        abundance: Counts, samples as rows and taxa as columns
        taxonomy: Rank labels, taxa as rows and ranks (broadest first) as columns
        samples: Covariates, samples as rows

    Returns:
        Dataset whose taxonomy and metadata rows follow the abundance ordering

    Raises:
        SchemaMismatch: If sample ids of abundance and metadata differ, taxon
            ids of abundance and taxonomy differ, or any id is duplicated
        InvalidCount: If any count is negative, non-integral or missing

    Examples:
        >>> ds = build(abundance, taxonomy, samples)
        >>> ds.shape
        (2, 3)
    """
    if not isinstance(abundance, pd.DataFrame):
        raise TypeError(f"abundance must be pd.DataFrame, got {type(abundance)}")
    if not isinstance(taxonomy, pd.DataFrame):
        raise TypeError(f"taxonomy must be pd.DataFrame, got {type(taxonomy)}")
    if not isinstance(samples, pd.DataFrame):
        raise TypeError(f"samples must be pd.DataFrame, got {type(samples)}")

    if abundance.shape[0] == 0 or abundance.shape[1] == 0:
        raise SchemaMismatch(f"abundance table is empty (shape {abundance.shape})")

    _check_unique(abundance.index, "sample")
    _check_unique(abundance.columns, "taxon")
    _check_unique(taxonomy.index, "taxonomy")
    _check_unique(samples.index, "metadata sample")

    sample_ids = pd.Index(abundance.index)
    taxon_ids = pd.Index(abundance.columns)

    if set(sample_ids) != set(samples.index):
        raise SchemaMismatch(
            "sample identifiers differ between abundance and metadata: "
            + _describe_difference(sample_ids, samples.index, "abundance", "metadata")
        )
    if set(taxon_ids) != set(taxonomy.index):
        raise SchemaMismatch(
            "taxon identifiers differ between abundance and taxonomy: "
            + _describe_difference(taxon_ids, taxonomy.index, "abundance", "taxonomy")
        )

    data = _validate_counts(abundance)

    return Dataset(
        data=data,
        sample_ids=sample_ids,
        taxon_ids=taxon_ids,
        taxonomy=taxonomy.loc[taxon_ids],
        sample_metadata=samples.loc[sample_ids],
    )
