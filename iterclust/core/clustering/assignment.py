"""Cell sets and cell -> cluster assignments.

A cell set is an ordered ``pandas.Index`` of unique cell ids. An assignment
is a ``pandas.Series`` indexed by cell id whose values are cluster ids.
Engines normalize assignments to contiguous integers 1..k before returning.
"""

from __future__ import annotations

from typing import Any, Dict, Hashable, Iterable, Mapping, Optional, Sequence, Union

import pandas as pd

from ...errors import DimensionError
from ...utils.labels import sorted_labels

AssignmentLike = Union[pd.Series, Mapping[Hashable, Any]]


def as_cell_index(cells: Iterable[Any]) -> pd.Index:
    """Return cells as a ``pandas.Index``, rejecting duplicates."""
    index = cells if isinstance(cells, pd.Index) else pd.Index(list(cells))
    if not index.is_unique:
        dupes = index[index.duplicated()].unique()[:5].tolist()
        raise DimensionError(f"Cell set contains duplicate ids: {dupes}")
    return index


def as_assignment(
    labels: Union[AssignmentLike, Sequence[Any]],
    cells: Optional[Sequence[Any]] = None,
) -> pd.Series:
    """Coerce labels into a cell-indexed Series.

    Parameters
    ----------
    labels : Series, Mapping, or Sequence
        Cluster labels. A plain sequence requires ``cells``.
    cells : Sequence, optional
        Cell ids for a plain label sequence, or a subset to select from a
        Series/Mapping.

    Raises
    ------
    DimensionError
        If lengths differ, cells repeat, or requested cells lack a label.
    """
    if isinstance(labels, pd.Series):
        series = labels.copy()
    elif isinstance(labels, Mapping):
        series = pd.Series(dict(labels))
    else:
        if cells is None:
            raise DimensionError("A plain label sequence requires matching cell ids")
        values = list(labels)
        if len(values) != len(cells):
            raise DimensionError(
                f"Got {len(values)} labels for {len(cells)} cells"
            )
        return pd.Series(values, index=as_cell_index(cells), name="cluster")

    as_cell_index(series.index)
    if cells is not None:
        cells = as_cell_index(cells)
        missing = cells.difference(series.index)
        if len(missing):
            raise DimensionError(
                f"{len(missing)} cells have no cluster label: {missing[:5].tolist()}"
            )
        series = series.loc[cells]
    if series.isna().any():
        raise DimensionError("Assignment contains missing cluster labels")
    series.name = "cluster"
    return series


def normalize_labels(assignment: pd.Series) -> pd.Series:
    """Relabel clusters to contiguous integers 1..k in sorted label order."""
    mapping = {label: i + 1 for i, label in enumerate(sorted_labels(assignment.values))}
    normalized = assignment.map(mapping).astype(int)
    normalized.name = "cluster"
    return normalized


def cluster_members(assignment: pd.Series) -> Dict[Any, pd.Index]:
    """Return ``{cluster: Index of member cells}`` in sorted label order."""
    groups = assignment.groupby(assignment.values, sort=False).groups
    return {label: pd.Index(groups[label]) for label in sorted_labels(groups.keys())}


def cluster_sizes(assignment: pd.Series) -> pd.Series:
    counts = assignment.value_counts()
    return counts.reindex(sorted_labels(counts.index))
