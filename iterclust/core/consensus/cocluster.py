"""Co-clustering counts over a fixed cell universe.

For every cell pair the accumulator records how often both cells were
sampled in the same run (``co_sample``) and how often they also landed in
the same cluster (``co_cluster``). Counts from independent runs combine
with ``+``, which is commutative and associative, so runs can be summed in
any order.

One run of f * n sampled cells stores (f * n)^2 co-sampled pairs, so the
sparse matrices fill up fast. Bootstrap workers return assignments only
and counts are accumulated in the main process, keeping memory at one n x n
pair of matrices plus one run.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import DimensionError, LabelIndexError
from ..clustering.assignment import as_cell_index


def _membership(positions: np.ndarray, codes: np.ndarray, n_rows: int, n_cols: int) -> sparse.csr_matrix:
    return sparse.csr_matrix(
        (np.ones(len(positions), dtype=np.int64), (positions, codes)),
        shape=(n_rows, n_cols),
    )


class CoClusterCounts:
    """Symmetric co-clustering and co-sampling counts.

    Parameters
    ----------
    cells : Sequence
        The cell universe; matrix rows and columns follow this order.
    co_cluster : scipy.sparse matrix, optional
        n x n counts of runs in which two cells shared a cluster.
    co_sample : scipy.sparse matrix, optional
        n x n counts of runs in which two cells were both sampled.
    n_runs : int
        Number of runs accumulated.
    """

    def __init__(
        self,
        cells: Sequence[Any],
        co_cluster: Optional[sparse.spmatrix] = None,
        co_sample: Optional[sparse.spmatrix] = None,
        n_runs: int = 0,
    ):
        self.cells = as_cell_index(cells)
        n = len(self.cells)
        self.co_cluster = sparse.csr_matrix(
            co_cluster if co_cluster is not None else (n, n), dtype=np.int64
        )
        self.co_sample = sparse.csr_matrix(
            co_sample if co_sample is not None else (n, n), dtype=np.int64
        )
        for name, mat in (("co_cluster", self.co_cluster), ("co_sample", self.co_sample)):
            if mat.shape != (n, n):
                raise DimensionError(f"{name} has shape {mat.shape}, expected {(n, n)}")
        self.n_runs = n_runs

    @classmethod
    def from_assignment(cls, assignment: pd.Series, cells: Sequence[Any]) -> "CoClusterCounts":
        """Counts contributed by a single run.

        Parameters
        ----------
        assignment : pd.Series
            Sampled cell -> cluster labels of the run.
        cells : Sequence
            The full cell universe.
        """
        universe = as_cell_index(cells)
        positions = universe.get_indexer(assignment.index)
        if (positions < 0).any():
            missing = assignment.index[positions < 0][:5].tolist()
            raise LabelIndexError(f"Assigned cells outside the cell universe: {missing}")

        n = len(universe)
        codes, _ = pd.factorize(assignment.to_numpy())
        member = _membership(positions, codes, n, int(codes.max()) + 1 if len(codes) else 0)
        sampled = _membership(positions, np.zeros(len(positions), dtype=np.int64), n, 1)
        return cls(universe, member @ member.T, sampled @ sampled.T, n_runs=1)

    @property
    def n_cells(self) -> int:
        return len(self.cells)

    def __add__(self, other: "CoClusterCounts") -> "CoClusterCounts":
        if not isinstance(other, CoClusterCounts):
            return NotImplemented
        if not self.cells.equals(other.cells):
            raise DimensionError("Cannot add co-clustering counts over different cell universes")
        return CoClusterCounts(
            self.cells,
            self.co_cluster + other.co_cluster,
            self.co_sample + other.co_sample,
            n_runs=self.n_runs + other.n_runs,
        )

    def __radd__(self, other: Any) -> "CoClusterCounts":
        # allows sum(counts_list) with the default start of 0
        if isinstance(other, int) and other == 0:
            return self
        return NotImplemented

    def _positions(self, cells: Optional[Sequence[Any]]) -> np.ndarray:
        if cells is None:
            return np.arange(self.n_cells)
        labels = list(cells)
        positions = self.cells.get_indexer(labels)
        if (positions < 0).any():
            missing = [labels[i] for i in np.flatnonzero(positions < 0)[:5]]
            raise LabelIndexError(f"Cells not in the co-clustering universe: {missing}")
        return positions

    def ratio(self, cells: Optional[Sequence[Any]] = None) -> np.ndarray:
        """Dense co_cluster / co_sample over ``cells``; NaN where never co-sampled."""
        pos = self._positions(cells)
        together = self.co_cluster[pos][:, pos].toarray().astype(float)
        sampled = self.co_sample[pos][:, pos].toarray().astype(float)
        with np.errstate(divide="ignore", invalid="ignore"):
            ratio = together / sampled
        ratio[sampled == 0] = np.nan
        return ratio

    def ratio_frame(self, cells: Optional[Sequence[Any]] = None) -> pd.DataFrame:
        """Co-clustering ratio as a labelled cells x cells DataFrame."""
        labels = self.cells if cells is None else pd.Index(list(cells))
        return pd.DataFrame(self.ratio(cells), index=labels, columns=labels)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, CoClusterCounts):
            return NotImplemented
        return (
            self.cells.equals(other.cells)
            and (self.co_cluster != other.co_cluster).nnz == 0
            and (self.co_sample != other.co_sample).nnz == 0
        )

    __hash__ = None

    def __repr__(self) -> str:
        return f"CoClusterCounts({self.n_cells} cells, {self.n_runs} runs)"
