"""Read-only genes x cells expression matrix with label lookup.

The matrix holds log-scale expression (e.g. log2(CPM + 1)) as a dense array
or a scipy sparse matrix. Gene and cell names are kept as ``pandas.Index``
objects, which act as the label -> position maps for every submatrix read.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import DimensionError, LabelIndexError

ArrayOrSparse = Union[np.ndarray, sparse.spmatrix]


class ExpressionMatrix:
    """Immutable genes x cells expression matrix.

    Parameters
    ----------
    values : ndarray or scipy.sparse matrix
        Expression values, shape (n_genes, n_cells).
    genes : Sequence
        Gene names (row labels), unique.
    cells : Sequence
        Cell identifiers (column labels), unique.

    Raises
    ------
    DimensionError
        If the label lengths do not match the value shape or labels repeat.
    """

    def __init__(self, values: ArrayOrSparse, genes: Sequence[Any], cells: Sequence[Any]):
        if sparse.issparse(values):
            # Column slicing by cell is the dominant access pattern.
            values = sparse.csc_matrix(values, dtype=float)
        else:
            values = np.asarray(values, dtype=float)
            if values.ndim != 2:
                raise DimensionError(
                    f"Expression matrix must be 2-D, got {values.ndim} dimensions"
                )
            values = values.copy()
            values.setflags(write=False)

        genes = pd.Index(genes)
        cells = pd.Index(cells)
        if values.shape != (len(genes), len(cells)):
            raise DimensionError(
                f"Expression shape {values.shape} does not match "
                f"{len(genes)} genes x {len(cells)} cells"
            )
        if not genes.is_unique:
            raise DimensionError("Gene names must be unique")
        if not cells.is_unique:
            raise DimensionError("Cell identifiers must be unique")

        self._values = values
        self.genes = genes
        self.cells = cells

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> "ExpressionMatrix":
        """Build from a genes x cells DataFrame."""
        return cls(frame.to_numpy(dtype=float), frame.index, frame.columns)

    @classmethod
    def from_anndata(cls, adata: Any, layer: Optional[str] = None) -> "ExpressionMatrix":
        """Build from an AnnData object (cells x genes), transposing on load.

        Parameters
        ----------
        adata : AnnData
            Input object; ``obs_names`` become cells, ``var_names`` genes.
        layer : str, optional
            Layer to read. Uses ``adata.X`` when None.
        """
        if layer is not None:
            if layer not in adata.layers:
                raise LabelIndexError(
                    f"Layer '{layer}' not found (available: {list(adata.layers.keys())})"
                )
            base = adata.layers[layer]
        else:
            base = adata.X
        values = base.T if sparse.issparse(base) else np.asarray(base).T
        return cls(values, adata.var_names, adata.obs_names)

    @property
    def shape(self):
        return self._values.shape

    @property
    def n_genes(self) -> int:
        return len(self.genes)

    @property
    def n_cells(self) -> int:
        return len(self.cells)

    @property
    def is_sparse(self) -> bool:
        return sparse.issparse(self._values)

    @property
    def values(self) -> ArrayOrSparse:
        """Underlying value matrix (read-only for dense input)."""
        return self._values

    def gene_positions(self, genes: Sequence[Any]) -> np.ndarray:
        return _positions(self.genes, genes, "gene")

    def cell_positions(self, cells: Sequence[Any]) -> np.ndarray:
        return _positions(self.cells, cells, "cell")

    def slice(
        self,
        genes: Optional[Sequence[Any]] = None,
        cells: Optional[Sequence[Any]] = None,
    ) -> ArrayOrSparse:
        """Return the raw value block for the given genes and cells."""
        block = self._values
        if cells is not None:
            block = block[:, self.cell_positions(cells)]
        if genes is not None:
            block = block[self.gene_positions(genes), :]
        return block

    def dense(
        self,
        genes: Optional[Sequence[Any]] = None,
        cells: Optional[Sequence[Any]] = None,
    ) -> np.ndarray:
        """Return a dense genes x cells block."""
        block = self.slice(genes, cells)
        if sparse.issparse(block):
            return block.toarray()
        return np.array(block, copy=True)

    def submatrix(
        self,
        genes: Optional[Sequence[Any]] = None,
        cells: Optional[Sequence[Any]] = None,
    ) -> "ExpressionMatrix":
        """Return a new ExpressionMatrix restricted to genes and cells."""
        return ExpressionMatrix(
            self.slice(genes, cells),
            self.genes if genes is None else pd.Index(genes),
            self.cells if cells is None else pd.Index(cells),
        )

    def cell_frame(
        self,
        cells: Optional[Sequence[Any]] = None,
        genes: Optional[Sequence[Any]] = None,
    ) -> pd.DataFrame:
        """Return a dense cells x genes DataFrame (the orientation reducers take)."""
        block = self.dense(genes, cells)
        return pd.DataFrame(
            block.T,
            index=self.cells if cells is None else pd.Index(cells),
            columns=self.genes if genes is None else pd.Index(genes),
        )

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.dense(), index=self.genes, columns=self.cells)

    def __repr__(self) -> str:
        kind = "sparse" if self.is_sparse else "dense"
        return f"ExpressionMatrix({self.n_genes} genes x {self.n_cells} cells, {kind})"


def _positions(index: pd.Index, labels: Sequence[Any], kind: str) -> np.ndarray:
    labels = list(labels)
    positions = index.get_indexer(labels)
    if (positions < 0).any():
        missing = [labels[i] for i in np.flatnonzero(positions < 0)[:5]]
        raise LabelIndexError(
            f"{int((positions < 0).sum())} {kind} label(s) not found: {missing}"
        )
    return positions
