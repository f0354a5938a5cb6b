"""Cluster-level aggregate statistics.

Provides per-cluster sums, means and medians of expression, the tau gene
specificity score, and a Pearson correlation that works directly on sparse
matrices.

Matrices are genes x cells: a ``pandas.DataFrame`` or an
``ExpressionMatrix``-like object exposing ``values``, ``genes`` and ``cells``.
"""

from __future__ import annotations

from typing import Any, Tuple, Union

import numpy as np
import pandas as pd
from scipy import sparse

from ..errors import DimensionError, LabelIndexError
from .labels import sorted_labels

ArrayLike = Union[np.ndarray, pd.DataFrame]


def _unpack(mat: Any) -> Tuple[Any, pd.Index, pd.Index]:
    """Return (values, row index, column index) for a labelled matrix."""
    if isinstance(mat, pd.DataFrame):
        return mat.to_numpy(dtype=float), mat.index, mat.columns
    if hasattr(mat, "values") and hasattr(mat, "genes") and hasattr(mat, "cells"):
        return mat.values, mat.genes, mat.cells
    raise DimensionError(
        f"Expected a labelled genes x cells matrix, got {type(mat).__name__}"
    )


def _indicator(cells: pd.Index, assignment: pd.Series) -> Tuple[sparse.csr_matrix, pd.Index]:
    """Sparse 0/1 cells x clusters membership matrix for ``assignment``."""
    positions = cells.get_indexer(assignment.index)
    if (positions < 0).any():
        missing = assignment.index[positions < 0][:5].tolist()
        raise LabelIndexError(f"Assigned cells missing from matrix: {missing}")

    labels = pd.Index(sorted_labels(assignment.values))
    codes = labels.get_indexer(assignment.values)
    indicator = sparse.csr_matrix(
        (np.ones(len(positions)), (positions, codes)),
        shape=(len(cells), len(labels)),
    )
    return indicator, labels


def cluster_sums(mat: Any, assignment: pd.Series) -> pd.DataFrame:
    """Sum expression over the member cells of every cluster.

    Computed as a product against the cell-to-cluster indicator matrix, so
    sparse input stays sparse until the (small) genes x clusters result.

    Parameters
    ----------
    mat : DataFrame or ExpressionMatrix
        Genes x cells expression.
    assignment : pd.Series
        Cell -> cluster labels. Only the assigned cells are summed.

    Returns
    -------
    pd.DataFrame
        Genes x clusters sums, clusters in sorted label order.
    """
    values, genes, cells = _unpack(mat)
    indicator, labels = _indicator(cells, assignment)
    sums = indicator.T @ values.T
    if sparse.issparse(sums):
        sums = sums.toarray()
    return pd.DataFrame(np.asarray(sums).T, index=genes, columns=labels)


def cluster_means(mat: Any, assignment: pd.Series) -> pd.DataFrame:
    """Mean expression per cluster (cluster sums divided by cluster size)."""
    sums = cluster_sums(mat, assignment)
    sizes = assignment.value_counts().reindex(sums.columns).to_numpy(dtype=float)
    return sums / sizes


def cluster_medians(mat: Any, assignment: pd.Series) -> pd.DataFrame:
    """Median expression per cluster, genes x clusters."""
    values, genes, cells = _unpack(mat)
    _, labels = _indicator(cells, assignment)
    medians = np.empty((len(genes), len(labels)))
    for j, label in enumerate(labels):
        members = cells.get_indexer(assignment.index[assignment.values == label])
        block = values[:, members]
        if sparse.issparse(block):
            block = block.toarray()
        medians[:, j] = np.median(np.asarray(block), axis=1)
    return pd.DataFrame(medians, index=genes, columns=labels)


def calc_tau(mat: ArrayLike, by_row: bool = True) -> Union[np.ndarray, pd.Series]:
    """Tau specificity score per row.

    Each row is divided by its maximum, then ``tau = sum(1 - x) / (n - 1)``
    over the n columns. Rows where this is undefined (all zero, or a single
    column) are set to 0. Values near 1 mean expression specific to one
    column (cluster), near 0 uniform expression.

    Parameters
    ----------
    mat : DataFrame or ndarray
        Non-negative matrix, e.g. genes x clusters means.
    by_row : bool
        Score rows (default). If False, score columns.

    Returns
    -------
    pd.Series or np.ndarray
        Tau per row, a Series when given a DataFrame.
    """
    labels = None
    if isinstance(mat, pd.DataFrame):
        labels = mat.index if by_row else mat.columns
        arr = mat.to_numpy(dtype=float)
    else:
        arr = np.asarray(mat, dtype=float)
    if not by_row:
        arr = arr.T

    with np.errstate(divide="ignore", invalid="ignore"):
        normalized = arr / arr.max(axis=1, keepdims=True)
        tau = (1.0 - normalized).sum(axis=1) / (arr.shape[1] - 1)
    tau[~np.isfinite(tau)] = 0.0

    if labels is not None:
        return pd.Series(tau, index=labels, name="tau")
    return tau


def sparse_cor(x: Any) -> np.ndarray:
    """Column-wise Pearson correlation of a (sparse) matrix.

    Only rows holding a non-zero contribute explicitly; the all-zero rows are
    folded into the covariance through a closed-form correction, so the
    matrix is never densified beyond its non-zero rows. Matches
    ``numpy.corrcoef(x, rowvar=False)``.
    """
    if isinstance(x, pd.DataFrame):
        x = x.to_numpy(dtype=float)
    x = sparse.csr_matrix(x, dtype=float)
    n, m = x.shape
    if n < 2:
        raise DimensionError("Correlation needs at least two rows")

    nonzero_rows = np.unique(x.nonzero()[0])
    col_means = np.asarray(x.mean(axis=0)).ravel()
    centered = x[nonzero_rows].toarray() - col_means

    n_zero_rows = n - len(nonzero_rows)
    cov = (centered.T @ centered + np.outer(col_means, col_means) * n_zero_rows) / (n - 1)
    sd = np.sqrt(np.diag(cov))
    with np.errstate(divide="ignore", invalid="ignore"):
        return cov / np.outer(sd, sd)
