"""Synthetic expression generators for testing.

Builds log-scale genes x cells matrices with well separated "blobs": every
blob expresses its own block of marker genes far above a low background,
so the default DE thresholds separate blobs but never split one.
"""

from typing import List, Optional, Tuple

import numpy as np
import pandas as pd


def create_blob_frame(
    n_blobs: int = 4,
    cells_per_blob: int = 40,
    markers_per_blob: int = 10,
    n_noise_genes: int = 20,
    marker_level: float = 5.0,
    seed: int = 42,
) -> Tuple[pd.DataFrame, pd.Series]:
    """Create a genes x cells expression frame with known blob labels.

    Parameters
    ----------
    n_blobs : int
        Number of cell populations
    cells_per_blob : int
        Cells in every population
    markers_per_blob : int
        Genes specific to every population
    n_noise_genes : int
        Genes with background expression only
    marker_level : float
        Mean marker expression inside its blob
    seed : int
        Random seed for reproducibility

    Returns
    -------
    Tuple[pd.DataFrame, pd.Series]
        Expression (genes x cells) and the true cell -> blob labels (1..n).
    """
    rng = np.random.default_rng(seed)
    n_genes = n_blobs * markers_per_blob + n_noise_genes
    n_cells = n_blobs * cells_per_blob

    values = np.clip(rng.normal(0.2, 0.1, size=(n_genes, n_cells)), 0.0, None)
    truth = np.repeat(np.arange(1, n_blobs + 1), cells_per_blob)
    for b in range(n_blobs):
        genes = slice(b * markers_per_blob, (b + 1) * markers_per_blob)
        cells = truth == b + 1
        values[genes, cells] = rng.normal(marker_level, 0.3, size=(markers_per_blob, cells.sum()))

    gene_names = marker_genes(n_blobs, markers_per_blob) + [f"noise{i}" for i in range(n_noise_genes)]
    cell_names = [f"cell{i:04d}" for i in range(n_cells)]
    frame = pd.DataFrame(values, index=gene_names, columns=cell_names)
    return frame, pd.Series(truth, index=cell_names, name="truth")


def marker_genes(n_blobs: int = 4, markers_per_blob: int = 10, blob: Optional[int] = None) -> List[str]:
    """Names of the marker genes of one blob (1-based) or of every blob."""
    blobs = range(1, n_blobs + 1) if blob is None else [blob]
    return [f"b{b}_m{j}" for b in blobs for j in range(markers_per_blob)]


def purity(assignment: pd.Series, truth: pd.Series) -> float:
    """Fraction of cells whose cluster's majority truth label matches theirs."""
    table = pd.crosstab(assignment, truth.loc[assignment.index])
    return float(table.max(axis=1).sum() / len(assignment))


def block_ratio_counts(
    truth: pd.Series,
    within: int = 9,
    across: int = 1,
    n_runs: int = 10,
):
    """CoClusterCounts whose ratios are within/n_runs inside a blob, across/n_runs between blobs."""
    from scipy import sparse

    from iterclust.core.consensus import CoClusterCounts

    same = truth.to_numpy()[:, None] == truth.to_numpy()[None, :]
    together = np.where(same, within, across)
    np.fill_diagonal(together, n_runs)
    sampled = np.full(together.shape, n_runs)
    return CoClusterCounts(
        truth.index,
        sparse.csr_matrix(together),
        sparse.csr_matrix(sampled),
        n_runs=n_runs,
    )
