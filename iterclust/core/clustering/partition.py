"""Partition collaborators.

A partitioner is any callable ``partitioner(coords) -> Series`` mapping each
cell of a cells x k coordinate frame to a group id. Every partitioner here
is deterministic for a fixed seed.

- LeidenPartitioner: kNN graph + Leiden (scanpy, igraph flavor)
- HierarchicalPartitioner: Ward linkage cut into n groups (scipy)
- AffinityLeidenPartitioner: Leiden on a square cell-cell affinity matrix
- AffinityHierarchicalPartitioner: average linkage on 1 - affinity
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.cluster.hierarchy import fcluster, linkage
from scipy.spatial.distance import squareform

from ...errors import DimensionError
from .config import PartitionConfig


def _single_group(coords: pd.DataFrame) -> pd.Series:
    return pd.Series(np.zeros(len(coords), dtype=int), index=coords.index, name="group")


def _leiden(adata, adjacency, resolution: float, seed: int) -> np.ndarray:
    import scanpy as sc

    sc.tl.leiden(
        adata,
        resolution=resolution,
        random_state=seed,
        key_added="partition",
        adjacency=adjacency,
        flavor="igraph",
        n_iterations=2,
        directed=False,
    )
    return adata.obs["partition"].astype(int).to_numpy()


class LeidenPartitioner:
    """kNN graph on the coordinates followed by Leiden community detection.

    Parameters
    ----------
    config : PartitionConfig, optional
        Partition configuration. If None, uses defaults.
    """

    def __init__(self, config: Optional[PartitionConfig] = None):
        self.config = config or PartitionConfig()

    def __call__(self, coords: pd.DataFrame) -> pd.Series:
        import scanpy as sc
        from anndata import AnnData

        cfg = self.config
        n_cells = len(coords)
        if n_cells < 3 or coords.shape[1] == 0:
            return _single_group(coords)

        values = coords.to_numpy(dtype=float)
        adata = AnnData(np.zeros((n_cells, 1)))
        adata.obsm["X_reduced"] = values
        sc.pp.neighbors(
            adata,
            n_neighbors=min(cfg.neighbors_k, n_cells - 1),
            use_rep="X_reduced",
            random_state=cfg.random_seed,
        )
        labels = _leiden(adata, None, cfg.resolution, cfg.random_seed)
        return pd.Series(labels, index=coords.index, name="group")


class HierarchicalPartitioner:
    """Ward linkage on the coordinates, cut into at most ``n_groups`` groups."""

    def __init__(self, config: Optional[PartitionConfig] = None):
        self.config = config or PartitionConfig(method="hierarchical")

    def __call__(self, coords: pd.DataFrame) -> pd.Series:
        if len(coords) < 2 or coords.shape[1] == 0:
            return _single_group(coords)
        tree = linkage(coords.to_numpy(dtype=float), method="ward")
        labels = fcluster(tree, t=min(self.config.n_groups, len(coords)), criterion="maxclust")
        return pd.Series(labels, index=coords.index, name="group")


def _square_affinity(coords: pd.DataFrame) -> np.ndarray:
    if coords.shape[0] != coords.shape[1]:
        raise DimensionError(
            f"Affinity partitioning needs a square matrix, got {coords.shape}"
        )
    values = np.nan_to_num(coords.to_numpy(dtype=float), nan=0.0)
    values = (values + values.T) / 2.0
    np.fill_diagonal(values, 0.0)
    return values


class AffinityLeidenPartitioner:
    """Leiden on a cell-cell affinity graph (e.g. co-clustering ratios).

    Parameters
    ----------
    resolution : float
        Leiden resolution.
    min_affinity : float
        Edges weaker than this are dropped from the graph.
    seed : int
        Random seed.
    """

    def __init__(self, resolution: float = 1.0, min_affinity: float = 0.1, seed: int = 1337):
        self.resolution = resolution
        self.min_affinity = min_affinity
        self.seed = seed

    def __call__(self, coords: pd.DataFrame) -> pd.Series:
        from anndata import AnnData

        if len(coords) < 3:
            return _single_group(coords)
        values = _square_affinity(coords)
        values[values < self.min_affinity] = 0.0
        adjacency = sparse.csr_matrix(values)
        labels = _leiden(AnnData(np.zeros((len(coords), 1))), adjacency, self.resolution, self.seed)
        return pd.Series(labels, index=coords.index, name="group")


class AffinityHierarchicalPartitioner:
    """Average linkage on ``1 - affinity``, cut at a fixed distance."""

    def __init__(self, cut: float = 0.5):
        self.cut = cut

    def __call__(self, coords: pd.DataFrame) -> pd.Series:
        if len(coords) < 2:
            return _single_group(coords)
        distance = 1.0 - _square_affinity(coords)
        np.fill_diagonal(distance, 0.0)
        tree = linkage(squareform(np.clip(distance, 0.0, 1.0), checks=False), method="average")
        labels = fcluster(tree, t=self.cut, criterion="distance")
        return pd.Series(labels, index=coords.index, name="group")


def make_partitioner(config: Optional[PartitionConfig] = None):
    """Return the partitioner configured by ``config.method``."""
    config = config or PartitionConfig()
    if config.method == "hierarchical":
        return HierarchicalPartitioner(config)
    return LeidenPartitioner(config)
