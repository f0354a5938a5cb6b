"""Unit tests for the reduction and partition collaborators."""

import pytest
import numpy as np
import pandas as pd

from iterclust.core.clustering import (
    AffinityHierarchicalPartitioner,
    AffinityLeidenPartitioner,
    HierarchicalPartitioner,
    LeidenPartitioner,
    PartitionConfig,
    PCAReducer,
    ReductionConfig,
    remove_nuisance_dimensions,
)
from iterclust.errors import DimensionError


def _two_cluster_coords(n=30, seed=0):
    rng = np.random.default_rng(seed)
    values = np.vstack([rng.normal(0, 0.1, (n, 3)), rng.normal(5, 0.1, (n, 3))])
    index = [f"c{i}" for i in range(2 * n)]
    return pd.DataFrame(values, index=index, columns=["PC1", "PC2", "PC3"])


def _block_affinity(sizes=(10, 12), within=0.95, across=0.02):
    labels = np.repeat(np.arange(len(sizes)), sizes)
    values = np.where(labels[:, None] == labels[None, :], within, across)
    cells = [f"c{i}" for i in range(len(labels))]
    return pd.DataFrame(values, index=cells, columns=cells), labels


class TestNuisanceRemoval:
    """Tests for eigen-removal of nuisance-correlated dimensions."""

    def test_correlated_dimension_dropped(self):
        """A dimension tracking a batch covariate is removed."""
        coords = _two_cluster_coords()
        batch = pd.DataFrame({"batch": np.repeat(["A", "B"], 30)}, index=coords.index)
        noise = np.random.default_rng(1).normal(size=60)
        coords = coords.assign(PC1=noise)
        kept = remove_nuisance_dimensions(coords, batch, removal_threshold=0.7)
        assert list(kept.columns) == ["PC1"]

    def test_numeric_covariate(self):
        """Numeric covariates are correlated directly."""
        coords = _two_cluster_coords()
        depth = pd.DataFrame({"depth": coords["PC2"] * 2.0 + 1.0})
        kept = remove_nuisance_dimensions(coords[["PC2"]], depth, removal_threshold=0.7)
        assert kept.shape[1] == 0

    def test_no_nuisance_is_identity(self):
        """Without covariates the coordinates are returned unchanged."""
        coords = _two_cluster_coords()
        assert remove_nuisance_dimensions(coords, None, 0.7) is coords

    def test_missing_cells_raise(self):
        """Covariates must cover every cell."""
        coords = _two_cluster_coords()
        batch = pd.DataFrame({"batch": ["A"] * 10}, index=coords.index[:10])
        with pytest.raises(DimensionError):
            remove_nuisance_dimensions(coords, batch, 0.7)


class TestPCAReducer:
    """Tests for PCAReducer."""

    def test_output_shape(self, blob_expr):
        """Coordinates keep the cell index and are capped at n_pcs."""
        sub = blob_expr.cell_frame()
        coords = PCAReducer(ReductionConfig(n_pcs=5))(sub)
        assert coords.shape == (blob_expr.n_cells, 5)
        assert coords.index.equals(sub.index)
        assert list(coords.columns) == ["PC1", "PC2", "PC3", "PC4", "PC5"]

    def test_constant_input_has_no_dimensions(self):
        """A constant matrix yields zero dimensions."""
        sub = pd.DataFrame(np.ones((10, 4)), index=[f"c{i}" for i in range(10)])
        assert PCAReducer()(sub).shape == (10, 0)

    def test_deterministic(self, blob_expr):
        """Repeated runs give identical coordinates."""
        sub = blob_expr.cell_frame()
        reducer = PCAReducer(ReductionConfig(n_pcs=4))
        pd.testing.assert_frame_equal(reducer(sub), reducer(sub))


class TestPartitioners:
    """Tests for the partition collaborators."""

    def test_hierarchical_two_groups(self):
        """Ward cut recovers two well separated groups."""
        coords = _two_cluster_coords()
        labels = HierarchicalPartitioner(PartitionConfig(method="hierarchical", n_groups=2))(coords)
        assert labels.nunique() == 2
        assert labels.iloc[:30].nunique() == 1
        assert labels.iloc[30:].nunique() == 1

    def test_leiden_two_groups(self):
        """Leiden on a kNN graph recovers two well separated groups."""
        coords = _two_cluster_coords()
        labels = LeidenPartitioner(PartitionConfig(neighbors_k=10))(coords)
        assert labels.index.equals(coords.index)
        assert set(labels.iloc[:30]).isdisjoint(set(labels.iloc[30:]))

    def test_leiden_tiny_input_single_group(self):
        """Fewer than three cells form a single group."""
        coords = _two_cluster_coords(n=1)
        assert LeidenPartitioner()(coords).nunique() == 1

    def test_affinity_hierarchical_blocks(self):
        """Average linkage on 1 - affinity splits block structure."""
        affinity, truth = _block_affinity()
        labels = AffinityHierarchicalPartitioner(cut=0.5)(affinity)
        assert labels.nunique() == 2
        assert labels.to_numpy()[truth == 0].tolist() == [labels.iloc[0]] * 10
        assert labels.to_numpy()[truth == 1].tolist() == [labels.iloc[-1]] * 12

    def test_affinity_leiden_blocks(self):
        """Leiden on the affinity graph splits block structure."""
        affinity, truth = _block_affinity()
        labels = AffinityLeidenPartitioner(seed=1)(affinity)
        assert labels.nunique() == 2
        assert set(labels.to_numpy()[truth == 0]).isdisjoint(set(labels.to_numpy()[truth == 1]))

    def test_affinity_requires_square(self):
        """Affinity partitioners need a square matrix."""
        with pytest.raises(DimensionError):
            AffinityHierarchicalPartitioner()(_two_cluster_coords())
