"""Unit tests for cluster aggregate statistics."""

import pytest
import numpy as np
import pandas as pd
from scipy import sparse

from iterclust.core.clustering import ExpressionMatrix
from iterclust.errors import DimensionError, LabelIndexError
from iterclust.utils import calc_tau, cluster_means, cluster_medians, cluster_sums, sparse_cor


@pytest.fixture
def tiny_frame():
    """3 genes x 5 cells with hand-checkable values."""
    return pd.DataFrame(
        [[1.0, 2.0, 3.0, 0.0, 0.0],
         [0.0, 0.0, 1.0, 4.0, 6.0],
         [5.0, 5.0, 5.0, 5.0, 5.0]],
        index=["g1", "g2", "g3"],
        columns=["c1", "c2", "c3", "c4", "c5"],
    )


@pytest.fixture
def tiny_assignment():
    return pd.Series({"c1": 1, "c2": 1, "c3": 1, "c4": 2, "c5": 2})


class TestClusterSums:
    """Tests for cluster_sums, cluster_means and cluster_medians."""

    def test_sums(self, tiny_frame, tiny_assignment):
        """Sums over member cells, clusters in sorted order."""
        sums = cluster_sums(tiny_frame, tiny_assignment)
        assert list(sums.columns) == [1, 2]
        np.testing.assert_array_equal(sums[1].to_numpy(), [6.0, 1.0, 15.0])
        np.testing.assert_array_equal(sums[2].to_numpy(), [0.0, 10.0, 10.0])

    def test_means_divide_by_size(self, tiny_frame, tiny_assignment):
        """Means are sums divided by cluster size."""
        means = cluster_means(tiny_frame, tiny_assignment)
        np.testing.assert_allclose(means[1].to_numpy(), [2.0, 1.0 / 3.0, 5.0])
        np.testing.assert_allclose(means[2].to_numpy(), [0.0, 5.0, 5.0])

    def test_medians(self, tiny_frame, tiny_assignment):
        """Medians per cluster."""
        medians = cluster_medians(tiny_frame, tiny_assignment)
        np.testing.assert_array_equal(medians[1].to_numpy(), [2.0, 0.0, 5.0])
        np.testing.assert_array_equal(medians[2].to_numpy(), [0.0, 5.0, 5.0])

    def test_sparse_matches_dense(self, tiny_frame, tiny_assignment):
        """Sparse expression gives the same sums as dense."""
        expr = ExpressionMatrix(sparse.csr_matrix(tiny_frame.to_numpy()), tiny_frame.index, tiny_frame.columns)
        pd.testing.assert_frame_equal(cluster_sums(expr, tiny_assignment), cluster_sums(tiny_frame, tiny_assignment))

    def test_sums_additive_over_clusters(self, blob_expr, blob_truth):
        """Summing every cluster's sum gives the total expression per gene."""
        sums = cluster_sums(blob_expr, blob_truth)
        np.testing.assert_allclose(sums.sum(axis=1).to_numpy(), blob_expr.dense().sum(axis=1))

    def test_subset_assignment(self, tiny_frame):
        """Only assigned cells contribute."""
        sums = cluster_sums(tiny_frame, pd.Series({"c4": "x", "c5": "x"}))
        np.testing.assert_array_equal(sums["x"].to_numpy(), [0.0, 10.0, 10.0])

    def test_unknown_cell_raises(self, tiny_frame):
        """Assigned cells missing from the matrix raise LabelIndexError."""
        with pytest.raises(LabelIndexError):
            cluster_sums(tiny_frame, pd.Series({"c1": 1, "nope": 2}))


class TestCalcTau:
    """Tests for the tau specificity score."""

    def test_bounds_and_extremes(self):
        """Uniform rows score 0, single-column expression scores 1."""
        mat = np.array([[3.0, 3.0, 3.0], [0.0, 4.0, 0.0], [1.0, 2.0, 4.0]])
        tau = calc_tau(mat)
        assert tau[0] == pytest.approx(0.0)
        assert tau[1] == pytest.approx(1.0)
        assert 0.0 <= tau[2] <= 1.0
        assert tau[2] == pytest.approx(((1 - 0.25) + (1 - 0.5) + 0) / 2)

    def test_zero_row_is_zero(self):
        """All-zero rows are undefined and set to 0."""
        tau = calc_tau(np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]]))
        np.testing.assert_array_equal(tau, [0.0, 1.0])

    def test_frame_by_column(self):
        """DataFrame input returns a labelled Series; by_row=False scores columns."""
        frame = pd.DataFrame([[1.0, 5.0], [0.0, 5.0]], index=["g1", "g2"], columns=["k1", "k2"])
        tau = calc_tau(frame, by_row=False)
        assert list(tau.index) == ["k1", "k2"]
        assert tau["k1"] == pytest.approx(1.0)
        assert tau["k2"] == pytest.approx(0.0)


class TestSparseCor:
    """Tests for sparse_cor."""

    def test_matches_numpy(self):
        """Correlation of a sparse matrix equals numpy.corrcoef on the dense copy."""
        rng = np.random.default_rng(0)
        dense = rng.poisson(0.5, size=(50, 6)).astype(float)
        dense[10:20] = 0.0
        np.testing.assert_allclose(
            sparse_cor(sparse.csr_matrix(dense)),
            np.corrcoef(dense, rowvar=False),
            atol=1e-10,
        )

    def test_frame_input(self):
        """DataFrame input is accepted."""
        frame = pd.DataFrame({"a": [1.0, 2.0, 3.0, 0.0], "b": [2.0, 4.0, 6.0, 0.0]})
        np.testing.assert_allclose(sparse_cor(frame), np.ones((2, 2)))

    def test_single_row_raises(self):
        """Fewer than two rows cannot be correlated."""
        with pytest.raises(DimensionError):
            sparse_cor(np.array([[1.0, 2.0]]))
