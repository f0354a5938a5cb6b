"""Unit tests for DE testing and cluster-pair separability."""

import pytest
import numpy as np
import pandas as pd

from iterclust.core.clustering import (
    DEParam,
    DERunner,
    LinearModelDETest,
    assess_separability,
    de_score,
)
from iterclust.errors import CollaboratorError
from tests.fixtures import marker_genes


def _blob_cells(truth, blob):
    return list(truth.index[truth == blob])


class TestLinearModelDETest:
    """Tests for the default DE collaborator."""

    def test_table_columns(self, blob_expr, blob_truth):
        """The table has one row per gene and the expected columns."""
        table = LinearModelDETest()(blob_expr, _blob_cells(blob_truth, 1), _blob_cells(blob_truth, 2))
        assert list(table.columns) == ["pval", "padj", "lfc", "q1", "q2"]
        assert len(table) == blob_expr.n_genes

    def test_marker_genes_significant(self, blob_expr, blob_truth):
        """Blob 1 markers are strongly up in blob 1 versus blob 2."""
        table = LinearModelDETest()(blob_expr, _blob_cells(blob_truth, 1), _blob_cells(blob_truth, 2))
        markers = table.loc[marker_genes(4, 10, blob=1)]
        assert (markers["lfc"] > 4).all()
        assert (markers["padj"] < 1e-10).all()
        assert (markers["q1"] == 1.0).all()
        assert (markers["q2"] == 0.0).all()

    def test_constant_gene_not_significant(self, blob_expr, blob_truth):
        """Genes without variance get p = 1."""
        frame = blob_expr.to_frame()
        frame.loc["noise0"] = 0.0
        from iterclust.core.clustering import ExpressionMatrix

        expr = ExpressionMatrix.from_frame(frame)
        table = LinearModelDETest()(expr, _blob_cells(blob_truth, 1), _blob_cells(blob_truth, 2))
        assert table.loc["noise0", "pval"] == 1.0

    def test_empty_group_raises(self, blob_expr, blob_truth):
        """Both groups must be non-empty."""
        with pytest.raises(ValueError):
            LinearModelDETest()(blob_expr, [], _blob_cells(blob_truth, 2))


class TestDEScore:
    """Tests for de_score and threshold composition."""

    def test_score_sums_capped_values(self):
        """Score is the capped -log10(padj) sum over passing genes."""
        table = pd.DataFrame(
            {
                "pval": [1e-30, 1e-5, 0.5],
                "padj": [1e-30, 1e-5, 0.5],
                "lfc": [3.0, -2.0, 3.0],
                "q1": [0.9, 0.0, 0.9],
                "q2": [0.0, 0.8, 0.0],
            },
            index=["a", "b", "c"],
        )
        score, passing = de_score(table, DEParam())
        assert score == pytest.approx(20.0 + 5.0)
        assert list(passing.index) == ["a", "b"]

    def test_q_diff_filters_shared_genes(self):
        """Genes detected in both groups fail the q_diff threshold."""
        table = pd.DataFrame(
            {"pval": [1e-8], "padj": [1e-8], "lfc": [2.0], "q1": [0.9], "q2": [0.8]},
            index=["shared"],
        )
        score, passing = de_score(table, DEParam())
        assert score == 0.0
        assert passing.empty


class TestAssessSeparability:
    """Tests for assess_separability."""

    def test_distinct_blobs_separable(self, blob_expr, blob_truth):
        """Different blobs are separable with default thresholds."""
        result = assess_separability(
            _blob_cells(blob_truth, 1), _blob_cells(blob_truth, 2), blob_expr, DEParam()
        )
        assert result.is_separable
        assert result.score > 150
        assert result.n_up == 10
        assert result.n_down == 10
        assert set(result.passing_genes) == set(marker_genes(4, 10, blob=1) + marker_genes(4, 10, blob=2))

    def test_identical_groups_not_separable(self, blob_expr, blob_truth):
        """A group tested against itself is never separable."""
        cells = _blob_cells(blob_truth, 1)
        result = assess_separability(cells, list(reversed(cells)), blob_expr, DEParam())
        assert not result.is_separable
        assert result.score == 0.0

    def test_same_blob_halves_not_separable(self, blob_expr, blob_truth):
        """Two halves of one blob are not separable."""
        cells = _blob_cells(blob_truth, 3)
        result = assess_separability(cells[:20], cells[20:], blob_expr, DEParam())
        assert not result.is_separable
        assert result.passing_genes == []

    def test_collaborator_failure_wrapped(self, blob_expr, blob_truth):
        """Exceptions inside the DE test become CollaboratorError."""
        def broken(expr, a, b, low_th=1.0):
            raise RuntimeError("boom")

        with pytest.raises(CollaboratorError, match="boom"):
            assess_separability(
                _blob_cells(blob_truth, 1), _blob_cells(blob_truth, 2), blob_expr, DEParam(), broken
            )

    def test_malformed_table_raises(self, blob_expr, blob_truth):
        """A DE table missing columns raises CollaboratorError."""
        def partial(expr, a, b, low_th=1.0):
            return pd.DataFrame({"pval": np.ones(expr.n_genes)}, index=expr.genes)

        with pytest.raises(CollaboratorError):
            assess_separability(
                _blob_cells(blob_truth, 1), _blob_cells(blob_truth, 2), blob_expr, DEParam(), partial
            )


class TestDERunner:
    """Tests for all-pairs scoring."""

    def test_score_all_pairs(self, blob_expr, blob_truth):
        """Every blob pair is separable and the matrices are symmetric."""
        result = DERunner(DEParam()).score_all_pairs(blob_expr, blob_truth, n_markers_per_pair=5)
        assert list(result.scores.index) == ["1", "2", "3", "4"]
        np.testing.assert_array_equal(result.scores.to_numpy(), result.scores.to_numpy().T)
        off_diagonal = ~np.eye(4, dtype=bool)
        assert (result.separable.to_numpy()[off_diagonal] == 1.0).all()
        assert result.scores.loc["1", "2"] > 150
        assert set(result.markers) <= set(marker_genes(4, 10))

    def test_threads_match_sequential(self, blob_expr, blob_truth):
        """Threaded scoring gives the same matrix."""
        runner = DERunner(DEParam())
        sequential = runner.score_all_pairs(blob_expr, blob_truth)
        threaded = runner.score_all_pairs(blob_expr, blob_truth, n_workers=3)
        pd.testing.assert_frame_equal(sequential.scores, threaded.scores)
