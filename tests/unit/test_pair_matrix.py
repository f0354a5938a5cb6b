"""Unit tests for the pair-matrix utility."""

import pytest
import numpy as np
import pandas as pd

from iterclust.errors import DimensionError, LabelIndexError
from iterclust.utils import (
    convert_pair_matrix,
    get_pair_matrix,
    set_pair_matrix,
    split_pair_key,
)


@pytest.fixture
def labelled():
    """3x3 labelled matrix with distinct values."""
    labels = ["a", "b", "c"]
    return pd.DataFrame(np.arange(9, dtype=float).reshape(3, 3), index=labels, columns=labels)


class TestGetPairMatrix:
    """Tests for get_pair_matrix."""

    def test_labelled_lookup(self, labelled):
        """Pairs resolve through the row and column labels."""
        values = get_pair_matrix(labelled, ["a", "c", "b"], ["b", "a", "b"])
        np.testing.assert_array_equal(values, [1.0, 6.0, 4.0])

    def test_positional_lookup(self):
        """Plain arrays take integer positions."""
        arr = np.arange(6).reshape(2, 3)
        np.testing.assert_array_equal(get_pair_matrix(arr, [0, 1], [2, 0]), [2, 3])

    def test_broadcast_single_row(self, labelled):
        """A single row label is paired with every column."""
        np.testing.assert_array_equal(get_pair_matrix(labelled, "b", ["a", "b", "c"]), [3.0, 4.0, 5.0])

    def test_unknown_label_raises(self, labelled):
        """A label outside the index raises LabelIndexError."""
        with pytest.raises(LabelIndexError):
            get_pair_matrix(labelled, ["a", "z"], ["a", "b"])

    def test_out_of_range_position_raises(self):
        """Positions past the matrix edge raise LabelIndexError."""
        with pytest.raises(LabelIndexError):
            get_pair_matrix(np.zeros((2, 2)), [0, 2], [0, 0])

    def test_integer_positions_on_labelled_frame(self, labelled):
        """Integer keys index a labelled frame by position, not by label."""
        np.testing.assert_array_equal(get_pair_matrix(labelled, [0, 2], [1, 1]), [1.0, 7.0])
        np.testing.assert_array_equal(get_pair_matrix(labelled, [1, 1], [0, 2]), [3.0, 5.0])

    def test_integer_labels_are_positions(self):
        """A frame labelled by integers is still addressed by position."""
        frame = pd.DataFrame(np.arange(4, dtype=float).reshape(2, 2), index=[1, 0], columns=[1, 0])
        np.testing.assert_array_equal(get_pair_matrix(frame, [0], [1]), [1.0])

    def test_out_of_range_position_on_labelled_frame_raises(self, labelled):
        """Positions past a labelled frame edge raise LabelIndexError."""
        with pytest.raises(LabelIndexError):
            get_pair_matrix(labelled, [3], [0])

    def test_string_keys_on_array_raise(self):
        """Plain arrays reject non-integer keys."""
        with pytest.raises(LabelIndexError):
            get_pair_matrix(np.zeros((2, 2)), ["a"], ["b"])

    def test_length_mismatch_raises(self, labelled):
        """Rows and columns of different lengths (neither 1) raise DimensionError."""
        with pytest.raises(DimensionError):
            get_pair_matrix(labelled, ["a", "b"], ["a", "b", "c"])


class TestSetPairMatrix:
    """Tests for set_pair_matrix."""

    def test_get_after_set(self, labelled):
        """Values written at pairs are read back unchanged."""
        rows, cols = ["a", "c", "b"], ["c", "b", "a"]
        updated = set_pair_matrix(labelled, rows, cols, [10.0, 20.0, 30.0])
        np.testing.assert_array_equal(get_pair_matrix(updated, rows, cols), [10.0, 20.0, 30.0])

    def test_other_cells_untouched(self, labelled):
        """Only the addressed pairs change; the input is not modified."""
        updated = set_pair_matrix(labelled, ["a"], ["a"], [-1.0])
        assert updated.loc["a", "a"] == -1.0
        assert labelled.loc["a", "a"] == 0.0
        pd.testing.assert_frame_equal(updated.drop(index="a"), labelled.drop(index="a"))

    def test_scalar_value_broadcast(self):
        """A single value is written at every pair."""
        updated = set_pair_matrix(np.zeros((3, 3)), [0, 1, 2], [2, 1, 0], 7)
        assert updated[0, 2] == updated[1, 1] == updated[2, 0] == 7

    def test_integer_matrix_accepts_floats(self):
        """Float values upcast an integer matrix instead of truncating."""
        updated = set_pair_matrix(np.zeros((2, 2), dtype=int), [0], [1], [0.5])
        assert updated[0, 1] == 0.5

    def test_set_with_positions_on_labelled_frame(self, labelled):
        """Integer keys write a labelled frame by position."""
        updated = set_pair_matrix(labelled, [0], [2], [42.0])
        assert updated.loc["a", "c"] == 42.0
        assert labelled.loc["a", "c"] == 2.0

    def test_value_count_mismatch_raises(self, labelled):
        """Values must match the number of pairs."""
        with pytest.raises(DimensionError):
            set_pair_matrix(labelled, ["a", "b"], ["a", "b"], [1.0, 2.0, 3.0])


class TestConvertPairMatrix:
    """Tests for convert_pair_matrix and split_pair_key."""

    def test_split_pair_key(self):
        """Compound keys split on the separator."""
        assert split_pair_key("3_7") == ("3", "7")
        assert split_pair_key("x|y", sep="|") == ("x", "y")

    def test_split_pair_key_malformed(self):
        """Keys that do not give exactly two labels raise DimensionError."""
        with pytest.raises(DimensionError):
            split_pair_key("a_b_c")

    def test_undirected_is_symmetric(self):
        """Undirected pairs are mirrored across the diagonal."""
        mat = convert_pair_matrix({"1_2": 3.0, "2_3": 5.0})
        assert list(mat.index) == ["1", "2", "3"]
        assert mat.loc["1", "2"] == mat.loc["2", "1"] == 3.0
        assert mat.loc["3", "2"] == 5.0
        assert mat.loc["1", "3"] == 0.0
        np.testing.assert_array_equal(mat.to_numpy(), mat.to_numpy().T)

    def test_directed_keeps_orientation(self):
        """Directed pairs are written only at (first, second)."""
        mat = convert_pair_matrix({"a_b": 1.0}, directed=True)
        assert mat.loc["a", "b"] == 1.0
        assert mat.loc["b", "a"] == 0.0

    def test_explicit_label_universe(self):
        """Labels outside the keys still get a row and column."""
        mat = convert_pair_matrix(pd.Series({"1_2": 4.0}), labels=[1, 2, 5])
        assert mat.shape == (3, 3)
        assert list(mat.columns) == ["1", "2", "5"]
        assert mat.loc["5"].sum() == 0.0

    def test_key_outside_universe_raises(self):
        """A key naming an unknown label raises LabelIndexError."""
        with pytest.raises(LabelIndexError):
            convert_pair_matrix({"1_9": 1.0}, labels=["1", "2"])
