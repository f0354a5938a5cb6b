"""Label-indexed access into square pairwise matrices.

Cluster-pair statistics (DE scores, distances, co-clustering counts) are kept
in square matrices whose rows and columns are cluster or cell labels. These
helpers read and write many (row, column) pairs at once through the
column-major flat offset ``col * n_rows + row``.

Integer keys are 0-based positions on any matrix. Other keys are labels and
resolve through the row/column ``Index`` of a ``pandas.DataFrame``; plain
2-D arrays accept positions only.

Example
-------
>>> mat = convert_pair_matrix({"1_2": 3.0, "2_3": 5.0})
>>> get_pair_matrix(mat, ["1", "3"], ["2", "2"])
array([3., 5.])
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..errors import DimensionError, LabelIndexError

MatrixLike = Union[pd.DataFrame, np.ndarray]


def _as_label_array(labels: Any) -> np.ndarray:
    if isinstance(labels, (str, bytes)) or np.isscalar(labels):
        return np.asarray([labels], dtype=object)
    return np.asarray(list(labels), dtype=object)


def _resolve_positions(
    labels: Any,
    index: Optional[pd.Index],
    size: int,
    axis_name: str,
) -> np.ndarray:
    """Map labels to integer positions along one axis.

    Raises
    ------
    LabelIndexError
        If a label is absent from the index, or a position is out of range.
    """
    values = _as_label_array(labels)
    if len(values) == 0:
        return np.empty(0, dtype=np.intp)
    is_position = all(
        isinstance(v, (int, np.integer)) and not isinstance(v, (bool, np.bool_)) for v in values
    )

    if not is_position:
        if index is None:
            raise LabelIndexError(
                f"Unlabelled matrix requires integer {axis_name} positions"
            )
        positions = index.get_indexer(values)
        missing = values[positions < 0]
        if len(missing):
            raise LabelIndexError(
                f"{len(missing)} {axis_name} label(s) not found: "
                f"{[str(v) for v in missing[:5]]}"
            )
        return positions.astype(np.intp)

    positions = values.astype(np.intp)
    bad = (positions < 0) | (positions >= size)
    if bad.any():
        raise LabelIndexError(
            f"{axis_name} position(s) out of range [0, {size}): "
            f"{positions[bad][:5].tolist()}"
        )
    return positions


def _pair_offsets(mat: MatrixLike, rows: Any, cols: Any) -> np.ndarray:
    if isinstance(mat, pd.DataFrame):
        row_index, col_index = mat.index, mat.columns
        n_rows, n_cols = mat.shape
    else:
        arr = np.asarray(mat)
        if arr.ndim != 2:
            raise DimensionError(f"Expected a 2-D matrix, got {arr.ndim} dimensions")
        row_index = col_index = None
        n_rows, n_cols = arr.shape

    row_pos = _resolve_positions(rows, row_index, n_rows, "row")
    col_pos = _resolve_positions(cols, col_index, n_cols, "column")

    if len(row_pos) != len(col_pos):
        if len(row_pos) == 1:
            row_pos = np.repeat(row_pos, len(col_pos))
        elif len(col_pos) == 1:
            col_pos = np.repeat(col_pos, len(row_pos))
        else:
            raise DimensionError(
                f"rows ({len(row_pos)}) and cols ({len(col_pos)}) differ in length"
            )
    return col_pos * n_rows + row_pos


def get_pair_matrix(mat: MatrixLike, rows: Any, cols: Any) -> np.ndarray:
    """Gather ``mat[rows[i], cols[i]]`` for every pair i.

    Parameters
    ----------
    mat : DataFrame or ndarray
        Square (or rectangular) matrix.
    rows, cols : label, position, or sequence thereof
        Paired row and column keys. A length-1 side is broadcast.

    Returns
    -------
    np.ndarray
        One value per pair.
    """
    values = mat.to_numpy() if isinstance(mat, pd.DataFrame) else np.asarray(mat)
    flat = values.ravel(order="F")
    return flat[_pair_offsets(mat, rows, cols)]


def set_pair_matrix(mat: MatrixLike, rows: Any, cols: Any, values: Any) -> MatrixLike:
    """Return a copy of ``mat`` with ``values`` written at the (row, col) pairs.

    ``values`` must have one entry per pair or exactly one entry, which is
    broadcast. The input matrix is never modified.
    """
    offsets = _pair_offsets(mat, rows, cols)
    vals = np.asarray(values).ravel()
    if vals.size == 1:
        vals = np.repeat(vals, len(offsets))
    elif vals.size != len(offsets):
        raise DimensionError(
            f"Got {vals.size} values for {len(offsets)} matrix pairs"
        )

    if isinstance(mat, pd.DataFrame):
        arr = mat.to_numpy(copy=True)
    else:
        arr = np.array(mat, copy=True)
    if vals.dtype.kind == "f" and arr.dtype.kind in "iub":
        arr = arr.astype(float)

    flat = arr.ravel(order="F")
    flat[offsets] = vals
    updated = flat.reshape(arr.shape, order="F")

    if isinstance(mat, pd.DataFrame):
        return pd.DataFrame(updated, index=mat.index.copy(), columns=mat.columns.copy())
    return updated


def split_pair_key(key: Any, sep: str = "_") -> Tuple[str, str]:
    """Split an ``"A_B"`` compound key into its two labels."""
    parts = str(key).split(sep)
    if len(parts) != 2:
        raise DimensionError(
            f"Pair key {key!r} does not split into exactly two labels on {sep!r}"
        )
    return parts[0], parts[1]


def convert_pair_matrix(
    pair_values: Union[Mapping[str, float], pd.Series],
    labels: Optional[Sequence[Any]] = None,
    directed: bool = False,
    sep: str = "_",
) -> pd.DataFrame:
    """Build a square labelled matrix from ``{"A_B": value}`` pairs.

    Parameters
    ----------
    pair_values : Mapping or Series
        Values keyed by compound pair keys.
    labels : Sequence, optional
        Label universe (row/column order). Defaults to the sorted set of
        labels appearing in the keys.
    directed : bool
        If False, every value is also written at the transposed position.
    sep : str
        Separator between the two labels of a key.

    Returns
    -------
    pd.DataFrame
        n x n matrix, zero where no pair was given.
    """
    items = list(pair_values.items())
    pairs = [split_pair_key(key, sep) for key, _ in items]

    if labels is None:
        universe = sorted({label for pair in pairs for label in pair})
    else:
        universe = [str(label) for label in labels]

    index = pd.Index(universe)
    mat = np.zeros((len(index), len(index)), dtype=float)
    if pairs:
        first = _resolve_positions([p[0] for p in pairs], index, len(index), "row")
        second = _resolve_positions([p[1] for p in pairs], index, len(index), "column")
        for i, (_, value) in enumerate(items):
            mat[first[i], second[i]] = value
            if not directed:
                mat[second[i], first[i]] = value

    return pd.DataFrame(mat, index=index, columns=index.copy())
