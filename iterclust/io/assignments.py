"""Reading and writing clustering artifacts.

Provides expression loading (AnnData ``.h5ad`` or genes x cells CSV),
assignment and marker files, co-clustering count archives, and the
per-iteration files of a resumable consensus run directory::

    run_dir/
        iterations/iter_0000.csv   # cell,cluster of the sampled cells
        iterations.jsonl           # one record per finished iteration
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd
from scipy import sparse

from ..core.clustering.expression import ExpressionMatrix
from ..core.consensus.cocluster import CoClusterCounts
from ..errors import DimensionError, LabelIndexError
from .logging import log_iteration_record

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

ITERATION_DIR = "iterations"
ITERATION_PATTERN = re.compile(r"^iter_(\d+)\.csv$")


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write DataFrame to path ensuring the parent directory exists.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to write.
    path : PathLike
        Output path.
    index : bool
        Whether to write row index (default: False).

    Returns
    -------
    Path
        The output path.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    return output_path


def load_expression(path: PathLike, layer: Optional[str] = None) -> ExpressionMatrix:
    """Load an expression matrix.

    Parameters
    ----------
    path : PathLike
        ``.h5ad`` file (cells x genes AnnData, read with scanpy) or a CSV
        with genes as rows and cells as columns.
    layer : str, optional
        AnnData layer to use instead of ``X``.

    Returns
    -------
    ExpressionMatrix

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Expression input not found: {path}")

    if path.suffix == ".h5ad":
        import scanpy as sc

        adata = sc.read_h5ad(path)
        expr = ExpressionMatrix.from_anndata(adata, layer=layer)
    else:
        frame = pd.read_csv(path, index_col=0)
        frame.columns = frame.columns.astype(str)
        expr = ExpressionMatrix.from_frame(frame)

    logger.info("Loaded %r from %s", expr, path)
    return expr


def load_nuisance(path: PathLike) -> pd.DataFrame:
    """Load a cells x covariates CSV (first column holds cell ids)."""
    frame = pd.read_csv(path, index_col=0)
    frame.index = frame.index.astype(str)
    return frame


def write_assignment(assignment: pd.Series, path: PathLike) -> Path:
    """Write a ``cell,cluster`` CSV."""
    frame = pd.DataFrame({"cell": assignment.index.astype(str), "cluster": assignment.to_numpy()})
    return write_dataframe(frame, path)


def read_assignment(path: PathLike) -> pd.Series:
    """Read a ``cell,cluster`` CSV into a Series indexed by cell id (str)."""
    frame = pd.read_csv(path, dtype={"cell": str})
    missing = [c for c in ("cell", "cluster") if c not in frame.columns]
    if missing:
        raise DimensionError(f"Assignment file {path} is missing columns {missing}")
    return pd.Series(frame["cluster"].to_numpy(), index=pd.Index(frame["cell"]), name="cluster")


def write_markers(markers: Iterable[str], path: PathLike) -> Path:
    """Write one marker gene per line."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text("".join(f"{gene}\n" for gene in markers), encoding="utf-8")
    return output_path


def read_markers(path: PathLike) -> List[str]:
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip()]


def save_cocluster_counts(counts: CoClusterCounts, path: PathLike) -> Path:
    """Save counts as a scipy ``.npz`` archive plus a ``.json`` sidecar.

    The archive holds ``[co_cluster | co_sample]`` side by side; the sidecar
    holds the cell universe and the number of runs.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    sparse.save_npz(output_path, sparse.hstack([counts.co_cluster, counts.co_sample]).tocsr())
    meta = {"cells": [str(c) for c in counts.cells], "n_runs": counts.n_runs}
    output_path.with_suffix(".json").write_text(json.dumps(meta), encoding="utf-8")
    return output_path


def load_cocluster_counts(path: PathLike) -> CoClusterCounts:
    """Load counts written by :func:`save_cocluster_counts`."""
    path = Path(path)
    meta = json.loads(path.with_suffix(".json").read_text(encoding="utf-8"))
    stacked = sparse.load_npz(path).tocsc()
    n = len(meta["cells"])
    if stacked.shape != (n, 2 * n):
        raise DimensionError(
            f"Co-clustering archive {path} has shape {stacked.shape}, expected {(n, 2 * n)}"
        )
    return CoClusterCounts(
        meta["cells"],
        stacked[:, :n],
        stacked[:, n:],
        n_runs=int(meta.get("n_runs", 0)),
    )


def iteration_path(run_dir: PathLike, iteration: int) -> Path:
    return Path(run_dir) / ITERATION_DIR / f"iter_{iteration:04d}.csv"


def write_iteration(run_dir: PathLike, iteration: int, assignment: pd.Series, record: Dict[str, Any]) -> Path:
    """Persist one finished iteration and append its JSON record."""
    path = write_assignment(assignment, iteration_path(run_dir, iteration))
    log_iteration_record(run_dir, iteration, record, logger=logger)
    return path


def load_iterations(run_dir: PathLike, universe: pd.Index) -> Dict[int, pd.Series]:
    """Read every saved iteration of a run directory.

    Cell ids are matched to ``universe`` through their string form, so a
    universe of integer ids round-trips through CSV.

    Returns
    -------
    Dict[int, pd.Series]
        Iteration index -> assignment of its sampled cells.
    """
    directory = Path(run_dir) / ITERATION_DIR
    if not directory.is_dir():
        return {}

    as_str = pd.Index(universe.astype(str))
    loaded: Dict[int, pd.Series] = {}
    for path in sorted(directory.iterdir()):
        match = ITERATION_PATTERN.match(path.name)
        if not match:
            continue
        assignment = read_assignment(path)
        positions = as_str.get_indexer(assignment.index)
        if (positions < 0).any():
            missing = assignment.index[positions < 0][:5].tolist()
            raise LabelIndexError(f"Saved iteration {path.name} has unknown cells: {missing}")
        assignment.index = universe[positions]
        loaded[int(match.group(1))] = assignment
    logger.info("Loaded %d saved iterations from %s", len(loaded), directory)
    return loaded
