"""Co-clustering based cluster refinement.

Moves cells whose consensus membership is weak: a cell is reassigned to
another cluster when it co-clusters with that cluster's members clearly
more often than with its own, and its own co-clustering is low.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from ...errors import ConvergenceWarning
from ...utils.labels import sorted_labels
from ..clustering.assignment import as_assignment, normalize_labels
from .cocluster import CoClusterCounts


@dataclass
class RefineResult:
    """Result of co-clustering refinement.

    Attributes
    ----------
    assignment : pd.Series
        Refined cell -> cluster ids (contiguous from 1)
    n_moved : int
        Total reassignments over all passes
    n_iterations : int
        Passes performed
    converged : bool
        False if max_iterations was reached while cells were still moving
    """

    assignment: pd.Series
    n_moved: int = 0
    n_iterations: int = 0
    converged: bool = True


def mean_cocluster_by_cluster(ratio: np.ndarray, codes: np.ndarray, n_clusters: int) -> np.ndarray:
    """Mean co-clustering ratio of every cell with every cluster, self excluded.

    ``ratio`` must have a zero diagonal and no NaN. Empty denominators give 0.
    """
    member = np.zeros((len(codes), n_clusters))
    member[np.arange(len(codes)), codes] = 1.0
    sums = ratio @ member
    denom = member.sum(axis=0)[None, :] - member
    with np.errstate(divide="ignore", invalid="ignore"):
        means = np.where(denom > 0, sums / denom, 0.0)
    return means


def refine_clusters(
    assignment: pd.Series,
    cocluster: CoClusterCounts,
    tolerance: float = 0.02,
    confusion_threshold: float = 0.6,
    max_iterations: int = 50,
    logger: Optional[logging.Logger] = None,
) -> RefineResult:
    """Reassign weakly-held cells by co-clustering frequency.

    Every pass computes, for each cell, the mean co-clustering ratio with
    the members of each cluster (undefined ratios count as 0). A cell moves
    to its best other cluster when that mean exceeds its own by more than
    ``tolerance`` and its own mean is below ``confusion_threshold``. All
    moves of a pass are applied together.

    Parameters
    ----------
    assignment : pd.Series
        Cell -> cluster labels.
    cocluster : CoClusterCounts
        Accumulated counts covering every assigned cell.
    tolerance : float
        Minimum improvement required to move a cell.
    confusion_threshold : float
        Cells at or above this own-cluster mean never move.
    max_iterations : int
        Pass cap; reaching it emits a ConvergenceWarning.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Returns
    -------
    RefineResult
    """
    _logger = logger or logging.getLogger(__name__)
    current = as_assignment(assignment)

    ratio = np.nan_to_num(cocluster.ratio(current.index), nan=0.0)
    np.fill_diagonal(ratio, 0.0)

    labels = sorted_labels(current.values)
    codes = pd.Index(labels).get_indexer(current.values)
    n_cells = len(codes)

    n_moved = 0
    n_iterations = 0
    converged = False
    while n_iterations < max_iterations:
        n_iterations += 1
        means = mean_cocluster_by_cluster(ratio, codes, len(labels))
        own = means[np.arange(n_cells), codes]
        others = means.copy()
        others[np.arange(n_cells), codes] = -np.inf
        best = np.argmax(others, axis=1) if len(labels) > 1 else codes
        best_value = others[np.arange(n_cells), best] if len(labels) > 1 else own

        move = (best_value - own > tolerance) & (own < confusion_threshold)
        n_pass = int(move.sum())
        if n_pass == 0:
            converged = True
            break
        codes = np.where(move, best, codes)
        n_moved += n_pass
        _logger.debug("Refinement pass %d moved %d cells", n_iterations, n_pass)

    if not converged:
        message = (
            f"Cluster refinement did not converge within {max_iterations} passes; "
            f"returning the current assignment"
        )
        _logger.warning(message)
        warnings.warn(message, ConvergenceWarning, stacklevel=2)

    refined = pd.Series(np.asarray(labels, dtype=object)[codes], index=current.index)
    _logger.info(
        "Refinement moved %d cells in %d passes (converged=%s)", n_moved, n_iterations, converged
    )
    return RefineResult(
        assignment=normalize_labels(refined),
        n_moved=n_moved,
        n_iterations=n_iterations,
        converged=converged,
    )
