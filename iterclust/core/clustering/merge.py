"""Cluster merge engine.

Repeatedly merges mutually nearest clusters that fail the separability
test. Distances are Euclidean between cluster median centroids in a
coordinate space, by default the expression of marker genes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging
import warnings

import numpy as np
import pandas as pd

from ...errors import ConvergenceWarning, DimensionError
from .assignment import as_assignment, cluster_members, normalize_labels
from .config import ClusteringConfig
from .de import DETest, LinearModelDETest, SeparabilityResult, assess_separability
from .expression import ExpressionMatrix
from .split import group_centroids


@dataclass
class MergeResult:
    """Result of a merge run.

    Attributes
    ----------
    assignment : pd.Series
        Cell -> cluster id after merging (contiguous integers from 1)
    markers : List[str]
        Input markers plus top passing genes of every separable tested pair
    merges : List[Tuple[Any, Any]]
        (absorbed, kept) input labels in merge order
    n_passes : int
        Number of passes performed
    converged : bool
        False if max_passes was reached while merges were still happening
    """

    assignment: pd.Series
    markers: List[str] = field(default_factory=list)
    merges: List[Tuple[Any, Any]] = field(default_factory=list)
    n_passes: int = 0
    converged: bool = True


def marker_coordinates(
    expr: ExpressionMatrix,
    cells: Sequence[Any],
    markers: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Cells x markers expression frame; all genes when ``markers`` is empty."""
    genes = list(dict.fromkeys(markers)) if markers else None
    return expr.cell_frame(cells, genes)


def mutual_nearest_pairs(centroids: np.ndarray) -> List[Tuple[int, int]]:
    """Index pairs (i < j) of centroids that are each other's nearest.

    Ties resolve to the lower index.
    """
    n = len(centroids)
    if n < 2:
        return []
    diff = centroids[:, None, :] - centroids[None, :, :]
    dist = np.sqrt((diff ** 2).sum(axis=2))
    np.fill_diagonal(dist, np.inf)
    nearest = np.argmin(dist, axis=1)
    return [(i, int(nearest[i])) for i in range(n) if nearest[nearest[i]] == i and i < nearest[i]]


class ClusterMergeEngine:
    """Merge mutually nearest, non-separable clusters until stable.

    Parameters
    ----------
    config : ClusteringConfig, optional
        Clustering configuration (``de`` and ``merge`` sections are used).
    de_test : callable, optional
        DE collaborator. Defaults to LinearModelDETest.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.
    """

    def __init__(
        self,
        config: Optional[ClusteringConfig] = None,
        de_test: Optional[DETest] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusteringConfig()
        self.de_test = de_test or LinearModelDETest()
        self.logger = logger or logging.getLogger(__name__)

    def run(
        self,
        expr: ExpressionMatrix,
        assignment: pd.Series,
        coordinates: Optional[pd.DataFrame] = None,
        markers: Optional[Sequence[str]] = None,
    ) -> MergeResult:
        """Merge clusters of ``assignment``.

        Parameters
        ----------
        expr : ExpressionMatrix
            Expression read by the separability test.
        assignment : pd.Series
            Cell -> cluster labels.
        coordinates : pd.DataFrame, optional
            Cells x features space for centroids. Defaults to the expression
            of ``markers`` (or of all genes when ``use_markers`` is off or no
            markers are given).
        markers : Sequence[str], optional
            Marker genes carried from the split stage.

        Returns
        -------
        MergeResult

        Raises
        ------
        CollaboratorError
            If the DE test fails; merging has no per-branch fallback.
        """
        cfg = self.config.merge
        current = as_assignment(assignment)
        expr.cell_positions(current.index)
        markers_out: List[str] = list(markers or [])

        if coordinates is None:
            coordinates = marker_coordinates(
                expr, current.index, markers_out if cfg.use_markers else None
            )
        missing = current.index.difference(coordinates.index)
        if len(missing):
            raise DimensionError(
                f"{len(missing)} cells have no merge coordinates: {missing[:5].tolist()}"
            )
        coordinates = coordinates.loc[current.index]

        self.logger.info(
            "Merging %d clusters over %d cells (%d coordinate dimensions)",
            current.nunique(),
            len(current),
            coordinates.shape[1],
        )

        cache: Dict[Tuple[frozenset, frozenset], SeparabilityResult] = {}
        merges: List[Tuple[Any, Any]] = []
        converged = False
        n_passes = 0

        while n_passes < cfg.max_passes:
            n_passes += 1
            members = cluster_members(current)
            labels = list(members)
            groups = [members[label] for label in labels]
            pairs = mutual_nearest_pairs(group_centroids(coordinates, groups))

            merged_this_pass = 0
            for i, j in pairs:
                key = (frozenset(groups[i]), frozenset(groups[j]))
                if key not in cache:
                    cache[key] = assess_separability(
                        groups[i], groups[j], expr, self.config.de, self.de_test
                    )
                result = cache[key]
                if result.is_separable:
                    markers_out.extend(result.passing_genes[: cfg.n_markers_per_pair])
                    continue
                # labels are sorted, so labels[i] is the smaller id
                current[current == labels[j]] = labels[i]
                merges.append((labels[j], labels[i]))
                merged_this_pass += 1
                self.logger.debug(
                    "Merged cluster %s into %s (score=%.1f)", labels[j], labels[i], result.score
                )

            if merged_this_pass == 0:
                converged = True
                break
            self.logger.debug("Pass %d: %d merges", n_passes, merged_this_pass)

        if not converged:
            message = (
                f"Cluster merging did not converge within {cfg.max_passes} passes; "
                f"returning the current assignment"
            )
            self.logger.warning(message)
            warnings.warn(message, ConvergenceWarning, stacklevel=2)

        result_assignment = normalize_labels(current)
        self.logger.info(
            "Merge finished: %d clusters after %d merges in %d passes",
            result_assignment.nunique(),
            len(merges),
            n_passes,
        )
        return MergeResult(
            assignment=result_assignment,
            markers=list(dict.fromkeys(markers_out)),
            merges=merges,
            n_passes=n_passes,
            converged=converged,
        )
