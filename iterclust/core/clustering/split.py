"""Iterative split engine.

Partitions a cell population top-down: every branch is reduced, partitioned
and its candidate subgroups are kept only if each pair is separable by
differential expression. Accepted subgroups are split again until they are
too small or no longer separable.

Branches are processed from an explicit stack rather than by recursion.
A collaborator failure aborts only its own branch, whose cells are then
returned as a single cluster alongside a warning.
"""

from dataclasses import dataclass, field
from itertools import combinations
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import logging

import numpy as np
import pandas as pd

from ...errors import CollaboratorError, IterClustError
from .assignment import as_cell_index, cluster_members
from .config import ClusteringConfig
from .de import DETest, LinearModelDETest, SeparabilityResult, assess_separability
from .expression import ExpressionMatrix
from .partition import make_partitioner
from .reduction import make_reducer

Reducer = Callable[..., pd.DataFrame]
Partitioner = Callable[[pd.DataFrame], pd.Series]


@dataclass
class SplitResult:
    """Result of an iterative split run.

    Attributes
    ----------
    assignment : pd.Series
        Cell -> cluster id (contiguous integers from 1)
    markers : List[str]
        Top passing genes of every accepted split
    paths : Dict[int, str]
        Cluster id -> hierarchical branch path (e.g. "1.2.1")
    warnings : List[str]
        Branches aborted by collaborator failures
    failed_paths : List[str]
        Paths of the aborted branches
    n_splits : int
        Number of accepted splits
    """

    assignment: pd.Series
    markers: List[str] = field(default_factory=list)
    paths: Dict[int, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    failed_paths: List[str] = field(default_factory=list)
    n_splits: int = 0

    @property
    def n_clusters(self) -> int:
        return int(self.assignment.nunique())


@dataclass
class _Branch:
    cells: pd.Index
    depth: int
    path: str


def group_centroids(coords: pd.DataFrame, groups: Sequence[pd.Index]) -> np.ndarray:
    """Median centroid of every group in the coordinate space."""
    return np.vstack([coords.loc[g].median(axis=0).to_numpy(dtype=float) for g in groups])


def fold_small_groups(
    groups: Sequence[pd.Index],
    coords: pd.DataFrame,
    min_cells: int,
) -> List[pd.Index]:
    """Fold groups smaller than ``min_cells`` into their nearest group.

    The smallest group is folded first; centroids are recomputed after every
    fold.
    """
    groups = list(groups)
    while len(groups) > 1:
        sizes = np.array([len(g) for g in groups])
        smallest = int(np.argmin(sizes))
        if sizes[smallest] >= min_cells:
            break
        centroids = group_centroids(coords, groups)
        dist = np.linalg.norm(centroids - centroids[smallest], axis=1)
        dist[smallest] = np.inf
        target = int(np.argmin(dist))
        groups[target] = groups[target].append(groups[smallest])
        del groups[smallest]
    return groups


def _collapse(groups: List[pd.Index], failing: List[Tuple[int, int]]) -> List[pd.Index]:
    """Union groups connected by non-separable pairs."""
    parent = list(range(len(groups)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for i, j in failing:
        ri, rj = find(i), find(j)
        if ri != rj:
            parent[max(ri, rj)] = min(ri, rj)

    merged: Dict[int, List[pd.Index]] = {}
    for i, group in enumerate(groups):
        merged.setdefault(find(i), []).append(group)
    return [parts[0].append(parts[1:]) if len(parts) > 1 else parts[0] for parts in merged.values()]


class IterativeSplitEngine:
    """Top-down DE-validated clustering.

    Parameters
    ----------
    config : ClusteringConfig, optional
        Clustering configuration. If None, uses defaults.
    reducer : callable, optional
        ``reducer(cells x genes frame, nuisance) -> cells x k frame``.
        Defaults to the configured PCA reducer.
    partitioner : callable, optional
        ``partitioner(coords) -> Series of group ids``. Defaults to the
        configured Leiden/hierarchical partitioner.
    de_test : callable, optional
        DE collaborator. Defaults to LinearModelDETest.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> engine = IterativeSplitEngine(ClusteringConfig())
    >>> result = engine.run(expr)
    >>> result.assignment.value_counts()
    """

    def __init__(
        self,
        config: Optional[ClusteringConfig] = None,
        reducer: Optional[Reducer] = None,
        partitioner: Optional[Partitioner] = None,
        de_test: Optional[DETest] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusteringConfig()
        self.reducer = reducer or make_reducer(self.config.reduction)
        self.partitioner = partitioner or make_partitioner(self.config.partition)
        self.de_test = de_test or LinearModelDETest()
        self.logger = logger or logging.getLogger(__name__)

    def run(
        self,
        expr: ExpressionMatrix,
        cells: Optional[Sequence[Any]] = None,
        nuisance: Optional[pd.DataFrame] = None,
    ) -> SplitResult:
        """Cluster ``cells`` (default: every cell of ``expr``).

        Parameters
        ----------
        expr : ExpressionMatrix
            Genes x cells expression.
        cells : Sequence, optional
            Cells to cluster.
        nuisance : pd.DataFrame, optional
            Cells x covariates whose correlated dimensions are removed.

        Returns
        -------
        SplitResult
        """
        cells = as_cell_index(expr.cells if cells is None else cells)
        expr.cell_positions(cells)

        self.logger.info(
            "Iterative split on %d cells (min_cells=%d, de_score_th=%.1f)",
            len(cells),
            self.config.de.min_cells,
            self.config.de.de_score_th,
        )

        labels: Dict[Any, int] = {}
        paths: Dict[int, str] = {}
        markers: List[str] = []
        warnings_list: List[str] = []
        failed_paths: List[str] = []
        n_splits = 0
        next_id = 1

        stack = [_Branch(cells, 0, "1")]
        while stack:
            branch = stack.pop()
            try:
                outcome = self._split_branch(expr, branch, nuisance)
            except CollaboratorError as exc:
                message = f"Branch {branch.path} ({len(branch.cells)} cells) kept unsplit: {exc}"
                self.logger.warning(message)
                warnings_list.append(message)
                failed_paths.append(branch.path)
                outcome = None

            if outcome is None:
                for cell in branch.cells:
                    labels[cell] = next_id
                paths[next_id] = branch.path
                next_id += 1
                continue

            children, genes = outcome
            n_splits += 1
            markers.extend(genes)
            self.logger.debug(
                "Branch %s split into %d groups: %s",
                branch.path,
                len(children),
                [len(c) for c in children],
            )
            for i in range(len(children), 0, -1):
                stack.append(_Branch(children[i - 1], branch.depth + 1, f"{branch.path}.{i}"))

        assignment = pd.Series(labels, name="cluster").loc[cells].astype(int)
        self.logger.info(
            "Iterative split finished: %d clusters from %d accepted splits (%d warnings)",
            next_id - 1,
            n_splits,
            len(warnings_list),
        )
        return SplitResult(
            assignment=assignment,
            markers=list(dict.fromkeys(markers)),
            paths=paths,
            warnings=warnings_list,
            failed_paths=failed_paths,
            n_splits=n_splits,
        )

    def _split_branch(
        self,
        expr: ExpressionMatrix,
        branch: _Branch,
        nuisance: Optional[pd.DataFrame],
    ) -> Optional[Tuple[List[pd.Index], List[str]]]:
        """Return accepted child groups and their marker genes, or None if terminal."""
        de_param = self.config.de
        max_depth = self.config.split.max_depth
        if len(branch.cells) < 2 * de_param.min_cells:
            self.logger.debug("Branch %s too small to split (%d cells)", branch.path, len(branch.cells))
            return None
        if max_depth is not None and branch.depth >= max_depth:
            return None

        coords = self._reduce(expr, branch.cells, nuisance)
        if coords.shape[1] == 0:
            self.logger.debug("Branch %s has no informative dimensions", branch.path)
            return None

        groups = self._partition(coords)
        if len(groups) > 1 and self.config.split.fold_small_groups:
            groups = fold_small_groups(groups, coords, de_param.min_cells)
        if len(groups) < 2:
            return None

        groups, genes = self._resolve_separable(expr, groups)
        if len(groups) < 2:
            return None
        return groups, genes

    def _reduce(
        self,
        expr: ExpressionMatrix,
        cells: pd.Index,
        nuisance: Optional[pd.DataFrame],
    ) -> pd.DataFrame:
        try:
            coords = self.reducer(expr.cell_frame(cells), nuisance)
        except IterClustError:
            raise
        except Exception as exc:
            raise CollaboratorError(f"reduction failed: {exc}") from exc
        if not coords.index.equals(cells):
            raise CollaboratorError("reduction returned coordinates for a different cell set")
        return coords

    def _partition(self, coords: pd.DataFrame) -> List[pd.Index]:
        try:
            grouping = self.partitioner(coords)
        except IterClustError:
            raise
        except Exception as exc:
            raise CollaboratorError(f"partition failed: {exc}") from exc
        if len(grouping) != len(coords) or not grouping.index.equals(coords.index):
            raise CollaboratorError("partition returned labels for a different cell set")
        return list(cluster_members(grouping).values())

    def _resolve_separable(
        self,
        expr: ExpressionMatrix,
        groups: List[pd.Index],
    ) -> Tuple[List[pd.Index], List[str]]:
        """Collapse non-separable groups until every remaining pair separates."""
        cache: Dict[Tuple[frozenset, frozenset], SeparabilityResult] = {}
        n_keep = self.config.merge.n_markers_per_pair

        while len(groups) > 1:
            keys = [frozenset(g) for g in groups]
            failing: List[Tuple[int, int]] = []
            genes: List[str] = []
            for i, j in combinations(range(len(groups)), 2):
                key = (keys[i], keys[j])
                if key not in cache:
                    cache[key] = assess_separability(
                        groups[i], groups[j], expr, self.config.de, self.de_test
                    )
                result = cache[key]
                if result.is_separable:
                    genes.extend(result.passing_genes[:n_keep])
                else:
                    failing.append((i, j))

            if not failing:
                return groups, genes

            groups = _collapse(groups, failing)
            self.logger.debug(
                "Collapsed %d non-separable pair(s); %d groups remain",
                len(failing),
                len(groups),
            )
        return groups, []
