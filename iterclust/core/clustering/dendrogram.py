"""Cluster dendrogram with bootstrap branch confidence.

Clusters are summarized by their median expression over marker genes; the
builder turns that genes x clusters table into a tree. The default builder
uses average linkage on ``1 - Pearson correlation`` and scores every clade
by how often it reappears when marker genes are resampled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Set

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import linkage, to_tree
from scipy.spatial.distance import squareform

from ...errors import DimensionError
from ...utils.stats import cluster_medians
from .expression import ExpressionMatrix

logger = logging.getLogger(__name__)


@dataclass
class DendrogramResult:
    """Cluster tree.

    Attributes
    ----------
    linkage : np.ndarray
        scipy linkage matrix over the clusters
    labels : List[str]
        Cluster ids in linkage leaf-index order
    order : List[str]
        Leaf order for display (follows leaf_rank when given)
    confidence : np.ndarray
        Bootstrap support of every merge row of ``linkage``
    correlation : pd.DataFrame
        Cluster x cluster correlation used for the tree
    leaf_color : Dict[str, Any]
        Optional per-leaf color annotation
    """

    linkage: np.ndarray
    labels: List[str]
    order: List[str]
    confidence: np.ndarray
    correlation: pd.DataFrame
    leaf_color: Dict[str, Any] = field(default_factory=dict)

    def to_newick(self) -> str:
        """Newick string with branch support as internal node labels."""
        root = to_tree(self.linkage)
        n_leaves = len(self.labels)

        def render(node) -> str:
            if node.is_leaf():
                return self.labels[node.id]
            left, right = render(node.get_left()), render(node.get_right())
            support = self.confidence[node.id - n_leaves]
            return f"({left},{right}){support:.2f}:{node.dist:.4f}"

        return render(root) + ";"


def _correlation_distance(medians: np.ndarray) -> np.ndarray:
    """Condensed ``1 - cor`` distances between the columns of ``medians``."""
    with np.errstate(divide="ignore", invalid="ignore"):
        cor = np.corrcoef(medians, rowvar=False)
    cor = np.nan_to_num(cor, nan=0.0)
    dist = np.clip(1.0 - cor, 0.0, 2.0)
    np.fill_diagonal(dist, 0.0)
    return squareform((dist + dist.T) / 2.0, checks=False)


def _clades(tree: np.ndarray, n_leaves: int) -> List[FrozenSet[int]]:
    """Leaf set of every merge row of a linkage matrix."""
    members: List[FrozenSet[int]] = [frozenset([i]) for i in range(n_leaves)]
    for left, right in tree[:, :2].astype(int):
        members.append(members[left] | members[right])
    return members[n_leaves:]


def _ranked_order(tree: np.ndarray, labels: List[str], leaf_rank: Optional[Mapping[str, float]]) -> List[str]:
    """Leaf order, rotating every node so the lower-ranked side comes first."""
    root = to_tree(tree)
    if not leaf_rank:
        return [labels[i] for i in root.pre_order()]

    def walk(node):
        if node.is_leaf():
            label = labels[node.id]
            return [label], float(leaf_rank.get(label, np.inf))
        left, left_rank = walk(node.get_left())
        right, right_rank = walk(node.get_right())
        if right_rank < left_rank:
            left, right = right, left
        return left + right, min(left_rank, right_rank)

    return walk(root)[0]


class CorrelationDendrogramBuilder:
    """Average-linkage tree on ``1 - cor`` with marker bootstrap confidence.

    Parameters
    ----------
    method : str
        scipy linkage method (default average)
    seed : int
        Seed for the bootstrap resampling
    """

    def __init__(self, method: str = "average", seed: int = 1337):
        self.method = method
        self.seed = seed

    def __call__(
        self,
        medians: pd.DataFrame,
        leaf_rank: Optional[Mapping[str, float]] = None,
        leaf_color: Optional[Mapping[str, Any]] = None,
        n_boot: int = 100,
    ) -> DendrogramResult:
        values = medians.to_numpy(dtype=float)
        labels = [str(c) for c in medians.columns]
        n_leaves = len(labels)

        tree = linkage(_correlation_distance(values), method=self.method)
        reference = _clades(tree, n_leaves)

        support = np.zeros(len(reference))
        if n_boot > 0:
            rng = np.random.default_rng(self.seed)
            n_genes = values.shape[0]
            for _ in range(n_boot):
                sample = values[rng.integers(0, n_genes, size=n_genes)]
                boot = linkage(_correlation_distance(sample), method=self.method)
                seen: Set[FrozenSet[int]] = set(_clades(boot, n_leaves))
                support += [clade in seen for clade in reference]
            support /= n_boot

        with np.errstate(divide="ignore", invalid="ignore"):
            cor = np.nan_to_num(np.corrcoef(values, rowvar=False), nan=0.0)
        return DendrogramResult(
            linkage=tree,
            labels=labels,
            order=_ranked_order(tree, labels, leaf_rank),
            confidence=support,
            correlation=pd.DataFrame(cor, index=labels, columns=labels),
            leaf_color={str(k): v for k, v in (leaf_color or {}).items()},
        )


DendrogramBuilder = Callable[..., DendrogramResult]


def build_dendrogram(
    expr: ExpressionMatrix,
    assignment: pd.Series,
    markers: Sequence[str],
    builder: Optional[DendrogramBuilder] = None,
    n_boot: int = 100,
    leaf_rank: Optional[Mapping[Any, float]] = None,
    leaf_color: Optional[Mapping[Any, Any]] = None,
    seed: int = 1337,
) -> DendrogramResult:
    """Build a cluster dendrogram from marker-gene medians.

    Parameters
    ----------
    expr : ExpressionMatrix
        Genes x cells expression.
    assignment : pd.Series
        Cell -> cluster labels.
    markers : Sequence[str]
        Marker genes summarizing the clusters.
    builder : callable, optional
        ``builder(medians, leaf_rank, leaf_color, n_boot)``; defaults to
        CorrelationDendrogramBuilder.
    n_boot : int
        Bootstrap resamples for branch confidence (0 disables).
    leaf_rank : Mapping, optional
        Cluster -> rank used to order leaves.
    leaf_color : Mapping, optional
        Cluster -> color carried onto the result.
    seed : int
        Bootstrap seed for the default builder.

    Returns
    -------
    DendrogramResult
    """
    genes = list(dict.fromkeys(markers))
    if not genes:
        raise DimensionError("A dendrogram needs at least one marker gene")
    if assignment.nunique() < 2:
        raise DimensionError("A dendrogram needs at least two clusters")

    medians = cluster_medians(expr.submatrix(genes=genes), assignment)
    medians.columns = [str(c) for c in medians.columns]
    logger.debug(
        "Building dendrogram over %d clusters from %d markers", medians.shape[1], len(genes)
    )

    builder = builder or CorrelationDendrogramBuilder(seed=seed)
    rank = {str(k): v for k, v in leaf_rank.items()} if leaf_rank else None
    return builder(medians, leaf_rank=rank, leaf_color=leaf_color, n_boot=n_boot)
