"""Clustering module: DE-validated split and merge.

Example Usage
-------------
>>> from iterclust.core.clustering import (
...     ClusteringConfig, ExpressionMatrix, IterativeSplitEngine, ClusterMergeEngine,
... )
>>> config = ClusteringConfig.from_yaml("config.yaml")
>>> expr = ExpressionMatrix.from_anndata(adata)
>>> split = IterativeSplitEngine(config).run(expr)
>>> merged = ClusterMergeEngine(config).run(expr, split.assignment, markers=split.markers)
"""

__version__ = "0.1.0"

# Data model
from .expression import ExpressionMatrix
from .assignment import (
    as_assignment,
    as_cell_index,
    cluster_members,
    cluster_sizes,
    normalize_labels,
)

# Configuration classes
from .config import (
    ClusteringConfig,
    DEParam,
    MergeConfig,
    PartitionConfig,
    ReductionConfig,
    SplitConfig,
)

# Differential expression
from .de import (
    DERunner,
    DEPairsResult,
    LinearModelDETest,
    SeparabilityResult,
    assess_separability,
    de_score,
)

# Collaborators
from .reduction import PCAReducer, make_reducer, remove_nuisance_dimensions
from .partition import (
    AffinityHierarchicalPartitioner,
    AffinityLeidenPartitioner,
    HierarchicalPartitioner,
    LeidenPartitioner,
    make_partitioner,
)

# Engines
from .split import IterativeSplitEngine, SplitResult
from .merge import ClusterMergeEngine, MergeResult
from .dendrogram import CorrelationDendrogramBuilder, DendrogramResult, build_dendrogram

__all__ = [
    # Version
    "__version__",
    # Data model
    "ExpressionMatrix",
    "as_assignment",
    "as_cell_index",
    "cluster_members",
    "cluster_sizes",
    "normalize_labels",
    # Config
    "ClusteringConfig",
    "DEParam",
    "MergeConfig",
    "PartitionConfig",
    "ReductionConfig",
    "SplitConfig",
    # DE
    "DERunner",
    "DEPairsResult",
    "LinearModelDETest",
    "SeparabilityResult",
    "assess_separability",
    "de_score",
    # Collaborators
    "PCAReducer",
    "make_reducer",
    "remove_nuisance_dimensions",
    "AffinityHierarchicalPartitioner",
    "AffinityLeidenPartitioner",
    "HierarchicalPartitioner",
    "LeidenPartitioner",
    "make_partitioner",
    # Engines
    "IterativeSplitEngine",
    "SplitResult",
    "ClusterMergeEngine",
    "MergeResult",
    "CorrelationDendrogramBuilder",
    "DendrogramResult",
    "build_dendrogram",
]
