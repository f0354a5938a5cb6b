"""Utility functions for iterclust.

Provides label-indexed pair-matrix access and cluster-level statistics used
across the clustering and consensus modules.
"""

from .labels import sorted_labels
from .pair_matrix import (
    convert_pair_matrix,
    get_pair_matrix,
    set_pair_matrix,
    split_pair_key,
)
from .stats import (
    calc_tau,
    cluster_means,
    cluster_medians,
    cluster_sums,
    sparse_cor,
)

__all__ = [
    "sorted_labels",
    "convert_pair_matrix",
    "get_pair_matrix",
    "set_pair_matrix",
    "split_pair_key",
    "calc_tau",
    "cluster_means",
    "cluster_medians",
    "cluster_sums",
    "sparse_cor",
]
