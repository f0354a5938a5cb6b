"""Test fixtures for iterclust.

Provides synthetic expression generators and test utilities.
"""

from .synthetic import (
    block_ratio_counts,
    create_blob_frame,
    marker_genes,
    purity,
)

__all__ = [
    "block_ratio_counts",
    "create_blob_frame",
    "marker_genes",
    "purity",
]
