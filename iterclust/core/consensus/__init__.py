"""Consensus clustering module.

Runs the split engine on bootstrap subsamples, accumulates co-clustering
counts and derives a refined consensus clustering from them.

Example Usage
-------------
>>> from iterclust.core.consensus import ConsensusAggregator, IterClustConfig
>>> config = IterClustConfig.from_yaml("config.yaml")
>>> result = ConsensusAggregator(config).run(expr, run_dir="out/run")
>>> result.cocluster.ratio()
"""

from .config import ConsensusConfig, IterClustConfig, RefineConfig
from .cocluster import CoClusterCounts
from .refine import RefineResult, refine_clusters
from .parallel import ConsensusIterationResult, ConsensusWorkItem, draw_sample
from .engine import ConsensusAggregator, ConsensusResult, CoRatioReducer

__all__ = [
    # Config
    "ConsensusConfig",
    "IterClustConfig",
    "RefineConfig",
    # Counts
    "CoClusterCounts",
    # Refinement
    "RefineResult",
    "refine_clusters",
    # Iterations
    "ConsensusIterationResult",
    "ConsensusWorkItem",
    "draw_sample",
    # Engine
    "ConsensusAggregator",
    "ConsensusResult",
    "CoRatioReducer",
]
