"""iterclust: iterative, differential-expression driven clustering.

This package provides tools for:
- Top-down clustering where every split is validated by differential expression
- Merging of mutually nearest clusters that fail the separability test
- Bootstrap consensus clustering from co-clustering frequencies
- Refinement of weakly-held cells and cluster dendrograms

Example usage:
    >>> from iterclust.core.clustering import ExpressionMatrix, IterativeSplitEngine
    >>> from iterclust.core.consensus import ConsensusAggregator
    >>>
    >>> expr = ExpressionMatrix.from_frame(genes_by_cells)
    >>> split = IterativeSplitEngine().run(expr)
    >>> consensus = ConsensusAggregator().run(expr, run_dir="out/run")
"""

__version__ = "0.1.0"
