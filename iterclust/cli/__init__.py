"""Command-line interface for iterclust.

Example Usage
-------------
    # From command line:
    iterclust --help
    iterclust split --input cells.h5ad --out out/split
    iterclust consensus --input cells.h5ad --out out/consensus --n-jobs 4 --resume
    iterclust refine --assignment out/split/assignment.csv --cocluster out/consensus/cocluster_counts.npz --out out/refined
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
