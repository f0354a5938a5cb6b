"""Bootstrap iterations for consensus clustering.

Every iteration draws a subsample of cells, runs the iterative split
engine on it and returns the assignment of the sampled cells. Workers never
build co-clustering counts: an assignment is O(sample) to send back, and
the caller folds it into the n x n counts in the main process. Iterations
share nothing but the read-only expression matrix and the collaborators,
so they run sequentially or in joblib worker processes with identical
results. Collaborators sent to workers must be picklable (module-level
functions or class instances, as LinearModelDETest and PCAReducer are).
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional

import numpy as np
import pandas as pd

from ...errors import CollaboratorError
from ..clustering.config import ClusteringConfig
from ..clustering.de import DETest
from ..clustering.expression import ExpressionMatrix
from ..clustering.split import IterativeSplitEngine, Partitioner, Reducer


@dataclass
class ConsensusWorkItem:
    """One bootstrap iteration: its index, seed and sampled cells."""
    iteration: int
    seed: int
    cells: pd.Index


@dataclass
class ConsensusIterationResult:
    """Result from a single bootstrap iteration."""
    iteration: int
    seed: int
    assignment: Optional[pd.Series]
    success: bool
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    timing_seconds: float = 0.0

    @property
    def n_clusters(self) -> int:
        return 0 if self.assignment is None else int(self.assignment.nunique())


def draw_sample(cells: pd.Index, sample_fraction: float, seed: int) -> pd.Index:
    """Draw ``round(sample_fraction * n)`` cells without replacement.

    The sample keeps the order of ``cells``.
    """
    n_sample = max(1, int(round(sample_fraction * len(cells))))
    rng = np.random.default_rng(seed)
    positions = np.sort(rng.choice(len(cells), size=n_sample, replace=False))
    return cells[positions]


def make_work_items(
    cells: pd.Index,
    iterations: Iterable[int],
    sample_fraction: float,
    random_seed: int,
) -> List[ConsensusWorkItem]:
    """Work items for the given iteration indices; iteration i uses seed random_seed + i."""
    items = []
    for i in iterations:
        seed = random_seed + i
        items.append(ConsensusWorkItem(iteration=i, seed=seed, cells=draw_sample(cells, sample_fraction, seed)))
    return items


def worker_iteration(
    work_item: ConsensusWorkItem,
    expr: ExpressionMatrix,
    config: ClusteringConfig,
    nuisance: Optional[pd.DataFrame] = None,
    reducer: Optional[Reducer] = None,
    partitioner: Optional[Partitioner] = None,
    de_test: Optional[DETest] = None,
) -> ConsensusIterationResult:
    """Cluster one subsample.

    Called in worker processes by joblib. A collaborator failure outside
    the split branches is returned as an unsuccessful result; any other
    error propagates. Collaborators left as None fall back to the split
    engine defaults built from ``config``.
    """
    start_time = time.time()
    try:
        engine = IterativeSplitEngine(
            config, reducer=reducer, partitioner=partitioner, de_test=de_test
        )
        result = engine.run(expr, cells=work_item.cells, nuisance=nuisance)
    except CollaboratorError as e:
        return ConsensusIterationResult(
            iteration=work_item.iteration,
            seed=work_item.seed,
            assignment=None,
            success=False,
            error=str(e),
            timing_seconds=time.time() - start_time,
        )

    return ConsensusIterationResult(
        iteration=work_item.iteration,
        seed=work_item.seed,
        assignment=result.assignment,
        success=True,
        warnings=result.warnings,
        timing_seconds=time.time() - start_time,
    )


def run_iterations(
    work_items: List[ConsensusWorkItem],
    expr: ExpressionMatrix,
    config: ClusteringConfig,
    nuisance: Optional[pd.DataFrame] = None,
    n_jobs: int = 1,
    cancel_event: Optional[threading.Event] = None,
    logger: Optional[logging.Logger] = None,
    reducer: Optional[Reducer] = None,
    partitioner: Optional[Partitioner] = None,
    de_test: Optional[DETest] = None,
) -> Iterator[ConsensusIterationResult]:
    """Yield iteration results as they complete.

    Parameters
    ----------
    work_items : List[ConsensusWorkItem]
        Iterations to run
    expr : ExpressionMatrix
        Read-only expression shared by every iteration
    config : ClusteringConfig
        Split engine configuration
    nuisance : pd.DataFrame, optional
        Nuisance covariates passed to the reducer
    n_jobs : int
        Number of parallel workers (1 = sequential)
    cancel_event : threading.Event, optional
        Checked before every sequential iteration; the caller checks it
        between parallel results
    logger : logging.Logger, optional
        Logger for progress tracking
    reducer, partitioner, de_test : callable, optional
        Split engine collaborators for every iteration. Must be picklable
        when ``n_jobs > 1``.

    Yields
    ------
    ConsensusIterationResult
    """
    _logger = logger or logging.getLogger(__name__)
    if not work_items:
        return

    _logger.info("Running %d bootstrap iterations with %d workers", len(work_items), n_jobs)
    collaborators = dict(reducer=reducer, partitioner=partitioner, de_test=de_test)

    if n_jobs == 1:
        for item in work_items:
            if cancel_event is not None and cancel_event.is_set():
                return
            yield worker_iteration(item, expr, config, nuisance, **collaborators)
        return

    from joblib import Parallel, delayed

    # Use 'loky' backend for process isolation; results stream back in order
    parallel = Parallel(n_jobs=n_jobs, backend="loky", return_as="generator")
    yield from parallel(
        delayed(worker_iteration)(item, expr, config, nuisance, **collaborators)
        for item in work_items
    )
