"""Bootstrap consensus clustering.

ConsensusAggregator runs the iterative split engine on many random
subsamples, accumulates how often each pair of cells ends up in the same
cluster, and derives a consensus clustering from those frequencies:

1. Bootstrap iterations (sequential or joblib workers), optionally saved to
   and resumed from a run directory
2. Consensus split: the split engine again, with the co-clustering ratios
   as the coordinate space and an affinity partitioner, still validated by
   differential expression
3. Refinement of weakly-held cells by co-clustering frequency
4. A final merge pass on marker-gene expression
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from ...errors import CollaboratorError
from ..clustering.assignment import as_cell_index
from ..clustering.de import DETest, LinearModelDETest
from ..clustering.expression import ExpressionMatrix
from ..clustering.merge import ClusterMergeEngine
from ..clustering.partition import AffinityHierarchicalPartitioner, AffinityLeidenPartitioner
from ..clustering.split import IterativeSplitEngine, Partitioner, Reducer
from .cocluster import CoClusterCounts
from .config import ConsensusConfig, IterClustConfig
from .parallel import ConsensusIterationResult, make_work_items, run_iterations
from .refine import refine_clusters


class CoRatioReducer:
    """Reducer returning the co-clustering ratios of a branch's cells.

    Undefined ratios (pairs never sampled together) become 0. Nuisance
    covariates are ignored: the ratios were computed from reductions that
    already removed them.
    """

    def __init__(self, counts: CoClusterCounts):
        self.counts = counts

    def __call__(self, sub: pd.DataFrame, nuisance: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        return self.counts.ratio_frame(sub.index).fillna(0.0)


def make_affinity_partitioner(config: ConsensusConfig):
    """Return the consensus partitioner configured by ``partition_method``."""
    if config.partition_method == "affinity_hierarchical":
        return AffinityHierarchicalPartitioner(cut=config.affinity_cut)
    return AffinityLeidenPartitioner(
        resolution=config.affinity_resolution,
        min_affinity=config.min_affinity,
        seed=config.random_seed,
    )


@dataclass
class ConsensusResult:
    """Result of a consensus run.

    Attributes
    ----------
    cocluster : CoClusterCounts
        Accumulated counts over every completed iteration
    assignment : pd.Series, optional
        Consensus cell -> cluster ids; None when the run was cancelled
    iteration_assignments : Dict[int, pd.Series]
        Assignment of the sampled cells of every completed iteration
    markers : List[str]
        Marker genes of the consensus clustering
    warnings : List[str]
        Branch warnings from the iterations and consensus stages
    errors : List[str]
        Iterations excluded because a collaborator failed
    n_completed : int
        Number of iterations aggregated
    cancelled : bool
        True if the run stopped early on the cancel event
    elapsed_seconds : float
        Wall time of the run
    """

    cocluster: CoClusterCounts
    assignment: Optional[pd.Series] = None
    iteration_assignments: Dict[int, pd.Series] = field(default_factory=dict)
    markers: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    n_completed: int = 0
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    @property
    def n_clusters(self) -> int:
        return 0 if self.assignment is None else int(self.assignment.nunique())


class ConsensusAggregator:
    """Bootstrap consensus clustering.

    Parameters
    ----------
    config : IterClustConfig, optional
        Full configuration. If None, uses defaults.
    de_test : callable, optional
        DE collaborator for the bootstrap iterations and the consensus
        stages. Defaults to LinearModelDETest.
    reducer : callable, optional
        Reducer for the bootstrap iterations. Defaults to the one
        configured by ``config.clustering.reduction``.
    partitioner : callable, optional
        Partitioner for the bootstrap iterations. Defaults to the one
        configured by ``config.clustering.partition``.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> aggregator = ConsensusAggregator(IterClustConfig.default())
    >>> result = aggregator.run(expr, run_dir="out/run")
    >>> result.assignment.value_counts()
    """

    def __init__(
        self,
        config: Optional[IterClustConfig] = None,
        de_test: Optional[DETest] = None,
        logger: Optional[logging.Logger] = None,
        reducer: Optional[Reducer] = None,
        partitioner: Optional[Partitioner] = None,
    ):
        self.config = config or IterClustConfig()
        self.de_test = de_test or LinearModelDETest()
        self.reducer = reducer
        self.partitioner = partitioner
        self.logger = logger or logging.getLogger(__name__)

    def run(
        self,
        expr: ExpressionMatrix,
        cells: Optional[Sequence[Any]] = None,
        nuisance: Optional[pd.DataFrame] = None,
        run_dir: Optional[Union[str, Path]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ConsensusResult:
        """Run bootstrap iterations and derive the consensus clustering.

        Parameters
        ----------
        expr : ExpressionMatrix
            Genes x cells expression.
        cells : Sequence, optional
            Cells to cluster (default: every cell of ``expr``).
        nuisance : pd.DataFrame, optional
            Cells x covariates passed to the iteration reducers.
        run_dir : str or Path, optional
            Directory for per-iteration files; iterations already saved
            there are loaded instead of recomputed.
        cancel_event : threading.Event, optional
            When set, no further iterations are aggregated and the partial
            counts are returned without consensus stages.

        Returns
        -------
        ConsensusResult

        Raises
        ------
        CollaboratorError
            If the consensus split fails at its root, or refinement or the
            final merge fails.
        """
        cfg = self.config.consensus
        start_time = time.time()
        cells = as_cell_index(expr.cells if cells is None else cells)
        expr.cell_positions(cells)

        result = ConsensusResult(cocluster=CoClusterCounts(cells))
        if run_dir is not None:
            self._load_saved(run_dir, cells, result)

        pending = [i for i in range(cfg.n_iterations) if i not in result.iteration_assignments]
        self.logger.info(
            "Consensus over %d cells: %d iterations (%d loaded, %d to run), sample fraction %.2f",
            len(cells),
            cfg.n_iterations,
            len(result.iteration_assignments),
            len(pending),
            cfg.sample_fraction,
        )

        work_items = make_work_items(cells, pending, cfg.sample_fraction, cfg.random_seed)
        for iteration in run_iterations(
            work_items,
            expr,
            self.config.clustering,
            nuisance=nuisance,
            n_jobs=cfg.n_jobs,
            cancel_event=cancel_event,
            logger=self.logger,
            reducer=self.reducer,
            partitioner=self.partitioner,
            de_test=self.de_test,
        ):
            self._collect(iteration, cells, result, run_dir)
            if cancel_event is not None and cancel_event.is_set():
                break

        result.n_completed = len(result.iteration_assignments)
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            result.elapsed_seconds = time.time() - start_time
            self.logger.warning(
                "Consensus run cancelled after %d iterations; returning partial co-clustering counts",
                result.n_completed,
            )
            return result

        if result.n_completed == 0:
            raise CollaboratorError(
                f"All {cfg.n_iterations} bootstrap iterations failed: {result.errors[:3]}"
            )

        self._consensus(expr, cells, result)
        result.elapsed_seconds = time.time() - start_time
        self.logger.info(
            "Consensus finished: %d clusters from %d iterations in %.1f seconds",
            result.n_clusters,
            result.n_completed,
            result.elapsed_seconds,
        )
        return result

    def _load_saved(self, run_dir: Union[str, Path], cells: pd.Index, result: ConsensusResult) -> None:
        from ...io.assignments import load_iterations

        for i, assignment in sorted(load_iterations(run_dir, cells).items()):
            if i >= self.config.consensus.n_iterations:
                continue
            result.iteration_assignments[i] = assignment
            result.cocluster = result.cocluster + CoClusterCounts.from_assignment(assignment, cells)

    def _collect(
        self,
        iteration: ConsensusIterationResult,
        cells: pd.Index,
        result: ConsensusResult,
        run_dir: Optional[Union[str, Path]],
    ) -> None:
        if not iteration.success:
            message = f"Iteration {iteration.iteration} (seed {iteration.seed}) failed: {iteration.error}"
            self.logger.warning(message)
            result.errors.append(message)
            return

        result.cocluster = result.cocluster + CoClusterCounts.from_assignment(iteration.assignment, cells)
        result.iteration_assignments[iteration.iteration] = iteration.assignment
        result.warnings.extend(f"Iteration {iteration.iteration}: {w}" for w in iteration.warnings)
        self.logger.debug(
            "Iteration %d: %d clusters on %d cells (%.1fs)",
            iteration.iteration,
            iteration.n_clusters,
            len(iteration.assignment),
            iteration.timing_seconds,
        )

        if run_dir is not None:
            from ...io.assignments import write_iteration

            write_iteration(
                run_dir,
                iteration.iteration,
                iteration.assignment,
                {
                    "seed": iteration.seed,
                    "n_cells": len(iteration.assignment),
                    "n_clusters": iteration.n_clusters,
                    "timing_seconds": round(iteration.timing_seconds, 3),
                    "warnings": iteration.warnings,
                },
            )

    def _consensus(self, expr: ExpressionMatrix, cells: pd.Index, result: ConsensusResult) -> None:
        clustering = self.config.clustering
        refine_cfg = self.config.refine

        self.logger.info("Consensus split on co-clustering ratios")
        split = IterativeSplitEngine(
            clustering,
            reducer=CoRatioReducer(result.cocluster),
            partitioner=make_affinity_partitioner(self.config.consensus),
            de_test=self.de_test,
            logger=self.logger,
        ).run(expr, cells=cells)
        if "1" in split.failed_paths:
            raise CollaboratorError(f"Consensus split failed at the root: {split.warnings[0]}")
        result.warnings.extend(split.warnings)
        assignment = split.assignment

        if refine_cfg.enabled:
            refined = refine_clusters(
                assignment,
                result.cocluster,
                tolerance=refine_cfg.tolerance,
                confusion_threshold=refine_cfg.confusion_threshold,
                max_iterations=refine_cfg.max_iterations,
                logger=self.logger,
            )
            assignment = refined.assignment

        merged = ClusterMergeEngine(clustering, de_test=self.de_test, logger=self.logger).run(
            expr, assignment, markers=split.markers
        )
        result.assignment = merged.assignment
        result.markers = merged.markers
