"""Differential expression testing and cluster-pair separability.

The DE test itself is a collaborator: any callable
``de_test(expr, cells_a, cells_b, low_th) -> DataFrame`` returning per-gene
``pval, padj, lfc, q1, q2`` can be plugged in. ``LinearModelDETest`` is the
default: a per-gene two-group linear model (pooled-variance t statistic)
with Benjamini-Hochberg adjustment.

The separability verdict composes the DEParam thresholds on top of the
test output and is what the split and merge engines consult.
"""

from dataclasses import dataclass, field
from concurrent.futures import ThreadPoolExecutor
from itertools import combinations
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import logging
import time

import numpy as np
import pandas as pd
from scipy import sparse, stats
from statsmodels.stats.multitest import multipletests

from ...errors import CollaboratorError
from ...utils.pair_matrix import convert_pair_matrix
from .assignment import cluster_members
from .config import DEParam
from .expression import ExpressionMatrix

DE_COLUMNS = ("pval", "padj", "lfc", "q1", "q2")

DETest = Callable[..., pd.DataFrame]


def _group_moments(block: Any, low_th: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-gene mean, sum of squared deviations and detection fraction."""
    n = block.shape[1]
    if sparse.issparse(block):
        total = np.asarray(block.sum(axis=1)).ravel()
        total_sq = np.asarray(block.power(2).sum(axis=1)).ravel()
        detected = np.asarray((block > low_th).sum(axis=1)).ravel()
        mean = total / n
        ss = np.clip(total_sq - n * mean ** 2, 0.0, None)
    else:
        block = np.asarray(block, dtype=float)
        mean = block.mean(axis=1)
        ss = ((block - mean[:, None]) ** 2).sum(axis=1)
        detected = (block > low_th).sum(axis=1)
    return mean, ss, detected / n


class LinearModelDETest:
    """Per-gene two-group linear model DE test.

    Fits ``expression ~ group`` for every gene, which reduces to a
    pooled-variance t statistic with ``n_a + n_b - 2`` degrees of freedom.
    Two-sided p-values are adjusted with ``statsmodels`` multipletests.

    Parameters
    ----------
    adjust_method : str
        Multiple-testing method passed to multipletests (default fdr_bh).
    """

    def __init__(self, adjust_method: str = "fdr_bh"):
        self.adjust_method = adjust_method

    def __call__(
        self,
        expr: ExpressionMatrix,
        cells_a: Sequence[Any],
        cells_b: Sequence[Any],
        low_th: float = 1.0,
    ) -> pd.DataFrame:
        n_a, n_b = len(cells_a), len(cells_b)
        if n_a == 0 or n_b == 0:
            raise ValueError(f"DE test needs two non-empty groups (got {n_a} and {n_b})")

        mean_a, ss_a, q1 = _group_moments(expr.slice(cells=cells_a), low_th)
        mean_b, ss_b, q2 = _group_moments(expr.slice(cells=cells_b), low_th)
        lfc = mean_a - mean_b

        dof = n_a + n_b - 2
        if dof > 0:
            pooled = (ss_a + ss_b) / dof
            se = np.sqrt(pooled * (1.0 / n_a + 1.0 / n_b))
            with np.errstate(divide="ignore", invalid="ignore"):
                t_stat = lfc / se
            pval = 2.0 * stats.t.sf(np.abs(t_stat), dof)
            pval[np.isnan(pval)] = 1.0
        else:
            pval = np.ones_like(lfc)

        padj = multipletests(pval, method=self.adjust_method)[1]
        return pd.DataFrame(
            {"pval": pval, "padj": padj, "lfc": lfc, "q1": q1, "q2": q2},
            index=expr.genes,
        )


def passing_gene_mask(table: pd.DataFrame, de_param: DEParam) -> pd.Series:
    """Boolean mask of genes passing every DEParam threshold."""
    q1 = table["q1"].to_numpy(dtype=float)
    q2 = table["q2"].to_numpy(dtype=float)
    q_max = np.maximum(q1, q2)
    q_min = np.minimum(q1, q2)

    mask = (table["padj"].to_numpy() < de_param.padj_th) & (
        np.abs(table["lfc"].to_numpy()) > de_param.lfc_th
    )
    if de_param.q1_th is not None:
        mask &= q_max > de_param.q1_th
    if de_param.q2_th is not None:
        mask &= q_min < de_param.q2_th
    if de_param.q_diff_th is not None:
        with np.errstate(divide="ignore", invalid="ignore"):
            q_diff = np.abs(q1 - q2) / q_max
        q_diff[~np.isfinite(q_diff)] = 0.0
        mask &= q_diff > de_param.q_diff_th
    return pd.Series(mask, index=table.index)


def de_score(table: pd.DataFrame, de_param: DEParam) -> Tuple[float, pd.DataFrame]:
    """Sum of capped -log10(padj) over passing genes.

    Returns
    -------
    Tuple[float, pd.DataFrame]
        The score and the passing rows, ordered by padj then |lfc|.
    """
    passing = table[passing_gene_mask(table, de_param)]
    with np.errstate(divide="ignore"):
        neglog = -np.log10(passing["padj"].to_numpy(dtype=float))
    score = float(np.minimum(neglog, de_param.score_cap).sum()) if len(passing) else 0.0

    order = np.lexsort((-np.abs(passing["lfc"].to_numpy()), passing["padj"].to_numpy()))
    return score, passing.iloc[order]


@dataclass
class SeparabilityResult:
    """Verdict of a cluster-pair separability test.

    Attributes
    ----------
    score : float
        DE score (sum of capped -log10 padj over passing genes)
    is_separable : bool
        score > de_score_th and enough passing genes
    passing_genes : List[str]
        Passing genes, most significant first
    n_up : int
        Passing genes higher in the first group
    n_down : int
        Passing genes higher in the second group
    table : pd.DataFrame
        Full per-gene DE table
    """

    score: float = 0.0
    is_separable: bool = False
    passing_genes: List[str] = field(default_factory=list)
    n_up: int = 0
    n_down: int = 0
    table: Optional[pd.DataFrame] = field(default=None, repr=False)


def assess_separability(
    cells_a: Sequence[Any],
    cells_b: Sequence[Any],
    expr: ExpressionMatrix,
    de_param: DEParam,
    de_test: Optional[DETest] = None,
) -> SeparabilityResult:
    """Decide whether two cell groups are separable by differential expression.

    Parameters
    ----------
    cells_a, cells_b : Sequence
        Cell ids of the two groups.
    expr : ExpressionMatrix
        Expression the DE test reads.
    de_param : DEParam
        Thresholds.
    de_test : callable, optional
        DE collaborator. Defaults to LinearModelDETest.

    Returns
    -------
    SeparabilityResult

    Raises
    ------
    CollaboratorError
        If the DE test fails or returns a malformed table.
    """
    if set(cells_a) == set(cells_b):
        return SeparabilityResult()

    de_test = de_test or LinearModelDETest()
    try:
        table = de_test(expr, list(cells_a), list(cells_b), low_th=de_param.low_th)
    except CollaboratorError:
        raise
    except Exception as exc:
        raise CollaboratorError(
            f"DE test failed for groups of {len(cells_a)} and {len(cells_b)} cells: {exc}"
        ) from exc

    missing = [c for c in DE_COLUMNS if c not in table.columns]
    if missing:
        raise CollaboratorError(f"DE test result is missing columns {missing}")

    score, passing = de_score(table, de_param)
    n_up = int((passing["lfc"] > 0).sum())
    return SeparabilityResult(
        score=score,
        is_separable=bool(score > de_param.de_score_th and len(passing) >= de_param.min_genes),
        passing_genes=[str(g) for g in passing.index],
        n_up=n_up,
        n_down=len(passing) - n_up,
        table=table,
    )


@dataclass
class DEPairsResult:
    """All-pairs DE scores for a flat clustering.

    Attributes
    ----------
    scores : pd.DataFrame
        Symmetric cluster x cluster DE score matrix
    separable : pd.DataFrame
        Symmetric cluster x cluster 0/1 separability matrix
    markers : List[str]
        Union of the top passing genes of every pair
    elapsed_seconds : float
        Time taken for the DE computation
    """

    scores: pd.DataFrame
    separable: pd.DataFrame
    markers: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0


class DERunner:
    """Runs separability tests over every pair of clusters.

    Parameters
    ----------
    de_param : DEParam, optional
        Thresholds. Defaults to DEParam().
    de_test : callable, optional
        DE collaborator. Defaults to LinearModelDETest.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> runner = DERunner(DEParam(de_score_th=40))
    >>> result = runner.score_all_pairs(expr, assignment)
    >>> result.scores.loc["1", "2"]
    """

    def __init__(
        self,
        de_param: Optional[DEParam] = None,
        de_test: Optional[DETest] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.de_param = de_param or DEParam()
        self.de_test = de_test or LinearModelDETest()
        self.logger = logger or logging.getLogger(__name__)

    def assess(self, cells_a: Sequence[Any], cells_b: Sequence[Any], expr: ExpressionMatrix) -> SeparabilityResult:
        return assess_separability(cells_a, cells_b, expr, self.de_param, self.de_test)

    def score_all_pairs(
        self,
        expr: ExpressionMatrix,
        assignment: pd.Series,
        n_markers_per_pair: int = 20,
        n_workers: int = 1,
    ) -> DEPairsResult:
        """Score every unordered cluster pair.

        Parameters
        ----------
        expr : ExpressionMatrix
            Expression matrix
        assignment : pd.Series
            Cell -> cluster labels
        n_markers_per_pair : int
            Top passing genes kept per pair for the marker union
        n_workers : int
            Threads used for the pairwise tests

        Returns
        -------
        DEPairsResult
        """
        members = cluster_members(assignment)
        labels = list(members)
        pairs = list(combinations(labels, 2))
        self.logger.info(
            "Scoring %d cluster pairs across %d clusters (%d workers)",
            len(pairs),
            len(labels),
            n_workers,
        )

        start = time.time()

        def run_pair(pair):
            a, b = pair
            return pair, self.assess(members[a], members[b], expr)

        if n_workers > 1:
            with ThreadPoolExecutor(max_workers=n_workers) as executor:
                results = list(executor.map(run_pair, pairs))
        else:
            results = [run_pair(pair) for pair in pairs]

        score_map: Dict[str, float] = {}
        separable_map: Dict[str, float] = {}
        markers: List[str] = []
        for (a, b), result in results:
            key = f"{a}_{b}"
            score_map[key] = result.score
            separable_map[key] = float(result.is_separable)
            markers.extend(result.passing_genes[:n_markers_per_pair])
            self.logger.debug(
                "Pair %s vs %s: score=%.1f separable=%s (%d genes)",
                a,
                b,
                result.score,
                result.is_separable,
                len(result.passing_genes),
            )

        names = [str(label) for label in labels]
        elapsed = time.time() - start
        self.logger.info("Pairwise DE completed in %.1f seconds", elapsed)
        return DEPairsResult(
            scores=convert_pair_matrix(score_map, labels=names),
            separable=convert_pair_matrix(separable_map, labels=names),
            markers=list(dict.fromkeys(markers)),
            elapsed_seconds=elapsed,
        )
