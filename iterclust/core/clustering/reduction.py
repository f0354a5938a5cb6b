"""Dimensionality reduction collaborators.

A reducer is any callable ``reducer(sub, nuisance=None) -> DataFrame`` taking
a cells x genes expression frame and returning cells x k coordinates with
the same cell index. ``PCAReducer`` runs scale -> PCA through scanpy.

Nuisance covariates (batch, sequencing depth) are handled by eigen-removal:
any reduced dimension correlated with a nuisance column beyond the removal
threshold is dropped, so it cannot drive a split.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pandas as pd

from ...errors import DimensionError
from .config import ReductionConfig

logger = logging.getLogger(__name__)


def _nuisance_design(nuisance: pd.DataFrame, cells: pd.Index) -> pd.DataFrame:
    """Numeric nuisance design aligned to ``cells``; categoricals one-hot encoded."""
    missing = cells.difference(nuisance.index)
    if len(missing):
        raise DimensionError(
            f"{len(missing)} cells have no nuisance covariates: {missing[:5].tolist()}"
        )
    aligned = nuisance.loc[cells]
    categorical = [
        c for c in aligned.columns
        if not pd.api.types.is_numeric_dtype(aligned[c]) or pd.api.types.is_bool_dtype(aligned[c])
    ]
    if categorical:
        aligned = pd.get_dummies(aligned, columns=categorical, dtype=float)
    return aligned.astype(float)


def nuisance_correlation(coords: pd.DataFrame, nuisance: pd.DataFrame) -> pd.DataFrame:
    """Absolute Pearson correlation of every coordinate with every nuisance column.

    Constant columns (e.g. a batch absent from this subset) correlate as 0.
    """
    design = _nuisance_design(nuisance, coords.index)
    x = coords.to_numpy(dtype=float)
    z = design.to_numpy(dtype=float)
    x = x - x.mean(axis=0)
    z = z - z.mean(axis=0)
    with np.errstate(divide="ignore", invalid="ignore"):
        cor = (x.T @ z) / np.outer(np.linalg.norm(x, axis=0), np.linalg.norm(z, axis=0))
    cor = np.nan_to_num(np.abs(cor), nan=0.0, posinf=0.0, neginf=0.0)
    return pd.DataFrame(cor, index=coords.columns, columns=design.columns)


def remove_nuisance_dimensions(
    coords: pd.DataFrame,
    nuisance: Optional[pd.DataFrame],
    removal_threshold: float,
) -> pd.DataFrame:
    """Drop reduced dimensions correlated with any nuisance covariate.

    Parameters
    ----------
    coords : pd.DataFrame
        Cells x k reduced coordinates.
    nuisance : pd.DataFrame, optional
        Cells x covariates. Returns ``coords`` unchanged when None or empty.
    removal_threshold : float
        Dimensions whose |correlation| with any covariate exceeds this are removed.

    Returns
    -------
    pd.DataFrame
        The retained dimensions (possibly none).
    """
    if nuisance is None or nuisance.shape[1] == 0 or coords.shape[1] == 0:
        return coords
    cor = nuisance_correlation(coords, nuisance)
    drop = cor.index[(cor > removal_threshold).any(axis=1)]
    if len(drop):
        logger.debug(
            "Removed %d/%d dimensions correlated with nuisance covariates: %s",
            len(drop),
            coords.shape[1],
            list(drop),
        )
    return coords.drop(columns=drop)


class PCAReducer:
    """Highest-variance genes -> scale -> PCA (scanpy), with eigen-removal.

    Parameters
    ----------
    config : ReductionConfig, optional
        Reduction configuration. If None, uses defaults.
    """

    def __init__(self, config: Optional[ReductionConfig] = None):
        self.config = config or ReductionConfig()

    def __call__(self, sub: pd.DataFrame, nuisance: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        import scanpy as sc
        from anndata import AnnData

        cfg = self.config
        values = sub.to_numpy(dtype=float)
        n_cells = values.shape[0]

        variance = values.var(axis=0)
        informative = np.flatnonzero(variance > 0)
        top = informative[np.argsort(-variance[informative], kind="stable")][: cfg.n_var_genes]

        n_comps = min(cfg.n_pcs, len(top) - 1, n_cells - 1)
        if n_comps < 1:
            return pd.DataFrame(index=sub.index)

        adata = AnnData(values[:, np.sort(top)])
        sc.pp.scale(adata, zero_center=True, max_value=cfg.scale_clip)
        sc.tl.pca(adata, n_comps=n_comps, svd_solver="arpack", random_state=cfg.random_seed)

        coords = pd.DataFrame(
            adata.obsm["X_pca"][:, :n_comps],
            index=sub.index,
            columns=[f"PC{i + 1}" for i in range(n_comps)],
        )
        return remove_nuisance_dimensions(coords, nuisance, cfg.removal_threshold)


def make_reducer(config: Optional[ReductionConfig] = None) -> PCAReducer:
    """Return the reducer configured by ``config.method``."""
    config = config or ReductionConfig()
    return PCAReducer(config)
