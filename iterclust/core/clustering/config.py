"""Configuration classes for the clustering module.

All clustering thresholds are configurable and can be loaded from YAML.
"""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ...errors import ConfigError

REDUCTION_METHODS = ("pca",)
PARTITION_METHODS = ("leiden", "hierarchical")


def _build(cls, data: Optional[Dict[str, Any]], section: str):
    """Instantiate a config dataclass, rejecting unknown keys."""
    data = dict(data or {})
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown {section} option(s): {unknown}")
    return cls(**data)


@dataclass(frozen=True)
class DEParam:
    """Significance thresholds for separating genes and cluster pairs.

    Attributes
    ----------
    padj_th : float
        Adjusted p-value must be below this for a gene to pass
    lfc_th : float
        Absolute log-fold-change must exceed this
    low_th : float
        Expression above this counts a cell as detecting the gene (q1/q2)
    q1_th : float, optional
        If set, the higher of q1/q2 must exceed this
    q2_th : float, optional
        If set, the lower of q1/q2 must be below this
    q_diff_th : float, optional
        If set, |q1 - q2| / max(q1, q2) must exceed this
    de_score_th : float
        A cluster pair is separable only if its DE score exceeds this
    min_cells : int
        Minimum cluster size; sets smaller than 2 * min_cells are not split
    score_cap : float
        Per-gene cap on -log10(padj) in the DE score
    min_genes : int
        Minimum number of passing genes for a separable pair
    """

    padj_th: float = 0.01
    lfc_th: float = 1.0
    low_th: float = 1.0
    q1_th: Optional[float] = 0.5
    q2_th: Optional[float] = None
    q_diff_th: Optional[float] = 0.7
    de_score_th: float = 150.0
    min_cells: int = 4
    score_cap: float = 20.0
    min_genes: int = 1

    def __post_init__(self) -> None:
        for name in ("padj_th", "q1_th", "q2_th", "q_diff_th"):
            value = getattr(self, name)
            if value is not None and not 0.0 <= value <= 1.0:
                raise ConfigError(f"DEParam.{name} must lie in [0, 1], got {value}")
        if self.de_score_th <= 0:
            raise ConfigError(f"DEParam.de_score_th must be > 0, got {self.de_score_th}")
        if self.low_th < 0:
            raise ConfigError(f"DEParam.low_th must be >= 0, got {self.low_th}")
        if self.lfc_th < 0:
            raise ConfigError(f"DEParam.lfc_th must be >= 0, got {self.lfc_th}")
        if self.score_cap <= 0:
            raise ConfigError(f"DEParam.score_cap must be > 0, got {self.score_cap}")
        if self.min_cells < 1:
            raise ConfigError(f"DEParam.min_cells must be >= 1, got {self.min_cells}")
        if self.min_genes < 1:
            raise ConfigError(f"DEParam.min_genes must be >= 1, got {self.min_genes}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DEParam":
        return _build(cls, data, "de")


@dataclass
class ReductionConfig:
    """Configuration for dimensionality reduction.

    Attributes
    ----------
    method : str
        Reduction back-end (pca)
    n_pcs : int
        Number of principal components to compute
    n_var_genes : int
        Number of highest-variance genes fed to the reduction
    removal_threshold : float
        Drop reduced dimensions whose |correlation| with any nuisance
        covariate exceeds this
    scale_clip : float
        Value clipping during scaling
    random_seed : int
        Random seed for reproducibility
    """

    method: str = "pca"
    n_pcs: int = 20
    n_var_genes: int = 2000
    removal_threshold: float = 0.7
    scale_clip: float = 10.0
    random_seed: int = 1337

    def __post_init__(self) -> None:
        if self.method not in REDUCTION_METHODS:
            raise ConfigError(
                f"Unknown reduction method '{self.method}' (choose from {REDUCTION_METHODS})"
            )
        if self.n_pcs < 1:
            raise ConfigError(f"n_pcs must be >= 1, got {self.n_pcs}")
        if not 0.0 <= self.removal_threshold <= 1.0:
            raise ConfigError(
                f"removal_threshold must lie in [0, 1], got {self.removal_threshold}"
            )


@dataclass
class PartitionConfig:
    """Configuration for partitioning reduced coordinates.

    Attributes
    ----------
    method : str
        leiden (kNN graph + Leiden) or hierarchical (Ward)
    neighbors_k : int
        k for the neighborhood graph
    resolution : float
        Leiden resolution
    n_groups : int
        Number of groups cut from the Ward tree
    random_seed : int
        Random seed for reproducibility
    """

    method: str = "leiden"
    neighbors_k: int = 15
    resolution: float = 1.0
    n_groups: int = 8
    random_seed: int = 1337

    def __post_init__(self) -> None:
        if self.method not in PARTITION_METHODS:
            raise ConfigError(
                f"Unknown partition method '{self.method}' (choose from {PARTITION_METHODS})"
            )
        if self.neighbors_k < 2:
            raise ConfigError(f"neighbors_k must be >= 2, got {self.neighbors_k}")
        if self.n_groups < 2:
            raise ConfigError(f"n_groups must be >= 2, got {self.n_groups}")


@dataclass
class SplitConfig:
    """Configuration for the iterative split engine.

    Attributes
    ----------
    max_depth : int, optional
        Stop descending below this depth (None = unbounded)
    fold_small_groups : bool
        Fold partition groups smaller than min_cells into their nearest group
    """

    max_depth: Optional[int] = None
    fold_small_groups: bool = True


@dataclass
class MergeConfig:
    """Configuration for the cluster merge engine.

    Attributes
    ----------
    max_passes : int
        Cap on merge passes before a ConvergenceWarning
    n_markers_per_pair : int
        Top passing genes kept as markers from every tested pair
    use_markers : bool
        Default merge coordinates are marker-gene expression; all genes if False
    """

    max_passes: int = 100
    n_markers_per_pair: int = 20
    use_markers: bool = True

    def __post_init__(self) -> None:
        if self.max_passes < 1:
            raise ConfigError(f"max_passes must be >= 1, got {self.max_passes}")


@dataclass
class ClusteringConfig:
    """Master configuration for split and merge.

    Attributes
    ----------
    de : DEParam
        DE separability thresholds
    reduction : ReductionConfig
        Dimensionality reduction configuration
    partition : PartitionConfig
        Partition configuration
    split : SplitConfig
        Split engine configuration
    merge : MergeConfig
        Merge engine configuration
    """

    de: DEParam = field(default_factory=DEParam)
    reduction: ReductionConfig = field(default_factory=ReductionConfig)
    partition: PartitionConfig = field(default_factory=PartitionConfig)
    split: SplitConfig = field(default_factory=SplitConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ClusteringConfig":
        data = dict(data or {})
        unknown = sorted(set(data) - {"de", "reduction", "partition", "split", "merge"})
        if unknown:
            raise ConfigError(f"Unknown clustering section(s): {unknown}")
        return cls(
            de=DEParam.from_dict(data.get("de")),
            reduction=_build(ReductionConfig, data.get("reduction"), "reduction"),
            partition=_build(PartitionConfig, data.get("partition"), "partition"),
            split=_build(SplitConfig, data.get("split"), "split"),
            merge=_build(MergeConfig, data.get("merge"), "merge"),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "ClusteringConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested clustering section
        if "clustering" in data:
            data = data["clustering"]

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "ClusteringConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)
