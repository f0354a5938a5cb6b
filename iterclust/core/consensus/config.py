"""Configuration for consensus clustering and refinement.

``IterClustConfig`` is the top-level configuration object read by the CLI.
A YAML file holds up to three sections::

    clustering:
      de:
        de_score_th: 40
        min_cells: 10
    consensus:
      n_iterations: 50
      n_jobs: 4
    refine:
      tolerance: 0.02
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ...errors import ConfigError
from ..clustering.config import ClusteringConfig, _build

CONSENSUS_PARTITION_METHODS = ("affinity_leiden", "affinity_hierarchical")


@dataclass
class ConsensusConfig:
    """Configuration for the bootstrap consensus aggregator.

    Attributes
    ----------
    n_iterations : int
        Number of subsampled clustering runs
    sample_fraction : float
        Fraction of cells drawn (without replacement) per run
    n_jobs : int
        Parallel workers (1 = sequential)
    random_seed : int
        Base seed; iteration i uses random_seed + i
    partition_method : str
        affinity_leiden or affinity_hierarchical for the consensus split
    affinity_resolution : float
        Leiden resolution on the co-clustering graph
    affinity_cut : float
        Distance cut (on 1 - ratio) for affinity_hierarchical
    min_affinity : float
        Co-clustering ratios below this are dropped from the Leiden graph
    """

    n_iterations: int = 100
    sample_fraction: float = 0.8
    n_jobs: int = 1
    random_seed: int = 1337
    partition_method: str = "affinity_leiden"
    affinity_resolution: float = 1.0
    affinity_cut: float = 0.5
    min_affinity: float = 0.1

    def __post_init__(self) -> None:
        if self.n_iterations < 1:
            raise ConfigError(f"n_iterations must be >= 1, got {self.n_iterations}")
        if not 0.0 < self.sample_fraction <= 1.0:
            raise ConfigError(
                f"sample_fraction must lie in (0, 1], got {self.sample_fraction}"
            )
        if self.n_jobs == 0:
            raise ConfigError("n_jobs must be non-zero (use -1 for all cores)")
        if self.partition_method not in CONSENSUS_PARTITION_METHODS:
            raise ConfigError(
                f"Unknown consensus partition method '{self.partition_method}' "
                f"(choose from {CONSENSUS_PARTITION_METHODS})"
            )
        if not 0.0 <= self.affinity_cut <= 1.0:
            raise ConfigError(f"affinity_cut must lie in [0, 1], got {self.affinity_cut}")
        if not 0.0 <= self.min_affinity <= 1.0:
            raise ConfigError(f"min_affinity must lie in [0, 1], got {self.min_affinity}")


@dataclass
class RefineConfig:
    """Configuration for co-clustering refinement.

    Attributes
    ----------
    tolerance : float
        A cell moves only if its best other cluster beats its own by more than this
    confusion_threshold : float
        A cell moves only if its mean co-clustering with its own cluster is below this
    max_iterations : int
        Cap on refinement passes before a ConvergenceWarning
    enabled : bool
        Run refinement inside the consensus pipeline
    """

    tolerance: float = 0.02
    confusion_threshold: float = 0.6
    max_iterations: int = 50
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.tolerance < 0:
            raise ConfigError(f"tolerance must be >= 0, got {self.tolerance}")
        if not 0.0 <= self.confusion_threshold <= 1.0:
            raise ConfigError(
                f"confusion_threshold must lie in [0, 1], got {self.confusion_threshold}"
            )
        if self.max_iterations < 1:
            raise ConfigError(f"max_iterations must be >= 1, got {self.max_iterations}")


@dataclass
class IterClustConfig:
    """Master configuration.

    Attributes
    ----------
    clustering : ClusteringConfig
        DE thresholds and split/merge collaborators
    consensus : ConsensusConfig
        Bootstrap consensus settings
    refine : RefineConfig
        Refinement settings
    """

    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    consensus: ConsensusConfig = field(default_factory=ConsensusConfig)
    refine: RefineConfig = field(default_factory=RefineConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "IterClustConfig":
        data = dict(data or {})
        unknown = sorted(set(data) - {"clustering", "consensus", "refine"})
        if unknown:
            raise ConfigError(f"Unknown configuration section(s): {unknown}")
        return cls(
            clustering=ClusteringConfig.from_dict(data.get("clustering")),
            consensus=_build(ConsensusConfig, data.get("consensus"), "consensus"),
            refine=_build(RefineConfig, data.get("refine"), "refine"),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "IterClustConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {path} must hold a mapping")
        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "IterClustConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)
