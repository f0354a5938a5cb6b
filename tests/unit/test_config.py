"""Unit tests for configuration classes."""

import pytest

from iterclust.core.clustering import ClusteringConfig, DEParam, PartitionConfig, ReductionConfig
from iterclust.core.consensus import ConsensusConfig, IterClustConfig, RefineConfig
from iterclust.errors import ConfigError


class TestDEParam:
    """Tests for DEParam dataclass."""

    def test_default_values(self):
        """Test default threshold values."""
        param = DEParam()
        assert param.padj_th == 0.01
        assert param.lfc_th == 1.0
        assert param.low_th == 1.0
        assert param.q1_th == 0.5
        assert param.q2_th is None
        assert param.q_diff_th == 0.7
        assert param.de_score_th == 150.0
        assert param.min_cells == 4

    def test_frozen(self):
        """DEParam is immutable."""
        param = DEParam()
        with pytest.raises(AttributeError):
            param.min_cells = 10

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"padj_th": 1.5},
            {"q1_th": -0.1},
            {"q_diff_th": 2.0},
            {"de_score_th": 0},
            {"min_cells": 0},
            {"lfc_th": -1.0},
        ],
    )
    def test_out_of_range_raises(self, kwargs):
        """Out-of-range thresholds raise ConfigError."""
        with pytest.raises(ConfigError):
            DEParam(**kwargs)

    def test_optional_thresholds_can_be_disabled(self):
        """Optional thresholds accept None."""
        param = DEParam(q1_th=None, q_diff_th=None)
        assert param.q1_th is None

    def test_unknown_key_raises(self):
        """from_dict rejects unknown keys."""
        with pytest.raises(ConfigError):
            DEParam.from_dict({"de_score": 40})


class TestClusteringConfig:
    """Tests for ClusteringConfig and its sections."""

    def test_default_values(self):
        """Test default section values."""
        config = ClusteringConfig()
        assert config.reduction.method == "pca"
        assert config.reduction.n_pcs == 20
        assert config.partition.method == "leiden"
        assert config.split.max_depth is None
        assert config.merge.max_passes == 100

    def test_unknown_methods_raise(self):
        """Unknown reduction/partition methods raise ConfigError."""
        with pytest.raises(ConfigError):
            ReductionConfig(method="umap")
        with pytest.raises(ConfigError):
            PartitionConfig(method="kmeans")

    def test_from_yaml_nested_section(self, tmp_path):
        """A top-level clustering section is unwrapped."""
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text(
            """
clustering:
  de:
    de_score_th: 40
    min_cells: 10
  partition:
    method: hierarchical
    n_groups: 4
"""
        )
        config = ClusteringConfig.from_yaml(yaml_file)
        assert config.de.de_score_th == 40
        assert config.de.min_cells == 10
        assert config.partition.method == "hierarchical"
        assert config.partition.n_groups == 4

    def test_to_dict(self):
        """Test converting config to dictionary."""
        d = ClusteringConfig().to_dict()
        assert d["de"]["de_score_th"] == 150.0
        assert d["reduction"]["n_pcs"] == 20
        assert "merge" in d


class TestIterClustConfig:
    """Tests for the master configuration."""

    def test_default_values(self):
        """Test default consensus and refine values."""
        config = IterClustConfig.default()
        assert config.consensus.n_iterations == 100
        assert config.consensus.sample_fraction == 0.8
        assert config.consensus.partition_method == "affinity_leiden"
        assert config.refine.tolerance == 0.02
        assert config.refine.confusion_threshold == 0.6
        assert config.refine.max_iterations == 50

    def test_from_yaml(self, sample_config_yaml):
        """Test loading every section from YAML."""
        config = IterClustConfig.from_yaml(sample_config_yaml)
        assert config.clustering.de.de_score_th == 40
        assert config.clustering.de.min_cells == 6
        assert config.clustering.partition.resolution == 0.8
        assert config.clustering.merge.max_passes == 10
        assert config.consensus.n_iterations == 5
        assert config.consensus.n_jobs == 2
        assert config.refine.tolerance == 0.05

    def test_empty_yaml_gives_defaults(self, tmp_path):
        """An empty file loads the defaults."""
        yaml_file = tmp_path / "empty.yaml"
        yaml_file.write_text("")
        assert IterClustConfig.from_yaml(yaml_file) == IterClustConfig()

    def test_unknown_section_raises(self, tmp_path):
        """Unknown top-level sections raise ConfigError."""
        yaml_file = tmp_path / "bad.yaml"
        yaml_file.write_text("plotting:\n  dpi: 300\n")
        with pytest.raises(ConfigError):
            IterClustConfig.from_yaml(yaml_file)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"sample_fraction": 0.0},
            {"sample_fraction": 1.2},
            {"n_iterations": 0},
            {"partition_method": "louvain"},
        ],
    )
    def test_consensus_validation(self, kwargs):
        """Out-of-range consensus settings raise ConfigError."""
        with pytest.raises(ConfigError):
            ConsensusConfig(**kwargs)

    def test_refine_validation(self):
        """Negative tolerance raises ConfigError."""
        with pytest.raises(ConfigError):
            RefineConfig(tolerance=-0.1)

    def test_round_trip_dict(self):
        """to_dict output rebuilds an equal config."""
        config = IterClustConfig(consensus=ConsensusConfig(n_iterations=7))
        assert IterClustConfig.from_dict(config.to_dict()) == config
