"""Pytest configuration and shared fixtures for iterclust tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tests.fixtures import block_ratio_counts, create_blob_frame, marker_genes


# ============================================================================
# Expression Fixtures
# ============================================================================


@pytest.fixture
def blob_data():
    """Four separated blobs of 40 cells: (genes x cells frame, truth labels)."""
    return create_blob_frame(n_blobs=4, cells_per_blob=40)


@pytest.fixture
def blob_expr(blob_data):
    """ExpressionMatrix of the four-blob data."""
    from iterclust.core.clustering import ExpressionMatrix

    frame, _ = blob_data
    return ExpressionMatrix.from_frame(frame)


@pytest.fixture
def blob_truth(blob_data) -> pd.Series:
    """True blob labels of the four-blob data."""
    return blob_data[1]


@pytest.fixture
def small_blob_data():
    """Four blobs of 30 cells for consensus runs."""
    return create_blob_frame(n_blobs=4, cells_per_blob=30, seed=7)


@pytest.fixture
def small_blob_expr(small_blob_data):
    from iterclust.core.clustering import ExpressionMatrix

    frame, _ = small_blob_data
    return ExpressionMatrix.from_frame(frame)


@pytest.fixture(scope="session")
def scenario_data():
    """200 cells in four blobs of 50 over 50 genes: (genes x cells frame, truth labels)."""
    return create_blob_frame(n_blobs=4, cells_per_blob=50, markers_per_blob=10, n_noise_genes=10, seed=2024)


@pytest.fixture(scope="session")
def scenario_expr(scenario_data):
    from iterclust.core.clustering import ExpressionMatrix

    frame, _ = scenario_data
    return ExpressionMatrix.from_frame(frame)


@pytest.fixture
def all_markers():
    """Marker gene names of the four-blob data."""
    return marker_genes(4, 10)


@pytest.fixture
def two_block_counts():
    """Co-clustering counts for two blobs of 20 cells (0.9 within, 0.1 across)."""
    truth = pd.Series(np.repeat([1, 2], 20), index=[f"c{i:02d}" for i in range(40)])
    return truth, block_ratio_counts(truth, within=9, across=1, n_runs=10)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def fast_config():
    """IterClustConfig tuned for quick consensus tests."""
    from iterclust.core.consensus import ConsensusConfig, IterClustConfig

    return IterClustConfig(consensus=ConsensusConfig(n_iterations=4, sample_fraction=0.8))


@pytest.fixture
def sample_config_yaml(tmp_path) -> Path:
    """Create a sample configuration file."""
    import yaml

    config = {
        "clustering": {
            "de": {"de_score_th": 40, "min_cells": 6, "q2_th": None},
            "partition": {"resolution": 0.8},
            "merge": {"max_passes": 10},
        },
        "consensus": {"n_iterations": 5, "n_jobs": 2},
        "refine": {"tolerance": 0.05},
    }

    path = tmp_path / "iterclust.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir
