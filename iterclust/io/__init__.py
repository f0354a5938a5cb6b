"""I/O utilities for iterclust.

Provides logging helpers and clustering artifact I/O.
"""

from .logging import attach_run_log, log_iteration_record, write_run_config
from .assignments import (
    ensure_output_dir,
    write_dataframe,
    load_expression,
    load_nuisance,
    write_assignment,
    read_assignment,
    write_markers,
    read_markers,
    save_cocluster_counts,
    load_cocluster_counts,
    iteration_path,
    write_iteration,
    load_iterations,
)

__all__ = [
    # Logging
    "attach_run_log",
    "write_run_config",
    "log_iteration_record",
    # Artifacts
    "ensure_output_dir",
    "write_dataframe",
    "load_expression",
    "load_nuisance",
    "write_assignment",
    "read_assignment",
    "write_markers",
    "read_markers",
    "save_cocluster_counts",
    "load_cocluster_counts",
    "iteration_path",
    "write_iteration",
    "load_iterations",
]
