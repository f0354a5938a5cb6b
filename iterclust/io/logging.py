"""Run logs and run records for iterclust.

Every CLI command writes into its output directory::

    out_dir/
        logs/<command>_<YYYYmmdd_HHMMSS>.log   # run log of the iterclust logger
        logs/<command>_config.yaml             # configuration the run used
        run/iterations.jsonl                   # consensus only, one record per iteration
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

PathLike = Union[str, Path]

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

RUN_LOG_DIR = "logs"
ITERATION_LOG = "iterations.jsonl"


def attach_run_log(
    out_dir: PathLike,
    command: str,
    level: int = logging.INFO,
    name: str = "iterclust",
) -> Path:
    """Send the ``name`` logger to a timestamped file under ``out_dir/logs``.

    Records still propagate to the root logger, so console output set up
    by the CLI keeps working. A file handler from an earlier run in the
    same process is closed and replaced.

    Returns
    -------
    Path
        The log file, e.g. ``logs/consensus_20251209_080530.log``.
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_path = Path(out_dir) / RUN_LOG_DIR / f"{command}_{timestamp}.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()
    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    return log_path


def write_run_config(out_dir: PathLike, command: str, config: Dict[str, Any]) -> Path:
    """Write the configuration of a run as ``logs/<command>_config.yaml``.

    The file is rewritten on every run, so it always matches the latest log.
    """
    path = Path(out_dir) / RUN_LOG_DIR / f"{command}_config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config, handle, sort_keys=False)
    return path


def log_iteration_record(
    run_dir: PathLike,
    iteration: int,
    record: Dict[str, Any],
    logger: Optional[logging.Logger] = None,
) -> Path:
    """Append one bootstrap iteration record to ``run_dir/iterations.jsonl``.

    The line holds the iteration index, the time it was logged and
    ``record`` (seed, cluster count, timing, warnings). Values JSON cannot
    encode are written as strings.
    """
    path = Path(run_dir) / ITERATION_LOG
    path.parent.mkdir(parents=True, exist_ok=True)
    line = {
        "iteration": iteration,
        "logged_at": datetime.now().isoformat(timespec="seconds"),
        **record,
    }
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(line, default=str))
        handle.write("\n")
    if logger is not None:
        logger.debug("Recorded iteration %d in %s", iteration, path)
    return path
