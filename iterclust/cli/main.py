"""Command-line interface for iterclust.

Provides CLI commands for split/merge clustering, consensus clustering,
refinement, pairwise DE scoring and dendrograms.
"""

import logging
from pathlib import Path
from typing import Optional

import click

from iterclust import __version__


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    logger = logging.getLogger("iterclust")
    logger.setLevel(level)
    return logger


def _load_config(config: Optional[str]):
    from iterclust.core.consensus import IterClustConfig

    if config:
        return IterClustConfig.from_yaml(Path(config))
    return IterClustConfig.default()


def _start_run_log(out_dir: Path, command: str, cfg, logger: logging.Logger, debug: bool) -> Path:
    from iterclust.io import attach_run_log, write_run_config

    log_path = attach_run_log(out_dir, command, level=logging.DEBUG if debug else logging.INFO)
    write_run_config(out_dir, command, cfg.to_dict())
    logger.info("Writing run log to %s", log_path)
    return log_path


@click.group()
@click.version_option(version=__version__, prog_name="iterclust")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """iterclust: iterative DE-validated clustering of single-cell expression.

    Examples:

        # Split/merge clustering of an AnnData file
        iterclust split --input cells.h5ad --out out/split

        # Bootstrap consensus clustering with 4 workers, resumable
        iterclust consensus --input cells.h5ad --out out/consensus --n-jobs 4

        # Refine an assignment with saved co-clustering counts
        iterclust refine --assignment out/split/assignment.csv \\
            --cocluster out/consensus/cocluster_counts.npz --out out/refined

        # Pairwise DE scores between the clusters of an assignment
        iterclust de --input cells.h5ad --assignment out/split/assignment.csv --out out/de
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Expression input (.h5ad or genes x cells CSV)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file (YAML)")
@click.option("--layer", default=None, help="AnnData layer to use instead of X")
@click.option("--nuisance", type=click.Path(exists=True),
              help="Cells x covariates CSV of nuisance variables")
@click.option("--merge/--no-merge", default=True, help="Run the merge pass after splitting")
@click.pass_context
def split(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    layer: Optional[str],
    nuisance: Optional[str],
    merge: bool,
) -> None:
    """Run iterative split clustering, optionally followed by merging."""
    logger = ctx.obj["logger"]

    from iterclust.core.clustering import ClusterMergeEngine, IterativeSplitEngine
    from iterclust.errors import IterClustError
    from iterclust.io import (
        ensure_output_dir,
        load_expression,
        load_nuisance,
        write_assignment,
        write_markers,
    )

    out_dir = ensure_output_dir(output_path)
    try:
        cfg = _load_config(config)
        _start_run_log(out_dir, "split", cfg, logger, ctx.obj["debug"])
        expr = load_expression(input_path, layer=layer)
        covariates = load_nuisance(nuisance) if nuisance else None

        result = IterativeSplitEngine(cfg.clustering, logger=logger).run(expr, nuisance=covariates)
        assignment, markers = result.assignment, result.markers
        if merge:
            merged = ClusterMergeEngine(cfg.clustering, logger=logger).run(
                expr, assignment, markers=markers
            )
            assignment, markers = merged.assignment, merged.markers
    except IterClustError as exc:
        raise click.ClickException(str(exc)) from exc

    write_assignment(assignment, out_dir / "assignment.csv")
    write_markers(markers, out_dir / "markers.txt")
    for warning in result.warnings:
        click.echo(f"Warning: {warning}", err=True)
    click.echo(f"Clustering complete: {assignment.nunique()} clusters, {len(markers)} markers")
    click.echo(f"Output saved to: {out_dir}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Expression input (.h5ad or genes x cells CSV)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file (YAML)")
@click.option("--layer", default=None, help="AnnData layer to use instead of X")
@click.option("--nuisance", type=click.Path(exists=True),
              help="Cells x covariates CSV of nuisance variables")
@click.option("--n-iterations", type=int, default=None, help="Override consensus.n_iterations")
@click.option("--n-jobs", type=int, default=None, help="Override consensus.n_jobs")
@click.option("--resume", is_flag=True, help="Reuse iterations saved in the run directory")
@click.pass_context
def consensus(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    layer: Optional[str],
    nuisance: Optional[str],
    n_iterations: Optional[int],
    n_jobs: Optional[int],
    resume: bool,
) -> None:
    """Run bootstrap consensus clustering.

    Per-iteration assignments are saved under OUT/run so an interrupted
    run can be continued with --resume.
    """
    logger = ctx.obj["logger"]

    from dataclasses import replace

    from iterclust.core.consensus import ConsensusAggregator
    from iterclust.errors import IterClustError
    from iterclust.io import (
        ensure_output_dir,
        load_expression,
        load_nuisance,
        save_cocluster_counts,
        write_assignment,
        write_markers,
    )

    out_dir = ensure_output_dir(output_path)
    run_dir = out_dir / "run"
    if not resume and any((run_dir / "iterations").glob("iter_*.csv")):
        raise click.ClickException(
            f"{run_dir} already holds saved iterations; pass --resume or use a new output directory"
        )

    try:
        cfg = _load_config(config)
        overrides = {}
        if n_iterations is not None:
            overrides["n_iterations"] = n_iterations
        if n_jobs is not None:
            overrides["n_jobs"] = n_jobs
        if overrides:
            cfg.consensus = replace(cfg.consensus, **overrides)
        _start_run_log(out_dir, "consensus", cfg, logger, ctx.obj["debug"])

        expr = load_expression(input_path, layer=layer)
        covariates = load_nuisance(nuisance) if nuisance else None
        result = ConsensusAggregator(cfg, logger=logger).run(
            expr, nuisance=covariates, run_dir=run_dir
        )
    except IterClustError as exc:
        raise click.ClickException(str(exc)) from exc

    save_cocluster_counts(result.cocluster, out_dir / "cocluster_counts.npz")
    write_assignment(result.assignment, out_dir / "assignment.csv")
    write_markers(result.markers, out_dir / "markers.txt")
    for error in result.errors:
        click.echo(f"Warning: {error}", err=True)
    click.echo(
        f"Consensus complete: {result.n_clusters} clusters from {result.n_completed} iterations"
    )
    click.echo(f"Output saved to: {out_dir}")


@cli.command()
@click.option("--assignment", "-a", "assignment_path", required=True, type=click.Path(exists=True),
              help="cell,cluster CSV to refine")
@click.option("--cocluster", "-m", "cocluster_path", required=True, type=click.Path(exists=True),
              help="Co-clustering counts (.npz) from a consensus run")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file (YAML)")
@click.pass_context
def refine(
    ctx: click.Context,
    assignment_path: str,
    cocluster_path: str,
    output_path: str,
    config: Optional[str],
) -> None:
    """Reassign weakly-held cells by co-clustering frequency."""
    logger = ctx.obj["logger"]

    from iterclust.core.consensus import refine_clusters
    from iterclust.errors import IterClustError
    from iterclust.io import ensure_output_dir, load_cocluster_counts, read_assignment, write_assignment

    out_dir = ensure_output_dir(output_path)
    try:
        cfg = _load_config(config).refine
        result = refine_clusters(
            read_assignment(assignment_path),
            load_cocluster_counts(cocluster_path),
            tolerance=cfg.tolerance,
            confusion_threshold=cfg.confusion_threshold,
            max_iterations=cfg.max_iterations,
            logger=logger,
        )
    except IterClustError as exc:
        raise click.ClickException(str(exc)) from exc

    write_assignment(result.assignment, out_dir / "assignment.csv")
    click.echo(
        f"Refinement complete: {result.n_moved} cells moved in {result.n_iterations} passes, "
        f"{result.assignment.nunique()} clusters"
    )
    if not result.converged:
        click.echo("Warning: refinement did not converge", err=True)


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Expression input (.h5ad or genes x cells CSV)")
@click.option("--assignment", "-a", "assignment_path", required=True, type=click.Path(exists=True),
              help="cell,cluster CSV")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file (YAML)")
@click.option("--layer", default=None, help="AnnData layer to use instead of X")
@click.option("--n-workers", type=int, default=1, help="Threads for the pairwise DE tests")
@click.pass_context
def de(
    ctx: click.Context,
    input_path: str,
    assignment_path: str,
    output_path: str,
    config: Optional[str],
    layer: Optional[str],
    n_workers: int,
) -> None:
    """Score differential expression between every pair of clusters.

    Writes the cluster x cluster DE score and separability matrices plus
    the union of the top passing genes of every pair.
    """
    logger = ctx.obj["logger"]

    from iterclust.core.clustering import DERunner
    from iterclust.errors import IterClustError
    from iterclust.io import (
        ensure_output_dir,
        load_expression,
        read_assignment,
        write_dataframe,
        write_markers,
    )

    out_dir = ensure_output_dir(output_path)
    try:
        cfg = _load_config(config).clustering
        expr = load_expression(input_path, layer=layer)
        result = DERunner(cfg.de, logger=logger).score_all_pairs(
            expr,
            read_assignment(assignment_path),
            n_markers_per_pair=cfg.merge.n_markers_per_pair,
            n_workers=n_workers,
        )
    except IterClustError as exc:
        raise click.ClickException(str(exc)) from exc

    write_dataframe(result.scores, out_dir / "de_scores.csv", index=True)
    write_dataframe(result.separable.astype(int), out_dir / "de_separable.csv", index=True)
    write_markers(result.markers, out_dir / "markers.txt")
    n_clusters = len(result.scores)
    n_separable = int(result.separable.to_numpy().sum()) // 2
    click.echo(
        f"Pairwise DE complete: {n_separable} of {n_clusters * (n_clusters - 1) // 2} "
        f"cluster pairs separable, {len(result.markers)} markers"
    )
    click.echo(f"Output saved to: {out_dir}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Expression input (.h5ad or genes x cells CSV)")
@click.option("--assignment", "-a", "assignment_path", required=True, type=click.Path(exists=True),
              help="cell,cluster CSV")
@click.option("--markers", "-m", "markers_path", required=True, type=click.Path(exists=True),
              help="Marker genes, one per line")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--layer", default=None, help="AnnData layer to use instead of X")
@click.option("--n-boot", type=int, default=100, help="Bootstrap resamples for branch confidence")
@click.pass_context
def dendrogram(
    ctx: click.Context,
    input_path: str,
    assignment_path: str,
    markers_path: str,
    output_path: str,
    layer: Optional[str],
    n_boot: int,
) -> None:
    """Build a cluster dendrogram and write it as Newick."""
    from iterclust.core.clustering import build_dendrogram
    from iterclust.errors import IterClustError
    from iterclust.io import ensure_output_dir, load_expression, read_assignment, read_markers

    out_dir = ensure_output_dir(output_path)
    try:
        expr = load_expression(input_path, layer=layer)
        tree = build_dendrogram(expr, read_assignment(assignment_path), read_markers(markers_path), n_boot=n_boot)
    except IterClustError as exc:
        raise click.ClickException(str(exc)) from exc

    output_file = out_dir / "dendrogram.nwk"
    output_file.write_text(tree.to_newick() + "\n", encoding="utf-8")
    click.echo(f"Dendrogram of {len(tree.labels)} clusters saved to: {output_file}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
