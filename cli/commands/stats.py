"""
Stats Command - Per-zoom statistics of a cluster index.

Usage:
    patlas stats nodes.json
"""

import logging
from pathlib import Path

import click

from cli.commands._common import emit_json, format_option, header, load_index, snapshot_argument
from core.clustering.metrics import compute_cluster_metrics, compute_index_metrics

logger = logging.getLogger("patlas.stats")


@click.command("stats")
@snapshot_argument
@format_option
@click.pass_obj
def stats(ctx, snapshot: Path, output_format: str):
    """
    Show how the snapshot clusters at each zoom level.

    \b
    Examples:
        patlas stats nodes.json
        patlas stats nodes.json -f json
    """
    snap, index = load_index(ctx, snapshot)
    metrics = compute_index_metrics(index)
    overall = compute_cluster_metrics(index.nodes)

    if output_format == "json":
        data = metrics.to_dict()
        data["version"] = snap.version
        data["nodes"] = overall.to_dict()
        emit_json(data)
        return

    header("Cluster Index Statistics")
    click.echo(f"\n  Snapshot: {snapshot} (version {snap.version})")
    click.echo(f"  Nodes: {metrics.total_nodes} indexed, {metrics.skipped_nodes} skipped")
    click.echo(f"  Clusters: {metrics.total_clusters}")
    click.echo(f"  Build time: {metrics.build_ms:.1f}ms")
    click.echo(f"  Avg health: {overall.avg_health}")

    click.echo(f"\n  {'zoom':>4} {'entries':>8} {'clusters':>8} {'loose':>6} {'largest':>8}")
    for level in metrics.levels:
        click.echo(
            f"  {level.zoom:>4} {level.entries:>8} {level.clusters:>8} "
            f"{level.loose_nodes:>6} {level.largest_cluster:>8}"
        )
    click.echo()
