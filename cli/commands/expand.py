"""
Expand Command - Children of a cluster.

Usage:
    patlas expand nodes.json 42
"""

import logging
from pathlib import Path

import click

from cli.commands._common import emit_json, format_option, header, load_index, snapshot_argument
from core.clustering.exceptions import ClusterNotFoundError
from core.clustering.features import is_cluster
from core.clustering.metrics import cluster_metrics

logger = logging.getLogger("patlas.expand")


@click.command("expand")
@snapshot_argument
@click.argument("cluster_id", type=int)
@click.option(
    "--metrics",
    "-m",
    "show_metrics",
    is_flag=True,
    default=False,
    help="Include health and location metrics of the cluster.",
)
@format_option
@click.pass_obj
def expand(ctx, snapshot: Path, cluster_id: int, show_metrics: bool, output_format: str):
    """
    Expand a cluster one level.

    Cluster ids are stable for the same snapshot and configuration, so ids
    printed by `patlas query` can be passed here.

    \b
    Examples:
        patlas expand nodes.json 42
        patlas expand nodes.json 42 --metrics -f json
    """
    _, index = load_index(ctx, snapshot)
    try:
        expansion = index.expand_cluster(cluster_id, ctx.config.zoom_scale)
    except ClusterNotFoundError as e:
        raise click.ClickException(str(e))

    metrics = cluster_metrics(index, cluster_id) if show_metrics else None

    if output_format == "json":
        data = expansion.to_dict()
        if metrics is not None:
            data["metrics"] = metrics.to_dict()
        emit_json(data)
        return

    header(f"Cluster #{cluster_id}")
    click.echo(f"\n  Center: {expansion.center[1]:.5f}, {expansion.center[0]:.5f}")
    click.echo(f"  Expansion zoom: {expansion.expansion_zoom}")
    click.echo(f"  Target altitude: {expansion.target_altitude:.4f}")
    click.echo(f"  Finest level: {'yes' if expansion.at_finest_level else 'no'}")
    click.echo(f"  Spiderfy: {'yes' if expansion.spiderfy else 'no'}")

    click.echo(f"\n  Children ({len(expansion.children)}):")
    for child in expansion.children:
        if is_cluster(child):
            click.echo(f"    [C] #{child.cluster_id} ({child.point_count} nodes, level {child.level})")
        else:
            click.echo(f"    [N] {child.id}")

    if metrics is not None:
        dist = metrics.health_distribution
        click.echo("\n  Metrics:")
        click.echo(f"    Nodes: {metrics.count}")
        click.echo(f"    Avg health: {metrics.avg_health}")
        click.echo(
            f"    Health: {dist.excellent} excellent, {dist.good} good, "
            f"{dist.warning} warning, {dist.critical} critical"
        )
        click.echo(f"    Primary location: {metrics.primary_city}, {metrics.primary_country}")
        click.echo(f"    Operators: {metrics.operator_count}")
    click.echo()
