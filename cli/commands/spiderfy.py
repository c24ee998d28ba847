"""
Spiderfy Command - Radial layout of coincident nodes.

Usage:
    patlas spiderfy nodes.json 42
    patlas spiderfy nodes.json --all
"""

import logging
from pathlib import Path
from typing import List, Optional

import click

from cli.commands._common import emit_json, format_option, header, load_index, snapshot_argument
from core.clustering.exceptions import ClusterNotFoundError
from core.clustering.spiderfy import SpiderfiedNode, group_coincident_nodes, spiderfy_nodes

logger = logging.getLogger("patlas.spiderfy")


@click.command("spiderfy")
@snapshot_argument
@click.argument("cluster_id", type=int, required=False)
@click.option(
    "--all",
    "all_groups",
    is_flag=True,
    default=False,
    help="Lay out every group of coincident nodes in the snapshot.",
)
@format_option
@click.pass_obj
def spiderfy(ctx, snapshot: Path, cluster_id: Optional[int], all_groups: bool, output_format: str):
    """
    Fan out coincident nodes on spider legs.

    With a cluster id, lays out that cluster's nodes if its expansion asks
    for it. With --all, finds every coincident group in the snapshot.

    \b
    Examples:
        patlas spiderfy nodes.json 42
        patlas spiderfy nodes.json --all -f json
    """
    if (cluster_id is None) == (not all_groups):
        raise click.UsageError("Give either a cluster id or --all")

    config = ctx.config
    _, index = load_index(ctx, snapshot)
    groups: List[List[SpiderfiedNode]] = []

    if cluster_id is not None:
        try:
            expansion = index.expand_cluster(cluster_id, config.zoom_scale)
        except ClusterNotFoundError as e:
            raise click.ClickException(str(e))
        if not expansion.spiderfy:
            click.echo(f"Cluster {cluster_id} has no coincident nodes at this level.")
            return
        groups.append(spiderfy_nodes(expansion.nodes, expansion.center, config.spider))
    else:
        for group in group_coincident_nodes(index.nodes, config.clustering.coincidence_cell()):
            if len(group) > 1:
                center = (
                    sum(n.lng for n in group) / len(group),
                    sum(n.lat for n in group) / len(group),
                )
                groups.append(spiderfy_nodes(group, center, config.spider))

    if output_format == "json":
        emit_json({"groups": [[s.to_dict() for s in group] for group in groups]})
        return

    header(f"Spiderfied Groups ({len(groups)})")
    for group in groups:
        center = group[0].center
        click.echo(f"\n  Center {center[1]:.6f}, {center[0]:.6f} ({len(group)} nodes)")
        for placed in group:
            click.echo(
                f"    ring {placed.ring} {placed.node.id}: {placed.lat:.6f}, {placed.lng:.6f}"
            )
    click.echo()
