"""
Navigate Command - Camera keyframes for drill-in and drill-out.

Usage:
    patlas navigate nodes.json --cluster 42
    patlas navigate nodes.json --zoom-out --altitude 0.3
"""

import logging
from pathlib import Path
from typing import Optional

import click

from cli.commands._common import (
    camera_from_options,
    camera_options,
    emit_json,
    format_option,
    header,
    load_index,
    snapshot_argument,
)
from core.clustering.exceptions import ClusterNotFoundError
from core.clustering.navigation import (
    EASINGS,
    build_navigation_path,
    home_target,
    target_for_cluster,
    target_for_zoom_out,
)

logger = logging.getLogger("patlas.navigate")


@click.command("navigate")
@snapshot_argument
@camera_options
@click.option("--cluster", "cluster_id", type=int, default=None, help="Drill into this cluster.")
@click.option("--zoom-out", is_flag=True, default=False, help="Drill out from the camera.")
@click.option("--home", is_flag=True, default=False, help="Return to the globe overview.")
@click.option("--steps", type=click.IntRange(min=1), default=None, help="Number of keyframes.")
@click.option(
    "--easing",
    type=click.Choice(sorted(EASINGS)),
    default="ease_out_cubic",
    show_default=True,
    help="Progress curve.",
)
@format_option
@click.pass_obj
def navigate(
    ctx,
    snapshot: Path,
    lat: float,
    lng: float,
    altitude: float,
    heading: float,
    aspect: float,
    cluster_id: Optional[int],
    zoom_out: bool,
    home: bool,
    steps: Optional[int],
    easing: str,
    output_format: str,
):
    """
    Print the camera keyframes of a navigation.

    Exactly one of --cluster, --zoom-out or --home selects the target.

    \b
    Examples:
        patlas navigate nodes.json --cluster 42 --altitude 2.5
        patlas navigate nodes.json --zoom-out --altitude 0.2 --steps 5
    """
    if sum([cluster_id is not None, zoom_out, home]) != 1:
        raise click.UsageError("Choose exactly one of --cluster, --zoom-out or --home")

    camera = camera_from_options(lat, lng, altitude, heading, aspect)
    config = ctx.config

    if cluster_id is not None:
        _, index = load_index(ctx, snapshot)
        try:
            target = target_for_cluster(index, cluster_id, config.navigation, config.zoom_scale)
        except ClusterNotFoundError as e:
            raise click.ClickException(str(e))
    elif zoom_out:
        target = target_for_zoom_out(camera, config.navigation, config.zoom_scale)
    else:
        target = home_target(config.navigation)

    path = build_navigation_path(
        camera,
        target,
        step_count=steps,
        easing=EASINGS[easing],
        config=config.navigation,
        scale=config.zoom_scale,
    )

    if output_format == "json":
        emit_json({"target": target.to_dict(), "steps": [s.to_dict() for s in path]})
        return

    header(f"Navigation to {target.label}")
    click.echo(f"\n  From: {camera.lat:.4f}, {camera.lng:.4f} @ {camera.altitude:.4f}")
    click.echo(f"  To:   {target.lat:.4f}, {target.lng:.4f} @ {target.altitude:.4f}")
    click.echo(f"\n  Steps ({len(path)}):")
    for step in path:
        click.echo(
            f"    {step.index:>3}: {step.lat:9.4f}, {step.lng:9.4f} "
            f"@ {step.altitude:.4f} (zoom {step.zoom})"
        )
    click.echo()
