"""
Query Command - Features visible from a camera.

Usage:
    patlas query nodes.json --lat 50 --lng 10 --altitude 1.2
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
from core.clustering.features import is_cluster
from core.clustering.geometry import altitude_to_zoom, expand_bounds, get_visible_bounds
from core.clustering.metrics import size_class_for_count

logger = logging.getLogger("patlas.query")


@click.command("query")
@snapshot_argument
@camera_options
@click.option(
    "--zoom",
    "-z",
    type=int,
    default=None,
    help="Query this zoom instead of the one derived from altitude.",
)
@click.option(
    "--margin",
    type=float,
    default=0.0,
    help="Expand the visible bounds by this ratio.",
)
@format_option
@click.pass_obj
def query(
    ctx,
    snapshot: Path,
    lat: float,
    lng: float,
    altitude: float,
    heading: float,
    aspect: float,
    zoom: Optional[int],
    margin: float,
    output_format: str,
):
    """
    List the clusters and nodes visible from a camera.

    \b
    Examples:
        # Globe overview
        patlas query nodes.json

        # Close to Paris, as JSON
        patlas query nodes.json --lat 48.85 --lng 2.35 --altitude 0.1 -f json
    """
    camera = camera_from_options(lat, lng, altitude, heading, aspect)
    config = ctx.config
    if zoom is None:
        zoom = altitude_to_zoom(camera.altitude, config.zoom_scale)

    bounds = get_visible_bounds(camera, config.footprint)
    if margin:
        try:
            bounds = expand_bounds(bounds, margin)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--margin")

    _, index = load_index(ctx, snapshot)
    features = index.query(bounds, zoom)

    if output_format == "json":
        emit_json(
            {
                "zoom": zoom,
                "bounds": bounds.to_list(),
                "generation": index.generation,
                "features": [f.to_dict() for f in features],
            }
        )
        return

    header("Visible Features")
    click.echo(f"\n  Camera: lat={camera.lat} lng={camera.lng} altitude={camera.altitude}")
    click.echo(f"  Zoom: {zoom}")
    click.echo(
        "  Bounds: W {:.4f} S {:.4f} E {:.4f} N {:.4f}".format(*bounds.to_list())
    )

    clusters = [f for f in features if is_cluster(f)]
    click.echo(f"\n  {len(clusters)} clusters, {len(features) - len(clusters)} nodes")
    for feature in features:
        if is_cluster(feature):
            click.echo(
                f"    [C] #{feature.cluster_id:<6} {feature.abbreviated_count:>6} "
                f"({size_class_for_count(feature.point_count).value}) "
                f"at {feature.lat:.4f}, {feature.lng:.4f}"
            )
        else:
            click.echo(f"    [N] {feature.id} at {feature.lat:.4f}, {feature.lng:.4f}")
    click.echo()
