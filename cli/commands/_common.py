"""
Shared helpers for CLI commands: snapshot loading, camera options, output.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Tuple

import click

from core.clustering.exceptions import ClusteringError
from core.clustering.geometry import CameraState
from core.clustering.index import AdaptiveClusterIndex, create_cluster_index
from core.clustering.sources import NodeSnapshot, load_nodes

logger = logging.getLogger("patlas.commands")


snapshot_argument = click.argument(
    "snapshot",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)

format_option = click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    help="Output format (default: text).",
)


def camera_options(func: Callable) -> Callable:
    """Add --lat/--lng/--altitude/--heading/--aspect options."""
    options = [
        click.option("--lat", type=float, default=20.0, show_default=True, help="Camera latitude."),
        click.option("--lng", type=float, default=0.0, show_default=True, help="Camera longitude."),
        click.option(
            "--altitude", "-a", type=float, default=2.5, show_default=True, help="Camera altitude."
        ),
        click.option("--heading", type=float, default=0.0, help="Viewport rotation in degrees."),
        click.option(
            "--aspect", type=float, default=1.5, show_default=True, help="Viewport width / height."
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def camera_from_options(lat: float, lng: float, altitude: float, heading: float, aspect: float) -> CameraState:
    """Build a camera, turning validation errors into usage errors."""
    try:
        return CameraState(lat=lat, lng=lng, altitude=altitude, heading=heading, aspect_ratio=aspect)
    except ClusteringError as e:
        raise click.BadParameter(str(e))


def load_index(ctx, snapshot_path: Path) -> Tuple[NodeSnapshot, AdaptiveClusterIndex]:
    """Read a snapshot and build its index with the context configuration."""
    try:
        snapshot = load_nodes(snapshot_path)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot read snapshot {snapshot_path}: {e}")
    index = create_cluster_index(snapshot.nodes, ctx.config.clustering)
    logger.debug(f"Indexed {index.total_nodes} nodes in {index.build_ms:.1f}ms")
    return snapshot, index


def emit_json(data: Any) -> None:
    """Print data as indented JSON."""
    click.echo(json.dumps(data, indent=2, default=str))


def header(title: str) -> None:
    """Print a section header."""
    click.echo(f"\n{'=' * 50}")
    click.echo(f"  {title}")
    click.echo(f"{'=' * 50}")
