"""
PNode Atlas CLI - Main Entry Point

Command-line interface for the adaptive node clustering engine.
Built with Click for robust argument parsing and help generation.
"""

import sys
import logging
from pathlib import Path
from typing import Optional

import click
import yaml

from core.clustering.config import AtlasConfig, apply_environment
from core.clustering.exceptions import ClusterConfigError

# Configure logging for CLI
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("patlas")


class AtlasContext:
    """Context object for passing global options to subcommands."""

    def __init__(
        self,
        verbose: bool = False,
        quiet: bool = False,
        config_path: Optional[Path] = None,
    ):
        self.verbose = verbose
        self.quiet = quiet
        self.config_path = config_path
        self._config = None

        # Configure logging based on verbosity; the core logs under "core"
        if quiet:
            level = logging.WARNING
        elif verbose:
            level = logging.DEBUG
        else:
            level = logging.INFO
        logger.setLevel(level)
        logging.getLogger("core").setLevel(level)

    @property
    def config(self) -> AtlasConfig:
        """Lazy load configuration from file."""
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def _load_config(self) -> AtlasConfig:
        """Load configuration from file or defaults."""
        config = AtlasConfig().to_dict()

        # Explicit path wins over the default locations
        candidates = [self.config_path] if self.config_path else [
            Path.cwd() / ".patlas.yaml",
            Path.cwd() / "patlas.yaml",
            Path.home() / ".pnode_atlas" / "config.yaml",
        ]

        for path in candidates:
            if not path.exists():
                continue
            try:
                with open(path) as f:
                    user_config = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config from {path}: {e}")
                continue
            if user_config:
                self._merge_config(config, user_config.get("atlas", user_config))
            logger.debug(f"Loaded config from {path}")
            break

        try:
            return apply_environment(AtlasConfig.from_dict(config))
        except ClusterConfigError as e:
            raise click.UsageError(str(e))

    def _merge_config(self, base: dict, override: dict):
        """Deep merge override into base config."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value


# Custom Click group with enhanced help formatting
class PatlasGroup(click.Group):
    """Custom Click group with improved help formatting."""

    def format_help(self, ctx, formatter):
        """Format help with custom banner and examples."""
        # Add banner
        formatter.write_paragraph()
        formatter.write_text("PNode Atlas - Adaptive Node Clustering")
        formatter.write_paragraph()
        formatter.write_text(
            "Cluster, query and navigate pNode markers on the globe."
        )
        formatter.write_paragraph()

        # Standard help formatting
        super().format_help(ctx, formatter)

        # Add examples section
        formatter.write_paragraph()
        formatter.write_text("Examples:")
        formatter.indent()

        examples = [
            "# What is drawn over Europe at altitude 1.2",
            "patlas query nodes.json --lat 50 --lng 10 --altitude 1.2",
            "",
            "# Expand a cluster returned by a query",
            "patlas expand nodes.json 42",
            "",
            "# Camera keyframes for drilling into a cluster",
            "patlas navigate nodes.json --cluster 42 --altitude 2.5",
            "",
            "# Fan out every coincident group",
            "patlas spiderfy nodes.json --all",
            "",
            "# Per-zoom statistics as JSON",
            "patlas stats nodes.json --format json",
        ]

        for line in examples:
            formatter.write_text(line)

        formatter.dedent()


pass_context = click.make_pass_decorator(AtlasContext, ensure=True)


@click.group(cls=PatlasGroup)
@click.option(
    "-v",
    "--verbose",
    is_flag=True,
    default=False,
    help="Enable verbose output (debug logging).",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    default=False,
    help="Quiet mode (only warnings and errors).",
)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file.",
)
@click.version_option(
    version="0.1.0",
    prog_name="patlas",
    message="%(prog)s version %(version)s - PNode Atlas CLI",
)
@click.pass_context
def app(ctx, verbose: bool, quiet: bool, config_path: Optional[Path]):
    """
    PNode Atlas CLI - Adaptive Node Clustering

    Builds a zoom hierarchy of clusters over a pNode snapshot and answers
    the questions a globe view asks on every frame.
    """
    # Handle mutually exclusive verbose/quiet
    if verbose and quiet:
        raise click.UsageError("Cannot use both --verbose and --quiet")

    # Create context object
    ctx.obj = AtlasContext(
        verbose=verbose,
        quiet=quiet,
        config_path=config_path,
    )


# Import and register subcommands
def register_commands():
    """Register all subcommands."""
    from cli.commands import expand, navigate, query, spiderfy, stats

    app.add_command(query.query)
    app.add_command(expand.expand)
    app.add_command(navigate.navigate)
    app.add_command(spiderfy.spiderfy)
    app.add_command(stats.stats)


@app.command("info")
@pass_context
def info(ctx):
    """Display system information and configuration."""
    import importlib.metadata
    import platform

    click.echo("\n=== PNode Atlas System Info ===\n")

    # Python info
    click.echo(f"Python: {platform.python_version()}")
    click.echo(f"Platform: {platform.system()} {platform.release()}")

    # Package versions
    click.echo("\n--- Package Versions ---")
    packages = ["numpy", "scipy", "click", "pyyaml"]
    for pkg in packages:
        try:
            version = importlib.metadata.version(pkg)
            click.echo(f"  {pkg}: {version}")
        except importlib.metadata.PackageNotFoundError:
            click.echo(f"  {pkg}: not installed")

    # Configuration
    config = ctx.config
    clustering = config.clustering
    click.echo("\n--- Clustering ---")
    click.echo(f"  Zoom range: {clustering.min_zoom_level}-{clustering.max_zoom_level}")
    click.echo(f"  Min points per cluster: {clustering.min_points_per_cluster}")
    click.echo(f"  Radius: {clustering.cluster_radius}px / {clustering.extent}px extent")
    click.echo(f"  Shrink factor: {clustering.radius_shrink_factor}")
    click.echo(f"  Centroid weighting: {clustering.centroid_weighting.value}")
    click.echo(f"  Prefetch margin: {clustering.prefetch_margin_ratio}")

    # Camera
    scale = config.zoom_scale
    click.echo("\n--- Camera ---")
    click.echo(f"  Zoom scale: {scale.min_zoom}-{scale.max_zoom}")
    click.echo(f"  Zoom per altitude octave: {scale.zoom_per_octave}")
    click.echo(f"  Spider leg length: {config.spider.leg_length} deg")

    click.echo()


# Register commands when module is imported
register_commands()


def main():
    """Main entry point for the CLI."""
    try:
        app()
    except Exception as e:
        logger.error(f"Error: {e}")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
