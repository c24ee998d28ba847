"""
Configuration for Node Clustering.

Provides dataclasses and utilities for configuring the cluster index, the
spiderfy layout, camera navigation and the altitude/zoom mapping.

Configuration can be built from a dictionary (snake_case keys, with the
camelCase names used by the globe front end accepted as aliases), a YAML
file, or environment variables.
"""

import logging
import math
import os
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from core.clustering.exceptions import ClusterConfigError
from core.clustering.geometry import FootprintModel, ZoomScale

logger = logging.getLogger(__name__)


class CentroidWeighting(Enum):
    """How merged entries contribute to a cluster centroid."""

    COUNT = "count"  # Weighted by the number of nodes each entry represents
    UNIFORM = "uniform"  # Every merged entry counts once


# camelCase names accepted by ClusterConfig.from_dict
CONFIG_ALIASES = {
    "maxZoomLevel": "max_zoom_level",
    "minZoomLevel": "min_zoom_level",
    "minPointsPerCluster": "min_points_per_cluster",
    "clusterRadiusAtZoom0": "cluster_radius",
    "prefetchMarginRatio": "prefetch_margin_ratio",
    "enableSpiderfying": "enable_spiderfying",
}

# Upper bound on max_zoom_level; beyond this the radius underflows float precision
MAX_SUPPORTED_ZOOM = 30


@dataclass
class ClusterConfig:
    """
    Configuration for building a cluster index.

    Attributes:
        max_zoom_level: Highest zoom at which clusters are formed
        min_zoom_level: Lowest zoom the hierarchy is built for
        min_points_per_cluster: Minimum node count for a merge to happen
        cluster_radius: Merge radius in pixels at zoom 0
        extent: Tile extent in pixels the radius is relative to
        radius_shrink_factor: Divisor applied to the radius at each zoom step
        centroid_weighting: Centroid averaging mode
        prefetch_margin_ratio: Bounds margin used when prefetching
        coincidence_px: Pixel size at max zoom under which nodes coincide
        query_cache_size: Entries kept in the per-index query cache (0 disables)
        enable_spiderfying: Whether coincident leaves request a spider layout
    """

    max_zoom_level: int = 16
    min_zoom_level: int = 0
    min_points_per_cluster: int = 2
    cluster_radius: float = 40.0
    extent: int = 512
    radius_shrink_factor: float = 2.0
    centroid_weighting: CentroidWeighting = CentroidWeighting.COUNT
    prefetch_margin_ratio: float = 0.3
    coincidence_px: float = 1.0
    query_cache_size: int = 100
    enable_spiderfying: bool = True

    def __post_init__(self):
        """Validate configuration."""
        if isinstance(self.centroid_weighting, str):
            try:
                self.centroid_weighting = CentroidWeighting(self.centroid_weighting)
            except ValueError:
                raise ClusterConfigError(
                    "centroid_weighting",
                    self.centroid_weighting,
                    f"must be one of {[w.value for w in CentroidWeighting]}",
                )
        self.validate()

    def validate(self) -> None:
        """
        Check every value against its allowed range.

        Raises:
            ClusterConfigError: On the first invalid value
        """
        for name in ("max_zoom_level", "min_zoom_level", "min_points_per_cluster", "extent"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ClusterConfigError(name, value, "must be an integer")

        if self.min_zoom_level < 0:
            raise ClusterConfigError("min_zoom_level", self.min_zoom_level, "must be >= 0")
        if self.max_zoom_level < 0:
            raise ClusterConfigError("max_zoom_level", self.max_zoom_level, "must be >= 0")
        if self.max_zoom_level > MAX_SUPPORTED_ZOOM:
            raise ClusterConfigError(
                "max_zoom_level", self.max_zoom_level, f"must be <= {MAX_SUPPORTED_ZOOM}"
            )
        if self.min_zoom_level > self.max_zoom_level:
            raise ClusterConfigError(
                "min_zoom_level",
                self.min_zoom_level,
                f"must be <= max_zoom_level ({self.max_zoom_level})",
            )
        if self.min_points_per_cluster < 1:
            raise ClusterConfigError(
                "min_points_per_cluster", self.min_points_per_cluster, "must be >= 1"
            )
        if not _finite(self.cluster_radius) or self.cluster_radius < 0:
            raise ClusterConfigError("cluster_radius", self.cluster_radius, "must be >= 0")
        if self.extent <= 0:
            raise ClusterConfigError("extent", self.extent, "must be > 0")
        if not _finite(self.radius_shrink_factor) or self.radius_shrink_factor < 1.0:
            raise ClusterConfigError(
                "radius_shrink_factor", self.radius_shrink_factor, "must be >= 1.0"
            )
        if not _finite(self.prefetch_margin_ratio) or self.prefetch_margin_ratio < 0:
            raise ClusterConfigError(
                "prefetch_margin_ratio", self.prefetch_margin_ratio, "must be >= 0"
            )
        if not _finite(self.coincidence_px) or self.coincidence_px <= 0:
            raise ClusterConfigError("coincidence_px", self.coincidence_px, "must be > 0")
        if isinstance(self.query_cache_size, bool) or not isinstance(self.query_cache_size, int):
            raise ClusterConfigError("query_cache_size", self.query_cache_size, "must be an integer")
        if self.query_cache_size < 0:
            raise ClusterConfigError("query_cache_size", self.query_cache_size, "must be >= 0")
        if not isinstance(self.centroid_weighting, CentroidWeighting):
            raise ClusterConfigError(
                "centroid_weighting", self.centroid_weighting, "must be a CentroidWeighting"
            )

    def radius_at_zoom(self, zoom: int) -> float:
        """Merge radius at a zoom level, in projected unit-square units."""
        return self.cluster_radius / (self.extent * self.radius_shrink_factor ** zoom)

    def coincidence_cell(self) -> float:
        """Coincidence cell size at max zoom, in projected unit-square units."""
        return self.coincidence_px / (self.extent * 2 ** self.max_zoom_level)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "ClusterConfig":
        """
        Create configuration from dictionary.

        Unknown keys are ignored with a warning.

        Args:
            config_dict: Configuration dictionary

        Returns:
            ClusterConfig instance
        """
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in (config_dict or {}).items():
            name = CONFIG_ALIASES.get(key, key)
            if name in known:
                kwargs[name] = value
            else:
                logger.warning(f"Ignoring unknown clustering option '{key}'")
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "max_zoom_level": self.max_zoom_level,
            "min_zoom_level": self.min_zoom_level,
            "min_points_per_cluster": self.min_points_per_cluster,
            "cluster_radius": self.cluster_radius,
            "extent": self.extent,
            "radius_shrink_factor": self.radius_shrink_factor,
            "centroid_weighting": self.centroid_weighting.value,
            "prefetch_margin_ratio": self.prefetch_margin_ratio,
            "coincidence_px": self.coincidence_px,
            "query_cache_size": self.query_cache_size,
            "enable_spiderfying": self.enable_spiderfying,
        }


def _finite(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


@dataclass
class SpiderConfig:
    """
    Layout of spiderfied (radially separated) nodes.

    Distances are in degrees of latitude; longitude offsets are corrected
    for the latitude of the center.

    Attributes:
        leg_length: Radius of the innermost ring
        ring_spacing: Radius added per additional ring (defaults to leg_length)
        foot_separation: Minimum arc distance between feet on a ring
            (defaults to leg_length)
        start_angle: Angle of the first leg in radians (pi/2 points north)
        min_cos_latitude: Floor for the latitude correction near the poles
    """

    leg_length: float = 0.0005
    ring_spacing: Optional[float] = None
    foot_separation: Optional[float] = None
    start_angle: float = math.pi / 2
    min_cos_latitude: float = 0.01

    def __post_init__(self):
        if self.ring_spacing is None:
            self.ring_spacing = self.leg_length
        if self.foot_separation is None:
            self.foot_separation = self.leg_length
        for name in ("leg_length", "ring_spacing", "foot_separation", "min_cos_latitude"):
            value = getattr(self, name)
            if not _finite(value) or value <= 0:
                raise ClusterConfigError(name, value, "must be > 0")
        if not _finite(self.start_angle):
            raise ClusterConfigError("start_angle", self.start_angle, "must be finite")

    def to_dict(self) -> Dict[str, float]:
        """Convert configuration to dictionary."""
        return {
            "leg_length": self.leg_length,
            "ring_spacing": self.ring_spacing,
            "foot_separation": self.foot_separation,
            "start_angle": self.start_angle,
            "min_cos_latitude": self.min_cos_latitude,
        }


@dataclass
class NavigationConfig:
    """
    Camera navigation settings.

    Attributes:
        steps_per_zoom: Keyframes per zoom level crossed
        min_steps: Fewest keyframes for a non-trivial path
        max_steps: Most keyframes for any path
        drill_extra_levels: Levels past the expansion zoom a drill-in targets
        zoom_out_factor: Altitude multiplier for one zoom-out gesture
        max_altitude: Highest altitude a zoom-out may reach
        home_lat: Latitude of the reset view
        home_lng: Longitude of the reset view
        home_altitude: Altitude of the reset view
    """

    steps_per_zoom: int = 2
    min_steps: int = 2
    max_steps: int = 24
    drill_extra_levels: int = 0
    zoom_out_factor: float = 1.5
    max_altitude: float = 4.0
    home_lat: float = 20.0
    home_lng: float = 0.0
    home_altitude: float = 2.5

    def __post_init__(self):
        if self.steps_per_zoom < 1:
            raise ClusterConfigError("steps_per_zoom", self.steps_per_zoom, "must be >= 1")
        if self.min_steps < 1:
            raise ClusterConfigError("min_steps", self.min_steps, "must be >= 1")
        if self.max_steps < self.min_steps:
            raise ClusterConfigError(
                "max_steps", self.max_steps, f"must be >= min_steps ({self.min_steps})"
            )
        if self.drill_extra_levels < 0:
            raise ClusterConfigError(
                "drill_extra_levels", self.drill_extra_levels, "must be >= 0"
            )
        if not _finite(self.zoom_out_factor) or self.zoom_out_factor <= 1.0:
            raise ClusterConfigError("zoom_out_factor", self.zoom_out_factor, "must be > 1")
        if not _finite(self.max_altitude) or self.max_altitude <= 0:
            raise ClusterConfigError("max_altitude", self.max_altitude, "must be > 0")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "steps_per_zoom": self.steps_per_zoom,
            "min_steps": self.min_steps,
            "max_steps": self.max_steps,
            "drill_extra_levels": self.drill_extra_levels,
            "zoom_out_factor": self.zoom_out_factor,
            "max_altitude": self.max_altitude,
            "home_lat": self.home_lat,
            "home_lng": self.home_lng,
            "home_altitude": self.home_altitude,
        }


@dataclass
class AtlasConfig:
    """
    Complete configuration for the node atlas.

    This is the top-level configuration object that combines the index,
    layout, navigation and camera settings.

    Attributes:
        clustering: Cluster index settings
        spider: Spiderfy layout settings
        navigation: Camera navigation settings
        zoom_scale: Altitude/zoom mapping
        footprint: Visible bounds approximation
        prefetch_adjacent: Whether the controller warms zoom +/- 1 queries
    """

    clustering: ClusterConfig = field(default_factory=ClusterConfig)
    spider: SpiderConfig = field(default_factory=SpiderConfig)
    navigation: NavigationConfig = field(default_factory=NavigationConfig)
    zoom_scale: ZoomScale = field(default_factory=ZoomScale)
    footprint: FootprintModel = field(default_factory=FootprintModel)
    prefetch_adjacent: bool = True

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "AtlasConfig":
        """
        Create configuration from dictionary.

        Args:
            config_dict: Configuration dictionary

        Returns:
            AtlasConfig instance
        """
        config_dict = dict(config_dict or {})
        try:
            zoom_scale = ZoomScale(**config_dict.get("zoom_scale", {}))
            footprint = FootprintModel(**config_dict.get("footprint", {}))
            spider = SpiderConfig(**config_dict.get("spider", {}))
            navigation = NavigationConfig(**config_dict.get("navigation", {}))
        except TypeError as e:
            raise ClusterConfigError("atlas", None, str(e))
        except ClusterConfigError:
            raise
        except ValueError as e:
            raise ClusterConfigError("atlas", None, str(e))

        return cls(
            clustering=ClusterConfig.from_dict(config_dict.get("clustering", {})),
            spider=spider,
            navigation=navigation,
            zoom_scale=zoom_scale,
            footprint=footprint,
            prefetch_adjacent=config_dict.get("prefetch_adjacent", True),
        )

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "AtlasConfig":
        """
        Load configuration from YAML file.

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            AtlasConfig instance
        """
        path = Path(yaml_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(path, "r") as f:
            config_dict = yaml.safe_load(f) or {}

        # Extract atlas section if present
        if "atlas" in config_dict:
            config_dict = config_dict["atlas"]

        return cls.from_dict(config_dict)

    @classmethod
    def from_environment(cls) -> "AtlasConfig":
        """
        Create configuration from environment variables.

        Environment variables override default values:
        - PATLAS_MAX_ZOOM
        - PATLAS_MIN_POINTS
        - PATLAS_RADIUS
        - PATLAS_PREFETCH_MARGIN

        Returns:
            AtlasConfig instance
        """
        config = cls()
        apply_environment(config)
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "clustering": self.clustering.to_dict(),
            "spider": self.spider.to_dict(),
            "navigation": self.navigation.to_dict(),
            "zoom_scale": self.zoom_scale.to_dict(),
            "footprint": {
                "degrees_per_altitude": self.footprint.degrees_per_altitude,
                "min_span_degrees": self.footprint.min_span_degrees,
            },
            "prefetch_adjacent": self.prefetch_adjacent,
        }


# Environment variable -> (clustering field, parser)
ENVIRONMENT_OVERRIDES = {
    "PATLAS_MAX_ZOOM": ("max_zoom_level", int),
    "PATLAS_MIN_POINTS": ("min_points_per_cluster", int),
    "PATLAS_RADIUS": ("cluster_radius", float),
    "PATLAS_PREFETCH_MARGIN": ("prefetch_margin_ratio", float),
}


def apply_environment(config: AtlasConfig) -> AtlasConfig:
    """
    Apply PATLAS_* environment overrides to a configuration in place.

    Unparseable values are logged and ignored. The clustering section is
    revalidated afterwards.
    """
    for env_name, (field_name, parser) in ENVIRONMENT_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if not raw:
            continue
        try:
            setattr(config.clustering, field_name, parser(raw))
        except ValueError:
            logger.warning(f"Ignoring {env_name}={raw!r}: expected {parser.__name__}")
    config.clustering.validate()
    return config


# Default configuration instance
DEFAULT_CONFIG = AtlasConfig()


def load_config(
    yaml_path: Optional[str] = None,
    use_environment: bool = True,
) -> AtlasConfig:
    """
    Load atlas configuration with fallbacks.

    Attempts to load configuration in order:
    1. From specified YAML path (if provided)
    2. From default config paths
    3. From environment variables
    4. Fall back to defaults

    Args:
        yaml_path: Optional explicit path to YAML config
        use_environment: Whether to apply environment variable overrides

    Returns:
        AtlasConfig instance
    """
    config = None

    # Try explicit path first
    if yaml_path:
        try:
            config = AtlasConfig.from_yaml(yaml_path)
        except FileNotFoundError:
            logger.warning(f"Config file not found: {yaml_path}, using defaults")

    # Try default paths
    if config is None:
        default_paths = [
            Path("config/atlas.yaml"),
            Path("~/.pnode_atlas/config.yaml").expanduser(),
            Path("/etc/pnode_atlas/config.yaml"),
        ]
        for path in default_paths:
            if path.exists():
                try:
                    config = AtlasConfig.from_yaml(str(path))
                    break
                except (yaml.YAMLError, ClusterConfigError) as e:
                    logger.warning(f"Skipping invalid config {path}: {e}")
                    continue

    # Use defaults if no config found
    if config is None:
        config = AtlasConfig()

    # Apply environment overrides
    if use_environment:
        apply_environment(config)

    return config
