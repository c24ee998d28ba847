"""
Camera Navigation for Cluster Drill-In and Drill-Out.

Produces precomputed camera keyframes between two views and the breadcrumb
trail describing where the camera currently is:
- build_navigation_path: eased, shortest-arc keyframes ending on the target
- NavigationRun: abortable iterator over a path
- target_for_cluster / target_for_zoom_out / home_target: navigation targets
- build_breadcrumbs: Global > continent > country > city > node trail

Example Usage:
    from core.clustering.navigation import (
        NavigationRun,
        build_navigation_path,
        target_for_cluster,
    )

    target = target_for_cluster(index, cluster)
    run = NavigationRun(build_navigation_path(camera, target))
    for step in run:
        controller.set_camera(camera.moved_to(step.lng, step.lat, step.altitude))
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from core.clustering.config import NavigationConfig
from core.clustering.exceptions import InvalidCameraStateError
from core.clustering.features import ClusterFeature, NodeRecord
from core.clustering.geometry import (
    DEFAULT_ZOOM_SCALE,
    CameraState,
    ZoomScale,
    altitude_to_zoom,
    wrap_longitude,
    zoom_to_altitude,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Easing
# =============================================================================


def linear(t: float) -> float:
    return t


def ease_out_cubic(t: float) -> float:
    """Fast start, gentle landing."""
    return 1 - (1 - t) ** 3


def ease_in_out_cubic(t: float) -> float:
    if t < 0.5:
        return 4 * t ** 3
    return 1 - (-2 * t + 2) ** 3 / 2


EASINGS: Dict[str, Callable[[float], float]] = {
    "linear": linear,
    "ease_out_cubic": ease_out_cubic,
    "ease_in_out_cubic": ease_in_out_cubic,
}


# =============================================================================
# Keyframes
# =============================================================================


@dataclass(frozen=True)
class NavigationTarget:
    """
    Destination of a camera move.

    Attributes:
        lng: Target center longitude
        lat: Target center latitude
        altitude: Target camera altitude
        label: Optional description (cluster id, "zoom out", ...)
    """

    lng: float
    lat: float
    altitude: float
    label: Optional[str] = None

    def __post_init__(self):
        for name in ("lng", "lat", "altitude"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise InvalidCameraStateError(name, value, "must be finite")
        if self.altitude < 0:
            raise InvalidCameraStateError("altitude", self.altitude, "must be >= 0")
        if not -90.0 <= self.lat <= 90.0:
            raise InvalidCameraStateError("lat", self.lat, "must be within [-90, 90]")

    @classmethod
    def from_camera(cls, camera: CameraState) -> "NavigationTarget":
        return cls(lng=camera.lng, lat=camera.lat, altitude=camera.altitude)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "lng": self.lng,
            "lat": self.lat,
            "altitude": self.altitude,
            "label": self.label,
        }


@dataclass(frozen=True)
class NavigationStep:
    """
    One camera keyframe.

    Attributes:
        index: Position in the path (0-based)
        lng: Camera center longitude
        lat: Camera center latitude
        altitude: Camera altitude
        zoom: Zoom level for the altitude
        progress: Eased progress in [0, 1]
    """

    index: int
    lng: float
    lat: float
    altitude: float
    zoom: int
    progress: float

    def apply_to(self, camera: CameraState) -> CameraState:
        """Camera positioned at this keyframe, keeping heading and aspect."""
        return camera.moved_to(self.lng, self.lat, self.altitude)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "index": self.index,
            "lng": self.lng,
            "lat": self.lat,
            "altitude": self.altitude,
            "zoom": self.zoom,
            "progress": self.progress,
        }


def step_count_for(
    from_altitude: float,
    to_altitude: float,
    config: Optional[NavigationConfig] = None,
    scale: ZoomScale = DEFAULT_ZOOM_SCALE,
) -> int:
    """Keyframe count proportional to the number of zoom levels crossed."""
    config = config or NavigationConfig()
    delta = abs(altitude_to_zoom(to_altitude, scale) - altitude_to_zoom(from_altitude, scale))
    return max(config.min_steps, min(config.max_steps, delta * config.steps_per_zoom))


def build_navigation_path(
    from_camera: Union[CameraState, NavigationTarget],
    to_target: Union[CameraState, NavigationTarget],
    step_count: Optional[int] = None,
    easing: Callable[[float], float] = ease_out_cubic,
    config: Optional[NavigationConfig] = None,
    scale: ZoomScale = DEFAULT_ZOOM_SCALE,
) -> Tuple[NavigationStep, ...]:
    """
    Camera keyframes from one view to another.

    Altitude and latitude follow the eased progress, which is clamped to
    [0, 1] and never decreases, so altitude changes monotonically with no
    overshoot. Longitude takes the shorter way around the globe. The last
    keyframe is exactly the target. Equal endpoints give a single keyframe.

    Args:
        from_camera: Starting view
        to_target: Destination view
        step_count: Number of keyframes (derived from the zoom change if None)
        easing: Progress curve over [0, 1]
        config: Step count policy
        scale: Zoom scale used for per-step zoom levels

    Returns:
        Tuple of NavigationStep, safe to iterate repeatedly

    Raises:
        InvalidCameraStateError: If either endpoint is not finite
        ValueError: If step_count < 1
    """
    start = _as_target(from_camera)
    end = _as_target(to_target)
    end_zoom = altitude_to_zoom(end.altitude, scale)

    if (start.lng, start.lat, start.altitude) == (end.lng, end.lat, end.altitude):
        return (NavigationStep(0, end.lng, end.lat, end.altitude, end_zoom, 1.0),)

    if step_count is None:
        step_count = step_count_for(start.altitude, end.altitude, config, scale)
    if step_count < 1:
        raise ValueError(f"step_count must be >= 1, got {step_count}")

    d_lng = wrap_longitude(end.lng - start.lng)
    d_lat = end.lat - start.lat
    d_alt = end.altitude - start.altitude

    steps: List[NavigationStep] = []
    progress = 0.0
    for i in range(step_count - 1):
        eased = easing((i + 1) / step_count)
        if not math.isfinite(eased):
            raise ValueError(f"easing returned non-finite value {eased}")
        progress = max(progress, min(1.0, max(0.0, eased)))
        altitude = start.altitude + d_alt * progress
        steps.append(
            NavigationStep(
                index=i,
                lng=wrap_longitude(start.lng + d_lng * progress),
                lat=start.lat + d_lat * progress,
                altitude=altitude,
                zoom=altitude_to_zoom(altitude, scale),
                progress=progress,
            )
        )
    steps.append(NavigationStep(step_count - 1, end.lng, end.lat, end.altitude, end_zoom, 1.0))

    logger.debug(
        f"Navigation path: {step_count} steps, altitude {start.altitude:.3f} -> {end.altitude:.3f}"
    )
    return tuple(steps)


def _as_target(view: Union[CameraState, NavigationTarget]) -> NavigationTarget:
    if isinstance(view, NavigationTarget):
        return view
    if isinstance(view, CameraState):
        return NavigationTarget.from_camera(view)
    raise TypeError(f"Expected CameraState or NavigationTarget, got {type(view).__name__}")


class NavigationRun:
    """
    Iterator over a navigation path that can be aborted between steps.

    Example:
        run = NavigationRun(path)
        first = next(run)
        run.abort()  # a new gesture arrived
        assert list(run) == []
    """

    def __init__(self, steps: Sequence[NavigationStep]):
        self.steps = tuple(steps)
        self._position = 0
        self._aborted = False

    def __iter__(self) -> "NavigationRun":
        return self

    def __next__(self) -> NavigationStep:
        if self._aborted or self._position >= len(self.steps):
            raise StopIteration
        step = self.steps[self._position]
        self._position += 1
        return step

    def abort(self) -> None:
        """Stop before the next step."""
        if not self._aborted and not self.is_complete:
            logger.debug(f"Navigation aborted at step {self._position}/{len(self.steps)}")
        self._aborted = True

    def restart(self) -> None:
        """Rewind to the first step."""
        self._position = 0
        self._aborted = False

    @property
    def is_aborted(self) -> bool:
        return self._aborted

    @property
    def is_complete(self) -> bool:
        """True once the final step has been consumed."""
        return self._position >= len(self.steps)

    @property
    def is_active(self) -> bool:
        return not self._aborted and not self.is_complete

    @property
    def remaining(self) -> int:
        return 0 if self._aborted else len(self.steps) - self._position

    @property
    def current(self) -> Optional[NavigationStep]:
        """Most recently consumed step."""
        return self.steps[self._position - 1] if self._position else None


# =============================================================================
# Targets
# =============================================================================


def target_for_cluster(
    index,
    cluster: Union[int, ClusterFeature],
    config: Optional[NavigationConfig] = None,
    scale: ZoomScale = DEFAULT_ZOOM_SCALE,
) -> NavigationTarget:
    """
    Drill-in target for a cluster: its centroid at the expansion zoom.

    Args:
        index: AdaptiveClusterIndex holding the cluster
        cluster: Cluster id or feature
        config: Extra drill levels
        scale: Zoom scale for the target altitude
    """
    config = config or NavigationConfig()
    zoom = min(index.get_cluster_expansion_zoom(cluster) + config.drill_extra_levels, scale.max_zoom)
    feature = index.get_cluster(cluster)
    return NavigationTarget(
        lng=feature.lng,
        lat=feature.lat,
        altitude=zoom_to_altitude(zoom, scale),
        label=f"cluster {feature.cluster_id}",
    )


def target_for_zoom_out(
    camera: CameraState,
    config: Optional[NavigationConfig] = None,
    scale: ZoomScale = DEFAULT_ZOOM_SCALE,
) -> NavigationTarget:
    """
    Drill-out target: same center, higher altitude.

    The altitude grows by ``zoom_out_factor`` and at least one zoom level,
    capped at ``max_altitude``.
    """
    config = config or NavigationConfig()
    one_level_up = zoom_to_altitude(altitude_to_zoom(camera.altitude, scale) - 1, scale)
    altitude = min(config.max_altitude, max(camera.altitude * config.zoom_out_factor, one_level_up))
    altitude = max(altitude, camera.altitude)
    return NavigationTarget(lng=camera.lng, lat=camera.lat, altitude=altitude, label="zoom out")


def home_target(config: Optional[NavigationConfig] = None) -> NavigationTarget:
    """Default globe overview."""
    config = config or NavigationConfig()
    return NavigationTarget(
        lng=config.home_lng,
        lat=config.home_lat,
        altitude=config.home_altitude,
        label="home",
    )


# =============================================================================
# Breadcrumbs
# =============================================================================


class BreadcrumbKind(Enum):
    """Granularity of a breadcrumb entry."""

    GLOBAL = "global"
    CONTINENT = "continent"
    COUNTRY = "country"
    CITY = "city"
    NODE = "node"


# Minimum zoom at which each breadcrumb level appears
CONTINENT_ZOOM = 3
COUNTRY_ZOOM = 5
CITY_ZOOM = 10
NODE_ZOOM = 18


@dataclass(frozen=True)
class Breadcrumb:
    """One entry of the navigation trail."""

    kind: BreadcrumbKind
    label: str
    center: Tuple[float, float]
    zoom: int
    cluster_id: Optional[int] = None
    node_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "kind": self.kind.value,
            "label": self.label,
            "center": list(self.center),
            "zoom": self.zoom,
            "cluster_id": self.cluster_id,
            "node_id": self.node_id,
        }


def continent_for(lat: float, lng: float) -> str:
    """Coarse continent name for a position ("Global" when unknown)."""
    if lat > 35 and -30 < lng < 60:
        return "Europe"
    if 0 < lat < 35 and -20 < lng < 60:
        return "Africa"
    if lat < 0 and -20 < lng < 60:
        return "Africa"
    if lat > 10 and 60 < lng < 180:
        return "Asia"
    if -50 < lat < 10 and 90 < lng < 180:
        return "Oceania"
    if lat > 15 and -170 < lng < -30:
        return "North America"
    if lat < 15 and -90 < lng < -30:
        return "South America"
    return "Global"


def build_breadcrumbs(
    zoom: int,
    lat: float,
    lng: float,
    cluster: Optional[ClusterFeature] = None,
    metrics=None,
    node: Optional[NodeRecord] = None,
) -> List[Breadcrumb]:
    """
    Breadcrumb trail for the current view.

    Country and city entries need a focused cluster and its metrics
    (anything with ``primary_country`` / ``primary_city``).

    Args:
        zoom: Current zoom level
        lat: View center latitude
        lng: View center longitude
        cluster: Focused cluster, if any
        metrics: ClusterMetrics of the focused cluster
        node: Focused node, if any

    Returns:
        Breadcrumbs from Global down to the most specific level
    """
    trail = [Breadcrumb(BreadcrumbKind.GLOBAL, "Global", (0.0, 0.0), 0)]

    if zoom >= CONTINENT_ZOOM:
        trail.append(
            Breadcrumb(BreadcrumbKind.CONTINENT, continent_for(lat, lng), (lng, lat), CONTINENT_ZOOM)
        )

    if cluster is not None and metrics is not None:
        if zoom >= COUNTRY_ZOOM and metrics.primary_country:
            trail.append(
                Breadcrumb(
                    BreadcrumbKind.COUNTRY,
                    metrics.primary_country,
                    cluster.position,
                    COUNTRY_ZOOM,
                    cluster_id=cluster.cluster_id,
                )
            )
        if zoom >= CITY_ZOOM and metrics.primary_city and metrics.primary_city != "Unknown":
            trail.append(
                Breadcrumb(
                    BreadcrumbKind.CITY,
                    metrics.primary_city,
                    cluster.position,
                    CITY_ZOOM,
                    cluster_id=cluster.cluster_id,
                )
            )

    if node is not None:
        trail.append(
            Breadcrumb(
                BreadcrumbKind.NODE,
                str(node.metadata.get("ip", node.id)),
                node.position,
                NODE_ZOOM,
                node_id=node.id,
            )
        )

    return trail
